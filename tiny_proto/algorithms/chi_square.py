"""
Chi-squared thresholds for TinyProto.

The goodness of fit tests need the chi-squared value that leaves a given
probability (alpha) in the right tail of the distribution. For even
degrees of freedom the tail area has a closed form,

    Q(x; 2m) = exp(-x/2) * sum_{i=0}^{m-1} (x/2)^i / i!

so the threshold is found by solving Q(x) - alpha = 0 numerically. Solved
thresholds are memoized per clusterer in a ``ChiSquareCache``.
"""

import logging
import math
from typing import Callable, Dict, Tuple

from tiny_proto.core.errors import NumericNonConvergence
from tiny_proto.core.params import CHI_ACCURACY, MAX_SOLVER_ITERATIONS, MIN_ALPHA

logger = logging.getLogger(__name__)

INITIAL_DELTA = 0.1
DELTA_RATIO = 0.1


def solve(
    function: Callable[[float], float],
    initial_guess: float,
    accuracy: float,
    max_iterations: int = MAX_SOLVER_ITERATIONS,
) -> float:
    """
    Find an x at which the function goes to zero.

    This only works if a root exists and there are no extrema between the
    root and the initial guess. The slope is estimated with a forward
    difference whose step shrinks to a fraction of the last move, and the
    search stops once the last points seen on either side of the root are
    within ``accuracy`` of each other.

    Args:
        function: Function whose root is wanted.
        initial_guess: Point at which to start the search.
        accuracy: Maximum allowed distance between the bracketing points.
        max_iterations: Number of updates after which the search gives up.

    Returns:
        The estimated root.

    Raises:
        NumericNonConvergence: If the accuracy is not reached within
            max_iterations, or the slope estimate vanishes.
    """
    x = initial_guess
    delta = INITIAL_DELTA
    last_pos_x = math.inf
    last_neg_x = -math.inf
    f = function(x)

    iterations = 0
    while abs(last_pos_x - last_neg_x) > accuracy:
        if f == 0.0:
            return x
        if iterations >= max_iterations:
            raise NumericNonConvergence(
                f"Root search did not converge after {iterations} iterations",
                iterations=iterations,
                last_estimate=x,
            )
        iterations += 1

        # Keep track of the outer bounds of the current estimate
        if f < 0:
            last_neg_x = x
        else:
            last_pos_x = x

        slope = (function(x + delta) - f) / delta
        if slope == 0 or not math.isfinite(slope):
            raise NumericNonConvergence(
                f"Slope vanished at x={x} during root search",
                iterations=iterations,
                last_estimate=x,
            )

        x_delta = f / slope
        x -= x_delta

        new_delta = abs(x_delta) * DELTA_RATIO
        if 0.0 < new_delta < delta:
            delta = new_delta

        f = function(x)

    return x


def chi_area(degrees_of_freedom: int, alpha: float, x: float) -> float:
    """
    Right tail area of a chi-squared distribution, minus alpha.

    Args:
        degrees_of_freedom: Shape of the distribution; must be even.
        alpha: Desired tail area.
        x: Chi-squared value at which to evaluate the tail.

    Returns:
        The difference between the actual and desired tail areas.
    """
    n = degrees_of_freedom // 2 - 1
    series_total = 1.0
    denominator = 1.0
    power_of_x = 1.0
    for i in range(1, n + 1):
        denominator *= 2 * i
        power_of_x *= x
        series_total += power_of_x / denominator
    return series_total * math.exp(-0.5 * x) - alpha


class ChiSquareCache:
    """
    Memo of chi-squared thresholds keyed by degrees of freedom and alpha.

    Each clusterer owns one cache, so independent clusterers never share
    (or corrupt) each other's thresholds.
    """

    def __init__(self, accuracy: float = CHI_ACCURACY):
        """
        Initialize an empty cache.

        Args:
            accuracy: Accuracy passed to the root finder.
        """
        self._accuracy = accuracy
        self._values: Dict[Tuple[int, float], float] = {}

    def threshold(self, degrees_of_freedom: int, alpha: float) -> float:
        """
        Get the chi-squared value leaving alpha in the right tail.

        Alpha is clamped to [MIN_ALPHA, 1.0] and odd degrees of freedom are
        rounded up to the next even number. An alpha of 1.0 gives a
        threshold of zero.

        Args:
            degrees_of_freedom: Shape of the distribution.
            alpha: Probability of the right tail.

        Returns:
            The chi-squared threshold.

        Raises:
            ValueError: If degrees_of_freedom is less than 1.
            NumericNonConvergence: If the threshold cannot be solved for.
        """
        if degrees_of_freedom < 1:
            raise ValueError("Degrees of freedom must be at least 1")
        alpha = min(max(alpha, MIN_ALPHA), 1.0)
        if degrees_of_freedom % 2:
            degrees_of_freedom += 1

        key = (degrees_of_freedom, alpha)
        value = self._values.get(key)
        if value is None and alpha >= 1.0:
            # The whole distribution lies to the right of zero
            value = 0.0
            self._values[key] = value
        elif value is None:
            value = solve(
                lambda x: chi_area(degrees_of_freedom, alpha, x),
                float(degrees_of_freedom),
                self._accuracy,
            )
            self._values[key] = value
            logger.debug(
                "Chi-squared threshold for dof=%d alpha=%g is %.4f",
                degrees_of_freedom,
                alpha,
                value,
            )
        return value

    def clear(self) -> None:
        """Forget every memoized threshold."""
        self._values.clear()

    def __len__(self) -> int:
        return len(self._values)

    def __contains__(self, key: Tuple[int, float]) -> bool:
        return key in self._values
