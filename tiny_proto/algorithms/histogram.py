"""
Chi-squared goodness of fit histograms for TinyProto.

This module decides whether the samples of a cluster, projected onto one
dimension, plausibly come from a normal, uniform or random distribution.
Samples are normalized onto a fixed discrete domain of BUCKET_TABLE_SIZE
points, a lookup table maps each point of the domain to a histogram bucket,
and the observed bucket counts are compared against the expected ones with
Pearson's chi-squared statistic.

Buckets are laid out so that each has approximately the same probability
under the hypothesized distribution. The number of buckets is chosen from
the number of samples following Table 4.1 of Bendat & Piersol.

References:
    - Bendat, J. S., & Piersol, A. G. (1986).
      Random Data: Analysis and Measurement Procedures (2nd ed.). Wiley.
"""

import logging
import math
import sys
from collections import defaultdict
from typing import Callable, Dict, List, Optional, Tuple

import numpy as np

from tiny_proto.algorithms.chi_square import ChiSquareCache
from tiny_proto.algorithms.cluster_tree import Cluster, ClusterTree
from tiny_proto.core.params import (
    BUCKET_TABLE_SIZE,
    BUCKETS_TABLE,
    COUNT_TABLE,
    NORMAL_EXTENT,
    DimensionDescriptor,
    Distribution,
)

logger = logging.getLogger(__name__)

# A discrete normal distribution spanning NORMAL_EXTENT standard deviations
# on either side of the mean: x=0 maps to -NORMAL_EXTENT and
# x=BUCKET_TABLE_SIZE maps to +NORMAL_EXTENT.
NORMAL_STD_DEV = BUCKET_TABLE_SIZE / (2.0 * NORMAL_EXTENT)
NORMAL_VARIANCE = (BUCKET_TABLE_SIZE * BUCKET_TABLE_SIZE) / (
    4.0 * NORMAL_EXTENT * NORMAL_EXTENT
)
NORMAL_MAGNITUDE = (2.0 * NORMAL_EXTENT) / (
    math.sqrt(2.0 * math.pi) * BUCKET_TABLE_SIZE
)
NORMAL_MEAN = BUCKET_TABLE_SIZE // 2

UNIFORM_DENSITY = 1.0 / BUCKET_TABLE_SIZE


def optimum_number_of_buckets(sample_count: int) -> int:
    """
    Number of histogram buckets to use for a chi-squared test.

    Interpolates linearly (truncating) between the entries of the lookup
    table and clamps at both ends. The table is intended for a 0.05 level
    of significance and is assumed to be valid for other levels as well.

    Args:
        sample_count: Number of samples to be tested.

    Returns:
        The number of buckets.
    """
    if sample_count < COUNT_TABLE[0]:
        return BUCKETS_TABLE[0]

    for last in range(len(COUNT_TABLE) - 1):
        nxt = last + 1
        if sample_count <= COUNT_TABLE[nxt]:
            rise = BUCKETS_TABLE[nxt] - BUCKETS_TABLE[last]
            run = COUNT_TABLE[nxt] - COUNT_TABLE[last]
            return BUCKETS_TABLE[last] + rise * (sample_count - COUNT_TABLE[last]) // run
    return BUCKETS_TABLE[-1]


def degrees_of_freedom(distribution: Distribution, num_buckets: int) -> int:
    """
    Degrees of freedom for a chi-squared test over a histogram.

    The result is rounded up to the next even number so that the threshold
    can be computed in closed form; this makes the test slightly more
    lenient than optimum.

    Args:
        distribution: Distribution being tested for.
        num_buckets: Number of buckets in the histogram.

    Returns:
        The (even) number of degrees of freedom.
    """
    adjusted = num_buckets - distribution.degree_offset
    if adjusted % 2:
        adjusted += 1
    return adjusted


def normal_density(x: int) -> float:
    """Density of the discrete normal distribution at x."""
    distance = x - NORMAL_MEAN
    return NORMAL_MAGNITUDE * math.exp(-0.5 * distance * distance / NORMAL_VARIANCE)


def uniform_density(x: int) -> float:
    """Density of the uniform distribution over [0, BUCKET_TABLE_SIZE] at x."""
    if 0 <= x <= BUCKET_TABLE_SIZE:
        return UNIFORM_DENSITY
    return 0.0


def integral(f1: float, f2: float, dx: float) -> float:
    """Trapezoidal approximation of an integral over a small step dx."""
    return (f1 + f2) * dx / 2.0


DENSITY_FUNCTIONS: Dict[Distribution, Callable[[int], float]] = {
    Distribution.NORMAL: normal_density,
    Distribution.UNIFORM: uniform_density,
    Distribution.RANDOM: uniform_density,
}


class Histogram:
    """
    Histogram used to test one dimension of a cluster against a distribution.

    Attributes:
        distribution: Distribution the histogram tests for.
        num_buckets: Number of buckets.
        sample_count: Number of samples the expected counts are scaled to.
        confidence: Probability of a Type I error (alpha) of the test.
        chi_squared: Threshold the chi-squared statistic must not exceed.
        bucket: Map from each point of the discrete domain to a bucket.
        count: Observed number of samples in each bucket.
        expected: Expected number of samples in each bucket.
    """

    def __init__(
        self,
        distribution: Distribution,
        sample_count: int,
        confidence: float,
        chi_cache: ChiSquareCache,
    ):
        """
        Build the bucket map and expected counts for a distribution.

        Args:
            distribution: Distribution to test for.
            sample_count: Number of samples that will be tested.
            confidence: Probability of a Type I error.
            chi_cache: Cache used to look up the chi-squared threshold.

        Raises:
            ValueError: If sample_count is less than 1.
        """
        if sample_count < 1:
            raise ValueError("A histogram needs at least one sample")

        self.distribution = distribution
        self.num_buckets = optimum_number_of_buckets(sample_count)
        self.sample_count = sample_count
        self.confidence = confidence
        self.chi_squared = chi_cache.threshold(
            degrees_of_freedom(distribution, self.num_buckets), confidence
        )
        self.bucket = np.zeros(BUCKET_TABLE_SIZE, dtype=np.intp)
        self.count = np.zeros(self.num_buckets, dtype=np.int64)
        self.expected = np.zeros(self.num_buckets, dtype=np.float64)

        self._build_tables()
        logger.debug(
            "Built %s histogram with %d buckets for %d samples",
            distribution.value,
            self.num_buckets,
            sample_count,
        )

    def _build_tables(self) -> None:
        """
        Allocate buckets so that all have approximately equal probability.

        All supported distributions are symmetric, so the upper half of the
        domain is filled in and then mirrored onto the lower half.
        """
        density = DENSITY_FUNCTIONS[self.distribution]
        n = self.num_buckets
        bucket_probability = 1.0 / n

        current_bucket = n // 2
        if n % 2:
            next_boundary = bucket_probability / 2
        else:
            next_boundary = bucket_probability

        probability = 0.0
        last_density = density(BUCKET_TABLE_SIZE // 2)
        for i in range(BUCKET_TABLE_SIZE // 2, BUCKET_TABLE_SIZE):
            prob_density = density(i + 1)
            delta = integral(last_density, prob_density, 1.0)
            probability += delta
            if probability > next_boundary:
                if current_bucket < n - 1:
                    current_bucket += 1
                next_boundary += bucket_probability
            self.bucket[i] = current_bucket
            self.expected[current_bucket] += delta * self.sample_count
            last_density = prob_density

        # Place any leftover probability into the last bucket reached
        self.expected[current_bucket] += (0.5 - probability) * self.sample_count

        # Mirror the upper half of the map onto the lower half
        i, j = 0, BUCKET_TABLE_SIZE - 1
        while i < j:
            self.bucket[i] = n - self.bucket[j] - 1
            i += 1
            j -= 1

        # Fold the upper half of the expected counts onto the lower half
        i, j = 0, n - 1
        while i <= j:
            self.expected[i] += self.expected[j]
            i += 1
            j -= 1

    def adjust(self, new_sample_count: int) -> None:
        """
        Rescale the expected counts to a new number of samples.

        Args:
            new_sample_count: Number of samples to scale to.
        """
        factor = float(new_sample_count) / float(self.sample_count)
        self.expected *= factor
        self.sample_count = new_sample_count

    def set_confidence(self, confidence: float, chi_cache: ChiSquareCache) -> None:
        """
        Change the confidence level and recompute the threshold.

        Args:
            confidence: New probability of a Type I error.
            chi_cache: Cache used to look up the chi-squared threshold.
        """
        self.confidence = confidence
        self.chi_squared = chi_cache.threshold(
            degrees_of_freedom(self.distribution, self.num_buckets), confidence
        )

    def reset(self) -> None:
        """Set every observed count to zero."""
        self.count[:] = 0

    def table_index(
        self, desc: DimensionDescriptor, x: float, mean: float, stddev: float
    ) -> int:
        """
        Map a value onto the discrete domain of the distribution.

        For normal distributions ``mean`` and ``stddev`` have their usual
        meaning; for uniform and random distributions they are the centre
        and half the width of the range. Values beyond the domain are
        clipped to its ends.

        Args:
            desc: Description of the dimension (for circular wraparound).
            x: The value to map.
            mean: Centre of the distribution.
            stddev: Spread of the distribution; must not be zero.

        Returns:
            Index into the bucket map.
        """
        offset = desc.wrap_offset(x - mean)

        if self.distribution is Distribution.NORMAL:
            position = (offset / stddev) * NORMAL_STD_DEV + NORMAL_MEAN
        else:
            position = offset / (2 * stddev) * BUCKET_TABLE_SIZE + (
                BUCKET_TABLE_SIZE / 2.0
            )

        if position < 0:
            return 0
        if position > BUCKET_TABLE_SIZE - 1:
            return BUCKET_TABLE_SIZE - 1
        return int(math.floor(position))

    def fill(
        self,
        tree: ClusterTree,
        cluster: Cluster,
        dim: int,
        desc: DimensionDescriptor,
        mean: float,
        stddev: float,
    ) -> None:
        """
        Count the samples of a cluster that fall into each bucket.

        Only dimension ``dim`` of each sample is examined. A dimension with
        zero spread cannot be analyzed statistically, so a pseudo-analysis
        is used instead: samples exactly on the mean are spread round-robin
        across all buckets, samples above the mean go into the last bucket
        and samples below it into the first.

        Args:
            tree: Arena holding the cluster and its samples.
            cluster: The cluster whose samples are counted.
            dim: Dimension of the samples to examine.
            desc: Description of that dimension.
            mean: Centre of the distribution.
            stddev: Spread of the distribution.
        """
        self.reset()
        count = self.count

        if stddev == 0.0:
            last = self.num_buckets - 1
            i = 0
            for sample in tree.iter_samples(cluster):
                x = sample.features[dim]
                if x > mean:
                    bucket_id = last
                elif x < mean:
                    bucket_id = 0
                else:
                    bucket_id = i
                count[bucket_id] += 1
                i += 1
                if i >= self.num_buckets:
                    i = 0
        else:
            bucket = self.bucket
            for sample in tree.iter_samples(cluster):
                index = self.table_index(desc, sample.features[dim], mean, stddev)
                count[bucket[index]] += 1

    def chi_statistic(self) -> float:
        """
        Pearson's chi-squared statistic of the observed counts.

        Returns:
            Sum over buckets of (observed - expected)^2 / expected.
        """
        difference = self.count - self.expected
        return float(np.sum(difference * difference / self.expected))

    def passes(self) -> bool:
        """
        Apply the chi-squared goodness of fit test.

        Returns:
            True if the observed counts match the distribution, i.e. the
            statistic does not exceed the threshold.
        """
        return self.chi_statistic() <= self.chi_squared

    def estimate_size(self) -> int:
        """Estimate the memory used by the histogram in bytes."""
        return (
            sys.getsizeof(self)
            + self.bucket.nbytes
            + self.count.nbytes
            + self.expected.nbytes
        )

    def __repr__(self) -> str:
        return (
            f"Histogram(distribution={self.distribution.value}, "
            f"buckets={self.num_buckets}, samples={self.sample_count}, "
            f"chi_squared={self.chi_squared:.4g})"
        )


class HistogramPool:
    """
    Pool of histograms reused across goodness of fit tests.

    Building a histogram integrates its density over the whole discrete
    domain, so released histograms are kept and handed out again for any
    request with the same distribution and number of buckets, after
    rescaling their expected counts and threshold.
    """

    def __init__(self, chi_cache: ChiSquareCache):
        """
        Initialize an empty pool.

        Args:
            chi_cache: Cache used to look up chi-squared thresholds.
        """
        self._chi_cache = chi_cache
        self._free: Dict[Tuple[Distribution, int], List[Histogram]] = defaultdict(list)

    @property
    def chi_cache(self) -> ChiSquareCache:
        """Get the chi-squared cache used by the pool."""
        return self._chi_cache

    def get(
        self, distribution: Distribution, sample_count: int, confidence: float
    ) -> Histogram:
        """
        Get a histogram ready to test samples against a distribution.

        Args:
            distribution: Distribution to test for.
            sample_count: Number of samples that will be tested.
            confidence: Probability of a Type I error.

        Returns:
            A histogram with zeroed observed counts.
        """
        num_buckets = optimum_number_of_buckets(sample_count)
        free = self._free.get((distribution, num_buckets))
        if not free:
            return Histogram(distribution, sample_count, confidence, self._chi_cache)

        histogram = free.pop()
        if sample_count != histogram.sample_count:
            histogram.adjust(sample_count)
        if confidence != histogram.confidence:
            histogram.set_confidence(confidence, self._chi_cache)
        histogram.reset()
        return histogram

    def release(self, histogram: Optional[Histogram]) -> None:
        """
        Return a histogram to the pool for later reuse.

        Args:
            histogram: The histogram to release; None is ignored.
        """
        if histogram is not None:
            self._free[(histogram.distribution, histogram.num_buckets)].append(
                histogram
            )

    def clear(self) -> None:
        """Drop every pooled histogram."""
        self._free.clear()

    def __len__(self) -> int:
        return sum(len(free) for free in self._free.values())

    def estimate_size(self) -> int:
        """Estimate the memory used by the pooled histograms in bytes."""
        size = sys.getsizeof(self)
        for free in self._free.values():
            size += sum(h.estimate_size() for h in free)
        return size
