"""
Exceptions raised by TinyProto.

Only genuine failures are modelled as exceptions. A cluster that fails the
independence test, a distribution fit, or the multi-character filter is
ordinary control flow and is reported with ``None``/``False`` results.
"""


class ClusteringError(Exception):
    """Base class for all clustering failures."""


class ConfigurationError(ClusteringError, ValueError):
    """
    Raised when the clusterer is used out of order.

    Examples are adding a sample after the cluster tree has been built or
    using a clusterer after it has been disposed.
    """


class AllocationFailure(ClusteringError, MemoryError):
    """Raised when memory runs out while building samples, clusters or statistics."""


class NumericNonConvergence(ClusteringError, ArithmeticError):
    """
    Raised when the root finder cannot reach the requested accuracy.

    Attributes:
        iterations: Number of iterations performed before giving up.
        last_estimate: The last root estimate computed.
    """

    def __init__(self, message: str, iterations: int = 0, last_estimate: float = 0.0):
        super().__init__(message)
        self.iterations = iterations
        self.last_estimate = last_estimate
