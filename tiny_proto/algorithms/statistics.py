"""
Cluster statistics for TinyProto.

Computes the full covariance matrix of the samples in a cluster, the range
of their offsets from the cluster mean, and the geometric mean of the
per-dimension variances. Offsets on circular dimensions are wrapped before
accumulation, which is why the statistics are computed from the samples
rather than maintained incrementally as clusters are merged.
"""

from dataclasses import dataclass
from typing import Sequence

import numpy as np

from tiny_proto.algorithms.cluster_tree import Cluster, ClusterTree
from tiny_proto.core.errors import AllocationFailure
from tiny_proto.core.params import DimensionDescriptor


@dataclass(frozen=True)
class Statistics:
    """
    Statistical summary of the samples in one cluster.

    Attributes:
        covariance: N x N covariance matrix (unbiased estimate).
        min: Largest negative offset from the mean in each dimension.
        max: Largest positive offset from the mean in each dimension.
        avg_variance: Geometric mean of the diagonal of the covariance.
    """

    covariance: np.ndarray
    min: np.ndarray
    max: np.ndarray
    avg_variance: float

    def variance(self, dim: int) -> float:
        """Get the variance of one dimension."""
        return float(self.covariance[dim, dim])


def compute_statistics(
    tree: ClusterTree,
    cluster: Cluster,
    param_desc: Sequence[DimensionDescriptor],
) -> Statistics:
    """
    Compute the statistics of every sample beneath a cluster.

    Args:
        tree: Arena holding the cluster and its samples.
        cluster: The cluster to summarize.
        param_desc: Description of each dimension.

    Returns:
        The statistics of the cluster. Single-sample clusters yield a zero
        covariance matrix and zero offsets.

    Raises:
        AllocationFailure: If the offset matrix cannot be allocated.
    """
    n = len(param_desc)
    try:
        offsets = np.empty((cluster.count, n), dtype=np.float64)
    except MemoryError as e:
        raise AllocationFailure(
            f"Cannot allocate statistics for {cluster.count} samples"
        ) from e

    row = 0
    for sample in tree.iter_samples(cluster):
        offsets[row] = [
            desc.wrap_offset(x - m)
            for desc, x, m in zip(param_desc, sample.features, cluster.mean)
        ]
        row += 1

    # The running min/max start at zero, so they never cross the mean
    min_offset = np.minimum(offsets.min(axis=0), 0.0) if row else np.zeros(n)
    max_offset = np.maximum(offsets.max(axis=0), 0.0) if row else np.zeros(n)

    # Use count - 1 for an unbiased estimate, but never divide by zero
    denominator = cluster.count - 1 if cluster.count > 1 else 1
    covariance = (offsets.T @ offsets) / denominator

    avg_variance = float(np.prod(np.diag(covariance)) ** (1.0 / n))

    for array in (covariance, min_offset, max_offset):
        array.setflags(write=False)
    return Statistics(covariance, min_offset, max_offset, avg_variance)
