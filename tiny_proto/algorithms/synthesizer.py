"""
Prototype synthesis for TinyProto.

Walks a finished cluster tree top-down. At each cluster the synthesizer
tries to describe the cluster's samples with a single prototype of the
configured style; clusters that cannot be described are split into their
two children, which are then tried in turn. The walk uses an explicit stack
and processes left subtrees before right ones.

A cluster is rejected (split) when:
    - too many of its training characters contributed more than one sample,
    - two of its essential dimensions are correlated beyond the configured
      independence bound, or
    - no distribution of the requested style passes the chi-squared
      goodness of fit test in every essential dimension.

Clusters too small to analyze always produce an insignificant prototype.
"""

import logging
import math
import sys
from typing import List, Optional, Sequence, Set

import numpy as np

from tiny_proto.algorithms.chi_square import ChiSquareCache
from tiny_proto.algorithms.cluster_tree import Cluster, ClusterTree
from tiny_proto.algorithms.histogram import Histogram, HistogramPool
from tiny_proto.algorithms.prototype import (
    EllipticalPrototype,
    MixedPrototype,
    Prototype,
    SphericalPrototype,
    new_elliptical,
    new_mixed,
    new_spherical,
)
from tiny_proto.algorithms.statistics import Statistics, compute_statistics
from tiny_proto.core.params import (
    MIN_SAMPLES_NEEDED,
    ClusterConfig,
    DimensionDescriptor,
    Distribution,
    ProtoStyle,
)

logger = logging.getLogger(__name__)


class ClusteringCache:
    """
    Caches owned by one clusterer and shared by all of its synthesis runs.

    Attributes:
        chi_squared: Memo of chi-squared thresholds.
        histograms: Pool of reusable histograms.
    """

    def __init__(self) -> None:
        self.chi_squared = ChiSquareCache()
        self.histograms = HistogramPool(self.chi_squared)

    def clear(self) -> None:
        """Drop every cached threshold and pooled histogram."""
        self.histograms.clear()
        self.chi_squared.clear()

    def estimate_size(self) -> int:
        """Estimate the memory used by the caches in bytes."""
        return sys.getsizeof(self) + self.histograms.estimate_size()


def independent(
    param_desc: Sequence[DimensionDescriptor],
    covariance: np.ndarray,
    independence_bound: float,
) -> bool:
    """
    Check that no two essential dimensions are strongly correlated.

    The coefficient used for each pair is the square root of the absolute
    correlation coefficient. Dimensions with zero variance are treated as
    uncorrelated with everything.

    Args:
        param_desc: Description of each dimension.
        covariance: Covariance matrix of the cluster.
        independence_bound: Largest coefficient allowed.

    Returns:
        True if every pair of essential dimensions is within the bound.
    """
    n = len(param_desc)
    for i in range(n):
        if param_desc[i].non_essential:
            continue
        var_i = covariance[i, i]
        for j in range(i + 1, n):
            if param_desc[j].non_essential:
                continue
            var_j = covariance[j, j]
            if var_i == 0.0 or var_j == 0.0:
                coefficient = 0.0
            else:
                cov = covariance[i, j]
                coefficient = math.sqrt(math.sqrt(cov * cov / (var_i * var_j)))
            if coefficient > independence_bound:
                return False
    return True


class PrototypeSynthesizer:
    """
    Turns a cluster tree into a list of prototypes for one configuration.
    """

    def __init__(
        self,
        tree: ClusterTree,
        config: ClusterConfig,
        num_chars: int,
        cache: ClusteringCache,
    ):
        """
        Initialize a synthesizer.

        Args:
            tree: The finished cluster tree.
            config: Parameters controlling prototype generation.
            num_chars: Number of training characters (largest id + 1).
            cache: Caches owned by the clusterer.
        """
        self._tree = tree
        self._config = config
        self._num_chars = num_chars
        self._cache = cache
        self._param_desc = tree.param_desc
        self._min_samples = max(
            MIN_SAMPLES_NEEDED, int(config.min_samples_fraction * num_chars)
        )
        self.splits = 0

    @property
    def min_samples(self) -> int:
        """Smallest cluster that is analyzed statistically."""
        return self._min_samples

    def run(self) -> List[Prototype]:
        """
        Compute the prototypes for the whole tree.

        Returns:
            The prototypes in the order their clusters were visited.
        """
        prototypes: List[Prototype] = []
        root = self._tree.root
        if root is None:
            return prototypes

        stack = [root]
        while stack:
            cluster = stack.pop()
            proto = self.make_prototype(cluster)
            if proto is not None:
                prototypes.append(proto)
            else:
                self.splits += 1
                stack.append(self._tree[cluster.right])
                stack.append(self._tree[cluster.left])

        logger.info(
            "Synthesized %d %s prototypes after %d splits",
            len(prototypes),
            self._config.proto_style.value,
            self.splits,
        )
        return prototypes

    def make_prototype(self, cluster: Cluster) -> Optional[Prototype]:
        """
        Try to describe a cluster with a single prototype.

        Args:
            cluster: The cluster to describe.

        Returns:
            The prototype, or None if the cluster should be split.
        """
        config = self._config

        if self.multiple_char_samples(cluster):
            logger.debug("Cluster %d rejected: repeated characters", cluster.index)
            return None

        stats = compute_statistics(self._tree, cluster, self._param_desc)

        proto = self.make_degenerate(cluster, stats)
        if proto is not None:
            return self._accept(cluster, proto)

        if not independent(
            self._param_desc, stats.covariance, config.independence_bound
        ):
            logger.debug("Cluster %d rejected: dependent dimensions", cluster.index)
            return None

        pool = self._cache.histograms
        normal = pool.get(Distribution.NORMAL, cluster.count, config.confidence)
        try:
            style = config.proto_style
            if style is ProtoStyle.SPHERICAL:
                proto = self.make_spherical(cluster, stats, normal)
            elif style is ProtoStyle.ELLIPTICAL:
                proto = self.make_elliptical(cluster, stats, normal)
            elif style is ProtoStyle.MIXED:
                proto = self.make_mixed(cluster, stats, normal)
            else:
                proto = (
                    self.make_spherical(cluster, stats, normal)
                    or self.make_elliptical(cluster, stats, normal)
                    or self.make_mixed(cluster, stats, normal)
                )
        finally:
            pool.release(normal)

        if proto is None:
            logger.debug("Cluster %d rejected: no distribution fits", cluster.index)
            return None
        return self._accept(cluster, proto)

    def _accept(self, cluster: Cluster, proto: Prototype) -> Prototype:
        cluster.has_prototype = True
        proto.attach(self._tree, cluster.index)
        return proto

    def multiple_char_samples(self, cluster: Cluster) -> bool:
        """
        Check whether too many characters occur more than once in a cluster.

        A running estimate of the fraction of characters with more than one
        sample in the cluster is updated at every repeated sample, and the
        check fails as soon as it exceeds the configured maximum.

        Args:
            cluster: The cluster to examine.

        Returns:
            True if the cluster should be split.
        """
        max_illegal = self._config.max_illegal_fraction
        num_chars = cluster.count
        num_illegal = 0
        seen: Set[int] = set()
        illegal: Set[int] = set()

        for sample in self._tree.iter_samples(cluster):
            char_id = sample.char_id
            if char_id not in seen:
                seen.add(char_id)
                continue
            if char_id not in illegal:
                illegal.add(char_id)
                num_illegal += 1
            num_chars -= 1
            if num_illegal / num_chars > max_illegal:
                return True
        return False

    def make_degenerate(
        self, cluster: Cluster, stats: Statistics
    ) -> Optional[Prototype]:
        """
        Build an insignificant prototype for a cluster too small to analyze.

        A cluster is degenerate if it holds fewer than ``min_samples``
        samples or is a single sample, which cannot be split any further.
        Automatic style produces an elliptical prototype.

        Args:
            cluster: The cluster to check.
            stats: Statistics of the cluster.

        Returns:
            The prototype, or None if the cluster is not degenerate.
        """
        if cluster.count >= self._min_samples and not cluster.is_leaf:
            return None

        style = self._config.proto_style
        if style is ProtoStyle.SPHERICAL:
            proto: Prototype = new_spherical(cluster, stats)
        elif style is ProtoStyle.MIXED:
            proto = new_mixed(cluster, stats)
        else:
            proto = new_elliptical(cluster, stats)
        proto.significant = False
        return proto

    def make_spherical(
        self, cluster: Cluster, stats: Statistics, histogram: Histogram
    ) -> Optional[SphericalPrototype]:
        """
        Test whether a cluster is spherical normal.

        Args:
            cluster: The cluster to test.
            stats: Statistics of the cluster.
            histogram: Normal histogram sized for the cluster.

        Returns:
            A spherical prototype, or None if any essential dimension fails.
        """
        stddev = math.sqrt(stats.avg_variance)
        for dim, desc in enumerate(self._param_desc):
            if desc.non_essential:
                continue
            histogram.fill(self._tree, cluster, dim, desc, cluster.mean[dim], stddev)
            if not histogram.passes():
                return None
        return new_spherical(cluster, stats)

    def make_elliptical(
        self, cluster: Cluster, stats: Statistics, histogram: Histogram
    ) -> Optional[EllipticalPrototype]:
        """
        Test whether a cluster is elliptical normal.

        Args:
            cluster: The cluster to test.
            stats: Statistics of the cluster.
            histogram: Normal histogram sized for the cluster.

        Returns:
            An elliptical prototype, or None if any essential dimension fails.
        """
        for dim, desc in enumerate(self._param_desc):
            if desc.non_essential:
                continue
            stddev = math.sqrt(stats.variance(dim))
            histogram.fill(self._tree, cluster, dim, desc, cluster.mean[dim], stddev)
            if not histogram.passes():
                return None
        return new_elliptical(cluster, stats)

    def make_mixed(
        self, cluster: Cluster, stats: Statistics, normal: Histogram
    ) -> Optional[MixedPrototype]:
        """
        Find a distribution for every essential dimension of a cluster.

        Each dimension is tried as normal, then random, then uniform.

        Args:
            cluster: The cluster to test.
            stats: Statistics of the cluster.
            normal: Normal histogram sized for the cluster.

        Returns:
            A mixed prototype, or None if some dimension fits no distribution.
        """
        proto = new_mixed(cluster, stats)
        pool = self._cache.histograms
        confidence = self._config.confidence
        random: Optional[Histogram] = None
        uniform: Optional[Histogram] = None
        tree = self._tree

        try:
            for dim, desc in enumerate(self._param_desc):
                if desc.non_essential:
                    continue

                normal.fill(
                    tree,
                    cluster,
                    dim,
                    desc,
                    proto.mean[dim],
                    math.sqrt(proto.variance[dim]),
                )
                if normal.passes():
                    continue

                if random is None:
                    random = pool.get(Distribution.RANDOM, cluster.count, confidence)
                proto.make_dim_random(dim, desc)
                random.fill(
                    tree, cluster, dim, desc, proto.mean[dim], proto.variance[dim]
                )
                if random.passes():
                    continue

                if uniform is None:
                    uniform = pool.get(Distribution.UNIFORM, cluster.count, confidence)
                proto.make_dim_uniform(dim, cluster.mean[dim], stats)
                uniform.fill(
                    tree, cluster, dim, desc, proto.mean[dim], proto.variance[dim]
                )
                if uniform.passes():
                    continue

                return None
        finally:
            pool.release(random)
            pool.release(uniform)

        return proto
