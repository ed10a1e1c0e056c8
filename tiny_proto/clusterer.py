"""
Clusterer engine for TinyProto.

The clusterer is the public entry point of the library. Samples are added
one at a time, then ``cluster`` builds the agglomerative cluster tree (once)
and synthesizes prototypes for a configuration. Calling ``cluster`` again
with a different configuration reuses the tree and replaces the previous
prototypes.

Example:
    >>> desc = [DimensionDescriptor(0.0, 1.0), DimensionDescriptor(0.0, 1.0)]
    >>> clusterer = Clusterer(2, desc)
    >>> sample = clusterer.add_sample([0.5, 0.5], char_id=0)
    >>> prototypes = clusterer.cluster(ClusterConfig(proto_style="automatic"))
"""

import logging
import math
import sys
import time
from collections import Counter
from typing import Any, Dict, Iterator, List, Optional, Sequence, Union

from tiny_proto.algorithms.cluster_tree import (
    Cluster,
    ClusterTree,
    Sample,
    build_cluster_tree,
)
from tiny_proto.algorithms.heap import BinaryHeap
from tiny_proto.algorithms.kdtree import KDTree
from tiny_proto.algorithms.prototype import Prototype
from tiny_proto.algorithms.synthesizer import ClusteringCache, PrototypeSynthesizer
from tiny_proto.core.errors import AllocationFailure, ConfigurationError
from tiny_proto.core.params import ClusterConfig, DimensionDescriptor

logger = logging.getLogger(__name__)


class Clusterer:
    """
    Groups labeled samples into clusters and describes them with prototypes.

    Attributes:
        sample_size: Number of dimensions of every sample.
        param_desc: Description of each dimension.
    """

    def __init__(
        self,
        sample_size: int,
        param_desc: Sequence[DimensionDescriptor],
        memory_limit_bytes: Optional[int] = None,
    ):
        """
        Initialize an empty clusterer.

        Args:
            sample_size: Number of dimensions of every sample.
            param_desc: Description of each dimension.
            memory_limit_bytes: Optional maximum memory usage in bytes.
                                None means no explicit limit.

        Raises:
            TypeError: If sample_size is not an integer or a descriptor is
                       not a DimensionDescriptor.
            ValueError: If sample_size is not positive or does not match the
                        number of descriptors.
        """
        if not isinstance(sample_size, int) or isinstance(sample_size, bool):
            raise TypeError("sample_size must be an integer")
        if sample_size < 1:
            raise ValueError("sample_size must be positive")
        if len(param_desc) != sample_size:
            raise ValueError(
                f"Expected {sample_size} dimension descriptors, got {len(param_desc)}"
            )
        for desc in param_desc:
            if not isinstance(desc, DimensionDescriptor):
                raise TypeError("param_desc must contain DimensionDescriptor objects")

        self._sample_size = sample_size
        self._param_desc = tuple(param_desc)
        self._memory_limit_bytes = memory_limit_bytes

        self._tree = ClusterTree(self._param_desc)
        self._index: Optional[KDTree[int]] = None
        self._cache = ClusteringCache()
        self._prototypes: Optional[List[Prototype]] = None
        self._config: Optional[ClusterConfig] = None
        self._num_samples = 0
        self._num_chars = 0
        self._tree_built = False

        self._last_build_time: float = 0.0
        self._last_cluster_time: float = 0.0
        self._cluster_runs = 0

    @property
    def sample_size(self) -> int:
        """Get the number of dimensions of every sample."""
        return self._sample_size

    @property
    def param_desc(self) -> Sequence[DimensionDescriptor]:
        """Get the description of each dimension."""
        return self._param_desc

    @property
    def num_samples(self) -> int:
        """Get the number of samples added."""
        return self._num_samples

    @property
    def num_chars(self) -> int:
        """Get the number of training characters (largest id + 1)."""
        return self._num_chars

    @property
    def is_clustered(self) -> bool:
        """Check whether the cluster tree has been built."""
        return self._tree_built

    @property
    def is_disposed(self) -> bool:
        """Check whether the clusterer has been released."""
        return self._tree.is_disposed

    @property
    def root(self) -> Optional[Cluster]:
        """Get the root of the cluster tree, or None before clustering."""
        return self._tree.root

    @property
    def prototypes(self) -> List[Prototype]:
        """Get the prototypes of the last clustering run."""
        return list(self._prototypes) if self._prototypes is not None else []

    @property
    def config(self) -> Optional[ClusterConfig]:
        """Get the configuration of the last clustering run."""
        return self._config

    @property
    def cache(self) -> ClusteringCache:
        """Get the caches shared by the clustering runs."""
        return self._cache

    def _check_usable(self) -> None:
        if self._tree.is_disposed:
            raise ConfigurationError("The clusterer has been disposed")

    def add_sample(self, features: Sequence[float], char_id: int) -> Sample:
        """
        Add a sample to be clustered.

        Args:
            features: Feature vector with one value per dimension.
            char_id: Non-negative id of the training character the sample
                     came from.

        Returns:
            The stored sample.

        Raises:
            ConfigurationError: If clustering has already started or the
                                clusterer has been disposed.
            TypeError: If char_id is not an integer.
            ValueError: If char_id is negative, or the features have the
                        wrong length or contain non-finite values.
            AllocationFailure: If memory runs out while storing the sample.
        """
        self._check_usable()
        if self._tree_built:
            raise ConfigurationError("Cannot add samples after clustering has started")
        if not isinstance(char_id, int) or isinstance(char_id, bool):
            raise TypeError("char_id must be an integer")
        if char_id < 0:
            raise ValueError("char_id must be non-negative")
        if len(features) != self._sample_size:
            raise ValueError(
                f"Sample has {len(features)} features, expected {self._sample_size}"
            )
        if not all(math.isfinite(x) for x in features):
            raise ValueError("Sample features must be finite")

        try:
            sample = self._tree.add_sample(features, char_id)
        except MemoryError as e:
            raise AllocationFailure("Cannot allocate a new sample") from e

        self._num_samples += 1
        if char_id >= self._num_chars:
            self._num_chars = char_id + 1
        return sample

    def cluster(self, config: Optional[ClusterConfig] = None) -> List[Prototype]:
        """
        Compute prototypes for the samples added so far.

        The cluster tree is built on the first call. Later calls discard the
        previous prototypes, whose cluster references stop resolving, and
        compute new ones from the same tree.

        Args:
            config: Parameters controlling prototype generation; defaults
                    to ``ClusterConfig()``.

        Returns:
            The prototypes, in the order their clusters were visited.

        Raises:
            ConfigurationError: If the clusterer has been disposed.
            AllocationFailure: If memory runs out while clustering.
        """
        self._check_usable()
        if config is None:
            config = ClusterConfig()

        if not self._tree_built:
            self._build_tree()
        if self._prototypes is not None:
            self._discard_prototypes()

        start_time = time.time()
        synthesizer = PrototypeSynthesizer(
            self._tree, config, self._num_chars, self._cache
        )
        try:
            self._prototypes = synthesizer.run()
        except AllocationFailure:
            raise
        except MemoryError as e:
            raise AllocationFailure("Ran out of memory while computing prototypes") from e
        self._config = config
        self._last_cluster_time = time.time() - start_time
        self._cluster_runs += 1
        return list(self._prototypes)

    def _build_tree(self) -> None:
        start_time = time.time()
        try:
            # All samples are known now, so the index is loaded balanced
            self._index = KDTree(self._param_desc)
            self._index.load(
                (cluster.mean, cluster.index) for cluster in self._tree.iter_clusters()
            )
            build_cluster_tree(self._tree, self._index, BinaryHeap())
        except MemoryError as e:
            self._tree.discard_merges()
            raise AllocationFailure("Ran out of memory while building clusters") from e
        finally:
            # The spatial index is only needed while building the tree
            self._index = None
        self._tree_built = True
        self._last_build_time = time.time() - start_time
        logger.debug(
            "Cluster tree for %d samples built in %.3fs",
            self._num_samples,
            self._last_build_time,
        )

    def _discard_prototypes(self) -> None:
        for proto in self._prototypes:
            proto.detach()
        self._tree.clear_prototype_flags()
        self._prototypes = None

    def get_samples(
        self, target: Union[Cluster, Prototype, int, None] = None
    ) -> Iterator[Sample]:
        """
        Enumerate the samples beneath a cluster.

        Args:
            target: A cluster, its arena index, or a prototype built by this
                    clusterer. Defaults to the root of the tree.

        Returns:
            An iterator over the samples, left subtree first.

        Raises:
            ConfigurationError: If the clusterer has been disposed.
            ValueError: If the target does not resolve to a cluster.
        """
        self._check_usable()
        if target is None:
            cluster = self._tree.root
        elif isinstance(target, Prototype):
            cluster = target.cluster
        elif isinstance(target, Cluster):
            cluster = target
        else:
            cluster = self._tree.get(target)

        if cluster is None:
            if target is None:
                return iter(())
            raise ValueError(f"{target!r} does not refer to a cluster")
        return self._tree.iter_samples(cluster)

    def dispose(self) -> None:
        """
        Release the spatial index, the cluster tree and the caches.

        Prototypes already returned stay usable, but their cluster
        references resolve to None afterwards.
        """
        if self._tree.is_disposed:
            return
        self._tree.dispose()
        self._index = None
        self._prototypes = None
        self._cache.clear()
        logger.debug("Disposed clusterer with %d samples", self._num_samples)

    def estimate_size(self) -> int:
        """
        Estimate the current memory usage of this clusterer in bytes.

        Returns:
            Estimated memory usage in bytes.
        """
        size = sys.getsizeof(self) + sys.getsizeof(self.__dict__)
        size += self._tree.estimate_size()
        size += self._cache.estimate_size()
        if self._index is not None:
            size += self._index.estimate_size()
        if self._prototypes is not None:
            size += sum(p.estimate_size() for p in self._prototypes)
        return size

    def check_memory_limit(self) -> bool:
        """
        Check whether the clusterer is within its memory limit.

        Returns:
            True if there is no limit or usage is within it.
        """
        if self._memory_limit_bytes is None:
            return True
        return self.estimate_size() <= self._memory_limit_bytes

    def get_stats(self) -> Dict[str, Any]:
        """
        Get detailed statistics about the current state of the clusterer.

        Returns:
            A dictionary containing sample, tree, prototype, cache, memory
            and timing statistics.
        """
        prototypes = self._prototypes or []
        stats: Dict[str, Any] = {
            "type": self.__class__.__name__,
            "sample_size": self._sample_size,
            "num_samples": self._num_samples,
            "num_chars": self._num_chars,
            "num_clusters": len(self._tree),
            "is_clustered": self._tree_built,
            "is_disposed": self._tree.is_disposed,
            "num_prototypes": len(prototypes),
            "significant_prototypes": sum(1 for p in prototypes if p.significant),
            "prototype_styles": dict(Counter(p.style.value for p in prototypes)),
            "cached_thresholds": len(self._cache.chi_squared),
            "pooled_histograms": len(self._cache.histograms),
            "cluster_runs": self._cluster_runs,
            "memory_bytes": self.estimate_size(),
        }

        if self._memory_limit_bytes is not None:
            stats["memory_limit_bytes"] = self._memory_limit_bytes
            stats["memory_usage_pct"] = (
                stats["memory_bytes"] / self._memory_limit_bytes
            ) * 100

        if self._tree_built:
            stats["build_time_s"] = self._last_build_time
        if self._cluster_runs > 0:
            stats["last_cluster_time_s"] = self._last_cluster_time
            stats["config"] = self._config.to_dict()

        return stats

    def __len__(self) -> int:
        return self._num_samples

    def __repr__(self) -> str:
        return (
            f"Clusterer(sample_size={self._sample_size}, "
            f"samples={self._num_samples}, clustered={self._tree_built})"
        )
