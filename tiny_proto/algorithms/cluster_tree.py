"""
Agglomerative cluster tree for TinyProto.

Samples are combined bottom-up into a binary tree. Every sample starts as a
leaf cluster in a spatial index; the closest pair of active clusters is
repeatedly merged into a new parent cluster until only the root remains.
Each internal node therefore represents the union of the samples in its two
subtrees.

Clusters live in an arena (``ClusterTree``) and refer to each other by
integer index. Prototypes keep such an index as a non-owning reference that
resolves to ``None`` once the arena has been disposed.
"""

import logging
import sys
from dataclasses import dataclass
from typing import Iterator, List, Optional, Sequence, Tuple

from tiny_proto.core.base import PriorityQueue, SpatialIndex
from tiny_proto.core.params import DimensionDescriptor

logger = logging.getLogger(__name__)

# Number of neighbors requested from the index; one of them may be the
# query cluster itself.
MAX_NEIGHBORS = 2


@dataclass(frozen=True)
class Sample:
    """
    A single training sample.

    Attributes:
        features: The feature vector.
        char_id: Identifier of the training character the sample came from.
        index: Arena index of the leaf cluster wrapping this sample.
    """

    features: Tuple[float, ...]
    char_id: int
    index: int


class Cluster:
    """
    A node of the cluster tree.

    A leaf wraps exactly one sample and has no children; an internal node
    has exactly two children and no sample.
    """

    __slots__ = [
        "index",
        "mean",
        "count",
        "left",
        "right",
        "sample",
        "merged",
        "has_prototype",
    ]

    def __init__(
        self,
        index: int,
        mean: Tuple[float, ...],
        count: int,
        left: Optional[int] = None,
        right: Optional[int] = None,
        sample: Optional[Sample] = None,
    ):
        self.index = index
        self.mean = mean
        self.count = count
        self.left = left
        self.right = right
        self.sample = sample
        self.merged = False
        self.has_prototype = False

    @property
    def is_leaf(self) -> bool:
        """Check whether this cluster wraps a single sample."""
        return self.left is None

    @property
    def char_id(self) -> int:
        """Character id of the wrapped sample, or -1 for internal clusters."""
        return self.sample.char_id if self.sample is not None else -1

    def __repr__(self) -> str:
        return (
            f"Cluster(index={self.index}, count={self.count}, "
            f"left={self.left}, right={self.right})"
        )


def merge_means(
    param_desc: Sequence[DimensionDescriptor],
    n1: int,
    m1: Sequence[float],
    n2: int,
    m2: Sequence[float],
) -> Tuple[float, ...]:
    """
    Compute the mean of the union of two clusters.

    On circular dimensions, when the two means are more than half a range
    apart, the upper one is shifted down by one full range before averaging
    and the result is normalized back above the minimum.

    Args:
        param_desc: Description of each dimension.
        n1: Number of samples in the first cluster.
        m1: Mean of the first cluster.
        n2: Number of samples in the second cluster.
        m2: Mean of the second cluster.

    Returns:
        The count-weighted mean of the two clusters.
    """
    n = n1 + n2
    mean = []
    for desc, a, b in zip(param_desc, m1, m2):
        if desc.circular:
            if (b - a) > desc.half_range:
                value = (n1 * a + n2 * (b - desc.range)) / n
                if value < desc.min:
                    value += desc.range
            elif (a - b) > desc.half_range:
                value = (n1 * (a - desc.range) + n2 * b) / n
                if value < desc.min:
                    value += desc.range
            else:
                value = (n1 * a + n2 * b) / n
        else:
            value = (n1 * a + n2 * b) / n
        mean.append(value)
    return tuple(mean)


class ClusterTree:
    """
    Arena holding every sample and cluster of one clusterer.

    Nodes are addressed by the stable integer index they were created with.
    After ``dispose`` every lookup resolves to ``None``.
    """

    def __init__(self, param_desc: Sequence[DimensionDescriptor]):
        self._param_desc: Tuple[DimensionDescriptor, ...] = tuple(param_desc)
        self._nodes: List[Cluster] = []
        self._root: Optional[int] = None
        self._disposed = False

    @property
    def param_desc(self) -> Tuple[DimensionDescriptor, ...]:
        """Get the dimension descriptors of the feature space."""
        return self._param_desc

    @property
    def root(self) -> Optional[Cluster]:
        """Get the root cluster, or None if the tree has not been built."""
        if self._root is None:
            return None
        return self.get(self._root)

    @property
    def is_disposed(self) -> bool:
        """Check whether the arena has been released."""
        return self._disposed

    def get(self, index: Optional[int]) -> Optional[Cluster]:
        """
        Resolve an arena index.

        Args:
            index: Index of the cluster.

        Returns:
            The cluster, or None if the index is unknown or the arena has
            been disposed.
        """
        if index is None or self._disposed:
            return None
        if 0 <= index < len(self._nodes):
            return self._nodes[index]
        return None

    def __getitem__(self, index: int) -> Cluster:
        cluster = self.get(index)
        if cluster is None:
            raise KeyError(index)
        return cluster

    def __len__(self) -> int:
        return len(self._nodes)

    def add_sample(self, features: Sequence[float], char_id: int) -> Sample:
        """
        Create a leaf cluster wrapping a new sample.

        Args:
            features: The feature vector.
            char_id: Identifier of the character the sample came from.

        Returns:
            The new sample.
        """
        index = len(self._nodes)
        sample = Sample(tuple(float(x) for x in features), char_id, index)
        self._nodes.append(Cluster(index, sample.features, 1, sample=sample))
        return sample

    def merge(self, left: int, right: int) -> Cluster:
        """
        Create a parent cluster for two existing clusters.

        Both children are marked as merged.

        Args:
            left: Index of the first child.
            right: Index of the second child.

        Returns:
            The new parent cluster.
        """
        a = self._nodes[left]
        b = self._nodes[right]
        a.merged = True
        b.merged = True
        mean = merge_means(self._param_desc, a.count, a.mean, b.count, b.mean)
        parent = Cluster(len(self._nodes), mean, a.count + b.count, left, right)
        self._nodes.append(parent)
        return parent

    def set_root(self, index: Optional[int]) -> None:
        """Record the root of the finished tree."""
        self._root = index

    def discard_merges(self) -> None:
        """
        Drop every internal cluster, leaving only the sample leaves.

        Used to roll back a build that did not finish.
        """
        del self._nodes[self._num_leaves():]
        for cluster in self._nodes:
            cluster.merged = False
            cluster.has_prototype = False
        self._root = None

    def _num_leaves(self) -> int:
        # Leaves are created before any merge, so they form a prefix
        for position, cluster in enumerate(self._nodes):
            if not cluster.is_leaf:
                return position
        return len(self._nodes)

    def iter_samples(self, cluster: Cluster) -> Iterator[Sample]:
        """
        Enumerate the samples beneath a cluster.

        The walk uses an explicit stack and visits the left subtree before
        the right one.

        Args:
            cluster: The cluster whose samples are wanted.

        Yields:
            Each sample in the subtree.
        """
        nodes = self._nodes
        stack = [cluster]
        while stack:
            current = stack.pop()
            while current.left is not None:
                stack.append(nodes[current.right])
                current = nodes[current.left]
            yield current.sample

    def iter_clusters(self) -> Iterator[Cluster]:
        """Iterate over every node in creation order."""
        if self._disposed:
            return iter(())
        return iter(self._nodes)

    def clear_prototype_flags(self) -> None:
        """Mark every cluster as not yet used by a prototype."""
        for cluster in self._nodes:
            cluster.has_prototype = False

    def dispose(self) -> None:
        """Release every node; later lookups resolve to None."""
        self._nodes = []
        self._root = None
        self._disposed = True

    def estimate_size(self) -> int:
        """
        Estimate the memory used by the arena in bytes.

        Returns:
            Approximate size of the node list, nodes and mean vectors.
        """
        size = sys.getsizeof(self) + sys.getsizeof(self._nodes)
        if self._nodes:
            sample = self._nodes[0]
            per_node = sys.getsizeof(sample) + sys.getsizeof(sample.mean)
            per_node += len(self._param_desc) * sys.getsizeof(0.0)
            size += len(self._nodes) * per_node
        return size


class _Candidate:
    """A cluster together with its current nearest neighbor."""

    __slots__ = ["cluster", "neighbor"]

    def __init__(self, cluster: int, neighbor: int):
        self.cluster = cluster
        self.neighbor = neighbor

    def __repr__(self) -> str:
        return f"_Candidate(cluster={self.cluster}, neighbor={self.neighbor})"


def find_nearest_neighbor(
    index: SpatialIndex[int], cluster: Cluster
) -> Tuple[Optional[int], float]:
    """
    Find the nearest active cluster other than the given one.

    Args:
        index: Spatial index holding the active clusters.
        cluster: The cluster whose neighbor is wanted.

    Returns:
        The neighbor's arena index and its distance, or (None, inf) if the
        cluster is alone in the index.
    """
    best: Optional[int] = None
    best_distance = float("inf")
    for neighbor in index.nearest(cluster.mean, MAX_NEIGHBORS):
        if neighbor.distance < best_distance and neighbor.payload != cluster.index:
            best_distance = neighbor.distance
            best = neighbor.payload
    return best, best_distance


def build_cluster_tree(
    tree: ClusterTree,
    index: SpatialIndex[int],
    queue: PriorityQueue[_Candidate],
) -> Optional[Cluster]:
    """
    Merge every cluster in the index into a single binary tree.

    Each active cluster and its nearest neighbor form a candidate pair, kept
    in the queue with the closest pair on top. Candidates whose cluster has
    since been merged are dropped; candidates whose neighbor has since been
    merged get a fresh neighbor and are requeued. All other candidates
    become permanent clusters, which replace their children in the index.

    Args:
        tree: Arena holding the leaf clusters referenced by the index.
        index: Spatial index holding every sample, keyed by its mean.
        queue: Empty priority queue used to order candidate merges.

    Returns:
        The root cluster, or None if the index is empty.
    """
    pairs: List[Tuple[float, _Candidate]] = []

    def make_candidate(point: Tuple[float, ...], payload: int) -> None:
        neighbor, distance = find_nearest_neighbor(index, tree[payload])
        if neighbor is not None:
            pairs.append((distance, _Candidate(payload, neighbor)))

    index.walk(make_candidate)
    for distance, candidate in pairs:
        queue.insert(distance, candidate)

    merges = 0
    while True:
        entry = queue.pop_min()
        if entry is None:
            break
        _, candidate = entry

        if tree[candidate.cluster].merged:
            continue

        if tree[candidate.neighbor].merged:
            neighbor, distance = find_nearest_neighbor(index, tree[candidate.cluster])
            if neighbor is not None:
                candidate.neighbor = neighbor
                queue.insert(distance, candidate)
            continue

        left = tree[candidate.cluster]
        right = tree[candidate.neighbor]
        index.delete(left.mean, left.index)
        index.delete(right.mean, right.index)
        parent = tree.merge(left.index, right.index)
        index.insert(parent.mean, parent.index)
        merges += 1

        candidate.cluster = parent.index
        neighbor, distance = find_nearest_neighbor(index, parent)
        if neighbor is not None:
            candidate.neighbor = neighbor
            queue.insert(distance, candidate)

    # The root is now the only entry left in the index
    remaining: List[int] = []
    index.walk(lambda point, payload: remaining.append(payload))
    if not remaining:
        tree.set_root(None)
        return None
    if len(remaining) > 1:
        raise RuntimeError(
            f"Cluster tree build left {len(remaining)} unmerged clusters"
        )

    tree.set_root(remaining[0])
    logger.info("Built cluster tree with %d merges", merges)
    return tree.root
