"""
K-d tree spatial index for TinyProto.

This module provides a k-d tree that supports insertion, deletion and
k-nearest-neighbor search over feature spaces that may contain circular
(wrap-around) dimensions. It backs the agglomerative cluster builder, which
bulk loads every sample, then repeatedly deletes pairs of entries and
inserts their merged cluster.

``load`` builds a balanced tree by median splits, so the result does not
depend on the order of the entries. Deletion marks the node as dead instead
of restructuring the tree; dead nodes still route searches until they
outnumber the live ones, at which point the live entries are reloaded.
All traversals use an explicit stack so that trees degenerated by sorted
insertion order cannot exhaust the call stack.

References:
    - Bentley, J. L. (1975). Multidimensional binary search trees used
      for associative searching. Communications of the ACM, 18(9), 509-517.
"""

import heapq
import math
import sys
from typing import Callable, Iterable, List, Optional, Sequence, Tuple, TypeVar

from tiny_proto.core.base import Neighbor, Point, SpatialIndex
from tiny_proto.core.params import DimensionDescriptor

P = TypeVar("P")

# Fewest dead nodes that trigger a rebuild once they outnumber live ones
REBUILD_MIN_DEAD = 32


class _KDNode:
    """A node of the k-d tree holding one entry."""

    __slots__ = ["point", "payload", "left", "right", "deleted"]

    def __init__(self, point: Tuple[float, ...], payload: P):
        self.point = point
        self.payload = payload
        self.left: Optional["_KDNode"] = None
        self.right: Optional["_KDNode"] = None
        self.deleted = False

    def __repr__(self) -> str:
        state = "deleted" if self.deleted else "live"
        return f"_KDNode(point={self.point}, payload={self.payload!r}, {state})"


class KDTree(SpatialIndex[P]):
    """
    K-d tree keyed by points in an N-dimensional feature space.

    The discriminating dimension cycles with the depth of the node. Points
    whose key equals the node's key in that dimension are stored in the
    right subtree, both on insertion and when searching for a node to
    delete. Distances are Euclidean, with the difference along circular
    dimensions measured the short way around.
    """

    def __init__(self, key_desc: Sequence[DimensionDescriptor]):
        """
        Initialize an empty k-d tree.

        Args:
            key_desc: Description of each dimension of the keys.

        Raises:
            ValueError: If no dimensions are given.
        """
        if len(key_desc) < 1:
            raise ValueError("A k-d tree needs at least one dimension")

        self._key_desc: Tuple[DimensionDescriptor, ...] = tuple(key_desc)
        self._k = len(self._key_desc)
        self._root: Optional[_KDNode] = None
        self._size = 0
        self._dead = 0

        # Search regions start unbounded on linear dimensions and span the
        # full range on circular ones.
        self._initial_lo = [
            d.min if d.circular else -math.inf for d in self._key_desc
        ]
        self._initial_hi = [
            d.max if d.circular else math.inf for d in self._key_desc
        ]

    @property
    def dimensions(self) -> int:
        """Get the number of dimensions of the keys."""
        return self._k

    def _check_point(self, point: Point) -> Tuple[float, ...]:
        if len(point) != self._k:
            raise ValueError(
                f"Point has {len(point)} dimensions, expected {self._k}"
            )
        return tuple(float(x) for x in point)

    def insert(self, point: Point, payload: P) -> None:
        """
        Store a payload at the given point.

        Args:
            point: Coordinates of the entry.
            payload: Object associated with the point.

        Raises:
            ValueError: If the point has the wrong number of dimensions.
        """
        key = self._check_point(point)
        node = _KDNode(key, payload)
        self._size += 1

        if self._root is None:
            self._root = node
            return

        current = self._root
        level = 0
        while True:
            dim = level % self._k
            if key[dim] < current.point[dim]:
                if current.left is None:
                    current.left = node
                    return
                current = current.left
            else:
                if current.right is None:
                    current.right = node
                    return
                current = current.right
            level += 1

    def load(self, entries: Iterable[Tuple[Point, P]]) -> None:
        """
        Add many entries at once and rebalance the whole tree.

        The live entries already in the tree are combined with the new ones
        and the tree is rebuilt by splitting each subtree at the median key
        of its discriminating dimension. Dead nodes are dropped.

        Args:
            entries: (point, payload) pairs to add.

        Raises:
            ValueError: If a point has the wrong number of dimensions.
        """
        items = self.entries()
        items.extend((self._check_point(point), payload) for point, payload in entries)

        self._root = None
        self._size = len(items)
        self._dead = 0

        stack: List[Tuple[list, int, Optional[_KDNode], bool]] = [
            (items, 0, None, False)
        ]
        while stack:
            chunk, level, parent, is_left = stack.pop()
            if not chunk:
                continue
            dim = level % self._k
            chunk.sort(key=lambda entry: entry[0][dim])

            # Keys equal to the split belong to the right subtree
            median = len(chunk) // 2
            split = chunk[median][0][dim]
            while median > 0 and chunk[median - 1][0][dim] == split:
                median -= 1

            node = _KDNode(*chunk[median])
            if parent is None:
                self._root = node
            elif is_left:
                parent.left = node
            else:
                parent.right = node
            stack.append((chunk[median + 1:], level + 1, node, False))
            stack.append((chunk[:median], level + 1, node, True))

    def rebuild(self) -> None:
        """Rebalance the tree around its live entries, dropping dead nodes."""
        self.load(())

    @property
    def height(self) -> int:
        """Get the number of nodes on the longest root-to-leaf path."""
        height = 0
        stack = [(self._root, 1)]
        while stack:
            node, depth = stack.pop()
            if node is None:
                continue
            height = max(height, depth)
            stack.append((node.left, depth + 1))
            stack.append((node.right, depth + 1))
        return height

    def delete(self, point: Point, payload: P) -> bool:
        """
        Remove the live entry inserted with this point and payload.

        Once dead nodes outnumber live ones the tree is rebuilt.

        Args:
            point: Coordinates the entry was inserted with.
            payload: Payload the entry was inserted with.

        Returns:
            True if an entry was removed, False if none matched.
        """
        key = self._check_point(point)
        current = self._root
        level = 0
        while current is not None:
            if (
                not current.deleted
                and current.point == key
                and current.payload == payload
            ):
                current.deleted = True
                self._size -= 1
                self._dead += 1
                if self._dead > self._size and self._dead >= REBUILD_MIN_DEAD:
                    self.rebuild()
                return True
            dim = level % self._k
            current = current.left if key[dim] < current.point[dim] else current.right
            level += 1
        return False

    def distance(self, p1: Point, p2: Point) -> float:
        """
        Compute the distance between two points.

        Args:
            p1: First point.
            p2: Second point.

        Returns:
            Euclidean distance, wrapping circular dimensions.
        """
        total = 0.0
        for desc, a, b in zip(self._key_desc, p1, p2):
            delta = abs(a - b)
            if desc.circular and delta > desc.half_range:
                delta = desc.range - delta
            total += delta * delta
        return math.sqrt(total)

    def _region_distance(
        self, point: Point, lo: List[float], hi: List[float]
    ) -> float:
        """
        Lower bound on the distance from a point to any key in a region.

        Args:
            point: The query point.
            lo: Lower corner of the region.
            hi: Upper corner of the region.

        Returns:
            Distance from the point to the closest corner or face.
        """
        total = 0.0
        for desc, x, low, high in zip(self._key_desc, point, lo, hi):
            if low <= x <= high:
                continue
            if desc.circular:
                delta = min(
                    self._circular_delta(desc, x, low),
                    self._circular_delta(desc, x, high),
                )
            else:
                delta = low - x if x < low else x - high
            total += delta * delta
        return math.sqrt(total)

    @staticmethod
    def _circular_delta(desc: DimensionDescriptor, a: float, b: float) -> float:
        delta = abs(a - b) % desc.range
        return min(delta, desc.range - delta)

    def nearest(
        self, point: Point, k: int, max_distance: float = math.inf
    ) -> List[Neighbor]:
        """
        Find the k live entries closest to a query point.

        Args:
            point: The query point.
            k: Maximum number of neighbors to return.
            max_distance: Entries farther than this are ignored.

        Returns:
            Up to k neighbors ordered by ascending distance. Entries at the
            same distance are ordered by the order in which the search
            reached them.

        Raises:
            ValueError: If k is less than 1.
        """
        if k < 1:
            raise ValueError("k must be at least 1")
        query = self._check_point(point)

        # Max-heap of the best k found so far, keyed on (-distance, -order)
        best: List[Tuple[float, int, _KDNode]] = []
        order = 0

        stack = [(self._root, 0, list(self._initial_lo), list(self._initial_hi))]
        while stack:
            node, level, lo, hi = stack.pop()
            if node is None:
                continue

            bound = max_distance if len(best) < k else -best[0][0]
            if self._region_distance(query, lo, hi) > bound:
                continue

            if not node.deleted:
                dist = self.distance(query, node.point)
                if dist <= bound:
                    entry = (-dist, -order, node)
                    if len(best) < k:
                        heapq.heappush(best, entry)
                    elif dist < -best[0][0]:
                        heapq.heapreplace(best, entry)
                    order += 1

            dim = level % self._k
            split = node.point[dim]
            left_hi = list(hi)
            left_hi[dim] = split
            right_lo = list(lo)
            right_lo[dim] = split
            near_left = query[dim] < split

            # Push the far side first so the near side is searched first
            if near_left:
                stack.append((node.right, level + 1, right_lo, hi))
                stack.append((node.left, level + 1, lo, left_hi))
            else:
                stack.append((node.left, level + 1, lo, left_hi))
                stack.append((node.right, level + 1, right_lo, hi))

        ranked = sorted(best, key=lambda e: (-e[0], -e[1]))
        return [Neighbor(n.point, n.payload, -d) for d, _, n in ranked]

    def walk(self, visitor: Callable[[Tuple[float, ...], P], None]) -> None:
        """
        Call the visitor once for every live entry, in pre-order.

        The visitor must not insert into or delete from the tree.

        Args:
            visitor: Callable receiving the point and payload of each entry.
        """
        stack = [self._root]
        while stack:
            node = stack.pop()
            if node is None:
                continue
            if not node.deleted:
                visitor(node.point, node.payload)
            stack.append(node.right)
            stack.append(node.left)

    def entries(self) -> List[Tuple[Tuple[float, ...], P]]:
        """
        Get all live entries.

        Returns:
            A list of (point, payload) tuples in pre-order.
        """
        found: List[Tuple[Tuple[float, ...], P]] = []
        self.walk(lambda point, payload: found.append((point, payload)))
        return found

    def clear(self) -> None:
        """Remove every entry from the tree."""
        self._root = None
        self._size = 0
        self._dead = 0

    def __len__(self) -> int:
        return self._size

    def estimate_size(self) -> int:
        """
        Estimate the memory used by the tree in bytes.

        Dead nodes are included since they remain in the tree.

        Returns:
            Approximate size of the tree and its nodes.
        """
        size = sys.getsizeof(self)
        nodes = self._size + self._dead
        if self._root is not None:
            per_node = sys.getsizeof(self._root) + sys.getsizeof(self._root.point)
            per_node += self._k * sys.getsizeof(0.0)
            size += nodes * per_node
        return size
