"""
Binary heap priority queue for TinyProto.

The clusterer keeps one candidate merge per active cluster in a min-heap
keyed by the distance to the cluster's nearest neighbor. Entries whose
clusters have since been merged are left in place and discarded lazily by
the consumer.
"""

import heapq
import itertools
import sys
from typing import Iterator, List, Optional, Tuple, TypeVar

from tiny_proto.core.base import PriorityQueue

P = TypeVar("P")


class BinaryHeap(PriorityQueue[P]):
    """
    Min-priority queue backed by ``heapq``.

    Entries with equal keys are popped in insertion order, so two runs over
    identical input produce identical merge sequences.
    """

    def __init__(self) -> None:
        self._heap: List[Tuple[float, int, P]] = []
        self._counter: Iterator[int] = itertools.count()

    def insert(self, key: float, payload: P) -> None:
        """
        Add a payload with the given key.

        Args:
            key: Priority of the entry (smaller is popped first).
            payload: Object associated with the key.

        Raises:
            ValueError: If the key is NaN.
        """
        if key != key:
            raise ValueError("Priority key cannot be NaN")
        heapq.heappush(self._heap, (key, next(self._counter), payload))

    def pop_min(self) -> Optional[Tuple[float, P]]:
        """
        Remove and return the entry with the smallest key.

        Returns:
            A (key, payload) tuple, or None if the heap is empty.
        """
        if not self._heap:
            return None
        key, _, payload = heapq.heappop(self._heap)
        return key, payload

    def peek(self) -> Optional[Tuple[float, P]]:
        """Return the entry with the smallest key without removing it."""
        if not self._heap:
            return None
        key, _, payload = self._heap[0]
        return key, payload

    def clear(self) -> None:
        """Remove all entries."""
        self._heap.clear()

    def __len__(self) -> int:
        return len(self._heap)

    def estimate_size(self) -> int:
        """
        Estimate the memory used by the heap in bytes.

        Returns:
            Approximate size of the heap list and its entry tuples.
        """
        size = sys.getsizeof(self) + sys.getsizeof(self._heap)
        if self._heap:
            size += len(self._heap) * sys.getsizeof(self._heap[0])
        return size
