"""
Base classes and interfaces for TinyProto.

This module defines the narrow interfaces through which the clusterer
consumes its collaborators (a spatial index used for nearest-neighbor
queries and a priority queue used to order candidate merges), and the
serialization base shared by prototypes and configuration objects.
"""

import abc
import json
from typing import (
    Any,
    Callable,
    Dict,
    Generic,
    List,
    NamedTuple,
    Optional,
    Sequence,
    Tuple,
    TypeVar,
    Union,
)

P = TypeVar("P")  # Type for the payloads stored in an index or queue

Point = Sequence[float]


class SerializableModel(abc.ABC):
    """
    Abstract base class for objects with a dictionary representation.

    Subclasses implement ``to_dict`` and ``from_dict``; this class provides
    string and byte serialization on top of them.
    """

    @abc.abstractmethod
    def to_dict(self) -> Dict[str, Any]:
        """
        Convert the object to a dictionary for serialization.

        Returns:
            A dictionary representation of the object.
        """
        pass

    @classmethod
    @abc.abstractmethod
    def from_dict(cls, data: Dict[str, Any]) -> Any:
        """
        Create an object from a dictionary representation.

        Args:
            data: The dictionary containing the object state.

        Returns:
            A new object initialized with the given state.
        """
        pass

    def _base_dict(self) -> Dict[str, Any]:
        """
        Create a dictionary with the attributes common to all models.

        Returns:
            A dictionary with base attributes.
        """
        return {"type": self.__class__.__name__}

    def serialize(self, format: str = "json") -> Union[str, bytes]:
        """
        Serialize the object to a string or bytes.

        Args:
            format: The serialization format ('json' or 'binary').

        Returns:
            The serialized representation of the object.

        Raises:
            ValueError: If the format is not supported.
        """
        if format == "json":
            return json.dumps(self.to_dict())
        elif format == "binary":
            return json.dumps(self.to_dict()).encode("utf-8")
        else:
            raise ValueError(f"Unsupported serialization format: {format}")

    @classmethod
    def deserialize(cls, data: Union[str, bytes], format: str = "json") -> Any:
        """
        Deserialize an object from a string or bytes.

        Args:
            data: The serialized object.
            format: The serialization format ('json' or 'binary').

        Returns:
            A new object.

        Raises:
            ValueError: If the format is not supported.
        """
        if format == "json":
            if isinstance(data, bytes):
                data = data.decode("utf-8")
            return cls.from_dict(json.loads(data))
        elif format == "binary":
            if isinstance(data, str):
                data = data.encode("utf-8")
            return cls.from_dict(json.loads(data.decode("utf-8")))
        else:
            raise ValueError(f"Unsupported serialization format: {format}")


class Neighbor(NamedTuple):
    """A single nearest-neighbor search result."""

    point: Tuple[float, ...]
    payload: Any
    distance: float


class SpatialIndex(Generic[P], abc.ABC):
    """
    Abstract base class for nearest-neighbor search structures.

    The clusterer stores every active sample or cluster in the index, keyed
    by its mean, and repeatedly asks for the nearest other entry. Entries
    are identified by the (point, payload) pair they were inserted with.
    """

    @abc.abstractmethod
    def insert(self, point: Point, payload: P) -> None:
        """
        Store a payload at the given point.

        Args:
            point: Coordinates of the entry.
            payload: Object associated with the point.
        """
        pass

    @abc.abstractmethod
    def delete(self, point: Point, payload: P) -> bool:
        """
        Remove the entry previously inserted with this point and payload.

        Args:
            point: Coordinates the entry was inserted with.
            payload: Payload the entry was inserted with.

        Returns:
            True if an entry was removed, False if none matched.
        """
        pass

    @abc.abstractmethod
    def nearest(
        self, point: Point, k: int, max_distance: float = float("inf")
    ) -> List[Neighbor]:
        """
        Find the entries closest to a query point.

        Args:
            point: The query point.
            k: Maximum number of neighbors to return.
            max_distance: Entries farther than this are ignored.

        Returns:
            Up to k neighbors ordered by ascending distance.
        """
        pass

    @abc.abstractmethod
    def walk(self, visitor: Callable[[Tuple[float, ...], P], None]) -> None:
        """
        Call the visitor once for every stored entry.

        Args:
            visitor: Callable receiving the point and payload of each entry.
        """
        pass

    @abc.abstractmethod
    def __len__(self) -> int:
        """Get the number of live entries in the index."""
        pass


class PriorityQueue(Generic[P], abc.ABC):
    """
    Abstract base class for min-priority queues.

    Stale or duplicate entries are allowed; consumers are expected to
    recognise and discard them when they are popped.
    """

    @abc.abstractmethod
    def insert(self, key: float, payload: P) -> None:
        """
        Add a payload with the given priority key.

        Args:
            key: Priority of the entry (smaller is popped first).
            payload: Object associated with the key.
        """
        pass

    @abc.abstractmethod
    def pop_min(self) -> Optional[Tuple[float, P]]:
        """
        Remove and return the entry with the smallest key.

        Returns:
            A (key, payload) tuple, or None if the queue is empty.
        """
        pass

    @abc.abstractmethod
    def __len__(self) -> int:
        """Get the number of entries currently held."""
        pass

    @property
    def is_empty(self) -> bool:
        """Check whether the queue holds no entries."""
        return len(self) == 0
