"""
Prototype models for TinyProto.

A prototype is a compact statistical description of the samples in one
cluster, suitable for use by a nearest-prototype classifier. Three shapes
are supported:

    - Spherical: every dimension is normal with one shared variance.
    - Elliptical: every dimension is normal with its own variance.
    - Mixed: every dimension has its own variance and its own distribution
      (normal, uniform or random).

Prototypes keep a non-owning reference to the cluster they were built from.
The reference resolves to None once the owning cluster tree is disposed,
and deserialized prototypes carry no reference at all.
"""

import json
import math
import sys
import weakref
from typing import Any, ClassVar, Dict, List, Optional, Sequence, Type, Union

from tiny_proto.algorithms.cluster_tree import Cluster, ClusterTree
from tiny_proto.algorithms.statistics import Statistics
from tiny_proto.core.base import SerializableModel
from tiny_proto.core.params import (
    MIN_VARIANCE,
    DimensionDescriptor,
    Distribution,
    ProtoStyle,
)


def normal_magnitude(variance: float) -> float:
    """Peak density of a normal distribution with the given variance."""
    return 1.0 / math.sqrt(2.0 * math.pi * variance)


class Prototype(SerializableModel):
    """
    Base class for all prototype shapes.

    Attributes:
        mean: Centre of the prototype in each dimension.
        significant: False if the prototype was generated from too few
                     samples to be tested statistically.
        num_samples: Number of samples the prototype was built from.
        total_magnitude: Product of the per-dimension magnitudes.
        log_magnitude: Natural log of total_magnitude.
    """

    style: ClassVar[ProtoStyle]
    _registry: ClassVar[Dict[str, Type["Prototype"]]] = {}

    def __init__(
        self,
        mean: Sequence[float],
        num_samples: int,
        significant: bool = True,
    ):
        self.mean: List[float] = [float(x) for x in mean]
        self.num_samples = num_samples
        self.significant = significant
        self.total_magnitude = 1.0
        self.log_magnitude = 0.0
        self._tree_ref: Optional["weakref.ReferenceType[ClusterTree]"] = None
        self._cluster_index: Optional[int] = None

    def __init_subclass__(cls, **kwargs: Any) -> None:
        super().__init_subclass__(**kwargs)
        Prototype._registry[cls.__name__] = cls

    @property
    def dimensions(self) -> int:
        """Get the number of dimensions of the prototype."""
        return len(self.mean)

    @property
    def cluster_index(self) -> Optional[int]:
        """Arena index of the originating cluster, if any."""
        return self._cluster_index

    @property
    def cluster(self) -> Optional[Cluster]:
        """
        Resolve the originating cluster.

        Returns:
            The cluster, or None if the prototype is detached or the cluster
            tree has been disposed.
        """
        if self._tree_ref is None:
            return None
        tree = self._tree_ref()
        if tree is None:
            return None
        return tree.get(self._cluster_index)

    def attach(self, tree: ClusterTree, cluster_index: int) -> None:
        """Record the cluster this prototype was built from."""
        self._tree_ref = weakref.ref(tree)
        self._cluster_index = cluster_index

    def detach(self) -> None:
        """Drop the reference to the originating cluster."""
        self._tree_ref = None
        self._cluster_index = None

    def mean_of(self, dim: int) -> float:
        """Get the mean of the prototype in one dimension."""
        return self.mean[dim]

    def variance_of(self, dim: int) -> float:
        """Get the variance (or spread) of the prototype in one dimension."""
        raise NotImplementedError

    def distribution_of(self, dim: int) -> Distribution:
        """Get the distribution of the prototype in one dimension."""
        return Distribution.NORMAL

    def standard_deviation(self, dim: int) -> float:
        """
        Get the standard deviation of the prototype in one dimension.

        For uniform and random dimensions the stored spread (half the width
        of the distribution) is returned as is.

        Args:
            dim: The dimension.

        Returns:
            The standard deviation.
        """
        if self.distribution_of(dim) is Distribution.NORMAL:
            return math.sqrt(self.variance_of(dim))
        return self.variance_of(dim)

    def _update_log_magnitude(self) -> None:
        # Very wide prototypes in many dimensions can underflow to zero
        if self.total_magnitude > 0:
            self.log_magnitude = math.log(self.total_magnitude)
        else:
            self.log_magnitude = -math.inf

    def _base_dict(self) -> Dict[str, Any]:
        data = super()._base_dict()
        data.update(
            {
                "style": self.style.value,
                "mean": list(self.mean),
                "significant": self.significant,
                "num_samples": self.num_samples,
                "total_magnitude": self.total_magnitude,
                "log_magnitude": self.log_magnitude,
            }
        )
        return data

    def _load_common(self, data: Dict[str, Any]) -> None:
        self.total_magnitude = data["total_magnitude"]
        self.log_magnitude = data["log_magnitude"]

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Prototype":
        """
        Create a prototype from a dictionary representation.

        Calling this on the base class dispatches on the stored type.

        Args:
            data: The dictionary containing the prototype state.

        Returns:
            A new prototype of the stored shape, with no cluster reference.

        Raises:
            ValueError: If the stored type is unknown.
        """
        target = Prototype._registry.get(data.get("type", ""))
        if target is None:
            raise ValueError(f"Unknown prototype type: {data.get('type')}")
        if cls is not Prototype and not issubclass(target, cls):
            raise ValueError(f"Cannot load a {target.__name__} as a {cls.__name__}")
        return target._from_fields(data)

    @classmethod
    def _from_fields(cls, data: Dict[str, Any]) -> "Prototype":
        raise NotImplementedError

    def estimate_size(self) -> int:
        """Estimate the memory used by the prototype in bytes."""
        return sys.getsizeof(self) + sys.getsizeof(self.mean) + (
            self.dimensions * sys.getsizeof(0.0)
        )

    def __repr__(self) -> str:
        return (
            f"{self.__class__.__name__}(samples={self.num_samples}, "
            f"significant={self.significant}, mean={self.mean})"
        )


class SphericalPrototype(Prototype):
    """
    Prototype whose dimensions are normal with one shared variance.

    Attributes:
        variance: The shared variance.
        magnitude: Peak density of each dimension.
        weight: Reciprocal of the variance.
    """

    style = ProtoStyle.SPHERICAL

    def __init__(
        self,
        mean: Sequence[float],
        num_samples: int,
        variance: float,
        significant: bool = True,
    ):
        super().__init__(mean, num_samples, significant)
        self.variance = max(variance, MIN_VARIANCE)
        self.magnitude = normal_magnitude(self.variance)
        self.weight = 1.0 / self.variance
        self.total_magnitude = self.magnitude ** self.dimensions
        self._update_log_magnitude()

    def variance_of(self, dim: int) -> float:
        return self.variance

    def to_dict(self) -> Dict[str, Any]:
        data = self._base_dict()
        data.update(
            {
                "variance": self.variance,
                "magnitude": self.magnitude,
                "weight": self.weight,
            }
        )
        return data

    @classmethod
    def _from_fields(cls, data: Dict[str, Any]) -> "SphericalPrototype":
        proto = cls(
            data["mean"], data["num_samples"], data["variance"], data["significant"]
        )
        proto.magnitude = data["magnitude"]
        proto.weight = data["weight"]
        proto._load_common(data)
        return proto


class EllipticalPrototype(Prototype):
    """
    Prototype whose dimensions are normal with independent variances.

    Attributes:
        variance: Variance of each dimension.
        magnitude: Peak density of each dimension.
        weight: Reciprocal of the variance of each dimension.
    """

    style = ProtoStyle.ELLIPTICAL

    def __init__(
        self,
        mean: Sequence[float],
        num_samples: int,
        variance: Sequence[float],
        significant: bool = True,
    ):
        super().__init__(mean, num_samples, significant)
        if len(variance) != len(self.mean):
            raise ValueError("Variance and mean must have the same length")
        self.variance: List[float] = [max(float(v), MIN_VARIANCE) for v in variance]
        self.magnitude: List[float] = [normal_magnitude(v) for v in self.variance]
        self.weight: List[float] = [1.0 / v for v in self.variance]
        self.total_magnitude = math.prod(self.magnitude)
        self._update_log_magnitude()

    def variance_of(self, dim: int) -> float:
        return self.variance[dim]

    def to_dict(self) -> Dict[str, Any]:
        data = self._base_dict()
        data.update(
            {
                "variance": list(self.variance),
                "magnitude": list(self.magnitude),
                "weight": list(self.weight),
            }
        )
        return data

    @classmethod
    def _from_fields(cls, data: Dict[str, Any]) -> "EllipticalPrototype":
        proto = cls(
            data["mean"], data["num_samples"], data["variance"], data["significant"]
        )
        proto.variance = list(data["variance"])
        proto.magnitude = list(data["magnitude"])
        proto.weight = list(data["weight"])
        proto._load_common(data)
        return proto

    def estimate_size(self) -> int:
        return super().estimate_size() + 3 * (
            sys.getsizeof(self.variance) + self.dimensions * sys.getsizeof(0.0)
        )


class MixedPrototype(EllipticalPrototype):
    """
    Prototype whose dimensions each follow their own distribution.

    A new mixed prototype starts out normal in every dimension; individual
    dimensions are switched to random or uniform with ``make_dim_random``
    and ``make_dim_uniform``. For those dimensions ``variance`` holds half
    the width of the distribution and ``weight`` is not meaningful.

    Attributes:
        distributions: Distribution of each dimension.
    """

    style = ProtoStyle.MIXED

    def __init__(
        self,
        mean: Sequence[float],
        num_samples: int,
        variance: Sequence[float],
        significant: bool = True,
    ):
        super().__init__(mean, num_samples, variance, significant)
        self.distributions: List[Distribution] = [Distribution.NORMAL] * len(
            self.mean
        )

    def distribution_of(self, dim: int) -> Distribution:
        return self.distributions[dim]

    def _replace_magnitude(self, dim: int, magnitude: float) -> None:
        self.total_magnitude /= self.magnitude[dim]
        self.magnitude[dim] = magnitude
        self.total_magnitude *= magnitude
        self._update_log_magnitude()

    def make_dim_random(self, dim: int, desc: DimensionDescriptor) -> None:
        """
        Switch one dimension to a random distribution over its full range.

        Args:
            dim: The dimension to change.
            desc: Description of that dimension.
        """
        self.distributions[dim] = Distribution.RANDOM
        self.mean[dim] = desc.mid_range
        self.variance[dim] = desc.half_range
        self._replace_magnitude(dim, 1.0 / desc.range)

    def make_dim_uniform(self, dim: int, cluster_mean: float, stats: Statistics) -> None:
        """
        Switch one dimension to a uniform distribution over the sample range.

        Args:
            dim: The dimension to change.
            cluster_mean: Mean of the cluster in that dimension.
            stats: Statistics of the cluster.
        """
        low = float(stats.min[dim])
        high = float(stats.max[dim])
        self.distributions[dim] = Distribution.UNIFORM
        self.mean[dim] = cluster_mean + (low + high) / 2
        self.variance[dim] = max((high - low) / 2, MIN_VARIANCE)
        self._replace_magnitude(dim, 1.0 / (2.0 * self.variance[dim]))

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data["distributions"] = [d.value for d in self.distributions]
        return data

    @classmethod
    def _from_fields(cls, data: Dict[str, Any]) -> "MixedPrototype":
        proto = super()._from_fields(data)
        proto.distributions = [Distribution(d) for d in data["distributions"]]
        return proto


def new_spherical(cluster: Cluster, stats: Statistics) -> SphericalPrototype:
    """
    Build a spherical prototype for a cluster.

    Args:
        cluster: The cluster to describe.
        stats: Statistics of the cluster.

    Returns:
        A prototype using the average variance of the cluster.
    """
    return SphericalPrototype(cluster.mean, cluster.count, stats.avg_variance)


def new_elliptical(cluster: Cluster, stats: Statistics) -> EllipticalPrototype:
    """
    Build an elliptical prototype for a cluster.

    Args:
        cluster: The cluster to describe.
        stats: Statistics of the cluster.

    Returns:
        A prototype using the diagonal of the covariance matrix.
    """
    return EllipticalPrototype(
        cluster.mean, cluster.count, [float(v) for v in stats.covariance.diagonal()]
    )


def new_mixed(cluster: Cluster, stats: Statistics) -> MixedPrototype:
    """
    Build a mixed prototype for a cluster, initially normal in every dimension.

    Args:
        cluster: The cluster to describe.
        stats: Statistics of the cluster.

    Returns:
        A mixed prototype equivalent to the elliptical one.
    """
    return MixedPrototype(
        cluster.mean, cluster.count, [float(v) for v in stats.covariance.diagonal()]
    )


def serialize_prototypes(
    prototypes: Sequence[Prototype], format: str = "json"
) -> Union[str, bytes]:
    """
    Serialize a list of prototypes.

    Args:
        prototypes: The prototypes to serialize.
        format: The serialization format ('json' or 'binary').

    Returns:
        The serialized list.

    Raises:
        ValueError: If the format is not supported.
    """
    payload = json.dumps([p.to_dict() for p in prototypes])
    if format == "json":
        return payload
    elif format == "binary":
        return payload.encode("utf-8")
    else:
        raise ValueError(f"Unsupported serialization format: {format}")


def deserialize_prototypes(
    data: Union[str, bytes], format: str = "json"
) -> List[Prototype]:
    """
    Deserialize a list of prototypes.

    Args:
        data: The serialized list.
        format: The serialization format ('json' or 'binary').

    Returns:
        The prototypes, without cluster references.

    Raises:
        ValueError: If the format is not supported.
    """
    if format not in ("json", "binary"):
        raise ValueError(f"Unsupported serialization format: {format}")
    if isinstance(data, bytes):
        data = data.decode("utf-8")
    return [Prototype.from_dict(item) for item in json.loads(data)]
