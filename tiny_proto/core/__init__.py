"""
Core functionality for TinyProto.
"""

from tiny_proto.core.base import (
    Neighbor,
    PriorityQueue,
    SerializableModel,
    SpatialIndex,
)
from tiny_proto.core.errors import (
    AllocationFailure,
    ClusteringError,
    ConfigurationError,
    NumericNonConvergence,
)
from tiny_proto.core.params import (
    ClusterConfig,
    DimensionDescriptor,
    Distribution,
    ProtoStyle,
)

__all__ = [
    # Interfaces
    "SpatialIndex",
    "PriorityQueue",
    "Neighbor",
    "SerializableModel",
    # Configuration
    "ClusterConfig",
    "DimensionDescriptor",
    "Distribution",
    "ProtoStyle",
    # Errors
    "ClusteringError",
    "ConfigurationError",
    "AllocationFailure",
    "NumericNonConvergence",
]
