"""
tiny-proto - Statistical Prototype Clustering Library

tiny-proto groups labeled feature vectors into an agglomerative cluster tree
and describes the clusters with compact spherical, elliptical or mixed
statistical prototypes, using chi-squared goodness of fit tests to decide
where the tree must be split.
"""

import logging

__version__ = "0.1.0"

# Import main classes to make them available at the top level
from tiny_proto.algorithms.prototype import (
    EllipticalPrototype,
    MixedPrototype,
    Prototype,
    SphericalPrototype,
    deserialize_prototypes,
    serialize_prototypes,
)
from tiny_proto.clusterer import Clusterer
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

logging.getLogger(__name__).addHandler(logging.NullHandler())

__all__ = [
    # Engine
    "Clusterer",
    # Configuration
    "ClusterConfig",
    "DimensionDescriptor",
    "Distribution",
    "ProtoStyle",
    # Prototypes
    "Prototype",
    "SphericalPrototype",
    "EllipticalPrototype",
    "MixedPrototype",
    "serialize_prototypes",
    "deserialize_prototypes",
    # Errors
    "ClusteringError",
    "ConfigurationError",
    "AllocationFailure",
    "NumericNonConvergence",
]
