"""
Algorithm implementations for TinyProto.
"""

from tiny_proto.algorithms.chi_square import ChiSquareCache
from tiny_proto.algorithms.cluster_tree import Cluster, ClusterTree, Sample
from tiny_proto.algorithms.heap import BinaryHeap
from tiny_proto.algorithms.histogram import Histogram, HistogramPool
from tiny_proto.algorithms.kdtree import KDTree
from tiny_proto.algorithms.prototype import (
    EllipticalPrototype,
    MixedPrototype,
    Prototype,
    SphericalPrototype,
)
from tiny_proto.algorithms.statistics import Statistics, compute_statistics
from tiny_proto.algorithms.synthesizer import ClusteringCache, PrototypeSynthesizer

__all__ = [
    "KDTree",
    "BinaryHeap",
    "Cluster",
    "ClusterTree",
    "Sample",
    "Statistics",
    "compute_statistics",
    "ChiSquareCache",
    "Histogram",
    "HistogramPool",
    "Prototype",
    "SphericalPrototype",
    "EllipticalPrototype",
    "MixedPrototype",
    "ClusteringCache",
    "PrototypeSynthesizer",
]
