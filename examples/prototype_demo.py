"""
Prototype Clustering Demo for TinyProto.

This example demonstrates how to cluster labeled feature vectors and
describe the clusters with statistical prototypes.
"""

import logging

import numpy as np

from tiny_proto import (
    ClusterConfig,
    Clusterer,
    DimensionDescriptor,
    deserialize_prototypes,
    serialize_prototypes,
)


def describe(proto):
    """Print a one-line summary of a prototype."""
    mean = ", ".join(f"{m:.3f}" for m in proto.mean)
    spread = ", ".join(
        f"{proto.standard_deviation(d):.3f}" for d in range(proto.dimensions)
    )
    flag = "significant" if proto.significant else "insignificant"
    print(
        f"  {proto.style.value:<10} samples={proto.num_samples:<4} "
        f"mean=({mean}) spread=({spread}) {flag}"
    )


def demonstrate_basic_clustering():
    """Demonstrate clustering three well separated groups of samples."""
    print("\n=== Basic Prototype Clustering Demo ===")

    rng = np.random.default_rng(42)
    desc = [DimensionDescriptor(0.0, 1.0), DimensionDescriptor(0.0, 1.0)]
    clusterer = Clusterer(2, desc)

    # Three groups, each sample from a different training character
    centers = [(0.2, 0.3), (0.7, 0.7), (0.4, 0.8)]
    char_id = 0
    for center in centers:
        for point in rng.normal(center, 0.02, size=(80, 2)):
            clusterer.add_sample(point.tolist(), char_id)
            char_id += 1

    print(f"Samples added: {clusterer.num_samples}")
    print(f"Training characters: {clusterer.num_chars}")

    prototypes = clusterer.cluster(
        ClusterConfig(proto_style="automatic", independence_bound=0.8)
    )
    print(f"\nPrototypes found: {len(prototypes)}")
    for proto in prototypes:
        describe(proto)

    stats = clusterer.get_stats()
    print(f"\nClusters in tree: {stats['num_clusters']}")
    print(f"Tree build time: {stats['build_time_s']:.3f}s")
    print(f"Memory usage: {stats['memory_bytes']} bytes")


def demonstrate_prototype_styles():
    """Demonstrate re-clustering the same tree with different styles."""
    print("\n=== Prototype Styles Demo ===")

    rng = np.random.default_rng(7)
    desc = [DimensionDescriptor(0.0, 1.0), DimensionDescriptor(0.0, 1.0)]
    clusterer = Clusterer(2, desc)

    # One dimension is normal, the other is spread over the whole range
    xs = rng.normal(0.5, 0.03, size=300)
    ys = rng.uniform(0.0, 1.0, size=300)
    for i, (x, y) in enumerate(zip(xs, ys)):
        clusterer.add_sample([float(x), float(y)], i)

    for style in ("spherical", "elliptical", "mixed"):
        prototypes = clusterer.cluster(ClusterConfig(proto_style=style, confidence=1e-3))
        significant = sum(1 for p in prototypes if p.significant)
        print(f"\n{style}: {len(prototypes)} prototypes ({significant} significant)")
        for proto in prototypes[:3]:
            describe(proto)
        if len(prototypes) > 3:
            print(f"  ... and {len(prototypes) - 3} more")

    # The mixed prototype reports a distribution per dimension
    mixed = clusterer.prototypes
    if len(mixed) == 1:
        dists = [mixed[0].distribution_of(d).value for d in range(2)]
        print(f"\nMixed distributions: {dists}")

    stats = clusterer.get_stats()
    print(f"\nClustering runs: {stats['cluster_runs']}")
    print(f"Cached thresholds: {stats['cached_thresholds']}")
    print(f"Pooled histograms: {stats['pooled_histograms']}")


def demonstrate_circular_dimension():
    """Demonstrate a dimension that wraps around, such as an angle."""
    print("\n=== Circular Dimension Demo ===")

    rng = np.random.default_rng(3)
    desc = [
        DimensionDescriptor(0.0, 360.0, circular=True),
        DimensionDescriptor(0.0, 1.0),
    ]
    clusterer = Clusterer(2, desc)

    # Directions centred on 0 degrees, half of them stored as 350-360
    angles = rng.normal(0.0, 4.0, size=150) % 360.0
    lengths = rng.normal(0.6, 0.02, size=150)
    for i, (angle, length) in enumerate(zip(angles, lengths)):
        clusterer.add_sample([float(angle), float(length)], i)

    prototypes = clusterer.cluster(ClusterConfig(independence_bound=0.8))
    print(f"Prototypes found: {len(prototypes)}")
    for proto in prototypes:
        describe(proto)


def demonstrate_serialization():
    """Demonstrate saving prototypes and releasing the clusterer."""
    print("\n=== Serialization Demo ===")

    rng = np.random.default_rng(11)
    desc = [DimensionDescriptor(-1.0, 1.0)] * 3
    clusterer = Clusterer(3, desc)
    for i, point in enumerate(rng.normal(0.0, 0.05, size=(120, 3))):
        clusterer.add_sample(point.tolist(), i)

    prototypes = clusterer.cluster(ClusterConfig(independence_bound=0.8))
    samples = list(clusterer.get_samples(prototypes[0]))
    print(f"First prototype covers {len(samples)} samples")

    data = serialize_prototypes(prototypes)
    print(f"JSON size: {len(data)} bytes")
    binary = serialize_prototypes(prototypes, format="binary")
    print(f"Binary size: {len(binary)} bytes")

    clusterer.dispose()
    print(f"Cluster reference after dispose: {prototypes[0].cluster}")

    restored = deserialize_prototypes(data)
    print(f"Restored {len(restored)} prototypes:")
    for proto in restored:
        describe(proto)


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO, format="%(name)s: %(message)s")
    demonstrate_basic_clustering()
    demonstrate_prototype_styles()
    demonstrate_circular_dimension()
    demonstrate_serialization()
