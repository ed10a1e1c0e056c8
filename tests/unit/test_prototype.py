"""
Unit tests for prototype models and serialization.
"""

import gc
import json
import math
import unittest

import numpy as np

from tiny_proto.algorithms.cluster_tree import ClusterTree
from tiny_proto.algorithms.prototype import (
    EllipticalPrototype,
    MixedPrototype,
    Prototype,
    SphericalPrototype,
    deserialize_prototypes,
    new_elliptical,
    new_mixed,
    new_spherical,
    normal_magnitude,
    serialize_prototypes,
)
from tiny_proto.algorithms.statistics import Statistics, compute_statistics
from tiny_proto.core.params import (
    MIN_VARIANCE,
    DimensionDescriptor,
    Distribution,
    ProtoStyle,
)


class TestPrototypes(unittest.TestCase):
    """Test cases for the prototype shapes."""

    def test_spherical(self):
        """Test the derived values of a spherical prototype."""
        proto = SphericalPrototype([0.1, 0.2, 0.3], 10, 0.01)
        magnitude = 1.0 / math.sqrt(2 * math.pi * 0.01)

        self.assertEqual(proto.style, ProtoStyle.SPHERICAL)
        self.assertEqual(proto.dimensions, 3)
        self.assertEqual(proto.num_samples, 10)
        self.assertTrue(proto.significant)
        self.assertAlmostEqual(proto.magnitude, magnitude)
        self.assertAlmostEqual(proto.weight, 100.0)
        self.assertAlmostEqual(proto.total_magnitude, magnitude ** 3)
        self.assertAlmostEqual(proto.log_magnitude, 3 * math.log(magnitude))
        self.assertAlmostEqual(proto.standard_deviation(1), 0.1)
        self.assertEqual(proto.mean_of(2), 0.3)
        self.assertEqual(proto.distribution_of(0), Distribution.NORMAL)

    def test_variance_floor(self):
        """Test that zero variances are raised to the minimum."""
        spherical = SphericalPrototype([0.5], 1, 0.0)
        self.assertEqual(spherical.variance, MIN_VARIANCE)
        self.assertAlmostEqual(spherical.standard_deviation(0), 0.002)

        elliptical = EllipticalPrototype([0.5, 0.5], 1, [0.0, 0.04])
        self.assertEqual(elliptical.variance, [MIN_VARIANCE, 0.04])

    def test_elliptical(self):
        """Test the derived values of an elliptical prototype."""
        proto = EllipticalPrototype([0.0, 1.0], 5, [0.04, 0.25])
        self.assertEqual(proto.style, ProtoStyle.ELLIPTICAL)
        self.assertAlmostEqual(proto.weight[0], 25.0)
        self.assertAlmostEqual(proto.weight[1], 4.0)
        self.assertAlmostEqual(
            proto.total_magnitude, normal_magnitude(0.04) * normal_magnitude(0.25)
        )
        self.assertAlmostEqual(proto.log_magnitude, math.log(proto.total_magnitude))
        self.assertAlmostEqual(proto.standard_deviation(0), 0.2)
        self.assertAlmostEqual(proto.standard_deviation(1), 0.5)

        with self.assertRaises(ValueError):
            EllipticalPrototype([0.0, 1.0], 5, [0.04])

    def test_mixed_random(self):
        """Test switching a dimension to a random distribution."""
        desc = DimensionDescriptor(0.0, 2.0)
        proto = MixedPrototype([0.3, 0.7], 8, [0.01, 0.01])
        self.assertEqual(proto.distributions, [Distribution.NORMAL] * 2)

        proto.make_dim_random(0, desc)
        self.assertEqual(proto.distribution_of(0), Distribution.RANDOM)
        self.assertEqual(proto.mean[0], 1.0)
        self.assertEqual(proto.variance[0], 1.0)
        self.assertEqual(proto.magnitude[0], 0.5)
        self.assertAlmostEqual(proto.total_magnitude, 0.5 * normal_magnitude(0.01))
        self.assertAlmostEqual(proto.log_magnitude, math.log(proto.total_magnitude))

        # The stored spread is returned as is for non-normal dimensions
        self.assertEqual(proto.standard_deviation(0), 1.0)
        self.assertAlmostEqual(proto.standard_deviation(1), 0.1)

    def test_mixed_uniform(self):
        """Test switching a dimension to a uniform distribution."""
        stats = Statistics(
            covariance=np.eye(2),
            min=np.array([-0.2, 0.0]),
            max=np.array([0.4, 0.0]),
            avg_variance=1.0,
        )
        proto = MixedPrototype([1.0, 2.0], 8, [1.0, 1.0])

        proto.make_dim_uniform(0, 1.0, stats)
        self.assertEqual(proto.distribution_of(0), Distribution.UNIFORM)
        self.assertAlmostEqual(proto.mean[0], 1.1)
        self.assertAlmostEqual(proto.variance[0], 0.3)
        self.assertAlmostEqual(proto.magnitude[0], 1.0 / 0.6)

        # An empty range is widened to the minimum variance
        proto.make_dim_uniform(1, 2.0, stats)
        self.assertEqual(proto.variance[1], MIN_VARIANCE)
        self.assertAlmostEqual(proto.magnitude[1], 1.0 / (2 * MIN_VARIANCE))
        self.assertAlmostEqual(
            proto.total_magnitude, proto.magnitude[0] * proto.magnitude[1]
        )

    def test_constructors(self):
        """Test building prototypes from cluster statistics."""
        desc = [DimensionDescriptor(0.0, 10.0), DimensionDescriptor(0.0, 10.0)]
        tree = ClusterTree(desc)
        tree.add_sample([1.0, 2.0], 0)
        tree.add_sample([3.0, 2.0], 1)
        cluster = tree.merge(0, 1)
        stats = compute_statistics(tree, cluster, desc)

        spherical = new_spherical(cluster, stats)
        self.assertIsInstance(spherical, SphericalPrototype)
        self.assertEqual(spherical.mean, [2.0, 2.0])
        self.assertEqual(spherical.num_samples, 2)
        # The geometric mean of 2.0 and 0.0 is 0.0
        self.assertEqual(spherical.variance, MIN_VARIANCE)

        elliptical = new_elliptical(cluster, stats)
        self.assertIsInstance(elliptical, EllipticalPrototype)
        self.assertAlmostEqual(elliptical.variance[0], 2.0)
        self.assertEqual(elliptical.variance[1], MIN_VARIANCE)

        mixed = new_mixed(cluster, stats)
        self.assertIsInstance(mixed, MixedPrototype)
        self.assertEqual(mixed.variance, elliptical.variance)
        self.assertEqual(mixed.distributions, [Distribution.NORMAL] * 2)

        # Building a prototype does not alter the cluster mean
        mixed.make_dim_random(0, desc[0])
        self.assertEqual(cluster.mean, (2.0, 2.0))


class TestClusterReference(unittest.TestCase):
    """Test cases for the prototype's reference to its cluster."""

    def setUp(self):
        self.desc = [DimensionDescriptor(0.0, 1.0)]
        self.tree = ClusterTree(self.desc)
        self.tree.add_sample([0.5], 0)

    def test_attach(self):
        """Test resolving the originating cluster."""
        proto = EllipticalPrototype([0.5], 1, [0.0])
        self.assertIsNone(proto.cluster)
        self.assertIsNone(proto.cluster_index)

        proto.attach(self.tree, 0)
        self.assertIs(proto.cluster, self.tree[0])
        self.assertEqual(proto.cluster_index, 0)

        proto.detach()
        self.assertIsNone(proto.cluster)

    def test_dispose(self):
        """Test that disposing the tree clears the reference."""
        proto = EllipticalPrototype([0.5], 1, [0.0])
        proto.attach(self.tree, 0)
        self.tree.dispose()
        self.assertIsNone(proto.cluster)

    def test_tree_collected(self):
        """Test that the prototype does not keep the tree alive."""
        proto = EllipticalPrototype([0.5], 1, [0.0])
        proto.attach(self.tree, 0)
        del self.tree
        gc.collect()
        self.assertIsNone(proto.cluster)


class TestSerialization(unittest.TestCase):
    """Test cases for prototype serialization."""

    def setUp(self):
        mixed = MixedPrototype([0.2, 0.4], 30, [0.01, 0.02])
        mixed.make_dim_random(1, DimensionDescriptor(0.0, 1.0))
        insignificant = EllipticalPrototype([0.5, 0.5], 1, [0.0, 0.0])
        insignificant.significant = False
        self.prototypes = [
            SphericalPrototype([0.1, 0.9], 12, 0.0025),
            insignificant,
            mixed,
        ]

    def test_to_dict(self):
        """Test the dictionary representation."""
        data = self.prototypes[2].to_dict()
        self.assertEqual(data["type"], "MixedPrototype")
        self.assertEqual(data["style"], "mixed")
        self.assertEqual(data["distributions"], ["normal", "random"])
        self.assertEqual(data["num_samples"], 30)
        json.dumps(data)

    def test_round_trip_list(self):
        """Test serializing and deserializing a list of prototypes."""
        tree = ClusterTree([DimensionDescriptor(0.0, 1.0)] * 2)
        tree.add_sample([0.1, 0.9], 0)
        self.prototypes[0].attach(tree, 0)

        for format in ("json", "binary"):
            restored = deserialize_prototypes(
                serialize_prototypes(self.prototypes, format=format), format=format
            )
            self.assertEqual(len(restored), 3)
            for original, copy in zip(self.prototypes, restored):
                self.assertIs(type(copy), type(original))
                self.assertEqual(copy.to_dict(), original.to_dict())
                self.assertIsNone(copy.cluster)

        self.assertFalse(restored[1].significant)
        self.assertEqual(restored[2].distribution_of(1), Distribution.RANDOM)
        self.assertEqual(restored[2].standard_deviation(1), 0.5)

    def test_single_prototype(self):
        """Test serializing one prototype through the model base class."""
        original = self.prototypes[0]
        restored = Prototype.deserialize(original.serialize())
        self.assertIsInstance(restored, SphericalPrototype)
        self.assertEqual(restored.to_dict(), original.to_dict())

        restored = SphericalPrototype.deserialize(original.serialize(format="binary"), format="binary")
        self.assertEqual(restored.variance, original.variance)

    def test_subclass_dispatch(self):
        """Test loading through a specific prototype class."""
        data = self.prototypes[2].to_dict()
        self.assertIsInstance(EllipticalPrototype.from_dict(data), MixedPrototype)
        with self.assertRaises(ValueError):
            SphericalPrototype.from_dict(data)

    def test_invalid(self):
        """Test rejection of unknown types and formats."""
        with self.assertRaises(ValueError):
            Prototype.from_dict({"type": "ConicalPrototype"})
        with self.assertRaises(ValueError):
            serialize_prototypes(self.prototypes, format="xml")
        with self.assertRaises(ValueError):
            deserialize_prototypes("[]", format="xml")


if __name__ == "__main__":
    unittest.main()
