"""
Unit tests for prototype synthesis.
"""

import unittest

import numpy as np

from tiny_proto.algorithms.cluster_tree import ClusterTree
from tiny_proto.algorithms.prototype import (
    EllipticalPrototype,
    MixedPrototype,
    SphericalPrototype,
)
from tiny_proto.algorithms.statistics import compute_statistics
from tiny_proto.algorithms.synthesizer import (
    ClusteringCache,
    PrototypeSynthesizer,
    independent,
)
from tiny_proto.core.params import ClusterConfig, DimensionDescriptor, Distribution


def chain(param_desc, points, char_ids=None):
    """Build a tree whose root holds every given point."""
    tree = ClusterTree(param_desc)
    for i, point in enumerate(points):
        tree.add_sample(point, char_ids[i] if char_ids is not None else i)
    cluster = tree[0]
    for i in range(1, len(points)):
        cluster = tree.merge(cluster.index, i)
    tree.set_root(cluster.index)
    return tree, cluster


class TestIndependent(unittest.TestCase):
    """Test cases for the independence test."""

    def setUp(self):
        self.desc = [DimensionDescriptor(0.0, 1.0), DimensionDescriptor(0.0, 1.0)]

    def test_uncorrelated(self):
        """Test that a diagonal covariance is independent."""
        self.assertTrue(independent(self.desc, np.eye(2), 0.5))

    def test_correlated(self):
        """Test that perfectly correlated dimensions are dependent."""
        covariance = np.array([[1.0, 1.0], [1.0, 1.0]])
        self.assertFalse(independent(self.desc, covariance, 0.5))
        anti = np.array([[1.0, -1.0], [-1.0, 1.0]])
        self.assertFalse(independent(self.desc, anti, 0.5))

    def test_coefficient(self):
        """Test the coefficient against the bound."""
        # Correlation 0.0625 gives a coefficient of 0.25
        covariance = np.array([[1.0, 0.0625], [0.0625, 1.0]])
        self.assertTrue(independent(self.desc, covariance, 0.5))
        self.assertFalse(independent(self.desc, covariance, 0.2))

    def test_zero_variance(self):
        """Test that dimensions without spread are independent."""
        covariance = np.array([[0.0, 0.0], [0.0, 1.0]])
        self.assertTrue(independent(self.desc, covariance, 0.0))

    def test_non_essential(self):
        """Test that non-essential dimensions are skipped."""
        desc = [DimensionDescriptor(0.0, 1.0), DimensionDescriptor(0.0, 1.0, non_essential=True)]
        covariance = np.array([[1.0, 1.0], [1.0, 1.0]])
        self.assertTrue(independent(desc, covariance, 0.5))


class TestPrototypeSynthesizer(unittest.TestCase):
    """Test cases for PrototypeSynthesizer."""

    def setUp(self):
        self.desc = [DimensionDescriptor(0.0, 1.0)]
        self.cache = ClusteringCache()

    def synthesizer(self, tree, num_chars, **config):
        return PrototypeSynthesizer(tree, ClusterConfig(**config), num_chars, self.cache)

    def test_multiple_char_samples(self):
        """Test the running estimate of repeated characters."""
        tree, cluster = chain(self.desc, [[0.1], [0.2]], char_ids=[0, 0])
        self.assertTrue(
            self.synthesizer(tree, 1, max_illegal_fraction=0.0).multiple_char_samples(cluster)
        )
        self.assertFalse(
            self.synthesizer(tree, 1, max_illegal_fraction=1.0).multiple_char_samples(cluster)
        )

        tree, cluster = chain(self.desc, [[0.1], [0.2], [0.3]], char_ids=[0, 0, 1])
        # One illegal character out of two
        self.assertFalse(
            self.synthesizer(tree, 2, max_illegal_fraction=0.5).multiple_char_samples(cluster)
        )
        self.assertTrue(
            self.synthesizer(tree, 2, max_illegal_fraction=0.4).multiple_char_samples(cluster)
        )

        tree, cluster = chain(self.desc, [[0.1], [0.2], [0.3]])
        self.assertFalse(
            self.synthesizer(tree, 3, max_illegal_fraction=0.0).multiple_char_samples(cluster)
        )

    def test_min_samples(self):
        """Test the minimum cluster size derived from the character count."""
        tree, _ = chain(self.desc, [[0.1]])
        self.assertEqual(self.synthesizer(tree, 10).min_samples, 1)
        self.assertEqual(self.synthesizer(tree, 10, min_samples_fraction=0.5).min_samples, 5)
        self.assertEqual(self.synthesizer(tree, 10, min_samples_fraction=0.05).min_samples, 1)

    def test_degenerate(self):
        """Test insignificant prototypes for small clusters."""
        points = [[0.1], [0.2], [0.3]]
        tree, cluster = chain(self.desc, points)
        stats = compute_statistics(tree, cluster, self.desc)

        synthesizer = self.synthesizer(tree, 10, min_samples_fraction=0.5, proto_style="automatic")
        proto = synthesizer.make_degenerate(cluster, stats)
        self.assertIsInstance(proto, EllipticalPrototype)
        self.assertNotIsInstance(proto, MixedPrototype)
        self.assertFalse(proto.significant)
        self.assertEqual(proto.num_samples, 3)

        synthesizer = self.synthesizer(tree, 10, min_samples_fraction=0.5, proto_style="spherical")
        self.assertIsInstance(synthesizer.make_degenerate(cluster, stats), SphericalPrototype)

        synthesizer = self.synthesizer(tree, 10, min_samples_fraction=0.5, proto_style="mixed")
        self.assertIsInstance(synthesizer.make_degenerate(cluster, stats), MixedPrototype)

        # Large enough clusters are analyzed instead
        synthesizer = self.synthesizer(tree, 10, min_samples_fraction=0.2)
        self.assertIsNone(synthesizer.make_degenerate(cluster, stats))

    def test_leaf_is_degenerate(self):
        """Test that a single sample always produces a prototype."""
        tree, cluster = chain(self.desc, [[0.4]])
        stats = compute_statistics(tree, cluster, self.desc)
        proto = self.synthesizer(tree, 1).make_degenerate(cluster, stats)
        self.assertIsNotNone(proto)
        self.assertFalse(proto.significant)

    def test_run_empty(self):
        """Test that a tree without a root has no prototypes."""
        tree = ClusterTree(self.desc)
        self.assertEqual(self.synthesizer(tree, 0).run(), [])

    def test_run_marks_clusters(self):
        """Test that accepted clusters are flagged and referenced."""
        tree, cluster = chain(self.desc, [[0.1], [0.9]], char_ids=[0, 0])
        prototypes = self.synthesizer(tree, 1, max_illegal_fraction=0.0).run()

        # The repeated character forces a split into two leaves
        self.assertEqual(len(prototypes), 2)
        self.assertFalse(cluster.has_prototype)
        for proto in prototypes:
            self.assertTrue(proto.cluster.is_leaf)
            self.assertTrue(proto.cluster.has_prototype)
        self.assertEqual([p.mean for p in prototypes], [[0.1], [0.9]])

    def test_mixed_random(self):
        """Test that evenly spread samples are fitted with a random distribution."""
        points = [[(i + 0.5) / 200] for i in range(200)]
        tree, cluster = chain(self.desc, points)
        stats = compute_statistics(tree, cluster, self.desc)
        synthesizer = self.synthesizer(tree, 200, proto_style="mixed", confidence=0.5)

        pool = self.cache.histograms
        normal = pool.get(Distribution.NORMAL, cluster.count, 0.5)
        proto = synthesizer.make_mixed(cluster, stats, normal)
        pool.release(normal)

        self.assertIsInstance(proto, MixedPrototype)
        self.assertEqual(proto.distributions, [Distribution.RANDOM])
        self.assertAlmostEqual(proto.mean[0], 0.5)
        self.assertAlmostEqual(proto.variance[0], 0.5)
        self.assertAlmostEqual(proto.magnitude[0], 1.0)
        self.assertAlmostEqual(proto.total_magnitude, 1.0)

        # The random histogram went back to the pool
        self.assertEqual(len(pool), 2)

    def test_mixed_uniform(self):
        """Test that samples spread over part of the range are fitted as uniform."""
        points = [[0.25 + (i + 0.5) / 400] for i in range(200)]
        tree, cluster = chain(self.desc, points)
        stats = compute_statistics(tree, cluster, self.desc)
        synthesizer = self.synthesizer(tree, 200, proto_style="mixed", confidence=0.5)

        normal = self.cache.histograms.get(Distribution.NORMAL, cluster.count, 0.5)
        proto = synthesizer.make_mixed(cluster, stats, normal)

        self.assertIsInstance(proto, MixedPrototype)
        self.assertEqual(proto.distributions, [Distribution.UNIFORM])
        self.assertAlmostEqual(proto.mean[0], 0.5, places=6)
        self.assertAlmostEqual(proto.variance[0], 0.24875, places=6)

    def test_mixed_rejects_bimodal(self):
        """Test that a dimension fitting no distribution rejects the cluster."""
        points = [[0.05 + i / 10000] for i in range(100)] + [
            [0.95 - i / 10000] for i in range(100)
        ]
        tree, cluster = chain(self.desc, points)
        stats = compute_statistics(tree, cluster, self.desc)
        synthesizer = self.synthesizer(tree, 200, proto_style="mixed")

        normal = self.cache.histograms.get(Distribution.NORMAL, cluster.count, 1e-6)
        self.assertIsNone(synthesizer.make_mixed(cluster, stats, normal))
        self.assertIsNone(synthesizer.make_elliptical(cluster, stats, normal))
        self.assertIsNone(synthesizer.make_spherical(cluster, stats, normal))

    def test_make_prototype_splits_bimodal(self):
        """Test that a bimodal root is split into its two modes."""
        points = [[0.05 + i / 10000] for i in range(100)] + [
            [0.95 - i / 10000] for i in range(100)
        ]
        tree = ClusterTree(self.desc)
        for i, point in enumerate(points):
            tree.add_sample(point, i)
        low = tree[0]
        for i in range(1, 100):
            low = tree.merge(low.index, i)
        high = tree[100]
        for i in range(101, 200):
            high = tree.merge(high.index, i)
        root = tree.merge(low.index, high.index)
        tree.set_root(root.index)

        synthesizer = self.synthesizer(tree, 200, proto_style="automatic")
        self.assertIsNone(synthesizer.make_prototype(root))

        prototypes = synthesizer.run()
        self.assertEqual(len(prototypes), 2)
        self.assertEqual(synthesizer.splits, 1)
        self.assertEqual([p.num_samples for p in prototypes], [100, 100])
        self.assertTrue(all(p.significant for p in prototypes))
        self.assertLess(prototypes[0].mean[0], prototypes[1].mean[0])

    def test_clustering_cache(self):
        """Test that the cache owns a threshold memo and a histogram pool."""
        self.assertIs(self.cache.histograms.chi_cache, self.cache.chi_squared)
        self.cache.histograms.release(
            self.cache.histograms.get(Distribution.NORMAL, 100, 1e-6)
        )
        self.assertEqual(len(self.cache.chi_squared), 1)
        self.cache.clear()
        self.assertEqual(len(self.cache.chi_squared), 0)
        self.assertEqual(len(self.cache.histograms), 0)


if __name__ == "__main__":
    unittest.main()
