"""
Unit tests for Clusterer benchmarking hooks.
"""

import unittest

from tiny_proto import ClusterConfig, Clusterer, DimensionDescriptor


def make_clusterer(count, memory_limit_bytes=None):
    desc = [DimensionDescriptor(0.0, 1.0), DimensionDescriptor(0.0, 1.0)]
    clusterer = Clusterer(2, desc, memory_limit_bytes=memory_limit_bytes)
    for i in range(count):
        clusterer.add_sample([(i % 10) / 10 + 0.05, (i // 10) / 10 + 0.05], i)
    return clusterer


class TestClustererBenchmarking(unittest.TestCase):
    """Test cases for benchmarking hooks in Clusterer."""

    def test_estimate_size(self):
        """Test memory estimation as samples are added and clustered."""
        clusterer = make_clusterer(0)
        size_empty = clusterer.estimate_size()
        self.assertGreater(size_empty, 50, "Empty clusterer should have base size")

        clusterer = make_clusterer(50)
        size_samples = clusterer.estimate_size()
        self.assertGreater(size_samples, size_empty, "Size should increase with samples")

        clusterer.cluster()
        size_clustered = clusterer.estimate_size()
        self.assertGreater(
            size_clustered, 0, "Clustered size should still be reported"
        )

        clusterer.dispose()
        self.assertLess(
            clusterer.estimate_size(),
            size_clustered,
            "Disposal should release the tree and caches",
        )

    def test_memory_limit(self):
        """Test the memory limit check."""
        self.assertTrue(make_clusterer(10).check_memory_limit())
        self.assertFalse(make_clusterer(10, memory_limit_bytes=1).check_memory_limit())
        self.assertTrue(make_clusterer(10, memory_limit_bytes=10 ** 9).check_memory_limit())

    def test_get_stats_before_clustering(self):
        """Test get_stats for a clusterer holding samples only."""
        clusterer = make_clusterer(25)
        clusterer.add_sample([0.5, 0.5], 99)
        stats = clusterer.get_stats()

        self.assertEqual(stats["type"], "Clusterer")
        self.assertEqual(stats["sample_size"], 2)
        self.assertEqual(stats["num_samples"], 26)
        self.assertEqual(stats["num_chars"], 100)
        self.assertEqual(stats["num_clusters"], 26)
        self.assertFalse(stats["is_clustered"])
        self.assertFalse(stats["is_disposed"])
        self.assertEqual(stats["num_prototypes"], 0)
        self.assertEqual(stats["prototype_styles"], {})
        self.assertEqual(stats["cluster_runs"], 0)
        self.assertGreater(stats["memory_bytes"], 0)
        self.assertNotIn("build_time_s", stats)
        self.assertNotIn("config", stats)
        self.assertNotIn("memory_limit_bytes", stats)

    def test_get_stats_after_clustering(self):
        """Test get_stats once prototypes have been computed."""
        clusterer = make_clusterer(100, memory_limit_bytes=10 ** 8)
        prototypes = clusterer.cluster(ClusterConfig(proto_style="mixed"))
        stats = clusterer.get_stats()

        self.assertTrue(stats["is_clustered"])
        # A binary tree over n leaves has n - 1 internal nodes
        self.assertEqual(stats["num_clusters"], 199)
        self.assertEqual(stats["num_prototypes"], len(prototypes))
        self.assertEqual(
            stats["significant_prototypes"], sum(1 for p in prototypes if p.significant)
        )
        self.assertEqual(stats["prototype_styles"], {"mixed": len(prototypes)})
        self.assertEqual(stats["cluster_runs"], 1)
        self.assertEqual(stats["config"]["proto_style"], "mixed")
        self.assertGreaterEqual(stats["build_time_s"], 0.0)
        self.assertGreaterEqual(stats["last_cluster_time_s"], 0.0)
        self.assertEqual(stats["memory_limit_bytes"], 10 ** 8)
        self.assertGreater(stats["memory_usage_pct"], 0.0)

    def test_caches_shared_between_runs(self):
        """Test that thresholds and histograms are reused across runs."""
        clusterer = make_clusterer(100)
        clusterer.cluster(ClusterConfig(independence_bound=1.0))
        thresholds = clusterer.get_stats()["cached_thresholds"]
        pooled = clusterer.get_stats()["pooled_histograms"]
        self.assertGreater(thresholds, 0)
        self.assertGreater(pooled, 0)

        # The same configuration needs no new thresholds or histograms
        clusterer.cluster(ClusterConfig(independence_bound=1.0))
        stats = clusterer.get_stats()
        self.assertEqual(stats["cached_thresholds"], thresholds)
        self.assertEqual(stats["pooled_histograms"], pooled)
        self.assertEqual(stats["cluster_runs"], 2)

        clusterer.dispose()
        stats = clusterer.get_stats()
        self.assertTrue(stats["is_disposed"])
        self.assertEqual(stats["cached_thresholds"], 0)
        self.assertEqual(stats["pooled_histograms"], 0)


if __name__ == "__main__":
    unittest.main()
