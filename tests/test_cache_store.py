import os
import sqlite3
import tempfile
import unittest
from pathlib import Path


from cache_store import CACHE_KEYS, CACHE_OPTIONS, CacheStore


class FakeClock:
    def __init__(self, now=1_700_000_000.0):
        self.now = now

    def __call__(self):
        return self.now


class TestCacheStore(unittest.TestCase):
    def setUp(self):
        self.clock = FakeClock()
        self.cache = CacheStore(":memory:", namespace="runclubs", clock=self.clock)

    def tearDown(self):
        self.cache.close()

    def test_set_then_get(self):
        self.cache.set("runclubs-data", {"type": "FeatureCollection", "features": []}, "1.0.0")
        self.assertEqual(self.cache.get("runclubs-data", 60, "1.0.0"), {"type": "FeatureCollection", "features": []})
        self.assertTrue(self.cache.has("runclubs-data", 60, "1.0.0"))

    def test_missing_key(self):
        self.assertIsNone(self.cache.get("nope"))

    def test_expired_entry_is_miss_and_purged(self):
        self.cache.set("k", [1, 2, 3])
        self.clock.now += 31 * 60
        with self.assertLogs("cache_store", level="INFO"):
            self.assertIsNone(self.cache.get("k", ttl_seconds=30 * 60))
        self.assertIsNone(self.cache.age_seconds("k"))

    def test_entry_within_ttl(self):
        self.cache.set("k", "v")
        self.clock.now += 29 * 60
        self.assertEqual(self.cache.get("k", ttl_seconds=30 * 60), "v")
        self.assertAlmostEqual(self.cache.age_seconds("k"), 29 * 60, places=1)

    def test_version_mismatch_is_miss_and_purged(self):
        self.cache.set("k", "v", version="1.0.0")
        self.assertIsNone(self.cache.get("k", version="2.0.0"))
        self.assertIsNone(self.cache.get("k", version="1.0.0"))

    def test_corrupt_entry_is_miss_and_purged(self):
        self.cache.set("k", "v")
        with self.cache.lock:
            self.cache.conn.execute("UPDATE cache_entries SET payload = ? WHERE key = ?", ("{not json", "k"))
            self.cache.conn.commit()
        with self.assertLogs("cache_store", level="WARNING"):
            self.assertIsNone(self.cache.get("k"))
        self.assertIsNone(self.cache.age_seconds("k"))

    def test_remove(self):
        self.cache.set("k", "v")
        self.cache.remove("k")
        self.assertIsNone(self.cache.get("k"))

    def test_clear_only_touches_own_namespace(self):
        with tempfile.TemporaryDirectory() as tmp:
            path = str(Path(tmp) / "cache.db")
            mine = CacheStore(path, namespace="runclubs", clock=self.clock)
            theirs = CacheStore(path, namespace="prefs", clock=self.clock)
            mine.set("a", 1)
            mine.set("b", 2)
            theirs.set("a", "keep me")
            self.assertEqual(mine.clear(), 2)
            self.assertIsNone(mine.get("a"))
            self.assertEqual(theirs.get("a"), "keep me")
            mine.close()
            theirs.close()

    def test_clear_expired(self):
        self.cache.set("old", 1)
        self.clock.now += 3600
        self.cache.set("new", 2)
        self.assertEqual(self.cache.clear_expired(ttl_seconds=1800), 1)
        self.assertEqual(self.cache.get("new", ttl_seconds=1800), 2)

    def test_stats(self):
        self.assertEqual(self.cache.stats()["total_items"], 0)
        self.assertIsNone(self.cache.stats()["oldest_cache"])
        self.cache.set("first", "x")
        self.clock.now += 120
        self.cache.set("second", "y")
        stats = self.cache.stats()
        self.assertEqual(stats["total_items"], 2)
        self.assertTrue(stats["total_size"].endswith("KB"))
        self.assertEqual(stats["oldest_cache"], "first (2 min)")

    def test_persists_across_instances(self):
        with tempfile.TemporaryDirectory() as tmp:
            path = os.path.join(tmp, "cache.db")
            first = CacheStore(path, clock=self.clock)
            first.set("k", {"a": 1})
            first.close()
            second = CacheStore(path, clock=self.clock)
            self.assertEqual(second.get("k"), {"a": 1})
            second.close()
            conn = sqlite3.connect(path)
            count = conn.execute("SELECT COUNT(*) FROM cache_entries").fetchone()[0]
            conn.close()
            self.assertEqual(count, 1)

    def test_reserved_options(self):
        self.assertEqual(CACHE_KEYS["RUN_CLUBS"], "runclubs-data")
        self.assertEqual(CACHE_OPTIONS["RUN_CLUBS"]["ttl_seconds"], 30 * 60)


if __name__ == "__main__":
    unittest.main()
