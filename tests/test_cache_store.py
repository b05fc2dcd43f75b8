"""
Unit tests for CacheStore - persistent TTL cache

Tests cover:
- put/get and overwrite
- Expiry boundary (valid iff now - stored_at <= ttl)
- Lazy purge of expired entries
- Raw entry access for stale fallbacks
- Degraded behavior when the local store is unavailable
"""

import shutil
import tempfile
import unittest
from pathlib import Path

import sys
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from plannersync.storage.cache import CacheEntry, CacheStore, cache_key
from plannersync.storage.local_store import LocalStore

T0 = 1_700_000_000.0


class TestCacheKey(unittest.TestCase):

    def test_collection_and_workspace(self):
        self.assertEqual(cache_key("notes", "ws1"), "notes_ws1")

    def test_filters_are_sorted(self):
        self.assertEqual(
            cache_key("tasks", "ws1", {"status": "open", "assigned_to": "bob"}),
            "tasks_ws1_assigned_to=bob_status=open",
        )


class TestCacheEntry(unittest.TestCase):

    def test_no_ttl_never_expires(self):
        entry = CacheEntry("k", [], stored_at=0.0, ttl=None)
        self.assertTrue(entry.is_valid(10 ** 12))

    def test_boundary_is_inclusive(self):
        entry = CacheEntry("k", [], stored_at=100.0, ttl=5.0)
        self.assertTrue(entry.is_valid(105.0))
        self.assertFalse(entry.is_valid(105.001))


class TestCacheStore(unittest.IsolatedAsyncioTestCase):

    async def asyncSetUp(self):
        self.temp_dir = tempfile.mkdtemp()
        self.now = T0
        self.store = LocalStore(Path(self.temp_dir) / "local.sqlite")
        self.cache = CacheStore(self.store, clock=lambda: self.now)

    async def asyncTearDown(self):
        await self.cache.drain()
        await self.store.close()
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    async def test_put_then_get(self):
        note = {"id": "n1", "title": "Groceries"}
        self.assertTrue(await self.cache.put("notes_ws1", [note], ttl=60))
        self.assertEqual(await self.cache.get("notes_ws1"), [note])

    async def test_missing_key(self):
        self.assertIsNone(await self.cache.get("nothing_here"))

    async def test_put_overwrites(self):
        await self.cache.put("k", [1], ttl=60)
        await self.cache.put("k", [2], ttl=60)
        self.assertEqual(await self.cache.get("k"), [2])
        self.assertEqual(len(await self.cache.entries()), 1)

    async def test_expiry_boundary_300000ms(self):
        note_a = {"id": "a", "title": "noteA"}
        await self.cache.put("notes_ws1", [note_a], ttl=300.0)

        self.now = T0 + 299.999
        self.assertEqual(await self.cache.get("notes_ws1"), [note_a])

        self.now = T0 + 300.001
        self.assertIsNone(await self.cache.get("notes_ws1"))

    async def test_expired_entry_is_purged_and_stays_absent(self):
        await self.cache.put("k", {"v": 1}, ttl=10)
        self.now = T0 + 11
        self.assertIsNone(await self.cache.get("k"))
        await self.cache.drain()

        self.assertIsNone(await self.cache.get_entry("k"))
        self.now = T0
        self.assertIsNone(await self.cache.get("k"))

    async def test_purge_keeps_a_refreshed_entry(self):
        await self.cache.put("k", {"v": 1}, ttl=10)
        self.now = T0 + 11
        self.assertIsNone(await self.cache.get("k"))
        await self.cache.put("k", {"v": 2}, ttl=10)
        await self.cache.drain()

        self.assertEqual(await self.cache.get("k"), {"v": 2})

    async def test_get_entry_returns_expired_without_purging(self):
        await self.cache.put("k", ["old"], ttl=10)
        self.now = T0 + 100

        entry = await self.cache.get_entry("k")
        self.assertEqual(entry.data, ["old"])
        self.assertFalse(entry.is_valid(self.now))
        await self.cache.drain()
        self.assertIsNotNone(await self.cache.get_entry("k"))

    async def test_no_ttl_never_expires(self):
        await self.cache.put("k", "forever")
        self.now = T0 + 10 ** 9
        self.assertEqual(await self.cache.get("k"), "forever")

    async def test_delete_and_clear(self):
        await self.cache.put("a", 1)
        await self.cache.put("b", 2)
        self.assertTrue(await self.cache.delete("a"))
        self.assertIsNone(await self.cache.get("a"))

        self.assertTrue(await self.cache.clear())
        self.assertEqual(await self.cache.entries(), [])

    async def test_entries_listing(self):
        await self.cache.put("b", [2], ttl=5)
        await self.cache.put("a", [1])
        entries = await self.cache.entries()
        self.assertEqual([e.key for e in entries], ["a", "b"])
        self.assertEqual(entries[1].ttl, 5)

    async def test_unserializable_value_is_not_cached(self):
        self.assertFalse(await self.cache.put("k", {"when": object()}))
        self.assertIsNone(await self.cache.get("k"))

    async def test_entries_survive_a_new_store(self):
        await self.cache.put("notes_ws1", [{"id": "n1"}], ttl=60)
        await self.store.close()

        store = LocalStore(Path(self.temp_dir) / "local.sqlite")
        try:
            cache = CacheStore(store, clock=lambda: self.now)
            self.assertEqual(await cache.get("notes_ws1"), [{"id": "n1"}])
        finally:
            await store.close()


class TestCacheStoreUnavailable(unittest.IsolatedAsyncioTestCase):

    async def asyncSetUp(self):
        self.temp_dir = tempfile.mkdtemp()
        blocker = Path(self.temp_dir) / "file"
        blocker.write_text("x")
        self.store = LocalStore(blocker / "local.sqlite")
        self.cache = CacheStore(self.store)

    async def asyncTearDown(self):
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    async def test_operations_degrade(self):
        self.assertFalse(await self.cache.put("k", [1], ttl=60))
        self.assertIsNone(await self.cache.get("k"))
        self.assertIsNone(await self.cache.get_entry("k"))
        self.assertFalse(await self.cache.delete("k"))
        self.assertFalse(await self.cache.clear())
        self.assertEqual(await self.cache.entries(), [])


if __name__ == "__main__":
    unittest.main()
