"""
Persistent local cache with per-entry TTL.

Pattern: cache-first storage for offline reads. Entries survive restarts;
expired entries are purged lazily when they are next read, never by a
background sweep.

Every operation degrades instead of raising: when the local store is
unavailable or a statement fails, reads behave as a miss and writes return
False. Callers must tolerate absence.
"""

import asyncio
import json
import sqlite3
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Set
import logging

from .local_store import LocalStore

logger = logging.getLogger(__name__)


def cache_key(table: str, workspace_id: str, filters: Optional[Dict[str, Any]] = None) -> str:
    """
    Build a cache key namespaced by resource collection and workspace.

    Examples:
        >>> cache_key("notes", "ws1")
        'notes_ws1'
        >>> cache_key("tasks", "ws1", {"status": "open"})
        'tasks_ws1_status=open'
    """
    key = f"{table}_{workspace_id}"
    for name in sorted(filters or {}):
        key += f"_{name}={filters[name]}"
    return key


@dataclass
class CacheEntry:
    """A cached value with the time it was stored and its time to live."""
    key: str
    data: Any
    stored_at: float  # epoch seconds
    ttl: Optional[float] = None  # seconds; None = never expires

    def is_valid(self, now: float) -> bool:
        """Valid iff now - stored_at <= ttl (no ttl: always valid)."""
        if self.ttl is None:
            return True
        return now - self.stored_at <= self.ttl

    def age(self, now: float) -> float:
        return now - self.stored_at


class CacheStore:
    """
    Key/value cache over the LocalStore "cache" collection.

    Features:
    - put() overwrites any prior entry for the key (UPSERT)
    - get() hides expired entries and schedules their deletion
    - get_entry() exposes the raw entry, expired or not, for stale fallbacks
    - Injectable clock for deterministic expiry

    Usage:
        cache = CacheStore(store)
        await cache.put("notes_ws1", [note], ttl=300)
        notes = await cache.get("notes_ws1")   # None once expired
    """

    def __init__(self, store: LocalStore, clock: Callable[[], float] = time.time):
        """
        Args:
            store: Durable local store
            clock: Returns the current time in epoch seconds
        """
        self.store = store
        self._clock = clock
        self._purge_tasks: Set[asyncio.Task] = set()

    def now(self) -> float:
        """Current time according to the cache clock."""
        return self._clock()

    async def put(self, key: str, value: Any, ttl: Optional[float] = None) -> bool:
        """
        Store value under key, replacing any prior entry.

        Args:
            key: Cache key (see cache_key())
            value: JSON-serializable value
            ttl: Seconds the entry stays valid; None = never expires

        Returns:
            True if written, False if the store is unavailable or the write failed
        """
        try:
            data = json.dumps(value)
        except (TypeError, ValueError) as e:
            logger.error(f"Cannot cache {key}: value is not JSON serializable ({e})")
            return False

        conn = await self.store.connection()
        if conn is None:
            return False
        try:
            await conn.execute(
                """
                INSERT INTO cache (key, data, stored_at, ttl)
                VALUES (?, ?, ?, ?)
                ON CONFLICT(key) DO UPDATE SET
                    data = excluded.data,
                    stored_at = excluded.stored_at,
                    ttl = excluded.ttl
                """,
                (key, data, self._clock(), ttl)
            )
            await conn.commit()
        except sqlite3.Error as e:
            logger.warning(f"Failed to write cache entry {key}: {e}")
            return False
        return True

    async def get_entry(self, key: str) -> Optional[CacheEntry]:
        """
        Read the raw entry for key, including an expired one. Never purges.

        Returns:
            CacheEntry, or None if missing or the store is unavailable
        """
        conn = await self.store.connection()
        if conn is None:
            return None
        try:
            async with conn.execute(
                "SELECT key, data, stored_at, ttl FROM cache WHERE key = ?",
                (key,)
            ) as cursor:
                row = await cursor.fetchone()
        except sqlite3.Error as e:
            logger.warning(f"Failed to read cache entry {key}: {e}")
            return None

        if row is None:
            return None
        try:
            data = json.loads(row["data"])
        except ValueError:
            logger.warning(f"Discarding corrupt cache entry {key}")
            return None
        return CacheEntry(key=row["key"], data=data, stored_at=row["stored_at"], ttl=row["ttl"])

    async def get(self, key: str) -> Optional[Any]:
        """
        Return the cached value, or None if missing or expired.

        An expired entry is deleted in the background.
        """
        entry = await self.get_entry(key)
        if entry is None:
            return None
        if not entry.is_valid(self._clock()):
            logger.debug(f"Cache entry {key} expired after {entry.age(self._clock()):.1f}s")
            self._schedule_purge(entry)
            return None
        return entry.data

    def _schedule_purge(self, entry: CacheEntry) -> None:
        task = asyncio.get_running_loop().create_task(self._purge(entry))
        self._purge_tasks.add(task)
        task.add_done_callback(self._purge_tasks.discard)

    async def _purge(self, entry: CacheEntry) -> None:
        # Only remove the row we saw; a concurrent put() may have refreshed it
        conn = await self.store.connection()
        if conn is None:
            return
        try:
            await conn.execute(
                "DELETE FROM cache WHERE key = ? AND stored_at = ?",
                (entry.key, entry.stored_at)
            )
            await conn.commit()
        except sqlite3.Error as e:
            logger.warning(f"Failed to purge expired cache entry {entry.key}: {e}")

    async def delete(self, key: str) -> bool:
        """Delete an entry. Returns False if the store is unavailable."""
        conn = await self.store.connection()
        if conn is None:
            return False
        try:
            await conn.execute("DELETE FROM cache WHERE key = ?", (key,))
            await conn.commit()
        except sqlite3.Error as e:
            logger.warning(f"Failed to delete cache entry {key}: {e}")
            return False
        return True

    async def clear(self) -> bool:
        """Delete every entry. Returns False if the store is unavailable."""
        conn = await self.store.connection()
        if conn is None:
            return False
        try:
            await conn.execute("DELETE FROM cache")
            await conn.commit()
        except sqlite3.Error as e:
            logger.warning(f"Failed to clear cache: {e}")
            return False
        logger.info("Cache cleared")
        return True

    async def entries(self) -> List[CacheEntry]:
        """All raw entries ordered by key (empty if unavailable)."""
        conn = await self.store.connection()
        if conn is None:
            return []
        try:
            async with conn.execute(
                "SELECT key, stored_at, ttl FROM cache ORDER BY key"
            ) as cursor:
                rows = await cursor.fetchall()
        except sqlite3.Error as e:
            logger.warning(f"Failed to list cache entries: {e}")
            return []
        # data is not needed for listings
        return [CacheEntry(key=r["key"], data=None, stored_at=r["stored_at"], ttl=r["ttl"]) for r in rows]

    async def drain(self) -> None:
        """Wait for scheduled purges to finish."""
        if self._purge_tasks:
            await asyncio.gather(*list(self._purge_tasks), return_exceptions=True)
