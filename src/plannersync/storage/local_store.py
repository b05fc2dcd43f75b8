"""
Local Store - durable embedded storage for a single client process.

Async SQLite (aiosqlite) database holding two independently addressable
collections:
- cache: key/value entries with per-entry TTL (see storage.cache)
- sync_queue: offline mutation ledger (see storage.sync_queue)

The schema is versioned through PRAGMA user_version and migrated forward on
open. WAL mode lets readers proceed while a write is in progress.

The store opens lazily. If opening fails (missing directory permissions,
locked file, ...) the store reports itself unavailable and the next
operation tries again.
"""

import sqlite3
from pathlib import Path
from typing import Optional, Dict
import logging

import aiosqlite

logger = logging.getLogger(__name__)


# version -> DDL applied when migrating up to that version
MIGRATIONS: Dict[int, str] = {
    1: """
        CREATE TABLE IF NOT EXISTS cache (
            key TEXT PRIMARY KEY,
            data TEXT NOT NULL,        -- JSON
            stored_at REAL NOT NULL,   -- epoch seconds
            ttl REAL                   -- seconds, NULL = never expires
        );

        CREATE INDEX IF NOT EXISTS idx_cache_stored_at ON cache(stored_at);

        CREATE TABLE IF NOT EXISTS sync_queue (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            resource_kind TEXT NOT NULL,
            resource_id TEXT NOT NULL,
            operation TEXT CHECK(operation IN ('create','update','delete')),
            payload TEXT NOT NULL,     -- JSON
            enqueued_at REAL NOT NULL,
            synced INTEGER NOT NULL DEFAULT 0
        );

        CREATE INDEX IF NOT EXISTS idx_sync_queue_synced ON sync_queue(synced);
    """,
    2: """
        ALTER TABLE sync_queue ADD COLUMN attempts INTEGER NOT NULL DEFAULT 0;
        ALTER TABLE sync_queue ADD COLUMN last_error TEXT;
    """,
}

SCHEMA_VERSION = max(MIGRATIONS)


class LocalStore:
    """
    Durable, versioned key/value store backing the cache and sync queue.

    Usage:
        store = LocalStore(Path("~/.plannersync/local.sqlite").expanduser())
        conn = await store.connection()
        if conn is None:
            ...  # store unavailable, degrade gracefully
        await store.close()
    """

    COLLECTIONS = ("cache", "sync_queue")

    def __init__(self, db_path: Path, enable_wal: bool = True):
        """
        Args:
            db_path: Path to SQLite database file
            enable_wal: Enable WAL mode for concurrent readers (default: True)
        """
        self.db_path = Path(db_path)
        self._enable_wal = enable_wal
        self._conn: Optional[aiosqlite.Connection] = None
        self._closed = False

    @property
    def available(self) -> bool:
        """True once the database is open."""
        return self._conn is not None

    async def open(self) -> bool:
        """
        Open the database and migrate the schema.

        Returns:
            True if the store is usable, False if it is (transiently) unavailable
        """
        if self._conn is not None:
            return True
        if self._closed:
            logger.debug(f"Local store {self.db_path} is closed")
            return False

        conn = None
        try:
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
            conn = await aiosqlite.connect(self.db_path, timeout=30.0)
            conn.row_factory = aiosqlite.Row
            if self._enable_wal:
                await conn.execute("PRAGMA journal_mode=WAL")
            await self._migrate(conn)
        except (sqlite3.Error, OSError) as e:
            logger.warning(f"Local store unavailable at {self.db_path}: {e}")
            if conn is not None:
                await conn.close()
            return False

        self._conn = conn
        logger.info(f"Local store opened at {self.db_path} (schema v{SCHEMA_VERSION})")
        return True

    async def _migrate(self, conn: aiosqlite.Connection) -> None:
        """Apply pending migrations in version order."""
        async with conn.execute("PRAGMA user_version") as cursor:
            row = await cursor.fetchone()
        current = row[0] if row else 0

        for version in sorted(v for v in MIGRATIONS if v > current):
            await conn.executescript(MIGRATIONS[version])
            await conn.execute(f"PRAGMA user_version = {version}")
            await conn.commit()
            logger.info(f"Migrated local store to schema v{version}")

    async def connection(self) -> Optional[aiosqlite.Connection]:
        """Return the open connection, opening it if needed; None if unavailable."""
        if self._conn is None:
            await self.open()
        return self._conn

    async def schema_version(self) -> Optional[int]:
        conn = await self.connection()
        if conn is None:
            return None
        async with conn.execute("PRAGMA user_version") as cursor:
            row = await cursor.fetchone()
        return row[0]

    async def collection_sizes(self) -> Dict[str, int]:
        """Row counts per collection (empty dict if unavailable)."""
        conn = await self.connection()
        if conn is None:
            return {}
        sizes = {}
        for name in self.COLLECTIONS:
            async with conn.execute(f"SELECT COUNT(*) FROM {name}") as cursor:
                row = await cursor.fetchone()
            sizes[name] = row[0]
        return sizes

    async def close(self) -> None:
        """Close connection. Further operations report the store unavailable."""
        self._closed = True
        if self._conn:
            await self._conn.close()
            self._conn = None
            logger.info(f"Local store closed at {self.db_path}")

    async def __aenter__(self):
        await self.open()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

