"""
Sync Queue - ledger of mutations made while offline.

State per entry::

    enqueue() -> synced=False --replay ok--> mark_synced() -> synced=True

Synced entries are kept for audit, not deleted. Failed replays bump
``attempts`` and record ``last_error`` but leave the entry unsynced.
Entry ids come from SQLite AUTOINCREMENT, so they are monotonic and define
replay order.
"""

import json
import sqlite3
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, List, Optional
import logging

from .local_store import LocalStore
from ..errors import StoreUnavailableError

logger = logging.getLogger(__name__)


class MutationOperation(Enum):
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"


@dataclass
class QueuedMutation:
    """A write recorded while offline, waiting to be replayed."""
    id: int
    resource_kind: str
    resource_id: str
    operation: MutationOperation
    payload: Dict[str, Any]
    enqueued_at: float
    synced: bool = False
    attempts: int = 0
    last_error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "id": self.id,
            "resource_kind": self.resource_kind,
            "resource_id": self.resource_id,
            "operation": self.operation.value,
            "payload": self.payload,
            "enqueued_at": self.enqueued_at,
            "synced": self.synced,
            "attempts": self.attempts,
            "last_error": self.last_error,
        }


class MutationQueue:
    """
    QueuedMutation ledger over the LocalStore "sync_queue" collection.

    Unlike the cache, losing a queued write would silently drop user data, so
    enqueue() raises StoreUnavailableError instead of degrading.
    """

    def __init__(self, store: LocalStore, clock: Callable[[], float] = time.time):
        self.store = store
        self._clock = clock

    async def _conn(self):
        conn = await self.store.connection()
        if conn is None:
            raise StoreUnavailableError(f"Local store unavailable at {self.store.db_path}")
        return conn

    async def enqueue(self, resource_kind: str, resource_id: str,
                      operation: MutationOperation, payload: Dict[str, Any]) -> QueuedMutation:
        """
        Record a mutation for later replay.

        Raises:
            StoreUnavailableError: If the local store cannot be opened
        """
        conn = await self._conn()
        enqueued_at = self._clock()
        cursor = await conn.execute(
            """
            INSERT INTO sync_queue (resource_kind, resource_id, operation, payload, enqueued_at, synced)
            VALUES (?, ?, ?, ?, ?, 0)
            """,
            (resource_kind, resource_id, operation.value, json.dumps(payload), enqueued_at)
        )
        await conn.commit()
        mutation_id = cursor.lastrowid
        await cursor.close()

        logger.info(f"Queued offline {operation.value} of {resource_kind} {resource_id} (#{mutation_id})")
        return QueuedMutation(
            id=mutation_id,
            resource_kind=resource_kind,
            resource_id=resource_id,
            operation=operation,
            payload=payload,
            enqueued_at=enqueued_at,
        )

    async def pending(self) -> List[QueuedMutation]:
        """Unsynced mutations in replay (id) order."""
        return await self._select("WHERE synced = 0")

    async def all(self) -> List[QueuedMutation]:
        """Every mutation, synced ones included (audit view)."""
        return await self._select("")

    async def get(self, mutation_id: int) -> Optional[QueuedMutation]:
        rows = await self._select("WHERE id = ?", (mutation_id,))
        return rows[0] if rows else None

    async def _select(self, where: str, params: tuple = ()) -> List[QueuedMutation]:
        conn = await self._conn()
        async with conn.execute(
            f"""
            SELECT id, resource_kind, resource_id, operation, payload, enqueued_at,
                   synced, attempts, last_error
            FROM sync_queue
            {where}
            ORDER BY id
            """,
            params
        ) as cursor:
            rows = await cursor.fetchall()
        return [self._row_to_mutation(row) for row in rows]

    async def mark_synced(self, mutation_id: int) -> bool:
        """
        Mark a mutation as replayed.

        Returns:
            True if the entry existed and was unsynced
        """
        conn = await self._conn()
        cursor = await conn.execute(
            "UPDATE sync_queue SET synced = 1, last_error = NULL WHERE id = ? AND synced = 0",
            (mutation_id,)
        )
        await conn.commit()
        updated = cursor.rowcount > 0
        await cursor.close()
        return updated

    async def record_failure(self, mutation_id: int, error: str) -> None:
        """Bump the attempt counter and remember the failure."""
        conn = await self._conn()
        await conn.execute(
            "UPDATE sync_queue SET attempts = attempts + 1, last_error = ? WHERE id = ?",
            (error, mutation_id)
        )
        await conn.commit()

    async def pending_count(self) -> int:
        try:
            conn = await self._conn()
            async with conn.execute("SELECT COUNT(*) FROM sync_queue WHERE synced = 0") as cursor:
                row = await cursor.fetchone()
        except (StoreUnavailableError, sqlite3.Error) as e:
            logger.warning(f"Cannot count pending mutations: {e}")
            return 0
        return row[0]

    async def clear(self) -> None:
        """Remove every entry, synced or not."""
        conn = await self._conn()
        await conn.execute("DELETE FROM sync_queue")
        await conn.commit()
        logger.info("Sync queue cleared")

    def _row_to_mutation(self, row) -> QueuedMutation:
        return QueuedMutation(
            id=row["id"],
            resource_kind=row["resource_kind"],
            resource_id=row["resource_id"],
            operation=MutationOperation(row["operation"]),
            payload=json.loads(row["payload"]),
            enqueued_at=row["enqueued_at"],
            synced=bool(row["synced"]),
            attempts=row["attempts"],
            last_error=row["last_error"],
        )
