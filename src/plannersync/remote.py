"""
Remote Store Base Class

Defines the abstract interface to the shared backend: row-oriented CRUD
against named collections plus named remote procedures. Every row is scoped
by a workspace id and carries an author_id; the backend enforces that only
workspace members read and only authors write directly.

Implementations:
    - RestRemoteStore (plannersync.rest_remote): PostgREST-style HTTP via httpx
    - InMemoryRemoteStore (plannersync.memory_backend): in-process reference backend
"""

from abc import ABC, abstractmethod
from typing import Optional, Dict, Any, List
import logging

logger = logging.getLogger(__name__)


class RemoteStore(ABC):
    """
    Abstract base class for remote store implementations.

    All methods are coroutines. Failures raise RemoteError subclasses:
    TransientRemoteError for network trouble, AuthorizationError when the
    caller may not perform the operation, RecordNotFoundError for missing rows.

    Example Implementation:
        class MyRemoteStore(RemoteStore):
            async def select(self, table, filters=None, order_by=None, descending=False):
                ...
    """

    @abstractmethod
    async def select(self, table: str, filters: Optional[Dict[str, Any]] = None,
                     order_by: Optional[str] = None,
                     descending: bool = False) -> List[Dict[str, Any]]:
        """
        Read rows matching all equality predicates in filters.

        Args:
            table: Collection name (e.g. "notes")
            filters: Column -> required value
            order_by: Column to sort by
            descending: Sort direction
        """

    @abstractmethod
    async def insert(self, table: str, row: Dict[str, Any]) -> Dict[str, Any]:
        """Insert a row and return it as stored (server columns filled in)."""

    @abstractmethod
    async def update(self, table: str, row_id: str, changes: Dict[str, Any]) -> Dict[str, Any]:
        """Apply changes to one row and return the updated row."""

    @abstractmethod
    async def delete(self, table: str, row_id: str) -> None:
        """Delete one row."""

    @abstractmethod
    async def rpc(self, name: str, params: Dict[str, Any]) -> Any:
        """Call a named remote procedure and return its result."""

    async def get(self, table: str, row_id: str) -> Optional[Dict[str, Any]]:
        """Read a single row by id, or None if it does not exist."""
        rows = await self.select(table, {"id": row_id})
        return rows[0] if rows else None

    async def close(self) -> None:
        """Release transport resources."""
