"""
In-process reference backend.

Implements the server side of the shared planner in memory: workspace
membership, row storage with server-assigned versions, the author-only write
policy, the edit-approval procedures, and a change feed. Useful for local
development without a server and as the backend of the test-suite.

    backend = InMemoryBackend()
    backend.add_member("ws1", "alice")
    backend.add_member("ws1", "bob")

    alice = InMemoryRemoteStore(backend, "alice")
    feed = InMemoryChangeFeed(backend)

Setting ``backend.reachable = False`` makes every remote call fail with
TransientRemoteError, simulating loss of connectivity.
"""

import asyncio
import copy
import itertools
import uuid
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Set, Tuple
import logging

from .changefeed import Channel, ChangeEvent, ChangeEventType, ChangeFeedTransport
from .errors import (
    AuthorizationError,
    RecordNotFoundError,
    RemoteError,
    TransientRemoteError,
)
from .models import (
    PENDING_EDITS_TABLE,
    PROFILES_TABLE,
    SYSTEM_FIELDS,
    EditOperation,
    EditStatus,
    get_kind,
)
from .remote import RemoteStore

logger = logging.getLogger(__name__)

Row = Dict[str, Any]
Listener = Callable[[ChangeEvent], None]


def _matches(row: Row, filters: Optional[Dict[str, Any]]) -> bool:
    return all(row.get(column) == value for column, value in (filters or {}).items())


class InMemoryBackend:
    """Server state shared by every client connected to it."""

    def __init__(self):
        self.tables: Dict[str, Dict[str, Row]] = {}
        self.members: Dict[str, Set[str]] = {}
        self.reachable = True
        self._versions = itertools.count(1)
        self._listeners: List[Tuple[str, Dict[str, Any], Listener]] = []

    # ------------------------------------------------------------------
    # Setup helpers
    # ------------------------------------------------------------------

    def add_member(self, workspace_id: str, user_id: str) -> None:
        self.members.setdefault(workspace_id, set()).add(user_id)

    def add_profile(self, user_id: str, display_name: Optional[str] = None,
                    email: Optional[str] = None) -> None:
        self._table(PROFILES_TABLE)[user_id] = {
            "id": user_id, "display_name": display_name, "email": email, "avatar_url": None,
        }

    def seed(self, table: str, row: Row) -> Row:
        """Store a row bypassing authorization (no change event)."""
        stored = self._stamp(dict(row), created=True)
        self._table(table)[stored["id"]] = stored
        return copy.deepcopy(stored)

    def row(self, table: str, row_id: str) -> Optional[Row]:
        """Direct read for assertions."""
        found = self._table(table).get(row_id)
        return copy.deepcopy(found) if found else None

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _table(self, table: str) -> Dict[str, Row]:
        return self.tables.setdefault(table, {})

    def _stamp(self, row: Row, created: bool = False) -> Row:
        now = datetime.now().isoformat()
        row.setdefault("id", str(uuid.uuid4()))
        if created:
            row.setdefault("created_at", now)
        row["updated_at"] = now
        row["version"] = next(self._versions)
        return row

    def _check_reachable(self) -> None:
        if not self.reachable:
            raise TransientRemoteError("Network request failed: backend unreachable")

    def _check_member(self, workspace_id: Optional[str], caller: str) -> None:
        if caller not in self.members.get(workspace_id, set()):
            raise AuthorizationError(
                f"{caller} is not a member of workspace {workspace_id}", code="42501", status=403
            )

    def _get_existing(self, table: str, row_id: str, caller: str) -> Row:
        row = self._table(table).get(row_id)
        if row is None:
            raise RecordNotFoundError(f"{table} {row_id} not found", status=404)
        if table != PROFILES_TABLE:
            self._check_member(row.get("workspace_id"), caller)
        return row

    def _emit(self, table: str, event_type: ChangeEventType,
              new: Optional[Row] = None, old: Optional[Row] = None) -> None:
        record = old if event_type is ChangeEventType.DELETE else new
        for listen_table, filters, listener in list(self._listeners):
            if listen_table == table and _matches(record, filters):
                listener(ChangeEvent(
                    type=event_type,
                    table=table,
                    new=copy.deepcopy(new),
                    old=copy.deepcopy(old),
                ))

    def listen(self, table: str, filters: Dict[str, Any], listener: Listener) -> Callable[[], None]:
        entry = (table, dict(filters), listener)
        self._listeners.append(entry)

        def remove() -> None:
            if entry in self._listeners:
                self._listeners.remove(entry)

        return remove

    # ------------------------------------------------------------------
    # Row operations (caller identity enforced)
    # ------------------------------------------------------------------

    def select(self, caller: str, table: str, filters: Optional[Dict[str, Any]] = None,
               order_by: Optional[str] = None, descending: bool = False) -> List[Row]:
        self._check_reachable()
        rows = []
        for row in self._table(table).values():
            if table != PROFILES_TABLE and caller not in self.members.get(row.get("workspace_id"), set()):
                continue
            if _matches(row, filters):
                rows.append(copy.deepcopy(row))
        if order_by:
            rows.sort(key=lambda r: (r.get(order_by) is None, r.get(order_by)), reverse=descending)
        return rows

    def insert(self, caller: str, table: str, row: Row) -> Row:
        self._check_reachable()
        row = dict(row)
        self._check_member(row.get("workspace_id"), caller)
        row.setdefault("author_id", caller)
        if row["author_id"] != caller:
            raise AuthorizationError("Rows can only be created as yourself", code="42501", status=403)
        if row.get("id") in self._table(table):
            raise RemoteError(f"Duplicate key {row['id']} in {table}", code="23505", status=409)
        stored = self._stamp(row, created=True)
        self._table(table)[stored["id"]] = stored
        self._emit(table, ChangeEventType.INSERT, new=stored)
        return copy.deepcopy(stored)

    def update(self, caller: str, table: str, row_id: str, changes: Row) -> Row:
        self._check_reachable()
        row = self._get_existing(table, row_id, caller)
        if row.get("author_id") != caller:
            raise AuthorizationError(f"Only the author may update {table} {row_id}", code="42501", status=403)
        return self._apply_update(table, row, changes)

    def _apply_update(self, table: str, row: Row, changes: Row) -> Row:
        for column, value in changes.items():
            if column not in SYSTEM_FIELDS:
                row[column] = copy.deepcopy(value)
        self._stamp(row)
        self._emit(table, ChangeEventType.UPDATE, new=row)
        return copy.deepcopy(row)

    def delete(self, caller: str, table: str, row_id: str) -> None:
        self._check_reachable()
        row = self._get_existing(table, row_id, caller)
        if row.get("author_id") != caller:
            raise AuthorizationError(f"Only the author may delete {table} {row_id}", code="42501", status=403)
        self._apply_delete(table, row)

    def _apply_delete(self, table: str, row: Row) -> None:
        del self._table(table)[row["id"]]
        self._emit(table, ChangeEventType.DELETE, old=row)

    # ------------------------------------------------------------------
    # Remote procedures
    # ------------------------------------------------------------------

    def rpc(self, caller: str, name: str, params: Dict[str, Any]) -> Any:
        self._check_reachable()
        procedures = {
            "request_edit": self._request_edit,
            "approve_edit": self._approve_edit,
            "reject_edit": self._reject_edit,
        }
        if name not in procedures:
            raise RemoteError(f"Unknown procedure {name}", code="PGRST202", status=404)
        return procedures[name](caller, **params)

    def _request_edit(self, caller: str, p_workspace_id: str, p_content_type: str,
                      p_content_id: str, p_action: str, p_new_data: Optional[Row] = None,
                      p_description: Optional[str] = None) -> str:
        self._check_member(p_workspace_id, caller)
        table = get_kind(p_content_type).table
        target = self._get_existing(table, p_content_id, caller)
        if target.get("author_id") == caller:
            raise RemoteError("Authors edit their own items directly", code="P0001", status=400)
        action = EditOperation(p_action)

        edit = self._stamp({
            "workspace_id": p_workspace_id,
            "requester_id": caller,
            "approver_id": target["author_id"],
            "content_type": p_content_type,
            "content_id": p_content_id,
            "action": action.value,
            "original_data": copy.deepcopy(target),
            "new_data": copy.deepcopy(p_new_data) if action is EditOperation.EDIT else None,
            "change_description": p_description,
            "status": EditStatus.PENDING.value,
        }, created=True)
        self._table(PENDING_EDITS_TABLE)[edit["id"]] = edit
        self._emit(PENDING_EDITS_TABLE, ChangeEventType.INSERT, new=edit)
        return edit["id"]

    def _pending_edit_for_approver(self, caller: str, edit_id: str) -> Row:
        edit = self._table(PENDING_EDITS_TABLE).get(edit_id)
        if edit is None:
            raise RecordNotFoundError(f"Pending edit {edit_id} not found", status=404)
        if edit["approver_id"] != caller:
            raise AuthorizationError("Only the item's author can resolve this edit", code="42501", status=403)
        if edit["status"] != EditStatus.PENDING.value:
            raise RemoteError(f"Edit already {edit['status']}", code="P0002", status=409)
        return edit

    def _approve_edit(self, caller: str, p_edit_id: str) -> None:
        # Runs without suspension points, so the mutation and the status
        # change are observed together or not at all.
        edit = self._pending_edit_for_approver(caller, p_edit_id)
        table = get_kind(edit["content_type"]).table
        target = self._table(table).get(edit["content_id"])
        if target is None:
            raise RecordNotFoundError(f"{table} {edit['content_id']} no longer exists", status=404)

        if edit["action"] == EditOperation.EDIT.value:
            self._apply_update(table, target, edit["new_data"] or {})
        else:
            self._apply_delete(table, target)
        self._resolve(edit, EditStatus.APPROVED)

    def _reject_edit(self, caller: str, p_edit_id: str) -> None:
        edit = self._pending_edit_for_approver(caller, p_edit_id)
        self._resolve(edit, EditStatus.REJECTED)

    def _resolve(self, edit: Row, status: EditStatus) -> None:
        edit["status"] = status.value
        self._stamp(edit)
        self._emit(PENDING_EDITS_TABLE, ChangeEventType.UPDATE, new=edit)


class InMemoryRemoteStore(RemoteStore):
    """A client's view of an InMemoryBackend, acting as ``user_id``."""

    def __init__(self, backend: InMemoryBackend, user_id: str):
        self.backend = backend
        self.user_id = user_id
        self.calls: List[Tuple[str, str]] = []

    async def _io(self, operation: str, target: str) -> None:
        self.calls.append((operation, target))
        # Yield like a real network round-trip would
        await asyncio.sleep(0)

    async def select(self, table, filters=None, order_by=None, descending=False):
        await self._io("select", table)
        return self.backend.select(self.user_id, table, filters, order_by, descending)

    async def insert(self, table, row):
        await self._io("insert", table)
        return self.backend.insert(self.user_id, table, row)

    async def update(self, table, row_id, changes):
        await self._io("update", table)
        return self.backend.update(self.user_id, table, row_id, changes)

    async def delete(self, table, row_id):
        await self._io("delete", table)
        self.backend.delete(self.user_id, table, row_id)

    async def rpc(self, name, params):
        await self._io("rpc", name)
        return self.backend.rpc(self.user_id, name, params)


class _InMemoryChannel(Channel):

    def __init__(self, feed: "InMemoryChangeFeed", remove: Callable[[], None],
                 on_close: Callable[[Optional[Exception]], None]):
        self._feed = feed
        self._remove = remove
        self.on_close = on_close
        self.closed = False

    def drop(self, reason: Optional[Exception] = None) -> None:
        """Simulate the server closing the channel."""
        if self.closed:
            return
        self.closed = True
        self._remove()
        self._feed.channels.remove(self)
        self.on_close(reason)

    async def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        self._remove()
        self._feed.channels.remove(self)


class InMemoryChangeFeed(ChangeFeedTransport):
    """
    Change feed over an InMemoryBackend.

    Events are delivered on the next event-loop iteration, in the order the
    backend produced them.

    Attributes:
        open_attempts: Loop time of every open_channel() call
        fail_opens: Number of upcoming open_channel() calls that should fail
    """

    def __init__(self, backend: InMemoryBackend):
        self.backend = backend
        self.channels: List[_InMemoryChannel] = []
        self.open_attempts: List[float] = []
        self.fail_opens = 0

    async def open_channel(self, table, filters, on_event, on_close) -> Channel:
        loop = asyncio.get_running_loop()
        self.open_attempts.append(loop.time())
        if self.fail_opens > 0:
            self.fail_opens -= 1
            raise TransientRemoteError(f"Could not open channel for {table}")
        self.backend._check_reachable()

        def listener(event: ChangeEvent) -> None:
            loop.call_soon(on_event, event)

        remove = self.backend.listen(table, filters, listener)
        channel = _InMemoryChannel(self, remove, on_close)
        self.channels.append(channel)
        return channel

    def drop_all(self, reason: Optional[Exception] = None) -> None:
        """Simulate a server-side disconnect of every open channel."""
        for channel in list(self.channels):
            channel.drop(reason)
