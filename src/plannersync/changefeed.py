"""
Change-feed subscriptions with automatic reconnect.

Pattern: one push channel per (collection, filter), scoped to the session's
workspace. Each channel is owned by a supervisor task:

    open channel --ok--> deliver events ... --unexpected close--> sleep(delay) --+
         ^   |                                                                   |
         |   +--open failed--> sleep(delay) ------------------------------------+
         +-----------------------------------------------------------------------+

The delay is fixed (5 seconds by default) and retries never stop until the
subscription is cancelled. Unsubscribing cancels the supervisor, closes the
channel and suppresses any event still in flight.

LiveCollection is the in-memory side: it applies deltas to an id-keyed
collection, treating an update for an unknown id as an insert and (when rows
carry a server-assigned version) discarding writes older than what it holds.
"""

import asyncio
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Union
import logging

from .models import ResourceKind, RESOURCE_KINDS
from .session import Session

logger = logging.getLogger(__name__)

DEFAULT_RECONNECT_DELAY = 5.0

Row = Dict[str, Any]
RowCallback = Callable[[Row], None]


class ChangeEventType(Enum):
    INSERT = "INSERT"
    UPDATE = "UPDATE"
    DELETE = "DELETE"


@dataclass
class ChangeEvent:
    """
    One delta pushed by the server.

    ``new`` carries the full current row for inserts and updates; ``old``
    carries the final prior row for deletes.
    """
    type: ChangeEventType
    table: str
    new: Optional[Row] = None
    old: Optional[Row] = None
    received_at: datetime = field(default_factory=datetime.now)

    @property
    def record(self) -> Optional[Row]:
        return self.old if self.type is ChangeEventType.DELETE else self.new


class Channel(ABC):
    """An open push channel."""

    @abstractmethod
    async def close(self) -> None:
        """Close the channel. No on_close notification follows."""


class ChangeFeedTransport(ABC):
    """
    Abstract push transport.

    open_channel() subscribes to one collection with server-side equality
    filters. The transport calls on_event for each delta in delivery order and
    on_close(reason) if the channel drops without being closed by the client.
    """

    @abstractmethod
    async def open_channel(self,
                           table: str,
                           filters: Dict[str, Any],
                           on_event: Callable[[ChangeEvent], None],
                           on_close: Callable[[Optional[Exception]], None]) -> Channel:
        """
        Open a channel.

        Raises:
            Exception: Any failure to open; the subscription retries after the delay
        """


def resolve_table(resource: Union[str, ResourceKind]) -> str:
    """Collection name for a ResourceKind, content type, or raw table name."""
    if isinstance(resource, ResourceKind):
        return resource.table
    if resource in RESOURCE_KINDS:
        return RESOURCE_KINDS[resource].table
    return resource


class Subscription:
    """
    A supervised change-feed subscription.

    Created by ChangeFeedManager.subscribe(); call ``await sub.unsubscribe()``
    (or ``await sub()``) to tear it down.
    """

    def __init__(self,
                 transport: ChangeFeedTransport,
                 table: str,
                 filters: Dict[str, Any],
                 handlers: Dict[ChangeEventType, Optional[RowCallback]],
                 reconnect_delay: float = DEFAULT_RECONNECT_DELAY,
                 on_finish: Optional[Callable[["Subscription"], None]] = None):
        self.table = table
        self.filters = dict(filters)
        self.reconnect_delay = reconnect_delay
        self.open_count = 0
        self.active = True

        self._transport = transport
        self._handlers = handlers
        self._on_finish = on_finish
        self._channel: Optional[Channel] = None
        self._opened = asyncio.Event()
        self._dropped = asyncio.Event()
        self._wake = asyncio.Event()
        self._task = asyncio.get_running_loop().create_task(
            self._supervise(), name=f"changefeed:{table}"
        )

    @property
    def is_open(self) -> bool:
        return self._channel is not None

    async def wait_open(self, timeout: Optional[float] = None) -> None:
        """Wait until the channel is (re)opened."""
        await asyncio.wait_for(self._opened.wait(), timeout)

    def reconnect_now(self) -> None:
        """Skip the remaining delay if the channel is currently down."""
        self._wake.set()

    async def _supervise(self) -> None:
        while self.active:
            self._dropped.clear()
            self._wake.clear()
            try:
                channel = await self._transport.open_channel(
                    self.table, self.filters, self._deliver, self._handle_close
                )
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.warning(
                    f"Failed to open change feed for {self.table}: {e}; "
                    f"retrying in {self.reconnect_delay}s"
                )
            else:
                if not self.active:
                    await channel.close()
                    return
                self._channel = channel
                self.open_count += 1
                self._opened.set()
                logger.info(f"Real-time subscription active for {self.table} {self.filters}")

                await self._dropped.wait()
                if not self.active:
                    return
                logger.warning(
                    f"Real-time subscription closed for {self.table}; "
                    f"retrying in {self.reconnect_delay}s"
                )

            try:
                await asyncio.wait_for(self._wake.wait(), self.reconnect_delay)
            except asyncio.TimeoutError:
                pass

    def _handle_close(self, reason: Optional[Exception] = None) -> None:
        if reason:
            logger.debug(f"Change feed for {self.table} dropped: {reason}")
        self._channel = None
        self._opened.clear()
        self._dropped.set()

    def _deliver(self, event: ChangeEvent) -> None:
        if not self.active:
            return
        handler = self._handlers.get(event.type)
        if handler is None:
            return
        try:
            handler(event.record)
        except Exception as e:
            logger.error(f"Error in {event.type.value} handler for {self.table}: {e}", exc_info=True)

    async def unsubscribe(self) -> None:
        """Stop deliveries, cancel any pending retry and close the channel."""
        if not self.active:
            return
        self.active = False
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        channel, self._channel = self._channel, None
        if channel is not None:
            try:
                await channel.close()
            except Exception as e:
                logger.warning(f"Error closing change feed for {self.table}: {e}")
        if self._on_finish:
            self._on_finish(self)
        logger.info(f"Unsubscribed from {self.table} {self.filters}")

    async def __call__(self) -> None:
        await self.unsubscribe()


class ChangeFeedManager:
    """
    Opens and tracks change-feed subscriptions for one session.

    Usage:
        manager = ChangeFeedManager(transport, session)
        notes = LiveCollection()
        sub = manager.subscribe("note", **notes.handlers())
        ...
        await sub.unsubscribe()
        await manager.close_all()
    """

    def __init__(self, transport: ChangeFeedTransport, session: Session,
                 reconnect_delay: float = DEFAULT_RECONNECT_DELAY):
        self.transport = transport
        self.session = session
        self.reconnect_delay = reconnect_delay
        self._subscriptions: List[Subscription] = []

    @property
    def subscriptions(self) -> List[Subscription]:
        return list(self._subscriptions)

    def subscribe(self,
                  resource: Union[str, ResourceKind],
                  filters: Optional[Dict[str, Any]] = None,
                  on_insert: Optional[RowCallback] = None,
                  on_update: Optional[RowCallback] = None,
                  on_delete: Optional[RowCallback] = None) -> Subscription:
        """
        Subscribe to deltas of one collection in the session's workspace.

        Callbacks receive the full row and run in the channel's delivery order.
        Must be called from within the running event loop.

        Args:
            resource: ResourceKind, content type ("note") or table name
            filters: Extra equality predicates; workspace_id is always added
        """
        self.session.ensure_open()
        table = resolve_table(resource)
        scoped = {**(filters or {}), "workspace_id": self.session.workspace_id}
        subscription = Subscription(
            self.transport,
            table,
            scoped,
            {
                ChangeEventType.INSERT: on_insert,
                ChangeEventType.UPDATE: on_update,
                ChangeEventType.DELETE: on_delete,
            },
            reconnect_delay=self.reconnect_delay,
            on_finish=self._forget,
        )
        self._subscriptions.append(subscription)
        return subscription

    def subscribe_many(self, specs: List[Dict[str, Any]]) -> Callable[[], Any]:
        """
        Subscribe to several collections at once.

        Args:
            specs: Keyword arguments for subscribe(), one dict per subscription

        Returns:
            Coroutine function that unsubscribes all of them
        """
        subscriptions = [self.subscribe(**spec) for spec in specs]

        async def unsubscribe_all() -> None:
            for subscription in subscriptions:
                await subscription.unsubscribe()

        return unsubscribe_all

    def _forget(self, subscription: Subscription) -> None:
        if subscription in self._subscriptions:
            self._subscriptions.remove(subscription)

    def reconnect_now(self) -> None:
        """Reopen every dropped channel without waiting for the delay."""
        for subscription in self._subscriptions:
            if not subscription.is_open:
                subscription.reconnect_now()

    async def close_all(self) -> None:
        """Unsubscribe everything (session teardown)."""
        for subscription in list(self._subscriptions):
            await subscription.unsubscribe()


class LiveCollection:
    """
    In-memory, id-keyed collection kept current by change-feed deltas.

    Args:
        predicate: Rows failing it are removed instead of stored (e.g. only
                   pending edits belong in an approvals inbox)
        on_change: Called with the current rows after every applied change;
                   may also be assigned after construction
    """

    def __init__(self,
                 predicate: Optional[Callable[[Row], bool]] = None,
                 on_change: Optional[Callable[[List[Row]], None]] = None):
        self._rows: Dict[str, Row] = {}
        self._predicate = predicate
        self.on_change = on_change

    def __len__(self) -> int:
        return len(self._rows)

    def __contains__(self, row_id: str) -> bool:
        return row_id in self._rows

    def get(self, row_id: str) -> Optional[Row]:
        return self._rows.get(row_id)

    def rows(self) -> List[Row]:
        return list(self._rows.values())

    def handlers(self) -> Dict[str, RowCallback]:
        """Callbacks for ChangeFeedManager.subscribe()."""
        return {
            "on_insert": self.apply_upsert,
            "on_update": self.apply_upsert,
            "on_delete": self.apply_delete,
        }

    def _is_older(self, row: Row) -> bool:
        held = self._rows.get(row["id"])
        if held is None:
            return False
        held_version, new_version = held.get("version"), row.get("version")
        return held_version is not None and new_version is not None and new_version < held_version

    def apply_upsert(self, row: Row) -> None:
        """Apply an insert or update; an unknown id is inserted."""
        if self._is_older(row):
            logger.debug(f"Discarding outdated delta for {row['id']} (v{row.get('version')})")
            return
        if self._predicate and not self._predicate(row):
            self._rows.pop(row["id"], None)
        else:
            self._rows[row["id"]] = row
        self._changed()

    def apply_delete(self, row: Row) -> None:
        if self._rows.pop(row["id"], None) is not None:
            self._changed()

    def load(self, rows: List[Row]) -> None:
        """Replace the contents with a full result set (initial load or resync)."""
        loaded = {}
        for row in rows:
            if self._predicate and not self._predicate(row):
                continue
            if self._is_older(row):
                row = self._rows[row["id"]]
            loaded[row["id"]] = row
        self._rows = loaded
        self._changed()

    def _changed(self) -> None:
        if self.on_change:
            try:
                self.on_change(self.rows())
            except Exception as e:
                logger.error(f"Error in collection change callback: {e}", exc_info=True)
