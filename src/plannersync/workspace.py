"""
Workspace Sync - wires the sync components together for one session.

    WorkspaceSync
      |- LocalStore -> CacheStore, MutationQueue
      |- CacheFirstFetcher (background revalidation scoped to the workspace)
      |- ChangeFeedManager (live deltas per collection)
      |- EditApprovalEngine + MutationService (writes, approvals, offline queue)
      '- ConnectivityMonitor (reconnect -> replay queue, refetch, reopen feeds)

Usage:
    async with WorkspaceSync(session, config, remote, transport) as ws:
        notes = await ws.collection("note")
        await ws.mutations.create("note", {"title": "Groceries"})
        print(notes.rows())
    # subscriptions, background tasks and the store are closed, session logged out
"""

import asyncio
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Union
import logging

from .approvals import EditApprovalEngine
from .changefeed import ChangeFeedManager, ChangeFeedTransport, LiveCollection, Subscription
from .config import SyncConfig
from .connectivity import ConnectivityMonitor
from .event_bus import EventBus, get_event_bus
from .fetch import CacheFirstFetcher, TaskScope
from .models import ResourceKind, get_kind
from .mutations import MutationService
from .remote import RemoteStore
from .session import Session
from .storage import (
    CacheStore,
    LocalStore,
    MutationOperation,
    MutationQueue,
    QueuedMutation,
    cache_key,
)

logger = logging.getLogger(__name__)

Row = Dict[str, Any]


@dataclass
class _TrackedCollection:
    kind: ResourceKind
    filters: Dict[str, Any]
    live: LiveCollection
    subscription: Subscription


class WorkspaceSync:
    """Cache-first, live-updating, offline-capable view of one workspace."""

    def __init__(self,
                 session: Session,
                 config: SyncConfig,
                 remote: RemoteStore,
                 transport: ChangeFeedTransport,
                 store: Optional[LocalStore] = None,
                 monitor: Optional[ConnectivityMonitor] = None,
                 events: Optional[EventBus] = None,
                 clock: Callable[[], float] = time.time):
        """
        Args:
            session: Acting user and workspace; closed by close()
            config: Loaded configuration
            remote: Remote store acting as session.user_id
            transport: Change-feed transport
            store: Local store (default: opened at config.db_path)
            monitor: Connectivity monitor fed by the platform (default: new, online)
            events: Bus for advisories (defaults to the global bus)
            clock: Epoch-seconds clock for cache and queue timestamps
        """
        self.session = session
        self.config = config
        self.remote = remote
        self.events = events or get_event_bus()
        self.store = store or LocalStore(config.db_path)
        self.monitor = monitor or ConnectivityMonitor(events=self.events)

        self.cache = CacheStore(self.store, clock=clock)
        self.queue = MutationQueue(self.store, clock=clock)
        self.scope = TaskScope(f"workspace:{session.workspace_id}")
        self.fetcher = CacheFirstFetcher(
            self.cache, config.cache.default_ttl, events=self.events, scope=self.scope
        )
        self.changefeed = ChangeFeedManager(
            transport, session, reconnect_delay=config.changefeed.reconnect_delay
        )
        self.approvals = EditApprovalEngine(
            remote, session, events=self.events, changefeed=self.changefeed,
            reject_stale=config.approvals.reject_stale,
        )
        self.mutations = MutationService(
            remote, self.queue, self.monitor, self.approvals, session,
            events=self.events, lookup=self._lookup, on_queued=self._apply_queued,
        )

        self._collections: Dict[str, _TrackedCollection] = {}
        self._loading: Dict[str, asyncio.Task] = {}
        self._remove_reconnect = self.monitor.on_reconnect(self._on_reconnect)
        self._closed = False

    async def start(self) -> None:
        """Open the local store and, when online, replay queued mutations."""
        self.session.ensure_open()
        if not await self.store.open():
            logger.warning("Local store unavailable; running without cache or offline queue")
        if self.monitor.is_online:
            await self.mutations.replay_pending()
        logger.info(f"Workspace {self.session.workspace_id} ready for {self.session.user_id}")

    async def collection(self,
                         kind: Union[str, ResourceKind],
                         filters: Optional[Dict[str, Any]] = None) -> LiveCollection:
        """
        Load a collection cache-first and keep it current.

        The same (kind, filters) pair returns the same LiveCollection, also
        when requested again while the first load is still in flight.

        Raises:
            RemoteError: If the remote read failed and nothing was cached
        """
        self.session.ensure_open()
        kind = get_kind(kind)
        filters = dict(filters or {})
        key = cache_key(kind.table, self.session.workspace_id, filters)
        if key in self._collections:
            return self._collections[key].live

        task = self._loading.get(key)
        if task is None:
            task = asyncio.get_running_loop().create_task(
                self._open_collection(kind, filters, key), name=f"collection:{key}"
            )
            self._loading[key] = task
        return await asyncio.shield(task)

    async def _open_collection(self, kind: ResourceKind, filters: Dict[str, Any],
                               key: str) -> LiveCollection:
        try:
            return await self._load_collection(kind, filters, key)
        finally:
            self._loading.pop(key, None)

    async def _load_collection(self, kind: ResourceKind, filters: Dict[str, Any],
                               key: str) -> LiveCollection:
        live = LiveCollection()
        subscription = self.changefeed.subscribe(kind, filters, **live.handlers())
        try:
            result = await self.fetcher.fetch(
                self._reader(kind, filters),
                key,
                ttl=self.config.cache.collection_ttl,
                on_refresh=live.load,
            )
        except Exception:
            await subscription.unsubscribe()
            raise

        live.load(result.data or [])
        self._collections[key] = _TrackedCollection(kind, filters, live, subscription)
        logger.debug(f"Loaded {len(live)} {kind.table} from {result.source}")
        return live

    def _reader(self, kind: ResourceKind, filters: Dict[str, Any]):
        async def read() -> List[Row]:
            return await self.remote.select(
                kind.table,
                {**filters, "workspace_id": self.session.workspace_id},
                order_by="created_at",
                descending=True,
            )
        return read

    def _lookup(self, table: str, record_id: str) -> Optional[Row]:
        for tracked in self._collections.values():
            if tracked.kind.table == table and record_id in tracked.live:
                return tracked.live.get(record_id)
        return None

    def _apply_queued(self, mutation: QueuedMutation) -> None:
        # Offline writes show up locally before they reach the server
        table = get_kind(mutation.resource_kind).table
        for tracked in self._collections.values():
            if tracked.kind.table != table:
                continue
            live = tracked.live
            if mutation.operation is MutationOperation.CREATE:
                row = mutation.payload
                if all(row.get(column) == value for column, value in tracked.filters.items()):
                    live.apply_upsert(dict(row))
            elif mutation.operation is MutationOperation.UPDATE:
                current = live.get(mutation.resource_id)
                if current is not None:
                    live.apply_upsert({**current, **mutation.payload})
            else:
                live.apply_delete({"id": mutation.resource_id})

    async def refresh(self) -> None:
        """Re-read every open collection from the remote, bypassing the cache."""
        for key, tracked in list(self._collections.items()):
            try:
                result = await self.fetcher.fetch(
                    self._reader(tracked.kind, tracked.filters),
                    key,
                    ttl=self.config.cache.collection_ttl,
                    skip_cache=True,
                )
            except Exception as e:
                logger.warning(f"Failed to refresh {key}: {e}")
                continue
            tracked.live.load(result.data or [])

    async def _on_reconnect(self) -> None:
        if self._closed or self.session.closed:
            return
        self.changefeed.reconnect_now()
        await self.mutations.replay_pending()
        await self.refresh()

    async def close(self) -> None:
        """Tear down subscriptions, background work and the store; log out."""
        if self._closed:
            return
        self._closed = True
        self._remove_reconnect()
        loading = list(self._loading.values())
        for task in loading:
            task.cancel()
        await asyncio.gather(*loading, return_exceptions=True)
        self._loading.clear()
        await self.changefeed.close_all()
        await self.fetcher.aclose()
        await self.cache.drain()
        self._collections.clear()
        await self.store.close()
        await self.remote.close()
        self.session.close()

    async def __aenter__(self):
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()
