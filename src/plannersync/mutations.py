"""
Mutation routing with offline queueing.

Online, creates go straight to the remote store and edits/deletes go through
the EditApprovalEngine (direct for the author, approval request otherwise).
Offline, or when the remote cannot be reached, writes the user is allowed to
make directly are recorded in the sync queue:

    create                    -> queued (client-generated id)
    update/delete, author     -> queued
    update/delete, non-author -> OfflineError (approval requests are not queued)

replay_pending() sends queued writes in id order once connectivity returns.
It stops at the first transient failure (the next reconnect resumes there)
and records non-transient failures on the entry before moving on.
"""

import asyncio
import uuid
from typing import Any, Callable, Dict, List, Optional, Union
import logging

from .approvals import EditApprovalEngine, MutationOutcome
from .connectivity import ConnectivityMonitor
from .errors import (
    OfflineError,
    PlannerSyncError,
    RecordNotFoundError,
    RemoteError,
    StoreUnavailableError,
    TransientRemoteError,
)
from .event_bus import EventBus, get_event_bus
from .events import MutationQueuedEvent, MutationSyncedEvent
from .models import ResourceKind, get_kind
from .remote import RemoteStore
from .session import Session
from .storage.sync_queue import MutationOperation, MutationQueue, QueuedMutation

logger = logging.getLogger(__name__)

Row = Dict[str, Any]

# (table, record id) -> locally known row, used to check authorship offline
SnapshotLookup = Callable[[str, str], Optional[Row]]

# Called with each mutation right after it is queued
QueuedListener = Callable[[QueuedMutation], None]

DUPLICATE_KEY = "23505"


class MutationService:
    """
    Create, update and delete workspace records, online or offline.

    Usage:
        service = MutationService(remote, queue, monitor, approvals, session)
        outcome = await service.create("expense", {"amount": 12.5, "date": "2024-03-01"})
        if outcome.queued:
            ...  # shown as "saved offline"
        monitor.on_reconnect(service.replay_pending)
    """

    def __init__(self,
                 remote: RemoteStore,
                 queue: MutationQueue,
                 monitor: ConnectivityMonitor,
                 approvals: EditApprovalEngine,
                 session: Session,
                 events: Optional[EventBus] = None,
                 lookup: Optional[SnapshotLookup] = None,
                 on_queued: Optional[QueuedListener] = None):
        """
        Args:
            remote: Remote store acting as session.user_id
            queue: Offline mutation ledger
            monitor: Source of the online/offline state
            approvals: Routes edits and deletes by authorship
            session: Acting user and workspace
            events: Bus for advisories (defaults to the global bus)
            lookup: Finds a locally held row when a caller passes no snapshot
            on_queued: Applies a queued write to locally held data
        """
        self.remote = remote
        self.queue = queue
        self.monitor = monitor
        self.approvals = approvals
        self.session = session
        self.lookup = lookup
        self.on_queued = on_queued
        self._events = events or get_event_bus()
        self._replay_lock = asyncio.Lock()

    async def create(self, kind: Union[str, ResourceKind], data: Row) -> MutationOutcome:
        """
        Create a record authored by the session user.

        Returns:
            MutationOutcome with the stored row, or queued=True when offline

        Raises:
            StoreUnavailableError: If offline and the local store cannot be opened
        """
        kind = get_kind(kind)
        self.session.ensure_open()
        row = dict(data)
        row.setdefault("id", str(uuid.uuid4()))
        row["workspace_id"] = self.session.workspace_id
        row["author_id"] = self.session.user_id

        if self.monitor.is_online:
            try:
                stored = await self.remote.insert(kind.table, row)
            except TransientRemoteError as e:
                logger.warning(f"Could not create {kind.name} {row['id']} ({e}); saving offline")
            else:
                return MutationOutcome(applied=True, record=stored)

        return await self._enqueue(kind, row["id"], MutationOperation.CREATE, row)

    async def update(self,
                     kind: Union[str, ResourceKind],
                     record_id: str,
                     changes: Row,
                     rationale: Optional[str] = None,
                     current: Optional[Row] = None) -> MutationOutcome:
        """
        Change a record; non-authors create an approval request instead.

        Args:
            current: Locally held copy of the record, used offline to decide
                     whether the change may be queued

        Raises:
            OfflineError: If offline and the change would need approval
            ApprovalError: If an approval request failed
        """
        kind = get_kind(kind)
        self.session.ensure_open()
        if self.monitor.is_online:
            try:
                return await self.approvals.edit(kind, record_id, changes, rationale)
            except TransientRemoteError as e:
                logger.warning(f"Could not update {kind.name} {record_id} ({e}); saving offline")

        self._check_offline_author(kind, record_id, current, "update")
        return await self._enqueue(kind, record_id, MutationOperation.UPDATE, dict(changes))

    async def delete(self,
                     kind: Union[str, ResourceKind],
                     record_id: str,
                     rationale: Optional[str] = None,
                     current: Optional[Row] = None) -> MutationOutcome:
        """
        Delete a record; non-authors create an approval request instead.

        Raises:
            OfflineError: If offline and the delete would need approval
            ApprovalError: If an approval request failed
        """
        kind = get_kind(kind)
        self.session.ensure_open()
        if self.monitor.is_online:
            try:
                return await self.approvals.delete(kind, record_id, rationale)
            except TransientRemoteError as e:
                logger.warning(f"Could not delete {kind.name} {record_id} ({e}); saving offline")

        self._check_offline_author(kind, record_id, current, "delete")
        return await self._enqueue(kind, record_id, MutationOperation.DELETE, {})

    def _check_offline_author(self, kind: ResourceKind, record_id: str,
                              current: Optional[Row], action: str) -> None:
        if current is None and self.lookup is not None:
            current = self.lookup(kind.table, record_id)
        if current is None:
            raise OfflineError(
                f"Cannot {action} {kind.name} {record_id} offline: record is not available locally"
            )
        if not self.session.is_author(current):
            raise OfflineError(
                f"Cannot {action} {kind.name} {record_id} offline: "
                f"changes to others' items need approval and require a connection"
            )

    async def _enqueue(self, kind: ResourceKind, record_id: str,
                       operation: MutationOperation, payload: Row) -> MutationOutcome:
        mutation = await self.queue.enqueue(kind.name, record_id, operation, payload)
        self._events.publish(MutationQueuedEvent(
            mutation_id=mutation.id,
            resource_kind=kind.name,
            resource_id=record_id,
            operation=operation.value,
        ))
        if self.on_queued is not None:
            self.on_queued(mutation)
        record = payload if operation is not MutationOperation.DELETE else None
        return MutationOutcome(applied=False, record=record, queued=True)

    async def replay_pending(self) -> int:
        """
        Replay unsynced queued mutations in order.

        Concurrent calls run one after the other.

        Returns:
            Number of mutations synced by this call (0 when the local store
            is unavailable)
        """
        async with self._replay_lock:
            if self.session.closed:
                return 0
            try:
                pending = await self.queue.pending()
            except StoreUnavailableError as e:
                logger.warning(f"Cannot replay offline mutations: {e}")
                return 0
            if not pending:
                return 0

            logger.info(f"Replaying {len(pending)} offline mutations")
            synced = 0
            for index, mutation in enumerate(pending):
                try:
                    await self._replay(mutation)
                except TransientRemoteError as e:
                    logger.warning(
                        f"Replay paused at #{mutation.id} ({e}); "
                        f"{len(pending) - index} mutations still pending"
                    )
                    await self.queue.record_failure(mutation.id, str(e))
                    break
                except (PlannerSyncError, ValueError) as e:
                    logger.error(f"Failed to replay {mutation.operation.value} #{mutation.id}: {e}")
                    await self.queue.record_failure(mutation.id, str(e))
                    continue

                await self.queue.mark_synced(mutation.id)
                synced += 1
                self._events.publish(MutationSyncedEvent(
                    mutation_id=mutation.id,
                    resource_kind=mutation.resource_kind,
                    resource_id=mutation.resource_id,
                    operation=mutation.operation.value,
                ))
            logger.info(f"Synced {synced}/{len(pending)} offline mutations")
            return synced

    async def _replay(self, mutation: QueuedMutation) -> None:
        table = get_kind(mutation.resource_kind).table

        if mutation.operation is MutationOperation.CREATE:
            try:
                await self.remote.insert(table, mutation.payload)
            except RemoteError as e:
                # An earlier replay got through before the entry was marked
                if e.code != DUPLICATE_KEY:
                    raise
                logger.debug(f"{mutation.resource_kind} {mutation.resource_id} already created")

        elif mutation.operation is MutationOperation.UPDATE:
            await self.remote.update(table, mutation.resource_id, mutation.payload)

        else:
            try:
                await self.remote.delete(table, mutation.resource_id)
            except RecordNotFoundError:
                logger.debug(f"{mutation.resource_kind} {mutation.resource_id} already deleted")

    async def pending(self) -> List[QueuedMutation]:
        """Unsynced mutations, oldest first."""
        return await self.queue.pending()
