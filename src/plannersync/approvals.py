"""
Collaborative Edit-Approval Engine.

Records in a shared workspace are writable only by their author. Anyone
else's change becomes a PendingEdit that the author approves or rejects:

    edit()/delete()
      |- caller is the author -> direct remote update/delete
      '- otherwise            -> request_edit procedure -> PendingEdit(pending)

    approve() -> approve_edit procedure: mutation + status in one step
    reject()  -> reject_edit procedure: status only, target untouched

Both resolutions are restricted to the edit's approver. The server enforces
this; the engine mirrors the check so the failure is reported before any
round-trip. Failures leave the PendingEdit as it was and surface as an
ApprovalError naming the operation. Nothing is retried silently.
"""

import asyncio
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Union
import logging

from .changefeed import ChangeFeedManager, LiveCollection, Subscription
from .errors import (
    ApprovalError,
    AuthorizationError,
    EditAlreadyResolvedError,
    NotApproverError,
    RecordNotFoundError,
    RemoteError,
    StaleEditError,
)
from .event_bus import EventBus, get_event_bus
from .events import EditFailedEvent, EditRequestedEvent, EditResolvedEvent
from .models import (
    PENDING_EDITS_TABLE,
    PROFILES_TABLE,
    EditOperation,
    EditStatus,
    PendingEdit,
    ResourceKind,
    compose_pending_edits,
    get_kind,
)
from .remote import RemoteStore
from .session import Session

logger = logging.getLogger(__name__)

Row = Dict[str, Any]


@dataclass
class MutationOutcome:
    """
    Result of an edit or delete.

    Attributes:
        applied: True if the remote record was changed directly
        record: The updated row (direct edits only)
        pending_edit: The created approval request (non-author path only)
        queued: True if the change was recorded offline for later replay
    """
    applied: bool
    record: Optional[Row] = None
    pending_edit: Optional[PendingEdit] = None
    queued: bool = False

    @property
    def requested(self) -> bool:
        return self.pending_edit is not None


class EditApprovalEngine:
    """
    Routes mutations by authorship and resolves pending edits.

    Usage:
        engine = EditApprovalEngine(remote, session)
        outcome = await engine.edit("note", note_id, {"title": "Groceries v2"},
                                    rationale="typo fix")
        if outcome.requested:
            print(f"Waiting for {outcome.pending_edit.approver_id}")

        # as the author
        for edit in await engine.list_pending():
            await engine.approve(edit.id)
    """

    def __init__(self,
                 remote: RemoteStore,
                 session: Session,
                 events: Optional[EventBus] = None,
                 changefeed: Optional[ChangeFeedManager] = None,
                 reject_stale: bool = True):
        """
        Args:
            remote: Remote store acting as session.user_id
            session: Acting user and workspace
            events: Bus for advisories (defaults to the global bus)
            changefeed: Needed only for watch_inbox()
            reject_stale: Reject edits whose target changed since the request
        """
        self.remote = remote
        self.session = session
        self.changefeed = changefeed
        self.reject_stale = reject_stale
        self._events = events or get_event_bus()

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    async def edit(self,
                   kind: Union[str, ResourceKind],
                   record_id: str,
                   changes: Row,
                   rationale: Optional[str] = None) -> MutationOutcome:
        """
        Change a record, directly if the caller authored it, otherwise by
        requesting approval from its author.

        Args:
            kind: Resource kind or content type (e.g. "note")
            record_id: Target record id
            changes: Column -> new value
            rationale: Shown to the approver

        Returns:
            MutationOutcome with either record or pending_edit set

        Raises:
            RecordNotFoundError: If the target does not exist
            ApprovalError: If the approval request could not be created
        """
        kind = get_kind(kind)
        record = await self._load_target(kind, record_id)

        if self.session.is_author(record):
            try:
                updated = await self.remote.update(kind.table, record_id, changes)
            except AuthorizationError as e:
                logger.info(f"Direct update of {kind.name} {record_id} refused ({e}); requesting approval")
            else:
                logger.debug(f"Updated {kind.name} {record_id} directly")
                return MutationOutcome(applied=True, record=updated)

        proposed = {**record, **changes}
        return await self._request(kind, record, EditOperation.EDIT, proposed, rationale)

    async def delete(self,
                     kind: Union[str, ResourceKind],
                     record_id: str,
                     rationale: Optional[str] = None) -> MutationOutcome:
        """
        Delete a record, directly if the caller authored it, otherwise by
        requesting approval from its author.

        Raises:
            RecordNotFoundError: If the target does not exist
            ApprovalError: If the approval request could not be created
        """
        kind = get_kind(kind)
        record = await self._load_target(kind, record_id)

        if self.session.is_author(record):
            try:
                await self.remote.delete(kind.table, record_id)
            except AuthorizationError as e:
                logger.info(f"Direct delete of {kind.name} {record_id} refused ({e}); requesting approval")
            else:
                logger.debug(f"Deleted {kind.name} {record_id} directly")
                return MutationOutcome(applied=True)

        return await self._request(kind, record, EditOperation.DELETE, None, rationale)

    async def _load_target(self, kind: ResourceKind, record_id: str) -> Row:
        self.session.ensure_open()
        record = await self.remote.get(kind.table, record_id)
        if record is None:
            raise RecordNotFoundError(f"{kind.name} {record_id} not found", status=404)
        return record

    async def _request(self, kind: ResourceKind, record: Row, operation: EditOperation,
                       proposed: Optional[Row], rationale: Optional[str]) -> MutationOutcome:
        try:
            edit_id = await self.remote.rpc("request_edit", {
                "p_workspace_id": self.session.workspace_id,
                "p_content_type": kind.name,
                "p_content_id": record["id"],
                "p_action": operation.value,
                "p_new_data": proposed,
                "p_description": rationale,
            })
            row = await self.remote.get(PENDING_EDITS_TABLE, edit_id)
        except RemoteError as e:
            raise self._failed(ApprovalError("request", str(e))) from e

        if row is None:
            raise self._failed(ApprovalError("request", f"pending edit {edit_id} not found", edit_id))

        pending = PendingEdit.from_row(row)
        logger.info(
            f"Requested {operation.value} of {kind.name} {pending.resource_id}; "
            f"awaiting approval from {pending.approver_id}"
        )
        self._events.publish(EditRequestedEvent(
            pending_edit_id=pending.id,
            resource_kind=kind.name,
            resource_id=pending.resource_id,
            operation=operation.value,
            approver_id=pending.approver_id,
        ))
        return MutationOutcome(applied=False, pending_edit=pending)

    # ------------------------------------------------------------------
    # Resolution
    # ------------------------------------------------------------------

    async def approve(self, pending_edit_id: str) -> PendingEdit:
        """
        Approve a pending edit, applying it to the target record.

        With reject_stale enabled, an edit whose target no longer matches
        the snapshot taken at request time is rejected instead.

        Returns:
            The PendingEdit with status approved

        Raises:
            NotApproverError: If the caller is not the edit's approver
            EditAlreadyResolvedError: If the edit is no longer pending
            StaleEditError: If the target changed (the edit is rejected)
            ApprovalError: If the remote procedure failed
        """
        edit = await self._load_edit("approve", pending_edit_id)

        if self.reject_stale and await self._is_stale(edit):
            logger.warning(f"Target of edit {edit.id} changed since it was requested; rejecting")
            await self._resolve("reject", edit)
            raise self._failed(StaleEditError(
                "approve",
                f"{edit.resource_kind} {edit.resource_id} changed since the edit was requested",
                edit.id,
            ))

        await self._resolve("approve", edit)
        return edit

    async def reject(self, pending_edit_id: str) -> PendingEdit:
        """
        Reject a pending edit. The target record is not touched.

        Raises:
            NotApproverError: If the caller is not the edit's approver
            EditAlreadyResolvedError: If the edit is no longer pending
            ApprovalError: If the remote procedure failed
        """
        edit = await self._load_edit("reject", pending_edit_id)
        await self._resolve("reject", edit)
        return edit

    async def _load_edit(self, operation: str, pending_edit_id: str) -> PendingEdit:
        self.session.ensure_open()
        try:
            row = await self.remote.get(PENDING_EDITS_TABLE, pending_edit_id)
        except RemoteError as e:
            raise self._failed(ApprovalError(operation, str(e), pending_edit_id)) from e
        if row is None:
            raise self._failed(ApprovalError(operation, "pending edit not found", pending_edit_id))

        edit = PendingEdit.from_row(row)
        if edit.approver_id != self.session.user_id:
            raise self._failed(NotApproverError(
                operation, "only the item's author can resolve this edit", edit.id
            ))
        if edit.is_resolved:
            raise self._failed(EditAlreadyResolvedError(
                operation, f"edit is already {edit.status.value}", edit.id
            ))
        return edit

    async def _is_stale(self, edit: PendingEdit) -> bool:
        kind = get_kind(edit.resource_kind)
        try:
            current = await self.remote.get(kind.table, edit.resource_id)
        except RemoteError as e:
            raise self._failed(ApprovalError("approve", str(e), edit.id)) from e
        return kind.editable_view(current) != kind.editable_view(edit.original_snapshot)

    async def _resolve(self, operation: str, edit: PendingEdit) -> None:
        try:
            await self.remote.rpc(f"{operation}_edit", {"p_edit_id": edit.id})
        except RemoteError as e:
            raise self._failed(self._resolution_error(operation, edit, e)) from e

        approved = operation == "approve"
        edit.status = EditStatus.APPROVED if approved else EditStatus.REJECTED
        logger.info(f"Edit {edit.id} {edit.status.value}")
        self._events.publish(EditResolvedEvent(pending_edit_id=edit.id, approved=approved))

    @staticmethod
    def _resolution_error(operation: str, edit: PendingEdit, error: RemoteError) -> ApprovalError:
        if isinstance(error, AuthorizationError):
            return NotApproverError(operation, str(error), edit.id)
        if error.code == "P0002":
            return EditAlreadyResolvedError(operation, str(error), edit.id)
        return ApprovalError(operation, str(error), edit.id)

    def _failed(self, error: ApprovalError) -> ApprovalError:
        logger.error(str(error))
        self._events.publish(EditFailedEvent(
            operation=error.operation,
            error=error.reason,
            pending_edit_id=error.pending_edit_id,
        ))
        return error

    # ------------------------------------------------------------------
    # Listings
    # ------------------------------------------------------------------

    async def list_pending(self) -> List[PendingEdit]:
        """Approvals inbox: edits awaiting my decision, newest first."""
        return await self._list({"approver_id": self.session.user_id})

    async def list_outgoing(self) -> List[PendingEdit]:
        """Requests I made that are still pending, newest first."""
        return await self._list({"requester_id": self.session.user_id})

    async def _list(self, filters: Row) -> List[PendingEdit]:
        self.session.ensure_open()
        rows = await self.remote.select(
            PENDING_EDITS_TABLE,
            {
                **filters,
                "workspace_id": self.session.workspace_id,
                "status": EditStatus.PENDING.value,
            },
            order_by="created_at",
            descending=True,
        )
        edits = [PendingEdit.from_row(row) for row in rows]
        return compose_pending_edits(edits, await self._profiles(edits))

    async def _profiles(self, edits: List[PendingEdit]) -> List[Row]:
        requester_ids = sorted({edit.requester_id for edit in edits})
        results = await asyncio.gather(*(
            self.remote.select(PROFILES_TABLE, {"id": requester_id})
            for requester_id in requester_ids
        ))
        return [row for rows in results for row in rows]

    async def watch_inbox(self, callback: Callable[[List[PendingEdit]], None]) -> Subscription:
        """
        Keep the approvals inbox current.

        The callback receives the full list of pending edits after the
        initial load and after every change; edits drop out once resolved.

        Raises:
            ValueError: If the engine was built without a ChangeFeedManager
        """
        if self.changefeed is None:
            raise ValueError("watch_inbox() needs a ChangeFeedManager")

        def publish(rows: List[Row]) -> None:
            edits = sorted(
                (PendingEdit.from_row(row) for row in rows),
                key=lambda edit: edit.created_at or "",
                reverse=True,
            )
            callback(edits)

        inbox = LiveCollection(
            predicate=lambda row: row.get("status") == EditStatus.PENDING.value,
            on_change=publish,
        )
        subscription = self.changefeed.subscribe(
            PENDING_EDITS_TABLE,
            {"approver_id": self.session.user_id},
            **inbox.handlers(),
        )
        try:
            initial = await self.remote.select(
                PENDING_EDITS_TABLE,
                {
                    "approver_id": self.session.user_id,
                    "workspace_id": self.session.workspace_id,
                    "status": EditStatus.PENDING.value,
                },
            )
        except Exception:
            await subscription.unsubscribe()
            raise
        inbox.load(initial)
        return subscription
