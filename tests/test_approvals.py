"""Tests for EditApprovalEngine - author-gated edits, requests, approvals and rejections."""

import asyncio
from pathlib import Path

import pytest

import sys
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from plannersync.approvals import EditApprovalEngine
from plannersync.changefeed import ChangeFeedManager
from plannersync.errors import (
    ApprovalError,
    EditAlreadyResolvedError,
    NotApproverError,
    RecordNotFoundError,
    StaleEditError,
    TransientRemoteError,
)
from plannersync.models import EditOperation, EditStatus


@pytest.fixture
def alice_engine(alice, alice_remote, events):
    return EditApprovalEngine(alice_remote, alice, events=events)


@pytest.fixture
def bob_engine(bob, bob_remote, events):
    return EditApprovalEngine(bob_remote, bob, events=events)


@pytest.mark.asyncio
async def test_author_edits_directly(backend, groceries, alice_engine, published):
    outcome = await alice_engine.edit("note", "note-1", {"title": "Groceries v2"})

    assert outcome.applied
    assert not outcome.requested
    assert outcome.record["title"] == "Groceries v2"
    assert backend.row("notes", "note-1")["title"] == "Groceries v2"
    assert backend.tables.get("pending_edits", {}) == {}
    assert published == []


@pytest.mark.asyncio
async def test_author_deletes_directly(backend, groceries, alice_engine):
    outcome = await alice_engine.delete("note", "note-1")

    assert outcome.applied
    assert backend.row("notes", "note-1") is None


@pytest.mark.asyncio
async def test_groceries_request_and_approve(backend, groceries, alice_engine, bob_engine, published):
    outcome = await bob_engine.edit(
        "note", "note-1", {"title": "Groceries v2"}, rationale="typo fix"
    )

    assert not outcome.applied
    edit = outcome.pending_edit
    assert edit.status is EditStatus.PENDING
    assert edit.operation is EditOperation.EDIT
    assert edit.requester_id == "bob"
    assert edit.approver_id == "alice"
    assert edit.original_snapshot["title"] == "Groceries"
    assert edit.proposed_snapshot["title"] == "Groceries v2"
    assert edit.rationale == "typo fix"
    assert backend.row("notes", "note-1")["title"] == "Groceries"

    approved = await alice_engine.approve(edit.id)

    assert approved.status is EditStatus.APPROVED
    assert backend.row("notes", "note-1")["title"] == "Groceries v2"
    assert backend.row("pending_edits", edit.id)["status"] == "approved"
    assert len(backend.tables["notes"]) == 1
    assert [e.event_type for e in published] == ["edit.requested", "edit.approved"]


@pytest.mark.asyncio
async def test_reject_leaves_record_unchanged(backend, groceries, alice_engine, bob_engine, published):
    outcome = await bob_engine.edit("note", "note-1", {"title": "Groceries v2"})

    rejected = await alice_engine.reject(outcome.pending_edit.id)

    assert rejected.status is EditStatus.REJECTED
    assert backend.row("notes", "note-1")["title"] == "Groceries"
    assert backend.row("pending_edits", rejected.id)["status"] == "rejected"
    assert published[-1].event_type == "edit.rejected"


@pytest.mark.asyncio
async def test_delete_request(backend, groceries, alice_engine, bob_engine):
    outcome = await bob_engine.delete("note", "note-1", rationale="duplicate")

    edit = outcome.pending_edit
    assert edit.operation is EditOperation.DELETE
    assert edit.proposed_snapshot is None
    assert edit.original_snapshot["title"] == "Groceries"
    assert backend.row("notes", "note-1") is not None

    await alice_engine.approve(edit.id)
    assert backend.row("notes", "note-1") is None


@pytest.mark.asyncio
async def test_only_the_approver_may_resolve(backend, groceries, bob_engine, published):
    outcome = await bob_engine.edit("note", "note-1", {"title": "mine now"})

    with pytest.raises(NotApproverError) as exc_info:
        await bob_engine.approve(outcome.pending_edit.id)

    assert "Failed to approve edit" in str(exc_info.value)
    assert backend.row("pending_edits", outcome.pending_edit.id)["status"] == "pending"
    assert backend.row("notes", "note-1")["title"] == "Groceries"
    assert published[-1].event_type == "edit.failed"
    assert published[-1].operation == "approve"

    with pytest.raises(NotApproverError):
        await bob_engine.reject(outcome.pending_edit.id)


@pytest.mark.asyncio
async def test_resolved_edit_cannot_be_resolved_again(groceries, alice_engine, bob_engine):
    outcome = await bob_engine.edit("note", "note-1", {"title": "Groceries v2"})
    await alice_engine.approve(outcome.pending_edit.id)

    with pytest.raises(EditAlreadyResolvedError):
        await alice_engine.approve(outcome.pending_edit.id)
    with pytest.raises(EditAlreadyResolvedError):
        await alice_engine.reject(outcome.pending_edit.id)


@pytest.mark.asyncio
async def test_stale_edit_is_rejected(backend, groceries, alice_engine, bob_engine, published):
    outcome = await bob_engine.edit("note", "note-1", {"title": "Groceries v2"})
    await alice_engine.edit("note", "note-1", {"content": "milk, eggs, bread"})

    with pytest.raises(StaleEditError):
        await alice_engine.approve(outcome.pending_edit.id)

    note = backend.row("notes", "note-1")
    assert note["title"] == "Groceries"
    assert note["content"] == "milk, eggs, bread"
    assert backend.row("pending_edits", outcome.pending_edit.id)["status"] == "rejected"
    assert [e.event_type for e in published][-2:] == ["edit.rejected", "edit.failed"]


@pytest.mark.asyncio
async def test_stale_check_can_be_disabled(backend, groceries, alice, alice_remote, bob_engine, events):
    engine = EditApprovalEngine(alice_remote, alice, events=events, reject_stale=False)
    outcome = await bob_engine.edit("note", "note-1", {"title": "Groceries v2"})
    await engine.edit("note", "note-1", {"content": "changed"})

    await engine.approve(outcome.pending_edit.id)

    assert backend.row("notes", "note-1")["title"] == "Groceries v2"


@pytest.mark.asyncio
async def test_missing_target(alice_engine):
    with pytest.raises(RecordNotFoundError):
        await alice_engine.edit("note", "nope", {"title": "x"})


@pytest.mark.asyncio
async def test_transient_failure_surfaces(backend, groceries, bob_engine):
    backend.reachable = False
    with pytest.raises(TransientRemoteError):
        await bob_engine.edit("note", "note-1", {"title": "x"})
    assert backend.tables.get("pending_edits", {}) == {}


@pytest.mark.asyncio
async def test_failed_approval_leaves_edit_pending(backend, groceries, alice_engine, bob_engine, published):
    outcome = await bob_engine.edit("note", "note-1", {"title": "Groceries v2"})
    backend.reachable = False

    with pytest.raises(ApprovalError) as exc_info:
        await alice_engine.approve(outcome.pending_edit.id)

    assert exc_info.value.operation == "approve"
    backend.reachable = True
    assert backend.row("pending_edits", outcome.pending_edit.id)["status"] == "pending"
    assert backend.row("notes", "note-1")["title"] == "Groceries"
    assert published[-1].event_type == "edit.failed"


@pytest.mark.asyncio
async def test_inbox_and_outgoing_lists(backend, groceries, alice_engine, bob_engine):
    backend.seed("tasks", {"id": "task-1", "workspace_id": "ws1", "author_id": "alice", "title": "Call"})
    first = await bob_engine.edit("note", "note-1", {"title": "Groceries v2"})
    second = await bob_engine.delete("task", "task-1")
    backend.tables["pending_edits"][first.pending_edit.id]["created_at"] = "2024-01-01T10:00:00"
    backend.tables["pending_edits"][second.pending_edit.id]["created_at"] = "2024-01-01T11:00:00"

    inbox = await alice_engine.list_pending()
    assert [e.id for e in inbox] == [second.pending_edit.id, first.pending_edit.id]
    assert all(e.requester_name == "Bob" for e in inbox)

    assert [e.id for e in await bob_engine.list_outgoing()] == [e.id for e in inbox]
    assert await bob_engine.list_pending() == []

    await alice_engine.reject(first.pending_edit.id)
    assert [e.id for e in await alice_engine.list_pending()] == [second.pending_edit.id]


@pytest.mark.asyncio
async def test_watch_inbox(backend, feed, groceries, alice, alice_remote, bob_engine, events):
    manager = ChangeFeedManager(feed, alice, reconnect_delay=0.01)
    engine = EditApprovalEngine(alice_remote, alice, events=events, changefeed=manager)
    snapshots = []

    sub = await engine.watch_inbox(snapshots.append)
    await sub.wait_open(1)
    assert snapshots == [[]]

    outcome = await bob_engine.edit("note", "note-1", {"title": "Groceries v2"})
    for _ in range(5):
        await asyncio.sleep(0)
    assert [e.id for e in snapshots[-1]] == [outcome.pending_edit.id]

    await engine.approve(outcome.pending_edit.id)
    for _ in range(5):
        await asyncio.sleep(0)
    assert snapshots[-1] == []

    await manager.close_all()


@pytest.mark.asyncio
async def test_watch_inbox_needs_changefeed(alice_engine):
    with pytest.raises(ValueError):
        await alice_engine.watch_inbox(lambda edits: None)
