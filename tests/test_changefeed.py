"""Tests for change-feed subscriptions, reconnect supervision and LiveCollection."""

import asyncio
from pathlib import Path

import pytest

import sys
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from plannersync.changefeed import ChangeFeedManager, LiveCollection, resolve_table
from plannersync.errors import SessionClosedError
from plannersync.models import RESOURCE_KINDS


async def settle(rounds: int = 5) -> None:
    """Let queued deliveries run."""
    for _ in range(rounds):
        await asyncio.sleep(0)


def note_row(note_id: str, author: str = "alice", workspace: str = "ws1", **extra):
    return {"id": note_id, "workspace_id": workspace, "author_id": author, "title": note_id, **extra}


def test_resolve_table():
    assert resolve_table("note") == "notes"
    assert resolve_table(RESOURCE_KINDS["expense"]) == "expenses"
    assert resolve_table("pending_edits") == "pending_edits"


@pytest.mark.asyncio
async def test_deltas_are_delivered_in_order(backend, feed, alice, alice_remote):
    manager = ChangeFeedManager(feed, alice, reconnect_delay=0.01)
    seen = []
    sub = manager.subscribe(
        "note",
        on_insert=lambda row: seen.append(("insert", row["id"])),
        on_update=lambda row: seen.append(("update", row["title"])),
        on_delete=lambda row: seen.append(("delete", row["id"])),
    )
    await sub.wait_open(1)

    await alice_remote.insert("notes", note_row("n1"))
    await alice_remote.update("notes", "n1", {"title": "renamed"})
    await alice_remote.delete("notes", "n1")
    await settle()

    assert seen == [("insert", "n1"), ("update", "renamed"), ("delete", "n1")]
    await manager.close_all()


@pytest.mark.asyncio
async def test_subscription_is_scoped_to_workspace(backend, feed, alice):
    backend.add_member("ws2", "carol")
    manager = ChangeFeedManager(feed, alice)
    seen = []
    sub = manager.subscribe("note", on_insert=seen.append)
    await sub.wait_open(1)

    assert sub.filters == {"workspace_id": "ws1"}
    backend.insert("carol", "notes", note_row("other", author="carol", workspace="ws2"))
    backend.insert("alice", "notes", note_row("mine"))
    await settle()

    assert [row["id"] for row in seen] == ["mine"]
    await manager.close_all()


@pytest.mark.asyncio
async def test_extra_filters(backend, feed, alice):
    manager = ChangeFeedManager(feed, alice)
    seen = []
    sub = manager.subscribe("task", {"assigned_to": "bob"}, on_insert=seen.append)
    await sub.wait_open(1)

    backend.insert("alice", "tasks", {**note_row("t1"), "assigned_to": "bob"})
    backend.insert("alice", "tasks", {**note_row("t2"), "assigned_to": "alice"})
    await settle()

    assert [row["id"] for row in seen] == ["t1"]
    await manager.close_all()


@pytest.mark.asyncio
async def test_unsubscribe_suppresses_in_flight_events(backend, feed, alice):
    manager = ChangeFeedManager(feed, alice)
    seen = []
    sub = manager.subscribe("note", on_insert=seen.append)
    await sub.wait_open(1)

    backend.insert("alice", "notes", note_row("n1"))
    await sub.unsubscribe()
    await settle()

    assert seen == []
    assert feed.channels == []
    assert manager.subscriptions == []


@pytest.mark.asyncio
async def test_unsubscribe_before_open(backend, feed, alice):
    manager = ChangeFeedManager(feed, alice)
    sub = manager.subscribe("note")
    await sub()

    assert not sub.active
    await settle()
    assert feed.channels == []


@pytest.mark.asyncio
async def test_reopens_after_drop_no_sooner_than_delay(backend, feed, alice):
    delay = 0.05
    manager = ChangeFeedManager(feed, alice, reconnect_delay=delay)
    seen = []
    sub = manager.subscribe("note", on_insert=seen.append)
    await sub.wait_open(1)

    loop = asyncio.get_running_loop()
    dropped_at = loop.time()
    feed.drop_all(ConnectionError("server closed the channel"))
    assert not sub.is_open

    await sub.wait_open(2)
    assert sub.open_count == 2
    assert feed.open_attempts[-1] - dropped_at >= delay - 0.005

    backend.insert("alice", "notes", note_row("after"))
    await settle()
    assert [row["id"] for row in seen] == ["after"]
    await manager.close_all()


@pytest.mark.asyncio
async def test_retries_failed_opens_indefinitely(backend, feed, alice):
    feed.fail_opens = 4
    manager = ChangeFeedManager(feed, alice, reconnect_delay=0.01)
    sub = manager.subscribe("note")

    await sub.wait_open(2)

    assert len(feed.open_attempts) == 5
    gaps = [b - a for a, b in zip(feed.open_attempts, feed.open_attempts[1:])]
    assert all(gap >= 0.005 for gap in gaps)
    assert sub.open_count == 1
    await manager.close_all()


@pytest.mark.asyncio
async def test_reconnect_now_skips_delay(backend, feed, alice):
    manager = ChangeFeedManager(feed, alice, reconnect_delay=3600)
    sub = manager.subscribe("note")
    await sub.wait_open(1)

    feed.drop_all()
    manager.reconnect_now()

    await sub.wait_open(1)
    assert sub.open_count == 2
    await manager.close_all()


@pytest.mark.asyncio
async def test_unsubscribe_cancels_pending_retry(backend, feed, alice):
    manager = ChangeFeedManager(feed, alice, reconnect_delay=3600)
    sub = manager.subscribe("note")
    await sub.wait_open(1)
    feed.drop_all()
    await settle()

    await sub.unsubscribe()
    assert len(feed.open_attempts) == 1
    assert feed.channels == []


@pytest.mark.asyncio
async def test_handler_errors_are_contained(backend, feed, alice):
    manager = ChangeFeedManager(feed, alice)
    seen = []

    def handler(row):
        seen.append(row["id"])
        if row["id"] == "n1":
            raise ValueError("bad row")

    sub = manager.subscribe("note", on_insert=handler)
    await sub.wait_open(1)
    backend.insert("alice", "notes", note_row("n1"))
    backend.insert("alice", "notes", note_row("n2"))
    await settle()

    assert seen == ["n1", "n2"]
    assert sub.is_open
    await manager.close_all()


@pytest.mark.asyncio
async def test_subscribe_many(backend, feed, alice):
    manager = ChangeFeedManager(feed, alice)
    notes, tasks = LiveCollection(), LiveCollection()
    unsubscribe_all = manager.subscribe_many([
        {"resource": "note", **notes.handlers()},
        {"resource": "task", **tasks.handlers()},
    ])
    for sub in manager.subscriptions:
        await sub.wait_open(1)

    backend.insert("alice", "notes", note_row("n1"))
    backend.insert("alice", "tasks", note_row("t1"))
    await settle()
    assert "n1" in notes and "t1" in tasks

    await unsubscribe_all()
    assert manager.subscriptions == []


@pytest.mark.asyncio
async def test_closed_session_refuses_subscriptions(feed, alice):
    manager = ChangeFeedManager(feed, alice)
    alice.close()
    with pytest.raises(SessionClosedError):
        manager.subscribe("note")


class TestLiveCollection:

    def test_update_for_unknown_id_is_an_insert(self):
        live = LiveCollection()
        live.apply_upsert({"id": "n1", "title": "x"})
        assert live.get("n1") == {"id": "n1", "title": "x"}

    def test_delete(self):
        live = LiveCollection()
        live.apply_upsert({"id": "n1"})
        live.apply_delete({"id": "n1"})
        live.apply_delete({"id": "missing"})
        assert len(live) == 0

    def test_older_version_is_discarded(self):
        live = LiveCollection()
        live.apply_upsert({"id": "n1", "title": "new", "version": 5})
        live.apply_upsert({"id": "n1", "title": "old", "version": 3})
        assert live.get("n1")["title"] == "new"

    def test_without_versions_last_write_wins(self):
        live = LiveCollection()
        live.apply_upsert({"id": "n1", "title": "first"})
        live.apply_upsert({"id": "n1", "title": "second"})
        assert live.get("n1")["title"] == "second"

    def test_predicate_removes_rows(self):
        live = LiveCollection(predicate=lambda row: row["status"] == "pending")
        live.apply_upsert({"id": "e1", "status": "pending"})
        live.apply_upsert({"id": "e1", "status": "approved"})
        assert "e1" not in live

    def test_load_replaces_but_keeps_newer_rows(self):
        live = LiveCollection()
        live.apply_upsert({"id": "n1", "title": "live", "version": 9})
        live.apply_upsert({"id": "gone", "version": 1})

        live.load([{"id": "n1", "title": "fetched", "version": 8}, {"id": "n2", "version": 2}])

        assert live.get("n1")["title"] == "live"
        assert "n2" in live
        assert "gone" not in live

    def test_on_change_receives_rows(self):
        snapshots = []
        live = LiveCollection(on_change=snapshots.append)
        live.apply_upsert({"id": "n1"})
        live.apply_delete({"id": "n1"})
        assert snapshots == [[{"id": "n1"}], []]
