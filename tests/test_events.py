"""Unit Tests for Event Types

Tests: Event dataclass creation, event types, user-facing messages, serialization
"""
from datetime import datetime

from pathlib import Path
import sys
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from plannersync.events import (
    CacheStaleServedEvent,
    ConnectivityChangedEvent,
    EditFailedEvent,
    EditRequestedEvent,
    EditResolvedEvent,
    MutationQueuedEvent,
    MutationSyncedEvent,
)


class TestConnectivityChangedEvent:

    def test_offline(self):
        event = ConnectivityChangedEvent(online=False)
        assert event.event_type == "connectivity.offline"
        assert event.message == "You are offline. Changes will sync when back online."

    def test_reconnected(self):
        event = ConnectivityChangedEvent(online=True)
        assert event.event_type == "connectivity.reconnected"
        assert event.message == "Back online! Syncing data..."
        assert event.to_dict()["online"] is True


class TestEditEvents:

    def test_requested(self):
        event = EditRequestedEvent(
            pending_edit_id="edit-1",
            resource_kind="note",
            resource_id="note-1",
            operation="edit",
            approver_id="alice",
        )
        assert event.event_type == "edit.requested"
        assert event.message == "Edit request sent for approval!"
        assert event.to_dict()["approver_id"] == "alice"

    def test_resolved_type_follows_outcome(self):
        approved = EditResolvedEvent(pending_edit_id="edit-1", approved=True)
        rejected = EditResolvedEvent(pending_edit_id="edit-1", approved=False)

        assert approved.event_type == "edit.approved"
        assert approved.message == "Edit approved and applied!"
        assert rejected.event_type == "edit.rejected"
        assert rejected.message == "Edit rejected. No changes made."

    def test_failed_names_operation(self):
        event = EditFailedEvent(operation="approve", error="permission denied", pending_edit_id="edit-1")
        assert event.message == "Failed to approve edit: permission denied"
        assert event.to_dict()["pending_edit_id"] == "edit-1"


class TestMutationEvents:

    def test_queued(self):
        event = MutationQueuedEvent(
            mutation_id=1, resource_kind="expense", resource_id="e1", operation="create"
        )
        assert event.event_type == "mutation.queued"
        assert "offline" in event.message

    def test_synced_serialization(self):
        event = MutationSyncedEvent(
            mutation_id=1, resource_kind="expense", resource_id="e1", operation="create"
        )
        data = event.to_dict()

        assert data["event_type"] == "mutation.synced"
        assert data["mutation_id"] == 1
        datetime.fromisoformat(data["timestamp"])


class TestCacheStaleServedEvent:

    def test_creation(self):
        event = CacheStaleServedEvent(cache_key="notes_ws1", stored_at=1.0, error="timeout")
        assert event.event_type == "cache.stale_served"
        assert event.message == "Using cached data for notes_ws1"
        assert isinstance(event.timestamp, datetime)
        assert event.to_dict()["error"] == "timeout"
