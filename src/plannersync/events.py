"""
Event type definitions for plannersync advisories.

Components publish these on the EventBus so a UI layer can show ambient
status and operation-named messages without the sync core knowing anything
about rendering:
- CacheStaleServedEvent: a read failed and cached data was shown instead
- ConnectivityChangedEvent: went offline / came back online
- MutationQueuedEvent / MutationSyncedEvent: offline write recorded / replayed
- EditRequestedEvent: a non-author mutation became a pending edit
- EditResolvedEvent: a pending edit was approved or rejected
- EditFailedEvent: request/approve/reject failed
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional, Dict, Any


@dataclass
class CacheStaleServedEvent:
    """Event emitted when a failed read degrades to cached data."""
    cache_key: str
    stored_at: Optional[float] = None
    error: Optional[str] = None
    timestamp: datetime = field(default_factory=datetime.now)
    event_type: str = "cache.stale_served"

    @property
    def message(self) -> str:
        return f"Using cached data for {self.cache_key}"

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "event_type": self.event_type,
            "cache_key": self.cache_key,
            "stored_at": self.stored_at,
            "error": self.error,
            "message": self.message,
            "timestamp": self.timestamp.isoformat() if self.timestamp else None,
        }


@dataclass
class ConnectivityChangedEvent:
    """Event emitted on an online/offline transition."""
    online: bool
    timestamp: datetime = field(default_factory=datetime.now)
    event_type: str = "connectivity.offline"

    def __post_init__(self):
        self.event_type = "connectivity.reconnected" if self.online else "connectivity.offline"

    @property
    def message(self) -> str:
        if self.online:
            return "Back online! Syncing data..."
        return "You are offline. Changes will sync when back online."

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "event_type": self.event_type,
            "online": self.online,
            "message": self.message,
            "timestamp": self.timestamp.isoformat() if self.timestamp else None,
        }


@dataclass
class MutationQueuedEvent:
    """Event emitted when an offline write is recorded for replay."""
    mutation_id: int
    resource_kind: str
    resource_id: str
    operation: str
    timestamp: datetime = field(default_factory=datetime.now)
    event_type: str = "mutation.queued"

    @property
    def message(self) -> str:
        return f"Saved offline: {self.operation} {self.resource_kind} will sync when back online"

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "event_type": self.event_type,
            "mutation_id": self.mutation_id,
            "resource_kind": self.resource_kind,
            "resource_id": self.resource_id,
            "operation": self.operation,
            "message": self.message,
            "timestamp": self.timestamp.isoformat() if self.timestamp else None,
        }


@dataclass
class MutationSyncedEvent:
    """Event emitted after a queued write was replayed against the remote."""
    mutation_id: int
    resource_kind: str
    resource_id: str
    operation: str
    timestamp: datetime = field(default_factory=datetime.now)
    event_type: str = "mutation.synced"

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "event_type": self.event_type,
            "mutation_id": self.mutation_id,
            "resource_kind": self.resource_kind,
            "resource_id": self.resource_id,
            "operation": self.operation,
            "timestamp": self.timestamp.isoformat() if self.timestamp else None,
        }


@dataclass
class EditRequestedEvent:
    """Event emitted when a non-author mutation becomes a pending edit."""
    pending_edit_id: str
    resource_kind: str
    resource_id: str
    operation: str
    approver_id: str
    timestamp: datetime = field(default_factory=datetime.now)
    event_type: str = "edit.requested"

    @property
    def message(self) -> str:
        return "Edit request sent for approval!"

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "event_type": self.event_type,
            "pending_edit_id": self.pending_edit_id,
            "resource_kind": self.resource_kind,
            "resource_id": self.resource_id,
            "operation": self.operation,
            "approver_id": self.approver_id,
            "message": self.message,
            "timestamp": self.timestamp.isoformat() if self.timestamp else None,
        }


@dataclass
class EditResolvedEvent:
    """Event emitted when the approver approves or rejects a pending edit."""
    pending_edit_id: str
    approved: bool
    timestamp: datetime = field(default_factory=datetime.now)
    event_type: str = "edit.approved"

    def __post_init__(self):
        self.event_type = "edit.approved" if self.approved else "edit.rejected"

    @property
    def message(self) -> str:
        if self.approved:
            return "Edit approved and applied!"
        return "Edit rejected. No changes made."

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "event_type": self.event_type,
            "pending_edit_id": self.pending_edit_id,
            "approved": self.approved,
            "message": self.message,
            "timestamp": self.timestamp.isoformat() if self.timestamp else None,
        }


@dataclass
class EditFailedEvent:
    """Event emitted when request/approve/reject fails."""
    operation: str
    error: str
    pending_edit_id: Optional[str] = None
    timestamp: datetime = field(default_factory=datetime.now)
    event_type: str = "edit.failed"

    @property
    def message(self) -> str:
        return f"Failed to {self.operation} edit: {self.error}"

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "event_type": self.event_type,
            "operation": self.operation,
            "error": self.error,
            "pending_edit_id": self.pending_edit_id,
            "message": self.message,
            "timestamp": self.timestamp.isoformat() if self.timestamp else None,
        }


__all__ = [
    "CacheStaleServedEvent",
    "ConnectivityChangedEvent",
    "MutationQueuedEvent",
    "MutationSyncedEvent",
    "EditRequestedEvent",
    "EditResolvedEvent",
    "EditFailedEvent",
]
