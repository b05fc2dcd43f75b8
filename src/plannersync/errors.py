"""
Exception hierarchy for plannersync.

Every error raised by the package derives from PlannerSyncError so callers
can catch the whole family in one place. Remote failures are split into
transient ones (safe to retry by the user) and authorization failures
(never retried).
"""

from typing import Optional


class PlannerSyncError(Exception):
    """Base class for all plannersync errors."""


class ConfigError(PlannerSyncError):
    """Invalid or unreadable configuration."""


class SessionClosedError(PlannerSyncError):
    """Raised when a component is used after its session was torn down."""


class RecordShapeError(PlannerSyncError):
    """A remote row does not match the declared record shape."""


class RemoteError(PlannerSyncError):
    """
    Structured failure returned by the remote store.

    Attributes:
        message: Human readable description
        code: Backend error code, if any
        status: HTTP-like status code, if any
    """

    def __init__(self, message: str, code: Optional[str] = None,
                 status: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.code = code
        self.status = status

    def __str__(self) -> str:
        if self.code:
            return f"{self.message} ({self.code})"
        return self.message


class TransientRemoteError(RemoteError):
    """Network failure, timeout or server-side 5xx."""


class AuthorizationError(RemoteError):
    """Caller identity is not allowed to perform the operation."""


class RecordNotFoundError(RemoteError):
    """The addressed row does not exist (or is not visible)."""


class StoreUnavailableError(PlannerSyncError):
    """The durable local store could not be opened."""


class OfflineError(PlannerSyncError):
    """The operation needs connectivity and cannot be queued."""


class ApprovalError(PlannerSyncError):
    """
    A request/approve/reject operation failed.

    The pending edit is left in its prior state.

    Attributes:
        operation: Name of the failed operation (request, approve, reject)
        reason: What went wrong, without the operation prefix
        pending_edit_id: Affected pending edit, if known
    """

    def __init__(self, operation: str, message: str,
                 pending_edit_id: Optional[str] = None):
        super().__init__(f"Failed to {operation} edit: {message}")
        self.operation = operation
        self.reason = message
        self.pending_edit_id = pending_edit_id


class NotApproverError(ApprovalError):
    """Only the recorded author may resolve a pending edit."""


class EditAlreadyResolvedError(ApprovalError):
    """The pending edit was already approved or rejected."""


class StaleEditError(ApprovalError):
    """The target record changed since the edit was requested."""
