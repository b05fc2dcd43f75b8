"""
plannersync - offline-first sync for shared planner workspaces.

Cache-first reads with background revalidation, live change-feed
subscriptions, an offline mutation queue, and author-approval for edits to
other members' items.
"""

__version__ = "0.1.0"
__license__ = "MIT"

from .session import Session
from .config import SyncConfig, load_config, save_config
from .errors import (
    PlannerSyncError,
    RemoteError,
    TransientRemoteError,
    AuthorizationError,
    RecordNotFoundError,
    ApprovalError,
    NotApproverError,
    EditAlreadyResolvedError,
    StaleEditError,
    OfflineError,
)
from .models import RESOURCE_KINDS, PendingEdit, EditStatus, get_kind
from .storage import LocalStore, CacheStore, MutationQueue, cache_key
from .fetch import CacheFirstFetcher, FetchResult
from .connectivity import ConnectivityMonitor
from .changefeed import ChangeFeedManager, LiveCollection, Subscription
from .approvals import EditApprovalEngine, MutationOutcome
from .mutations import MutationService
from .workspace import WorkspaceSync
from .remote import RemoteStore
from .rest_remote import RestRemoteStore
from .event_bus import EventBus, get_event_bus

__all__ = [
    "Session",
    "SyncConfig",
    "load_config",
    "save_config",
    "PlannerSyncError",
    "RemoteError",
    "TransientRemoteError",
    "AuthorizationError",
    "RecordNotFoundError",
    "ApprovalError",
    "NotApproverError",
    "EditAlreadyResolvedError",
    "StaleEditError",
    "OfflineError",
    "RESOURCE_KINDS",
    "PendingEdit",
    "EditStatus",
    "get_kind",
    "LocalStore",
    "CacheStore",
    "MutationQueue",
    "cache_key",
    "CacheFirstFetcher",
    "FetchResult",
    "ConnectivityMonitor",
    "ChangeFeedManager",
    "LiveCollection",
    "Subscription",
    "EditApprovalEngine",
    "MutationOutcome",
    "MutationService",
    "WorkspaceSync",
    "RemoteStore",
    "RestRemoteStore",
    "EventBus",
    "get_event_bus",
]
