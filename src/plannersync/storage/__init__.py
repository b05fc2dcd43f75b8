"""
Durable client-local storage: the versioned SQLite store, the TTL cache on
top of it, and the offline mutation queue.
"""

from .local_store import LocalStore, SCHEMA_VERSION
from .cache import CacheStore, CacheEntry, cache_key
from .sync_queue import MutationQueue, QueuedMutation, MutationOperation

__all__ = [
    "LocalStore",
    "SCHEMA_VERSION",
    "CacheStore",
    "CacheEntry",
    "cache_key",
    "MutationQueue",
    "QueuedMutation",
    "MutationOperation",
]
