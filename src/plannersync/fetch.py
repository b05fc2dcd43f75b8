"""
Cache-first fetching with stale-while-revalidate.

    fetch(read, key)
      |- valid cache entry -> return it now, revalidate in the background
      |- otherwise         -> await read(), cache the result, return it
      '- read() failed     -> return any cached copy (even expired) marked
                              stale, or re-raise if there is none

Background revalidations are tasks owned by a TaskScope. Closing the scope
(on teardown of whatever asked for the data) cancels them, so no refresh
callback fires for an abandoned caller.
"""

import asyncio
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Optional, Set
import logging

from .event_bus import EventBus, get_event_bus
from .events import CacheStaleServedEvent
from .storage.cache import CacheStore

logger = logging.getLogger(__name__)

DEFAULT_TTL = 3600.0  # 1 hour

RemoteRead = Callable[[], Awaitable[Any]]


@dataclass
class FetchResult:
    """
    Outcome of a cache-first fetch.

    Attributes:
        data: The returned value
        stale: True when the remote read failed and cached data was used
        source: "cache", "remote" or "stale_cache"
    """
    data: Any
    stale: bool = False
    source: str = "remote"


class TaskScope:
    """Owns background tasks; closing the scope cancels whatever still runs."""

    def __init__(self, name: str = "scope"):
        self.name = name
        self._tasks: Set[asyncio.Task] = set()
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def __len__(self) -> int:
        return len(self._tasks)

    def spawn(self, coro: Awaitable[Any], name: Optional[str] = None) -> Optional[asyncio.Task]:
        if self._closed:
            coro.close()
            return None
        task = asyncio.get_running_loop().create_task(coro, name=name)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def join(self) -> None:
        """Wait for all current tasks."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def aclose(self) -> None:
        self._closed = True
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.aclose()


class CacheFirstFetcher:
    """
    Wraps remote reads with the local cache.

    Usage:
        async with CacheFirstFetcher(cache) as fetcher:
            result = await fetcher.fetch(
                lambda: remote.select("notes", {"workspace_id": ws}),
                key=cache_key("notes", ws),
                ttl=300,
                on_refresh=notes.load,
            )
            notes.load(result.data)
    """

    def __init__(self, cache: CacheStore, default_ttl: float = DEFAULT_TTL,
                 events: Optional[EventBus] = None, scope: Optional[TaskScope] = None):
        self.cache = cache
        self.default_ttl = default_ttl
        self.scope = scope or TaskScope("fetch")
        self._events = events or get_event_bus()

    async def fetch(self,
                    remote_read: RemoteRead,
                    key: str,
                    ttl: Optional[float] = None,
                    skip_cache: bool = False,
                    on_refresh: Optional[Callable[[Any], None]] = None) -> FetchResult:
        """
        Read through the cache.

        Args:
            remote_read: Zero-argument coroutine function performing the remote read
            key: Cache key (see storage.cache.cache_key)
            ttl: Seconds the stored result stays valid (default: default_ttl)
            skip_cache: Ignore a valid cached entry and read the remote first
            on_refresh: Called with fresh data when a background revalidation succeeds

        Returns:
            FetchResult with fresh, cached, or stale data

        Raises:
            Exception: The remote read's failure, when no cached copy exists
        """
        ttl = self.default_ttl if ttl is None else ttl

        if not skip_cache:
            entry = await self.cache.get_entry(key)
            if entry is not None and entry.is_valid(self.cache.now()):
                self.scope.spawn(
                    self._revalidate(remote_read, key, ttl, on_refresh),
                    name=f"revalidate:{key}",
                )
                return FetchResult(entry.data, source="cache")

        try:
            data = await remote_read()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"Error fetching {key}: {e}")
            fallback = await self.cache.get_entry(key)
            if fallback is None:
                raise
            logger.warning(f"Using cached data for {key}")
            self._events.publish(CacheStaleServedEvent(
                cache_key=key, stored_at=fallback.stored_at, error=str(e)
            ))
            return FetchResult(fallback.data, stale=True, source="stale_cache")

        if data is not None:
            await self.cache.put(key, data, ttl)
        return FetchResult(data, source="remote")

    async def _revalidate(self, remote_read: RemoteRead, key: str, ttl: float,
                          on_refresh: Optional[Callable[[Any], None]]) -> None:
        try:
            data = await remote_read()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.warning(f"Failed to refresh {key} from server: {e}")
            return
        if data is None:
            return
        await self.cache.put(key, data, ttl)
        if on_refresh is not None and not self.scope.closed:
            try:
                on_refresh(data)
            except Exception as e:
                logger.error(f"Error in refresh callback for {key}: {e}", exc_info=True)

    async def fetch_many(self, reads: Dict[str, RemoteRead], ttl: Optional[float] = None,
                         skip_cache: bool = False) -> Dict[str, Any]:
        """
        Fetch several keys concurrently.

        Returns:
            key -> FetchResult, or the exception raised for that key
        """
        keys = list(reads)
        results = await asyncio.gather(
            *(self.fetch(reads[k], k, ttl=ttl, skip_cache=skip_cache) for k in keys),
            return_exceptions=True,
        )
        return dict(zip(keys, results))

    async def aclose(self) -> None:
        """Cancel in-flight background revalidations."""
        await self.scope.aclose()

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.aclose()
