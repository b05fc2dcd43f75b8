"""
Connectivity Monitor - online/offline state and the reconnect broadcast.

The monitor does no probing of its own: the platform's reachability signal
calls notify(online) and the monitor turns transitions into:
  * Offline -> Online: one ``reconnected`` broadcast to every listener
    registered at that moment (listeners added later miss it)
  * Online -> Offline: a local advisory only (log + event), no network activity

Listeners may be plain callables or coroutine functions. Coroutines run as
tasks owned by the monitor; their failures are logged, never raised.
"""

import asyncio
import inspect
from enum import Enum
from typing import Any, Callable, List, Optional, Set
import logging

from .event_bus import EventBus, get_event_bus
from .events import ConnectivityChangedEvent

logger = logging.getLogger(__name__)


class ConnectivityState(Enum):
    ONLINE = "online"
    OFFLINE = "offline"


class ConnectivityMonitor:
    """
    Tracks reachability and fans out reconnect notifications.

    Usage:
        monitor = ConnectivityMonitor()
        remove = monitor.on_reconnect(refetch_everything)
        ...
        monitor.notify(False)   # platform says offline
        monitor.notify(True)    # back online -> refetch_everything() runs once
        remove()
    """

    def __init__(self, online: bool = True, events: Optional[EventBus] = None):
        """
        Args:
            online: Initial state as reported by the platform
            events: Bus for advisories (defaults to the global bus)
        """
        self._state = ConnectivityState.ONLINE if online else ConnectivityState.OFFLINE
        self._events = events or get_event_bus()
        self._reconnect_listeners: List[Callable[[], Any]] = []
        self._status_listeners: List[Callable[[ConnectivityState], Any]] = []
        self._tasks: Set[asyncio.Task] = set()
        self.was_offline = not online

    @property
    def state(self) -> ConnectivityState:
        return self._state

    @property
    def is_online(self) -> bool:
        return self._state is ConnectivityState.ONLINE

    def on_reconnect(self, listener: Callable[[], Any]) -> Callable[[], None]:
        """
        Register a listener for Offline -> Online transitions.

        Returns:
            Callable removing the listener
        """
        self._reconnect_listeners.append(listener)

        def remove() -> None:
            if listener in self._reconnect_listeners:
                self._reconnect_listeners.remove(listener)

        return remove

    def on_status_change(self, listener: Callable[[ConnectivityState], Any]) -> Callable[[], None]:
        """Register a listener called with the new state on every transition."""
        self._status_listeners.append(listener)

        def remove() -> None:
            if listener in self._status_listeners:
                self._status_listeners.remove(listener)

        return remove

    def notify(self, online: bool) -> None:
        """
        Feed a platform reachability signal.

        Repeated signals for the current state are ignored.
        """
        new_state = ConnectivityState.ONLINE if online else ConnectivityState.OFFLINE
        if new_state is self._state:
            return
        self._state = new_state

        if online:
            logger.info(f"Back online; notifying {len(self._reconnect_listeners)} reconnect listeners")
        else:
            self.was_offline = True
            logger.warning("Connectivity lost; changes will sync when back online")

        self._events.publish(ConnectivityChangedEvent(online=online))
        for listener in list(self._status_listeners):
            self._invoke(listener, new_state)
        if online:
            for listener in list(self._reconnect_listeners):
                self._invoke(listener)

    def set_online(self) -> None:
        self.notify(True)

    def set_offline(self) -> None:
        self.notify(False)

    def _invoke(self, listener: Callable[..., Any], *args: Any) -> None:
        try:
            result = listener(*args)
        except Exception as e:
            logger.error(f"Error in connectivity listener: {e}", exc_info=True)
            return
        if inspect.isawaitable(result):
            task = asyncio.ensure_future(self._guard(result))
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)

    @staticmethod
    async def _guard(awaitable) -> None:
        try:
            await awaitable
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"Error during reconnect sync: {e}", exc_info=True)

    async def drain(self) -> None:
        """Wait until every running async listener has finished."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def close(self) -> None:
        """Drop all listeners and cancel running async listeners."""
        self._reconnect_listeners.clear()
        self._status_listeners.clear()
        for task in list(self._tasks):
            task.cancel()
        await asyncio.gather(*list(self._tasks), return_exceptions=True)
