"""Pytest fixtures for plannersync tests"""
import sys
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from plannersync.event_bus import EventBus
from plannersync.memory_backend import InMemoryBackend, InMemoryChangeFeed, InMemoryRemoteStore
from plannersync.session import Session


class FakeClock:
    """Manually advanced epoch-seconds clock."""

    def __init__(self, now: float = 1_700_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def backend():
    """Workspace ws1 shared by alice and bob."""
    backend = InMemoryBackend()
    for user_id, name in (("alice", "Alice"), ("bob", "Bob")):
        backend.add_member("ws1", user_id)
        backend.add_profile(user_id, display_name=name)
    return backend


@pytest.fixture
def feed(backend):
    return InMemoryChangeFeed(backend)


@pytest.fixture
def alice():
    return Session(user_id="alice", workspace_id="ws1", display_name="Alice")


@pytest.fixture
def bob():
    return Session(user_id="bob", workspace_id="ws1", display_name="Bob")


@pytest.fixture
def alice_remote(backend):
    return InMemoryRemoteStore(backend, "alice")


@pytest.fixture
def bob_remote(backend):
    return InMemoryRemoteStore(backend, "bob")


@pytest.fixture
def events():
    return EventBus()


@pytest.fixture
def published(events):
    """Every event published on the test bus, in order."""
    seen = []
    events.subscribe('*', seen.append)
    return seen


@pytest.fixture
def groceries(backend):
    """A note authored by alice."""
    return backend.seed("notes", {
        "id": "note-1",
        "workspace_id": "ws1",
        "author_id": "alice",
        "title": "Groceries",
        "content": "milk, eggs",
    })
