"""Unit Tests for EventBus

Tests: EventBus subscribe/publish, wildcard subscriptions, failing subscribers
"""
import pytest
from unittest.mock import Mock

from pathlib import Path
import sys
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from plannersync.event_bus import EventBus, get_event_bus, reset_event_bus
from plannersync.events import ConnectivityChangedEvent, EditFailedEvent


class TestEventBusBasics:
    """Tests for core EventBus functionality."""

    def test_instantiation(self):
        bus = EventBus()
        assert bus._subscribers == {}

    def test_publish_to_specific_subscriber(self):
        bus = EventBus()
        callback = Mock()
        bus.subscribe('connectivity.offline', callback)

        event = ConnectivityChangedEvent(online=False)
        bus.publish(event)

        callback.assert_called_once_with(event)

    def test_other_event_types_not_delivered(self):
        bus = EventBus()
        callback = Mock()
        bus.subscribe('connectivity.reconnected', callback)

        bus.publish(ConnectivityChangedEvent(online=False))

        callback.assert_not_called()

    def test_wildcard_receives_everything(self):
        bus = EventBus()
        received = []
        bus.subscribe('*', received.append)

        bus.publish(ConnectivityChangedEvent(online=False))
        bus.publish(EditFailedEvent(operation="approve", error="boom"))

        assert [e.event_type for e in received] == ['connectivity.offline', 'edit.failed']

    def test_specific_before_wildcard(self):
        bus = EventBus()
        order = []
        bus.subscribe('*', lambda e: order.append('wildcard'))
        bus.subscribe('edit.failed', lambda e: order.append('specific'))

        bus.publish(EditFailedEvent(operation="reject", error="boom"))

        assert order == ['specific', 'wildcard']


class TestEventBusUnsubscribe:

    def test_unsubscribe(self):
        bus = EventBus()
        callback = Mock()
        bus.subscribe('edit.failed', callback)

        assert bus.unsubscribe('edit.failed', callback) is True
        assert bus.unsubscribe('edit.failed', callback) is False
        bus.publish(EditFailedEvent(operation="request", error="boom"))

        callback.assert_not_called()
        assert bus.subscriber_count() == 0

    def test_subscribe_returns_remover(self):
        bus = EventBus()
        callback = Mock()
        remove = bus.subscribe('*', callback)

        remove()
        bus.publish(ConnectivityChangedEvent(online=True))

        callback.assert_not_called()

    def test_unsubscribe_during_publish(self):
        bus = EventBus()
        second = Mock()

        def first(event):
            bus.unsubscribe('connectivity.offline', second)

        bus.subscribe('connectivity.offline', first)
        bus.subscribe('connectivity.offline', second)

        bus.publish(ConnectivityChangedEvent(online=False))
        second.assert_called_once()

        bus.publish(ConnectivityChangedEvent(online=False))
        second.assert_called_once()


class TestEventBusErrors:

    def test_failing_subscriber_does_not_stop_others(self):
        bus = EventBus()
        after = Mock()
        bus.subscribe('edit.failed', Mock(side_effect=RuntimeError("ui crashed")))
        bus.subscribe('edit.failed', after)

        bus.publish(EditFailedEvent(operation="approve", error="boom"))

        after.assert_called_once()

    def test_event_without_type_is_ignored(self):
        bus = EventBus()
        callback = Mock()
        bus.subscribe('*', callback)

        bus.publish(object())

        callback.assert_not_called()


class TestGlobalBus:

    def test_singleton_and_reset(self):
        bus = get_event_bus()
        assert get_event_bus() is bus

        reset_event_bus()
        assert get_event_bus() is not bus

    def test_subscriber_count(self):
        bus = EventBus()
        bus.subscribe('a', Mock())
        bus.subscribe('a', Mock())
        bus.subscribe('b', Mock())

        assert bus.subscriber_count('a') == 2
        assert bus.subscriber_count() == 3
        bus.clear()
        assert bus.subscriber_count() == 0
