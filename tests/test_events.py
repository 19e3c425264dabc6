"""Tests for the crew event bus."""

import pytest

from crewsim.errors import UnknownEventError
from crewsim.events import CrewEvent, CrewEventBus


class TestEmit:
    """Test delivery and logging."""

    def test_listener_receives_payload(self, clock):
        """Exact listeners get the payload."""
        bus = CrewEventBus(clock=clock)
        received = []
        bus.on(CrewEvent.AGENT_STATUS, received.append)

        bus.emit(CrewEvent.AGENT_STATUS, {"agent_id": "eng"})

        assert received == [{"agent_id": "eng"}]

    def test_string_names_accepted(self, clock):
        """Events can be named by string."""
        bus = CrewEventBus(clock=clock)
        received = []
        bus.on("queue:drained", received.append)

        bus.emit(CrewEvent.QUEUE_DRAINED, {"agent_id": "eng"})

        assert len(received) == 1

    def test_unknown_event_raises(self, clock):
        """Emitting or subscribing to an unknown event fails."""
        bus = CrewEventBus(clock=clock)

        with pytest.raises(UnknownEventError):
            bus.emit("agent:exploded")
        with pytest.raises(UnknownEventError):
            bus.on("nope", lambda payload: None)

    def test_event_logged_before_listeners(self, clock):
        """Listeners can already see their event in the log."""
        bus = CrewEventBus(clock=clock)
        seen = []
        bus.on(CrewEvent.CREW_PAUSED, lambda payload: seen.append(bus.recent(1)[0].event))

        bus.emit(CrewEvent.CREW_PAUSED)

        assert seen == ["crew:paused"]

    def test_failing_listener_does_not_block_others(self, clock):
        """A raising listener is isolated."""
        bus = CrewEventBus(clock=clock)
        received = []

        def broken(payload):
            raise RuntimeError("listener bug")

        bus.on(CrewEvent.CREW_RESUMED, broken)
        bus.on(CrewEvent.CREW_RESUMED, received.append)
        bus.on_any(lambda event, payload: received.append(event))

        bus.emit(CrewEvent.CREW_RESUMED, {"x": 1})

        assert received == [{"x": 1}, "crew:resumed"]

    def test_unsubscribe(self, clock):
        """Unsubscribed listeners stop receiving events."""
        bus = CrewEventBus(clock=clock)
        received = []
        unsubscribe = bus.on(CrewEvent.CREW_PAUSED, received.append)
        unsubscribe_any = bus.on_any(lambda event, payload: received.append(event))

        unsubscribe()
        unsubscribe_any()
        bus.emit(CrewEvent.CREW_PAUSED)

        assert received == []
        assert bus.listener_count == 0


class TestNamespaces:
    """Test namespace subscriptions and queries."""

    def test_namespace_listener(self, clock):
        """Namespace listeners only see their prefix."""
        bus = CrewEventBus(clock=clock)
        seen = []
        bus.on_namespace("circuit", lambda event, payload: seen.append(event))

        bus.emit(CrewEvent.CIRCUIT_OPENED)
        bus.emit(CrewEvent.CREW_PAUSED)
        bus.emit(CrewEvent.CIRCUIT_CLOSED)

        assert seen == ["circuit:opened", "circuit:closed"]

    def test_by_namespace(self, clock):
        """The log can be filtered by namespace."""
        bus = CrewEventBus(clock=clock)
        bus.emit(CrewEvent.QUEUE_ENQUEUED)
        bus.emit(CrewEvent.AGENT_STATUS)
        bus.emit(CrewEvent.QUEUE_DRAINED)

        assert [e.event for e in bus.by_namespace("queue:")] == ["queue:enqueued", "queue:drained"]


class TestLog:
    """Test the bounded event log."""

    def test_recent_returns_newest_in_order(self, clock):
        """Recent returns the last n events oldest first."""
        bus = CrewEventBus(clock=clock)
        for event in (CrewEvent.CREW_PAUSED, CrewEvent.CREW_RESUMED, CrewEvent.MEMORY_SAVED):
            bus.emit(event)

        assert [e.event for e in bus.recent(2)] == ["crew:resumed", "memory:saved"]
        assert len(bus.recent(10)) == 3
        assert bus.recent(0) == []

    def test_log_is_bounded(self, clock):
        """The oldest entries are dropped past max_log_size."""
        bus = CrewEventBus(max_log_size=2, clock=clock)
        for _ in range(5):
            bus.emit(CrewEvent.MESSAGE_SENT)

        assert len(bus.recent(10)) == 2

    def test_count_window(self, clock):
        """Count only includes events inside the window."""
        bus = CrewEventBus(clock=clock)
        bus.emit(CrewEvent.MESSAGE_SENT)
        clock.advance(120)
        bus.emit(CrewEvent.MESSAGE_SENT)
        bus.emit(CrewEvent.AGENT_ERROR)

        assert bus.count(60) == 2
        assert bus.count(60, CrewEvent.MESSAGE_SENT) == 1

    def test_clear_log(self, clock):
        """Clearing the log keeps listeners."""
        bus = CrewEventBus(clock=clock)
        bus.on(CrewEvent.MESSAGE_SENT, lambda payload: None)
        bus.emit(CrewEvent.MESSAGE_SENT)

        bus.clear_log()

        assert bus.recent() == []
        assert bus.listener_count == 1
