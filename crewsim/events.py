"""Typed publish/subscribe event bus for crew observability."""

from __future__ import annotations

import logging
from collections import deque
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable

from crewsim.clock import Clock, SystemClock
from crewsim.errors import UnknownEventError

logger = logging.getLogger(__name__)

DEFAULT_EVENT_LOG_SIZE = 500


class CrewEvent(str, Enum):
    """Every event the crew can emit, grouped by namespace."""

    # Message lifecycle
    MESSAGE_SENT = "message:sent"
    MESSAGE_RECEIVED = "message:received"
    MESSAGE_ROUTED = "message:routed"

    # Agent status
    AGENT_STATUS = "agent:status"
    AGENT_TASK_COMPLETE = "agent:task_complete"
    AGENT_ERROR = "agent:error"

    # Execution pipeline
    EXECUTION_STARTED = "execution:started"
    EXECUTION_STEP = "execution:step"
    EXECUTION_COMPLETE = "execution:complete"
    EXECUTION_CANCELLED = "execution:cancelled"

    # Delegation
    DELEGATION_INITIATED = "delegation:initiated"
    DELEGATION_ACCEPTED = "delegation:accepted"
    DELEGATION_REJECTED = "delegation:rejected"

    # Review
    REVIEW_REQUESTED = "review:requested"
    REVIEW_COMPLETE = "review:complete"
    REVIEW_ESCALATED = "review:escalated"

    # Queue
    QUEUE_ENQUEUED = "queue:enqueued"
    QUEUE_OVERFLOW = "queue:overflow"
    QUEUE_DRAINED = "queue:drained"
    QUEUE_STATS = "queue:stats"

    # Circuit breaker
    CIRCUIT_OPENED = "circuit:opened"
    CIRCUIT_CLOSED = "circuit:closed"
    CIRCUIT_HALF_OPEN = "circuit:half_open"

    # Crew lifecycle
    CREW_INITIALIZED = "crew:initialized"
    CREW_AGENT_ADDED = "crew:agent_added"
    CREW_AGENT_REMOVED = "crew:agent_removed"
    CREW_PAUSED = "crew:paused"
    CREW_RESUMED = "crew:resumed"

    # Memory
    MEMORY_SAVED = "memory:saved"
    MEMORY_RECALLED = "memory:recalled"


_KNOWN_EVENTS = {e.value for e in CrewEvent}

Listener = Callable[[dict[str, Any]], None]
AnyListener = Callable[[str, dict[str, Any]], None]


@dataclass
class LoggedEvent:
    """An emitted event as kept in the event log."""

    event: str
    payload: dict[str, Any] = field(default_factory=dict)
    timestamp: float = 0.0


def _event_name(event: CrewEvent | str) -> str:
    name = event.value if isinstance(event, CrewEvent) else event
    if name not in _KNOWN_EVENTS:
        raise UnknownEventError(f"Unknown crew event: {name}")
    return name


def _namespace_prefix(namespace: str) -> str:
    return namespace if namespace.endswith(":") else f"{namespace}:"


class CrewEventBus:
    """Multi-subscriber event hub with exact, namespace and wildcard listeners.

    Every emission is appended to a bounded log before any listener runs.
    Listener exceptions are logged and swallowed so one bad subscriber cannot
    break delivery to the others.
    """

    def __init__(self, max_log_size: int = DEFAULT_EVENT_LOG_SIZE, clock: Clock | None = None):
        self._clock = clock or SystemClock()
        self._listeners: dict[str, list[Listener]] = {}
        self._wildcard_listeners: list[AnyListener] = []
        self._log: deque[LoggedEvent] = deque(maxlen=max_log_size)

    def on(self, event: CrewEvent | str, listener: Listener) -> Callable[[], None]:
        """Subscribe to a single event. Returns an unsubscribe function."""
        name = _event_name(event)
        self._listeners.setdefault(name, []).append(listener)

        def unsubscribe() -> None:
            listeners = self._listeners.get(name, [])
            if listener in listeners:
                listeners.remove(listener)

        return unsubscribe

    def on_any(self, listener: AnyListener) -> Callable[[], None]:
        """Subscribe to every event."""
        self._wildcard_listeners.append(listener)
        return lambda: self._remove_wildcard(listener)

    def on_namespace(self, namespace: str, listener: AnyListener) -> Callable[[], None]:
        """Subscribe to all events under a namespace, e.g. ``"agent"`` or ``"agent:"``."""
        prefix = _namespace_prefix(namespace)

        def wrapped(event: str, payload: dict[str, Any]) -> None:
            if event.startswith(prefix):
                listener(event, payload)

        self._wildcard_listeners.append(wrapped)
        return lambda: self._remove_wildcard(wrapped)

    def emit(self, event: CrewEvent | str, payload: dict[str, Any] | None = None) -> None:
        """Log an event, then deliver it synchronously to listeners."""
        name = _event_name(event)
        payload = payload or {}
        self._log.append(LoggedEvent(event=name, payload=payload, timestamp=self._clock.now()))

        for listener in list(self._listeners.get(name, [])):
            try:
                listener(payload)
            except Exception:
                logger.error(f"Error in listener for {name}", exc_info=True)

        for wildcard in list(self._wildcard_listeners):
            try:
                wildcard(name, payload)
            except Exception:
                logger.error(f"Error in wildcard listener for {name}", exc_info=True)

    def recent(self, count: int = 50) -> list[LoggedEvent]:
        """Most recent events, oldest first."""
        if count <= 0:
            return []
        return list(self._log)[-count:]

    def by_namespace(self, namespace: str, count: int = 50) -> list[LoggedEvent]:
        prefix = _namespace_prefix(namespace)
        matching = [e for e in self._log if e.event.startswith(prefix)]
        return matching[-count:] if count > 0 else []

    def count(self, window_seconds: float = 60.0, event: CrewEvent | str | None = None) -> int:
        """Count logged events within a trailing time window."""
        cutoff = self._clock.now() - window_seconds
        name = _event_name(event) if event is not None else None
        return sum(
            1 for e in self._log
            if e.timestamp > cutoff and (name is None or e.event == name)
        )

    def remove_all_listeners(self) -> None:
        self._listeners.clear()
        self._wildcard_listeners.clear()

    def clear_log(self) -> None:
        self._log.clear()

    @property
    def listener_count(self) -> int:
        return len(self._wildcard_listeners) + sum(len(v) for v in self._listeners.values())

    def _remove_wildcard(self, listener: AnyListener) -> None:
        if listener in self._wildcard_listeners:
            self._wildcard_listeners.remove(listener)
