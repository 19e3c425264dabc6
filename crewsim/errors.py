"""Structured crew errors, circuit breakers and retry helpers."""

from __future__ import annotations

import logging
import random
import time
from collections import Counter, deque
from dataclasses import dataclass
from typing import Any, Callable, TypeVar

from crewsim.clock import Clock, SystemClock
from crewsim.policies import CircuitBreakerConfig, RetryConfig
from crewsim.protocol import generate_id
from crewsim.schemas import CircuitState, CrewError, ErrorCategory, ErrorSeverity

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_ERROR_LOG_SIZE = 200


class CrewSimError(Exception):
    """Base class for crewsim exceptions."""

    pass


class UnknownAgentError(CrewSimError):
    """Raised when an agent id is not part of the crew."""

    pass


class UnknownEventError(CrewSimError):
    """Raised when emitting or subscribing to an event that does not exist."""

    pass


class SchedulerUnavailableError(CrewSimError):
    """Raised when playback needs an event loop and none is running."""

    pass


def create_crew_error(
    category: ErrorCategory,
    severity: ErrorSeverity,
    message: str,
    *,
    agent_id: str | None = None,
    task_id: str | None = None,
    context: dict[str, Any] | None = None,
    recoverable: bool = True,
    recovery_action: str | None = None,
    clock: Clock | None = None,
) -> CrewError:
    """Create a structured crew error."""
    clock = clock or SystemClock()
    return CrewError(
        id=generate_id("err", clock),
        category=category,
        severity=severity,
        message=message,
        agent_id=agent_id,
        task_id=task_id,
        timestamp=clock.now(),
        context=context,
        recoverable=recoverable,
        recovery_action=recovery_action,
    )


# --- Circuit breaker ---


@dataclass
class CircuitDiagnostics:
    """Snapshot of a circuit breaker."""

    state: CircuitState
    failure_count: int
    success_count: int
    last_failure_at: float
    seconds_until_retry: float | None


StateChangeCallback = Callable[[str, CircuitState], None]


class AgentCircuitBreaker:
    """Per-agent gate that stops routing to an agent after repeated failures.

    closed -> open after ``failure_threshold`` consecutive failures.
    open -> half-open once ``reset_timeout_seconds`` have passed; checked
    lazily by ``can_execute()`` and ``state``.
    half-open -> open on any failure, -> closed after ``success_threshold``
    consecutive successes.
    """

    def __init__(
        self,
        agent_id: str,
        config: CircuitBreakerConfig | None = None,
        clock: Clock | None = None,
    ):
        self.agent_id = agent_id
        self.config = config or CircuitBreakerConfig()
        self._clock = clock or SystemClock()
        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._success_count = 0
        self._last_failure_at = 0.0
        self._on_state_change: StateChangeCallback | None = None

    def on_state_change(self, callback: StateChangeCallback) -> None:
        """Register the state change callback."""
        self._on_state_change = callback

    @property
    def state(self) -> CircuitState:
        """Current state, re-evaluating an expired open circuit."""
        if self._state == CircuitState.OPEN and self._reset_timeout_elapsed():
            self._transition(CircuitState.HALF_OPEN)
        return self._state

    @property
    def failure_count(self) -> int:
        return self._failure_count

    @property
    def success_count(self) -> int:
        return self._success_count

    def can_execute(self) -> bool:
        """Check whether requests may go through.

        May move an expired open circuit to half-open.
        """
        if self._state == CircuitState.OPEN:
            if self._reset_timeout_elapsed():
                self._transition(CircuitState.HALF_OPEN)
                return True
            return False
        return True

    def record_success(self) -> None:
        """Record a successful execution."""
        if self._state == CircuitState.CLOSED:
            self._failure_count = 0
        elif self._state == CircuitState.HALF_OPEN:
            self._success_count += 1
            if self._success_count >= self.config.success_threshold:
                self._transition(CircuitState.CLOSED)

    def record_failure(self) -> None:
        """Record a failed execution."""
        self._last_failure_at = self._clock.now()

        if self._state == CircuitState.CLOSED:
            self._failure_count += 1
            if self._failure_count >= self.config.failure_threshold:
                self._transition(CircuitState.OPEN)
        elif self._state == CircuitState.HALF_OPEN:
            self._transition(CircuitState.OPEN)

    def reset(self) -> None:
        """Force the breaker closed."""
        self._transition(CircuitState.CLOSED)
        self._failure_count = 0
        self._success_count = 0

    def diagnostics(self) -> CircuitDiagnostics:
        """Get a diagnostic snapshot without re-evaluating the state."""
        seconds_until_retry = None
        if self._state == CircuitState.OPEN:
            elapsed = self._clock.now() - self._last_failure_at
            seconds_until_retry = max(0.0, self.config.reset_timeout_seconds - elapsed)
        return CircuitDiagnostics(
            state=self._state,
            failure_count=self._failure_count,
            success_count=self._success_count,
            last_failure_at=self._last_failure_at,
            seconds_until_retry=seconds_until_retry,
        )

    def _reset_timeout_elapsed(self) -> bool:
        return self._clock.now() - self._last_failure_at >= self.config.reset_timeout_seconds

    def _transition(self, new_state: CircuitState) -> None:
        if self._state == new_state:
            return
        previous = self._state
        self._state = new_state
        if new_state == CircuitState.CLOSED:
            self._failure_count = 0
            self._success_count = 0
        elif new_state == CircuitState.HALF_OPEN:
            self._success_count = 0

        logger.info(f"Circuit for {self.agent_id}: {previous.value} -> {new_state.value}")
        if self._on_state_change:
            self._on_state_change(self.agent_id, new_state)


# --- Error log ---


class CrewErrorLog:
    """Bounded ring buffer of crew errors."""

    def __init__(self, max_entries: int = DEFAULT_ERROR_LOG_SIZE, clock: Clock | None = None):
        self.max_entries = max_entries
        self._clock = clock or SystemClock()
        self._errors: deque[CrewError] = deque(maxlen=max_entries)

    def __len__(self) -> int:
        return len(self._errors)

    def log(self, error: CrewError) -> None:
        """Append an error, evicting the oldest at capacity."""
        self._errors.append(error)
        log_level = logging.WARNING if error.severity == ErrorSeverity.WARNING else logging.ERROR
        logger.log(
            log_level,
            f"[{error.category.value}] {error.message}"
            + (f" (agent={error.agent_id})" if error.agent_id else ""),
        )

    def recent(self, count: int = 10) -> list[CrewError]:
        if count <= 0:
            return []
        return list(self._errors)[-count:]

    def for_agent(self, agent_id: str) -> list[CrewError]:
        return [e for e in self._errors if e.agent_id == agent_id]

    def by_category(self, category: ErrorCategory) -> list[CrewError]:
        return [e for e in self._errors if e.category == category]

    def error_rate(self, window_minutes: float = 5) -> float:
        """Errors per minute over the trailing window."""
        cutoff = self._clock.now() - window_minutes * 60
        recent = sum(1 for e in self._errors if e.timestamp > cutoff)
        return recent / window_minutes

    def has_systemic_issue(self, threshold_per_minute: float = 5, window_minutes: float = 5) -> bool:
        """True when the error rate exceeds the threshold."""
        return self.error_rate(window_minutes) > threshold_per_minute

    def summary(self) -> dict[str, Any]:
        """Totals by severity, category and agent, plus rate and last error."""
        by_severity = {severity.value: 0 for severity in ErrorSeverity}
        by_category: Counter[str] = Counter()
        by_agent: Counter[str] = Counter()

        for error in self._errors:
            by_severity[error.severity.value] += 1
            by_category[error.category.value] += 1
            if error.agent_id:
                by_agent[error.agent_id] += 1

        return {
            "total": len(self._errors),
            "by_severity": by_severity,
            "by_category": dict(by_category),
            "by_agent": dict(by_agent),
            "error_rate": self.error_rate(),
            "last_error": self._errors[-1] if self._errors else None,
        }

    def clear(self) -> None:
        self._errors.clear()


# --- Retry ---


def backoff_delay(
    attempt: int,
    base_delay: float,
    multiplier: float = 2.0,
    max_delay: float | None = None,
) -> float:
    """Exponential backoff delay for a zero-based attempt number."""
    delay = base_delay * multiplier**attempt
    if max_delay is not None:
        delay = min(delay, max_delay)
    return delay


def with_retry(
    operation: Callable[[], T],
    config: RetryConfig | None = None,
    *,
    retry_on: tuple[type[BaseException], ...] = (Exception,),
    retry_if: Callable[[BaseException], bool] | None = None,
    sleep: Callable[[float], None] = time.sleep,
    jitter: Callable[[], float] = random.random,
) -> T:
    """Call ``operation``, retrying with exponential backoff and 10% jitter.

    Args:
        operation: Zero-argument callable to run
        config: Retry settings
        retry_on: Exception types that trigger a retry
        retry_if: Further filter on a caught exception; False re-raises it
        sleep: Sleep function (patched in tests)
        jitter: Source of uniform [0, 1) noise

    Returns:
        The operation's result

    Raises:
        The last exception once retries are exhausted
    """
    opts = config or RetryConfig()
    attempt = 0
    while True:
        try:
            return operation()
        except retry_on as e:
            if attempt >= opts.max_retries or (retry_if is not None and not retry_if(e)):
                raise
            delay = backoff_delay(
                attempt,
                opts.base_delay_seconds,
                opts.backoff_multiplier,
                opts.max_delay_seconds,
            )
            delay += delay * 0.1 * (jitter() * 2 - 1)
            logger.debug(f"Retrying after {type(e).__name__} (attempt {attempt + 1}, {delay:.3f}s)")
            sleep(max(0.0, delay))
            attempt += 1
