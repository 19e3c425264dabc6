"""Per-agent priority message queues with retry and a concurrency gate."""

from __future__ import annotations

import asyncio
import logging
from collections import deque
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable

from crewsim.clock import Clock, SystemClock
from crewsim.errors import backoff_delay
from crewsim.policies import QueueConfig
from crewsim.schemas import PRIORITY_WEIGHTS, CrewMessage

logger = logging.getLogger(__name__)

PROCESSING_TIME_SAMPLES = 50

MessageHandler = Callable[[CrewMessage], Awaitable[Any]]
ErrorCallback = Callable[[CrewMessage, BaseException], None]
RetryCallback = Callable[[CrewMessage, BaseException, int], None]
ProcessedCallback = Callable[[CrewMessage, Any], None]
Sleep = Callable[[float], Awaitable[Any]]


class QueueStatus(str, Enum):
    """Queue processing states."""

    IDLE = "idle"
    PROCESSING = "processing"
    PAUSED = "paused"


@dataclass
class QueueStats:
    """Snapshot of a queue's counters."""

    processed: int = 0
    failed: int = 0
    avg_processing_time: float = 0.0
    queue_depth: int = 0
    active: int = 0
    status: QueueStatus = QueueStatus.IDLE


@dataclass
class QueuedMessage:
    """A message waiting in a queue, with its retry count."""

    message: CrewMessage
    retries: int = 0
    added_at: float = 0.0


def _sort_key(queued: QueuedMessage) -> tuple[int, float]:
    return (-PRIORITY_WEIGHTS[queued.message.priority], queued.message.timestamp)


class AgentMessageQueue:
    """Priority message queue for a single agent.

    Messages are kept sorted by priority weight (urgent first), then by message
    timestamp. Work is pulled by worker tasks on the running event loop; with
    no loop running, messages wait until ``drain()`` is awaited.
    """

    def __init__(
        self,
        agent_id: str,
        config: QueueConfig | None = None,
        clock: Clock | None = None,
        sleep: Sleep = asyncio.sleep,
    ):
        self.agent_id = agent_id
        self.config = config or QueueConfig()
        self._clock = clock or SystemClock()
        self._sleep = sleep
        self._queue: list[QueuedMessage] = []
        self._in_flight: set[str] = set()
        self._workers: set[asyncio.Task] = set()
        self._retry_tasks: set[asyncio.Task] = set()
        self._handler: MessageHandler | None = None
        self._status = QueueStatus.IDLE
        self._processed = 0
        self._failed = 0
        self._processing_times: deque[float] = deque(maxlen=PROCESSING_TIME_SAMPLES)

        self._on_processed: ProcessedCallback | None = None
        self._on_error: ErrorCallback | None = None
        self._on_retry: RetryCallback | None = None
        self._on_drain: Callable[[], None] | None = None

    # --- Registration ---

    def set_handler(self, handler: MessageHandler) -> None:
        """Register the coroutine function that processes messages."""
        self._handler = handler
        self._start_workers()

    def on_processed(self, callback: ProcessedCallback) -> None:
        self._on_processed = callback

    def on_error(self, callback: ErrorCallback) -> None:
        """Called once per message whose retries are exhausted."""
        self._on_error = callback

    def on_retry(self, callback: RetryCallback) -> None:
        """Called for each failed attempt that will be retried."""
        self._on_retry = callback

    def on_drain(self, callback: Callable[[], None]) -> None:
        self._on_drain = callback

    # --- Public API ---

    def enqueue(self, message: CrewMessage) -> bool:
        """Enqueue a message. Returns False if the queue is full."""
        if len(self._queue) >= self.config.max_queue_size:
            logger.warning(f"Queue for {self.agent_id} is full, rejecting {message.id}")
            return False

        self._insert(QueuedMessage(message=message, retries=0, added_at=self._clock.now()))
        self._start_workers()
        return True

    def pause(self) -> None:
        """Stop pulling new work. In-flight messages still finish."""
        self._status = QueueStatus.PAUSED

    def resume(self) -> None:
        """Resume pulling work if paused."""
        if self._status == QueueStatus.PAUSED:
            self._status = QueueStatus.PROCESSING if self._in_flight else QueueStatus.IDLE
            self._start_workers()

    @property
    def status(self) -> QueueStatus:
        return self._status

    @property
    def has_handler(self) -> bool:
        return self._handler is not None

    @property
    def active_count(self) -> int:
        """Number of messages currently being processed."""
        return len(self._in_flight)

    def stats(self) -> QueueStats:
        """Get a snapshot of the queue counters."""
        avg = (
            sum(self._processing_times) / len(self._processing_times)
            if self._processing_times
            else 0.0
        )
        return QueueStats(
            processed=self._processed,
            failed=self._failed,
            avg_processing_time=avg,
            queue_depth=len(self._queue),
            active=len(self._in_flight),
            status=self._status,
        )

    def pending(self) -> list[CrewMessage]:
        """Queued messages in processing order."""
        return [q.message for q in self._queue]

    def clear(self) -> None:
        """Drop all queued messages. In-flight work is not affected."""
        self._queue.clear()

    async def drain(self) -> None:
        """Wait until nothing is queued, in flight or waiting on a retry.

        A paused queue keeps its queued messages; drain returns once in-flight
        work and pending retries are done.
        """
        self._start_workers()
        while self._workers or self._retry_tasks:
            await asyncio.gather(*self._workers, *self._retry_tasks, return_exceptions=True)
            self._start_workers()

    # --- Internals ---

    def _insert(self, queued: QueuedMessage) -> None:
        self._queue.append(queued)
        self._queue.sort(key=_sort_key)

    def _start_workers(self) -> None:
        if self._status == QueueStatus.PAUSED or self._handler is None or not self._queue:
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return

        while len(self._workers) < self.config.max_concurrent:
            task = loop.create_task(self._worker())
            self._workers.add(task)

    async def _worker(self) -> None:
        try:
            while self._status != QueueStatus.PAUSED and self._queue and self._handler:
                queued = self._queue.pop(0)
                await self._process(queued)
        finally:
            self._workers.discard(asyncio.current_task())
            if not self._workers and not self._in_flight and self._status != QueueStatus.PAUSED:
                self._status = QueueStatus.IDLE
                if not self._queue and not self._retry_tasks:
                    self._notify(self._on_drain)

    async def _process(self, queued: QueuedMessage) -> None:
        if self._status != QueueStatus.PAUSED:
            self._status = QueueStatus.PROCESSING
        message = queued.message
        self._in_flight.add(message.id)
        started = self._clock.now()

        try:
            result = await asyncio.wait_for(
                self._handler(message),
                timeout=self.config.processing_timeout_seconds,
            )
        except Exception as e:
            self._handle_failure(queued, e)
        else:
            self._processing_times.append(self._clock.now() - started)
            self._processed += 1
            self._notify(self._on_processed, message, result)
        finally:
            self._in_flight.discard(message.id)

    def _handle_failure(self, queued: QueuedMessage, error: BaseException) -> None:
        message = queued.message
        if queued.retries < self.config.max_retries:
            queued.retries += 1
            delay = backoff_delay(queued.retries - 1, self.config.retry_delay_seconds)
            logger.info(
                f"Message {message.id} for {self.agent_id} failed ({error!r}), "
                f"retry {queued.retries}/{self.config.max_retries} in {delay:.2f}s"
            )
            self._notify(self._on_retry, message, error, queued.retries)
            task = asyncio.get_running_loop().create_task(self._retry_later(queued, delay))
            self._retry_tasks.add(task)
        else:
            self._failed += 1
            logger.warning(f"Message {message.id} for {self.agent_id} failed permanently: {error!r}")
            self._notify(self._on_error, message, error)

    async def _retry_later(self, queued: QueuedMessage, delay: float) -> None:
        try:
            await self._sleep(delay)
            self._insert(queued)
        finally:
            self._retry_tasks.discard(asyncio.current_task())
        self._start_workers()

    def _notify(self, callback: Callable[..., None] | None, *args: Any) -> None:
        if callback is None:
            return
        try:
            callback(*args)
        except Exception:
            logger.error(f"Queue callback failed for {self.agent_id}", exc_info=True)


class CrewQueueManager:
    """Lazily creates one queue per target agent and wires shared handlers."""

    def __init__(
        self,
        config: QueueConfig | None = None,
        clock: Clock | None = None,
        sleep: Sleep = asyncio.sleep,
    ):
        self.config = config or QueueConfig()
        self._clock = clock or SystemClock()
        self._sleep = sleep
        self._queues: dict[str, AgentMessageQueue] = {}
        self._handler: MessageHandler | None = None
        self._on_error: Callable[[str, CrewMessage, BaseException], None] | None = None
        self._on_retry: Callable[[str, CrewMessage, BaseException, int], None] | None = None
        self._on_drain: Callable[[str], None] | None = None

    def set_handler(self, handler: MessageHandler) -> None:
        """Set the handler for all existing and future agent queues."""
        self._handler = handler
        for queue in self._queues.values():
            queue.set_handler(handler)

    def set_error_handler(self, handler: Callable[[str, CrewMessage, BaseException], None]) -> None:
        self._on_error = handler
        for agent_id, queue in self._queues.items():
            self._wire(agent_id, queue)

    def set_retry_handler(
        self, handler: Callable[[str, CrewMessage, BaseException, int], None]
    ) -> None:
        self._on_retry = handler
        for agent_id, queue in self._queues.items():
            self._wire(agent_id, queue)

    def set_drain_handler(self, handler: Callable[[str], None]) -> None:
        self._on_drain = handler
        for agent_id, queue in self._queues.items():
            self._wire(agent_id, queue)

    def queue(self, agent_id: str) -> AgentMessageQueue:
        """Get or create the queue for an agent."""
        queue = self._queues.get(agent_id)
        if queue is None:
            queue = AgentMessageQueue(agent_id, self.config, clock=self._clock, sleep=self._sleep)
            self._wire(agent_id, queue)
            if self._handler:
                queue.set_handler(self._handler)
            self._queues[agent_id] = queue
        return queue

    def enqueue(self, message: CrewMessage) -> bool:
        """Enqueue a message on its target agent's queue."""
        return self.queue(message.to).enqueue(message)

    def all_stats(self) -> dict[str, QueueStats]:
        return {agent_id: queue.stats() for agent_id, queue in self._queues.items()}

    @property
    def total_pending(self) -> int:
        """Total queued messages across all agents."""
        return sum(len(queue.pending()) for queue in self._queues.values())

    def pause_all(self) -> None:
        for queue in self._queues.values():
            queue.pause()

    def resume_all(self) -> None:
        for queue in self._queues.values():
            queue.resume()

    def remove_queue(self, agent_id: str) -> None:
        queue = self._queues.pop(agent_id, None)
        if queue:
            queue.clear()

    async def drain_all(self) -> None:
        """Drain every queue, including queues that receive work while draining."""
        drained: set[str] = set()
        while True:
            remaining = [q for agent_id, q in self._queues.items() if agent_id not in drained]
            if not remaining:
                break
            for queue in remaining:
                await queue.drain()
                drained.add(queue.agent_id)
            # Handlers may have enqueued onto already drained queues.
            if any(
                q.pending() and q.has_handler and q.status != QueueStatus.PAUSED
                for q in self._queues.values()
            ):
                drained.clear()

    def _wire(self, agent_id: str, queue: AgentMessageQueue) -> None:
        if self._on_error:
            on_error = self._on_error
            queue.on_error(lambda msg, err: on_error(agent_id, msg, err))
        if self._on_retry:
            on_retry = self._on_retry
            queue.on_retry(lambda msg, err, attempt: on_retry(agent_id, msg, err, attempt))
        if self._on_drain:
            on_drain = self._on_drain
            queue.on_drain(lambda: on_drain(agent_id))
