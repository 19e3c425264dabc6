"""Live crew session for a presentation layer.

A ``CrewSession`` owns one engine and plays each user message back as a
sequence of agent steps. Callers send one message at a time and read back
the conversation, live agent states and crew health.
"""

from __future__ import annotations

import logging
from collections import deque
from dataclasses import dataclass, field, replace
from typing import Callable, Iterable, Literal

from crewsim.clock import AsyncioScheduler, Clock, Scheduler, SystemClock, VirtualScheduler
from crewsim.engine import CrewEngine, create_crew
from crewsim.errors import SchedulerUnavailableError
from crewsim.events import CrewEvent
from crewsim.executor import build_execution_plan, execute_plan
from crewsim.policies import CrewPolicy
from crewsim.protocol import generate_id
from crewsim.queue import MessageHandler
from crewsim.roles import PhraseBank
from crewsim.schemas import (
    Agent,
    AgentStatus,
    CircuitState,
    ExecutionPlan,
    ExecutionStep,
    ReviewResult,
    RouteDecision,
    StepType,
    TaskResult,
)
from crewsim.store import MemoryStore

logger = logging.getLogger(__name__)

RECENT_REVIEWS = 10
USER_NAME = "You"

LiveMessageType = Literal[
    "user", "routing", "thinking", "working", "delegating", "reviewing", "result", "error"
]

STEP_STATUS = {
    StepType.THINKING: AgentStatus.WORKING,
    StepType.WORKING: AgentStatus.WORKING,
    StepType.DELEGATING: AgentStatus.DELEGATING,
    StepType.REVIEWING: AgentStatus.REVIEWING,
    StepType.COMPLETE: AgentStatus.IDLE,
}


@dataclass
class LiveMessage:
    """One line of the visible conversation."""

    id: str
    from_agent: str
    from_name: str
    from_emoji: str
    to: str
    to_name: str
    content: str
    type: LiveMessageType
    timestamp: float
    review: ReviewResult | None = None


@dataclass
class LiveAgentState:
    """What the presentation layer shows for one agent."""

    id: str
    name: str
    emoji: str
    role: str
    color: str
    status: AgentStatus = AgentStatus.IDLE
    current_task: str | None = None
    completed_tasks: int = 0
    last_active: float = 0.0
    quality_score: float | None = None
    circuit_state: CircuitState = CircuitState.CLOSED


@dataclass
class CrewHealth:
    """Crew-wide quality and load indicators."""

    average_quality: float
    approval_rate: float
    error_rate: float
    total_errors: int
    queue_depth: int
    top_performer: str | None


@dataclass
class Playback:
    """Handle for one message being played back."""

    plan: ExecutionPlan
    decision: RouteDecision
    cancel: Callable[[], None] = field(repr=False)
    done: bool = False
    cancelled: bool = False
    result: TaskResult | None = None


class CrewSession:
    """One crew session: engine, step playback and live views.

    Args:
        agents: Agent records; disabled agents are left out of the crew
        name: Crew name
        policy: Crew configuration policy
        clock: Time source (defaults to the virtual scheduler's clock)
        scheduler: Runs playback steps; asyncio timers by default
        store: Memory persistence port
        phrases: Template and duration source
        handler: Custom async queue handler for the engine

    Raises:
        ValueError: If no agent is enabled
    """

    def __init__(
        self,
        agents: Iterable[Agent],
        *,
        name: str = "Active Crew",
        policy: CrewPolicy | None = None,
        clock: Clock | None = None,
        scheduler: Scheduler | None = None,
        store: MemoryStore | None = None,
        phrases: PhraseBank | None = None,
        handler: MessageHandler | None = None,
    ):
        enabled = [a for a in agents if a.enabled]
        if not enabled:
            raise ValueError("A crew session needs at least one enabled agent")

        self.scheduler = scheduler or AsyncioScheduler()
        if clock is None and isinstance(self.scheduler, VirtualScheduler):
            clock = self.scheduler.clock
        self._clock = clock or SystemClock()
        self.phrases = phrases or PhraseBank()

        crew = create_crew(name, "Live crew session", enabled, clock=self._clock)
        self.engine = CrewEngine(crew, policy, clock=self._clock, store=store, handler=handler)

        now = self._clock.now()
        self._states: dict[str, LiveAgentState] = {
            a.id: LiveAgentState(
                id=a.id,
                name=a.name,
                emoji=a.emoji,
                role=a.role.value,
                color=a.color,
                last_active=now,
            )
            for a in enabled
        }
        self._messages: list[LiveMessage] = []
        self._reviews: deque[ReviewResult] = deque(maxlen=RECENT_REVIEWS)
        self._playback: Playback | None = None

        self._unsubscribe = [
            self.engine.events.on(CrewEvent.REVIEW_COMPLETE, self._on_review),
            self.engine.events.on_namespace("circuit", self._on_circuit),
        ]

    # --- Sending ---

    @property
    def is_processing(self) -> bool:
        playback = self._playback
        return playback is not None and not playback.done and not playback.cancelled

    def send_message(
        self,
        content: str,
        on_step: Callable[[ExecutionStep, int], None] | None = None,
        on_complete: Callable[[Playback], None] | None = None,
    ) -> Playback | None:
        """Route a user message and start playing back its execution plan.

        Returns:
            The playback handle, or None if a message is already in flight

        Raises:
            SchedulerUnavailableError: If playback uses asyncio timers and no
                event loop is running. Nothing is routed in that case.
        """
        if self.is_processing:
            logger.info("Ignoring message while another one is being processed")
            return None

        if isinstance(self.scheduler, AsyncioScheduler) and not self.scheduler.available:
            raise SchedulerUnavailableError(
                "Live playback needs a running event loop; pass a VirtualScheduler for synchronous use"
            )

        if self._playback is not None:
            self._playback.cancel()

        crew = self.engine.crew
        coordinator = crew.agents.get(crew.coordinator_id)
        coordinator_name = coordinator.agent.name if coordinator else "Coordinator"
        coordinator_emoji = coordinator.agent.emoji if coordinator else ""

        self._add_message(
            from_agent="user",
            from_name=USER_NAME,
            from_emoji="",
            to=crew.coordinator_id,
            to_name=coordinator_name,
            content=content,
            type="user",
        )

        decision = self.engine.process_user_message(content)
        target = crew.agents.get(decision.agent_id)
        target_name = target.agent.name if target else "Unknown"
        target_emoji = target.agent.emoji if target else ""
        percent = round(decision.confidence * 100)
        if decision.agent_id == crew.coordinator_id:
            routing_text = f"Handling directly ({percent}% confidence)"
        else:
            routing_text = (
                f"Routing to {target_emoji} {target_name} ({percent}% confidence): {decision.reason}"
            )
        self._add_message(
            from_agent=crew.coordinator_id,
            from_name=coordinator_name,
            from_emoji=coordinator_emoji,
            to=decision.agent_id,
            to_name=target_name,
            content=routing_text,
            type="routing",
        )

        agents = {agent_id: ca.agent for agent_id, ca in crew.agents.items()}
        plan = build_execution_plan(content, decision.agent_id, agents, self.phrases, clock=self._clock)
        self.engine.events.emit(CrewEvent.EXECUTION_STARTED, {"plan": plan})
        logger.info(f"Playing back {plan.id}: {len(plan.steps)} steps over {plan.total_duration:.1f}s")

        playback = Playback(plan=plan, decision=decision, cancel=lambda: None)

        def step_fired(step: ExecutionStep, index: int) -> None:
            self._on_step(plan, step, index)
            if on_step:
                on_step(step, index)

        def plan_completed(completed: ExecutionPlan) -> None:
            self._on_complete(playback, completed)
            if on_complete:
                on_complete(playback)

        playback.cancel = execute_plan(plan, step_fired, plan_completed, self.scheduler)
        self._playback = playback
        return playback

    def cancel(self) -> bool:
        """Cancel the message in flight. Returns False if there was none."""
        playback = self._playback
        if playback is None or not self.is_processing:
            return False
        playback.cancel()
        playback.cancelled = True
        self._reset_states()
        self.engine.events.emit(CrewEvent.EXECUTION_CANCELLED, {"plan_id": playback.plan.id})
        logger.info(f"Cancelled {playback.plan.id}")
        return True

    def close(self) -> None:
        """Cancel playback, detach listeners and save memory."""
        self.cancel()
        for unsubscribe in self._unsubscribe:
            unsubscribe()
        self._unsubscribe.clear()
        self.engine.save_memory()

    # --- Views ---

    @property
    def messages(self) -> list[LiveMessage]:
        return list(self._messages)

    @property
    def recent_reviews(self) -> list[ReviewResult]:
        return list(self._reviews)

    @property
    def current(self) -> Playback | None:
        return self._playback

    def agent_states(self) -> list[LiveAgentState]:
        """Snapshot of every agent's live state."""
        return [replace(state) for state in self._states.values()]

    def health(self) -> CrewHealth:
        """Quality, approval rate, errors and load. Quality defaults to 1.0 before any review."""
        quality = self.engine.reviews.crew_quality()
        errors = self.engine.errors.summary()
        reviewed = quality["total_reviews"] > 0
        return CrewHealth(
            average_quality=quality["average_score"] if reviewed else 1.0,
            approval_rate=quality["approval_rate"] if reviewed else 1.0,
            error_rate=errors["error_rate"],
            total_errors=errors["total"],
            queue_depth=self.engine.queues.total_pending,
            top_performer=quality["top_performer"],
        )

    def clear_messages(self) -> None:
        self._messages.clear()
        self._reviews.clear()

    # --- Internals ---

    def _on_step(self, plan: ExecutionPlan, step: ExecutionStep, index: int) -> None:
        self._update_state(step.agent_id, STEP_STATUS[step.type], step.content)
        self.engine.events.emit(
            CrewEvent.EXECUTION_STEP,
            {"step": step, "index": index, "total": len(plan.steps)},
        )
        if step.type != StepType.COMPLETE:
            self._add_message(
                from_agent=step.agent_id,
                from_name=step.agent_name,
                from_emoji=step.agent_emoji,
                to="delegation" if step.type == StepType.DELEGATING else "crew",
                to_name="",
                content=step.content,
                type=step.type.value,
            )

    def _on_complete(self, playback: Playback, plan: ExecutionPlan) -> None:
        result = self.engine.submit_result(plan.primary_agent, plan.final_response)
        playback.result = result

        primary = self.engine.agent(plan.primary_agent)
        self._add_message(
            from_agent=plan.primary_agent,
            from_name=primary.agent.name if primary else "Agent",
            from_emoji=primary.agent.emoji if primary else "",
            to="user",
            to_name=USER_NAME,
            content=plan.final_response,
            type="result",
            review=result.review,
        )

        state = self._states.get(plan.primary_agent)
        if state:
            state.completed_tasks += 1
        self._reset_states()

        self.engine.events.emit(
            CrewEvent.EXECUTION_COMPLETE,
            {"plan": plan, "duration": plan.total_duration},
        )
        self.engine.save_memory()
        playback.done = True

    def _on_review(self, payload: dict) -> None:
        review: ReviewResult = payload["result"]
        self._reviews.append(review)
        state = self._states.get(review.agent_id)
        perf = self.engine.reviews.performance(review.agent_id)
        if state and perf:
            state.quality_score = perf.average_score

    def _on_circuit(self, event: str, payload: dict) -> None:
        agent_id = payload.get("agent_id")
        state = self._states.get(agent_id)
        diagnostics = self.engine.circuit_state(agent_id) if agent_id else None
        if state and diagnostics:
            state.circuit_state = diagnostics.state

    def _reset_states(self) -> None:
        now = self._clock.now()
        for state in self._states.values():
            state.status = (
                AgentStatus.BLOCKED if state.circuit_state == CircuitState.OPEN else AgentStatus.IDLE
            )
            state.current_task = None
            state.last_active = now

    def _update_state(self, agent_id: str, status: AgentStatus, task: str | None) -> None:
        state = self._states.get(agent_id)
        if state:
            state.status = status
            state.current_task = task
            state.last_active = self._clock.now()

    def _add_message(self, **fields) -> None:
        self._messages.append(
            LiveMessage(id=generate_id("live", self._clock), timestamp=self._clock.now(), **fields)
        )
