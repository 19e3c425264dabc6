"""Crew orchestration engine.

Composes routing, per-agent queues, memory, review, circuit breakers, the
error log and the event bus into one lifecycle:

1. User message -> routed to the best agent (coordinator as fallback)
2. Agent submits a result -> reviewed, breaker updated, agent back to idle
3. Agent delegates -> handoff message to another agent with context
4. Agent asks for review -> review message to the coordinator

Routine failures (queue overflow, handler timeouts, exhausted retries, open
circuits) are logged as ``CrewError`` records and emitted as events; they
never raise out of the public methods.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Iterable

from crewsim.clock import Clock, SystemClock
from crewsim.errors import (
    AgentCircuitBreaker,
    CircuitDiagnostics,
    CrewErrorLog,
    UnknownAgentError,
    create_crew_error,
)
from crewsim.events import CrewEvent, CrewEventBus
from crewsim.memory import CrewMemory
from crewsim.policies import CrewPolicy, get_policy
from crewsim.protocol import RoutingRule, build_routing_rules, create_message, generate_id, route_message
from crewsim.queue import CrewQueueManager, MessageHandler, Sleep
from crewsim.review import ReviewTracker, review_output
from crewsim.schemas import (
    Agent,
    AgentRole,
    AgentStatus,
    CircuitState,
    CrewMessage,
    ErrorCategory,
    ErrorSeverity,
    HandoffRequest,
    MessageContext,
    MessageType,
    PolicyId,
    ReviewVerdict,
    RouteDecision,
    TaskResult,
)
from crewsim.store import MemoryStore

logger = logging.getLogger(__name__)

NO_MATCH_CONFIDENCE = 0.5
NO_MATCH_REASON = "No specialist matched, routed to coordinator"
FALLBACK_CONFIDENCE = 0.3
ESCALATION_REASON = "Consistently low quality output"

# Working agents first, offline last.
STATUS_ORDER = {
    AgentStatus.WORKING: 0,
    AgentStatus.REVIEWING: 1,
    AgentStatus.DELEGATING: 2,
    AgentStatus.IDLE: 3,
    AgentStatus.BLOCKED: 4,
    AgentStatus.OFFLINE: 5,
}


class CrewStatus(str, Enum):
    """Crew-level processing state."""

    ACTIVE = "active"
    PAUSED = "paused"


@dataclass
class CrewAgent:
    """Live state of one agent within a crew."""

    agent: Agent
    status: AgentStatus = AgentStatus.IDLE
    current_task: str | None = None
    completed_tasks: int = 0
    last_active: float = 0.0


@dataclass
class Crew:
    """A named set of agents with one coordinator and derived routing rules."""

    id: str
    name: str
    description: str
    agents: dict[str, CrewAgent]
    coordinator_id: str
    message_log: list[CrewMessage] = field(default_factory=list)
    routing_rules: list[RoutingRule] = field(default_factory=list)
    created_at: float = 0.0
    status: CrewStatus = CrewStatus.ACTIVE


def create_crew(
    name: str,
    description: str,
    agents: Iterable[Agent],
    coordinator_id: str | None = None,
    clock: Clock | None = None,
) -> Crew:
    """Create a crew from a set of agents.

    The coordinator is the given id, else the first agent with the
    coordinator role, else the first agent.

    Raises:
        ValueError: If no agents are given
    """
    clock = clock or SystemClock()
    agents = list(agents)
    if not agents:
        raise ValueError("A crew needs at least one agent")

    coordinator = coordinator_id or next(
        (a.id for a in agents if a.role == AgentRole.COORDINATOR),
        agents[0].id,
    )
    now = clock.now()
    return Crew(
        id=generate_id("crew", clock),
        name=name,
        description=description,
        agents={a.id: CrewAgent(agent=a, last_active=now) for a in agents},
        coordinator_id=coordinator,
        routing_rules=build_routing_rules(agents, coordinator),
        created_at=now,
    )


class CrewEngine:
    """Orchestrates a team of agents for one crew session."""

    def __init__(
        self,
        crew: Crew,
        policy: CrewPolicy | None = None,
        *,
        clock: Clock | None = None,
        store: MemoryStore | None = None,
        handler: MessageHandler | None = None,
        sleep: Sleep = asyncio.sleep,
    ):
        self.crew = crew
        self.policy = policy or get_policy(PolicyId.DEFAULT)
        self._clock = clock or SystemClock()

        self.events = CrewEventBus(self.policy.event_log_size, clock=self._clock)
        self.queues = CrewQueueManager(self.policy.queue, clock=self._clock, sleep=sleep)
        self.memory = CrewMemory(crew.id, self.policy.memory, store=store, clock=self._clock)
        self.reviews = ReviewTracker(self.policy.review)
        self.errors = CrewErrorLog(self.policy.error_log_size, clock=self._clock)
        self._breakers: dict[str, AgentCircuitBreaker] = {}

        for agent_id in crew.agents:
            self._add_breaker(agent_id)

        self.queues.set_handler(handler or self._acknowledge)
        self.queues.set_retry_handler(self._on_queue_retry)
        self.queues.set_error_handler(self._on_queue_error)
        self.queues.set_drain_handler(self._on_queue_drained)

        restored = self.memory.load()
        if restored:
            self.events.emit(CrewEvent.MEMORY_RECALLED, {"crew_id": crew.id, "entries": restored})

        self.events.emit(
            CrewEvent.CREW_INITIALIZED,
            {"crew_id": crew.id, "agent_count": len(crew.agents)},
        )
        logger.info(
            f"Crew {crew.name} ready with {len(crew.agents)} agents "
            f"(coordinator {crew.coordinator_id}, policy {self.policy.policy_id.value})"
        )

    # --- Lifecycle ---

    def process_user_message(self, content: str) -> RouteDecision:
        """Route a user message and enqueue it for the chosen agent."""
        coordinator_id = self.crew.coordinator_id
        context = MessageContext(original_request=content)
        self.memory.record_message(
            create_message("user", coordinator_id, MessageType.TASK, content, context, clock=self._clock)
        )

        routing = route_message(content, self.crew.routing_rules)

        if routing is None:
            decision = RouteDecision(
                agent_id=coordinator_id,
                confidence=NO_MATCH_CONFIDENCE,
                reason=NO_MATCH_REASON,
            )
            message = create_message("user", coordinator_id, MessageType.TASK, content, context, clock=self._clock)
            self._assign(decision, message, content)
            return decision

        breaker = self._breakers.get(routing.agent_id)
        if breaker and not breaker.can_execute():
            self.errors.log(
                create_crew_error(
                    ErrorCategory.ROUTING,
                    ErrorSeverity.WARNING,
                    f"Agent {routing.agent_id} circuit breaker is open, falling back to coordinator",
                    agent_id=routing.agent_id,
                    context={"original_target": routing.agent_id},
                    recovery_action="fallback_to_coordinator",
                    clock=self._clock,
                )
            )
            decision = RouteDecision(
                agent_id=coordinator_id,
                confidence=FALLBACK_CONFIDENCE,
                reason=f"Fallback: {routing.agent_id} is temporarily unavailable",
            )
            message = create_message("user", coordinator_id, MessageType.TASK, content, context, clock=self._clock)
            self._assign(decision, message, content)
            return decision

        message = create_message(
            coordinator_id, routing.agent_id, MessageType.TASK, content, context, clock=self._clock
        )
        self._assign(routing, message, content)
        self._set_status(routing.agent_id, AgentStatus.WORKING)
        return routing

    def submit_result(self, agent_id: str, content: str, task_id: str | None = None) -> TaskResult:
        """Record an agent's result, review it and update the agent's state."""
        crew_agent = self.crew.agents.get(agent_id)
        original_request = (crew_agent.current_task if crew_agent else None) or ""
        role = crew_agent.agent.role.value if crew_agent else AgentRole.SUPPORT.value

        message = create_message(
            agent_id,
            self.crew.coordinator_id,
            MessageType.RESULT,
            content,
            MessageContext(task_id=task_id, original_request=original_request),
            clock=self._clock,
        )
        self._enqueue(message)
        self.memory.record_message(message)

        review = review_output(message, original_request, role, self.policy.review, clock=self._clock)
        self.reviews.record(review)
        self.events.emit(CrewEvent.REVIEW_COMPLETE, {"result": review})

        breaker = self._breakers.get(agent_id)
        if breaker:
            if review.verdict == ReviewVerdict.REJECTED:
                breaker.record_failure()
            else:
                breaker.record_success()

        if self.reviews.should_escalate(agent_id):
            logger.warning(f"Escalating {agent_id}: {ESCALATION_REASON}")
            self.events.emit(
                CrewEvent.REVIEW_ESCALATED,
                {"agent_id": agent_id, "reason": ESCALATION_REASON},
            )

        now = self._clock.now()
        duration = now - crew_agent.last_active if crew_agent else 0.0
        blocked = breaker is not None and breaker.state == CircuitState.OPEN
        self._set_status(agent_id, AgentStatus.BLOCKED if blocked else AgentStatus.IDLE)

        if crew_agent:
            crew_agent.completed_tasks += 1
            crew_agent.current_task = None

        resolved_task_id = task_id or message.id
        self.events.emit(
            CrewEvent.AGENT_TASK_COMPLETE,
            {"agent_id": agent_id, "task_id": resolved_task_id, "duration": duration},
        )

        return TaskResult(
            task_id=resolved_task_id,
            agent_id=agent_id,
            content=content,
            success=review.verdict != ReviewVerdict.REJECTED,
            review=review,
        )

    def delegate_task(self, handoff: HandoffRequest) -> CrewMessage:
        """Hand work from one agent to another, preserving context."""
        self._set_status(handoff.from_agent, AgentStatus.DELEGATING)

        message = create_message(
            handoff.from_agent,
            handoff.to_agent,
            MessageType.DELEGATE,
            handoff.reason,
            handoff.context,
            clock=self._clock,
        )
        self._enqueue(message)
        self.memory.record_message(message)

        self.events.emit(
            CrewEvent.DELEGATION_INITIATED,
            {"from_agent": handoff.from_agent, "to_agent": handoff.to_agent, "reason": handoff.reason},
        )

        target = self.crew.agents.get(handoff.to_agent)
        if target:
            target.current_task = handoff.context.original_request or handoff.reason

        self._set_status(handoff.from_agent, AgentStatus.IDLE)
        self._set_status(handoff.to_agent, AgentStatus.WORKING)
        return message

    def request_review(self, from_agent: str, content: str, reviewer_id: str | None = None) -> CrewMessage:
        """Ask an agent (the coordinator by default) to review content."""
        reviewer = reviewer_id or self.crew.coordinator_id
        message = create_message(from_agent, reviewer, MessageType.REVIEW, content, clock=self._clock)
        self._enqueue(message)
        self._set_status(reviewer, AgentStatus.REVIEWING)

        self.events.emit(
            CrewEvent.REVIEW_REQUESTED,
            {"agent_id": from_agent, "reviewer_id": reviewer, "message_id": message.id},
        )
        return message

    # --- Roster ---

    def add_agent(self, agent: Agent) -> None:
        """Add an agent and regenerate routing rules."""
        self.crew.agents[agent.id] = CrewAgent(agent=agent, last_active=self._clock.now())
        self._update_routing_rules()
        self._add_breaker(agent.id)
        self.events.emit(CrewEvent.CREW_AGENT_ADDED, {"agent_id": agent.id, "agent_name": agent.name})

    def remove_agent(self, agent_id: str) -> None:
        """Remove an agent, its breaker and its queue."""
        crew_agent = self.crew.agents.pop(agent_id, None)
        self._breakers.pop(agent_id, None)
        self.queues.remove_queue(agent_id)
        self._update_routing_rules()

        if crew_agent:
            self.events.emit(
                CrewEvent.CREW_AGENT_REMOVED,
                {"agent_id": agent_id, "agent_name": crew_agent.agent.name},
            )

    def agent(self, agent_id: str) -> CrewAgent | None:
        return self.crew.agents.get(agent_id)

    def require_agent(self, agent_id: str) -> CrewAgent:
        """Get an agent or raise UnknownAgentError."""
        crew_agent = self.crew.agents.get(agent_id)
        if crew_agent is None:
            raise UnknownAgentError(f"Unknown agent: {agent_id}")
        return crew_agent

    def agents_by_status(self) -> list[CrewAgent]:
        """All agents, working first and offline last."""
        return sorted(self.crew.agents.values(), key=lambda a: STATUS_ORDER[a.status])

    # --- Read-only views ---

    @property
    def message_log(self) -> list[CrewMessage]:
        return list(self.crew.message_log)

    def agent_messages(self, agent_id: str) -> list[CrewMessage]:
        """Messages sent by or to an agent."""
        return [m for m in self.crew.message_log if agent_id in (m.from_agent, m.to)]

    def agent_context(self, agent_id: str) -> str:
        """Conversation history plus crew-wide knowledge for an agent."""
        return self.memory.agent_context(agent_id)

    def circuit_state(self, agent_id: str) -> CircuitDiagnostics | None:
        breaker = self._breakers.get(agent_id)
        return breaker.diagnostics() if breaker else None

    def stats(self) -> dict[str, Any]:
        """Crew statistics including review quality and error summary."""
        agents = list(self.crew.agents.values())
        return {
            "total_agents": len(agents),
            "active_agents": sum(
                1 for a in agents if a.status in (AgentStatus.WORKING, AgentStatus.REVIEWING)
            ),
            "total_messages": len(self.crew.message_log),
            "total_tasks": sum(a.completed_tasks for a in agents),
            "agent_stats": [
                {
                    "id": a.agent.id,
                    "name": a.agent.name,
                    "completed": a.completed_tasks,
                    "status": a.status,
                }
                for a in agents
            ],
            "crew_quality": self.reviews.crew_quality(),
            "error_summary": self.errors.summary(),
            "queue_depth": self.queues.total_pending,
        }

    # --- Control ---

    def pause(self) -> None:
        """Stop pulling queued work. In-flight messages still finish."""
        self.crew.status = CrewStatus.PAUSED
        self.queues.pause_all()
        self.events.emit(CrewEvent.CREW_PAUSED, {"crew_id": self.crew.id})

    def resume(self) -> None:
        self.crew.status = CrewStatus.ACTIVE
        self.queues.resume_all()
        self.events.emit(CrewEvent.CREW_RESUMED, {"crew_id": self.crew.id})

    def save_memory(self) -> int:
        """Persist important memories. Returns the number of entries saved."""
        saved = self.memory.save()
        self.events.emit(CrewEvent.MEMORY_SAVED, {"crew_id": self.crew.id, "entries": saved})
        return saved

    async def drain(self) -> None:
        """Wait for every queue to finish its pending work."""
        await self.queues.drain_all()

    # --- Internals ---

    def _assign(self, decision: RouteDecision, message: CrewMessage, content: str) -> None:
        self._enqueue(message)
        target = self.crew.agents.get(decision.agent_id)
        if target:
            target.current_task = content

        logger.info(
            f"Routed message to {decision.agent_id} "
            f"(confidence {decision.confidence:.2f}): {decision.reason}"
        )
        self.events.emit(
            CrewEvent.MESSAGE_ROUTED,
            {
                "message": message,
                "target_agent_id": decision.agent_id,
                "confidence": decision.confidence,
                "reason": decision.reason,
            },
        )

    def _enqueue(self, message: CrewMessage) -> None:
        self.crew.message_log.append(message)

        if self.queues.enqueue(message):
            self.events.emit(CrewEvent.QUEUE_ENQUEUED, {"agent_id": message.to, "message_id": message.id})
        else:
            self.events.emit(CrewEvent.QUEUE_OVERFLOW, {"agent_id": message.to, "rejected": message})
            self.errors.log(
                create_crew_error(
                    ErrorCategory.QUEUE,
                    ErrorSeverity.WARNING,
                    "Queue overflow",
                    agent_id=message.to,
                    context={"message_id": message.id},
                    clock=self._clock,
                )
            )

        self.events.emit(CrewEvent.MESSAGE_SENT, {"message": message})

    def _set_status(self, agent_id: str, status: AgentStatus) -> None:
        crew_agent = self.crew.agents.get(agent_id)
        if crew_agent is None:
            return
        previous = crew_agent.status
        crew_agent.status = status
        crew_agent.last_active = self._clock.now()
        self.events.emit(
            CrewEvent.AGENT_STATUS,
            {"agent_id": agent_id, "previous_status": previous, "new_status": status},
        )

    def _update_routing_rules(self) -> None:
        self.crew.routing_rules = build_routing_rules(
            (a.agent for a in self.crew.agents.values()),
            self.crew.coordinator_id,
        )

    def _add_breaker(self, agent_id: str) -> None:
        breaker = AgentCircuitBreaker(agent_id, self.policy.circuit, clock=self._clock)
        breaker.on_state_change(self._on_circuit_change)
        self._breakers[agent_id] = breaker

    def _on_circuit_change(self, agent_id: str, state: CircuitState) -> None:
        if state == CircuitState.OPEN:
            self.events.emit(
                CrewEvent.CIRCUIT_OPENED,
                {"agent_id": agent_id, "failures": self.policy.circuit.failure_threshold},
            )
            self._set_status(agent_id, AgentStatus.BLOCKED)
        elif state == CircuitState.CLOSED:
            self.events.emit(CrewEvent.CIRCUIT_CLOSED, {"agent_id": agent_id})
            self._set_status(agent_id, AgentStatus.IDLE)
        else:
            self.events.emit(CrewEvent.CIRCUIT_HALF_OPEN, {"agent_id": agent_id})

    async def _acknowledge(self, message: CrewMessage) -> None:
        self.events.emit(CrewEvent.MESSAGE_RECEIVED, {"message": message, "agent_id": message.to})

    def _on_queue_retry(
        self, agent_id: str, message: CrewMessage, error: BaseException, attempt: int
    ) -> None:
        category = ErrorCategory.TIMEOUT if _is_timeout(error) else ErrorCategory.EXECUTION
        self.errors.log(
            create_crew_error(
                category,
                ErrorSeverity.WARNING,
                f"Attempt {attempt} failed for message {message.id}: {error!r}",
                agent_id=agent_id,
                context={"message_id": message.id, "attempt": attempt},
                recovery_action="retry",
                clock=self._clock,
            )
        )

    def _on_queue_error(self, agent_id: str, message: CrewMessage, error: BaseException) -> None:
        category = ErrorCategory.TIMEOUT if _is_timeout(error) else ErrorCategory.QUEUE
        crew_error = create_crew_error(
            category,
            ErrorSeverity.ERROR,
            f"Retries exhausted for message {message.id}: {error!r}",
            agent_id=agent_id,
            context={"message_id": message.id},
            recoverable=False,
            clock=self._clock,
        )
        self.errors.log(crew_error)
        self.events.emit(CrewEvent.AGENT_ERROR, {"agent_id": agent_id, "error": crew_error})

        breaker = self._breakers.get(agent_id)
        if breaker:
            breaker.record_failure()

    def _on_queue_drained(self, agent_id: str) -> None:
        self.events.emit(CrewEvent.QUEUE_DRAINED, {"agent_id": agent_id})


def _is_timeout(error: BaseException) -> bool:
    return isinstance(error, (asyncio.TimeoutError, TimeoutError))
