"""Simulated execution pipeline for a routed user message.

Builds a linear, time-stamped plan of agent steps (thinking, delegating,
working, reviewing, complete) from the role responders, then plays it back
through a scheduler. Durations only pace playback; nothing runs concurrently.
"""

from __future__ import annotations

import logging
from typing import Callable, Mapping

from crewsim.clock import Clock, Scheduler, ScheduledHandle
from crewsim.protocol import generate_id
from crewsim.roles import PhraseBank, RoleHint, get_responder
from crewsim.schemas import Agent, AgentRole, Delegation, ExecutionPlan, ExecutionStep, StepType

logger = logging.getLogger(__name__)

NO_AGENT_RESPONSE = "No agent available to handle this request."
ROUTING_EXCERPT_CHARS = 60

# Step durations in seconds: (low, high)
COORDINATOR_THINK = (0.6, 1.0)
COORDINATOR_HANDOFF = 0.3
PRIMARY_THINK = (0.8, 1.4)
DELEGATE_HANDOFF = 0.4
DELEGATE_THINK = (0.8, 1.6)
DELEGATE_WORK = (1.2, 2.2)
INCORPORATE = 0.6
COLLABORATOR_THINK = (0.6, 1.0)
COLLABORATOR_WORK = (1.0, 1.8)
PRIMARY_WORK = (1.2, 2.4)
COORDINATOR_REVIEW = (0.5, 1.0)

StepCallback = Callable[[ExecutionStep, int], None]
CompleteCallback = Callable[[ExecutionPlan], None]


class _PlanBuilder:
    """Accumulates steps at increasing offsets."""

    def __init__(self) -> None:
        self.steps: list[ExecutionStep] = []
        self.elapsed = 0.0

    def add(
        self,
        agent: Agent,
        type: StepType,
        content: str,
        duration: float,
        parallel: bool = False,
    ) -> None:
        self.steps.append(
            ExecutionStep(
                agent_id=agent.id,
                agent_name=agent.name,
                agent_emoji=agent.emoji,
                type=type,
                content=content,
                duration=duration,
                timestamp=self.elapsed,
                parallel=parallel,
            )
        )
        self.elapsed += duration


def _find_by_role(
    agents: Mapping[str, Agent],
    role: AgentRole,
    exclude: set[str],
    enabled_only: bool = True,
) -> Agent | None:
    for agent in agents.values():
        if agent.role != role or agent.id in exclude:
            continue
        if enabled_only and not agent.enabled:
            continue
        return agent
    return None


def build_execution_plan(
    text: str,
    primary_agent_id: str,
    agents: Mapping[str, Agent],
    phrases: PhraseBank | None = None,
    clock: Clock | None = None,
) -> ExecutionPlan:
    """Build the step-by-step plan for one user message.

    Order: coordinator preamble (skipped when the primary is the
    coordinator), primary thinking, at most one delegation by role,
    collaborators (sequential steps flagged ``parallel``), primary working,
    coordinator review and a final complete step.

    Args:
        text: User message
        primary_agent_id: Agent chosen by routing
        agents: Crew agents keyed by id
        phrases: Template and duration source
        clock: Clock for the plan id

    Returns:
        ExecutionPlan; empty with a "No agent available" response when the
        primary agent is unknown
    """
    phrases = phrases or PhraseBank()
    plan_id = generate_id("plan", clock)

    primary = agents.get(primary_agent_id)
    if primary is None:
        logger.warning(f"No agent {primary_agent_id} to build a plan for")
        return ExecutionPlan(
            id=plan_id,
            user_message=text,
            primary_agent=primary_agent_id,
            final_response=NO_AGENT_RESPONSE,
        )

    result = get_responder(primary.role).respond(text, phrases)
    builder = _PlanBuilder()
    delegations: list[Delegation] = []
    collaborators: list[str] = []

    coordinator = _find_by_role(agents, AgentRole.COORDINATOR, exclude=set(), enabled_only=False)
    has_preamble = coordinator is not None and coordinator.id != primary.id

    if has_preamble:
        builder.add(
            coordinator,
            StepType.THINKING,
            f'Routing to {primary.name}: "{text[:ROUTING_EXCERPT_CHARS]}..."',
            phrases.duration(*COORDINATOR_THINK),
        )
        builder.add(
            coordinator,
            StepType.DELEGATING,
            f"Handing off to {primary.emoji} {primary.name}",
            COORDINATOR_HANDOFF,
        )

    builder.add(primary, StepType.THINKING, result.thinking, phrases.duration(*PRIMARY_THINK))

    involved = {primary.id}
    if result.delegate:
        target = _find_by_role(agents, result.delegate.to_role, exclude=involved)
        if target:
            _add_delegation(builder, primary, target, result.delegate, text, phrases)
            delegations.append(
                Delegation(from_agent=primary.id, to_agent=target.id, reason=result.delegate.reason)
            )
            involved.add(target.id)
        else:
            logger.debug(f"No enabled {result.delegate.to_role.value} for {primary.id} to delegate to")

    for hint in result.collaborate:
        partner = _find_by_role(agents, hint.to_role, exclude=involved)
        if partner is None:
            continue
        partner_result = get_responder(partner.role).respond(text, phrases)
        builder.add(
            partner,
            StepType.THINKING,
            f"Collaborating with {primary.name}: {hint.reason}",
            phrases.duration(*COLLABORATOR_THINK),
            parallel=True,
        )
        builder.add(
            partner,
            StepType.WORKING,
            partner_result.response,
            phrases.duration(*COLLABORATOR_WORK),
            parallel=True,
        )
        collaborators.append(partner.id)
        involved.add(partner.id)

    builder.add(primary, StepType.WORKING, result.response, phrases.duration(*PRIMARY_WORK))

    if has_preamble:
        builder.add(
            coordinator,
            StepType.REVIEWING,
            f"Reviewing {primary.name}'s output... Looks good.",
            phrases.duration(*COORDINATOR_REVIEW),
        )

    builder.add(primary, StepType.COMPLETE, result.response, 0.0)

    return ExecutionPlan(
        id=plan_id,
        user_message=text,
        steps=builder.steps,
        primary_agent=primary.id,
        delegations=delegations,
        collaborators=collaborators,
        final_response=result.response,
        total_duration=builder.elapsed,
    )


def _add_delegation(
    builder: _PlanBuilder,
    primary: Agent,
    target: Agent,
    hint: RoleHint,
    text: str,
    phrases: PhraseBank,
) -> None:
    builder.add(
        primary,
        StepType.DELEGATING,
        f"Delegating to {target.emoji} {target.name}: {hint.reason}",
        DELEGATE_HANDOFF,
    )
    target_result = get_responder(target.role).respond(text, phrases)
    builder.add(target, StepType.THINKING, target_result.thinking, phrases.duration(*DELEGATE_THINK))
    builder.add(target, StepType.WORKING, target_result.response, phrases.duration(*DELEGATE_WORK))
    builder.add(
        primary,
        StepType.WORKING,
        f"Incorporating {target.name}'s work into my response...",
        INCORPORATE,
    )


def execute_plan(
    plan: ExecutionPlan,
    on_step: StepCallback,
    on_complete: CompleteCallback,
    scheduler: Scheduler,
) -> Callable[[], None]:
    """Schedule each step at its offset and return a cancel function.

    ``on_complete`` fires right after the last step. An empty plan completes
    immediately (on the scheduler). Cancelling stops every step that has not
    fired yet.
    """
    handles: list[ScheduledHandle] = []
    cancelled = False
    last_index = len(plan.steps) - 1

    def fire(index: int) -> None:
        if cancelled:
            return
        if index >= 0:
            on_step(plan.steps[index], index)
        if index == last_index:
            on_complete(plan)

    if not plan.steps:
        handles.append(scheduler.call_later(0.0, lambda: fire(-1)))

    for index, step in enumerate(plan.steps):
        handles.append(scheduler.call_later(step.timestamp, lambda i=index: fire(i)))

    def cancel() -> None:
        nonlocal cancelled
        cancelled = True
        for handle in handles:
            handle.cancel()
        logger.debug(f"Cancelled playback of {plan.id}")

    return cancel
