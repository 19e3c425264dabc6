"""Crew communication protocol: message creation and keyword routing."""

from __future__ import annotations

import logging
import re
import secrets
from dataclasses import dataclass, field
from typing import Iterable

from crewsim.clock import Clock, SystemClock
from crewsim.schemas import (
    Agent,
    CrewMessage,
    HandoffRequest,
    MessageContext,
    MessagePriority,
    MessageType,
    RouteDecision,
)

logger = logging.getLogger(__name__)

_system_clock = SystemClock()

# Score weights
KEYWORD_SCORE = 10
PATTERN_SCORE = 20
PRIORITY_BASE = 10
CONFIDENCE_SCALE = 50


@dataclass
class RoutingRule:
    """Derived routing rule for one non-coordinator agent."""

    agent_id: str
    keywords: list[str] = field(default_factory=list)
    patterns: list[re.Pattern[str]] = field(default_factory=list)
    priority: int = 5
    capabilities: list[str] = field(default_factory=list)


def generate_id(prefix: str, clock: Clock | None = None) -> str:
    """Generate an id like ``msg_1700000000000_a1b2c3``."""
    now_ms = int((clock or _system_clock).now() * 1000)
    return f"{prefix}_{now_ms}_{secrets.token_hex(3)}"


def route_message(content: str, rules: list[RoutingRule]) -> RouteDecision | None:
    """Route a message to the best matching agent.

    Each rule scores 10 per keyword found in the lowercased content, 20 per
    pattern that matches, plus ``10 - priority``. The highest positive score
    wins; on a tie the first rule seen is kept. A rule with no keywords or
    patterns can still win on its priority term alone when nothing else
    scores.

    Args:
        content: Message text
        rules: Routing rules to score

    Returns:
        RouteDecision, or None when no rule scores above zero
    """
    content_lower = content.lower()
    best: tuple[str, int, str] | None = None

    for rule in rules:
        score = 0
        matched_keywords = []

        for keyword in rule.keywords:
            if keyword.lower() in content_lower:
                score += KEYWORD_SCORE
                matched_keywords.append(keyword)

        for pattern in rule.patterns:
            if pattern.search(content):
                score += PATTERN_SCORE

        score += PRIORITY_BASE - rule.priority

        if score > 0 and (best is None or score > best[1]):
            reason = (
                f"Matched keywords: {', '.join(matched_keywords)}"
                if matched_keywords
                else "Matched routing pattern"
            )
            best = (rule.agent_id, score, reason)

    if best is None:
        return None

    agent_id, score, reason = best
    return RouteDecision(
        agent_id=agent_id,
        confidence=min(score / CONFIDENCE_SCALE, 1.0),
        reason=reason,
    )


def compile_patterns(agent_id: str, patterns: Iterable[str]) -> list[re.Pattern[str]]:
    """Compile routing patterns case-insensitively, skipping invalid ones."""
    compiled = []
    for pattern in patterns:
        try:
            compiled.append(re.compile(pattern, re.IGNORECASE))
        except re.error as e:
            logger.warning(f"Skipping invalid routing pattern {pattern!r} for {agent_id}: {e}")
    return compiled


def build_routing_rules(agents: Iterable[Agent], coordinator_id: str) -> list[RoutingRule]:
    """Derive routing rules from agents. The coordinator is never a target."""
    return [
        RoutingRule(
            agent_id=agent.id,
            keywords=list(agent.routing.keywords),
            patterns=compile_patterns(agent.id, agent.routing.patterns),
            priority=agent.routing.priority,
        )
        for agent in agents
        if agent.id != coordinator_id and agent.enabled
    ]


def create_message(
    from_agent: str,
    to: str,
    type: MessageType,
    content: str,
    context: MessageContext | None = None,
    parent_id: str | None = None,
    priority: MessagePriority = MessagePriority.NORMAL,
    clock: Clock | None = None,
) -> CrewMessage:
    """Create a standardized crew message."""
    clock = clock or _system_clock
    return CrewMessage(
        id=generate_id("msg", clock),
        from_agent=from_agent,
        to=to,
        type=type,
        priority=priority,
        content=content,
        context=context.model_copy(deep=True) if context else MessageContext(),
        parent_id=parent_id,
        timestamp=clock.now(),
    )


def create_handoff(
    from_agent: str,
    to_agent: str,
    reason: str,
    context: MessageContext | None = None,
) -> HandoffRequest:
    """Create a handoff request for agent-to-agent delegation."""
    return HandoffRequest(
        from_agent=from_agent,
        to_agent=to_agent,
        reason=reason,
        context=context or MessageContext(),
        preserve_history=True,
    )
