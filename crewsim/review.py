"""Heuristic quality review of agent output and per-agent performance tracking."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Any

from crewsim.clock import Clock, SystemClock
from crewsim.policies import ReviewConfig
from crewsim.protocol import generate_id
from crewsim.schemas import (
    CrewMessage,
    IssueSeverity,
    IssueType,
    ReviewIssue,
    ReviewResult,
    ReviewVerdict,
)

logger = logging.getLogger(__name__)

REVIEWER_ID = "system"
RECENT_SCORE_WINDOW = 10
ESCALATION_WINDOW = 3

STRUCTURED_ROLES = {"engineer", "analyst", "researcher"}
STRUCTURE_PATTERN = re.compile(r"\*\*|#{1,3}\s|\d\.\s|- ")

TONE_PATTERNS = [
    (re.compile(r"I cannot|I'm unable|I don't have", re.IGNORECASE),
     "Agent refusing to help without clear reason"),
    (re.compile(r"as an ai|as a language model", re.IGNORECASE),
     "Breaking character - referring to self as AI"),
]

SAFETY_PATTERNS = [
    re.compile(r"password|secret|api.?key|token", re.IGNORECASE),
    re.compile(r"sudo\s+rm|rm\s+-rf|drop\s+table", re.IGNORECASE),
]


def _relevance_ratio(original_request: str, content: str) -> float:
    request_words = [w for w in original_request.lower().split() if len(w) > 3]
    if not request_words:
        return 0.5
    response_words = set(content.lower().split())
    return sum(1 for w in request_words if w in response_words) / len(request_words)


def _find_issues(content: str, original_request: str, agent_role: str) -> tuple[list[ReviewIssue], float]:
    issues: list[ReviewIssue] = []
    penalty = 0.0

    def add(type: IssueType, severity: IssueSeverity, description: str, cost: float) -> None:
        nonlocal penalty
        issues.append(ReviewIssue(type=type, severity=severity, description=description))
        penalty += cost

    # Completeness
    if len(content) < 20:
        add(IssueType.COMPLETENESS, IssueSeverity.HIGH, "Response is too brief to be useful", 0.3)
    elif len(content) < 50:
        add(IssueType.COMPLETENESS, IssueSeverity.MEDIUM, "Response could be more detailed", 0.15)

    # Relevance
    ratio = _relevance_ratio(original_request, content)
    if ratio < 0.1:
        add(
            IssueType.RELEVANCE,
            IssueSeverity.HIGH,
            "Response does not appear to address the original request",
            0.3,
        )
    elif ratio < 0.2:
        add(IssueType.RELEVANCE, IssueSeverity.MEDIUM, "Response may not fully address the request", 0.1)

    # Format
    if agent_role in STRUCTURED_ROLES and len(content) > 100 and not STRUCTURE_PATTERN.search(content):
        add(IssueType.FORMAT, IssueSeverity.LOW, "Technical response lacks structured formatting", 0.05)

    # Tone
    for pattern, description in TONE_PATTERNS:
        if pattern.search(content):
            add(IssueType.TONE, IssueSeverity.MEDIUM, description, 0.15)

    # Safety: only flag sensitive content the request did not ask about
    for pattern in SAFETY_PATTERNS:
        if pattern.search(content) and not pattern.search(original_request):
            add(
                IssueType.SAFETY,
                IssueSeverity.HIGH,
                "Response may contain sensitive information not requested",
                0.2,
            )

    return issues, penalty


def _feedback(verdict: ReviewVerdict, issues: list[ReviewIssue]) -> str:
    if verdict == ReviewVerdict.APPROVED:
        return "Output meets quality standards."
    if not issues:
        return "Output quality is below threshold."

    high = [i.description for i in issues if i.severity == IssueSeverity.HIGH]
    if high:
        return f"Critical issues: {'; '.join(high)}"
    medium = [i.description for i in issues if i.severity == IssueSeverity.MEDIUM]
    return f"Improvement needed: {'; '.join(medium)}"


def review_output(
    message: CrewMessage,
    original_request: str,
    agent_role: str,
    config: ReviewConfig | None = None,
    clock: Clock | None = None,
) -> ReviewResult:
    """Score a result message on static string features.

    Starts at 1.0 and deducts for brevity, low overlap with the request,
    missing structure from technical roles, refusal or out-of-character
    phrasing, and unrequested sensitive content. Score, verdict and issues
    depend only on the inputs.

    Args:
        message: Result message to review
        original_request: The request the message answers
        agent_role: Role of the author, e.g. ``"engineer"``
        config: Verdict thresholds
        clock: Clock for the review id and timestamp

    Returns:
        ReviewResult with verdict approved, needs_revision or rejected
    """
    config = config or ReviewConfig()
    clock = clock or SystemClock()

    issues, penalty = _find_issues(message.content, original_request, agent_role)
    score = max(0.0, min(1.0, 1.0 - penalty))

    if score >= config.approval_threshold:
        verdict = ReviewVerdict.APPROVED
    elif score >= config.auto_review_threshold:
        verdict = ReviewVerdict.NEEDS_REVISION
    else:
        verdict = ReviewVerdict.REJECTED

    return ReviewResult(
        id=generate_id("review", clock),
        reviewer_id=REVIEWER_ID,
        agent_id=message.from_agent,
        message_id=message.id,
        verdict=verdict,
        score=score,
        feedback=_feedback(verdict, issues),
        issues=issues,
        timestamp=clock.now(),
    )


@dataclass
class AgentPerformance:
    """Rolling review record for one agent."""

    agent_id: str
    total_reviews: int = 0
    approved_count: int = 0
    revision_count: int = 0
    rejected_count: int = 0
    average_score: float = 0.0
    recent_scores: list[float] = field(default_factory=list)
    last_review_at: float = 0.0


class ReviewTracker:
    """Accumulates reviews into per-agent performance."""

    def __init__(self, config: ReviewConfig | None = None):
        self.config = config or ReviewConfig()
        self._performance: dict[str, AgentPerformance] = {}
        self._history: list[ReviewResult] = []

    def record(self, review: ReviewResult) -> AgentPerformance:
        """Record a review result and return the updated performance."""
        if self.config.track_history:
            self._history.append(review)

        perf = self._performance.get(review.agent_id)
        if perf is None:
            perf = AgentPerformance(agent_id=review.agent_id)
            self._performance[review.agent_id] = perf

        perf.total_reviews += 1
        perf.last_review_at = review.timestamp

        if review.verdict == ReviewVerdict.APPROVED:
            perf.approved_count += 1
        elif review.verdict == ReviewVerdict.NEEDS_REVISION:
            perf.revision_count += 1
        else:
            perf.rejected_count += 1

        perf.recent_scores.append(review.score)
        if len(perf.recent_scores) > RECENT_SCORE_WINDOW:
            perf.recent_scores.pop(0)
        perf.average_score = sum(perf.recent_scores) / len(perf.recent_scores)

        logger.debug(
            f"Review for {review.agent_id}: {review.verdict.value} ({review.score:.2f}), "
            f"average {perf.average_score:.2f}"
        )
        return perf

    def performance(self, agent_id: str) -> AgentPerformance | None:
        return self._performance.get(agent_id)

    def leaderboard(self) -> list[AgentPerformance]:
        """All agent performances, best average first."""
        return sorted(self._performance.values(), key=lambda p: p.average_score, reverse=True)

    def should_escalate(self, agent_id: str) -> bool:
        """True when the last three scores are all below the auto-review threshold."""
        perf = self._performance.get(agent_id)
        if perf is None or len(perf.recent_scores) < ESCALATION_WINDOW:
            return False
        recent = perf.recent_scores[-ESCALATION_WINDOW:]
        return all(score < self.config.auto_review_threshold for score in recent)

    def history(self, agent_id: str) -> list[ReviewResult]:
        return [r for r in self._history if r.agent_id == agent_id]

    def recent(self, count: int = 10) -> list[ReviewResult]:
        if count <= 0:
            return []
        return self._history[-count:]

    def crew_quality(self) -> dict[str, Any]:
        """Crew-wide averages, approval rate and top/bottom performers."""
        perfs = list(self._performance.values())
        if not perfs:
            return {
                "average_score": 0.0,
                "total_reviews": 0,
                "approval_rate": 0.0,
                "top_performer": None,
                "bottom_performer": None,
            }

        total_reviews = sum(p.total_reviews for p in perfs)
        total_approved = sum(p.approved_count for p in perfs)
        ranked = self.leaderboard()
        return {
            "average_score": sum(p.average_score for p in perfs) / len(perfs),
            "total_reviews": total_reviews,
            "approval_rate": total_approved / total_reviews if total_reviews else 0.0,
            "top_performer": ranked[0].agent_id,
            "bottom_performer": ranked[-1].agent_id,
        }
