"""Pydantic schemas for crew messages, agents, reviews and execution plans."""

from __future__ import annotations

from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field


class MessageType(str, Enum):
    """Kinds of message exchanged inside a crew."""

    TASK = "task"
    RESULT = "result"
    DELEGATE = "delegate"
    STATUS = "status"
    REVIEW = "review"
    FEEDBACK = "feedback"
    ESCALATE = "escalate"


class MessagePriority(str, Enum):
    """Message priority levels."""

    LOW = "low"
    NORMAL = "normal"
    HIGH = "high"
    URGENT = "urgent"


# Higher weight is processed first.
PRIORITY_WEIGHTS: dict[MessagePriority, int] = {
    MessagePriority.URGENT: 4,
    MessagePriority.HIGH: 3,
    MessagePriority.NORMAL: 2,
    MessagePriority.LOW: 1,
}


class AgentStatus(str, Enum):
    """Live status of an agent within a crew session."""

    IDLE = "idle"
    WORKING = "working"
    DELEGATING = "delegating"
    REVIEWING = "reviewing"
    BLOCKED = "blocked"
    OFFLINE = "offline"


class AgentRole(str, Enum):
    """Closed set of agent roles."""

    COORDINATOR = "coordinator"
    ENGINEER = "engineer"
    RESEARCHER = "researcher"
    CREATIVE = "creative"
    SCHEDULER = "scheduler"
    WRITER = "writer"
    ANALYST = "analyst"
    SUPPORT = "support"


class MemoryType(str, Enum):
    """Kinds of working-memory entry."""

    CONVERSATION = "conversation"
    FACT = "fact"
    TASK_RESULT = "task_result"
    USER_PREFERENCE = "user_preference"
    DELEGATION = "delegation"


class ReviewVerdict(str, Enum):
    """Outcome of a quality review."""

    APPROVED = "approved"
    NEEDS_REVISION = "needs_revision"
    REJECTED = "rejected"
    ESCALATED = "escalated"


class IssueType(str, Enum):
    """Review issue categories."""

    COMPLETENESS = "completeness"
    ACCURACY = "accuracy"
    TONE = "tone"
    FORMAT = "format"
    RELEVANCE = "relevance"
    SAFETY = "safety"


class IssueSeverity(str, Enum):
    """Review issue severities."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class ErrorCategory(str, Enum):
    """Where in the crew a failure happened."""

    ROUTING = "routing"
    EXECUTION = "execution"
    DELEGATION = "delegation"
    TIMEOUT = "timeout"
    QUEUE = "queue"
    REVIEW = "review"
    MEMORY = "memory"
    UNKNOWN = "unknown"


class ErrorSeverity(str, Enum):
    """How bad a crew error is."""

    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class CircuitState(str, Enum):
    """Circuit breaker states."""

    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half-open"


class StepType(str, Enum):
    """Execution plan step kinds."""

    THINKING = "thinking"
    WORKING = "working"
    DELEGATING = "delegating"
    REVIEWING = "reviewing"
    COMPLETE = "complete"


class PolicyId(str, Enum):
    """Available crew configuration policies."""

    DEFAULT = "default"
    STRICT = "strict"
    RELAXED = "relaxed"


# --- Agents ---


class AgentModel(BaseModel):
    """Descriptive model settings. Never used to call a real model."""

    provider: Literal["anthropic", "openai", "google", "local"] = "anthropic"
    model: str = "claude-sonnet-4"
    temperature: float = Field(default=0.7, ge=0.0, le=2.0)
    max_tokens: int = Field(default=4096, gt=0)


class AgentRouting(BaseModel):
    """Routing hints used to build routing rules."""

    priority: int = 5
    keywords: list[str] = Field(default_factory=list)
    patterns: list[str] = Field(default_factory=list)
    channels: list[str] = Field(default_factory=list)
    always_review: bool = False


class Agent(BaseModel):
    """Static agent record supplied by the persona generator."""

    id: str = Field(..., min_length=1)
    name: str
    emoji: str = ""
    role: AgentRole
    enabled: bool = True
    description: str = ""
    soul: str = ""
    color: str = ""
    model: AgentModel = Field(default_factory=AgentModel)
    routing: AgentRouting = Field(default_factory=AgentRouting)


# --- Messages ---


class MessageContext(BaseModel):
    """Context carried alongside a crew message."""

    task_id: str | None = None
    original_request: str | None = None
    previous_results: list[str] = Field(default_factory=list)
    metadata: dict[str, Any] = Field(default_factory=dict)


class CrewMessage(BaseModel):
    """A message between agents. Immutable once created."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    id: str
    from_agent: str = Field(..., alias="from")
    to: str
    type: MessageType
    priority: MessagePriority = MessagePriority.NORMAL
    content: str
    context: MessageContext = Field(default_factory=MessageContext)
    parent_id: str | None = None
    timestamp: float


class HandoffRequest(BaseModel):
    """Request for one agent to hand work to another."""

    from_agent: str
    to_agent: str
    reason: str
    context: MessageContext = Field(default_factory=MessageContext)
    preserve_history: bool = True


class RouteDecision(BaseModel):
    """Where a user message ended up and why."""

    agent_id: str
    confidence: float = Field(..., ge=0.0, le=1.0)
    reason: str


# --- Memory ---


class ConversationTurn(BaseModel):
    """One turn of short-term conversation memory."""

    role: Literal["user", "agent", "system"]
    agent_id: str | None = None
    agent_name: str | None = None
    content: str
    timestamp: float


class MemoryEntry(BaseModel):
    """A working-memory record owned by one agent memory."""

    id: str
    agent_id: str
    type: MemoryType
    content: str
    summary: str | None = None
    tags: list[str] = Field(default_factory=list)
    importance: float = Field(default=0.5, ge=0.0, le=1.0)
    created_at: float
    accessed_at: float
    expires_at: float | None = None


# --- Review ---


class ReviewIssue(BaseModel):
    """A single problem found by the reviewer."""

    type: IssueType
    severity: IssueSeverity
    description: str


class ReviewResult(BaseModel):
    """Outcome of reviewing one result message."""

    model_config = ConfigDict(frozen=True)

    id: str
    reviewer_id: str
    agent_id: str
    message_id: str
    verdict: ReviewVerdict
    score: float = Field(..., ge=0.0, le=1.0)
    feedback: str
    issues: list[ReviewIssue] = Field(default_factory=list)
    timestamp: float


# --- Errors ---


class CrewError(BaseModel):
    """Structured error record kept in the crew error log."""

    id: str
    category: ErrorCategory
    severity: ErrorSeverity
    message: str
    agent_id: str | None = None
    task_id: str | None = None
    timestamp: float
    context: dict[str, Any] | None = None
    recoverable: bool = True
    recovery_action: str | None = None


# --- Engine results ---


class TaskResult(BaseModel):
    """Result of an agent submitting work."""

    task_id: str
    agent_id: str
    content: str
    success: bool
    handed_off: bool = False
    next_agent: str | None = None
    review: ReviewResult | None = None


# --- Execution plans ---


class ExecutionStep(BaseModel):
    """One timed step of a simulated pipeline."""

    agent_id: str
    agent_name: str
    agent_emoji: str = ""
    type: StepType
    content: str
    duration: float = Field(..., ge=0.0, description="Seconds until the next step")
    timestamp: float = Field(..., ge=0.0, description="Offset from plan start, seconds")
    parallel: bool = False


class Delegation(BaseModel):
    """A hand-off recorded in an execution plan."""

    from_agent: str
    to_agent: str
    reason: str


class ExecutionPlan(BaseModel):
    """Linear, time-stamped pipeline for one user message."""

    id: str
    user_message: str
    steps: list[ExecutionStep] = Field(default_factory=list)
    primary_agent: str
    delegations: list[Delegation] = Field(default_factory=list)
    collaborators: list[str] = Field(default_factory=list)
    final_response: str
    total_duration: float = 0.0


class ErrorResponse(BaseModel):
    """Error response for failed HTTP requests."""

    detail: str
    error_code: str | None = None


# --- HTTP ---


class SendMessageRequest(BaseModel):
    """Request body for sending a user message to the crew."""

    content: str = Field(..., min_length=1, description="User message")


class SendMessageResponse(BaseModel):
    """Routing decision, played-back plan and reviewed result."""

    decision: RouteDecision
    plan: ExecutionPlan
    result: TaskResult | None = None


class AgentContextResponse(BaseModel):
    """Prompt context built from an agent's memory."""

    agent_id: str
    context: str


class HealthResponse(BaseModel):
    """Crew health indicators."""

    status: Literal["active", "paused"]
    average_quality: float
    approval_rate: float
    error_rate: float
    total_errors: int
    queue_depth: int
    top_performer: str | None = None
