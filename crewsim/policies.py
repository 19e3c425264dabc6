"""Policy definitions for crew configuration.

Thresholds here are demo defaults rather than tuned business rules; pick a
different policy or build a ``CrewPolicy`` by hand to change them.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path

from crewsim.schemas import PolicyId

DEFAULT_DB_PATH = Path.home() / ".crewsim" / "memory.db"
DEFAULT_STORAGE_KEY = "crewsim-memory"


@dataclass
class QueueConfig:
    """Per-agent message queue settings."""

    max_concurrent: int = 1
    max_retries: int = 3
    retry_delay_seconds: float = 1.0
    processing_timeout_seconds: float = 30.0
    max_queue_size: int = 100

    def __post_init__(self) -> None:
        if self.max_concurrent < 1:
            raise ValueError("max_concurrent must be at least 1")
        if self.max_retries < 0:
            raise ValueError("max_retries cannot be negative")
        if self.max_queue_size < 1:
            raise ValueError("max_queue_size must be at least 1")


@dataclass
class MemoryConfig:
    """Agent memory capacities and persistence settings."""

    max_short_term_turns: int = 20
    max_working_memory_entries: int = 50
    max_long_term_entries: int = 200
    importance_threshold: float = 0.3
    storage_key: str = DEFAULT_STORAGE_KEY


@dataclass
class ReviewConfig:
    """Quality review thresholds."""

    auto_review_threshold: float = 0.5
    approval_threshold: float = 0.8
    track_history: bool = True

    def __post_init__(self) -> None:
        if not 0.0 <= self.auto_review_threshold <= self.approval_threshold <= 1.0:
            raise ValueError("Review thresholds must satisfy 0 <= auto_review <= approval <= 1")


@dataclass
class CircuitBreakerConfig:
    """Per-agent circuit breaker settings."""

    failure_threshold: int = 3
    reset_timeout_seconds: float = 30.0
    success_threshold: int = 2


@dataclass
class RetryConfig:
    """Generic retry with exponential backoff."""

    max_retries: int = 3
    base_delay_seconds: float = 0.5
    max_delay_seconds: float = 10.0
    backoff_multiplier: float = 2.0


@dataclass
class CrewPolicy:
    """Bundle of subsystem settings for one crew session."""

    policy_id: PolicyId
    description: str
    queue: QueueConfig = field(default_factory=QueueConfig)
    memory: MemoryConfig = field(default_factory=MemoryConfig)
    review: ReviewConfig = field(default_factory=ReviewConfig)
    circuit: CircuitBreakerConfig = field(default_factory=CircuitBreakerConfig)
    retry: RetryConfig = field(default_factory=RetryConfig)
    error_log_size: int = 200
    event_log_size: int = 500


# Policy definitions
POLICIES: dict[PolicyId, CrewPolicy] = {
    PolicyId.DEFAULT: CrewPolicy(
        policy_id=PolicyId.DEFAULT,
        description="Demo defaults: one message at a time, two queue retries",
        queue=QueueConfig(max_concurrent=1, max_retries=2),
    ),
    PolicyId.STRICT: CrewPolicy(
        policy_id=PolicyId.STRICT,
        description="Trip breakers early and demand higher review scores",
        queue=QueueConfig(max_concurrent=1, max_retries=1, processing_timeout_seconds=10.0),
        review=ReviewConfig(auto_review_threshold=0.6, approval_threshold=0.9),
        circuit=CircuitBreakerConfig(
            failure_threshold=2,
            reset_timeout_seconds=60.0,
            success_threshold=3,
        ),
    ),
    PolicyId.RELAXED: CrewPolicy(
        policy_id=PolicyId.RELAXED,
        description="Tolerant breakers and parallel queue workers",
        queue=QueueConfig(max_concurrent=4, max_retries=3),
        review=ReviewConfig(auto_review_threshold=0.4, approval_threshold=0.7),
        circuit=CircuitBreakerConfig(
            failure_threshold=5,
            reset_timeout_seconds=15.0,
            success_threshold=1,
        ),
    ),
}


def get_policy(policy_id: PolicyId) -> CrewPolicy:
    """Get policy by ID."""
    return POLICIES[policy_id]


def db_path_from_environment() -> Path:
    """Memory database path, overridable with CREWSIM_DB_PATH."""
    override = os.environ.get("CREWSIM_DB_PATH")
    return Path(override).expanduser() if override else DEFAULT_DB_PATH


def log_level_from_environment() -> str:
    """Log level name, overridable with CREWSIM_LOG_LEVEL."""
    return os.environ.get("CREWSIM_LOG_LEVEL", "INFO").upper()
