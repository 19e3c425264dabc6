"""Pytest configuration and fixtures for crewsim tests."""

import pytest
from pathlib import Path

from crewsim.clock import ManualClock, VirtualScheduler
from crewsim.protocol import create_message
from crewsim.roles import PhraseBank
from crewsim.roster import build_agents
from crewsim.schemas import Agent, AgentRole, AgentRouting, MessagePriority, MessageType


@pytest.fixture(autouse=True)
def isolated_db_path(tmp_path: Path, monkeypatch) -> Path:
    """Keep persisted memory out of the home directory."""
    db_path = tmp_path / "env-memory.db"
    monkeypatch.setenv("CREWSIM_DB_PATH", str(db_path))
    return db_path


@pytest.fixture
def clock() -> ManualClock:
    return ManualClock()


@pytest.fixture
def scheduler(clock: ManualClock) -> VirtualScheduler:
    return VirtualScheduler(clock)


@pytest.fixture
def phrases() -> PhraseBank:
    """Phrase bank that always picks the first option and the shortest duration."""
    return PhraseBank.deterministic()


@pytest.fixture
def startup_agents() -> list[Agent]:
    """Coordinator, engineer, researcher and creative."""
    return build_agents("startup-crew")


@pytest.fixture
def db_path(tmp_path: Path) -> Path:
    """Create a temporary path for the memory database."""
    return tmp_path / "memory.db"


@pytest.fixture
def make_agent():
    """Factory for agent records."""

    def _make(
        agent_id: str,
        role: AgentRole = AgentRole.ENGINEER,
        keywords: list[str] | None = None,
        priority: int = 5,
        enabled: bool = True,
    ) -> Agent:
        return Agent(
            id=agent_id,
            name=agent_id.title(),
            emoji="*",
            role=role,
            enabled=enabled,
            routing=AgentRouting(priority=priority, keywords=keywords or []),
        )

    return _make


@pytest.fixture
def make_message(clock: ManualClock):
    """Factory for crew messages stamped with the manual clock."""

    def _make(
        content: str,
        priority: MessagePriority = MessagePriority.NORMAL,
        to: str = "eng",
        from_agent: str = "user",
        type: MessageType = MessageType.TASK,
    ):
        return create_message(from_agent, to, type, content, priority=priority, clock=clock)

    return _make
