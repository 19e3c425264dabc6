"""Tests for agent and crew memory."""

import json
from unittest.mock import MagicMock

from crewsim.memory import SHARED_KEY, AgentMemory, CrewMemory
from crewsim.policies import MemoryConfig
from crewsim.schemas import ConversationTurn, MemoryType, MessageType
from crewsim.store import InMemoryStore


def _turn(content: str, clock, role: str = "user") -> ConversationTurn:
    return ConversationTurn(role=role, content=content, timestamp=clock.now())


class TestShortTermMemory:
    """Test conversation turn retention."""

    def test_oldest_turns_evicted(self, clock):
        """Only the last max_short_term_turns are kept."""
        memory = AgentMemory("eng", MemoryConfig(max_short_term_turns=3), clock)
        for i in range(5):
            memory.add_turn(_turn(f"turn {i}", clock))

        assert [t.content for t in memory.conversation()] == ["turn 2", "turn 3", "turn 4"]

    def test_conversation_limit(self, clock):
        """A smaller max_turns returns the newest turns."""
        memory = AgentMemory("eng", clock=clock)
        for i in range(4):
            memory.add_turn(_turn(f"turn {i}", clock))

        assert [t.content for t in memory.conversation(2)] == ["turn 2", "turn 3"]
        assert memory.conversation(0) == []


class TestWorkingMemory:
    """Test remember, eviction and recall."""

    def test_least_important_entry_evicted(self, clock):
        """Exceeding capacity drops the lowest-importance entry."""
        memory = AgentMemory("eng", MemoryConfig(max_working_memory_entries=3), clock)
        for importance in (0.5, 0.1, 0.9, 0.7):
            memory.remember(MemoryType.FACT, f"fact {importance}", importance=importance)

        assert sorted(e.importance for e in memory.entries()) == [0.5, 0.7, 0.9]

    def test_recall_ranks_matches_first(self, clock):
        """A content match outranks a non-matching entry."""
        memory = AgentMemory("eng", clock=clock)
        memory.remember(MemoryType.FACT, "the user prefers dark mode", importance=0.5)
        memory.remember(MemoryType.FACT, "deploys happen on fridays", importance=0.5)

        results = memory.recall("dark mode")

        assert results[0].content == "the user prefers dark mode"
        assert len(results) == 2

    def test_recall_tag_bonus(self, clock):
        """Requested tags raise an entry's score."""
        memory = AgentMemory("eng", clock=clock)
        memory.remember(MemoryType.FACT, "alpha", importance=0.5)
        memory.remember(MemoryType.FACT, "beta", tags=["infra"], importance=0.5)

        results = memory.recall("nothing", tags=["infra"])

        assert results[0].content == "beta"

    def test_recall_skips_expired(self, clock):
        """Expired entries are never returned."""
        memory = AgentMemory("eng", clock=clock)
        memory.remember(MemoryType.FACT, "stale", expires_at=clock.now() - 1)
        memory.remember(MemoryType.FACT, "fresh")

        assert [e.content for e in memory.recall("")] == ["fresh"]

    def test_recall_excludes_zero_score(self, clock):
        """Old, unimportant, non-matching entries score zero."""
        memory = AgentMemory("eng", clock=clock)
        memory.remember(MemoryType.FACT, "forgotten", importance=0.0)
        clock.advance(7200)

        assert memory.recall("unrelated") == []

    def test_recall_refreshes_access_time(self, clock):
        """Returned entries get accessed_at set to now."""
        memory = AgentMemory("eng", clock=clock)
        entry = memory.remember(MemoryType.FACT, "note")
        clock.advance(60)

        memory.recall("note")

        assert entry.accessed_at == clock.now()

    def test_build_context_sections(self, clock):
        """Context includes conversation, facts and task results."""
        memory = AgentMemory("eng", clock=clock)
        memory.add_turn(_turn("hello there", clock))
        memory.remember(MemoryType.FACT, "prefers python", importance=0.8)
        memory.remember(MemoryType.TASK_RESULT, "shipped v1", summary="Shipped v1")

        context = memory.build_context()

        assert "## Recent conversation" in context
        assert "User: hello there" in context
        assert "- prefers python" in context
        assert "- Shipped v1" in context

    def test_empty_context(self, clock):
        """A fresh memory has no context."""
        assert AgentMemory("eng", clock=clock).build_context() == ""


class TestCrewMemory:
    """Test crew-wide recording, snapshotting and persistence."""

    def test_record_delegation(self, clock, make_message):
        """Delegations reach both agents and the shared memory."""
        memory = CrewMemory("crew1", clock=clock)

        memory.record_message(
            make_message("research this", from_agent="eng", to="researcher", type=MessageType.DELEGATE)
        )

        assert len(memory.agent_memory("eng").conversation()) == 1
        assert len(memory.agent_memory("researcher").conversation()) == 1
        shared = memory.shared.entries()
        assert len(shared) == 1
        assert shared[0].type == MemoryType.DELEGATION
        assert shared[0].importance == 0.6
        assert "delegation" in shared[0].tags

    def test_record_result(self, clock, make_message):
        """Results become shared task-result entries."""
        memory = CrewMemory("crew1", clock=clock)

        memory.record_message(make_message("done", from_agent="eng", to="boss", type=MessageType.RESULT))

        entry = memory.shared.entries()[0]
        assert entry.type == MemoryType.TASK_RESULT
        assert entry.importance == 0.7

    def test_agent_context_includes_shared(self, clock, make_message):
        """Agent context carries a crew-wide section."""
        memory = CrewMemory("crew1", clock=clock)
        memory.record_message(make_message("report ready", from_agent="eng", to="boss", type=MessageType.RESULT))

        context = memory.agent_context("boss")

        assert "## Crew-wide context" in context
        assert "report ready" in context

    def test_search_all_groups_by_owner(self, clock):
        """Search results are keyed by agent and the shared key."""
        memory = CrewMemory("crew1", clock=clock)
        memory.agent_memory("eng").remember(MemoryType.FACT, "api schema")
        memory.shared.remember(MemoryType.FACT, "api owners")

        results = memory.search_all("api")

        assert set(results) == {"eng", SHARED_KEY}

    def test_snapshot_threshold_and_cap(self, clock):
        """Snapshots keep the most important entries above the threshold."""
        memory = CrewMemory("crew1", MemoryConfig(max_long_term_entries=2), clock=clock)
        eng = memory.agent_memory("eng")
        eng.remember(MemoryType.FACT, "trivial", importance=0.2)
        eng.remember(MemoryType.FACT, "useful", importance=0.5)
        eng.remember(MemoryType.FACT, "vital", importance=0.9)
        memory.shared.remember(MemoryType.FACT, "shared", importance=0.4)

        snapshot = memory.snapshot()

        contents = [e["content"] for entries in snapshot.values() for e in entries]
        assert sorted(contents) == ["useful", "vital"]

    def test_save_and_load(self, clock):
        """Saved entries come back with their ids."""
        store = InMemoryStore()
        memory = CrewMemory("crew1", store=store, clock=clock)
        original = memory.agent_memory("eng").remember(MemoryType.FACT, "remember me", importance=0.8)

        assert memory.save() == 1

        restored = CrewMemory("crew1", store=store, clock=clock)
        assert restored.load() == 1
        assert [e.id for e in restored.agent_memory("eng").entries()] == [original.id]

    def test_load_corrupt_snapshot(self, clock):
        """Unparseable data loads as empty."""
        memory = CrewMemory("crew1", store=InMemoryStore("not json"), clock=clock)

        assert memory.load() == 0

    def test_load_skips_invalid_entries(self, clock):
        """Invalid entries are dropped, valid ones restored."""
        valid = {
            "id": "mem_1",
            "agent_id": "eng",
            "type": "fact",
            "content": "ok",
            "importance": 0.5,
            "created_at": 1.0,
            "accessed_at": 1.0,
        }
        raw = json.dumps({"eng": [valid, {"id": "broken"}], "writer": "not a list"})
        memory = CrewMemory("crew1", store=InMemoryStore(raw), clock=clock)

        assert memory.load() == 1

    def test_save_failure_returns_zero(self, clock):
        """Store errors are logged, never raised."""
        store = MagicMock()
        store.save.side_effect = OSError("disk full")
        memory = CrewMemory("crew1", store=store, clock=clock)
        memory.shared.remember(MemoryType.FACT, "x", importance=0.9)

        assert memory.save() == 0

    def test_clear_forgets_everything(self, clock):
        """Clear drops agent, shared and persisted memory."""
        store = InMemoryStore()
        memory = CrewMemory("crew1", store=store, clock=clock)
        memory.agent_memory("eng").remember(MemoryType.FACT, "x", importance=0.9)
        memory.save()

        memory.clear()

        assert store.raw is None
        assert memory.all_stats() == {SHARED_KEY: memory.shared.stats()}
        assert memory.shared.stats().working_memory_entries == 0
