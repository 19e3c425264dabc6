"""Conversation and working memory for agents and the crew as a whole.

Each agent keeps:
- short-term memory: the last N conversation turns, oldest evicted first
- working memory: importance-ranked facts and results used to build context

The crew additionally keeps one shared memory for delegations and task
results. Entries at or above an importance threshold can be persisted through
a ``MemoryStore``; persistence is a best-effort cache, never a source of truth.
"""

from __future__ import annotations

import logging
from collections import deque
from dataclasses import dataclass
from typing import Any

from pydantic import ValidationError

from crewsim.clock import Clock, SystemClock
from crewsim.policies import MemoryConfig
from crewsim.protocol import generate_id
from crewsim.schemas import ConversationTurn, CrewMessage, MemoryEntry, MemoryType, MessageType
from crewsim.store import MemoryStore, NullStore

logger = logging.getLogger(__name__)

SHARED_KEY = "_shared"
RECENCY_WINDOW_SECONDS = 3600.0
SUMMARY_CHARS = 120

# Recall score weights
CONTENT_MATCH_SCORE = 0.5
SUMMARY_MATCH_SCORE = 0.3
TAG_MATCH_SCORE = 0.2
RECENCY_WEIGHT = 0.2
IMPORTANCE_WEIGHT = 0.3


@dataclass
class MemoryStats:
    """Size of one agent memory."""

    short_term_turns: int
    working_memory_entries: int
    oldest_memory: float | None


class AgentMemory:
    """Memory store for a single agent."""

    def __init__(
        self,
        agent_id: str,
        config: MemoryConfig | None = None,
        clock: Clock | None = None,
    ):
        self.agent_id = agent_id
        self.config = config or MemoryConfig()
        self._clock = clock or SystemClock()
        self._short_term: deque[ConversationTurn] = deque(maxlen=self.config.max_short_term_turns)
        self._working: dict[str, MemoryEntry] = {}

    # --- Short-term ---

    def add_turn(self, turn: ConversationTurn) -> None:
        """Add a conversation turn, evicting the oldest past capacity."""
        self._short_term.append(turn)

    def conversation(self, max_turns: int | None = None) -> list[ConversationTurn]:
        """Most recent conversation turns, oldest first."""
        limit = self.config.max_short_term_turns if max_turns is None else max_turns
        if limit <= 0:
            return []
        return list(self._short_term)[-limit:]

    def clear_conversation(self) -> None:
        self._short_term.clear()

    # --- Working memory ---

    def remember(
        self,
        type: MemoryType,
        content: str,
        *,
        summary: str | None = None,
        tags: list[str] | None = None,
        importance: float = 0.5,
        created_at: float | None = None,
        expires_at: float | None = None,
        agent_id: str | None = None,
    ) -> MemoryEntry:
        """Store a fact or result in working memory."""
        now = self._clock.now()
        entry = MemoryEntry(
            id=generate_id("mem", self._clock),
            agent_id=agent_id or self.agent_id,
            type=type,
            content=content,
            summary=summary,
            tags=list(tags or []),
            importance=importance,
            created_at=created_at if created_at is not None else now,
            accessed_at=now,
            expires_at=expires_at,
        )
        self._store(entry)
        return entry

    def restore(self, entry: MemoryEntry) -> None:
        """Put a previously saved entry back, keeping its id."""
        self._store(entry.model_copy())

    def recall(self, query: str, tags: list[str] | None = None) -> list[MemoryEntry]:
        """Search working memory by content, summary and tags.

        Scores each live entry: 0.5 for a content match, 0.3 for a summary
        match, 0.2 per requested tag present, up to 0.2 for recency (decaying
        to zero over an hour since last access) and 0.3 x importance. Returned
        entries have their ``accessed_at`` refreshed.

        Returns:
            Entries with a positive score, best first
        """
        now = self._clock.now()
        query_lower = query.lower()
        scored: list[tuple[float, MemoryEntry]] = []

        for entry in self._working.values():
            if entry.expires_at is not None and entry.expires_at < now:
                continue

            score = 0.0
            if query_lower in entry.content.lower():
                score += CONTENT_MATCH_SCORE
            if entry.summary and query_lower in entry.summary.lower():
                score += SUMMARY_MATCH_SCORE
            if tags:
                score += TAG_MATCH_SCORE * sum(1 for t in tags if t in entry.tags)

            age = now - entry.accessed_at
            score += max(0.0, 1 - age / RECENCY_WINDOW_SECONDS) * RECENCY_WEIGHT
            score += entry.importance * IMPORTANCE_WEIGHT

            if score > 0:
                scored.append((score, entry))

        scored.sort(key=lambda pair: pair[0], reverse=True)
        for _, entry in scored:
            entry.accessed_at = now
        return [entry for _, entry in scored]

    def entries(self) -> list[MemoryEntry]:
        """All working-memory entries. Does not touch access times."""
        return list(self._working.values())

    def build_context(self) -> str:
        """Build a textual context block for prompting."""
        parts: list[str] = []

        recent_turns = self.conversation(5)
        if recent_turns:
            parts.append("## Recent conversation")
            for turn in recent_turns:
                prefix = "User" if turn.role == "user" else (turn.agent_name or turn.agent_id or "Agent")
                parts.append(f"{prefix}: {turn.content}")

        facts = sorted(
            (e for e in self._working.values()
             if e.type in (MemoryType.FACT, MemoryType.USER_PREFERENCE)),
            key=lambda e: e.importance,
            reverse=True,
        )[:5]
        if facts:
            parts.append("\n## Key context")
            for fact in facts:
                parts.append(f"- {fact.summary or fact.content}")

        results = sorted(
            (e for e in self._working.values() if e.type == MemoryType.TASK_RESULT),
            key=lambda e: e.created_at,
            reverse=True,
        )[:3]
        if results:
            parts.append("\n## Recent task results")
            for result in results:
                parts.append(f"- {result.summary or result.content[:SUMMARY_CHARS]}")

        return "\n".join(parts)

    def stats(self) -> MemoryStats:
        entries = self._working.values()
        return MemoryStats(
            short_term_turns=len(self._short_term),
            working_memory_entries=len(self._working),
            oldest_memory=min((e.created_at for e in entries), default=None),
        )

    def _store(self, entry: MemoryEntry) -> None:
        self._working[entry.id] = entry
        while len(self._working) > self.config.max_working_memory_entries:
            self._evict_least_important()

    def _evict_least_important(self) -> None:
        victim = min(self._working.values(), key=lambda e: e.importance)
        del self._working[victim.id]
        logger.debug(f"Evicted memory {victim.id} (importance {victim.importance}) from {self.agent_id}")


class CrewMemory:
    """Crew-wide memory manager.

    Each agent gets its own memory; a shared memory holds delegation history
    and task results for cross-agent context.
    """

    def __init__(
        self,
        crew_id: str,
        config: MemoryConfig | None = None,
        store: MemoryStore | None = None,
        clock: Clock | None = None,
    ):
        self.crew_id = crew_id
        self.config = config or MemoryConfig()
        self.store = store or NullStore()
        self._clock = clock or SystemClock()
        self._agents: dict[str, AgentMemory] = {}
        self.shared = AgentMemory(f"crew_{crew_id}", self.config, self._clock)

    def agent_memory(self, agent_id: str) -> AgentMemory:
        """Get or create memory for an agent."""
        memory = self._agents.get(agent_id)
        if memory is None:
            memory = AgentMemory(agent_id, self.config, self._clock)
            self._agents[agent_id] = memory
        return memory

    def record_message(self, message: CrewMessage) -> None:
        """Record a crew message in sender, receiver and shared memory."""
        turn = ConversationTurn(
            role="user" if message.from_agent == "user" else "agent",
            agent_id=message.from_agent,
            content=message.content,
            timestamp=message.timestamp,
        )
        self.agent_memory(message.from_agent).add_turn(turn)
        if message.to != message.from_agent:
            self.agent_memory(message.to).add_turn(turn)

        if message.type == MessageType.DELEGATE:
            self.shared.remember(
                MemoryType.DELEGATION,
                f"{message.from_agent} delegated to {message.to}: {message.content}",
                summary=f"Delegation: {message.from_agent} -> {message.to}",
                tags=["delegation", message.from_agent, message.to],
                importance=0.6,
                created_at=message.timestamp,
                agent_id=message.from_agent,
            )
        elif message.type == MessageType.RESULT:
            self.shared.remember(
                MemoryType.TASK_RESULT,
                message.content,
                summary=message.content[:SUMMARY_CHARS],
                tags=["result", message.from_agent],
                importance=0.7,
                created_at=message.timestamp,
                agent_id=message.from_agent,
            )

    def agent_context(self, agent_id: str) -> str:
        """Context for an agent including shared crew knowledge."""
        agent_context = self.agent_memory(agent_id).build_context()
        shared_context = self.shared.build_context()

        parts = []
        if agent_context:
            parts.append(agent_context)
        if shared_context:
            parts.append("\n## Crew-wide context\n" + shared_context)
        return "\n".join(parts)

    def search_all(self, query: str, tags: list[str] | None = None) -> dict[str, list[MemoryEntry]]:
        """Recall across every agent memory plus the shared one."""
        results: dict[str, list[MemoryEntry]] = {}
        for agent_id, memory in self._agents.items():
            entries = memory.recall(query, tags)
            if entries:
                results[agent_id] = entries

        shared_entries = self.shared.recall(query, tags)
        if shared_entries:
            results[SHARED_KEY] = shared_entries
        return results

    def snapshot(self) -> dict[str, list[dict[str, Any]]]:
        """Build the persistable snapshot of important entries.

        Keeps entries at or above the importance threshold, at most
        ``max_long_term_entries`` across all memories (most important first).
        """
        threshold = self.config.importance_threshold
        candidates: list[tuple[str, MemoryEntry]] = []
        for agent_id, memory in self._agents.items():
            candidates.extend((agent_id, e) for e in memory.entries() if e.importance >= threshold)
        candidates.extend((SHARED_KEY, e) for e in self.shared.entries() if e.importance >= threshold)

        candidates.sort(key=lambda pair: (pair[1].importance, pair[1].created_at), reverse=True)
        data: dict[str, list[dict[str, Any]]] = {}
        for owner, entry in candidates[: self.config.max_long_term_entries]:
            data.setdefault(owner, []).append(entry.model_dump(mode="json"))
        return data

    def save(self) -> int:
        """Persist important entries. Failures are logged, never raised.

        Returns:
            Number of entries written (0 on failure)
        """
        data = self.snapshot()
        count = sum(len(entries) for entries in data.values())
        try:
            self.store.save(data)
        except Exception:
            logger.warning("Failed to save crew memory", exc_info=True)
            return 0
        logger.debug(f"Saved {count} memory entries")
        return count

    def load(self) -> int:
        """Load persisted entries. Missing or corrupt data counts as empty.

        Returns:
            Number of entries restored
        """
        try:
            data = self.store.load()
        except Exception:
            logger.warning("Failed to load crew memory, starting fresh", exc_info=True)
            return 0

        if not isinstance(data, dict):
            if data is not None:
                logger.warning("Ignoring malformed memory snapshot")
            return 0

        restored = 0
        for owner, entries in data.items():
            if not isinstance(entries, list):
                continue
            memory = self.shared if owner == SHARED_KEY else self.agent_memory(owner)
            for raw in entries:
                try:
                    memory.restore(MemoryEntry.model_validate(raw))
                except ValidationError:
                    logger.debug(f"Skipping invalid memory entry for {owner}")
                    continue
                restored += 1
        return restored

    def clear(self) -> None:
        """Forget everything, including the persisted snapshot."""
        self._agents.clear()
        self.shared = AgentMemory(f"crew_{self.crew_id}", self.config, self._clock)
        try:
            self.store.clear()
        except Exception:
            logger.warning("Failed to clear persisted memory", exc_info=True)

    def all_stats(self) -> dict[str, MemoryStats]:
        stats = {agent_id: memory.stats() for agent_id, memory in self._agents.items()}
        stats[SHARED_KEY] = self.shared.stats()
        return stats
