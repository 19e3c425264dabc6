"""Shared types for role responders."""

from __future__ import annotations

import random
import re
from dataclasses import dataclass, field
from typing import Sequence, TypeVar

from crewsim.schemas import AgentRole

T = TypeVar("T")

SUMMARY_CHARS = 80


class PhraseBank:
    """Source of template choices and step durations.

    Wraps a ``random.Random`` so playback text and pacing can be seeded or
    made fully deterministic in tests.
    """

    def __init__(self, rng: random.Random | None = None, deterministic: bool = False):
        self._rng = rng or random.Random()
        self._deterministic = deterministic

    @classmethod
    def deterministic(cls) -> PhraseBank:
        """Bank that always picks the first option and the low duration bound."""
        return cls(deterministic=True)

    @classmethod
    def seeded(cls, seed: int) -> PhraseBank:
        return cls(random.Random(seed))

    def pick(self, options: Sequence[T]) -> T:
        if not options:
            raise ValueError("Cannot pick from an empty sequence")
        if self._deterministic:
            return options[0]
        return self._rng.choice(options)

    def duration(self, low: float, high: float) -> float:
        """Duration in seconds within ``[low, high]``."""
        if self._deterministic:
            return low
        return self._rng.uniform(low, high)


@dataclass
class RoleHint:
    """Request to bring in an agent of another role."""

    to_role: AgentRole
    reason: str


@dataclass
class RoleResponse:
    """What a role says while handling one request."""

    thinking: str
    response: str
    delegate: RoleHint | None = None
    collaborate: list[RoleHint] = field(default_factory=list)


class RoleResponder:
    """Produces templated output for one agent role.

    Subclasses set ``role`` and implement ``respond``.
    """

    role: AgentRole

    def respond(self, text: str, phrases: PhraseBank) -> RoleResponse:
        raise NotImplementedError


def mentions(pattern: str, text: str) -> bool:
    """Case-insensitive regex search."""
    return re.search(pattern, text, re.IGNORECASE) is not None


def excerpt(text: str, limit: int = SUMMARY_CHARS) -> str:
    return text[:limit] + ("..." if len(text) > limit else "")
