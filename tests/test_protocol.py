"""Tests for message creation and keyword routing."""

import re

import pytest

from crewsim.protocol import (
    RoutingRule,
    build_routing_rules,
    compile_patterns,
    create_handoff,
    create_message,
    generate_id,
    route_message,
)
from crewsim.schemas import AgentRole, CrewMessage, MessageContext, MessageType


class TestRouteMessage:
    """Test rule scoring and best-match selection."""

    def test_keyword_match_routes_to_agent(self):
        """A matching keyword routes to its agent and names the keyword."""
        rules = [RoutingRule(agent_id="eng", keywords=["build", "code"], priority=1)]

        decision = route_message("please build this feature", rules)

        assert decision is not None
        assert decision.agent_id == "eng"
        assert "build" in decision.reason
        assert decision.confidence == pytest.approx(19 / 50)

    def test_empty_rules_returns_none(self):
        """No rules means no route."""
        assert route_message("anything", []) is None

    def test_highest_score_wins(self):
        """The rule with the most matches wins."""
        rules = [
            RoutingRule(agent_id="a", keywords=["report"]),
            RoutingRule(agent_id="b", keywords=["report", "numbers"]),
        ]

        decision = route_message("Report the numbers", rules)

        assert decision.agent_id == "b"
        assert decision.reason == "Matched keywords: report, numbers"

    def test_tie_keeps_first_rule(self):
        """Equal scores keep the first rule seen."""
        rules = [
            RoutingRule(agent_id="first", keywords=["help"]),
            RoutingRule(agent_id="second", keywords=["help"]),
        ]

        assert route_message("help me", rules).agent_id == "first"

    def test_rule_without_keywords_can_win_on_priority(self):
        """A keyword-less rule still scores its priority term."""
        rules = [RoutingRule(agent_id="fallback", priority=3)]

        decision = route_message("unrelated text", rules)

        assert decision.agent_id == "fallback"
        assert decision.reason == "Matched routing pattern"
        assert decision.confidence == pytest.approx(7 / 50)

    def test_zero_score_is_not_a_match(self):
        """Priority 10 without matches scores zero."""
        rules = [RoutingRule(agent_id="idle", keywords=["deploy"], priority=10)]

        assert route_message("hello", rules) is None

    def test_pattern_match_scores_twenty(self):
        """Each matching pattern adds 20 points."""
        rules = [
            RoutingRule(agent_id="kw", keywords=["ticket"], priority=5),
            RoutingRule(agent_id="re", patterns=[re.compile(r"\bINC-\d+", re.IGNORECASE)], priority=5),
        ]

        decision = route_message("Look at inc-42 ticket", rules)

        assert decision.agent_id == "re"
        assert decision.confidence == pytest.approx(25 / 50)

    def test_confidence_is_capped_at_one(self):
        """Many matches never push confidence above 1."""
        rules = [RoutingRule(agent_id="eng", keywords=["a", "b", "c", "d", "e", "f"], priority=0)]

        decision = route_message("a b c d e f", rules)

        assert decision.confidence == 1.0

    def test_keyword_matching_is_case_insensitive(self):
        """Keywords and content are compared lowercased."""
        rules = [RoutingRule(agent_id="eng", keywords=["Deploy"])]

        assert route_message("DEPLOY now", rules).agent_id == "eng"


class TestRoutingRules:
    """Test rule derivation from agents."""

    def test_coordinator_and_disabled_agents_excluded(self, make_agent):
        """Rules never target the coordinator or disabled agents."""
        agents = [
            make_agent("boss", AgentRole.COORDINATOR),
            make_agent("eng", keywords=["build"]),
            make_agent("off", enabled=False),
        ]

        rules = build_routing_rules(agents, coordinator_id="boss")

        assert [r.agent_id for r in rules] == ["eng"]
        assert rules[0].keywords == ["build"]

    def test_invalid_pattern_is_skipped(self):
        """Broken regexes are dropped instead of raising."""
        compiled = compile_patterns("eng", [r"valid\d+", r"(unclosed"])

        assert len(compiled) == 1
        assert compiled[0].search("VALID7")


class TestCreateMessage:
    """Test message construction."""

    def test_fields_and_timestamp(self, clock):
        """Messages carry sender, target and clock time."""
        message = create_message("user", "eng", MessageType.TASK, "do it", clock=clock)

        assert message.from_agent == "user"
        assert message.to == "eng"
        assert message.timestamp == clock.now()
        assert message.id.startswith("msg_")

    def test_context_is_copied(self, clock):
        """Mutating the original context does not affect the message."""
        context = MessageContext(original_request="hi", previous_results=["a"])

        message = create_message("user", "eng", MessageType.TASK, "x", context, clock=clock)
        context.previous_results.append("b")

        assert message.context.previous_results == ["a"]

    def test_message_is_immutable(self, clock):
        """Messages cannot be modified after creation."""
        message = create_message("user", "eng", MessageType.TASK, "x", clock=clock)

        with pytest.raises(Exception):
            message.content = "changed"

    def test_from_alias(self):
        """Messages accept the wire name 'from'."""
        message = CrewMessage.model_validate(
            {"id": "m1", "from": "user", "to": "eng", "type": "task", "content": "x", "timestamp": 1.0}
        )

        assert message.from_agent == "user"
        assert message.model_dump(by_alias=True)["from"] == "user"


class TestIds:
    """Test id generation."""

    def test_generate_id_format(self, clock):
        """Ids are prefix, milliseconds and a random suffix."""
        prefix, millis, suffix = generate_id("plan", clock).split("_")

        assert prefix == "plan"
        assert int(millis) == int(clock.now() * 1000)
        assert len(suffix) == 6

    def test_ids_are_unique(self, clock):
        """Same prefix and time still yield distinct ids."""
        assert generate_id("msg", clock) != generate_id("msg", clock)

    def test_create_handoff_preserves_history(self):
        """Handoffs default to preserving history."""
        handoff = create_handoff("eng", "researcher", "Need research")

        assert handoff.preserve_history is True
        assert handoff.context.original_request is None
