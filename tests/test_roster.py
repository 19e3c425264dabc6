"""Tests for built-in templates and agent loading."""

import json

import pytest
from pydantic import ValidationError

from crewsim.roster import (
    AGENT_TEMPLATES,
    CREW_TEMPLATES,
    DEFAULT_CREW,
    Complexity,
    agent_from_template,
    build_agents,
    get_agent_template,
    get_crew_template,
    load_agents,
    recommended_templates,
    templates_by_complexity,
)
from crewsim.schemas import AgentRole


class TestTemplates:
    """Test the template catalog."""

    def test_one_agent_template_per_role(self):
        """Every role has exactly one agent template."""
        assert len(AGENT_TEMPLATES) == 8
        assert {t.role for t in AGENT_TEMPLATES.values()} == set(AgentRole)

    def test_crew_templates_reference_known_agents(self):
        """Crews only use agents that exist and include their coordinator."""
        assert len(CREW_TEMPLATES) == 6
        for crew in CREW_TEMPLATES.values():
            assert all(agent_id in AGENT_TEMPLATES for agent_id in crew.agent_ids)
            assert crew.coordinator_id in crew.agent_ids

    def test_recommended(self):
        """Startup and content crews are recommended."""
        assert [t.id for t in recommended_templates()] == ["startup-crew", "content-crew"]

    def test_by_complexity(self):
        """Templates filter by complexity."""
        assert [t.id for t in templates_by_complexity(Complexity.STARTER)] == ["solo-plus"]
        assert len(templates_by_complexity(Complexity.ADVANCED)) == 2

    def test_lookup(self):
        """Missing templates return None."""
        assert get_crew_template(DEFAULT_CREW).name == "Startup Crew"
        assert get_crew_template("nope") is None
        assert get_agent_template("writer").name == "The Wordsmith"


class TestBuildAgents:
    """Test turning templates into agent records."""

    def test_priorities_follow_order(self):
        """Routing priority is the join order."""
        agents = build_agents("dev-team")

        assert [a.id for a in agents] == ["coordinator", "engineer", "analyst", "support"]
        assert [a.routing.priority for a in agents] == [0, 1, 2, 3]

    def test_keywords_copied(self):
        """Suggested keywords become routing keywords."""
        agent = agent_from_template(AGENT_TEMPLATES["engineer"])

        assert "build" in agent.routing.keywords
        assert agent.routing.priority == 5
        assert agent.model.model == "claude-sonnet-4"

    def test_unknown_template(self):
        """Unknown crews raise ValueError."""
        with pytest.raises(ValueError):
            build_agents("imaginary-crew")


class TestLoadAgents:
    """Test loading agents from JSON files."""

    def test_load_valid_file(self, tmp_path):
        """A JSON list of agents loads."""
        path = tmp_path / "agents.json"
        path.write_text(json.dumps([
            {"id": "boss", "name": "Boss", "role": "coordinator"},
            {"id": "dev", "name": "Dev", "role": "engineer", "routing": {"keywords": ["code"]}},
        ]))

        agents = load_agents(path)

        assert [a.id for a in agents] == ["boss", "dev"]
        assert agents[1].routing.keywords == ["code"]

    def test_invalid_role(self, tmp_path):
        """Unknown roles fail validation."""
        path = tmp_path / "agents.json"
        path.write_text(json.dumps([{"id": "x", "name": "X", "role": "wizard"}]))

        with pytest.raises(ValidationError):
            load_agents(path)

    def test_missing_file(self, tmp_path):
        """A missing file raises OSError."""
        with pytest.raises(OSError):
            load_agents(tmp_path / "missing.json")
