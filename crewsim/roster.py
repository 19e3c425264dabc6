"""Built-in agent and crew templates, and loading agents from JSON."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from pathlib import Path

from pydantic import TypeAdapter

from crewsim.schemas import Agent, AgentModel, AgentRole, AgentRouting

logger = logging.getLogger(__name__)

_agent_list = TypeAdapter(list[Agent])


class Complexity(str, Enum):
    """How much coordination a crew template involves."""

    STARTER = "starter"
    STANDARD = "standard"
    ADVANCED = "advanced"


@dataclass(frozen=True)
class AgentTemplate:
    """Starting point for one agent persona."""

    id: str
    name: str
    emoji: str
    role: AgentRole
    description: str
    vibe: str
    default_model: str
    suggested_keywords: tuple[str, ...]
    color: str
    soul: str


@dataclass(frozen=True)
class CrewTemplate:
    """Pre-built crew composition."""

    id: str
    name: str
    tagline: str
    description: str
    agent_ids: tuple[str, ...]
    coordinator_id: str
    recommended: bool
    use_cases: tuple[str, ...]
    complexity: Complexity


AGENT_TEMPLATES: dict[str, AgentTemplate] = {
    t.id: t
    for t in (
        AgentTemplate(
            id="coordinator",
            name="The Boss",
            emoji="🃏",
            role=AgentRole.COORDINATOR,
            description="Routes requests, reviews work, and manages team coordination",
            vibe="Strategic & decisive",
            default_model="claude-opus-4",
            suggested_keywords=(),
            color="from-purple-500 to-pink-500",
            soul="You route incoming requests to the right specialist and review their work.",
        ),
        AgentTemplate(
            id="engineer",
            name="The Builder",
            emoji="🐺",
            role=AgentRole.ENGINEER,
            description="Writes code, builds features, debugs, and handles technical implementation",
            vibe="Pragmatic & precise",
            default_model="claude-sonnet-4",
            suggested_keywords=("build", "code", "fix", "implement", "debug", "script", "function"),
            color="from-blue-500 to-cyan-500",
            soul="You turn ideas into working code with pragmatic solutions.",
        ),
        AgentTemplate(
            id="researcher",
            name="The Brain",
            emoji="🔵",
            role=AgentRole.RESEARCHER,
            description="Deep analysis, investigation, technical research, and documentation",
            vibe="Thorough & analytical",
            default_model="claude-opus-4",
            suggested_keywords=("research", "analyze", "investigate", "why", "how", "explain", "compare"),
            color="from-indigo-500 to-purple-500",
            soul="You dig deep into topics and produce clear, well-structured insights.",
        ),
        AgentTemplate(
            id="creative",
            name="The Artist",
            emoji="🔴",
            role=AgentRole.CREATIVE,
            description="Visual concepts, design ideas, creative content, and images",
            vibe="Imaginative & expressive",
            default_model="claude-sonnet-4",
            suggested_keywords=("design", "image", "create visual", "logo", "art", "sketch", "mockup"),
            color="from-red-500 to-orange-500",
            soul="You bring ideas to life with visual concepts and creative direction.",
        ),
        AgentTemplate(
            id="scheduler",
            name="The Keeper",
            emoji="🟢",
            role=AgentRole.SCHEDULER,
            description="Reminders, time-based tasks, automated briefings, and calendar management",
            vibe="Organized & reliable",
            default_model="claude-sonnet-4",
            suggested_keywords=("remind", "schedule", "every day", "daily", "weekly", "calendar", "when"),
            color="from-green-500 to-emerald-500",
            soul="You keep things on time: reminders, recurring tasks and briefings.",
        ),
        AgentTemplate(
            id="writer",
            name="The Wordsmith",
            emoji="✍️",
            role=AgentRole.WRITER,
            description="Content creation, documentation, emails, and written communication",
            vibe="Articulate & polished",
            default_model="claude-sonnet-4",
            suggested_keywords=("write", "draft", "compose", "email", "blog", "document", "letter"),
            color="from-yellow-500 to-amber-500",
            soul="You craft clear, engaging writing matched to its audience.",
        ),
        AgentTemplate(
            id="analyst",
            name="The Numbers",
            emoji="📊",
            role=AgentRole.ANALYST,
            description="Data analysis, metrics, insights, and reporting",
            vibe="Data-driven & insightful",
            default_model="claude-opus-4",
            suggested_keywords=("analyze data", "report", "metrics", "numbers", "stats", "dashboard", "trends"),
            color="from-teal-500 to-cyan-500",
            soul="You find the signal in the numbers and turn it into actionable insight.",
        ),
        AgentTemplate(
            id="support",
            name="The Helper",
            emoji="💬",
            role=AgentRole.SUPPORT,
            description="Customer communication, help, FAQs, and user assistance",
            vibe="Helpful & patient",
            default_model="claude-sonnet-4",
            suggested_keywords=("help", "support", "how do i", "problem", "issue", "question about", "broken"),
            color="from-pink-500 to-rose-500",
            soul="You help people patiently and escalate real defects to the team.",
        ),
    )
}

CREW_TEMPLATES: dict[str, CrewTemplate] = {
    t.id: t
    for t in (
        CrewTemplate(
            id="solo-plus",
            name="Solo+",
            tagline="One agent with a coordinator backup",
            description="A coordinator handles routing; add a specialist to do the heavy lifting.",
            agent_ids=("coordinator",),
            coordinator_id="coordinator",
            recommended=False,
            use_cases=("Personal projects", "Learning the crew model", "Simple automation"),
            complexity=Complexity.STARTER,
        ),
        CrewTemplate(
            id="startup-crew",
            name="Startup Crew",
            tagline="Build fast, ship faster",
            description="Engineer for code, Researcher for deep dives, Creative for design work.",
            agent_ids=("coordinator", "engineer", "researcher", "creative"),
            coordinator_id="coordinator",
            recommended=True,
            use_cases=("Software development", "Product building", "Technical projects", "Side projects"),
            complexity=Complexity.STANDARD,
        ),
        CrewTemplate(
            id="content-crew",
            name="Content Crew",
            tagline="Create, research, publish",
            description="Writer crafts the words, Researcher provides the facts, Creative handles visuals.",
            agent_ids=("coordinator", "writer", "researcher", "creative"),
            coordinator_id="coordinator",
            recommended=True,
            use_cases=("Blog & newsletter writing", "Social media management", "Marketing content", "Documentation"),
            complexity=Complexity.STANDARD,
        ),
        CrewTemplate(
            id="dev-team",
            name="Dev Team",
            tagline="Ship quality code",
            description="Engineer builds, Analyst reviews metrics, Support handles user issues.",
            agent_ids=("coordinator", "engineer", "analyst", "support"),
            coordinator_id="coordinator",
            recommended=False,
            use_cases=("SaaS development", "Open source projects", "API development", "DevOps workflows"),
            complexity=Complexity.STANDARD,
        ),
        CrewTemplate(
            id="business-ops",
            name="Business Ops",
            tagline="Run your business on autopilot",
            description="Scheduler, Analyst, Writer and Support for day-to-day operations.",
            agent_ids=("coordinator", "scheduler", "analyst", "writer", "support"),
            coordinator_id="coordinator",
            recommended=False,
            use_cases=("Small business management", "Client management", "Operations tracking", "Business reporting"),
            complexity=Complexity.ADVANCED,
        ),
        CrewTemplate(
            id="full-stack",
            name="Full Stack",
            tagline="The whole team",
            description="All 8 agents working together, routed automatically by the coordinator.",
            agent_ids=(
                "coordinator",
                "engineer",
                "researcher",
                "creative",
                "scheduler",
                "writer",
                "analyst",
                "support",
            ),
            coordinator_id="coordinator",
            recommended=False,
            use_cases=("Enterprise workflows", "Complex projects", "Full business automation", "Agency operations"),
            complexity=Complexity.ADVANCED,
        ),
    )
}

DEFAULT_CREW = "startup-crew"


def get_agent_template(template_id: str) -> AgentTemplate | None:
    return AGENT_TEMPLATES.get(template_id)


def get_crew_template(template_id: str) -> CrewTemplate | None:
    return CREW_TEMPLATES.get(template_id)


def recommended_templates() -> list[CrewTemplate]:
    return [t for t in CREW_TEMPLATES.values() if t.recommended]


def templates_by_complexity(complexity: Complexity) -> list[CrewTemplate]:
    return [t for t in CREW_TEMPLATES.values() if t.complexity == complexity]


def agent_from_template(template: AgentTemplate, priority: int = 5) -> Agent:
    """Build an agent record from a template."""
    return Agent(
        id=template.id,
        name=template.name,
        emoji=template.emoji,
        role=template.role,
        description=template.description,
        soul=template.soul,
        color=template.color,
        model=AgentModel(model=template.default_model),
        routing=AgentRouting(priority=priority, keywords=list(template.suggested_keywords)),
    )


def build_agents(template_id: str) -> list[Agent]:
    """Agents for a crew template.

    Routing priority follows the order agents join the crew, so earlier
    specialists win when nothing else scores.

    Raises:
        ValueError: If the template does not exist
    """
    template = CREW_TEMPLATES.get(template_id)
    if template is None:
        raise ValueError(f"Unknown crew template: {template_id}")
    return [
        agent_from_template(AGENT_TEMPLATES[agent_id], priority=index)
        for index, agent_id in enumerate(template.agent_ids)
    ]


def load_agents(path: Path | str) -> list[Agent]:
    """Load agent records from a JSON list.

    Raises:
        OSError: If the file cannot be read
        pydantic.ValidationError: If the content is not a valid agent list
    """
    raw = Path(path).read_text(encoding="utf-8")
    agents = _agent_list.validate_json(raw)
    logger.info(f"Loaded {len(agents)} agents from {path}")
    return agents
