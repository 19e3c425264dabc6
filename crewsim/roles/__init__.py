"""Role responders that script what each kind of agent says."""

from crewsim.roles.base import PhraseBank, RoleHint, RoleResponder, RoleResponse
from crewsim.roles.content import CreativeResponder, WriterResponder
from crewsim.roles.operations import SchedulerResponder, SupportResponder
from crewsim.roles.technical import (
    AnalystResponder,
    CoordinatorResponder,
    EngineerResponder,
    ResearcherResponder,
)
from crewsim.schemas import AgentRole

_RESPONDERS: dict[AgentRole, RoleResponder] = {}


def register_responder(responder: RoleResponder) -> None:
    """Register a responder for its role, replacing any existing one."""
    _RESPONDERS[responder.role] = responder


def get_responder(role: AgentRole) -> RoleResponder:
    """Get the responder for a role."""
    return _RESPONDERS[role]


for _responder in (
    CoordinatorResponder(),
    EngineerResponder(),
    ResearcherResponder(),
    AnalystResponder(),
    CreativeResponder(),
    WriterResponder(),
    SchedulerResponder(),
    SupportResponder(),
):
    register_responder(_responder)

__all__ = [
    "PhraseBank",
    "RoleHint",
    "RoleResponder",
    "RoleResponse",
    "get_responder",
    "register_responder",
]
