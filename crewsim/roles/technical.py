"""Responders for the coordinator and the technical roles."""

from __future__ import annotations

from crewsim.roles.base import PhraseBank, RoleHint, RoleResponder, RoleResponse, excerpt, mentions
from crewsim.schemas import AgentRole

CODE_PATTERN = r"code|build|fix|implement|debug|script|function|api|bug|deploy|test"
RESEARCH_PATTERN = r"research|why|compare|analyze|investigate"
DATA_PATTERN = r"data|metrics|numbers|stats|trends"
REPORT_PATTERN = r"report|presentation|write.?up|summary for"


class CoordinatorResponder(RoleResponder):
    role = AgentRole.COORDINATOR

    def respond(self, text: str, phrases: PhraseBank) -> RoleResponse:
        return RoleResponse(
            thinking=phrases.pick([
                "Analyzing request and determining best routing...",
                "Reading the request and checking who is free...",
            ]),
            response=(
                "I've reviewed this request and routed it to the appropriate specialist. "
                f'Summary: "{excerpt(text)}"'
            ),
        )


class EngineerResponder(RoleResponder):
    role = AgentRole.ENGINEER

    def respond(self, text: str, phrases: PhraseBank) -> RoleResponse:
        if mentions(RESEARCH_PATTERN, text):
            return RoleResponse(
                thinking="This needs research first before implementation...",
                response="I can build this, but we need a technical spec first.",
                delegate=RoleHint(AgentRole.RESEARCHER, "Need technical research before implementation"),
            )

        if mentions(CODE_PATTERN, text):
            complexity = "Medium-High" if len(text) > 100 else "Low-Medium"
            response = (
                "Technical implementation plan:\n\n"
                "1. **Setup**: Initialize project structure and dependencies\n"
                "2. **Core Logic**: Implement the main functionality\n"
                "3. **Testing**: Write unit tests and integration checks\n"
                "4. **Review**: Self-review for edge cases\n\n"
                f"Estimated complexity: {complexity}\n"
                "Ready to implement on your go."
            )
        else:
            response = (
                "I can help with the technical side of this. Here's my approach:\n"
                "- Assess current state\n"
                "- Identify the minimal changes needed\n"
                "- Implement with clean, tested code\n\n"
                "Shall I proceed?"
            )

        return RoleResponse(
            thinking=phrases.pick([
                "Breaking down the technical requirements...",
                "Sketching the moving parts before touching code...",
                "Checking what already exists and what needs building...",
            ]),
            response=response,
        )


class ResearcherResponder(RoleResponder):
    role = AgentRole.RESEARCHER

    def respond(self, text: str, phrases: PhraseBank) -> RoleResponse:
        if mentions(DATA_PATTERN, text):
            return RoleResponse(
                thinking="This is more of a data analysis task...",
                response=(
                    "I can research the qualitative aspects, but the quantitative "
                    "analysis should go to our Analyst."
                ),
                delegate=RoleHint(AgentRole.ANALYST, "Quantitative analysis needed"),
            )

        return RoleResponse(
            thinking=phrases.pick([
                "Diving deep into research and analysis...",
                "Gathering sources and comparing viewpoints...",
            ]),
            response=(
                "Research findings:\n\n"
                "**Key Insights:**\n"
                "- Analyzed the request from multiple angles\n"
                "- Cross-referenced available knowledge\n"
                "- Identified 3 viable approaches\n\n"
                "**Recommendation:** Based on the analysis, the most effective approach is "
                "to start with a focused scope and iterate. This balances risk with speed "
                "of delivery.\n\n"
                "**Trade-offs to consider:**\n"
                "- Speed vs thoroughness\n"
                "- Simplicity vs flexibility\n"
                "- Cost vs capability"
            ),
        )


class AnalystResponder(RoleResponder):
    role = AgentRole.ANALYST

    def respond(self, text: str, phrases: PhraseBank) -> RoleResponse:
        collaborate = []
        if mentions(REPORT_PATTERN, text):
            collaborate.append(RoleHint(AgentRole.WRITER, "Turn the numbers into a readable report"))

        return RoleResponse(
            thinking=phrases.pick([
                "Processing data and generating insights...",
                "Crunching the numbers and looking for trends...",
            ]),
            response=(
                "Analysis complete:\n\n"
                "**Summary:**\n"
                "- Processed the available data points\n"
                "- Identified key trends and patterns\n"
                "- Generated actionable insights\n\n"
                "**Key Metrics:**\n"
                "- Performance: Trending positive\n"
                "- Efficiency: Room for 15-20% improvement\n"
                "- Risk: Low with current approach\n\n"
                "**Recommendation:** Focus on the top 3 drivers for maximum impact. "
                "I can break this down further if needed."
            ),
            collaborate=collaborate,
        )
