"""Responders for the creative and writer roles."""

from __future__ import annotations

from crewsim.roles.base import PhraseBank, RoleHint, RoleResponder, RoleResponse, mentions
from crewsim.schemas import AgentRole

CONTENT_PATTERN = r"write|draft|compose|email|blog|document|letter|copy|post"
VISUAL_PATTERN = r"image|visual|graphic|design|illustration"
COPY_PATTERN = r"copy|tagline|headline|caption|slogan"


class CreativeResponder(RoleResponder):
    role = AgentRole.CREATIVE

    def respond(self, text: str, phrases: PhraseBank) -> RoleResponse:
        collaborate = []
        if mentions(COPY_PATTERN, text):
            collaborate.append(RoleHint(AgentRole.WRITER, "Needs copy to go with the visuals"))

        return RoleResponse(
            thinking=phrases.pick([
                "Exploring creative directions and visual concepts...",
                "Pinning up mood boards and color studies...",
            ]),
            response=(
                "Creative direction:\n\n"
                "**Concept:** Modern and clean with a focus on clarity\n"
                "**Color palette:** Dynamic gradients that convey energy and trust\n"
                "**Typography:** Sans-serif for headings, readable body text\n"
                "**Visual style:** Minimal with purposeful use of color and space\n\n"
                "I can develop this further into mockups or detailed specs. "
                "Want me to explore a specific direction?"
            ),
            collaborate=collaborate,
        )


class WriterResponder(RoleResponder):
    role = AgentRole.WRITER

    def respond(self, text: str, phrases: PhraseBank) -> RoleResponse:
        if mentions(CONTENT_PATTERN, text):
            response = (
                "Here's my draft:\n\n---\n\n"
                "*[Crafted content based on your request]*\n\n"
                "I've matched the tone to your audience and kept it concise but complete. "
                "Key elements:\n"
                "- Clear opening hook\n"
                "- Structured body with key points\n"
                "- Strong call to action\n\n"
                "Want me to adjust the tone, length, or focus?"
            )
        else:
            response = (
                "I can help with the written communication side. I'll focus on:\n"
                "- Clear, engaging language\n"
                "- Appropriate tone for your audience\n"
                "- Proper structure and flow\n\n"
                "What format do you need? (email, blog post, documentation, etc.)"
            )

        collaborate = []
        if mentions(VISUAL_PATTERN, text):
            collaborate.append(RoleHint(AgentRole.CREATIVE, "Needs visuals to go with the text"))

        return RoleResponse(
            thinking=phrases.pick([
                "Crafting the right tone and structure...",
                "Outlining the piece before drafting...",
            ]),
            response=response,
            collaborate=collaborate,
        )
