"""Responders for the scheduler and support roles."""

from __future__ import annotations

from crewsim.roles.base import PhraseBank, RoleHint, RoleResponder, RoleResponse, mentions
from crewsim.schemas import AgentRole

TIMING_PATTERN = r"remind|schedule|every|daily|weekly|calendar|when|morning|evening"
ISSUE_PATTERN = r"help|problem|issue|broken|error|how do i|can't|doesn't work"
CRASH_PATTERN = r"crash|bug|stack ?trace|exception"


class SchedulerResponder(RoleResponder):
    role = AgentRole.SCHEDULER

    def respond(self, text: str, phrases: PhraseBank) -> RoleResponse:
        if mentions(TIMING_PATTERN, text):
            response = (
                "Schedule configured:\n\n"
                "- **Frequency**: Based on your request\n"
                "- **Timezone**: Auto-detected from your profile\n"
                "- **Delivery**: Will be sent to your active channels\n"
                "- **Status**: Ready to activate\n\n"
                "I'll make sure this runs reliably. You can adjust the timing anytime."
            )
        else:
            response = (
                "I can help organize the timing for this. Would you like me to:\n"
                "- Set up a one-time reminder?\n"
                "- Create a recurring schedule?\n"
                "- Build an automated briefing?\n\n"
                "Just let me know the timing details."
            )

        return RoleResponse(
            thinking=phrases.pick([
                "Evaluating timing and scheduling requirements...",
                "Checking the calendar for conflicts...",
            ]),
            response=response,
        )


class SupportResponder(RoleResponder):
    role = AgentRole.SUPPORT

    def respond(self, text: str, phrases: PhraseBank) -> RoleResponse:
        if mentions(CRASH_PATTERN, text):
            return RoleResponse(
                thinking="This looks like a defect rather than a usage question...",
                response=(
                    "Thanks for the report. This looks like a bug, so I've asked our "
                    "Engineer to take a closer look."
                ),
                delegate=RoleHint(AgentRole.ENGINEER, "Possible defect needs engineering"),
            )

        if mentions(ISSUE_PATTERN, text):
            response = (
                "I'm here to help! Here's what I'd suggest:\n\n"
                "1. **Quick check**: Make sure everything is configured correctly\n"
                "2. **Common fix**: This is usually resolved by refreshing the connection\n"
                "3. **If that doesn't work**: I'll escalate to our Engineer for a deeper look\n\n"
                "Let me know if the quick fix works, or if you need more detailed help!"
            )
        else:
            response = (
                "Happy to help! Here's what you need to know:\n\n"
                "- The system is working as expected\n"
                "- Your configuration looks good\n"
                "- If you run into any issues, just ask\n\n"
                "Is there anything specific you'd like help with?"
            )

        return RoleResponse(
            thinking=phrases.pick([
                "Understanding the user's situation and finding a solution...",
                "Looking through known issues for a match...",
            ]),
            response=response,
        )
