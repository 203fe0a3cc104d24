"""Classify replies to meeting requests."""

import logging
import re
from typing import Optional

from agent_engine.core.agents.oracle import ask_oracle
from agent_engine.models.events import NormalizedEvent
from agent_engine.models.user import AgentUser
from agent_engine.models.workflow_state import ReplyVerdict
from agent_engine.utils.opik_wrapper import store_prompt

logger = logging.getLogger(__name__)

REPLY_PROMPT = """Analyze this email reply to a meeting request.

Original request: {request}
Reply from: {sender}
Reply subject: {subject}
Reply body: {body}

Determine if the meeting was accepted. Respond with only "ACCEPTED" or "DECLINED" or "UNCLEAR".
"""

_VERDICT_RE = re.compile(r"\b(ACCEPTED|DECLINED|UNCLEAR)\b")


def parse_reply_verdict(text: Optional[str]) -> ReplyVerdict:
    """First verdict word in the oracle text; UNCLEAR when there is none."""
    match = _VERDICT_RE.search((text or "").upper())
    if not match:
        return ReplyVerdict.UNCLEAR
    return ReplyVerdict(match.group(1))


class ReplyAnalyzer:
    """Ask the reasoning oracle whether a reply accepts a meeting."""

    def __init__(self, oracle):
        self.oracle = oracle

    async def analyze(
        self, user: AgentUser, request: str, event: NormalizedEvent
    ) -> ReplyVerdict:
        """Classify a reply.

        Args:
            user: Acting user
            request: Original request that produced the meeting email
            event: Reply event

        Returns:
            ReplyVerdict

        Raises:
            ReasoningError: If the oracle fails
        """
        prompt = REPLY_PROMPT.format(
            request=request,
            sender=event.sender or "unknown",
            subject=event.subject or "unknown",
            body=event.body or "unknown",
        )
        store_prompt(
            name="ReplyAnalyzer_reply_prompt",
            prompt=REPLY_PROMPT,
            metadata={"component": "ReplyAnalyzer"},
        )
        text = await ask_oracle(self.oracle, user, prompt)
        verdict = parse_reply_verdict(text)
        logger.info("Reply from %s classified as %s", event.sender, verdict.value)
        return verdict


__all__ = ["REPLY_PROMPT", "ReplyAnalyzer", "parse_reply_verdict"]
