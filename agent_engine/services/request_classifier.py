"""Request classification: simple, complex or needs clarification."""

import logging
import re
from typing import List, Optional

from agent_engine.core.agents.oracle import ask_oracle
from agent_engine.core.exceptions import ReasoningError
from agent_engine.core.task_types import TaskType
from agent_engine.models.classification import (
    ActionKind,
    RequestClassification,
    RequestKind,
)
from agent_engine.models.user import AgentUser
from agent_engine.services.meeting_details import is_meeting_request
from agent_engine.utils.opik_wrapper import store_prompt

logger = logging.getLogger(__name__)

CLASSIFY_PROMPT = """You are routing a user's request to an assistant that can send email, manage a calendar and update a CRM.

Decide whether the request is:
- SIMPLE: it can be done with a single action right now
- COMPLEX: it needs several ordered actions, or has to wait for someone else before continuing
- CLARIFY: it is too ambiguous to act on

Respond with exactly one line in one of these forms and nothing else:
SIMPLE:<email|calendar|crm|search|unknown>
COMPLEX:<one sentence describing the workflow>
CLARIFY:<question>; <question>

User request:
{request}
"""

# Sequencing connectives that imply more than one round-trip
_COMPLEX_PATTERNS = [
    re.compile(r"\band then\b", re.I),
    re.compile(r"\bafter\b", re.I),
    re.compile(r"\bonce\b", re.I),
    re.compile(r"\bwait(?:ing)? for\b", re.I),
    re.compile(r"\bfollow[- ]?up\b", re.I),
    re.compile(r"\bif\b.*\b(accepts?|confirms?|agrees?|available|free|repl(?:y|ies))\b", re.I),
]

_ACTION_KEYWORDS = [
    (ActionKind.CRM, re.compile(r"\b(hubspot|crm|deal|lead|contact record)\b", re.I)),
    (ActionKind.EMAIL, re.compile(r"\b(e-?mail|mail|inbox|reply|message)\b", re.I)),
    (
        ActionKind.CALENDAR,
        re.compile(r"\b(calendar|meeting|schedule|appointment|event|invite)\b", re.I),
    ),
    (ActionKind.SEARCH, re.compile(r"\b(search|find|look ?up|who is|what is)\b", re.I)),
]

_CLASSIFICATION_LINE_RE = re.compile(r"^\s*\**\s*(SIMPLE|COMPLEX|CLARIFY)\s*\**\s*:\s*(.*)$", re.I)


def action_kind_for(text: str) -> ActionKind:
    """Keyword family of a request, or UNKNOWN."""
    for kind, pattern in _ACTION_KEYWORDS:
        if pattern.search(text or ""):
            return kind
    return ActionKind.UNKNOWN


def is_sequenced(request: str) -> bool:
    """Whether the request contains a sequencing connective."""
    return any(pattern.search(request or "") for pattern in _COMPLEX_PATTERNS)


def heuristic_classification(request: str) -> RequestClassification:
    """Classify without the oracle. Always returns a classification."""
    if is_sequenced(request):
        return RequestClassification(
            kind=RequestKind.COMPLEX,
            action_kind=action_kind_for(request),
            description=request,
            source="heuristic",
        )
    return RequestClassification(
        kind=RequestKind.SIMPLE,
        action_kind=action_kind_for(request),
        source="heuristic",
    )


def _parse_action_kind(value: str) -> ActionKind:
    word = value.strip().split()[0].lower() if value.strip() else ""
    aliases = {"hubspot": ActionKind.CRM, "mail": ActionKind.EMAIL, "e-mail": ActionKind.EMAIL}
    if word in aliases:
        return aliases[word]
    try:
        return ActionKind(word)
    except ValueError:
        return action_kind_for(value)


def _split_questions(value: str) -> List[str]:
    parts = re.split(r"[;\n]|(?<=\?)\s+", value)
    return [part.strip() for part in parts if part.strip()]


def parse_classification(text: Optional[str]) -> Optional[RequestClassification]:
    """Parse oracle output such as ``COMPLEX: send an email then wait``.

    Args:
        text: Raw oracle response

    Returns:
        RequestClassification, or None when no classification line was found
    """
    if not text:
        return None
    for line in text.splitlines():
        match = _CLASSIFICATION_LINE_RE.match(line)
        if not match:
            continue
        kind = RequestKind(match.group(1).upper())
        value = match.group(2).strip()
        if kind == RequestKind.SIMPLE:
            return RequestClassification(kind=kind, action_kind=_parse_action_kind(value))
        if kind == RequestKind.COMPLEX:
            return RequestClassification(
                kind=kind, action_kind=action_kind_for(value), description=value or None
            )
        questions = _split_questions(value)
        if not questions:
            return None
        return RequestClassification(kind=kind, questions=questions)
    return None


def infer_task_type(request: str) -> TaskType:
    """Pick the task type for a complex request."""
    has_email = bool(re.search(r"\b(e-?mail|mail|send .*message|write to)\b", request or "", re.I))
    if has_email and is_meeting_request(request):
        return TaskType.EMAIL_CALENDAR_WORKFLOW
    if has_email:
        return TaskType.EMAIL_WORKFLOW
    if action_kind_for(request) == ActionKind.CALENDAR:
        return TaskType.CALENDAR_WORKFLOW
    if action_kind_for(request) == ActionKind.CRM:
        return TaskType.HUBSPOT_WORKFLOW
    return TaskType.MULTI_STEP_ACTION


class RequestClassifier:
    """Classify requests with the reasoning oracle, falling back to keywords."""

    def __init__(self, oracle):
        """Initialize the classifier.

        Args:
            oracle: Reasoning oracle with ``complete(user, prompt, tools_enabled)``
        """
        self.oracle = oracle

    async def classify(self, user: AgentUser, request: str) -> RequestClassification:
        """Classify a request. Never raises for oracle problems.

        Args:
            user: Acting user
            request: Raw request text

        Returns:
            RequestClassification from the oracle, or the heuristic one
        """
        prompt = CLASSIFY_PROMPT.format(request=request)
        store_prompt(
            name="RequestClassifier_classify_prompt",
            prompt=CLASSIFY_PROMPT,
            metadata={"component": "RequestClassifier"},
        )
        try:
            text = await ask_oracle(self.oracle, user, prompt)
        except ReasoningError as e:
            logger.warning("Classification oracle failed, using heuristic: %s", e)
            return heuristic_classification(request)

        classification = parse_classification(text)
        if classification is None:
            logger.warning("Unparseable classification %r, using heuristic", text)
            return heuristic_classification(request)

        logger.info(
            "Classified request as %s (%s)",
            classification.kind.value,
            classification.action_kind.value,
        )
        return classification


__all__ = [
    "CLASSIFY_PROMPT",
    "RequestClassifier",
    "action_kind_for",
    "heuristic_classification",
    "infer_task_type",
    "is_sequenced",
    "parse_classification",
]
