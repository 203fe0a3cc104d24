"""Match inbound events to waiting tasks and resume them.

Each candidate task is checked with every strategy so that all verdicts can be
logged and reported, but a task is resumed as soon as any of the strong
strategies accepts it. The recency strategy is a last resort: it only applies
when no candidate matched on anything stronger.
"""

import logging
import re
import uuid
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional, Tuple, Union

from agent_engine.core.config import settings
from agent_engine.core.exceptions import NotWaitingError
from agent_engine.core.task_types import TaskStatus
from agent_engine.models.events import (
    EventCategory,
    MatchReport,
    NormalizedEvent,
    OutcomeStatus,
    ResumeOutcome,
)
from agent_engine.models.task import Task, ensure_utc, utcnow
from agent_engine.models.user import AgentUser
from agent_engine.services.task_lifecycle import TaskLifecycleManager

logger = logging.getLogger(__name__)

IDENTITY = "identity"
SENDER = "sender"
SUBJECT = "subject"
FUZZY_NAME = "fuzzy_name"
RECENCY = "recency"

STRATEGY_ORDER = (IDENTITY, SENDER, SUBJECT, FUZZY_NAME, RECENCY)

_ADDRESS_RE = re.compile(r"[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}")
_ANGLE_ADDRESS_RE = re.compile(r"<\s*([^<>\s]+@[^<>\s]+)\s*>")
_SUBJECT_KEYWORDS_RE = re.compile(r"\b(meeting|available|schedule|appointment)\b", re.I)

# Characters of body text on each side of an address searched for the name
BODY_WINDOW = 40


def normalize_address(value: Optional[str]) -> Optional[str]:
    """Strip the display name and lowercase: ``"Jane <J@x.com>"`` -> ``"j@x.com"``."""
    if not value:
        return None
    angle = _ANGLE_ADDRESS_RE.search(value)
    if angle:
        return angle.group(1).strip().lower()
    plain = _ADDRESS_RE.search(value)
    if plain:
        return plain.group(0).lower()
    return None


def identity_match(descriptor: Dict[str, Any], event: NormalizedEvent) -> bool:
    """Thread, CRM object or calendar event id is exactly equal."""
    for key in ("thread_id", "object_id", "event_id"):
        expected = descriptor.get(key)
        actual = getattr(event, key)
        if expected and actual and str(expected) == str(actual):
            return True
    return False


def sender_match(descriptor: Dict[str, Any], event: NormalizedEvent) -> bool:
    """Event sender is the recipient the task wrote to."""
    expected = descriptor.get("recipient_email")
    sender = event.sender
    if not expected or not sender:
        return False
    if expected.strip().lower() == sender.strip().lower():
        return True
    if expected.strip().lower() in sender.lower():
        return True
    normalized = normalize_address(expected)
    return normalized is not None and normalized == normalize_address(sender)


def _sender_conflicts(descriptor: Dict[str, Any], event: NormalizedEvent) -> bool:
    expected = normalize_address(descriptor.get("recipient_email"))
    actual = normalize_address(event.sender)
    return bool(expected and actual and expected != actual)


def subject_match(descriptor: Dict[str, Any], event: NormalizedEvent) -> bool:
    """Subject is a reply about a meeting or mentions the recipient.

    A known sender that differs from the recorded recipient overrides the
    subject, so a generic "Re: Meeting" from a stranger resumes nothing.
    """
    subject = (event.subject or "").strip()
    if not subject.lower().startswith("re:"):
        return False
    if _sender_conflicts(descriptor, event):
        return False
    if _SUBJECT_KEYWORDS_RE.search(subject):
        return True
    name = descriptor.get("recipient_name")
    return bool(name) and name.lower() in subject.lower()


def _name_tokens(name: Optional[str]) -> List[str]:
    return [token.lower() for token in re.split(r"\W+", name or "") if len(token) > 2]


def _body_windows(body: Optional[str]) -> List[str]:
    if not body:
        return []
    return [
        body[max(0, match.start() - BODY_WINDOW) : match.end() + BODY_WINDOW].lower()
        for match in _ADDRESS_RE.finditer(body)
    ]


def fuzzy_name_match(descriptor: Dict[str, Any], event: NormalizedEvent) -> bool:
    """A token of the recipient's name appears in the sender or near an address in the body."""
    tokens = _name_tokens(descriptor.get("recipient_name"))
    if not tokens:
        return False
    haystacks = [(event.sender or "").lower()] + _body_windows(event.body)
    return any(token in haystack for token in tokens for haystack in haystacks if haystack)


def recency_match(task: Task, now: datetime, window: timedelta) -> bool:
    """Task started waiting recently enough to be a plausible target."""
    created_at = ensure_utc(task.created_at)
    return created_at is not None and now - created_at <= window


def recency_eligible(descriptor: Dict[str, Any], event: NormalizedEvent) -> bool:
    """Recency may only stand in when the event carries no contradicting evidence."""
    if event.sender:
        return False
    for key in ("thread_id", "object_id", "event_id"):
        expected = descriptor.get(key)
        actual = getattr(event, key)
        if expected and actual and str(expected) != str(actual):
            return False
    return True


Strategy = Callable[[Dict[str, Any], NormalizedEvent], bool]

STRONG_STRATEGIES: List[Tuple[str, Strategy]] = [
    (IDENTITY, identity_match),
    (SENDER, sender_match),
    (SUBJECT, subject_match),
    (FUZZY_NAME, fuzzy_name_match),
]


class EventMatcher:
    """Resolve the waiting tasks an inbound event belongs to and resume them."""

    def __init__(
        self,
        lifecycle: TaskLifecycleManager,
        workflow_engine,
        recency_window: Optional[timedelta] = None,
    ):
        """Initialize the matcher.

        Args:
            lifecycle: Lifecycle manager used to load waiting tasks
            workflow_engine: Engine whose ``resume`` continues matched tasks
            recency_window: How recent a task must be for the recency fallback
        """
        self.lifecycle = lifecycle
        self.workflow_engine = workflow_engine
        self.recency_window = recency_window or timedelta(
            minutes=settings.RECENCY_MATCH_WINDOW_MINUTES
        )

    def evaluate(
        self, task: Task, event: NormalizedEvent, now: Optional[datetime] = None
    ) -> MatchReport:
        """Run every strategy against one candidate.

        ``matched_by`` is the first strong strategy that accepted the task;
        recency is reported but never sets it here.
        """
        descriptor = dict(task.waiting_for_data or {})
        verdicts: Dict[str, bool] = {}
        matched_by: Optional[str] = None
        for name, strategy in STRONG_STRATEGIES:
            verdicts[name] = strategy(descriptor, event)
            if verdicts[name] and matched_by is None:
                matched_by = name
        verdicts[RECENCY] = recency_match(task, now or utcnow(), self.recency_window)
        return MatchReport(task_id=str(task.id), verdicts=verdicts, matched_by=matched_by)

    async def match(
        self,
        user_id: Union[uuid.UUID, str],
        category: EventCategory,
        event: NormalizedEvent,
    ) -> List[Tuple[Task, MatchReport]]:
        """Find the waiting tasks the event should resume, newest first.

        Args:
            user_id: Owner of the candidate tasks
            category: Event category (selects the wait kind)
            event: Normalized event

        Returns:
            List of (task, report) pairs that matched
        """
        candidates = await self.lifecycle.waiting_tasks(
            user_id, category.waiting_for, newest_first=True
        )
        now = utcnow()
        evaluated = [(task, self.evaluate(task, event, now)) for task in candidates]

        for task, report in evaluated:
            logger.info(
                "Event %s vs task %s: %s",
                category.value,
                task.id,
                ", ".join(f"{name}={report.verdicts.get(name)}" for name in STRATEGY_ORDER),
            )

        matched = [(task, report) for task, report in evaluated if report.matched]
        if matched:
            return matched

        for task, report in evaluated:
            if report.verdicts[RECENCY] and recency_eligible(task.waiting_for_data or {}, event):
                report.matched_by = RECENCY
                logger.info("No strong match; falling back to most recent task %s", task.id)
                return [(task, report)]

        logger.info(
            "Event %s matched none of %s waiting tasks", category.value, len(candidates)
        )
        return []

    async def handle_event(
        self,
        user_id: Union[uuid.UUID, str],
        category: Union[EventCategory, str],
        event: NormalizedEvent,
    ) -> List[ResumeOutcome]:
        """Resume every waiting task the event matches.

        Failures are isolated per task. A task that was resumed by someone else
        in the meantime is skipped.

        Args:
            user_id: Owner of the candidate tasks
            category: Event category
            event: Normalized event

        Returns:
            One outcome per resumed (or failed) task
        """
        category = EventCategory(category)
        user = AgentUser(id=uuid.UUID(str(user_id)))
        matches = await self.match(user.id, category, event)

        outcomes: List[ResumeOutcome] = []
        for task, report in matches:
            try:
                result = await self.workflow_engine.resume(task, category, event, user)
            except NotWaitingError as e:
                logger.info("Task %s already resumed elsewhere: %s", task.id, e)
                continue
            except Exception as e:
                logger.exception("Resuming task %s failed", task.id)
                outcomes.append(
                    ResumeOutcome(
                        task_id=report.task_id,
                        status=OutcomeStatus.ERROR,
                        matched_by=report.matched_by,
                        verdicts=report.verdicts,
                        message=str(e),
                    )
                )
                continue

            if result.status == TaskStatus.WAITING_FOR_RESPONSE.value:
                status = OutcomeStatus.WAITING
            elif result.status == TaskStatus.FAILED.value:
                status = OutcomeStatus.ERROR
            else:
                status = OutcomeStatus.OK
            outcomes.append(
                ResumeOutcome(
                    task_id=report.task_id,
                    status=status,
                    matched_by=report.matched_by,
                    verdicts=report.verdicts,
                    message=result.failure_reason or result.message,
                )
            )

        logger.info(
            "Event %s for user %s resumed %s tasks", category.value, user.id, len(outcomes)
        )
        return outcomes


__all__ = [
    "EventMatcher",
    "STRATEGY_ORDER",
    "fuzzy_name_match",
    "identity_match",
    "normalize_address",
    "recency_eligible",
    "recency_match",
    "sender_match",
    "subject_match",
]
