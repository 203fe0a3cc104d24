"""Inbound event data models."""

from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from agent_engine.core.task_types import WaitingFor


class EventCategory(str, Enum):
    """Category of a normalized inbound event."""

    EMAIL_REPLY = "email_reply"
    CALENDAR_RESPONSE = "calendar_response"
    WEBHOOK_EVENT = "webhook_event"

    @property
    def waiting_for(self) -> WaitingFor:
        """Wait kind a task must have to be resumed by this category."""
        return WaitingFor(self.value)


class NormalizedEvent(BaseModel):
    """Fields an upstream normalizer could extract from a webhook payload."""

    model_config = ConfigDict(populate_by_name=True)

    thread_id: Optional[str] = None
    message_id: Optional[str] = None
    sender: Optional[str] = Field(default=None, alias="from")
    subject: Optional[str] = None
    body: Optional[str] = None
    object_id: Optional[str] = None
    object_type: Optional[str] = None
    event_id: Optional[str] = None
    event_type: Optional[str] = None
    attendee_responses: List[Dict[str, Any]] = Field(default_factory=list)
    raw: Dict[str, Any] = Field(default_factory=dict, description="Untouched source payload")

    def as_event_data(self) -> Dict[str, Any]:
        """Dict form merged into a resumed task's workflow state."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True, exclude={"raw"})


class OutcomeStatus(str, Enum):
    """Result of resuming one matched task."""

    OK = "ok"
    WAITING = "waiting"
    ERROR = "error"


class MatchReport(BaseModel):
    """Every strategy verdict for one candidate task."""

    task_id: str
    verdicts: Dict[str, bool] = Field(default_factory=dict)
    matched_by: Optional[str] = None

    @property
    def matched(self) -> bool:
        return self.matched_by is not None


class ResumeOutcome(BaseModel):
    """Per-task outcome of handling an inbound event."""

    task_id: str
    status: OutcomeStatus
    matched_by: str
    verdicts: Dict[str, bool] = Field(default_factory=dict)
    message: Optional[str] = None


__all__ = [
    "EventCategory",
    "NormalizedEvent",
    "OutcomeStatus",
    "MatchReport",
    "ResumeOutcome",
]
