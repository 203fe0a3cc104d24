"""Request classification data models."""

from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field


class RequestKind(str, Enum):
    """How a request should be handled."""

    SIMPLE = "SIMPLE"
    COMPLEX = "COMPLEX"
    CLARIFY = "CLARIFY"


class ActionKind(str, Enum):
    """Keyword family of a simple request."""

    EMAIL = "email"
    CALENDAR = "calendar"
    CRM = "crm"
    SEARCH = "search"
    UNKNOWN = "unknown"


class RequestClassification(BaseModel):
    """Result of classifying a user request."""

    kind: RequestKind = Field(..., description="Simple, complex or needs clarification")
    action_kind: ActionKind = Field(
        default=ActionKind.UNKNOWN, description="Tool family for simple requests"
    )
    description: Optional[str] = Field(
        default=None, description="Oracle description of a complex request"
    )
    questions: List[str] = Field(
        default_factory=list, description="Questions to ask the user when clarifying"
    )
    source: str = Field(default="oracle", description="'oracle' or 'heuristic'")


__all__ = ["RequestKind", "ActionKind", "RequestClassification"]
