"""Proactive rule database model."""

import uuid
from enum import Enum
from typing import Any, Dict

from sqlalchemy import Boolean, Column, DateTime, Index, String, Text, Uuid

from agent_engine.db.session import Base
from agent_engine.models.task import JSONType, utcnow


class RuleTrigger(str, Enum):
    """Kind of inbound event a rule reacts to."""

    EMAIL_RECEIVED = "email_received"
    CALENDAR_EVENT = "calendar_event"
    HUBSPOT_CONTACT_CREATED = "hubspot_contact_created"
    HUBSPOT_CONTACT_UPDATED = "hubspot_contact_updated"
    HUBSPOT_NOTE_CREATED = "hubspot_note_created"


class RuleAction(str, Enum):
    """Action a rule can run, keyed in ``ProactiveRule.actions``."""

    SEND_EMAIL = "send_email"
    CREATE_CALENDAR_EVENT = "create_calendar_event"
    CREATE_HUBSPOT_CONTACT = "create_hubspot_contact"
    CREATE_HUBSPOT_NOTE = "create_hubspot_note"
    SEND_NOTIFICATION = "send_notification"


class ProactiveRule(Base):
    """A user's standing instruction: when an event matches, run these actions."""

    __tablename__ = "proactive_rules"
    __table_args__ = (
        Index("ix_proactive_rules_user_trigger", "user_id", "trigger_type", "is_active"),
    )

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id = Column(Uuid(as_uuid=True), nullable=False, index=True)

    name = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    trigger_type = Column(String(50), nullable=False)
    # Dotted event path -> expected value ("contains:..." / "regex:..." prefixes allowed)
    trigger_conditions = Column(JSONType, nullable=False, default=dict)
    # Action name -> action config; strings may hold {{event.path}} placeholders
    actions = Column(JSONType, nullable=False, default=dict)
    is_active = Column(Boolean, nullable=False, default=False)

    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    def to_dict(self) -> Dict[str, Any]:
        """Serialize the rule for API responses."""
        return {
            "id": str(self.id),
            "user_id": str(self.user_id),
            "name": self.name,
            "description": self.description,
            "trigger_type": self.trigger_type,
            "trigger_conditions": dict(self.trigger_conditions or {}),
            "actions": dict(self.actions or {}),
            "is_active": bool(self.is_active),
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }


__all__ = ["ProactiveRule", "RuleAction", "RuleTrigger"]
