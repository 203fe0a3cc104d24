import uuid
from unittest.mock import MagicMock

import pytest

from agent_engine.core.exceptions import ValidationError
from agent_engine.models.events import EventCategory, NormalizedEvent
from agent_engine.models.rule import RuleAction, RuleTrigger
from agent_engine.services.rule_engine import (
    RuleEngine,
    condition_matches,
    event_data_for,
    interpolate,
    lookup,
    rule_matches,
    tool_call_for,
    trigger_for,
)

EMAIL = {
    "from": "Jane <jane@x.com>",
    "subject": "Invoice 42 overdue",
    "body": "Please pay",
    "raw": {"labelIds": ["INBOX"], "headers": {"priority": "high"}},
}


def test_lookup_follows_dotted_paths():
    assert lookup(EMAIL, "subject") == "Invoice 42 overdue"
    assert lookup(EMAIL, "raw.headers.priority") == "high"
    assert lookup(EMAIL, "raw.headers.missing") is None
    assert lookup(EMAIL, "subject.length") is None


def test_condition_matches():
    assert condition_matches("Invoice 42", "Invoice 42")
    assert not condition_matches("invoice 42", "Invoice 42")
    assert condition_matches("Invoice 42 overdue", "contains:OVERDUE")
    assert not condition_matches("Invoice 42", "contains:paid")
    assert condition_matches("Invoice 42", r"regex:Invoice \d+")
    assert not condition_matches("Invoice", r"regex:\d+")
    assert condition_matches(3, 3)
    assert not condition_matches(3, 4)
    assert not condition_matches(None, "anything")


def test_invalid_regex_condition_does_not_match():
    assert not condition_matches("Invoice 42", "regex:(unclosed")


def test_rule_matches_requires_every_condition():
    assert rule_matches({}, EMAIL)
    assert rule_matches(None, EMAIL)
    assert rule_matches({"subject": "contains:invoice", "from": "contains:jane@x.com"}, EMAIL)
    assert not rule_matches({"subject": "contains:invoice", "from": "contains:bob"}, EMAIL)
    assert not rule_matches({"cc": "contains:jane"}, EMAIL)


def test_interpolate_replaces_known_paths():
    config = {
        "to": ["{{from}}"],
        "subject": "Re: {{ subject }}",
        "body": "Priority {{raw.headers.priority}}, ref {{unknown.path}}",
        "count": 2,
    }

    assert interpolate(config, EMAIL) == {
        "to": ["Jane <jane@x.com>"],
        "subject": "Re: Invoice 42 overdue",
        "body": "Priority high, ref {{unknown.path}}",
        "count": 2,
    }


def test_trigger_for_event_categories():
    assert trigger_for(EventCategory.EMAIL_REPLY, NormalizedEvent()) == RuleTrigger.EMAIL_RECEIVED
    assert trigger_for("calendar_response", NormalizedEvent()) == RuleTrigger.CALENDAR_EVENT
    assert (
        trigger_for(EventCategory.WEBHOOK_EVENT, NormalizedEvent(event_type="contact.creation"))
        == RuleTrigger.HUBSPOT_CONTACT_CREATED
    )
    assert (
        trigger_for(
            EventCategory.WEBHOOK_EVENT, NormalizedEvent(event_type="contact.propertyChange")
        )
        == RuleTrigger.HUBSPOT_CONTACT_UPDATED
    )
    assert (
        trigger_for(EventCategory.WEBHOOK_EVENT, NormalizedEvent(event_type="engagement.creation"))
        == RuleTrigger.HUBSPOT_NOTE_CREATED
    )
    assert trigger_for(EventCategory.WEBHOOK_EVENT, NormalizedEvent(event_type="deal.creation")) is None
    assert trigger_for(EventCategory.WEBHOOK_EVENT, NormalizedEvent()) is None


def test_event_data_keeps_raw_payload():
    event = NormalizedEvent(sender="jane@x.com", subject="Hi", raw={"threadId": "T-1"})

    data = event_data_for(event)

    assert data["from"] == "jane@x.com"
    assert data["subject"] == "Hi"
    assert data["raw"] == {"threadId": "T-1"}


def test_tool_call_for_actions():
    assert tool_call_for(RuleAction.SEND_EMAIL, {"to": "jane@x.com", "subject": "Hi"}) == (
        "email_send",
        {"to": ["jane@x.com"], "subject": "Hi", "body": ""},
    )
    assert tool_call_for(
        RuleAction.CREATE_HUBSPOT_CONTACT, {"properties": {"email": "jane@x.com"}}
    ) == ("hubspot_upsert_contact", {"email": "jane@x.com", "properties": {"email": "jane@x.com"}})
    assert tool_call_for(
        RuleAction.CREATE_HUBSPOT_NOTE, {"contact_email": "jane@x.com", "content": "Called"}
    ) == ("hubspot_create_note", {"contact_email": "jane@x.com", "content": "Called"})

    name, args = tool_call_for(
        RuleAction.CREATE_CALENDAR_EVENT, {"title": "Sync", "start_time": "2026-10-20T16:00"}
    )
    assert name == "calendar_create_event"
    assert args == {
        "title": "Sync",
        "start_time": "2026-10-20T16:00",
        "attendees": [],
        "description": "",
    }

    with pytest.raises(ValueError):
        tool_call_for(RuleAction.SEND_NOTIFICATION, {"message": "hi"})


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "kwargs,message",
    [
        ({"name": " ", "trigger_type": "email_received"}, "name is required"),
        ({"name": "r", "trigger_type": "sms_received"}, "Invalid trigger_type"),
        ({"name": "r", "trigger_type": "email_received", "actions": {}}, "at least one action"),
        (
            {"name": "r", "trigger_type": "email_received", "actions": {"fax": {}}},
            "Invalid action 'fax'",
        ),
        (
            {"name": "r", "trigger_type": "email_received", "actions": {"send_email": "x"}},
            "must be an object",
        ),
        (
            {
                "name": "r",
                "trigger_type": "email_received",
                "trigger_conditions": ["subject"],
            },
            "trigger_conditions must be an object",
        ),
    ],
)
async def test_create_rule_validation(kwargs, message):
    session_maker = MagicMock()
    engine = RuleEngine(session_maker, MagicMock())
    kwargs.setdefault("actions", {"send_notification": {"message": "hi"}})

    with pytest.raises(ValidationError, match=message):
        await engine.create_rule(uuid.uuid4(), **kwargs)
    session_maker.assert_not_called()
