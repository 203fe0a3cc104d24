import base64
import json

import pytest

from agent_engine.core.exceptions import ValidationError
from agent_engine.models.events import EventCategory
from agent_engine.services.event_normalizer import normalize


def _pubsub(data):
    encoded = base64.b64encode(json.dumps(data).encode()).decode()
    return {"message": {"data": encoded, "messageId": "pubsub-1"}, "subscription": "s"}


def test_gmail_pubsub_push():
    events = normalize(
        "gmail",
        _pubsub(
            {
                "messageId": "M-2",
                "threadId": "T-1",
                "from": "Jane <jane@x.com>",
                "subject": "Re: Meeting Request",
                "body": "Yes, works for me",
                "labelIds": ["INBOX", "UNREAD"],
            }
        ),
    )

    assert len(events) == 1
    category, event = events[0]
    assert category == EventCategory.EMAIL_REPLY
    assert event.thread_id == "T-1"
    assert event.sender == "Jane <jane@x.com>"
    assert event.as_event_data()["from"] == "Jane <jane@x.com>"
    assert "raw" not in event.as_event_data()


def test_gmail_direct_format():
    [(category, event)] = normalize(
        "gmail", {"thread_id": "T-9", "from": "bob@y.com", "subject": "hi"}
    )

    assert category == EventCategory.EMAIL_REPLY
    assert event.thread_id == "T-9"


def test_gmail_outgoing_mail_is_ignored():
    assert normalize("gmail", _pubsub({"messageId": "M-1", "labelIds": ["SENT"]})) == []


@pytest.mark.parametrize(
    "payload",
    [
        {"message": {"data": "not base64!!"}},
        {"message": {"data": base64.b64encode(b"[1, 2]").decode()}},
        {"hello": "world"},
    ],
)
def test_gmail_malformed(payload):
    with pytest.raises(ValidationError):
        normalize("gmail", payload)


def test_calendar_sync_yields_nothing():
    assert normalize("calendar", {"resourceId": "r", "resourceState": "sync"}) == []


def test_calendar_attendee_response():
    [(category, event)] = normalize(
        "calendar",
        {
            "resourceId": "res-1",
            "resourceState": "exists",
            "eventId": "evt-1",
            "attendees": [{"email": "jane@x.com", "responseStatus": "accepted"}],
        },
    )

    assert category == EventCategory.CALENDAR_RESPONSE
    assert event.event_id == "evt-1"
    assert event.event_type == "attendee_response"
    assert event.attendee_responses[0]["response_status"] == "accepted"


def test_calendar_requires_resource_fields():
    with pytest.raises(ValidationError):
        normalize("calendar", {"resourceId": "r"})


def test_hubspot_batch():
    events = normalize(
        "hubspot",
        [
            {"subscriptionType": "deal.propertyChange", "eventId": 1, "objectId": 42},
            {"subscriptionType": "contact.creation", "eventId": 2, "objectId": 7},
        ],
    )

    assert [e.object_id for _, e in events] == ["42", "7"]
    assert [e.object_type for _, e in events] == ["deal", "contact"]
    assert all(category == EventCategory.WEBHOOK_EVENT for category, _ in events)


def test_hubspot_requires_event_id():
    with pytest.raises(ValidationError):
        normalize("hubspot", {"subscriptionType": "deal.creation"})


def test_unknown_source():
    with pytest.raises(ValidationError):
        normalize("slack", {})
