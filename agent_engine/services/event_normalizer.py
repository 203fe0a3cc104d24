"""Turn provider webhook payloads into normalized events."""

import base64
import binascii
import json
import logging
from typing import Any, Callable, Dict, List, Tuple

from agent_engine.core.exceptions import ValidationError
from agent_engine.models.events import EventCategory, NormalizedEvent

logger = logging.getLogger(__name__)

NormalizedEvents = List[Tuple[EventCategory, NormalizedEvent]]

_HUBSPOT_OBJECT_TYPES = ("contact", "deal", "company", "ticket")


def _is_outgoing(labels: Any) -> bool:
    labels = set(labels or [])
    return "SENT" in labels and "INBOX" not in labels


def normalize_gmail(payload: Dict[str, Any]) -> NormalizedEvents:
    """Normalize a Gmail Pub/Sub push or the direct test format.

    Args:
        payload: Webhook body

    Returns:
        Zero or one email_reply events (outgoing mail yields none)

    Raises:
        ValidationError: If the payload is neither format or cannot be decoded
    """
    message = payload.get("message")
    if isinstance(message, dict) and "data" in message:
        try:
            decoded = base64.b64decode(message["data"], validate=True)
            data = json.loads(decoded)
        except (binascii.Error, ValueError, TypeError) as e:
            raise ValidationError(f"Invalid Gmail push data: {e}") from e
        if not isinstance(data, dict):
            raise ValidationError("Gmail push data is not an object")
        if _is_outgoing(data.get("labelIds")):
            logger.debug("Ignoring outgoing Gmail message %s", data.get("messageId"))
            return []
        event = NormalizedEvent(
            thread_id=data.get("threadId"),
            message_id=data.get("messageId"),
            sender=data.get("from"),
            subject=data.get("subject"),
            body=data.get("body"),
            raw=data,
        )
        return [(EventCategory.EMAIL_REPLY, event)]

    if any(key in payload for key in ("message_id", "thread_id", "from")):
        if _is_outgoing(payload.get("labels") or payload.get("labelIds")):
            logger.debug("Ignoring outgoing message %s", payload.get("message_id"))
            return []
        event = NormalizedEvent(
            thread_id=payload.get("thread_id"),
            message_id=payload.get("message_id"),
            sender=payload.get("from"),
            subject=payload.get("subject"),
            body=payload.get("body"),
            raw=payload,
        )
        return [(EventCategory.EMAIL_REPLY, event)]

    raise ValidationError("Unrecognized Gmail webhook format")


def normalize_calendar(payload: Dict[str, Any]) -> NormalizedEvents:
    """Normalize a Google Calendar push payload.

    ``sync`` notifications only confirm the channel and yield no event.
    """
    if "resourceId" not in payload or "resourceState" not in payload:
        raise ValidationError("Calendar webhook requires resourceId and resourceState")
    if payload["resourceState"] == "sync":
        return []

    attendees = payload.get("attendees") or []
    if not isinstance(attendees, list):
        attendees = []
    responses = [
        {
            "email": attendee.get("email"),
            "response_status": attendee.get("responseStatus"),
            "display_name": attendee.get("displayName"),
        }
        for attendee in attendees
        if isinstance(attendee, dict)
    ]

    if "attendeeResponse" in payload or responses:
        event_type = "attendee_response"
    elif payload.get("eventStatus") == "cancelled":
        event_type = "event_cancelled"
    elif payload["resourceState"] == "updated":
        event_type = "event_updated"
    else:
        event_type = str(payload["resourceState"])

    event = NormalizedEvent(
        event_id=payload.get("eventId"),
        object_id=payload.get("resourceId"),
        object_type="calendar_event",
        event_type=event_type,
        attendee_responses=responses,
        raw=payload,
    )
    return [(EventCategory.CALENDAR_RESPONSE, event)]


def _hubspot_event(item: Dict[str, Any]) -> Tuple[EventCategory, NormalizedEvent]:
    if "subscriptionType" not in item or "eventId" not in item:
        raise ValidationError("HubSpot webhook requires subscriptionType and eventId")
    subscription_type = str(item["subscriptionType"])
    prefix = subscription_type.split(".", 1)[0]
    object_id = item.get("objectId")
    event = NormalizedEvent(
        event_id=str(item["eventId"]),
        object_id=str(object_id) if object_id is not None else None,
        object_type=prefix if prefix in _HUBSPOT_OBJECT_TYPES else "unknown",
        event_type=subscription_type,
        raw=item,
    )
    return EventCategory.WEBHOOK_EVENT, event


def normalize_hubspot(payload: Any) -> NormalizedEvents:
    """Normalize HubSpot subscription events (a single event or a batch)."""
    items = payload if isinstance(payload, list) else [payload]
    if not items or not all(isinstance(item, dict) for item in items):
        raise ValidationError("HubSpot webhook must be an event object or a list of them")
    return [_hubspot_event(item) for item in items]


NORMALIZERS: Dict[str, Callable[[Any], NormalizedEvents]] = {
    "gmail": normalize_gmail,
    "calendar": normalize_calendar,
    "hubspot": normalize_hubspot,
}


def normalize(source: str, payload: Any) -> NormalizedEvents:
    """Normalize a payload from the named webhook source.

    Raises:
        ValidationError: If the source is unknown or the payload is malformed
    """
    normalizer = NORMALIZERS.get(source)
    if normalizer is None:
        raise ValidationError(f"Unknown webhook source '{source}'")
    if source != "hubspot" and not isinstance(payload, dict):
        raise ValidationError(f"{source} webhook payload must be an object")
    return normalizer(payload)


__all__ = [
    "NORMALIZERS",
    "normalize",
    "normalize_calendar",
    "normalize_gmail",
    "normalize_hubspot",
]
