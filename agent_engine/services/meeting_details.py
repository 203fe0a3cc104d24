"""Details extracted from meeting-style requests.

Pure text helpers used by the workflow engine to fill the email workflow state
and to build calendar arguments when a meeting request is accepted.
"""

import re
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, Tuple

# Names are capitalized words; the verb before them may be any case
_RECIPIENT_PATTERNS = [
    re.compile(
        r"(?i:\bemail|\bsend.*?\bto|\bto|\bwith)\s+([A-Z][a-z]+\s+[A-Z][a-z]+)"
        r"(?=\s+(?i:asking|about|telling|regarding|and|if)\b)"
    ),
    re.compile(r"(?i:\bemail|\bsend.*?\bto|\bto|\bwith)\s+([A-Z][a-z]+\s+[A-Z][a-z]+)\b"),
    re.compile(
        r"(?i:\bemail|\bsend.*?\bto|\bto|\bwith)\s+([A-Z][a-z]+)"
        r"(?=\s+(?i:asking|about|telling|regarding|and|if)\b)"
    ),
    re.compile(r"(?i:\bemail|\bsend.*?\bto|\bto|\bwith)\s+([A-Z][a-z]+)\b"),
]

_TIME_MENTION_PATTERNS = [
    re.compile(r"\btomorrow\s+(?:at\s+|from\s+)?\d{1,2}(?::\d{2})?\s*-\s*\d{1,2}(?::\d{2})?\s*[ap]m", re.I),
    re.compile(r"\btomorrow\s+(?:at\s+)?\d{1,2}(?::\d{2})?\s*[ap]m", re.I),
    re.compile(r"\b\d{1,2}\s*-\s*\d{1,2}\s*[ap]m", re.I),
    re.compile(r"\b\d{1,2}:\d{2}\s*[ap]m", re.I),
    re.compile(r"\b\d{1,2}\s*[ap]m", re.I),
]

_RANGE_RE = re.compile(r"(\d{1,2})\s*-\s*(\d{1,2})\s*([ap]m)", re.I)
_HOUR_MINUTE_RE = re.compile(r"(\d{1,2}):(\d{2})\s*([ap]m)", re.I)
_HOUR_RE = re.compile(r"(\d{1,2})\s*([ap]m)", re.I)

_EMAIL_ADDRESS_RE = re.compile(r"[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}")

_REPLY_EXPECTED_RE = re.compile(
    r"\b(reply|respond|response|answer|confirm|if|availability|available|free)\b", re.I
)

_MEETING_RE = re.compile(
    r"\b(meeting|meet|appointment|call|conference|discussion|calendar|schedule|"
    r"available|availability|free)\b",
    re.I,
)

DEFAULT_START_HOUR = 16
DEFAULT_DURATION = timedelta(hours=1)


def extract_recipient_name(request: str) -> Optional[str]:
    """Find the person a request is addressed to ("email Jane Doe asking ...")."""
    for pattern in _RECIPIENT_PATTERNS:
        match = pattern.search(request or "")
        if match:
            return match.group(1).strip()
    return None


def extract_time_mentioned(text: str) -> Optional[str]:
    """Return the meeting time phrase in the text, e.g. ``"tomorrow 4-5pm"``."""
    for pattern in _TIME_MENTION_PATTERNS:
        match = pattern.search(text or "")
        if match:
            return " ".join(match.group(0).split())
    return None


def extract_email_address(text: str) -> Optional[str]:
    """First email address in the text."""
    match = _EMAIL_ADDRESS_RE.search(text or "")
    return match.group(0) if match else None


def needs_reply(request: str) -> bool:
    """Whether the request asks the recipient to answer."""
    return bool(_REPLY_EXPECTED_RE.search(request or ""))


def is_meeting_request(request: str) -> bool:
    """Whether the request is about arranging a meeting."""
    return bool(_MEETING_RE.search(request or "")) or extract_time_mentioned(request) is not None


def _to_24h(hour: int, period: str) -> int:
    period = period.lower()
    if period == "pm" and hour != 12:
        return hour + 12
    if period == "am" and hour == 12:
        return 0
    return hour


def parse_meeting_time(
    time_mentioned: Optional[str], now: Optional[datetime] = None
) -> Tuple[str, str]:
    """Turn a time phrase into tomorrow's start and end timestamps.

    Supports ranges (``4-5pm``), exact times (``4:30pm``) and bare hours
    (``4pm``). Anything else falls back to 16:00-17:00. All times are UTC.

    Args:
        time_mentioned: Phrase such as "tomorrow 4-5pm"
        now: Reference time (defaults to the current time)

    Returns:
        Tuple of ISO-8601 start and end timestamps
    """
    now = now or datetime.now(timezone.utc)
    tomorrow = (now + timedelta(days=1)).replace(
        hour=0, minute=0, second=0, microsecond=0
    )
    text = time_mentioned or ""

    start: Optional[datetime] = None
    end: Optional[datetime] = None

    range_match = _RANGE_RE.search(text)
    hour_minute_match = _HOUR_MINUTE_RE.search(text)
    hour_match = _HOUR_RE.search(text)

    if range_match:
        start_hour, end_hour, period = range_match.groups()
        start = tomorrow + timedelta(hours=_to_24h(int(start_hour), period))
        end = tomorrow + timedelta(hours=_to_24h(int(end_hour), period))
    elif hour_minute_match:
        hour, minute, period = hour_minute_match.groups()
        start = tomorrow + timedelta(hours=_to_24h(int(hour), period), minutes=int(minute))
    elif hour_match:
        hour, period = hour_match.groups()
        start = tomorrow + timedelta(hours=_to_24h(int(hour), period))

    if start is None or start.day != tomorrow.day:
        start = tomorrow + timedelta(hours=DEFAULT_START_HOUR)
        end = None
    if end is None or end <= start:
        end = start + DEFAULT_DURATION

    return start.isoformat(), end.isoformat()


def calendar_event_args(
    recipient_name: Optional[str],
    recipient_email: Optional[str],
    time_mentioned: Optional[str],
    now: Optional[datetime] = None,
) -> Dict[str, Any]:
    """Default arguments for creating the meeting once it has been accepted."""
    start_time, end_time = parse_meeting_time(time_mentioned, now=now)
    attendees: List[str] = [recipient_email] if recipient_email else []
    return {
        "title": f"Meeting with {recipient_name}" if recipient_name else "Meeting",
        "start_time": start_time,
        "end_time": end_time,
        "attendees": attendees,
        "description": "Meeting scheduled via email workflow",
    }


__all__ = [
    "extract_recipient_name",
    "extract_time_mentioned",
    "extract_email_address",
    "needs_reply",
    "is_meeting_request",
    "parse_meeting_time",
    "calendar_event_args",
]
