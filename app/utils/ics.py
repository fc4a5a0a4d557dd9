"""
Minimal iCalendar (RFC 5545) writer for event invitations.
"""

from datetime import UTC, datetime, timedelta

from app.models.domain.entity import utcnow

PRODID = "-//Convo//convo.events//EN"
EVENT_DURATION = timedelta(hours=1)
MAX_LINE_OCTETS = 75


def _format_utc(value: datetime) -> str:
    return value.astimezone(UTC).strftime("%Y%m%dT%H%M%SZ")


def escape_text(value: str) -> str:
    return (
        (value or "")
        .replace("\\", "\\\\")
        .replace(";", "\\;")
        .replace(",", "\\,")
        .replace("\r\n", "\\n")
        .replace("\n", "\\n")
    )


def fold_line(line: str) -> str:
    """Split a content line into 75-octet chunks joined by CRLF + space."""
    encoded = line.encode("utf-8")
    if len(encoded) <= MAX_LINE_OCTETS:
        return line

    chunks = []
    current = ""
    limit = MAX_LINE_OCTETS
    for char in line:
        if len((current + char).encode("utf-8")) > limit:
            chunks.append(current)
            current = char
            # Continuation lines start with a space that counts toward the limit
            limit = MAX_LINE_OCTETS - 1
        else:
            current += char
    chunks.append(current)
    return "\r\n ".join(chunks)


def build_event_ics(event) -> str:
    owner_name = event.owner.full_name if event.owner else ""
    organizer_cn = escape_text(owner_name).replace('"', "'")
    start = event.timestamp

    lines = [
        "BEGIN:VCALENDAR",
        "VERSION:2.0",
        f"PRODID:{PRODID}",
        "METHOD:REQUEST",
        "BEGIN:VEVENT",
        f"UID:{event.id}",
        f"DTSTAMP:{_format_utc(utcnow())}",
        f"CREATED:{_format_utc(event.created_at)}",
        f"DTSTART:{_format_utc(start)}",
        f"DTEND:{_format_utc(start + EVENT_DURATION)}",
        f"SUMMARY:{escape_text(event.name)}",
        f"LOCATION:{escape_text(event.address)}",
        f"DESCRIPTION:{escape_text(event.description)}",
        f'ORGANIZER;CN="{organizer_cn}":mailto:{event.get_email()}',
        "END:VEVENT",
        "END:VCALENDAR",
    ]
    return "\r\n".join(fold_line(line) for line in lines) + "\r\n"
