"""
ICS Generator for creating iCalendar (.ics) files.
Generates RFC5545-compliant calendars from ParsedEvents, one VEVENT per event.
"""

import hashlib
import re
from datetime import date, datetime, timedelta
from pathlib import Path
from typing import Iterable, List, Optional

from dateutil import tz as dateutil_tz

from snapplan.event_models import ParsedEvent
from snapplan.logging_helper import Log
from snapplan.timezone_projector import DEFAULT_TIMEZONE, is_valid_timezone, to_local_components

PRODUCT_ID = "-//SnapPlan//SnapPlan//EN"
CALENDAR_NAME = "SnapPlan"
MAX_LINE_OCTETS = 75


def _escape_ical_text(text: Optional[str]) -> str:
    """
    Escape text for iCalendar format (RFC5545).
    Escapes commas, semicolons, backslashes, and newlines.

    Args:
        text: Text to escape

    Returns:
        Escaped text safe for iCalendar
    """
    if text is None:
        return ""

    # Replace backslashes first (before other replacements)
    text = text.replace('\\', '\\\\')
    text = text.replace(';', '\\;')
    text = text.replace(',', '\\,')
    text = text.replace('\r\n', '\n').replace('\r', '\n')
    text = text.replace('\n', '\\n')
    return text


def _fold_line(line: str) -> str:
    """
    Fold a content line to at most 75 octets per physical line.
    Continuation lines start with a single space, which counts toward the limit.
    """
    if len(line.encode('utf-8')) <= MAX_LINE_OCTETS:
        return line

    lines = []
    current_line = ""
    for char in line:
        test_line = current_line + char
        if len(test_line.encode('utf-8')) <= MAX_LINE_OCTETS:
            current_line = test_line
        else:
            # never split a multi-byte character
            lines.append(current_line)
            current_line = " " + char
    if current_line:
        lines.append(current_line)
    return '\r\n'.join(lines)


def _format_ical_datetime(dt: datetime) -> str:
    """
    Format datetime to iCalendar format (UTC).

    Args:
        dt: aware datetime

    Returns:
        Formatted datetime string (YYYYMMDDTHHMMSSZ)
    """
    return dt.astimezone(dateutil_tz.tzutc()).strftime('%Y%m%dT%H%M%SZ')


def _format_ical_date(day: date) -> str:
    return day.strftime('%Y%m%d')


def _event_timezone(event: ParsedEvent, default_timezone: str) -> str:
    if event.timezone and is_valid_timezone(event.timezone):
        return event.timezone
    return default_timezone


def _event_uid(event: ParsedEvent, index: int) -> str:
    uid_string = f"{event.start_iso}_{event.end_iso}_{event.title}_{index}"
    return hashlib.md5(uid_string.encode()).hexdigest() + "@snapplan.local"


def _date_lines(event: ParsedEvent, default_timezone: str) -> List[str]:
    if not event.all_day:
        return [
            f"DTSTART:{_format_ical_datetime(event.start_time)}",
            f"DTEND:{_format_ical_datetime(event.end_time)}",
        ]

    # all-day: local calendar dates, DTEND exclusive
    tz_name = _event_timezone(event, default_timezone)
    start_day = to_local_components(event.start_time, tz_name).local_date
    end_day = to_local_components(event.end_time, tz_name).local_date + timedelta(days=1)
    if end_day <= start_day:
        end_day = start_day + timedelta(days=1)
    return [
        f"DTSTART;VALUE=DATE:{_format_ical_date(start_day)}",
        f"DTEND;VALUE=DATE:{_format_ical_date(end_day)}",
    ]


def generate_ics(events: Iterable[ParsedEvent], default_timezone: str = DEFAULT_TIMEZONE,
                 now: Optional[datetime] = None) -> str:
    """
    Serialize events to a VCALENDAR document.

    Args:
        events: ParsedEvents to export
        default_timezone: zone used to read all-day dates when an event has none
        now: DTSTAMP value, defaults to the current UTC time

    Returns:
        ICS text with CRLF line endings
    """
    events = list(events)
    Log.section("ICS Generator")
    Log.info(f"Generating ICS for {len(events)} event(s)")
    created_time = now or datetime.now(dateutil_tz.tzutc())

    ics_lines = [
        "BEGIN:VCALENDAR",
        "VERSION:2.0",
        f"PRODID:{PRODUCT_ID}",
        "CALSCALE:GREGORIAN",
        "METHOD:PUBLISH",
        f"X-WR-CALNAME:{CALENDAR_NAME}",
    ]
    for index, event in enumerate(events):
        ics_lines.append("BEGIN:VEVENT")
        ics_lines.append(f"UID:{_event_uid(event, index)}")
        ics_lines.append(f"DTSTAMP:{_format_ical_datetime(created_time)}")
        ics_lines.extend(_date_lines(event, default_timezone))
        ics_lines.append(f"SUMMARY:{_escape_ical_text(event.title)}")
        if event.description:
            ics_lines.append(f"DESCRIPTION:{_escape_ical_text(event.description)}")
        if event.location:
            ics_lines.append(f"LOCATION:{_escape_ical_text(event.location)}")
        ics_lines.append("END:VEVENT")
    ics_lines.append("END:VCALENDAR")

    return '\r\n'.join(_fold_line(line) for line in ics_lines) + '\r\n'


def _ics_filename(events: List[ParsedEvent]) -> str:
    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    first_title = events[0].title if events else "events"
    safe_title = re.sub(r'[^\w\s-]', '', first_title)[:50]
    safe_title = re.sub(r'[-\s]+', '_', safe_title).strip('_') or "events"
    return f"SnapPlan_{safe_title}_{timestamp}.ics"


def write_ics(events: Iterable[ParsedEvent], destination: Path,
              default_timezone: str = DEFAULT_TIMEZONE) -> Path:
    """
    Write events to an .ics file.

    Args:
        events: ParsedEvents to export
        destination: a directory (a file name is generated) or a .ics path

    Returns:
        Path of the written file

    Raises:
        OSError: the file couldn't be written
    """
    events = list(events)
    destination = Path(destination).expanduser()
    if destination.suffix.lower() == ".ics":
        ics_path = destination
    else:
        ics_path = destination / _ics_filename(events)
    ics_path.parent.mkdir(parents=True, exist_ok=True)

    ics_path.write_bytes(generate_ics(events, default_timezone).encode('utf-8'))
    Log.info(f"ICS file generated: {ics_path}")
    Log.kv({
        "stage": "ics",
        "result": "success",
        "ics_path": str(ics_path),
        "event_count": len(events),
    })
    return ics_path
