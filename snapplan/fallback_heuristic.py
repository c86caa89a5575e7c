"""
Last-resort event when the extraction service is unavailable or unusable:
a one-hour placeholder starting one hour from now.
"""

from datetime import datetime, timedelta
from typing import List, Optional

from snapplan.event_models import ParsedEvent
from snapplan.logging_helper import Log
from snapplan.timezone_projector import UTC, format_utc_iso

DEFAULT_TITLE = "Untitled Event"
TITLE_LIMIT = 60
DESCRIPTION_LIMIT = 500
LEAD_TIME = timedelta(hours=1)
DURATION = timedelta(hours=1)


def fallback_events(text: Optional[str], now: Optional[datetime] = None) -> List[ParsedEvent]:
    """
    Build the single placeholder event for `text`. Never raises.

    Args:
        text: original input (or a stand-in such as "Image input")
        now: reference time, defaults to the current UTC time
    """
    text = text or ""
    now = now or datetime.now(UTC)

    start = now + LEAD_TIME
    end = start + DURATION
    title = text.split("\n")[0][:TITLE_LIMIT].strip() or DEFAULT_TITLE

    event = ParsedEvent(
        title=title,
        start_iso=format_utc_iso(start),
        end_iso=format_utc_iso(end),
        description=text[:DESCRIPTION_LIMIT] or None,
    )
    Log.kv({"stage": "fallback", "title": event.title, "start": event.start_iso, "end": event.end_iso})
    return [event]
