"""
All-day detection from raw event text.
"""

import re
from datetime import date, datetime
from typing import Optional, Tuple

from snapplan.timezone_projector import to_utc

ALL_DAY_PATTERNS = (
    re.compile(r"\ball[\s-]*day\b", re.IGNORECASE),
    re.compile(r"\bfull[\s-]*day\b", re.IGNORECASE),
    re.compile(r"\bentire[\s-]*day\b", re.IGNORECASE),
    re.compile(r"\bwhole[\s-]*day\b", re.IGNORECASE),
)

# "6pm", "6 PM", "18:00", "6:30"
TIME_OF_DAY_PATTERN = re.compile(r"\d{1,2}\s*(?:(?:am|pm)(?![a-z])|:\d{2})", re.IGNORECASE)

ALL_DAY_START = "00:00"
ALL_DAY_END = "23:59"


def has_all_day_phrase(raw_text: str) -> bool:
    return any(pattern.search(raw_text or "") for pattern in ALL_DAY_PATTERNS)


def has_time_of_day(raw_text: str) -> bool:
    return TIME_OF_DAY_PATTERN.search(raw_text or "") is not None


def is_all_day(raw_text: str, ai_said_all_day: Optional[bool]) -> bool:
    """
    Decide whether an event has no meaningful time of day.

    An explicit phrase ("all day", "full day", ...) or the absence of any
    time-of-day expression makes it all-day. Without any text there is no
    evidence either way, so the AI's own flag stands.
    """
    if not raw_text or not raw_text.strip():
        return bool(ai_said_all_day)
    if has_all_day_phrase(raw_text):
        return True
    return not has_time_of_day(raw_text)


def all_day_bounds(local_date: date, tz_name: str) -> Tuple[datetime, datetime]:
    """Start (00:00) and end (23:59) of `local_date` in `tz_name`, as UTC."""
    date_str = local_date.strftime("%Y-%m-%d")
    return to_utc(date_str, ALL_DAY_START, tz_name), to_utc(date_str, ALL_DAY_END, tz_name)
