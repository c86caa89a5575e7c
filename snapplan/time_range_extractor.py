"""
Time-range extraction from raw event text.

Scans for explicit ranges such as "6pm-9pm", "6:00 PM – 9:00 PM" or
"10:30AM-4PM" and returns them in 24-hour form. Patterns are tried in a fixed
priority order and the first one that matches wins.
"""

import re
from datetime import date, datetime, timedelta
from typing import NamedTuple, Optional, Tuple

from snapplan.logging_helper import Log
from snapplan.timezone_projector import to_utc

# hyphen, en dash, em dash
_SEP = r"\s*[-–—]\s*"
# a range never starts inside another number ("2:00-4pm" must not yield 00-4pm)
_START = r"(?<![\d:])"
_MERIDIEM = r"\s*(am|pm)(?![a-z])"

_PATTERNS = (
    # "6-9pm", "6 – 9 pm"
    ("shared_meridiem", re.compile(
        _START + r"(\d{1,2})" + _SEP + r"(\d{1,2})" + _MERIDIEM, re.IGNORECASE)),
    # "6:00 - 9:00 PM"
    ("shared_meridiem_minutes", re.compile(
        _START + r"(\d{1,2}):(\d{2})" + _SEP + r"(\d{1,2}):(\d{2})" + _MERIDIEM, re.IGNORECASE)),
    # "6pm-9pm"
    ("own_meridiem", re.compile(
        _START + r"(\d{1,2})" + _MERIDIEM + _SEP + r"(\d{1,2})" + _MERIDIEM, re.IGNORECASE)),
    # "6:00 PM - 9:00 PM"
    ("own_meridiem_minutes", re.compile(
        _START + r"(\d{1,2}):(\d{2})" + _MERIDIEM + _SEP + r"(\d{1,2}):(\d{2})" + _MERIDIEM, re.IGNORECASE)),
    # "10:30AM-4PM"
    ("mixed", re.compile(
        _START + r"(\d{1,2}):(\d{2})" + _MERIDIEM + _SEP + r"(\d{1,2})" + _MERIDIEM, re.IGNORECASE)),
)


class TimeRange(NamedTuple):
    start_hour: int
    start_minute: int
    end_hour: int
    end_minute: int

    @property
    def wraps_midnight(self) -> bool:
        """True when the end is not strictly after the start on the same day."""
        return (self.end_hour, self.end_minute) <= (self.start_hour, self.start_minute)

    def start_time_str(self) -> str:
        return f"{self.start_hour:02d}:{self.start_minute:02d}"

    def end_time_str(self) -> str:
        return f"{self.end_hour:02d}:{self.end_minute:02d}"


def to_24_hour(hour: int, meridiem: str) -> int:
    """12pm -> 12, 12am -> 0, Npm -> N+12, Nam -> N."""
    meridiem = meridiem.lower()
    if meridiem == "pm":
        return hour if hour == 12 else hour + 12
    return 0 if hour == 12 else hour


def _valid_clock(hour: int, minute: int = 0) -> bool:
    return 1 <= hour <= 12 and 0 <= minute <= 59


def _range_from_match(kind: str, groups: Tuple[str, ...]) -> Optional[TimeRange]:
    if kind == "shared_meridiem":
        start_h, end_h, meridiem = int(groups[0]), int(groups[1]), groups[2]
        start_m = end_m = 0
        start_mer = end_mer = meridiem
    elif kind == "shared_meridiem_minutes":
        start_h, start_m, end_h, end_m = (int(g) for g in groups[:4])
        start_mer = end_mer = groups[4]
    elif kind == "own_meridiem":
        start_h, start_mer, end_h, end_mer = int(groups[0]), groups[1], int(groups[2]), groups[3]
        start_m = end_m = 0
    elif kind == "own_meridiem_minutes":
        start_h, start_m, start_mer = int(groups[0]), int(groups[1]), groups[2]
        end_h, end_m, end_mer = int(groups[3]), int(groups[4]), groups[5]
    else:  # mixed
        start_h, start_m, start_mer = int(groups[0]), int(groups[1]), groups[2]
        end_h, end_mer = int(groups[3]), groups[4]
        end_m = 0

    if not (_valid_clock(start_h, start_m) and _valid_clock(end_h, end_m)):
        return None

    return TimeRange(
        start_hour=to_24_hour(start_h, start_mer),
        start_minute=start_m,
        end_hour=to_24_hour(end_h, end_mer),
        end_minute=end_m,
    )


def extract(raw_text: str) -> Optional[TimeRange]:
    """
    Find the first explicit time range in `raw_text`.

    Args:
        raw_text: original event text (typed or OCR'd)

    Returns:
        TimeRange in 24-hour form, or None when no pattern matches.
        Callers keep whatever time they already had on None.
    """
    if not raw_text:
        return None

    for kind, pattern in _PATTERNS:
        for match in pattern.finditer(raw_text):
            time_range = _range_from_match(kind, match.groups())
            if time_range is None:
                continue
            Log.kv({
                "stage": "time_range",
                "pattern": kind,
                "match": match.group(0),
                "start": time_range.start_time_str(),
                "end": time_range.end_time_str(),
            })
            return time_range
    return None


def project_range(time_range: TimeRange, local_date: date, tz_name: str) -> Tuple[datetime, datetime]:
    """
    Place a time range on a local calendar date and convert both ends to UTC.
    The end moves to the next calendar day when the range wraps midnight.
    """
    start_date = local_date.strftime("%Y-%m-%d")
    end_day = local_date + timedelta(days=1) if time_range.wraps_midnight else local_date
    end_date = end_day.strftime("%Y-%m-%d")

    start = to_utc(start_date, time_range.start_time_str(), tz_name)
    end = to_utc(end_date, time_range.end_time_str(), tz_name)
    return start, end
