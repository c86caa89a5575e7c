"""
Year inference: substitute the current year when the source text names none.
"""

import calendar
import re
from datetime import datetime
from typing import Optional, Tuple

from snapplan.logging_helper import Log
from snapplan.timezone_projector import LocalComponents, to_local_components, to_utc

YEAR_PATTERN = re.compile(r"\b(?:19|20)\d{2}\b")


def infer_year(raw_text: str, current_year: int) -> Optional[int]:
    """
    Return the year named in `raw_text`, or None if there is none.

    None tells the caller to move the event into `current_year`.
    """
    match = YEAR_PATTERN.search(raw_text or "")
    if match:
        return int(match.group(0))
    Log.info(f"No year in source text, current year {current_year} applies")
    return None


def _in_year(local: LocalComponents, year: int) -> str:
    # Feb 29 has no counterpart in a non-leap year
    day = min(local.day, calendar.monthrange(year, local.month)[1])
    return f"{year:04d}-{local.month:02d}-{day:02d}"


def apply_year(start: datetime, end: datetime, year: int, tz_name: str) -> Tuple[datetime, datetime]:
    """
    Move an event into `year`, keeping its local month/day/time in `tz_name`.

    Both instants are rebuilt through the projector rather than by editing the
    UTC year field, so the wall clock survives a different DST status.
    """
    start_local = to_local_components(start, tz_name)
    shift = year - start_local.year
    if shift == 0:
        return start, end

    end_local = to_local_components(end, tz_name)
    new_start = to_utc(_in_year(start_local, year), start_local.time_str(), tz_name)
    new_end = to_utc(_in_year(end_local, end_local.year + shift), end_local.time_str(), tz_name)
    Log.kv({
        "stage": "year_inference",
        "from_year": start_local.year,
        "to_year": year,
        "timezone": tz_name,
    })
    return new_start, new_end
