"""
Timezone projector: wall-clock (date, time, IANA zone) <-> UTC instants.

Local -> UTC works by guess-and-shift: read the wall-clock literal as if it
were UTC, look at what that instant shows in the target zone, and shift the
instant by the difference. Offsets are constant within a calendar day, so one
shift normally lands exactly; a second pass only happens when the first shift
crossed a DST change. The transition hour itself stays approximate.
"""

import re
from dataclasses import dataclass
from datetime import date, datetime, timedelta, tzinfo
from typing import Union

from dateutil import parser as dateutil_parser
from dateutil import tz as dateutil_tz

from snapplan.errors import InvalidTimezone

DEFAULT_TIMEZONE = "America/New_York"
UTC = dateutil_tz.tzutc()

UTC_ZONE_NAMES = frozenset({"UTC", "ETC/UTC", "GMT", "ETC/GMT", "Z", "ZULU", "UNIVERSAL", "ETC/UNIVERSAL"})

_DATE_RE = re.compile(r"^(\d{4})-(\d{1,2})-(\d{1,2})$")
_TIME_RE = re.compile(r"^(\d{1,2}):(\d{2})(?::(\d{2}))?$")

# Guess-and-shift passes. The second one only matters across a DST change.
_MAX_SHIFTS = 2

Instant = Union[datetime, str]


@dataclass(frozen=True)
class LocalComponents:
    """Wall-clock reading of an instant in a named timezone."""
    year: int
    month: int
    day: int
    hours: int
    minutes: int
    seconds: int = 0

    @property
    def local_date(self) -> date:
        return date(self.year, self.month, self.day)

    def date_str(self) -> str:
        return f"{self.year:04d}-{self.month:02d}-{self.day:02d}"

    def time_str(self) -> str:
        if self.seconds:
            return f"{self.hours:02d}:{self.minutes:02d}:{self.seconds:02d}"
        return f"{self.hours:02d}:{self.minutes:02d}"


def is_utc_name(name: str) -> bool:
    return isinstance(name, str) and name.strip().upper() in UTC_ZONE_NAMES


def resolve_timezone(name: str) -> tzinfo:
    """
    Look up an IANA timezone.

    Raises:
        InvalidTimezone: for empty or unknown names
    """
    if not isinstance(name, str) or not name.strip():
        # gettz("") would silently hand back the machine's local zone
        raise InvalidTimezone(name)
    if is_utc_name(name):
        return UTC

    zone = dateutil_tz.gettz(name.strip())
    if zone is None:
        raise InvalidTimezone(name)
    return zone


def is_valid_timezone(name: str) -> bool:
    try:
        resolve_timezone(name)
    except InvalidTimezone:
        return False
    return True


def _parse_wall_clock(date_str: str, time_str: str) -> datetime:
    date_match = _DATE_RE.match((date_str or "").strip())
    time_match = _TIME_RE.match((time_str or "").strip())
    if not date_match:
        raise ValueError(f"Expected YYYY-MM-DD, got {date_str!r}")
    if not time_match:
        raise ValueError(f"Expected HH:MM, got {time_str!r}")

    year, month, day = (int(part) for part in date_match.groups())
    hours, minutes = int(time_match.group(1)), int(time_match.group(2))
    seconds = int(time_match.group(3) or 0)
    return datetime(year, month, day, hours, minutes, seconds)


def to_utc(date_str: str, time_str: str, tz_name: str) -> datetime:
    """
    Convert a wall-clock date/time in `tz_name` to an aware UTC datetime.

    Args:
        date_str: "YYYY-MM-DD"
        time_str: "HH:MM" or "HH:MM:SS" (24-hour)
        tz_name: IANA timezone name

    Returns:
        datetime with tzinfo=UTC

    Raises:
        InvalidTimezone: unknown timezone
        ValueError: malformed date or time string
    """
    zone = resolve_timezone(tz_name)
    wanted = _parse_wall_clock(date_str, time_str)

    candidate = wanted.replace(tzinfo=UTC)
    for _ in range(_MAX_SHIFTS):
        observed = candidate.astimezone(zone).replace(tzinfo=None)
        # Naive subtraction covers hour, minute and day rollover (UTC+13 etc.)
        drift = wanted - observed
        if not drift:
            break
        candidate = candidate + drift
    return candidate


def parse_instant(value: Instant) -> datetime:
    """
    Parse an ISO-8601 instant into an aware UTC datetime.
    Naive values are read as UTC.
    """
    if isinstance(value, datetime):
        parsed = value
    else:
        parsed = dateutil_parser.isoparse(str(value).strip())
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed.astimezone(UTC)


def to_local_components(instant: Instant, tz_name: str) -> LocalComponents:
    """Read the wall clock of `instant` in `tz_name`."""
    zone = resolve_timezone(tz_name)
    local = parse_instant(instant).astimezone(zone)
    return LocalComponents(
        year=local.year,
        month=local.month,
        day=local.day,
        hours=local.hour,
        minutes=local.minute,
        seconds=local.second,
    )


def format_utc_iso(instant: datetime) -> str:
    """Format as 'YYYY-MM-DDTHH:MM:SSZ' (sub-second precision dropped)."""
    return parse_instant(instant).strftime("%Y-%m-%dT%H:%M:%SZ")


def shift_date(date_str: str, days: int) -> str:
    """Move a YYYY-MM-DD string by whole calendar days."""
    moved = datetime.strptime(date_str, "%Y-%m-%d") + timedelta(days=days)
    return moved.strftime("%Y-%m-%d")
