"""
User edits to a normalized event, one field at a time.

Date and time fields are shown and edited as wall-clock values in a display
timezone and projected back to UTC on every edit. The text-derived
corrections (year, all-day wording, time ranges) never run here: a user edit
is taken literally.
"""

from typing import Optional, Union

from snapplan.errors import InvalidTimezone, ValidationFailed
from snapplan.event_models import ParsedEvent
from snapplan.logging_helper import Log
from snapplan.timezone_projector import DEFAULT_TIMEZONE, format_utc_iso, resolve_timezone, to_local_components, to_utc

TEXT_FIELDS = ("title", "description", "location")
WALL_CLOCK_FIELDS = ("start_date", "start_time", "end_date", "end_time")
EDITABLE_FIELDS = TEXT_FIELDS + WALL_CLOCK_FIELDS + ("all_day",)

ALL_DAY_START = "00:00"
ALL_DAY_END = "23:59"


def change_display_timezone(current: str, requested: Optional[str]) -> str:
    """
    Switch the timezone events are displayed and edited in.

    An empty request resets to the default; an unknown name is rejected and
    `current` stays in effect.
    """
    if not requested or not requested.strip():
        Log.info(f"Display timezone reset to {DEFAULT_TIMEZONE}")
        return DEFAULT_TIMEZONE
    try:
        resolve_timezone(requested)
    except InvalidTimezone as err:
        Log.warn(f"{err.reason} - keeping display timezone {current}")
        return current
    Log.info(f"Display timezone changed: {current} -> {requested.strip()}")
    return requested.strip()


def wall_clock_fields(event: ParsedEvent, display_timezone: str) -> dict:
    """The event's start/end as date and HH:MM strings in `display_timezone`."""
    start = to_local_components(event.start_time, display_timezone)
    end = to_local_components(event.end_time, display_timezone)
    return {
        "start_date": start.date_str(),
        "start_time": f"{start.hours:02d}:{start.minutes:02d}",
        "end_date": end.date_str(),
        "end_time": f"{end.hours:02d}:{end.minutes:02d}",
    }


def _as_bool(value: Union[bool, str]) -> bool:
    if isinstance(value, bool):
        return value
    lowered = str(value).strip().lower()
    if lowered in ("true", "yes", "1", "on"):
        return True
    if lowered in ("false", "no", "0", "off"):
        return False
    raise ValidationFailed(f"all_day must be true or false, got {value!r}", {"field": "all_day"})


def apply_edit(event: ParsedEvent, field: str, value, display_timezone: str = DEFAULT_TIMEZONE) -> ParsedEvent:
    """
    Set one field and re-validate.

    Args:
        event: the event being edited (left untouched)
        field: one of EDITABLE_FIELDS
        value: new value; date fields take YYYY-MM-DD, time fields HH:MM
        display_timezone: zone the wall-clock values are expressed in

    Returns:
        a new validated ParsedEvent

    Raises:
        ValidationFailed: unknown field, unreadable value, or an invalid result
        InvalidTimezone: `display_timezone` is not a real timezone
    """
    if field not in EDITABLE_FIELDS:
        raise ValidationFailed(f"Unknown field {field!r}", {"field": field})

    if field in TEXT_FIELDS:
        text = value.strip() if isinstance(value, str) else value
        if field != "title":
            text = text or None
        edited = event.with_changes(**{field: text}).validate()
        Log.kv({"stage": "edit", "field": field})
        return edited

    resolve_timezone(display_timezone)
    fields = wall_clock_fields(event, display_timezone)
    all_day = bool(event.all_day)
    if field == "all_day":
        all_day = _as_bool(value)
    else:
        fields[field] = str(value).strip()

    try:
        if all_day:
            start = to_utc(fields["start_date"], ALL_DAY_START, display_timezone)
            end = to_utc(fields["end_date"], ALL_DAY_END, display_timezone)
        else:
            start = to_utc(fields["start_date"], fields["start_time"], display_timezone)
            end = to_utc(fields["end_date"], fields["end_time"], display_timezone)
    except ValueError as err:
        raise ValidationFailed(str(err), {"field": field, "value": value})

    edited = event.with_changes(
        start_iso=format_utc_iso(start),
        end_iso=format_utc_iso(end),
        timezone=display_timezone,
        all_day=all_day,
    ).validate()
    Log.kv({"stage": "edit", "field": field, "start": edited.start_iso, "end": edited.end_iso,
            "timezone": display_timezone})
    return edited
