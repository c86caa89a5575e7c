"""
Calendar Connector for handing finished events to a calendar system.
Supports Google Calendar (REST API with an OAuth access token, or a pre-filled
browser URL) and Apple Calendar (via ICS files).

All-day events are sent as a date range with an exclusive end date; timed
events as exact UTC instants.
"""

from pathlib import Path
from typing import Optional
from urllib.parse import quote

import requests

from snapplan.errors import ServiceUnavailable
from snapplan.event_models import ParsedEvent
from snapplan.ics_generator import write_ics
from snapplan.logging_helper import Log
from snapplan.timezone_projector import DEFAULT_TIMEZONE, is_valid_timezone, shift_date, to_local_components

GOOGLE_CALENDAR_API = "https://www.googleapis.com/calendar/v3"
GOOGLE_CALENDAR_TEMPLATE_URL = "https://calendar.google.com/calendar/r/eventedit"
SNAPPLAN_CALENDAR_NAME = "SnapPlan"
REQUEST_TIMEOUT = 30


def _event_timezone(event: ParsedEvent, default_timezone: str) -> str:
    if event.timezone and is_valid_timezone(event.timezone):
        return event.timezone
    return default_timezone


def _all_day_dates(event: ParsedEvent, tz_name: str):
    """(first day, day after the last day) as YYYY-MM-DD strings."""
    start_day = to_local_components(event.start_time, tz_name).date_str()
    end_day = shift_date(to_local_components(event.end_time, tz_name).date_str(), 1)
    if end_day <= start_day:
        end_day = shift_date(start_day, 1)
    return start_day, end_day


def build_google_event_body(event: ParsedEvent, default_timezone: str = DEFAULT_TIMEZONE) -> dict:
    """
    Build a Google Calendar API event resource.

    Args:
        event: validated ParsedEvent
        default_timezone: zone for reading all-day dates when the event has none

    Returns:
        dict ready to be sent as JSON
    """
    tz_name = _event_timezone(event, default_timezone)
    body = {"summary": event.title}
    if event.description:
        body["description"] = event.description
    if event.location:
        body["location"] = event.location

    if event.all_day:
        start_date, end_date = _all_day_dates(event, tz_name)
        body["start"] = {"date": start_date}
        body["end"] = {"date": end_date}
    else:
        body["start"] = {"dateTime": event.start_iso, "timeZone": tz_name}
        body["end"] = {"dateTime": event.end_iso, "timeZone": tz_name}
    return body


def _auth_headers(access_token: str) -> dict:
    return {
        "Authorization": f"Bearer {access_token}",
        "Content-Type": "application/json",
    }


def _raise_for_google_error(response: requests.Response, action: str) -> None:
    if response.status_code in (401, 403):
        Log.warn(f"Google Calendar rejected the access token ({response.status_code})")
        raise ServiceUnavailable("Authentication expired. Please sign in again.",
                                 {"status": response.status_code})
    if not response.ok:
        try:
            message = response.json().get("error", {}).get("message")
        except ValueError:
            message = None
        reason = message or f"Failed to {action}: HTTP {response.status_code}"
        Log.error(reason)
        raise ServiceUnavailable(reason, {"status": response.status_code})


def find_or_create_calendar(access_token: str, timeout: float = REQUEST_TIMEOUT) -> str:
    """
    Return the id of the user's "SnapPlan" calendar, creating it when missing.

    Raises:
        ServiceUnavailable: network failure or an error answer from Google
    """
    headers = _auth_headers(access_token)
    try:
        response = requests.get(f"{GOOGLE_CALENDAR_API}/users/me/calendarList", headers=headers, timeout=timeout)
        _raise_for_google_error(response, "list calendars")
        for calendar in response.json().get("items", []):
            if str(calendar.get("summary", "")).lower() == SNAPPLAN_CALENDAR_NAME.lower():
                return calendar["id"]

        Log.info("No SnapPlan calendar found, creating one")
        response = requests.post(
            f"{GOOGLE_CALENDAR_API}/calendars",
            headers=headers,
            json={
                "summary": SNAPPLAN_CALENDAR_NAME,
                "description": "Events created by SnapPlan",
                "timeZone": DEFAULT_TIMEZONE,
            },
            timeout=timeout,
        )
        _raise_for_google_error(response, "create SnapPlan calendar")
        return response.json()["id"]
    except requests.exceptions.RequestException as err:
        Log.error(f"Google Calendar request failed: {err}")
        raise ServiceUnavailable(f"Google Calendar request failed: {err}")


def create_google_event(event: ParsedEvent, access_token: str, calendar_id: str = "primary",
                        default_timezone: str = DEFAULT_TIMEZONE,
                        timeout: float = REQUEST_TIMEOUT) -> dict:
    """
    Insert one event into a Google calendar.

    Returns:
        The created event resource as returned by Google

    Raises:
        ServiceUnavailable: network failure or an error answer from Google
    """
    Log.section("Calendar Connector")
    body = build_google_event_body(event, default_timezone)
    url = f"{GOOGLE_CALENDAR_API}/calendars/{quote(calendar_id, safe='')}/events"
    Log.info(f"Creating Google Calendar event for: {event.title}")

    try:
        response = requests.post(url, headers=_auth_headers(access_token), json=body, timeout=timeout)
    except requests.exceptions.RequestException as err:
        Log.error(f"Google Calendar request failed: {err}")
        raise ServiceUnavailable(f"Google Calendar request failed: {err}")
    _raise_for_google_error(response, "create event")

    created = response.json()
    Log.kv({
        "stage": "calendar",
        "result": "success",
        "calendar_type": "google",
        "event_title": event.title,
        "event_id": created.get("id"),
    })
    return created


def _format_google_calendar_datetime(event: ParsedEvent, tz_name: str) -> str:
    if event.all_day:
        start_date, end_date = _all_day_dates(event, tz_name)
        return f"{start_date.replace('-', '')}/{end_date.replace('-', '')}"
    start = event.start_time.strftime('%Y%m%dT%H%M%SZ')
    end = event.end_time.strftime('%Y%m%dT%H%M%SZ')
    return f"{start}/{end}"


def generate_google_calendar_url(event: ParsedEvent, default_timezone: str = DEFAULT_TIMEZONE) -> str:
    """
    Generate a Google Calendar URL with pre-filled event details.

    Args:
        event: ParsedEvent

    Returns:
        Google Calendar URL string
    """
    tz_name = _event_timezone(event, default_timezone)
    dates = _format_google_calendar_datetime(event, tz_name)

    # Format: .../eventedit?action=TEMPLATE&dates=START%2FEND&text=TITLE&details=DESC&location=LOC&ctz=TZ
    url = (
        f"{GOOGLE_CALENDAR_TEMPLATE_URL}?action=TEMPLATE"
        f"&dates={quote(dates, safe='')}&text={quote(event.title, safe='')}"
    )
    if event.description:
        url += f"&details={quote(event.description, safe='')}"
    if event.location:
        url += f"&location={quote(event.location, safe='')}"
    url += f"&ctz={quote(tz_name, safe='')}"

    Log.info(f"Generated Google Calendar URL: {url[:200]}...")
    return url


def create_calendar_event(event: ParsedEvent, calendar_preference: str = "ics",
                          access_token: Optional[str] = None,
                          ics_directory: Optional[Path] = None,
                          default_timezone: str = DEFAULT_TIMEZONE):
    """
    Create a calendar event in the user's preferred calendar system.

    - "google" with an access token: inserted through the Calendar API
    - "google" without one: a pre-filled Google Calendar URL
    - anything else: an ICS file in `ics_directory` (default ~/Downloads)

    Returns:
        created event resource (dict), URL (str) or ICS path (Path)
    """
    Log.section("Calendar Connector")
    if calendar_preference == "google":
        if access_token:
            return create_google_event(event, access_token, default_timezone=default_timezone)
        url = generate_google_calendar_url(event, default_timezone)
        Log.kv({"stage": "calendar", "result": "success", "calendar_type": "google_url", "event_title": event.title})
        return url

    Log.info(f"Creating ICS calendar event for: {event.title}")
    directory = ics_directory or (Path.home() / "Downloads")
    return write_ics([event], directory, default_timezone)
