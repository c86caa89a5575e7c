import pytest
import requests

from snapplan import calendar_connector
from snapplan.calendar_connector import (
    build_google_event_body,
    create_calendar_event,
    create_google_event,
    find_or_create_calendar,
    generate_google_calendar_url,
)
from snapplan.errors import ServiceUnavailable
from snapplan.event_models import ParsedEvent


class FakeResponse:
    def __init__(self, status_code=200, body=None):
        self.status_code = status_code
        self.body = body if body is not None else {}

    @property
    def ok(self):
        return self.status_code < 400

    def json(self):
        return self.body


TIMED = ParsedEvent(title="Gala", start_iso="2025-09-17T22:00:00Z", end_iso="2025-09-18T01:00:00Z",
                    description="#Free Food\n\nGala", timezone="America/New_York", all_day=False)
ALL_DAY = ParsedEvent(title="Fair", start_iso="2025-09-17T04:00:00Z", end_iso="2025-09-18T03:59:00Z",
                      timezone="America/New_York", all_day=True)


def test_timed_body():
    body = build_google_event_body(TIMED)
    assert body["summary"] == "Gala"
    assert body["description"] == "#Free Food\n\nGala"
    assert "location" not in body
    assert body["start"] == {"dateTime": "2025-09-17T22:00:00Z", "timeZone": "America/New_York"}
    assert body["end"] == {"dateTime": "2025-09-18T01:00:00Z", "timeZone": "America/New_York"}


def test_all_day_body_has_exclusive_end_date():
    body = build_google_event_body(ALL_DAY)
    assert body["start"] == {"date": "2025-09-17"}
    assert body["end"] == {"date": "2025-09-18"}


def test_all_day_dates_cross_year_end():
    event = ParsedEvent(title="Winter break", start_iso="2025-12-30T05:00:00Z", end_iso="2026-01-01T04:59:00Z",
                        timezone="America/New_York", all_day=True)
    body = build_google_event_body(event)
    assert body["start"] == {"date": "2025-12-30"}
    assert body["end"] == {"date": "2026-01-01"}


def test_create_google_event_posts_body(monkeypatch):
    calls = []

    def fake_post(url, headers=None, json=None, timeout=None):
        calls.append((url, headers, json, timeout))
        return FakeResponse(200, {"id": "evt123"})

    monkeypatch.setattr(calendar_connector.requests, "post", fake_post)
    created = create_google_event(TIMED, "token-abc")

    assert created == {"id": "evt123"}
    [(url, headers, body, timeout)] = calls
    assert url == "https://www.googleapis.com/calendar/v3/calendars/primary/events"
    assert headers["Authorization"] == "Bearer token-abc"
    assert body == build_google_event_body(TIMED)
    assert timeout == 30


def test_create_google_event_auth_error(monkeypatch):
    monkeypatch.setattr(calendar_connector.requests, "post", lambda *a, **k: FakeResponse(401))
    with pytest.raises(ServiceUnavailable) as excinfo:
        create_google_event(TIMED, "expired")
    assert "sign in again" in excinfo.value.reason


def test_create_google_event_api_error_message(monkeypatch):
    error = {"error": {"message": "Calendar quota exceeded"}}
    monkeypatch.setattr(calendar_connector.requests, "post", lambda *a, **k: FakeResponse(500, error))
    with pytest.raises(ServiceUnavailable) as excinfo:
        create_google_event(TIMED, "token")
    assert excinfo.value.reason == "Calendar quota exceeded"


def test_create_google_event_network_error(monkeypatch):
    def boom(*args, **kwargs):
        raise requests.exceptions.ConnectionError("offline")

    monkeypatch.setattr(calendar_connector.requests, "post", boom)
    with pytest.raises(ServiceUnavailable):
        create_google_event(TIMED, "token")


def test_find_existing_snapplan_calendar(monkeypatch):
    listing = {"items": [{"id": "primary", "summary": "me"}, {"id": "cal-9", "summary": "Snapplan"}]}
    monkeypatch.setattr(calendar_connector.requests, "get", lambda *a, **k: FakeResponse(200, listing))
    assert find_or_create_calendar("token") == "cal-9"


def test_create_missing_snapplan_calendar(monkeypatch):
    posted = []
    monkeypatch.setattr(calendar_connector.requests, "get", lambda *a, **k: FakeResponse(200, {"items": []}))

    def fake_post(url, headers=None, json=None, timeout=None):
        posted.append(json)
        return FakeResponse(200, {"id": "new-cal"})

    monkeypatch.setattr(calendar_connector.requests, "post", fake_post)
    assert find_or_create_calendar("token") == "new-cal"
    assert posted[0]["summary"] == "SnapPlan"


def test_google_calendar_url():
    url = generate_google_calendar_url(TIMED)
    assert url.startswith("https://calendar.google.com/calendar/r/eventedit?action=TEMPLATE")
    assert "dates=20250917T220000Z%2F20250918T010000Z" in url
    assert "text=Gala" in url
    assert "details=%23Free%20Food%0A%0AGala" in url
    assert url.endswith("ctz=America%2FNew_York")


def test_google_calendar_url_all_day():
    assert "dates=20250917%2F20250918" in generate_google_calendar_url(ALL_DAY)


def test_create_calendar_event_dispatch(tmp_path):
    ics_path = create_calendar_event(TIMED, "ics", ics_directory=tmp_path)
    assert ics_path.exists()
    assert create_calendar_event(TIMED, "google").startswith("https://calendar.google.com/")
