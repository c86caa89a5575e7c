from datetime import datetime

import pytest

from snapplan.errors import ValidationFailed
from snapplan.event_models import ParsedEvent, ParseResult
from snapplan.fallback_heuristic import fallback_events
from snapplan.timezone_projector import UTC


def make_event(**overrides):
    fields = dict(title="Gala", start_iso="2025-09-17T22:00:00Z", end_iso="2025-09-18T01:00:00Z")
    fields.update(overrides)
    return ParsedEvent(**fields)


def test_valid_event():
    event = make_event(location="Hall", all_day=False)
    assert event.validate() is event
    assert event.duration_minutes() == 180


@pytest.mark.parametrize("overrides, bad_field", [
    ({"title": "  "}, "title"),
    ({"start_iso": "2025-09-17 22:00"}, "start_iso"),
    ({"end_iso": "2025-09-17T22:00:00+02:00"}, "end_iso"),
    ({"start_iso": "2025-02-30T10:00:00Z"}, "start_iso"),
    ({"end_iso": "2025-09-17T21:00:00Z"}, "end_iso"),
    ({"all_day": "yes"}, "all_day"),
])
def test_invalid_events_name_the_field(overrides, bad_field):
    event = make_event(**overrides)
    with pytest.raises(ValidationFailed) as excinfo:
        event.validate()
    assert excinfo.value.details["field"] == bad_field
    assert not event.is_valid()


def test_zero_length_event_is_valid():
    assert make_event(end_iso="2025-09-17T22:00:00Z").is_valid()


def test_wire_shape_omits_unset_fields():
    event = make_event(timezone="America/New_York")
    data = event.to_dict()
    assert data == {
        "title": "Gala",
        "startISO": "2025-09-17T22:00:00Z",
        "endISO": "2025-09-18T01:00:00Z",
        "timezone": "America/New_York",
    }
    assert ParsedEvent.from_dict(data) == event


def test_with_changes_leaves_original():
    event = make_event()
    renamed = event.with_changes(title="Ball")
    assert event.title == "Gala"
    assert renamed.title == "Ball"
    assert renamed.start_iso == event.start_iso


def test_parse_result_to_dict():
    result = ParseResult(events=[make_event()], method="fallback", reason="offline", extracted_text="Gala")
    data = result.to_dict()
    assert result.used_fallback
    assert data["method"] == "fallback"
    assert data["reason"] == "offline"
    assert data["extractedText"] == "Gala"
    assert "model" not in data


def test_fallback_event_starts_an_hour_from_now():
    now = datetime(2025, 5, 1, 12, 30, tzinfo=UTC)
    [event] = fallback_events("Book club\nBring snacks", now=now)
    assert event.title == "Book club"
    assert event.start_iso == "2025-05-01T13:30:00Z"
    assert event.end_iso == "2025-05-01T14:30:00Z"
    assert event.description == "Book club\nBring snacks"
    assert event.is_valid()


def test_fallback_truncates_and_defaults():
    now = datetime(2025, 5, 1, 12, 0, tzinfo=UTC)
    [long_event] = fallback_events("x" * 80 + "\n" + "y" * 600, now=now)
    assert len(long_event.title) == 60
    assert len(long_event.description) == 500

    [empty_event] = fallback_events("", now=now)
    assert empty_event.title == "Untitled Event"
    assert empty_event.description is None
