from datetime import date

import pytest

from snapplan.time_range_extractor import TimeRange, extract, project_range, to_24_hour
from snapplan.timezone_projector import format_utc_iso


@pytest.mark.parametrize("text, expected", [
    ("6pm - 9pm", (18, 0, 21, 0)),
    ("10:30AM-4PM", (10, 30, 16, 0)),
    ("6-9pm", (18, 0, 21, 0)),
    ("6 – 9 pm", (18, 0, 21, 0)),
    ("6:00 PM – 9:00 PM", (18, 0, 21, 0)),
    ("9:00 - 11:30 am", (9, 0, 11, 30)),
    ("12pm-2pm", (12, 0, 14, 0)),
    ("12am—1am", (0, 0, 1, 0)),
    ("Doors 7:15pm - 10:45pm", (19, 15, 22, 45)),
])
def test_extracts_explicit_ranges(text, expected):
    assert extract(text) == expected


def test_no_time_returns_none():
    assert extract("no time info") is None
    assert extract("") is None


def test_shared_meridiem_has_priority():
    assert extract("Panel 6-9pm (reception 5pm-11pm)") == (18, 0, 21, 0)


def test_range_does_not_start_inside_another_number():
    assert extract("2:00-4pm") is None


def test_out_of_range_hours_are_skipped():
    assert extract("Room 13-15pm, talk 6-9pm") == (18, 0, 21, 0)


def test_meridiem_must_end_the_word():
    assert extract("Floors 3-5 amphitheater") is None


def test_wraps_midnight():
    time_range = extract("Late show 11pm-1am")
    assert time_range == (23, 0, 1, 0)
    assert time_range.wraps_midnight
    assert not TimeRange(18, 0, 21, 0).wraps_midnight


@pytest.mark.parametrize("hour, meridiem, expected", [
    (12, "pm", 12), (12, "am", 0), (6, "PM", 18), (6, "am", 6), (11, "pm", 23),
])
def test_to_24_hour(hour, meridiem, expected):
    assert to_24_hour(hour, meridiem) == expected


def test_project_range_same_day():
    start, end = project_range(TimeRange(18, 0, 21, 0), date(2025, 9, 17), "America/New_York")
    assert format_utc_iso(start) == "2025-09-17T22:00:00Z"
    assert format_utc_iso(end) == "2025-09-18T01:00:00Z"


def test_project_range_moves_end_to_next_day_when_wrapping():
    start, end = project_range(TimeRange(23, 0, 1, 0), date(2025, 9, 17), "America/New_York")
    assert format_utc_iso(start) == "2025-09-18T03:00:00Z"
    assert format_utc_iso(end) == "2025-09-18T05:00:00Z"
