import io
import json

from snapplan.app import main
from snapplan.errors import ServiceUnavailable
from snapplan.event_store import EventStore


def test_text_to_store_and_ics(monkeypatch, tmp_path, capsys):
    monkeypatch.setenv("USE_STUB", "1")
    store_path = tmp_path / "events.jsonl"
    ics_path = tmp_path / "out.ics"

    code = main(["Robotics expo 10am-1pm", "--store", str(store_path), "--ics", str(ics_path)])

    assert code == 0
    out = capsys.readouterr().out
    assert "* Robotics expo 10am-1pm" in out
    assert "(180 min)" in out
    [record] = EventStore(store_path).list_records()
    assert record["inputType"] == "text"
    assert record["originalInput"] == "Robotics expo 10am-1pm"
    assert "BEGIN:VEVENT" in ics_path.read_text(encoding="utf-8")


def test_empty_text_is_rejected(monkeypatch):
    monkeypatch.setattr("sys.stdin", io.StringIO("  "))
    assert main([]) == 2


def test_unavailable_service_still_produces_placeholder(monkeypatch, capsys):
    monkeypatch.setenv("USE_STUB_UNAVAILABLE", "1")
    assert main(["Chess club", "--json"]) == 0
    captured = capsys.readouterr()
    assert '"title": "Chess club"' in captured.out
    assert "placeholder" in captured.err


def test_display_timezone_and_edits(monkeypatch, capsys):
    monkeypatch.setenv("USE_STUB", "1")
    code = main(["Robotics expo 10am-1pm", "--timezone", "Europe/London",
                 "--edit", "location=Main Hall", "--edit", "start_time=11:00", "--json"])

    assert code == 0
    [event] = json.loads(capsys.readouterr().out)
    assert event["location"] == "Main Hall"
    assert event["timezone"] == "Europe/London"
    assert event["startISO"].endswith("-11-15T11:00:00Z")
    assert event["endISO"].endswith("-11-15T13:00:00Z")


def test_unknown_display_timezone_keeps_saved_one(monkeypatch, capsys):
    monkeypatch.setenv("USE_STUB", "1")
    assert main(["Robotics expo 10am-1pm", "--timezone", "Mars/Base", "--json"]) == 0
    [event] = json.loads(capsys.readouterr().out)
    assert event["startISO"].endswith("-11-15T15:00:00Z")


def test_rejected_edit_keeps_event(monkeypatch, capsys):
    monkeypatch.setenv("USE_STUB", "1")
    assert main(["Robotics expo 10am-1pm", "--edit", "start_date=someday", "--edit", "colour", "--json"]) == 0
    captured = capsys.readouterr()
    [event] = json.loads(captured.out)
    assert event["startISO"].endswith("-11-15T15:00:00Z")
    assert "rejected" in captured.err
    assert "expected FIELD=VALUE" in captured.err


def test_calendar_ics_writes_one_file_per_event(monkeypatch, tmp_path, capsys):
    monkeypatch.setenv("USE_STUB", "1")
    assert main(["Robotics expo 10am-1pm", "--calendar", "ics", "--calendar-dir", str(tmp_path)]) == 0
    [ics_file] = tmp_path.glob("*.ics")
    assert "SUMMARY:Robotics expo 10am-1pm" in ics_file.read_text(encoding="utf-8")
    assert str(ics_file) in capsys.readouterr().err


def test_calendar_google_without_token_prints_link(monkeypatch, capsys):
    monkeypatch.setenv("USE_STUB", "1")
    assert main(["Robotics expo 10am-1pm", "--calendar", "google"]) == 0
    assert "https://calendar.google.com/calendar/r/eventedit?action=TEMPLATE" in capsys.readouterr().err


def test_calendar_google_failure_sets_exit_code(monkeypatch, capsys):
    monkeypatch.setenv("USE_STUB", "1")

    def refuse(*args, **kwargs):
        raise ServiceUnavailable("Authentication expired. Please sign in again.")

    monkeypatch.setattr("snapplan.calendar_connector.create_google_event", refuse)
    assert main(["Robotics expo 10am-1pm", "--calendar", "google", "--google-token", "expired"]) == 1
    assert "Authentication expired" in capsys.readouterr().err
