"""
SnapPlan command line entry point.

    snapplan "Club Social, September 17th 6pm - 9pm, Student Center"
    snapplan --image poster1.jpg --image poster2.png --ics ~/Downloads
    snapplan "Bake sale Oct 4 10am-2pm" --timezone Europe/London --edit location="Main Hall" --calendar google
"""

import argparse
import dataclasses
import json
import os
import sys
from typing import List, Optional

from snapplan.batch_processor import process_batch
from snapplan.calendar_connector import create_calendar_event
from snapplan.errors import SnapPlanError, ValidationFailed
from snapplan.event_editor import apply_edit, change_display_timezone
from snapplan.event_models import ParsedEvent
from snapplan.event_normalizer import parse_input
from snapplan.event_store import EventStore
from snapplan.ics_generator import write_ics
from snapplan.logging_helper import Log
from snapplan.settings_manager import load_normalizer_config
from snapplan.timezone_projector import to_local_components


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="snapplan", description="Turn event text or posters into calendar events.")
    parser.add_argument("text", nargs="?", help="event text (read from stdin when omitted and no --image is given)")
    parser.add_argument("--image", action="append", default=[], metavar="PATH",
                        help="poster/flyer image; repeat for a batch")
    parser.add_argument("--timezone", metavar="TZ",
                        help="display timezone for this run (unknown names keep the saved one)")
    parser.add_argument("--edit", action="append", default=[], metavar="FIELD=VALUE",
                        help="change a field on every extracted event; dates YYYY-MM-DD, times HH:MM")
    parser.add_argument("--ics", metavar="OUT", help="write an .ics file (a directory or a .ics path)")
    parser.add_argument("--calendar", choices=("ics", "google"),
                        help="hand each event to a calendar: one .ics file per event, or Google Calendar")
    parser.add_argument("--calendar-dir", metavar="DIR", help="directory for --calendar ics files (default ~/Downloads)")
    parser.add_argument("--google-token", metavar="TOKEN", default=os.getenv("GOOGLE_ACCESS_TOKEN"),
                        help="OAuth access token; without one --calendar google prints a pre-filled link")
    parser.add_argument("--store", metavar="PATH", help="append the events to this JSON-lines store")
    parser.add_argument("--json", action="store_true", help="print events as JSON")
    return parser


def _format_event(event: ParsedEvent, display_timezone: str) -> str:
    start = to_local_components(event.start_time, display_timezone)
    end = to_local_components(event.end_time, display_timezone)
    if event.all_day:
        when = f"{start.date_str()} (all day)"
    else:
        when = (f"{start.date_str()} {start.time_str()} - {end.date_str()} {end.time_str()} {display_timezone}"
                f" ({event.duration_minutes()} min)")
    lines = [f"* {event.title}", f"  {when}"]
    if event.location:
        lines.append(f"  @ {event.location}")
    return "\n".join(lines)


def _apply_edits(events: List[ParsedEvent], edits: List[str], display_timezone: str) -> List[ParsedEvent]:
    edited = []
    for event in events:
        for edit in edits:
            field, sep, value = edit.partition("=")
            if not sep:
                print(f"! Ignoring edit {edit!r}: expected FIELD=VALUE", file=sys.stderr)
                continue
            try:
                event = apply_edit(event, field.strip(), value, display_timezone)
            except ValidationFailed as err:
                print(f"! Edit {edit!r} rejected for {event.title!r}: {err.reason}", file=sys.stderr)
        edited.append(event)
    return edited


def _send_to_calendar(events: List[ParsedEvent], args, display_timezone: str) -> bool:
    ok = True
    for event in events:
        try:
            created = create_calendar_event(
                event,
                calendar_preference=args.calendar,
                access_token=args.google_token,
                ics_directory=args.calendar_dir,
                default_timezone=display_timezone,
            )
        except (OSError, SnapPlanError) as err:
            reason = err.reason if isinstance(err, SnapPlanError) else str(err)
            Log.error(f"Calendar hand-off failed for {event.title!r}: {reason}")
            print(f"! {event.title}: {reason}", file=sys.stderr)
            ok = False
            continue
        if isinstance(created, dict):
            print(f"Added to Google Calendar: {created.get('htmlLink') or created.get('id')}", file=sys.stderr)
        else:
            print(f"{event.title}: {created}", file=sys.stderr)
    return ok


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    Log.section("SnapPlan")
    Log.info(f"Log file: {Log.get_log_path()}")

    config = load_normalizer_config()
    if args.timezone is not None:
        display_timezone = change_display_timezone(config.default_timezone, args.timezone)
        config = dataclasses.replace(config, default_timezone=display_timezone)

    if args.image:
        batch = process_batch(args.image, config=config)
        events = batch.events
        for failure in batch.failures:
            print(f"! {failure.source}: {failure.reason}", file=sys.stderr)
        provenance = [("image", None, item.extracted_text) for item in batch.items for _ in item.events]
    else:
        text = args.text if args.text is not None else sys.stdin.read()
        if not text.strip():
            print("No event text given", file=sys.stderr)
            return 2
        result = parse_input(text=text, config=config)
        if result.used_fallback:
            print(f"! AI extraction unavailable, using placeholder event: {result.reason}", file=sys.stderr)
        events = result.events
        provenance = [("text", text, result.extracted_text)] * len(events)

    if args.edit:
        events = _apply_edits(events, args.edit, config.default_timezone)

    if args.json:
        print(json.dumps([event.to_dict() for event in events], indent=2, ensure_ascii=False))
    else:
        for event in events:
            print(_format_event(event, config.default_timezone))

    if args.store and events:
        store = EventStore(args.store)
        for event, (input_type, original_input, extracted_text) in zip(events, provenance):
            store.create(event, original_input=original_input, input_type=input_type, extracted_text=extracted_text)

    if args.ics and events:
        try:
            ics_path = write_ics(events, args.ics, config.default_timezone)
        except OSError as err:
            Log.error(f"ICS generation failed: {err}")
            return 1
        print(f"Wrote {ics_path}", file=sys.stderr)

    if args.calendar and events and not _send_to_calendar(events, args, config.default_timezone):
        return 1

    if not events:
        Log.warn("No events extracted")
        return 1
    return 0


if __name__ == "__main__":
    try:
        sys.exit(main())
    except SnapPlanError as err:
        Log.error(err.reason)
        sys.exit(1)
