"""
Append-only event store: one JSON object per line.

Each record is the event's wire shape plus provenance (original input, input
type, extracted text), an id and timestamps.
"""

import json
import uuid
from datetime import datetime
from pathlib import Path
from typing import List, Literal, Optional

from snapplan.event_models import ParsedEvent
from snapplan.logging_helper import Log
from snapplan.timezone_projector import UTC, format_utc_iso

InputType = Literal["image", "text"]

DEFAULT_STORE_PATH = Path.home() / ".snapplan" / "events.jsonl"


class EventStore:
    def __init__(self, path: Optional[Path] = None):
        self.path = Path(path).expanduser() if path else DEFAULT_STORE_PATH

    def create(self, event: ParsedEvent, original_input: Optional[str] = None,
               input_type: Optional[InputType] = None, extracted_text: Optional[str] = None) -> dict:
        """
        Append one event and return the stored record.

        Raises:
            ValidationFailed: the event is not a valid ParsedEvent
            OSError: the store file couldn't be written
        """
        event.validate()
        now = format_utc_iso(datetime.now(UTC))
        record = {
            "id": str(uuid.uuid4()),
            **event.to_dict(),
            "syncedToGoogle": False,
            "createdAt": now,
            "updatedAt": now,
        }
        if original_input is not None:
            record["originalInput"] = original_input
        if input_type is not None:
            record["inputType"] = input_type
        if extracted_text is not None:
            record["extractedText"] = extracted_text

        self.path.parent.mkdir(parents=True, exist_ok=True)
        with self.path.open("a", encoding="utf-8") as handle:
            handle.write(json.dumps(record, ensure_ascii=False) + "\n")
        Log.kv({"stage": "store", "result": "created", "id": record["id"], "title": event.title})
        return record

    def list_records(self) -> List[dict]:
        if not self.path.exists():
            return []
        records = []
        with self.path.open("r", encoding="utf-8") as handle:
            for line_number, line in enumerate(handle, start=1):
                if not line.strip():
                    continue
                try:
                    records.append(json.loads(line))
                except json.JSONDecodeError as err:
                    Log.warn(f"Skipping unreadable store line {line_number} in {self.path}: {err}")
        return records

    def list_events(self) -> List[ParsedEvent]:
        events = []
        for record in self.list_records():
            event = ParsedEvent.from_dict(record)
            if not event.is_valid():
                Log.warn(f"Skipping invalid stored event {record.get('id')!r} in {self.path}")
                continue
            events.append(event)
        return events
