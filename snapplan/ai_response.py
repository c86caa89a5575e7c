"""
Decoding and shape resolution for the extraction service's reply.

The model is asked for {"rawText": ..., "event": {...}} but in practice the
reply may be fenced in markdown, be a bare array, use an "events" key, or be
the event object itself. Each shape is classified explicitly and candidate
fields are resolved with a fixed priority.
"""

import json
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, List, Optional, Tuple

from snapplan.errors import MalformedResponse

START_FIELDS = ("startISO", "start", "startTime", "startDate")
END_FIELDS = ("endISO", "end", "endTime", "endDate")
TITLE_FIELDS = ("title", "name", "summary")
LOCATION_FIELDS = ("location", "place", "venue")
DESCRIPTION_FIELDS = ("description", "detail", "details")
TIMEZONE_FIELDS = ("timezone", "tz", "timeZone")

_FENCE_OPEN = re.compile(r"^```(?:json)?\s*\n?", re.IGNORECASE)
_FENCE_CLOSE = re.compile(r"\n?```\s*$")
_ARRAY_IN_TEXT = re.compile(r"\[[\s\S]*\]")
_OBJECT_IN_TEXT = re.compile(r"\{[\s\S]*\}")


class ResponseShape(Enum):
    EVENT_ENVELOPE = "event_envelope"    # {"rawText": "...", "event": {...}}
    EVENTS_ENVELOPE = "events_envelope"  # {"rawText": "...", "events": [...] | {...}}
    EVENT_LIST = "event_list"            # [{...}, {...}]
    BARE_EVENT = "bare_event"            # {"title": ..., "startISO": ...}
    UNRECOGNIZED = "unrecognized"


@dataclass(frozen=True)
class CandidateEvent:
    """One event as proposed by the AI, fields resolved but not yet normalized."""
    title: Optional[str] = None
    description: Optional[str] = None
    location: Optional[str] = None
    start: Optional[str] = None
    end: Optional[str] = None
    timezone: Optional[str] = None
    all_day: Optional[bool] = None
    has_free_food: Optional[bool] = None
    registration_needed: Optional[bool] = None

    @classmethod
    def from_item(cls, item: dict) -> "CandidateEvent":
        return cls(
            title=_first_text(item, TITLE_FIELDS),
            description=_first_text(item, DESCRIPTION_FIELDS),
            location=_first_text(item, LOCATION_FIELDS),
            start=resolve_time_field(item, START_FIELDS),
            end=resolve_time_field(item, END_FIELDS),
            timezone=resolve_timezone_field(item),
            all_day=_as_flag(item.get("allDay")),
            has_free_food=_as_flag(item.get("hasFreeFood")),
            registration_needed=_as_flag(item.get("registrationNeeded")),
        )


@dataclass(frozen=True)
class ExtractionPayload:
    shape: ResponseShape
    raw_text: Optional[str] = None
    items: List[dict] = field(default_factory=list)

    @property
    def candidates(self) -> List[CandidateEvent]:
        return [CandidateEvent.from_item(item) for item in self.items]


def _first_text(item: dict, keys: Tuple[str, ...]) -> Optional[str]:
    for key in keys:
        value = item.get(key)
        if isinstance(value, str) and value.strip():
            return value.strip()
    return None


def _as_flag(value: Any) -> Optional[bool]:
    """true/"true" -> True, false/"false" -> False, anything else -> None."""
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered == "true":
            return True
        if lowered == "false":
            return False
    return None


def resolve_time_field(item: dict, keys: Tuple[str, ...]) -> Optional[str]:
    """
    First non-empty timestamp among `keys`; nested Google-style values
    ({"dateTime": ...} or {"date": ...}) are unwrapped.
    """
    for key in keys:
        value = item.get(key)
        if isinstance(value, dict):
            value = value.get("dateTime") or value.get("date")
        if isinstance(value, str) and value.strip():
            return value.strip()
    return None


def resolve_timezone_field(item: dict) -> Optional[str]:
    found = _first_text(item, TIMEZONE_FIELDS)
    if found:
        return found
    start = item.get("start")
    if isinstance(start, dict) and isinstance(start.get("timeZone"), str) and start["timeZone"].strip():
        return start["timeZone"].strip()
    return None


def strip_code_fence(text: str) -> str:
    cleaned = (text or "").strip()
    if cleaned.startswith("```"):
        cleaned = _FENCE_OPEN.sub("", cleaned)
        cleaned = _FENCE_CLOSE.sub("", cleaned)
    return cleaned.strip()


def decode_response_text(text: str) -> Any:
    """
    Turn the model's reply text into JSON.

    Raises:
        MalformedResponse: empty reply or no JSON recoverable from it
    """
    if not text or not text.strip():
        raise MalformedResponse("No text response from extraction service")

    cleaned = strip_code_fence(text)
    try:
        return json.loads(cleaned)
    except json.JSONDecodeError:
        pass

    # Prose around the JSON: try whichever of array / object opens first
    matches = [m for m in (_ARRAY_IN_TEXT.search(cleaned), _OBJECT_IN_TEXT.search(cleaned)) if m]
    for match in sorted(matches, key=lambda m: m.start()):
        try:
            return json.loads(match.group(0))
        except json.JSONDecodeError:
            continue
    raise MalformedResponse(
        "No valid JSON found in extraction response. Response: " + text[:200],
        {"preview": text[:200]},
    )


def _looks_like_event(data: dict) -> bool:
    return resolve_time_field(data, START_FIELDS) is not None


def _raw_text_of(data: Any) -> Optional[str]:
    if isinstance(data, dict):
        value = data.get("rawText")
        if isinstance(value, str) and value.strip():
            return value
    return None


def classify_payload(data: Any) -> ExtractionPayload:
    """Classify decoded JSON and pull out its candidate event dicts."""
    if isinstance(data, list):
        items: List[dict] = []
        raw_text = None
        for element in data:
            if not isinstance(element, dict):
                continue
            # an array of envelopes
            raw_text = raw_text or _raw_text_of(element)
            inner = classify_payload(element) if ("event" in element or "events" in element) else None
            if inner is not None:
                items.extend(inner.items)
            else:
                items.append(element)
        return ExtractionPayload(ResponseShape.EVENT_LIST, raw_text, items)

    if not isinstance(data, dict):
        return ExtractionPayload(ResponseShape.UNRECOGNIZED)

    raw_text = _raw_text_of(data)
    event = data.get("event")
    if isinstance(event, dict):
        return ExtractionPayload(ResponseShape.EVENT_ENVELOPE, raw_text, [event])

    events = data.get("events")
    if isinstance(events, list) and events:
        return ExtractionPayload(
            ResponseShape.EVENTS_ENVELOPE, raw_text, [e for e in events if isinstance(e, dict)]
        )
    if isinstance(events, dict):
        return ExtractionPayload(ResponseShape.EVENTS_ENVELOPE, raw_text, [events])

    if _looks_like_event(data):
        return ExtractionPayload(ResponseShape.BARE_EVENT, raw_text, [data])

    return ExtractionPayload(ResponseShape.UNRECOGNIZED, raw_text)
