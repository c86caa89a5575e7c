"""
Event normalizer: turns the extraction service's reply into ParsedEvents.

Flow per input:
    RECEIVED_RAW -> AI_CALLED -> AI_SUCCEEDED | AI_FAILED
    AI_SUCCEEDED -> (per event) CORRECTED -> VALIDATED -> ACCEPTED | REJECTED

AI_FAILED goes straight to the fallback heuristic. The correction passes run
against the original text, which overrides the AI's timestamps wherever it
carries explicit evidence (year, all-day wording, time ranges).
"""

import re
from datetime import datetime, timedelta
from enum import Enum
from typing import List, Optional, Tuple

from dateutil import parser as dateutil_parser
from PIL import Image

from snapplan.ai_response import CandidateEvent, ResponseShape, classify_payload, decode_response_text
from snapplan.all_day_classifier import all_day_bounds, is_all_day
from snapplan.errors import InvalidTimezone, MalformedResponse, ServiceUnavailable, ValidationFailed
from snapplan.event_models import ParsedEvent, ParseResult
from snapplan.event_tags import build_description, compute_tags
from snapplan.fallback_heuristic import DEFAULT_TITLE, fallback_events
from snapplan.llm_client import ExtractionClient, get_llm_client
from snapplan.logging_helper import Log
from snapplan.settings_manager import NormalizerConfig
from snapplan.time_range_extractor import extract as extract_time_range
from snapplan.time_range_extractor import project_range
from snapplan.timezone_projector import (
    format_utc_iso,
    is_utc_name,
    parse_instant,
    resolve_timezone,
    to_local_components,
    to_utc,
)
from snapplan.year_inference import apply_year, infer_year

IMAGE_PLACEHOLDER = "Image input"
DEFAULT_DURATION = timedelta(minutes=60)

# "2025-09-17T18:00", "2025-09-17 18:00:00.000"
_LOCAL_STAMP = re.compile(r"^(\d{4})-(\d{1,2})-(\d{1,2})(?:[T ](\d{1,2}):(\d{2})(?::(\d{2})(?:\.\d+)?)?)?$")
_EXPLICIT_OFFSET = re.compile(r"(?:Z|[+-]\d{2}:?\d{2})$", re.IGNORECASE)


class NormalizerState(Enum):
    RECEIVED_RAW = "received_raw"
    AI_CALLED = "ai_called"
    AI_SUCCEEDED = "ai_succeeded"
    AI_FAILED = "ai_failed"
    CORRECTED = "corrected"
    VALIDATED = "validated"
    ACCEPTED = "accepted"
    REJECTED = "rejected"


def _transition(state: NormalizerState, **details) -> NormalizerState:
    Log.kv({"stage": "normalize", "state": state.value, **details})
    return state


def _fallback_result(text: Optional[str], reason: str, model: Optional[str] = None,
                     extracted_text: Optional[str] = None) -> ParseResult:
    Log.warn(f"Using fallback heuristic: {reason}")
    return ParseResult(
        events=fallback_events(text),
        method="fallback",
        reason=reason,
        model=model,
        extracted_text=extracted_text,
    )


def _source_timezone(candidate: CandidateEvent, config: NormalizerConfig) -> str:
    """The AI's timezone when it names a real one, else the display default."""
    if not candidate.timezone:
        return config.default_timezone
    try:
        resolve_timezone(candidate.timezone)
    except InvalidTimezone as err:
        Log.warn(f"{err.reason} from extraction service, using {config.default_timezone}")
        return config.default_timezone
    return candidate.timezone


def project_ai_timestamp(value: str, source_tz: str, config: NormalizerConfig) -> datetime:
    """
    Turn an AI-reported timestamp into a UTC instant.

    The AI tends to label local wall-clock time as UTC, so a trailing "Z" is
    dropped unless the source timezone really is UTC. Numeric offsets are
    taken as absolute. Anything else is parsed as local time in `source_tz`.

    Raises:
        ValidationFailed: the value can't be read as a date/time
    """
    text = value.strip()
    if text.upper().endswith("Z") and not is_utc_name(source_tz):
        text = text[:-1]

    if _EXPLICIT_OFFSET.search(text) and "T" in text.upper():
        try:
            return parse_instant(text)
        except (ValueError, OverflowError) as err:
            raise ValidationFailed(f"Unreadable timestamp {value!r}: {err}")

    match = _LOCAL_STAMP.match(text)
    try:
        if match:
            year, month, day, hour, minute, second = match.groups()
            date_str = f"{int(year):04d}-{int(month):02d}-{int(day):02d}"
            time_str = f"{int(hour or 0):02d}:{int(minute or 0):02d}"
            if second and int(second):
                time_str += f":{int(second):02d}"
            return to_utc(date_str, time_str, source_tz)

        # Natural language ("Nov 5 6pm"); a missing year defaults to the current one
        parsed = dateutil_parser.parse(text, default=datetime(config.current_year, 1, 1))
        alternate = dateutil_parser.parse(text, default=datetime(config.current_year, 2, 2))
        if (parsed.month, parsed.day) != (alternate.month, alternate.day):
            raise ValidationFailed(f"Timestamp {value!r} has no date")
        if parsed.tzinfo is not None:
            return parse_instant(parsed)
        return to_utc(parsed.strftime("%Y-%m-%d"), parsed.strftime("%H:%M:%S"), source_tz)
    except (ValueError, OverflowError) as err:
        raise ValidationFailed(f"Unreadable timestamp {value!r}: {err}")


def _ai_instants(candidate: CandidateEvent, source_tz: str,
                 config: NormalizerConfig) -> Tuple[datetime, datetime]:
    if not candidate.start:
        raise ValidationFailed("Event missing start time")
    start = project_ai_timestamp(candidate.start, source_tz, config)

    if not candidate.end:
        Log.info("No end time from extraction service, defaulting to 60 minutes")
        return start, start + DEFAULT_DURATION

    end = project_ai_timestamp(candidate.end, source_tz, config)
    if end < start:
        Log.warn(f"End {format_utc_iso(end)} precedes start {format_utc_iso(start)}, defaulting to 60 minutes")
        end = start + DEFAULT_DURATION
    return start, end


def apply_corrections(start: datetime, end: datetime, raw_text: Optional[str], ai_all_day: Optional[bool],
                      source_tz: str, config: NormalizerConfig) -> Tuple[datetime, datetime, bool]:
    """
    Re-check the AI's instants against the original text.

    Order: year inference, then all-day (which wins outright), then the
    explicit time range. Returns (start, end, all_day).
    """
    if raw_text and infer_year(raw_text, config.current_year) is None:
        start, end = apply_year(start, end, config.current_year, source_tz)

    local_date = to_local_components(start, source_tz).local_date

    if is_all_day(raw_text, ai_all_day):
        start, end = all_day_bounds(local_date, config.default_timezone)
        Log.kv({"stage": "all_day", "date": local_date.isoformat(), "timezone": config.default_timezone})
        return start, end, True

    time_range = extract_time_range(raw_text) if raw_text else None
    if time_range is not None:
        start, end = project_range(time_range, local_date, source_tz)
    return start, end, False


def normalize_event(candidate: CandidateEvent, raw_text: Optional[str],
                    config: NormalizerConfig) -> ParsedEvent:
    """
    Normalize one AI candidate into a validated ParsedEvent.

    Raises:
        ValidationFailed: the candidate can't be turned into a valid event
    """
    source_tz = _source_timezone(candidate, config)
    try:
        start, end = _ai_instants(candidate, source_tz, config)
        start, end, all_day = apply_corrections(start, end, raw_text, candidate.all_day, source_tz, config)
    except (ValueError, OverflowError) as err:
        raise ValidationFailed(f"Timestamp out of range: {err}")
    _transition(NormalizerState.CORRECTED, start=format_utc_iso(start), end=format_utc_iso(end),
                timezone=source_tz, all_day=all_day)

    tags = compute_tags(raw_text, candidate.has_free_food, candidate.registration_needed)
    # all-day bounds were computed in the display timezone
    event_tz = config.default_timezone if all_day else source_tz
    event = ParsedEvent(
        title=candidate.title or DEFAULT_TITLE,
        start_iso=format_utc_iso(start),
        end_iso=format_utc_iso(end),
        description=build_description(tags, raw_text, candidate.description),
        location=candidate.location,
        timezone=event_tz,
        all_day=all_day,
    )
    event.validate()
    _transition(NormalizerState.VALIDATED, title=event.title)
    return event


def normalize_response(response_text: str, input_text: Optional[str], config: NormalizerConfig,
                       model: Optional[str] = None) -> ParseResult:
    """
    Normalize the extraction service's raw reply.

    Args:
        response_text: the model's reply text
        input_text: the typed input, or None for image input
        config: display timezone and current year
        model: which backend answered

    Returns:
        ParseResult; method "fallback" if nothing usable came back
    """
    Log.section("Event Normalizer")
    fallback_text = input_text if input_text is not None else IMAGE_PLACEHOLDER

    try:
        payload = classify_payload(decode_response_text(response_text))
    except MalformedResponse as err:
        _transition(NormalizerState.AI_FAILED, reason="malformed_response")
        return _fallback_result(fallback_text, err.reason, model, input_text)

    raw_text = payload.raw_text or input_text
    if payload.shape is ResponseShape.UNRECOGNIZED or not payload.items:
        _transition(NormalizerState.AI_FAILED, reason="no_event", shape=payload.shape.value)
        return _fallback_result(fallback_text, "No valid event found in extraction response", model, input_text)
    _transition(NormalizerState.AI_SUCCEEDED, shape=payload.shape.value, candidates=len(payload.items))

    events: List[ParsedEvent] = []
    for index, candidate in enumerate(payload.candidates):
        try:
            events.append(normalize_event(candidate, raw_text, config))
        except ValidationFailed as err:
            _transition(NormalizerState.REJECTED, index=index, reason=err.reason)
            continue
        _transition(NormalizerState.ACCEPTED, index=index)

    if not events:
        return _fallback_result(fallback_text, "No valid event found in extraction response", model, input_text)

    Log.info(f"Normalized {len(events)} event(s)")
    return ParseResult(events=events, method="ai", model=model, extracted_text=raw_text)


def parse_input(text: Optional[str] = None, image: Optional[Image.Image] = None,
                client: Optional[ExtractionClient] = None,
                config: Optional[NormalizerConfig] = None) -> ParseResult:
    """
    Full pipeline for one input: extraction call, normalization, fallback.

    Never raises for service or payload problems; those come back as a
    fallback ParseResult with a reason.
    """
    config = config or NormalizerConfig()
    is_image = image is not None
    fallback_text = IMAGE_PLACEHOLDER if is_image else (text or "")
    extracted_text = None if is_image else text
    _transition(NormalizerState.RECEIVED_RAW, input_type="image" if is_image else "text")

    if config.ai_parse_mode == "local":
        return _fallback_result(fallback_text, 'AI_PARSE_MODE is set to "local"', extracted_text=extracted_text)

    try:
        client = client or get_llm_client(config)
        _transition(NormalizerState.AI_CALLED, model=client.model)
        response_text = client.extract(text=None if is_image else text, image=image)
    except (ServiceUnavailable, MalformedResponse) as err:
        _transition(NormalizerState.AI_FAILED, reason=err.reason)
        model = client.model if client is not None else None
        return _fallback_result(fallback_text, err.reason, model, extracted_text)

    return normalize_response(response_text, extracted_text, config, client.model)
