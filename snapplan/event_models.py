"""
Event data models for calendar event extraction.
Defines ParsedEvent (normalized output) and ParseResult (normalizer envelope).
"""

import re
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import List, Literal, Optional

from snapplan.errors import ValidationFailed
from snapplan.timezone_projector import parse_instant

ParseMethod = Literal["ai", "fallback"]

UTC_ISO_PATTERN = re.compile(r"^\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2}(?:\.\d+)?Z$")


@dataclass(frozen=True)
class ParsedEvent:
    """
    A normalized calendar event.

    start_iso/end_iso are UTC instants ("...Z"). For all-day events they hold
    local 00:00 and 23:59 of the day in the display timezone.
    """
    title: str
    start_iso: str
    end_iso: str
    description: Optional[str] = None
    location: Optional[str] = None
    timezone: Optional[str] = None  # zone the source wall-clock time was read in
    all_day: Optional[bool] = None

    @property
    def start_time(self) -> datetime:
        return parse_instant(self.start_iso)

    @property
    def end_time(self) -> datetime:
        return parse_instant(self.end_iso)

    def duration_minutes(self) -> int:
        """Get event duration in minutes."""
        delta = self.end_time - self.start_time
        return int(delta.total_seconds() / 60)

    def is_valid(self) -> bool:
        """Check if event satisfies the ParsedEvent shape."""
        try:
            self.validate()
        except ValidationFailed:
            return False
        return True

    def validate(self) -> "ParsedEvent":
        """
        Check the event against the ParsedEvent shape.

        Returns:
            self, so calls can be chained

        Raises:
            ValidationFailed: naming the first offending field
        """
        if not isinstance(self.title, str) or not self.title.strip():
            raise ValidationFailed("title must be a non-empty string", {"field": "title"})

        for name in ("start_iso", "end_iso"):
            value = getattr(self, name)
            if not isinstance(value, str) or not UTC_ISO_PATTERN.match(value):
                raise ValidationFailed(f"{name} must be an ISO-8601 UTC string", {"field": name, "value": value})
            try:
                parse_instant(value)
            except ValueError as err:
                raise ValidationFailed(f"{name} is not a real instant: {err}", {"field": name, "value": value})

        if self.end_time < self.start_time:
            raise ValidationFailed(
                "end_iso is before start_iso",
                {"field": "end_iso", "start": self.start_iso, "end": self.end_iso},
            )

        for name in ("description", "location", "timezone"):
            value = getattr(self, name)
            if value is not None and not isinstance(value, str):
                raise ValidationFailed(f"{name} must be a string", {"field": name})

        if self.all_day is not None and not isinstance(self.all_day, bool):
            raise ValidationFailed("all_day must be a boolean", {"field": "all_day"})
        return self

    def with_changes(self, **changes) -> "ParsedEvent":
        """New event with `changes` applied (the original is left untouched)."""
        return replace(self, **changes)

    def to_dict(self) -> dict:
        """Wire shape (camelCase keys, optional fields omitted when unset)."""
        data = {
            "title": self.title,
            "startISO": self.start_iso,
            "endISO": self.end_iso,
        }
        optional = {
            "description": self.description,
            "location": self.location,
            "timezone": self.timezone,
            "allDay": self.all_day,
        }
        data.update({key: value for key, value in optional.items() if value is not None})
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "ParsedEvent":
        return cls(
            title=data.get("title"),
            start_iso=data.get("startISO"),
            end_iso=data.get("endISO"),
            description=data.get("description"),
            location=data.get("location"),
            timezone=data.get("timezone"),
            all_day=data.get("allDay"),
        )


@dataclass
class ParseResult:
    """Output envelope of one normalization run."""
    events: List[ParsedEvent] = field(default_factory=list)
    method: ParseMethod = "ai"
    reason: Optional[str] = None
    model: Optional[str] = None
    extracted_text: Optional[str] = None

    @property
    def used_fallback(self) -> bool:
        return self.method == "fallback"

    def to_dict(self) -> dict:
        data = {
            "events": [event.to_dict() for event in self.events],
            "method": self.method,
        }
        if self.reason is not None:
            data["reason"] = self.reason
        if self.model is not None:
            data["model"] = self.model
        if self.extracted_text is not None:
            data["extractedText"] = self.extracted_text
        return data
