"""
Error kinds raised inside the normalization pipeline.

ServiceUnavailable and MalformedResponse never reach callers of parse_input:
they degrade to the fallback heuristic. InvalidTimezone is caught by callers
that then keep their previous timezone. ValidationFailed drops a single event.
"""

from typing import Optional


class SnapPlanError(Exception):
    """Base class for pipeline errors. `reason` is the user-facing explanation."""

    def __init__(self, reason: str, details: Optional[dict] = None):
        super().__init__(reason)
        self.reason = reason
        self.details = details or {}


class ServiceUnavailable(SnapPlanError):
    """Extraction backend unreachable, misconfigured or answering with an HTTP error."""


class MalformedResponse(SnapPlanError):
    """Extraction backend answered, but the payload is not usable JSON / has no event."""


class InvalidTimezone(SnapPlanError):
    """Unrecognized IANA timezone name."""

    def __init__(self, name):
        super().__init__(f"Invalid timezone: {name!r}", {"timezone": name})
        self.name = name


class ValidationFailed(SnapPlanError):
    """A normalized event does not satisfy the ParsedEvent shape."""
