"""
Application settings management.

Settings are persisted as JSON so choices survive restarts; environment
variables override the file for deployment secrets and switches. The
normalizer never reads globals: `load_normalizer_config()` builds a
NormalizerConfig once at startup and it is passed in explicitly.
"""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Literal, Optional, TypedDict

from snapplan.errors import InvalidTimezone
from snapplan.logging_helper import Log
from snapplan.timezone_projector import DEFAULT_TIMEZONE, resolve_timezone

AIParseMode = Literal["ai", "local"]


class SettingsSchema(TypedDict, total=False):
    default_timezone: str
    ai_parse_mode: AIParseMode
    gemini_model: str
    openai_model: str
    request_timeout: float


SETTINGS_DIR = Path.home() / ".snapplan"
SETTINGS_FILE = SETTINGS_DIR / "settings.json"

DEFAULT_SETTINGS: SettingsSchema = {
    "default_timezone": DEFAULT_TIMEZONE,
    "ai_parse_mode": "ai",
    "gemini_model": "gemini-2.5-flash",
    "openai_model": "gpt-4o-mini",
    "request_timeout": 30.0,
}


@dataclass(frozen=True)
class NormalizerConfig:
    """Ambient context for one process: display timezone and 'current year'."""
    default_timezone: str = DEFAULT_TIMEZONE
    current_year: int = field(default_factory=lambda: datetime.now().year)
    ai_parse_mode: AIParseMode = "ai"
    gemini_model: str = DEFAULT_SETTINGS["gemini_model"]
    openai_model: str = DEFAULT_SETTINGS["openai_model"]
    request_timeout: float = DEFAULT_SETTINGS["request_timeout"]

    def __post_init__(self) -> None:
        try:
            resolve_timezone(self.default_timezone)
        except InvalidTimezone as err:
            Log.warn(f"{err.reason}, defaulting to {DEFAULT_TIMEZONE}")
            # frozen: bypass the generated __setattr__
            object.__setattr__(self, "default_timezone", DEFAULT_TIMEZONE)


def _settings_file() -> Path:
    override = os.environ.get("SNAPPLAN_SETTINGS_FILE")
    return Path(override).expanduser() if override else SETTINGS_FILE


def _ensure_settings_dir(path: Path) -> None:
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
    except OSError as err:
        Log.warn(f"Unable to create settings directory {path.parent}: {err}")


def load_settings() -> SettingsSchema:
    """
    Load settings from disk, falling back to defaults if anything fails.
    """
    path = _settings_file()
    if not path.exists():
        Log.info(f"Settings file not found, using defaults: {path}")
        return DEFAULT_SETTINGS.copy()

    try:
        data = json.loads(path.read_text(encoding="utf-8"))
        if not isinstance(data, dict):
            raise ValueError("Settings data is not a JSON object")
    except (OSError, ValueError) as err:
        Log.warn(f"Failed to read settings file ({path}): {err}")
        return DEFAULT_SETTINGS.copy()

    merged: SettingsSchema = DEFAULT_SETTINGS.copy()
    # Merge only known keys
    for key in DEFAULT_SETTINGS:
        if key in data:
            merged[key] = data[key]  # type: ignore[literal-required]
    return merged


def save_settings(settings: SettingsSchema) -> None:
    """
    Persist settings to disk.
    """
    path = _settings_file()
    _ensure_settings_dir(path)
    try:
        path.write_text(
            json.dumps(settings, indent=2, sort_keys=True),
            encoding="utf-8",
        )
    except OSError as err:
        Log.warn(f"Failed to write settings file ({path}): {err}")


def get_default_timezone(settings: Optional[SettingsSchema] = None) -> str:
    settings = settings if settings is not None else load_settings()
    preferred = settings.get("default_timezone", DEFAULT_TIMEZONE)
    try:
        resolve_timezone(preferred)
    except InvalidTimezone:
        Log.warn(f"Invalid default_timezone value '{preferred}', defaulting to {DEFAULT_TIMEZONE}")
        preferred = DEFAULT_TIMEZONE
    return preferred


def set_default_timezone(value: str) -> str:
    """
    Store a new display timezone.

    Returns:
        the timezone now in effect: `value` if valid, otherwise the previous one
    """
    settings = load_settings()
    previous = get_default_timezone(settings)
    try:
        resolve_timezone(value)
    except InvalidTimezone as err:
        Log.warn(f"{err.reason} - keeping {previous}")
        return previous

    settings["default_timezone"] = value.strip()
    save_settings(settings)
    Log.info(f"Saved default timezone setting: {value.strip()}")
    return value.strip()


def _env_parse_mode(settings: SettingsSchema) -> AIParseMode:
    mode = (os.getenv("AI_PARSE_MODE") or settings.get("ai_parse_mode") or "ai").strip().lower()
    if mode not in ("ai", "local"):
        Log.warn(f"Invalid ai_parse_mode value '{mode}', defaulting to ai")
        mode = "ai"
    return mode  # type: ignore[return-value]


def _clean_model_name(raw: str) -> str:
    # .env files often carry quoted values
    return raw.strip().strip("'\"")


def load_normalizer_config(current_year: Optional[int] = None) -> NormalizerConfig:
    """Build the per-process NormalizerConfig from settings file + environment."""
    settings = load_settings()
    gemini_model = _clean_model_name(os.getenv("GEMINI_MODEL") or settings.get("gemini_model") or DEFAULT_SETTINGS["gemini_model"])
    openai_model = _clean_model_name(os.getenv("OPENAI_MODEL") or settings.get("openai_model") or DEFAULT_SETTINGS["openai_model"])

    try:
        timeout = float(settings.get("request_timeout", DEFAULT_SETTINGS["request_timeout"]))
    except (TypeError, ValueError):
        Log.warn("Invalid request_timeout setting, using default")
        timeout = DEFAULT_SETTINGS["request_timeout"]

    config = NormalizerConfig(
        default_timezone=get_default_timezone(settings),
        current_year=current_year or datetime.now().year,
        ai_parse_mode=_env_parse_mode(settings),
        gemini_model=gemini_model,
        openai_model=openai_model,
        request_timeout=timeout,
    )
    Log.kv({
        "stage": "config",
        "default_timezone": config.default_timezone,
        "current_year": config.current_year,
        "ai_parse_mode": config.ai_parse_mode,
    })
    return config
