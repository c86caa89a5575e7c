import pytest

from snapplan.settings_manager import NormalizerConfig

NEW_YORK = "America/New_York"


@pytest.fixture(autouse=True)
def isolated_environment(monkeypatch, tmp_path):
    monkeypatch.setenv("SNAPPLAN_LOG_FILE", "0")
    monkeypatch.setenv("SNAPPLAN_SETTINGS_FILE", str(tmp_path / "settings.json"))
    for name in ("GEMINI_API_KEY", "OPENAI_API_KEY", "GEMINI_MODEL", "OPENAI_MODEL",
                 "AI_PARSE_MODE", "USE_STUB", "USE_STUB_UNAVAILABLE", "GOOGLE_ACCESS_TOKEN"):
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def config():
    return NormalizerConfig(default_timezone=NEW_YORK, current_year=2025)

