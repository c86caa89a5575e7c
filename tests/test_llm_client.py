import base64
import json

import pytest
import requests
from PIL import Image

from snapplan import llm_client
from snapplan.errors import MalformedResponse, ServiceUnavailable
from snapplan.llm_client import (
    GeminiExtractionClient,
    OpenAIExtractionClient,
    StubExtractionClient,
    UnavailableStubClient,
    build_prompt,
    get_llm_client,
    image_to_base64,
)
from snapplan.settings_manager import NormalizerConfig


class FakeResponse:
    def __init__(self, status_code=200, body=None, text=""):
        self.status_code = status_code
        self.body = body
        self.text = text

    @property
    def ok(self):
        return self.status_code < 400

    def json(self):
        if self.body is None:
            raise ValueError("no json")
        return self.body


def gemini_body(text):
    return {"candidates": [{"content": {"parts": [{"text": text}]}}]}


@pytest.fixture
def posts(monkeypatch):
    """Queue of fake responses for requests.post; records each call."""
    state = {"responses": [], "calls": []}

    def fake_post(url, **kwargs):
        state["calls"].append((url, kwargs))
        response = state["responses"].pop(0)
        if isinstance(response, Exception):
            raise response
        return response

    monkeypatch.setattr(llm_client.requests, "post", fake_post)
    return state


def test_prompt_carries_year_timezone_and_text():
    prompt = build_prompt(2025, "America/Chicago", "Bake sale 10am-2pm")
    assert "2025" in prompt
    assert "America/Chicago" in prompt
    assert prompt.endswith("Text to parse:\nBake sale 10am-2pm")

    image_prompt = build_prompt(2025, "America/Chicago")
    assert "poster" in image_prompt
    assert "Text to parse" not in image_prompt


def test_client_selection(monkeypatch, config):
    with pytest.raises(ServiceUnavailable):
        get_llm_client(config)

    monkeypatch.setenv("OPENAI_API_KEY", "sk-test")
    assert isinstance(get_llm_client(config), OpenAIExtractionClient)

    monkeypatch.setenv("GEMINI_API_KEY", "g-test")
    client = get_llm_client(config)
    assert isinstance(client, GeminiExtractionClient)
    assert client.model == config.gemini_model

    monkeypatch.setenv("USE_STUB", "1")
    assert isinstance(get_llm_client(config), StubExtractionClient)

    monkeypatch.setenv("USE_STUB_UNAVAILABLE", "1")
    assert isinstance(get_llm_client(config), UnavailableStubClient)


def test_stub_echoes_text():
    reply = json.loads(StubExtractionClient().extract(text="Knitting circle\nTuesday 5pm"))
    assert reply["rawText"] == "Knitting circle\nTuesday 5pm"
    assert reply["event"]["title"] == "Knitting circle"


def test_gemini_success(posts, config):
    posts["responses"].append(FakeResponse(200, gemini_body('{"event": {}}')))
    client = GeminiExtractionClient("g-key", "gemini-2.5-flash", 12, config)

    assert client.extract(text="Bake sale") == '{"event": {}}'
    [(url, kwargs)] = posts["calls"]
    assert url.endswith("/v1beta/models/gemini-2.5-flash:generateContent")
    assert kwargs["params"] == {"key": "g-key"}
    assert kwargs["timeout"] == 12
    assert "Bake sale" in kwargs["json"]["contents"][0]["parts"][0]["text"]


def test_gemini_falls_back_to_next_model_on_404(posts, config):
    posts["responses"].extend([FakeResponse(404, {"error": {"message": "not found"}}),
                               FakeResponse(200, gemini_body("[]"))])
    client = GeminiExtractionClient("g-key", "gemini-2.5-flash", 30, config)

    assert client.extract(text="Bake sale") == "[]"
    assert client.model == "gemini-2.5-pro"
    assert len(posts["calls"]) == 2


def test_gemini_stops_on_auth_error(posts, config):
    posts["responses"].append(FakeResponse(403, {"error": {"message": "denied"}}))
    with pytest.raises(ServiceUnavailable) as excinfo:
        GeminiExtractionClient("bad", config=config).extract(text="Bake sale")
    assert "403" in excinfo.value.reason
    assert len(posts["calls"]) == 1


def test_gemini_network_error(posts, config):
    posts["responses"].append(requests.exceptions.Timeout("slow"))
    with pytest.raises(ServiceUnavailable):
        GeminiExtractionClient("g-key", config=config).extract(text="Bake sale")


def test_gemini_reply_without_text(posts, config):
    posts["responses"].append(FakeResponse(200, {"candidates": []}))
    with pytest.raises(MalformedResponse):
        GeminiExtractionClient("g-key", config=config).extract(text="Bake sale")


def test_gemini_sends_image_inline(posts, config):
    posts["responses"].append(FakeResponse(200, gemini_body("{}")))
    GeminiExtractionClient("g-key", config=config).extract(image=Image.new("RGBA", (8, 8)))
    parts = posts["calls"][0][1]["json"]["contents"][0]["parts"]
    assert parts[1]["inline_data"]["mime_type"] == "image/jpeg"


def test_openai_success_and_error(posts, config):
    posts["responses"].append(FakeResponse(200, {"choices": [{"message": {"content": '{"event": {}}'}}]}))
    client = OpenAIExtractionClient("sk-test", config=config)
    assert client.extract(text="Bake sale") == '{"event": {}}'
    url, kwargs = posts["calls"][0]
    assert url == llm_client.OPENAI_API_URL
    assert kwargs["headers"]["Authorization"] == "Bearer sk-test"

    posts["responses"].append(FakeResponse(500, text="upstream exploded"))
    with pytest.raises(ServiceUnavailable) as excinfo:
        client.extract(text="Bake sale")
    assert "upstream exploded" in excinfo.value.reason


def test_openai_empty_reply(posts, config):
    posts["responses"].append(FakeResponse(200, {"choices": [{"message": {"content": ""}}]}))
    with pytest.raises(MalformedResponse):
        OpenAIExtractionClient("sk-test", config=config).extract(text="Bake sale")


def test_image_to_base64_is_jpeg():
    encoded = image_to_base64(Image.new("RGBA", (16, 16), (255, 0, 0, 128)))
    assert base64.b64decode(encoded)[:2] == b"\xff\xd8"


def test_prompt_too_long_is_unavailable(config):
    with pytest.raises(ServiceUnavailable):
        GeminiExtractionClient("g-key", config=config).extract(text="x" * 20000)
