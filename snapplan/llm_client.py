"""
LLM client interface for extracting events from text or poster images.
Supports GeminiExtractionClient and OpenAIExtractionClient (real providers)
and stub clients for offline runs.

Clients return the model's raw reply text; decoding and normalization happen
in the event normalizer. Transport and configuration problems raise
ServiceUnavailable, empty replies raise MalformedResponse.
"""

import base64
import io
import json
import os
from abc import ABC, abstractmethod
from typing import List, Optional

import requests
from PIL import Image

from snapplan.errors import MalformedResponse, ServiceUnavailable
from snapplan.logging_helper import Log
from snapplan.settings_manager import NormalizerConfig

# Maximum encoded image size in bytes (10MB)
MAX_IMAGE_SIZE = 10 * 1024 * 1024
# Maximum image dimensions (prevent extremely large images)
MAX_IMAGE_DIMENSION = 10000
MAX_PROMPT_LENGTH = 10000

GEMINI_API_BASE = "https://generativelanguage.googleapis.com"
GEMINI_FALLBACK_MODELS = (
    "gemini-2.5-pro",
    "gemini-2.0-flash",
    "gemini-1.5-flash",
    "gemini-1.5-pro",
    "gemini-2.0-flash-lite",
)
GEMINI_ENDPOINTS = ("v1beta", "v1")
OPENAI_API_URL = "https://api.openai.com/v1/chat/completions"

_EVENT_SHAPE = """{{
  "rawText": "{raw_text_hint}",
  "event": {{
    "title": "string",
    "description": "string (optional)",
    "location": "string (optional)",
    "startISO": "ISO 8601 string like {year}-11-29T10:30:00Z",
    "endISO": "ISO 8601 string like {year}-11-29T16:00:00Z",
    "timezone": "IANA timezone (optional)",
    "allDay": false,
    "hasFreeFood": false,
    "registrationNeeded": null
  }}
}}"""

_RULES = """FREE FOOD: set "hasFreeFood": true only if the text mentions complimentary food (free food, free lunch, free snacks, ...).
REGISTRATION: "registrationNeeded" is true if the text asks to register / RSVP / sign up, false if it says no registration is needed, null if it is not mentioned.
ALL-DAY: set "allDay": true if the text says "all day" / "full day" or mentions a date but no time at all.
TIMES: if times are written in the text (e.g. "6pm - 9pm", "6:00 PM"), use exactly those times, in 24-hour form.
TIMEZONE: if the text names no timezone, the times are local to {timezone}; set "timezone" to "{timezone}".
YEAR: if the text names no year, use {year}.
DESCRIPTION: include the complete extracted text, do not summarize.

Return ONLY the raw JSON object, no markdown code blocks, no explanation. Start with {{ and end with }}."""


def build_prompt(current_year: int, default_timezone: str, text: Optional[str] = None) -> str:
    """Prompt for a text input, or for an image when `text` is None."""
    if text is None:
        intro = (
            "Analyze this event poster/flyer image and extract the calendar event information.\n\n"
            "Step 1: Extract all relevant text from the image (ignore decorative elements, logos and graphics).\n"
            "Step 2: Parse the calendar event from the extracted text.\n"
        )
        raw_text_hint = "the text extracted from the image"
    else:
        intro = (
            "Step 1: Extract the raw text (copy it exactly as provided).\n"
            "Step 2: Analyze the text and parse the calendar event.\n"
        )
        raw_text_hint = "the original input text"

    prompt = (
        intro
        + "\nReturn a JSON object with this EXACT structure:\n"
        + _EVENT_SHAPE.format(raw_text_hint=raw_text_hint, year=current_year)
        + "\n\n"
        + _RULES.format(timezone=default_timezone, year=current_year)
    )
    if text is not None:
        prompt += f"\n\nText to parse:\n{text}"
    return prompt


class ExtractionClient(ABC):
    """Abstract base class for extraction clients."""

    model: Optional[str] = None

    @abstractmethod
    def extract(self, text: Optional[str] = None, image: Optional[Image.Image] = None) -> str:
        """
        Ask the model for event JSON.

        Args:
            text: typed input text (mutually exclusive with image)
            image: PIL Image of a poster/flyer

        Returns:
            The model's raw reply text

        Raises:
            ServiceUnavailable: backend unreachable, misconfigured or failing
            MalformedResponse: backend answered without any text
        """


class StubExtractionClient(ExtractionClient):
    """
    Stub client for offline runs and tests.
    Returns a canned reply in the same format a real provider produces.
    """

    model = "stub"

    def __init__(self, reply: Optional[str] = None):
        self.reply = reply
        self.calls = 0

    def extract(self, text: Optional[str] = None, image: Optional[Image.Image] = None) -> str:
        Log.section("Stub LLM Client")
        Log.info("Using stub extraction client (offline mode)")
        self.calls += 1

        if self.reply is not None:
            Log.kv({"stage": "llm", "provider": "stub", "result": "success", "reply_length": len(self.reply)})
            return self.reply

        raw_text = text if text is not None else "Sample Meeting\nNovember 15, 10:30am-11:30am\nConference Room A"
        reply = json.dumps({
            "rawText": raw_text,
            "event": {
                "title": raw_text.split("\n")[0][:60] or "Sample Meeting",
                "description": raw_text,
                "startISO": "2024-11-15T10:30:00Z",
                "endISO": "2024-11-15T11:30:00Z",
                "timezone": None,
                "allDay": False,
                "hasFreeFood": False,
                "registrationNeeded": None,
            },
        })
        Log.kv({"stage": "llm", "provider": "stub", "result": "success", "reply_length": len(reply)})
        return reply


class UnavailableStubClient(ExtractionClient):
    """
    Stub client that simulates an unreachable extraction backend.
    Useful for tests & simulation of the fallback path.
    """

    model = "stub_unavailable"

    def extract(self, text: Optional[str] = None, image: Optional[Image.Image] = None) -> str:
        Log.section("Stub LLM Client - Unavailable")
        Log.kv({"stage": "llm", "provider": "stub_unavailable", "result": "failed"})
        raise ServiceUnavailable("Extraction service unavailable (stub)")


def validate_image(image: Image.Image) -> None:
    """
    Validate image before processing.

    Raises:
        ServiceUnavailable: the image cannot be sent to the provider
    """
    if image is None:
        raise ServiceUnavailable("Failed to process image: image is None")

    width, height = image.size
    if width == 0 or height == 0:
        raise ServiceUnavailable(f"Failed to process image: invalid dimensions {width}x{height}")
    if width > MAX_IMAGE_DIMENSION or height > MAX_IMAGE_DIMENSION:
        # Continue anyway - it is re-encoded and size-checked below
        Log.warn(f"Image too large: {width}x{height}, may need resizing")


def image_to_base64(image: Image.Image) -> str:
    """
    Encode a PIL Image as base64 JPEG.

    Raises:
        ServiceUnavailable: if the image can't be encoded under MAX_IMAGE_SIZE
    """
    # Convert to RGB if necessary (removes transparency)
    if image.mode != 'RGB':
        image = image.convert('RGB')

    image_bytes = b""
    for quality in (85, 60):
        buffer = io.BytesIO()
        try:
            image.save(buffer, format='JPEG', quality=quality, optimize=True)
        except OSError as e:
            raise ServiceUnavailable(f"Failed to process image: {e}")
        image_bytes = buffer.getvalue()
        if len(image_bytes) <= MAX_IMAGE_SIZE:
            break
        Log.warn(f"Image size {len(image_bytes)} bytes exceeds limit at quality {quality}, compressing...")
    else:
        raise ServiceUnavailable(f"Image too large even after compression: {len(image_bytes)} bytes")

    base64_string = base64.b64encode(image_bytes).decode('utf-8')
    Log.info(f"Image converted to base64: {len(base64_string)} chars")
    return base64_string


def _check_prompt(prompt: str) -> None:
    if len(prompt) > MAX_PROMPT_LENGTH:
        raise ServiceUnavailable(f"Prompt too long: {len(prompt)} characters. Maximum: {MAX_PROMPT_LENGTH} characters")


def _error_detail(response: requests.Response) -> str:
    try:
        error_data = response.json()
    except ValueError:
        return response.text[:500] or f"HTTP {response.status_code}"
    if isinstance(error_data, dict):
        error = error_data.get("error")
        if isinstance(error, dict):
            return error.get("message") or str(error)
        if error:
            return str(error)
    return str(error_data)[:500]


def _status_reason(status: int, detail: str, provider: str) -> str:
    if status == 404:
        return (f"All {provider} models returned 404 (not found). The API is probably not enabled "
                f"for this key's project, or the model name is wrong.")
    if status in (401, 403):
        return f"API key invalid or missing permissions ({status}). Check the {provider} API key."
    if status == 400:
        return f"Bad request (400): {detail}. Check your API key format and model name."
    return f"API error ({status}): {detail}"


class GeminiExtractionClient(ExtractionClient):
    """
    Google Gemini client (generateContent REST endpoint).
    Walks a list of fallback models and API versions; stops on auth errors.
    """

    def __init__(self, api_key: str, model: str = "gemini-2.5-flash", timeout: float = 30.0,
                 config: Optional[NormalizerConfig] = None):
        self.api_key = api_key
        self.model = model
        self.timeout = timeout
        self.config = config or NormalizerConfig()

    def _models_to_try(self) -> List[str]:
        models = [self.model]
        models.extend(m for m in GEMINI_FALLBACK_MODELS if m != self.model)
        return models

    def _post(self, endpoint: str, model: str, parts: list) -> requests.Response:
        url = f"{GEMINI_API_BASE}/{endpoint}/models/{model}:generateContent"
        return requests.post(
            url,
            params={"key": self.api_key},
            json={
                "contents": [{"role": "user", "parts": parts}],
                "generationConfig": {"temperature": 0.2},
            },
            timeout=self.timeout,
        )

    def extract(self, text: Optional[str] = None, image: Optional[Image.Image] = None) -> str:
        Log.section("Gemini LLM Client")
        Log.info(f"Using Gemini API ({self.model}), input type: {'image' if image is not None else 'text'}")

        prompt = build_prompt(self.config.current_year, self.config.default_timezone,
                              text if image is None else None)
        _check_prompt(prompt)
        parts: list = [{"text": prompt}]
        if image is not None:
            validate_image(image)
            parts.append({"inline_data": {"mime_type": "image/jpeg", "data": image_to_base64(image)}})

        last_response: Optional[requests.Response] = None
        for endpoint in GEMINI_ENDPOINTS:
            for model in self._models_to_try():
                Log.info(f"Trying model: \"{model}\" via {endpoint}")
                try:
                    response = self._post(endpoint, model, parts)
                except requests.exceptions.RequestException as e:
                    Log.error(f"Gemini API request failed: {e}")
                    Log.kv({"stage": "llm", "provider": "gemini", "result": "failed", "reason": "api_error", "error": str(e)})
                    raise ServiceUnavailable(f"Error calling Gemini API: {e}")

                last_response = response
                if response.ok:
                    self.model = model
                    Log.kv({"stage": "llm", "provider": "gemini", "model": model, "endpoint": endpoint, "result": "success"})
                    return self._reply_text(response)

                if response.status_code in (401, 403):
                    Log.error(f"Auth error ({response.status_code}) for \"{model}\" via {endpoint}, stopping model fallback")
                    raise ServiceUnavailable(_status_reason(response.status_code, _error_detail(response), "Gemini"))
                Log.warn(f"Error {response.status_code} for \"{model}\" via {endpoint}, trying next model...")

        status = last_response.status_code if last_response is not None else 0
        detail = _error_detail(last_response) if last_response is not None else "no response received"
        Log.kv({"stage": "llm", "provider": "gemini", "result": "failed", "status": status})
        raise ServiceUnavailable(_status_reason(status, detail, "Gemini"))

    @staticmethod
    def _reply_text(response: requests.Response) -> str:
        try:
            data = response.json()
        except ValueError:
            raise MalformedResponse("Gemini API returned a non-JSON body")
        try:
            content = data["candidates"][0]["content"]["parts"][0]["text"]
        except (KeyError, IndexError, TypeError):
            raise MalformedResponse("No text response from Gemini API")
        if not content:
            raise MalformedResponse("No text response from Gemini API")
        return content


class OpenAIExtractionClient(ExtractionClient):
    """
    OpenAI chat-completions client for real event extraction.
    Uses GPT-4o-mini by default for vision tasks.
    """

    def __init__(self, api_key: str, model: str = "gpt-4o-mini", timeout: float = 30.0,
                 config: Optional[NormalizerConfig] = None):
        self.api_key = api_key
        self.api_url = OPENAI_API_URL
        self.model = model
        self.timeout = timeout
        self.config = config or NormalizerConfig()

    def extract(self, text: Optional[str] = None, image: Optional[Image.Image] = None) -> str:
        Log.section("OpenAI LLM Client")
        Log.info(f"Using OpenAI API ({self.model})")

        prompt = build_prompt(self.config.current_year, self.config.default_timezone,
                              text if image is None else None)
        _check_prompt(prompt)
        content: list = [{"type": "text", "text": prompt}]
        if image is not None:
            validate_image(image)
            content.append({
                "type": "image_url",
                "image_url": {"url": f"data:image/jpeg;base64,{image_to_base64(image)}"},
            })

        payload = {
            "model": self.model,
            "messages": [{"role": "user", "content": content}],
            "max_tokens": 800,
            "temperature": 0.1,
        }
        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }
        Log.kv({"stage": "llm", "provider": "openai", "model": self.model, "status": "requesting",
                "image_included": image is not None})

        try:
            response = requests.post(self.api_url, headers=headers, json=payload, timeout=self.timeout)
        except requests.exceptions.RequestException as e:
            Log.error(f"OpenAI API request failed: {e}")
            Log.kv({"stage": "llm", "provider": "openai", "result": "failed", "reason": "api_error", "error": str(e)})
            raise ServiceUnavailable(f"Error calling OpenAI API: {e}")

        Log.info(f"API response status: {response.status_code}")
        if not response.ok:
            detail = _error_detail(response)
            Log.error(f"OpenAI API error: {detail}")
            raise ServiceUnavailable(_status_reason(response.status_code, detail, "OpenAI"))

        try:
            result = response.json()
            reply = result.get('choices', [{}])[0].get('message', {}).get('content', '')
        except (ValueError, AttributeError, IndexError):
            raise MalformedResponse("OpenAI API returned an unexpected body")
        if not reply:
            Log.warn("Empty response from OpenAI")
            Log.kv({"stage": "llm", "provider": "openai", "result": "failed", "reason": "empty_response"})
            raise MalformedResponse("Empty response from OpenAI")

        Log.kv({"stage": "llm", "provider": "openai", "result": "success", "reply_length": len(reply)})
        return reply


def get_llm_client(config: Optional[NormalizerConfig] = None) -> ExtractionClient:
    """
    Factory function to get the appropriate extraction client.

    USE_STUB_UNAVAILABLE forces the unavailable stub, USE_STUB the canned
    stub. Otherwise GEMINI_API_KEY selects Gemini and OPENAI_API_KEY OpenAI.

    Raises:
        ServiceUnavailable: no backend is configured
    """
    config = config or NormalizerConfig()

    if os.getenv("USE_STUB_UNAVAILABLE"):
        Log.info("USE_STUB_UNAVAILABLE flag set - using stub client (service unavailable)")
        return UnavailableStubClient()

    if os.getenv("USE_STUB"):
        Log.info("USE_STUB flag set - using stub client")
        return StubExtractionClient()

    gemini_key = os.getenv("GEMINI_API_KEY")
    if gemini_key:
        Log.info("Gemini API key found - using Gemini client")
        return GeminiExtractionClient(gemini_key, config.gemini_model, config.request_timeout, config)

    openai_key = os.getenv("OPENAI_API_KEY")
    if openai_key:
        Log.info("OpenAI API key found - using OpenAI client")
        return OpenAIExtractionClient(openai_key, config.openai_model, config.request_timeout, config)

    Log.warn("No extraction API key configured")
    raise ServiceUnavailable("GEMINI_API_KEY / OPENAI_API_KEY is not set - no extraction backend configured")
