"""Gemini generateContent integration."""

from __future__ import annotations

import logging
from typing import Any
from urllib.parse import quote

import httpx

from app.config import Settings
from app.errors import ConfigurationError, UpstreamError

LOGGER = logging.getLogger(__name__)

GEMINI_BASE_URL = "https://generativelanguage.googleapis.com/v1beta"


class GeminiClient:
    """Single-turn text generation client."""

    def __init__(self, settings: Settings, transport: httpx.AsyncBaseTransport | None = None) -> None:
        self.settings = settings
        self._transport = transport

    async def generate_reply(self, prompt_text: str) -> str:
        """Return generated reply text, or the fallback reply when the model returns nothing."""
        api_key = self.settings.gemini_api_key
        if not api_key:
            raise ConfigurationError("Missing GEMINI_API_KEY")

        url = f"{GEMINI_BASE_URL}/models/{quote(self.settings.gemini_model, safe='')}:generateContent"
        body = {
            "contents": [{"role": "user", "parts": [{"text": prompt_text}]}],
            "generationConfig": {
                "temperature": self.settings.gemini_temperature,
                "maxOutputTokens": self.settings.gemini_max_output_tokens,
            },
        }
        try:
            async with httpx.AsyncClient(
                timeout=self.settings.http_timeout_seconds, transport=self._transport
            ) as client:
                response = await client.post(url, headers={"x-goog-api-key": api_key}, json=body)
        except httpx.HTTPError as exc:
            raise UpstreamError("Gemini", None, str(exc)) from exc

        if not response.is_success:
            raise UpstreamError("Gemini", response.status_code, response.text)

        try:
            data = response.json()
        except ValueError:
            LOGGER.warning(
                "gemini returned non-JSON body",
                extra={"event": "gemini_unparseable", "context": {"status_code": response.status_code}},
            )
            return self.settings.fallback_reply
        return extract_reply_text(data) or self.settings.fallback_reply


def extract_reply_text(data: Any) -> str:
    """Join the text parts of the first candidate; empty string when absent."""
    if not isinstance(data, dict):
        return ""
    candidates = data.get("candidates")
    if not isinstance(candidates, list) or not candidates:
        return ""
    first = candidates[0]
    content = first.get("content") if isinstance(first, dict) else None
    parts = content.get("parts") if isinstance(content, dict) else None
    if not isinstance(parts, list):
        return ""
    texts = [part.get("text") for part in parts if isinstance(part, dict)]
    return "".join(text for text in texts if isinstance(text, str) and text).strip()
