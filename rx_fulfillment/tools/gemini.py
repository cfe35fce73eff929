"""
Thin wrapper around the Gemini SDK shared by the OCR, analyzer and
safety stages. Handles rate-limit backoff and JSON extraction from
free-form model output.
"""

from __future__ import annotations

import json
import logging
import re
import time
from functools import lru_cache
from typing import Any

from google import genai
from google.genai import types as genai_types

from rx_fulfillment.config import settings

logger = logging.getLogger(__name__)

_JSON_BLOCK = re.compile(r"\{[\s\S]*\}")


class GeminiError(RuntimeError):
    """The model could not produce a usable answer after all retries."""


def _is_rate_limit(exc: Exception) -> bool:
    err_str = str(exc).lower()
    return "429" in err_str or "rate" in err_str or "quota" in err_str


def parse_json_response(text: str) -> dict[str, Any]:
    """Pull the first {...} object out of a model response (code fences tolerated)."""
    text = (text or "").strip()
    if text.startswith("```"):
        text = text.split("\n", 1)[1] if "\n" in text else text[3:]
    if text.endswith("```"):
        text = text[:-3]
    match = _JSON_BLOCK.search(text)
    if not match:
        raise ValueError("No JSON object in model response")
    data = json.loads(match.group(0))
    if not isinstance(data, dict):
        raise ValueError("Model response is not a JSON object")
    return data


class GeminiClient:
    """Sends text (and optionally one image) to Gemini with retry/backoff."""

    def __init__(self, api_key: str, model: str, max_retries: int = 3):
        self._client = genai.Client(api_key=api_key)
        self.model = model
        self.max_retries = max_retries

    def generate_text(
        self,
        prompt: str,
        image_bytes: bytes | None = None,
        mime_type: str = "image/jpeg",
        system: str | None = None,
        temperature: float = 0.1,
        max_output_tokens: int = 4000,
    ) -> str:
        parts: list[genai_types.Part] = []
        if image_bytes is not None:
            parts.append(genai_types.Part.from_bytes(data=image_bytes, mime_type=mime_type))
        parts.append(genai_types.Part.from_text(text=prompt))

        config = genai_types.GenerateContentConfig(
            temperature=temperature,
            max_output_tokens=max_output_tokens,
            system_instruction=system,
        )

        last_exc: Exception | None = None
        for attempt in range(self.max_retries):
            try:
                response = self._client.models.generate_content(
                    model=self.model,
                    contents=[genai_types.Content(role="user", parts=parts)],
                    config=config,
                )
                return response.text or ""
            except Exception as exc:
                last_exc = exc
                if _is_rate_limit(exc):
                    delay = settings.RETRY_BASE_DELAY * (2 ** attempt)
                    delay = min(delay, settings.RETRY_MAX_DELAY)
                    logger.warning("Gemini rate limit (attempt %d), waiting %.1fs", attempt + 1, delay)
                    time.sleep(delay)
                else:
                    logger.error("Gemini error (attempt %d): %s", attempt + 1, exc)

        raise GeminiError(f"Gemini failed after {self.max_retries} attempts: {last_exc}")

    def generate_json(self, prompt: str, **kwargs: Any) -> dict[str, Any]:
        """Like generate_text, but parses the answer; invalid JSON is retried once."""
        for attempt in range(2):
            text = self.generate_text(prompt, **kwargs)
            try:
                return parse_json_response(text)
            except ValueError as exc:
                logger.warning("Gemini returned invalid JSON (attempt %d): %s", attempt + 1, exc)
        raise GeminiError("Gemini returned no parseable JSON")


# ── Singleton ─────────────────────────────────────────────────

@lru_cache(maxsize=1)
def get_gemini() -> GeminiClient:
    """Return the singleton Gemini client."""
    return GeminiClient(
        api_key=settings.GEMINI_API_KEY,
        model=settings.GEMINI_MODEL,
        max_retries=settings.MAX_RETRIES,
    )
