"""
Stage 1: Text Extraction — OCR for photographed paper prescriptions.
Loads the image (URL or local path) and sends it to Gemini (multimodal)
for a verbatim transcription.

Hard gate: never raises; any failure comes back as success=False
with a human-readable error and the pipeline aborts.
"""

from __future__ import annotations

import logging
from pathlib import Path

import httpx

from rx_fulfillment.config import settings
from rx_fulfillment.models.extraction import TextExtractionResult
from rx_fulfillment.tools.gemini import GeminiClient, get_gemini

logger = logging.getLogger(__name__)

# ── Gemini prompt for text extraction ─────────────────────────

OCR_PROMPT = """You are an OCR engine reading a photographed medical prescription
from a pharmacy in Bangladesh. The text may be handwritten and may mix English
and Bengali.

TASK: transcribe ALL text in the image exactly as written, line by line.

RULES:
- Keep medicine names, strengths (500mg, 20ml), dosage schedules (1+0+1, 1+1+1)
  and abbreviations (Tab, Cap, Syr, A/C, P/C, H/S) exactly as written
- Keep the original line order
- Do not translate, summarise or correct anything
- If a word is illegible, write [illegible]
- If the image contains no text at all, answer with an empty response
- Answer ONLY with the transcription, no commentary"""


def _guess_mime_type(ref: str) -> str:
    """Guess MIME type from URL/path extension."""
    ref_lower = ref.lower().split("?", 1)[0]
    if ref_lower.endswith(".png"):
        return "image/png"
    if ref_lower.endswith(".webp"):
        return "image/webp"
    if ref_lower.endswith(".heic"):
        return "image/heic"
    return "image/jpeg"


def _load_image(image_ref: str) -> bytes:
    """Read an image from an http(s) URL, a file:// URI or a local path."""
    if image_ref.startswith(("http://", "https://")):
        with httpx.Client(timeout=settings.HTTP_TIMEOUT_SECONDS, follow_redirects=True) as client:
            resp = client.get(image_ref)
            resp.raise_for_status()
            return resp.content

    path = Path(image_ref[len("file://"):] if image_ref.startswith("file://") else image_ref)
    return path.read_bytes()


# ── Public API ────────────────────────────────────────────────

def extract_text(image_ref: str, client: GeminiClient | None = None) -> TextExtractionResult:
    """Transcribe the prescription image. Always returns a result, never raises."""
    if not image_ref:
        return TextExtractionResult(success=False, error="No image provided")

    try:
        image_bytes = _load_image(image_ref)
    except Exception as exc:
        logger.error("Failed to load image %s: %s", image_ref, exc)
        return TextExtractionResult(success=False, error=f"Could not read image: {exc}")

    if not image_bytes:
        return TextExtractionResult(success=False, error="Image is empty")

    try:
        client = client or get_gemini()
        text = client.generate_text(
            OCR_PROMPT,
            image_bytes=image_bytes,
            mime_type=_guess_mime_type(image_ref),
        ).strip()
    except Exception as exc:
        logger.error("OCR extraction failed for %s: %s", image_ref, exc, exc_info=True)
        return TextExtractionResult(success=False, error=f"OCR extraction failed: {exc}")

    if not text:
        logger.info("OCR: no text detected in %s", image_ref)
        return TextExtractionResult(success=False, error="No text detected in image")

    illegible = text.count("[illegible]")
    words = max(1, len(text.split()))
    confidence = round(max(0.0, 1.0 - illegible / words), 2)

    logger.info("OCR extracted %d chars (confidence: %.2f)", len(text), confidence)
    return TextExtractionResult(success=True, extracted_text=text, confidence=confidence)
