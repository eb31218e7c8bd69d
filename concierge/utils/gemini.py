"""Gemini image-generation client helpers for concept rendering."""

from __future__ import annotations

import io

import structlog
from google import genai
from google.genai import types
from PIL import Image

from concierge.config import settings

logger = structlog.get_logger()

IMAGE_CONFIG = types.GenerateContentConfig(
    response_modalities=["TEXT", "IMAGE"],
)


def get_client() -> genai.Client:
    """Create a Gemini client using the configured API key."""
    return genai.Client(api_key=settings.google_ai_api_key)


def extract_image(response: types.GenerateContentResponse) -> Image.Image | None:
    """Extract the first image from a Gemini response as PIL Image.

    Returns None if no image parts found. May raise if image data is corrupt.
    """
    if not response.candidates:
        return None
    content = response.candidates[0].content
    if content is None or content.parts is None:
        return None
    for part in content.parts:
        try:
            genai_img = part.as_image()
        except (AttributeError, ValueError):
            # Expected: part is not an image type
            continue
        if genai_img is not None and genai_img.image_bytes is not None:
            try:
                return Image.open(io.BytesIO(genai_img.image_bytes))
            except OSError:
                logger.error(
                    "gemini_image_decode_failed",
                    image_bytes_len=len(genai_img.image_bytes),
                )
                raise
    return None


def extract_text(response: types.GenerateContentResponse) -> str:
    """Extract all text parts from a Gemini response."""
    if not response.candidates:
        return ""
    content = response.candidates[0].content
    if content is None or content.parts is None:
        return ""
    return "".join(part.text for part in content.parts if part.text)
