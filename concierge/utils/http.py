"""Shared HTTP image download helpers for the live provider.

Downloads client-supplied images (references, placement photos, generated
concepts) and validates content-type and image integrity.
"""

from __future__ import annotations

import base64
import binascii
from typing import TYPE_CHECKING

from PIL import Image

from concierge.compiler.errors import ProviderError
from concierge.utils.image import open_image

if TYPE_CHECKING:
    import httpx

FETCH_TIMEOUT_SECONDS = 30


class ImageFetchError(ProviderError):
    """Download or decode failure.

    ``code`` is ``unreachable_image`` or ``invalid_image``; ``retryable`` is
    False when retrying the same URL cannot succeed.
    """

    def __init__(self, message: str, *, code: str, retryable: bool) -> None:
        super().__init__(message, code=code)
        self.retryable = retryable


async def fetch_image(client: httpx.AsyncClient, url: str) -> Image.Image:
    """Fetch and validate a single image using the given HTTP client."""
    import httpx

    try:
        response = await client.get(url, timeout=FETCH_TIMEOUT_SECONDS)
    except httpx.TimeoutException as exc:
        raise ImageFetchError(
            f"Timeout downloading image: {url[:100]}",
            code="unreachable_image",
            retryable=True,
        ) from exc
    except httpx.RequestError as exc:
        raise ImageFetchError(
            f"Network error downloading image: {url[:100]}: {type(exc).__name__}",
            code="unreachable_image",
            retryable=True,
        ) from exc

    if response.status_code >= 400:
        # 429 is retryable (throttling); other 4xx are client errors
        retryable = response.status_code >= 500 or response.status_code == 429
        raise ImageFetchError(
            f"HTTP {response.status_code} downloading image: {url[:100]}",
            code="unreachable_image",
            retryable=retryable,
        )

    content_type = response.headers.get("content-type", "")
    if content_type and not content_type.startswith("image/"):
        raise ImageFetchError(
            f"Expected image content-type, got: {content_type}",
            code="invalid_image",
            retryable=False,
        )

    try:
        return open_image(response.content)
    except (OSError, SyntaxError, ValueError, Image.DecompressionBombError) as exc:
        raise ImageFetchError(
            f"Downloaded image is corrupt: {url[:100]}",
            code="invalid_image",
            retryable=False,
        ) from exc


async def download_image(url: str) -> Image.Image:
    """Download an image from a URL."""
    import httpx

    async with httpx.AsyncClient() as client:
        return await fetch_image(client, url)


def decode_data_url(url: str) -> Image.Image:
    """Decode a ``data:image/...;base64,`` URL produced when R2 is not configured."""
    try:
        header, payload = url.split(",", 1)
        if not header.startswith("data:image/") or not header.endswith(";base64"):
            raise ValueError(f"unsupported data URL header: {header[:40]}")
        return open_image(base64.b64decode(payload, validate=True))
    except (OSError, SyntaxError, ValueError, binascii.Error) as exc:
        raise ImageFetchError(
            "Embedded image is corrupt", code="invalid_image", retryable=False
        ) from exc


async def load_image(url: str) -> Image.Image:
    """Load an image from an http(s) URL or an embedded data URL."""
    if url.startswith("data:"):
        return decode_data_url(url)
    return await download_image(url)
