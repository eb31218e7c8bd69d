"""Cloudflare R2 client wrapper — S3-compatible object storage.

Live provider artifacts are stored under
    sessions/{session_id}/concepts/variant_0.png
    sessions/{session_id}/sketches/{variant_id}_lineart.png
    etc.
When R2 is not configured, ``store_png`` embeds the image as a data URL.
"""

from __future__ import annotations

from typing import Any

import boto3
import structlog
from botocore.config import Config
from botocore.exceptions import ClientError

from concierge.config import settings
from concierge.utils.image import data_url

logger = structlog.get_logger()


def _build_client() -> Any:
    """Create an S3 client pointed at Cloudflare R2."""
    return boto3.client(
        "s3",
        endpoint_url=f"https://{settings.r2_account_id}.r2.cloudflarestorage.com",
        aws_access_key_id=settings.r2_access_key_id,
        aws_secret_access_key=settings.r2_secret_access_key,
        config=Config(signature_version="s3v4"),
        region_name="auto",
    )


_client: Any = None


def _get_client() -> Any:
    """Lazy-init singleton client."""
    global _client  # noqa: PLW0603
    if _client is None:
        _client = _build_client()
    return _client


def reset_client() -> None:
    """Reset the singleton client (for testing)."""
    global _client  # noqa: PLW0603
    _client = None


def r2_configured() -> bool:
    return bool(
        settings.r2_account_id and settings.r2_access_key_id and settings.r2_secret_access_key
    )


def upload_object(key: str, data: bytes, content_type: str = "image/png") -> str:
    """Upload bytes to R2. Returns the storage key."""
    client = _get_client()
    client.put_object(
        Bucket=settings.r2_bucket_name,
        Key=key,
        Body=data,
        ContentType=content_type,
    )
    logger.info("r2_upload", key=key, size=len(data), content_type=content_type)
    return key


def generate_presigned_url(key: str) -> str:
    """Pre-signed GET URL, valid for ``settings.presigned_url_expiry_seconds``."""
    client = _get_client()
    try:
        url: str = client.generate_presigned_url(
            "get_object",
            Params={"Bucket": settings.r2_bucket_name, "Key": key},
            ExpiresIn=settings.presigned_url_expiry_seconds,
        )
    except ClientError as e:
        logger.error("r2_presign_failed", key=key, error=str(e))
        raise
    return url


def store_png(key: str, data: bytes, content_type: str = "image/png") -> str:
    """Persist an artifact and return a URL clients can fetch."""
    if r2_configured():
        return generate_presigned_url(upload_object(key, data, content_type))
    return data_url(data, content_type)
