"""Tests for the R2 storage wrapper.

All boto3 calls are mocked since R2 is an external service.
"""

from unittest.mock import MagicMock, patch

import pytest
from botocore.exceptions import ClientError

from concierge.config import settings
from concierge.utils import r2


@pytest.fixture(autouse=True)
def _reset_r2_client():
    """Reset the singleton R2 client before each test."""
    r2.reset_client()
    yield
    r2.reset_client()


@pytest.fixture()
def mock_s3():
    """Provide a mocked boto3 S3 client."""
    with patch.object(r2, "_build_client") as mock_build:
        mock_client = MagicMock()
        mock_build.return_value = mock_client
        yield mock_client


@pytest.fixture()
def r2_configured():
    with (
        patch.object(settings, "r2_account_id", "acct"),
        patch.object(settings, "r2_access_key_id", "key"),
        patch.object(settings, "r2_secret_access_key", "secret"),
    ):
        yield


class TestUploadObject:
    def test_upload_calls_put_object(self, mock_s3):
        """upload_object passes bucket, key, body and content type, and returns the key."""
        key = "sessions/abc/concepts/variant_0.png"

        result = r2.upload_object(key, b"png-bytes")

        mock_s3.put_object.assert_called_once_with(
            Bucket=settings.r2_bucket_name,
            Key=key,
            Body=b"png-bytes",
            ContentType="image/png",
        )
        assert result == key

    def test_client_is_built_once(self, mock_s3):
        r2.upload_object("a", b"1")
        r2.upload_object("b", b"2")
        assert r2._build_client.call_count == 1


class TestGeneratePresignedUrl:
    def test_generates_url(self, mock_s3):
        mock_s3.generate_presigned_url.return_value = "https://r2.example.com/signed"

        key = "sessions/abc/sketches/v1_lineart.png"
        url = r2.generate_presigned_url(key)

        assert url == "https://r2.example.com/signed"
        mock_s3.generate_presigned_url.assert_called_once_with(
            "get_object",
            Params={"Bucket": settings.r2_bucket_name, "Key": key},
            ExpiresIn=settings.presigned_url_expiry_seconds,
        )

    def test_client_error_propagates(self, mock_s3):
        mock_s3.generate_presigned_url.side_effect = ClientError(
            {"Error": {"Code": "AccessDenied", "Message": "denied"}}, "GetObject"
        )
        with pytest.raises(ClientError):
            r2.generate_presigned_url("k")


class TestStorePng:
    def test_data_url_when_not_configured(self, mock_s3):
        with patch.object(r2, "r2_configured", return_value=False):
            url = r2.store_png("k", b"abc")
        assert url.startswith("data:image/png;base64,")
        mock_s3.put_object.assert_not_called()

    def test_uploads_and_signs_when_configured(self, mock_s3, r2_configured):
        mock_s3.generate_presigned_url.return_value = "https://r2.example.com/k"

        url = r2.store_png("k", b"abc")

        assert url == "https://r2.example.com/k"
        mock_s3.put_object.assert_called_once()

    def test_configured_requires_all_credentials(self):
        with patch.object(settings, "r2_account_id", ""):
            assert r2.r2_configured() is False
