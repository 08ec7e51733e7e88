"""
Screenshot storage on Supabase Storage.

Screenshots are private objects under `<user_id>/...` in one bucket. Clients
only ever see short-lived signed URLs, so a stored URL may have expired by
the time a trade is viewed again; `resolve_signed_url` signs it afresh.
"""

import logging
import secrets
import string
import time
from typing import Any, Optional
from urllib.parse import unquote, urlparse

from supabase import Client, create_client

from settings import Settings

logger = logging.getLogger(__name__)

SIGN_MARKER = "/object/sign/"
DEFAULT_EXTENSION = "png"
DEFAULT_CONTENT_TYPE = "image/png"
_BASE36 = string.digits + string.ascii_lowercase


class StorageError(Exception):
    def __init__(self, message: str, status_code: int = 502):
        super().__init__(message)
        self.status_code = status_code


def _random_suffix(length: int = 11) -> str:
    return "".join(secrets.choice(_BASE36) for _ in range(length))


def build_object_key(user_id: str, filename: Optional[str], now_ms: Optional[int] = None) -> str:
    """`<user_id>/<epoch ms>-<random>.<ext>`; the extension defaults to png."""
    ext = DEFAULT_EXTENSION
    if filename and "." in filename:
        ext = filename.rsplit(".", 1)[1].lower() or DEFAULT_EXTENSION
    if now_ms is None:
        now_ms = int(time.time() * 1000)
    return f"{user_id}/{now_ms}-{_random_suffix()}.{ext}"


def _signed_url_from(result: Any) -> Optional[str]:
    if isinstance(result, dict):
        return result.get("signedURL") or result.get("signedUrl") or result.get("signed_url")
    return getattr(result, "signed_url", None)


class ScreenshotStorage:
    """Upload and signing operations on the screenshots bucket."""

    def __init__(self, client: Client, bucket: str, signed_url_ttl: int = 3600):
        self.client = client
        self.bucket = bucket
        self.signed_url_ttl = signed_url_ttl

    @classmethod
    def from_settings(cls, settings: Settings) -> "ScreenshotStorage":
        if not settings.supabase_url or not settings.supabase_service_role:
            raise StorageError("Screenshot storage is not configured", status_code=503)
        client = create_client(settings.supabase_url, settings.supabase_service_role)
        return cls(client, settings.supabase_bucket_screenshots, settings.signed_url_ttl)

    def sign(self, key: str, bucket: Optional[str] = None) -> str:
        try:
            result = self.client.storage.from_(bucket or self.bucket).create_signed_url(key, self.signed_url_ttl)
        except Exception as e:
            logger.error("Supabase signed URL error for %s: %s", key, e)
            raise StorageError("Failed to create signed URL")
        url = _signed_url_from(result)
        if not url:
            logger.error("Supabase returned no signed URL for %s", key)
            raise StorageError("Failed to create signed URL")
        return url

    def upload_screenshot(
        self,
        user_id: str,
        filename: Optional[str],
        content: bytes,
        content_type: Optional[str] = None,
    ) -> dict:
        """Store a screenshot and return its key with a signed URL."""
        key = build_object_key(user_id, filename)
        try:
            self.client.storage.from_(self.bucket).upload(
                key,
                content,
                {"content-type": content_type or DEFAULT_CONTENT_TYPE, "upsert": "false"},
            )
        except Exception as e:
            logger.error("Supabase upload error for %s: %s", key, e)
            raise StorageError("Upload failed")

        logger.info("Uploaded screenshot %s (%d bytes)", key, len(content))
        return {"path": key, "signed_url": self.sign(key)}

    def resolve_signed_url(self, value: Optional[str]) -> Optional[str]:
        """
        Turn a stored screenshot reference into a URL that works right now.

        Args:
            value: A bucket key, a previously issued signed URL, or any other URL

        Returns:
            A fresh signed URL when one can be made, the original value when
            re-signing an old URL fails, and None for a key that cannot be signed
        """
        if not value:
            return None
        if not value.startswith("http"):
            try:
                return self.sign(value)
            except StorageError:
                return None

        path = urlparse(value).path
        if SIGN_MARKER not in path:
            return value
        parts = path.split(SIGN_MARKER, 1)[1].split("/")
        bucket = parts[0] or self.bucket
        key = unquote("/".join(parts[1:]))
        if not key:
            return value
        try:
            return self.sign(key, bucket=bucket)
        except StorageError:
            return value
