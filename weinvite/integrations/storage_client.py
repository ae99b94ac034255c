"""
Supabase Storage client.

Talks to the Storage REST API with the shared ``httpx.AsyncClient``:
- upload an object and return its public URL
- bulk-delete objects by key
- map a public URL back to its object key
"""
import mimetypes
import re
import time
import uuid
from pathlib import PurePosixPath
from typing import List, Optional
from urllib.parse import unquote, urlparse

import httpx
import structlog

from weinvite.config import Settings
from weinvite.core.exceptions import UpstreamError
from weinvite.monitoring.metrics import metrics

logger = structlog.get_logger(__name__)


# Outside this set a character would be read as URL syntax in the request path
UNSAFE_KEY_CHARS = re.compile(r"[^A-Za-z0-9._-]")


class StorageError(UpstreamError):
    """Raised when an object-store request fails."""

    pass


def make_asset_key(
    folder: str,
    prefix: Optional[str],
    index: int,
    filename: Optional[str],
    content_type: str,
) -> str:
    """
    Build a collision-resistant object key.

    Shape: ``{folder}/{prefix}-{index}-{uuid4hex}{ext}`` (the prefix part is
    dropped when empty). The extension comes from the original filename, or
    from the content type when the filename has none. Characters outside
    ``[A-Za-z0-9._-]`` in the prefix and extension become ``_``.
    """
    ext = PurePosixPath(filename).suffix.lower() if filename else ""
    if not ext:
        ext = mimetypes.guess_extension(content_type) or ""
    ext = UNSAFE_KEY_CHARS.sub("_", ext)
    stem = f"{index}-{uuid.uuid4().hex}"
    if prefix:
        stem = f"{UNSAFE_KEY_CHARS.sub('_', prefix)}-{stem}"
    return f"{folder}/{stem}{ext}"


class StorageClient:
    """Supabase Storage wrapper used for order and product images."""

    def __init__(self, http: httpx.AsyncClient, base_url: str, service_key: str) -> None:
        """
        Initialize storage client.

        Args:
            http: Shared HTTP client (owned by the application)
            base_url: Supabase project URL
            service_key: Service role key used for writes and deletes
        """
        self.http = http
        self.base_url = base_url.rstrip("/")
        self._headers = {
            "Authorization": f"Bearer {service_key}",
            "apikey": service_key,
        }

    @classmethod
    def from_settings(cls, settings: Settings, http: httpx.AsyncClient) -> "StorageClient":
        return cls(http, settings.supabase_url, settings.supabase_service_key)

    def public_url(self, bucket: str, key: str) -> str:
        return f"{self.base_url}/storage/v1/object/public/{bucket}/{key}"

    def key_from_url(self, bucket: str, url: str) -> str:
        """
        Extract the object key from a public URL of ``bucket``.

        Raises:
            ValueError: If the URL does not point into the bucket
        """
        path = unquote(urlparse(url).path)
        marker = f"/{bucket}/"
        if marker not in path:
            raise ValueError(f"URL does not belong to bucket '{bucket}': {url}")
        return path.split(marker, 1)[1]

    async def upload(self, bucket: str, key: str, content: bytes, content_type: str) -> str:
        """
        Upload an object without overwriting.

        Returns:
            str: Public URL of the stored object

        Raises:
            StorageError: If the upload fails
        """
        start_time = time.time()
        headers = {
            **self._headers,
            "Content-Type": content_type,
            "x-upsert": "false",
            "cache-control": "max-age=3600",
        }
        try:
            response = await self.http.post(
                f"{self.base_url}/storage/v1/object/{bucket}/{key}",
                content=content,
                headers=headers,
            )
        except httpx.HTTPError as e:
            metrics.record_asset_upload("error", time.time() - start_time)
            logger.error("storage_upload_transport_error", bucket=bucket, key=key, error=str(e))
            raise StorageError("Object storage unreachable", detail=str(e)) from e

        if response.is_error:
            metrics.record_asset_upload("error", time.time() - start_time)
            logger.error(
                "storage_upload_rejected",
                bucket=bucket,
                key=key,
                status_code=response.status_code,
                body=response.text[:500],
            )
            raise StorageError(
                "Object storage rejected upload",
                detail=_error_message(response),
                status_code=response.status_code,
            )

        metrics.record_asset_upload("success", time.time() - start_time)
        logger.info("storage_object_uploaded", bucket=bucket, key=key, size=len(content))
        return self.public_url(bucket, key)

    async def delete(self, bucket: str, keys: List[str]) -> None:
        """
        Delete objects by key in a single request.

        Raises:
            StorageError: If the delete fails
        """
        if not keys:
            return
        try:
            response = await self.http.request(
                "DELETE",
                f"{self.base_url}/storage/v1/object/{bucket}",
                json={"prefixes": keys},
                headers=self._headers,
            )
        except httpx.HTTPError as e:
            logger.error("storage_delete_transport_error", bucket=bucket, error=str(e))
            raise StorageError("Object storage unreachable", detail=str(e)) from e

        if response.is_error:
            logger.error(
                "storage_delete_rejected",
                bucket=bucket,
                keys=keys,
                status_code=response.status_code,
            )
            raise StorageError(
                "Object storage rejected delete",
                detail=_error_message(response),
                status_code=response.status_code,
            )

        logger.info("storage_objects_deleted", bucket=bucket, count=len(keys))


def _error_message(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text or f"HTTP {response.status_code}"
    if isinstance(body, dict):
        return str(body.get("message") or body.get("error") or body)
    return str(body)
