"""Image upload validation and sequential upload with rollback."""
from dataclasses import dataclass
from typing import List, Optional, Sequence

import structlog

from weinvite.core.compensation import UploadTracker
from weinvite.core.exceptions import InvalidRequest, UploadFailed
from weinvite.integrations.storage_client import make_asset_key

logger = structlog.get_logger(__name__)


@dataclass
class ImageUpload:
    """One uploaded file as received from the client."""

    content: bytes
    content_type: str
    filename: Optional[str] = None


def validate_images(images: Sequence[ImageUpload], max_bytes: int, field: str = "image") -> None:
    """
    Reject non-image or oversized files before anything is written.

    Raises:
        InvalidRequest: On the first offending file
    """
    for index, image in enumerate(images):
        if not (image.content_type or "").startswith("image/"):
            raise InvalidRequest(
                "Only image files are allowed",
                f"{field} {index} has content type '{image.content_type}'",
            )
        if len(image.content) > max_bytes:
            raise InvalidRequest(
                "Image file too large",
                f"{field} {index} is {len(image.content)} bytes (max {max_bytes})",
            )
        if not image.content:
            raise InvalidRequest("Image file is empty", f"{field} {index} has no content")


async def upload_images(
    tracker: UploadTracker,
    images: Sequence[ImageUpload],
    folder: str,
    prefix: Optional[str] = None,
) -> List[str]:
    """
    Upload ``images`` in order and return their public URLs in the same order.

    The first failure stops the loop, rolls back what this call and any
    earlier call on ``tracker`` uploaded, and raises ``UploadFailed`` with
    the failing index and the compensation result attached.
    """
    urls: List[str] = []
    for index, image in enumerate(images):
        key = make_asset_key(folder, prefix, index, image.filename, image.content_type)
        try:
            urls.append(await tracker.upload(key, image.content, image.content_type))
        except Exception as e:
            logger.error(
                "asset_upload_failed",
                operation=tracker.operation,
                index=index,
                key=key,
                error=str(e),
            )
            result = await tracker.compensate()
            error = UploadFailed(index, detail=str(e))
            error.compensation = result
            raise error from e
    return urls
