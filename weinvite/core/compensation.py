"""
Compensation for multi-step operations that write to object storage.

An ``UploadTracker`` records every asset uploaded during one attempt. When a
later step fails, ``compensate()`` deletes them again, best-effort: delete
failures are logged and reported in the ``CompensationResult`` but never
raised, so the caller can still surface the original error.
"""
from dataclasses import dataclass, field
from typing import List, Optional

import structlog

from weinvite.integrations.storage_client import StorageClient
from weinvite.monitoring.metrics import metrics

logger = structlog.get_logger(__name__)


@dataclass
class CompensationResult:
    """Outcome of a compensating cleanup."""

    attempted: List[str] = field(default_factory=list)
    failed: List[str] = field(default_factory=list)

    @property
    def complete(self) -> bool:
        return not self.failed


@dataclass
class UploadedAsset:
    key: str
    url: str


class UploadTracker:
    """Uploads assets into one bucket and remembers them for rollback."""

    def __init__(self, storage: StorageClient, bucket: str, operation: str) -> None:
        """
        Args:
            storage: Object store client
            bucket: Bucket every asset of this attempt goes to
            operation: Label used in logs (e.g. ``create_order:ord-1``)
        """
        self.storage = storage
        self.bucket = bucket
        self.operation = operation
        self.uploaded: List[UploadedAsset] = []
        self.result: Optional[CompensationResult] = None

    @property
    def urls(self) -> List[str]:
        return [asset.url for asset in self.uploaded]

    async def upload(self, key: str, content: bytes, content_type: str) -> str:
        """Upload one asset; it is only tracked once the store confirms it."""
        url = await self.storage.upload(self.bucket, key, content, content_type)
        self.uploaded.append(UploadedAsset(key=key, url=url))
        return url

    async def compensate(self) -> CompensationResult:
        """
        Delete everything uploaded by this attempt.

        Returns:
            CompensationResult: Keys attempted and keys that could not be deleted
        """
        keys = [asset.key for asset in self.uploaded]
        result = CompensationResult(attempted=keys)

        if not keys:
            self.result = result
            return result

        logger.info(
            "compensation_started",
            operation=self.operation,
            bucket=self.bucket,
            assets=len(keys),
        )

        try:
            await self.storage.delete(self.bucket, keys)
        except Exception as e:
            result.failed = list(keys)
            logger.error(
                "compensation_failed",
                operation=self.operation,
                bucket=self.bucket,
                keys=keys,
                error=str(e),
            )
        else:
            self.uploaded = []
            logger.info("compensation_completed", operation=self.operation, assets=len(keys))

        metrics.record_compensation(result.complete)
        self.result = result
        return result
