"""
Order workflow.

Orchestrates order creation:
1. Validate input (no side effects)
2. Verify the referenced user and product exist
3. Upload the images, one by one
4. Insert the order row
5. On failure in 3 or 4, delete this attempt's uploads and re-raise

plus the plain read, update and delete operations on orders.
"""
import json
import time
from typing import Any, Dict, List, Optional, Sequence

import structlog
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from weinvite.config import Settings
from weinvite.core.compensation import UploadTracker
from weinvite.core.exceptions import (
    InvalidRequest,
    NotFound,
    PersistenceError,
    WeInviteError,
)
from weinvite.core.uploads import ImageUpload, upload_images, validate_images
from weinvite.database import crud
from weinvite.database.models import Order, OrderStatus
from weinvite.integrations.storage_client import StorageClient
from weinvite.monitoring.metrics import metrics

logger = structlog.get_logger(__name__)

ORDER_IMAGES_FOLDER = "order-images"

UPDATABLE_FIELDS = ("status", "wedding_info", "snap_token")


def parse_wedding_info(raw: Any) -> Dict[str, Any]:
    """
    Accept wedding info as a dict or as JSON text (multipart forms).

    Raises:
        InvalidRequest: If the text is not a JSON object
    """
    if raw is None or raw == "":
        return {}
    if isinstance(raw, dict):
        return raw
    try:
        value = json.loads(raw)
    except (TypeError, ValueError) as e:
        raise InvalidRequest("weddingInfo must be valid JSON", str(e)) from e
    if not isinstance(value, dict):
        raise InvalidRequest("weddingInfo must be a JSON object")
    return value


class OrderWorkflow:
    """
    Order creation with compensating cleanup, and order CRUD.

    Handles are injected at startup; the workflow holds no per-request state.
    """

    def __init__(self, storage: StorageClient, settings: Settings) -> None:
        self.storage = storage
        self.bucket = settings.order_images_bucket
        self.max_upload_bytes = settings.max_upload_bytes

    async def create_order(
        self,
        db: AsyncSession,
        *,
        order_id: Optional[str],
        user_id: Optional[str],
        product_id: Optional[str],
        images: Sequence[ImageUpload],
        wedding_info: Optional[Dict[str, Any]] = None,
        snap_token: Optional[str] = None,
    ) -> Order:
        """
        Create an order with its uploaded images.

        Returns:
            Order: The persisted order with product (and tags) and user loaded

        Raises:
            InvalidRequest: Missing ids, no images, or a bad image
            NotFound: Unknown user or product (nothing uploaded)
            UploadFailed: An upload failed; earlier uploads were cleaned up
            PersistenceError: The insert failed; all uploads were cleaned up
        """
        start_time = time.time()
        try:
            order = await self._create_order(
                db,
                order_id=order_id,
                user_id=user_id,
                product_id=product_id,
                images=images,
                wedding_info=wedding_info,
                snap_token=snap_token,
            )
        except WeInviteError as e:
            metrics.record_order_created("upload", "failed", time.time() - start_time)
            logger.warning(
                "order_creation_failed",
                order_id=order_id,
                error_kind=e.kind,
                error=e.message,
            )
            raise

        duration = time.time() - start_time
        metrics.record_order_created("upload", "success", duration)
        logger.info(
            "order_created",
            order_id=order.id,
            user_id=order.user_id,
            product_id=order.product_id,
            images=len(order.image_urls),
            duration_seconds=duration,
        )
        return order

    async def _create_order(
        self,
        db: AsyncSession,
        *,
        order_id: Optional[str],
        user_id: Optional[str],
        product_id: Optional[str],
        images: Sequence[ImageUpload],
        wedding_info: Optional[Dict[str, Any]],
        snap_token: Optional[str],
    ) -> Order:
        if not order_id or not user_id or not product_id:
            raise InvalidRequest("Missing required fields: orderId, userId, productId")
        if not images:
            raise InvalidRequest("Image file is required")
        validate_images(images, self.max_upload_bytes)

        if await crud.get_user(db, user_id) is None:
            raise NotFound("user")
        if await crud.get_product(db, product_id) is None:
            raise NotFound("product")

        tracker = UploadTracker(self.storage, self.bucket, f"create_order:{order_id}")
        image_urls = await upload_images(tracker, images, ORDER_IMAGES_FOLDER, prefix=order_id)

        try:
            await crud.insert_order(
                db,
                order_id=order_id,
                user_id=user_id,
                product_id=product_id,
                status=OrderStatus.PENDING.value,
                wedding_info=wedding_info,
                snap_token=snap_token,
                image_urls=image_urls,
            )
        except SQLAlchemyError as e:
            await db.rollback()
            logger.error("order_persist_failed", order_id=order_id, error=str(e))
            result = await tracker.compensate()
            error = PersistenceError("Failed to create order", detail=_db_error_detail(e))
            error.compensation = result
            raise error from e

        order = await crud.get_order(db, order_id)
        if order is None:
            raise PersistenceError("Order vanished after insert", detail=order_id)
        return order

    async def get_order(self, db: AsyncSession, order_id: str) -> Order:
        order = await crud.get_order(db, order_id)
        if order is None:
            raise NotFound("order")
        return order

    async def list_orders(
        self,
        db: AsyncSession,
        user_id: Optional[str] = None,
        status: Optional[str] = None,
    ) -> List[Order]:
        """All orders, optionally filtered, sorted by status text ascending."""
        return list(await crud.list_orders(db, user_id=user_id, status=status))

    async def list_orders_for_user(self, db: AsyncSession, user_id: str) -> List[Order]:
        if await crud.get_user(db, user_id) is None:
            raise NotFound("user")
        return list(await crud.list_orders(db, user_id=user_id))

    async def update_order(
        self, db: AsyncSession, order_id: str, changes: Dict[str, Any]
    ) -> Order:
        """
        Apply any of ``status``, ``wedding_info``, ``snap_token``.

        Keys absent from ``changes`` are left alone.
        """
        values = {key: changes[key] for key in UPDATABLE_FIELDS if key in changes}
        if "status" in values and values["status"] not in OrderStatus.values():
            raise InvalidRequest(
                "Invalid order status",
                f"status must be one of {OrderStatus.values()}",
            )
        if "wedding_info" in values and values["wedding_info"] is None:
            values["wedding_info"] = {}

        if not await crud.order_exists(db, order_id):
            raise NotFound("order")

        if values:
            try:
                await crud.update_order_fields(db, order_id, values)
            except SQLAlchemyError as e:
                await db.rollback()
                logger.error("order_update_failed", order_id=order_id, error=str(e))
                raise PersistenceError("Failed to update order", _db_error_detail(e)) from e
            logger.info("order_updated", order_id=order_id, fields=sorted(values))

        return await self.get_order(db, order_id)

    async def delete_order(self, db: AsyncSession, order_id: str) -> Dict[str, str]:
        """Delete an order row. Its images are left in storage."""
        if not await crud.order_exists(db, order_id):
            raise NotFound("order")
        try:
            await crud.delete_order(db, order_id)
        except SQLAlchemyError as e:
            await db.rollback()
            raise PersistenceError("Failed to delete order", _db_error_detail(e)) from e
        logger.info("order_deleted", order_id=order_id)
        return {"message": "Order deleted successfully", "id": order_id}


def _db_error_detail(error: SQLAlchemyError) -> str:
    orig = getattr(error, "orig", None)
    return str(orig) if orig is not None else str(error)
