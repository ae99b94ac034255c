"""
Payment workflow.

Creates Snap checkout sessions for orders, applies verified gateway
notifications to order status, and reports the live gateway status of an
order.
"""
import time
from typing import Any, Dict, Optional

import structlog
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from weinvite.core.compensation import CompensationResult
from weinvite.core.exceptions import (
    InvalidRequest,
    NotFound,
    PersistenceError,
    VerificationFailed,
)
from weinvite.database import crud
from weinvite.database.models import Order, OrderStatus
from weinvite.integrations.midtrans_client import MidtransClient
from weinvite.monitoring.metrics import metrics

logger = structlog.get_logger(__name__)

DEFAULT_CUSTOMER_NAME = "Guest"

# Midtrans rejects item names longer than this
MAX_ITEM_NAME_LENGTH = 50

CANCELLED_TRANSACTION_STATUSES = frozenset({"cancel", "deny", "expire"})


def map_transaction_status(
    transaction_status: Optional[str], fraud_status: Optional[str] = None
) -> OrderStatus:
    """
    Map a gateway transaction status (and fraud verdict) to an order status.

    capture is only accepted when the fraud verdict is ``accept``;
    unrecognized statuses leave the order pending.
    """
    if transaction_status == "capture":
        return OrderStatus.ACCEPTED if fraud_status == "accept" else OrderStatus.PENDING
    if transaction_status == "settlement":
        return OrderStatus.ACCEPTED
    if transaction_status in CANCELLED_TRANSACTION_STATUSES:
        return OrderStatus.CANCELLED
    return OrderStatus.PENDING


class PaymentWorkflow:
    """Order-side half of the Midtrans integration."""

    def __init__(self, gateway: MidtransClient) -> None:
        self.gateway = gateway

    async def create_transaction(
        self,
        db: AsyncSession,
        *,
        order_id: Optional[str],
        product_id: Optional[str],
        user_id: Optional[str],
        wedding_info: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        """
        Open a Snap session for a product and record the pending order.

        Returns:
            Dict[str, Any]: ``{"session": <gateway session>, "order": Order}``

        Raises:
            InvalidRequest: Missing ids
            NotFound: Unknown product or user
            MidtransError: Gateway rejected the session
            PersistenceError: Order insert failed (gateway session cancelled)
        """
        if not order_id or not product_id or not user_id:
            raise InvalidRequest("Missing required fields: orderId, productId, userId")

        product = await crud.get_product(db, product_id)
        if product is None:
            raise NotFound("product")
        user = await crud.get_user(db, user_id)
        if user is None:
            raise NotFound("user")

        start_time = time.time()
        amount = int(round(product.price))
        session = await self.gateway.create_transaction(
            order_id,
            amount,
            item_details=[
                {
                    "id": product.id,
                    "price": amount,
                    "quantity": 1,
                    "name": product.name[:MAX_ITEM_NAME_LENGTH],
                }
            ],
            customer={"first_name": user.name or DEFAULT_CUSTOMER_NAME},
        )

        try:
            await crud.insert_order(
                db,
                order_id=order_id,
                user_id=user_id,
                product_id=product_id,
                status=OrderStatus.PENDING.value,
                wedding_info=wedding_info,
                snap_token=session.get("token"),
            )
        except SQLAlchemyError as e:
            await db.rollback()
            logger.error("transaction_order_persist_failed", order_id=order_id, error=str(e))
            result = await self._cancel_session(order_id)
            metrics.record_order_created("payment", "failed", time.time() - start_time)
            error = PersistenceError("Failed to save order for transaction", detail=str(e))
            error.compensation = result
            raise error from e

        order = await crud.get_order(db, order_id)
        if order is None:
            raise PersistenceError("Order vanished after insert", detail=order_id)

        metrics.record_order_created("payment", "success", time.time() - start_time)
        logger.info(
            "transaction_created",
            order_id=order_id,
            product_id=product_id,
            user_id=user_id,
            amount=amount,
        )
        return {"session": session, "order": order}

    async def _cancel_session(self, order_id: str) -> CompensationResult:
        result = CompensationResult(attempted=[order_id])
        try:
            await self.gateway.cancel(order_id)
        except Exception as e:
            result.failed = [order_id]
            logger.error("transaction_cancel_failed", order_id=order_id, error=str(e))
        else:
            logger.info("transaction_cancelled", order_id=order_id)
        metrics.record_compensation(result.complete)
        return result

    async def handle_notification(self, db: AsyncSession, payload: Dict[str, Any]) -> Order:
        """
        Apply a gateway notification to its order.

        Redelivery of the same notification writes the same status again.

        Raises:
            VerificationFailed: Payload not authentic or unknown to the gateway
            NotFound: No local order with the notified id
        """
        try:
            notification = await self.gateway.verify_notification(payload)
        except VerificationFailed:
            metrics.record_notification_rejected("verification_failed")
            raise

        target = map_transaction_status(
            notification.transaction_status, notification.fraud_status
        )

        try:
            updated = await crud.update_order_fields(
                db, notification.order_id, {"status": target.value}
            )
        except SQLAlchemyError as e:
            await db.rollback()
            logger.error(
                "notification_persist_failed", order_id=notification.order_id, error=str(e)
            )
            raise PersistenceError("Failed to update order status", detail=str(e)) from e

        if updated == 0:
            metrics.record_notification_rejected("not_found")
            logger.warning("notification_order_not_found", order_id=notification.order_id)
            raise NotFound("order")

        metrics.record_notification(notification.transaction_status, target.value)
        logger.info(
            "order_status_updated",
            order_id=notification.order_id,
            transaction_status=notification.transaction_status,
            fraud_status=notification.fraud_status,
            status=target.value,
        )

        order = await crud.get_order(db, notification.order_id)
        if order is None:
            raise NotFound("order")
        return order

    async def get_transaction_status(self, db: AsyncSession, order_id: str) -> Dict[str, Any]:
        """
        Local order plus the gateway's live view of its transaction.

        The two are returned side by side and never reconciled.
        """
        order = await crud.get_order(db, order_id)
        if order is None:
            raise NotFound("order")
        gateway_status = await self.gateway.get_status(order_id)
        return {"gateway_status": gateway_status, "order": order}
