"""
Midtrans payment gateway client.

Implements:
- Snap hosted-checkout transaction creation
- Notification verification (signature check + status re-read)
- Transaction status lookup and cancellation
"""
import hashlib
import hmac
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import httpx
import structlog

from weinvite.config import Settings
from weinvite.core.exceptions import UpstreamError, VerificationFailed
from weinvite.monitoring.metrics import metrics

logger = structlog.get_logger(__name__)


class MidtransError(UpstreamError):
    """Raised when a Midtrans API call fails."""

    pass


@dataclass
class TransactionNotification:
    """Verified, normalized notification fields."""

    order_id: str
    transaction_status: str
    fraud_status: Optional[str] = None
    raw: Dict[str, Any] = field(default_factory=dict)


def notification_signature(
    order_id: str, status_code: str, gross_amount: str, server_key: str
) -> str:
    """SHA-512 of order_id + status_code + gross_amount + server_key, hex encoded."""
    raw = f"{order_id}{status_code}{gross_amount}{server_key}"
    return hashlib.sha512(raw.encode("utf-8")).hexdigest()


class MidtransClient:
    """
    Wrapper for the Midtrans Snap and Core APIs.

    No retries: a failed call surfaces immediately as ``MidtransError``.
    """

    def __init__(
        self,
        http: httpx.AsyncClient,
        server_key: str,
        snap_url: str,
        api_url: str,
    ) -> None:
        """
        Initialize Midtrans client.

        Args:
            http: Shared HTTP client (owned by the application)
            server_key: Midtrans server key
            snap_url: Snap API base URL (sandbox or production)
            api_url: Core API base URL (sandbox or production)
        """
        self.http = http
        self.server_key = server_key
        self.snap_url = snap_url.rstrip("/")
        self.api_url = api_url.rstrip("/")
        self._auth = httpx.BasicAuth(server_key, "")

    @classmethod
    def from_settings(cls, settings: Settings, http: httpx.AsyncClient) -> "MidtransClient":
        client = cls(
            http,
            settings.midtrans_server_key,
            settings.midtrans_snap_url,
            settings.midtrans_api_url,
        )
        logger.info(
            "midtrans_client_initialized",
            production=settings.midtrans_is_production,
        )
        return client

    async def _call(
        self,
        operation: str,
        method: str,
        url: str,
        json: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        start_time = time.time()
        try:
            response = await self.http.request(
                method,
                url,
                json=json,
                auth=self._auth,
                headers={"Accept": "application/json"},
            )
        except httpx.HTTPError as e:
            metrics.record_gateway_call(operation, "error", time.time() - start_time)
            logger.error("midtrans_transport_error", operation=operation, error=str(e))
            raise MidtransError(f"Payment gateway unreachable during {operation}", str(e)) from e

        try:
            body = response.json()
        except ValueError:
            body = {}

        # Core API answers HTTP 200 with the real outcome in the body
        body_status = _int_or_none(body.get("status_code")) if isinstance(body, dict) else None
        failed = response.is_error or (
            body_status is not None and body_status >= 400 and body_status != 407
        )
        if failed:
            metrics.record_gateway_call(operation, "error", time.time() - start_time)
            status_code = body_status if body_status and body_status >= 400 else response.status_code
            detail = _error_message(body) or response.text or None
            logger.error(
                "midtrans_api_error",
                operation=operation,
                status_code=status_code,
                error_message=detail,
            )
            raise MidtransError(
                f"Payment gateway {operation} failed",
                detail=detail,
                status_code=status_code,
            )

        metrics.record_gateway_call(operation, "success", time.time() - start_time)
        return body

    async def create_transaction(
        self,
        order_id: str,
        amount: int,
        item_details: List[Dict[str, Any]],
        customer: Dict[str, Any],
    ) -> Dict[str, Any]:
        """
        Create a Snap transaction.

        Args:
            order_id: Transaction reference (the order id)
            amount: Gross amount
            item_details: Line items; prices must sum to ``amount``
            customer: Customer details (``first_name`` etc.)

        Returns:
            Dict[str, Any]: Session descriptor with ``token`` and ``redirect_url``

        Raises:
            MidtransError: If the gateway rejects the request
        """
        logger.info("creating_snap_transaction", order_id=order_id, amount=amount)
        payload = {
            "transaction_details": {"order_id": order_id, "gross_amount": amount},
            "customer_details": customer,
            "item_details": item_details,
        }
        session = await self._call(
            "create_transaction", "POST", f"{self.snap_url}/transactions", json=payload
        )
        logger.info("snap_transaction_created", order_id=order_id)
        return session

    async def get_status(self, order_id: str) -> Dict[str, Any]:
        """Fetch the live transaction status by order id or transaction id."""
        logger.info("retrieving_transaction_status", order_id=order_id)
        return await self._call("get_status", "GET", f"{self.api_url}/{order_id}/status")

    async def cancel(self, order_id: str) -> Dict[str, Any]:
        """Cancel a transaction that has not settled yet."""
        logger.info("cancelling_transaction", order_id=order_id)
        return await self._call("cancel", "POST", f"{self.api_url}/{order_id}/cancel")

    async def verify_notification(self, payload: Dict[str, Any]) -> TransactionNotification:
        """
        Authenticate a webhook payload and normalize it.

        The signature key is checked locally, then the transaction is re-read
        from the status API so only the gateway's own view is trusted.

        Raises:
            VerificationFailed: Bad/missing signature or unknown transaction
            MidtransError: If the status API is unreachable
        """
        order_id = payload.get("order_id")
        status_code = payload.get("status_code")
        gross_amount = payload.get("gross_amount")
        signature = payload.get("signature_key")

        if not (order_id and status_code and gross_amount and signature):
            logger.warning("notification_missing_fields", order_id=order_id)
            raise VerificationFailed(
                "Invalid notification",
                "order_id, status_code, gross_amount and signature_key are required",
            )

        expected = notification_signature(
            str(order_id), str(status_code), str(gross_amount), self.server_key
        )
        if not hmac.compare_digest(expected, str(signature)):
            logger.error("notification_signature_mismatch", order_id=order_id)
            raise VerificationFailed("Invalid notification signature")

        reference = payload.get("transaction_id") or order_id
        try:
            status = await self.get_status(str(reference))
        except MidtransError as e:
            if e.status_code == 404:
                raise VerificationFailed(
                    "Transaction not found at payment gateway", detail=str(reference)
                ) from e
            raise

        notification = TransactionNotification(
            order_id=str(status.get("order_id") or order_id),
            transaction_status=str(status.get("transaction_status", "")),
            fraud_status=status.get("fraud_status"),
            raw=status,
        )
        logger.info(
            "notification_verified",
            order_id=notification.order_id,
            transaction_status=notification.transaction_status,
            fraud_status=notification.fraud_status,
        )
        return notification


def _int_or_none(value: Any) -> Optional[int]:
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def _error_message(body: Any) -> Optional[str]:
    if not isinstance(body, dict):
        return None
    messages = body.get("error_messages")
    if messages:
        return "; ".join(str(m) for m in messages)
    return body.get("status_message")
