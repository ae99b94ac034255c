"""
Prometheus metrics for order and payment monitoring.

Tracks:
- Order creation outcomes and duration
- Object-store uploads
- Compensation runs
- Payment gateway calls
- Webhook notifications by resulting order status
"""
from prometheus_client import Counter, Histogram

# Order metrics
orders_created_total = Counter(
    "orders_created_total",
    "Total order creation attempts",
    ["source", "status"],  # source: upload, payment; status: success, failed
)

order_creation_duration_seconds = Histogram(
    "order_creation_duration_seconds",
    "Order creation duration in seconds",
    ["source"],
    buckets=(0.1, 0.25, 0.5, 0.75, 1.0, 2.5, 5.0, 7.5, 10.0),
)

# Storage metrics
asset_uploads_total = Counter(
    "asset_uploads_total",
    "Total object-store uploads",
    ["status"],
)

asset_upload_duration_seconds = Histogram(
    "asset_upload_duration_seconds",
    "Object-store upload duration in seconds",
    buckets=(0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0),
)

compensations_total = Counter(
    "compensations_total",
    "Compensating cleanups run after a failed multi-step operation",
    ["outcome"],  # complete, partial
)

# Gateway metrics
gateway_requests_total = Counter(
    "gateway_requests_total",
    "Total payment gateway requests",
    ["operation", "status"],
)

gateway_request_duration_seconds = Histogram(
    "gateway_request_duration_seconds",
    "Payment gateway call duration in seconds",
    ["operation"],
    buckets=(0.1, 0.25, 0.5, 0.75, 1.0, 2.5, 5.0, 7.5, 10.0),
)

# Webhook metrics
notifications_processed_total = Counter(
    "notifications_processed_total",
    "Payment notifications processed",
    ["transaction_status", "order_status"],
)

notifications_rejected_total = Counter(
    "notifications_rejected_total",
    "Payment notifications rejected",
    ["reason"],  # verification_failed, not_found
)


class MetricsCollector:
    """Helper class for collecting metrics."""

    @staticmethod
    def record_order_created(source: str, status: str, duration_seconds: float) -> None:
        """Record an order creation attempt."""
        orders_created_total.labels(source=source, status=status).inc()
        order_creation_duration_seconds.labels(source=source).observe(duration_seconds)

    @staticmethod
    def record_asset_upload(status: str, duration_seconds: float) -> None:
        """Record an object-store upload."""
        asset_uploads_total.labels(status=status).inc()
        asset_upload_duration_seconds.observe(duration_seconds)

    @staticmethod
    def record_compensation(complete: bool) -> None:
        compensations_total.labels(outcome="complete" if complete else "partial").inc()

    @staticmethod
    def record_gateway_call(operation: str, status: str, duration_seconds: float) -> None:
        """Record a payment gateway call."""
        gateway_requests_total.labels(operation=operation, status=status).inc()
        gateway_request_duration_seconds.labels(operation=operation).observe(duration_seconds)

    @staticmethod
    def record_notification(transaction_status: str, order_status: str) -> None:
        notifications_processed_total.labels(
            transaction_status=transaction_status or "unknown",
            order_status=order_status,
        ).inc()

    @staticmethod
    def record_notification_rejected(reason: str) -> None:
        notifications_rejected_total.labels(reason=reason).inc()


# Export singleton instance
metrics = MetricsCollector()
