"""External integrations: object storage and payment gateway."""
from .midtrans_client import MidtransClient, MidtransError, TransactionNotification
from .storage_client import StorageClient, StorageError

__all__ = [
    "MidtransClient",
    "MidtransError",
    "StorageClient",
    "StorageError",
    "TransactionNotification",
]
