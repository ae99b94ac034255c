"""Core workflows: orders, payments, catalog and compensation."""
from .exceptions import (
    InvalidRequest,
    NotFound,
    PersistenceError,
    UpstreamError,
    UploadFailed,
    VerificationFailed,
    WeInviteError,
)

__all__ = [
    "InvalidRequest",
    "NotFound",
    "PersistenceError",
    "UpstreamError",
    "UploadFailed",
    "VerificationFailed",
    "WeInviteError",
]
