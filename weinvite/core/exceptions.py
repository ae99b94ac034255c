"""
Domain exceptions for the order, catalog and payment workflows.

Each error knows its wire ``kind`` and HTTP status so the API layer can
render every failure the same way:

    {"error": kind, "message": message, "details": detail}
"""
from typing import TYPE_CHECKING, Any, Dict, Optional

if TYPE_CHECKING:
    from weinvite.core.compensation import CompensationResult


class WeInviteError(Exception):
    """Base exception for all domain errors."""

    kind = "internal_error"
    http_status = 500

    def __init__(self, message: str, detail: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.detail = detail
        # Set when a failed multi-step operation ran its cleanup
        self.compensation: Optional["CompensationResult"] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dict for API responses."""
        body: Dict[str, Any] = {"error": self.kind, "message": self.message}
        if self.detail:
            body["details"] = self.detail
        return body


class InvalidRequest(WeInviteError):
    """Missing or malformed input, detected before any side effect."""

    kind = "invalid_request"
    http_status = 400


class NotFound(WeInviteError):
    """A referenced user, product, tag or order does not exist."""

    kind = "not_found"
    http_status = 404

    def __init__(self, resource: str, detail: Optional[str] = None):
        super().__init__(f"{resource.capitalize()} not found", detail)
        self.resource = resource


class UploadFailed(WeInviteError):
    """An object-store write failed; ``index`` is the failing asset."""

    kind = "upload_failed"
    http_status = 500

    def __init__(self, index: int, detail: Optional[str] = None):
        super().__init__(f"Failed to upload image {index}", detail)
        self.index = index


class VerificationFailed(WeInviteError):
    """The payment gateway notification could not be authenticated."""

    kind = "verification_failed"
    http_status = 400


class PersistenceError(WeInviteError):
    """Constraint violation or connectivity failure in the database."""

    kind = "persistence_error"
    http_status = 500


class UpstreamError(WeInviteError):
    """A call to the payment gateway or object store failed."""

    kind = "upstream_error"
    http_status = 500

    def __init__(
        self,
        message: str,
        detail: Optional[str] = None,
        status_code: Optional[int] = None,
    ):
        super().__init__(message, detail)
        self.status_code = status_code
