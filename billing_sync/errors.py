"""Error taxonomy shared by the reconciliation services.

Every error carries the HTTP status its adapter should answer with and whether
the caller (or the billing provider's redelivery) may retry the same request.
"""

from typing import Any, Optional


class BillingSyncError(Exception):
    """Base exception for subscription reconciliation errors."""

    http_status: int = 500
    retryable: bool = False
    error_code: str = "billing_sync_error"

    def __init__(self, message: str, **context: Any):
        super().__init__(message)
        self.message = message
        self.context = context

    def to_response(self) -> dict[str, Any]:
        """Response body for the HTTP adapters."""
        return {"error": self.error_code, "message": self.message}


class AuthenticityError(BillingSyncError):
    """Raised when a webhook signature or envelope cannot be trusted."""

    http_status = 400
    error_code = "invalid_signature"


class ValidationError(BillingSyncError):
    """Raised when remote data is missing or malformed; nothing was written."""

    http_status = 422
    error_code = "validation_failed"


class NotFoundError(BillingSyncError):
    """Raised when no matching subscription, customer or account exists."""

    http_status = 404
    error_code = "not_found"


class ProviderError(BillingSyncError):
    """Raised when the billing provider failed or timed out."""

    http_status = 503
    retryable = True
    error_code = "provider_unavailable"

    def __init__(self, message: str, cause: Optional[BaseException] = None, **context: Any):
        super().__init__(message, **context)
        self.cause = cause


class InternalError(BillingSyncError):
    """Raised when a local store write fails.

    The message is logged with full context but never sent to the caller.
    """

    http_status = 500
    error_code = "internal_error"

    def to_response(self) -> dict[str, Any]:
        return {"error": self.error_code, "message": "An internal error occurred"}
