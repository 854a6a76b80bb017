"""
Exception hierarchy for checkout and settlement.

Every error carries a stable ``error_code`` for clients and the HTTP status
the API layer answers with.
"""
from typing import Any, Dict


class SettlementError(Exception):
    """Base exception for checkout and settlement errors."""

    error_code = "settlement_error"
    http_status = 500

    def __init__(self, message: str, **context: Any):
        super().__init__(message)
        self.message = message
        self.context = context

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dict for API responses."""
        return {
            "error": {
                "code": self.error_code,
                "message": self.message,
                "type": self.__class__.__name__,
            }
        }


# ============================================================================
# Validation errors: reported to the caller, nothing written
# ============================================================================


class InvalidRequest(SettlementError):
    """Raised when request input validation fails."""

    error_code = "invalid_request"
    http_status = 400


class InvalidQuantity(InvalidRequest):
    error_code = "invalid_quantity"


class MissingSource(InvalidRequest):
    error_code = "missing_source"


class DuplicateEmail(InvalidRequest):
    error_code = "duplicate_email"


# ============================================================================
# Not-found errors
# ============================================================================


class InvalidLink(SettlementError):
    """No referral link exists for the given code."""

    error_code = "invalid_link"
    http_status = 400


class LinkNotFound(SettlementError):
    """Lookup of a link by code found nothing."""

    error_code = "link_not_found"
    http_status = 404


class InvalidProduct(SettlementError):
    """A requested product id does not exist."""

    error_code = "invalid_product"
    http_status = 400


class OrderNotFound(SettlementError):
    """No order carries the given checkout session id."""

    error_code = "order_not_found"
    http_status = 404


class UserNotFound(SettlementError):
    error_code = "user_not_found"
    http_status = 404


class UserLookupFailed(SettlementError):
    """
    The referrer owning a completed order could not be loaded.

    Raised after the order was already marked complete; the leaderboard
    increment and notifications for that order did not happen.
    """

    error_code = "user_lookup_failed"
    http_status = 500


# ============================================================================
# External dependency errors
# ============================================================================


class ProviderError(SettlementError):
    """Checkout session creation failed; the local transaction was rolled back."""

    error_code = "payment_provider_error"
    http_status = 502


class PersistenceError(SettlementError):
    """Database read or write failed."""

    error_code = "persistence_error"
    http_status = 500
