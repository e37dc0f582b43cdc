"""Canteen error taxonomy.

Every failure a client can see is a subclass of :class:`CanteenError`.  The
class decides the HTTP status and the short machine-readable ``reason``
string; the exception handler in ``rivercafe.main`` renders it as
``{"ok": false, "error": reason, "message": ...}``.
"""

from typing import Any, Optional


class CanteenError(Exception):
    """Base class for errors surfaced to API clients."""

    status_code = 500
    reason = "server_error"
    default_message = "Unexpected server error"

    def __init__(self, message: Optional[str] = None, *, extra: Optional[dict[str, Any]] = None):
        self.message = message or self.default_message
        self.extra = extra or {}
        super().__init__(self.message)

    def to_payload(self) -> dict[str, Any]:
        payload = {"ok": False, "error": self.reason, "message": self.message}
        payload.update(self.extra)
        return payload


class NotAuthenticated(CanteenError):
    status_code = 401
    reason = "not_authenticated"
    default_message = "Not authenticated"


class Forbidden(CanteenError):
    status_code = 403
    reason = "forbidden"
    default_message = "You do not have access to this resource"


class OrderingClosed(Forbidden):
    reason = "ordering_closed"
    default_message = "Ordering is currently closed"


class ValidationError(CanteenError):
    status_code = 400
    reason = "validation_error"
    default_message = "Invalid request"


class InvalidAmount(ValidationError):
    reason = "invalid_amount"
    default_message = "Amount must be a positive number with at most two decimal places"


class InvalidStatus(ValidationError):
    reason = "invalid_status"
    default_message = "Unknown order status"


class InsufficientBalance(CanteenError):
    status_code = 402
    reason = "insufficient_balance"
    default_message = "Insufficient balance"


class NotFound(CanteenError):
    status_code = 404
    reason = "not_found"
    default_message = "Not found"


class NoEligibleOrder(NotFound):
    reason = "no_eligible_order"
    default_message = "No matching order with unprepared units for this product"


class InvalidState(CanteenError):
    status_code = 409
    reason = "invalid_state"
    default_message = "Operation not allowed in the current state"


class Conflict(InvalidState):
    reason = "conflict"
    default_message = "Resource already exists"


class Expired(CanteenError):
    status_code = 410
    reason = "expired"
    default_message = "Order pickup code expired"


class StorageUnavailable(CanteenError):
    status_code = 503
    reason = "storage_unavailable"
    default_message = "Storage temporarily unavailable, please retry"


class TransactionsUnsupported(Exception):
    """The account store cannot run multi-statement transactions.

    Internal signal for the ledger fallback path; never rendered to clients.
    """
