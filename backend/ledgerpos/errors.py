# Overview: Error taxonomy for the sale/refund transaction engine.

"""
Every business-rule failure is a LedgerError subclass. The class carries the
machine-readable code and the HTTP status the API renders it with, so callers
can decide whether to retry, fix their input, or surface a terminal message.

Business errors are raised before anything is written (or inside the
transaction, which is then rolled back), so no compensation is ever needed.
"""

from __future__ import annotations


class LedgerError(Exception):
    """Base class for sale/refund engine errors."""

    code = "ledger_error"
    http_status = 400
    retryable = False

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict:
        body = {"error": self.code, "message": self.message}
        if self.details:
            body["details"] = self.details
        return body


class ValidationError(LedgerError):
    """400-level input problem (malformed or empty request)."""

    code = "validation_error"
    http_status = 400


class StoreNotFoundError(LedgerError):
    code = "store_not_found"
    http_status = 404


class SaleNotFoundError(LedgerError):
    code = "sale_not_found"
    http_status = 404


class RefundNotFoundError(LedgerError):
    code = "refund_not_found"
    http_status = 404


class InsufficientStockError(LedgerError):
    """Requested quantity exceeds what the store has on hand."""

    code = "insufficient_stock"
    http_status = 409

    def __init__(self, store_id: int, product_id: int, requested: int, available: int):
        shortfall = requested - available
        super().__init__(
            f"Insufficient stock for product {product_id} at store {store_id}: "
            f"requested {requested}, available {available}",
            details={
                "store_id": store_id,
                "product_id": product_id,
                "requested_quantity": requested,
                "available_quantity": available,
                "shortfall": shortfall,
            },
        )
        self.store_id = store_id
        self.product_id = product_id
        self.requested = requested
        self.available = available
        self.shortfall = shortfall


class InvalidSaleStateError(LedgerError):
    code = "invalid_sale_state"
    http_status = 409


class InvalidRefundStateError(LedgerError):
    """Sale is in a state that does not accept refunds (refunded/cancelled)."""

    code = "invalid_refund_state"
    http_status = 409


class RefundExceedsOriginalError(LedgerError):
    """Requested refund exceeds the remaining refundable balance."""

    code = "refund_exceeds_original"
    http_status = 409


class IdempotencyConflictError(LedgerError):
    """Idempotency key reused with a different request body."""

    code = "idempotency_conflict"
    http_status = 409


class TransactionError(LedgerError):
    """
    The DB transaction could not commit (lock timeout, deadlock, stale row).

    Nothing was persisted; the caller may safely retry the same request.
    """

    code = "transaction_error"
    http_status = 503
    retryable = True
