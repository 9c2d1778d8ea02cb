"""
Sale Workflow

A sale is created in one all-or-nothing transaction:

1. Validate lines (non-empty, quantity > 0, unit price >= 0).
2. Compute subtotal, tax and total server-side; a client-supplied total must
   agree within AMOUNT_TOLERANCE_CENTS.
3. Take stock for every line, in the order supplied, through the Stock
   Ledger's conditional decrement. The first refusal aborts everything.
4. Persist the sale header and all lines with status "active".
5. After commit, request cache invalidation (fire-and-forget).

Business errors are raised before commit, so the rollback in
run_in_transaction leaves no partial sale and no partial stock change.
"""

from __future__ import annotations

import logging

from flask import current_app
from sqlalchemy.exc import IntegrityError

from ..errors import InvalidSaleStateError, SaleNotFoundError, StoreNotFoundError, ValidationError
from ..extensions import cache_invalidator, db
from ..models import Sale, SaleLine, Store
from ..models.idempotency import IDEMPOTENCY_SCOPE_SALE
from ..models.sales import (
    SALE_STATUS_ACTIVE,
    SALE_STATUS_CANCELLED,
    SALE_STATUS_COMPLETED,
)
from ..time_utils import utcnow
from ..validation import coerce_id, parse_reason, parse_sale_lines
from . import idempotency_service, stock_service
from .concurrency import lock_for_update, run_in_transaction
from .invariants import (
    amounts_match,
    compute_line_total,
    compute_tax_cents,
    refunded_quantities_by_line,
    remaining_by_line,
)

logger = logging.getLogger(__name__)


def _tolerance_cents() -> int:
    return int(current_app.config.get("AMOUNT_TOLERANCE_CENTS", 1))


def load_sale(sale_id: int, *, for_update: bool = False) -> Sale:
    query = db.session.query(Sale).filter_by(id=sale_id)
    if for_update:
        query = lock_for_update(query)
    sale = query.first()
    if sale is None:
        raise SaleNotFoundError(f"Sale {sale_id} not found", details={"sale_id": sale_id})
    return sale


# =============================================================================
# SALE CREATION
# =============================================================================

def submit_sale(
    store_id: int,
    customer_id: int,
    lines,
    *,
    total_cents: int | None = None,
    idempotency_key: str | None = None,
) -> tuple[Sale, bool]:
    """
    Create a sale; returns (sale, created).

    created is False when idempotency_key matched an earlier identical
    request, in which case that sale is returned and nothing else happens.

    Raises:
        ValidationError, StoreNotFoundError, InsufficientStockError,
        IdempotencyConflictError, TransactionError
    """
    store_id = coerce_id(store_id, "store_id")
    customer_id = coerce_id(customer_id, "customer_id")
    parsed_lines = parse_sale_lines(lines)
    key = idempotency_service.normalize_key(idempotency_key)
    request_fp = None
    if key:
        request_fp = idempotency_service.fingerprint({
            "store_id": store_id,
            "customer_id": customer_id,
            "lines": [
                [line.product_id, line.quantity, line.unit_price_cents] for line in parsed_lines
            ],
            "total_cents": total_cents,
        })
    tolerance = _tolerance_cents()

    def _op():
        if key:
            existing_id = idempotency_service.lookup(IDEMPOTENCY_SCOPE_SALE, key, request_fp)
            if existing_id is not None:
                return load_sale(existing_id), False

        store = db.session.get(Store, store_id)
        if store is None:
            raise StoreNotFoundError(f"Store {store_id} not found", details={"store_id": store_id})

        subtotal = sum(compute_line_total(l.quantity, l.unit_price_cents) for l in parsed_lines)
        tax = compute_tax_cents(subtotal, store.tax_rate_bps)
        total = subtotal + tax

        if total_cents is not None and not amounts_match(total_cents, total, tolerance):
            raise ValidationError(
                "Sale total does not match the sum of its lines",
                details={"expected_total_cents": total, "supplied_total_cents": total_cents},
            )

        # All-or-nothing: the first refusal raises and rolls back earlier decrements
        for line in parsed_lines:
            stock_service.decrement_or_raise(store_id, line.product_id, line.quantity)

        sale = Sale(
            store_id=store_id,
            customer_id=customer_id,
            status=SALE_STATUS_ACTIVE,
            subtotal_cents=subtotal,
            tax_rate_bps=store.tax_rate_bps,
            tax_cents=tax,
            total_cents=total,
            created_at=utcnow(),
        )
        db.session.add(sale)
        db.session.flush()

        for number, line in enumerate(parsed_lines, start=1):
            db.session.add(SaleLine(
                sale_id=sale.id,
                line_number=number,
                product_id=line.product_id,
                quantity=line.quantity,
                unit_price_cents=line.unit_price_cents,
                line_total_cents=compute_line_total(line.quantity, line.unit_price_cents),
            ))
        db.session.flush()

        if key:
            idempotency_service.record(IDEMPOTENCY_SCOPE_SALE, key, request_fp, sale.id)

        return sale, True

    try:
        sale, created = run_in_transaction(_op)
    except IntegrityError:
        if not key:
            raise
        # Lost the race to a concurrent request carrying the same key
        existing_id = idempotency_service.lookup(IDEMPOTENCY_SCOPE_SALE, key, request_fp)
        if existing_id is None:
            raise
        sale, created = load_sale(existing_id), False

    if created:
        logger.info(
            "sale_created sale_id=%s store_id=%s customer_id=%s lines=%s total_cents=%s",
            sale.id, sale.store_id, sale.customer_id, len(parsed_lines), sale.total_cents,
        )
        cache_invalidator.invalidate("sales", "stock")
    else:
        logger.info("sale_replayed sale_id=%s idempotency_key=%s", sale.id, key)
    return sale, created


def create_sale(
    store_id: int,
    customer_id: int,
    lines,
    *,
    total_cents: int | None = None,
    idempotency_key: str | None = None,
) -> Sale:
    """Create a sale and return it (see submit_sale)."""
    sale, _ = submit_sale(
        store_id,
        customer_id,
        lines,
        total_cents=total_cents,
        idempotency_key=idempotency_key,
    )
    return sale


# =============================================================================
# LIFECYCLE
# =============================================================================

def complete_sale(sale_id: int) -> Sale:
    """Mark an active sale completed. Completing a completed sale is a no-op."""
    def _op():
        sale = load_sale(sale_id, for_update=True)
        if sale.status == SALE_STATUS_COMPLETED:
            return sale
        if sale.status != SALE_STATUS_ACTIVE:
            raise InvalidSaleStateError(
                f"Cannot complete sale with status {sale.status}",
                details={"sale_id": sale_id, "status": sale.status},
            )
        sale.status = SALE_STATUS_COMPLETED
        sale.completed_at = utcnow()
        return sale

    sale = run_in_transaction(_op)
    cache_invalidator.invalidate("sales")
    return sale


def cancel_sale(sale_id: int, reason: str | None = None) -> Sale:
    """
    Cancel a sale that has no refunds and put every unit back in stock.

    Sales with refunds go through the refund workflow instead; mixing the two
    would let the same unit be restored twice.
    """
    reason = parse_reason(reason)

    def _op():
        sale = load_sale(sale_id, for_update=True)
        if sale.status == SALE_STATUS_CANCELLED:
            raise InvalidSaleStateError("Sale already cancelled", details={"sale_id": sale_id})
        if sale.status not in (SALE_STATUS_ACTIVE, SALE_STATUS_COMPLETED):
            raise InvalidSaleStateError(
                f"Cannot cancel sale with status {sale.status}",
                details={"sale_id": sale_id, "status": sale.status},
            )
        if sale.refunds:
            raise InvalidSaleStateError(
                "Cannot cancel a sale that has refunds",
                details={"sale_id": sale_id, "refund_count": len(sale.refunds)},
            )

        for line in sale.lines:
            stock_service.increment(sale.store_id, line.product_id, line.quantity)

        sale.status = SALE_STATUS_CANCELLED
        sale.cancelled_at = utcnow()
        sale.cancel_reason = reason
        return sale

    sale = run_in_transaction(_op)
    logger.info("sale_cancelled sale_id=%s store_id=%s", sale.id, sale.store_id)
    cache_invalidator.invalidate("sales", "stock")
    return sale


# =============================================================================
# QUERIES
# =============================================================================

def get_sale(sale_id: int) -> Sale:
    return load_sale(sale_id)


def list_sales_by_store(store_id: int, limit: int | None = None) -> list[Sale]:
    query = (
        db.session.query(Sale)
        .filter_by(store_id=store_id)
        .order_by(Sale.created_at.desc(), Sale.id.desc())
    )
    if limit:
        query = query.limit(limit)
    return query.all()


def list_sales_by_customer(customer_id: int, limit: int | None = None) -> list[Sale]:
    query = (
        db.session.query(Sale)
        .filter_by(customer_id=customer_id)
        .order_by(Sale.created_at.desc(), Sale.id.desc())
    )
    if limit:
        query = query.limit(limit)
    return query.all()


def get_sale_summary(sale_id: int) -> dict:
    """
    Sale with lines, refunds and what is still refundable.

    Returns:
        - sale: sale details including lines
        - refunds: refunds recorded against the sale
        - refunded_total_cents / refundable_total_cents
        - refundable_lines: remaining quantity per sale line
    """
    sale = load_sale(sale_id)
    refund_lines = [rl for refund in sale.refunds for rl in refund.lines]
    remaining = remaining_by_line(sale.lines, refunded_quantities_by_line(refund_lines))
    refunded_total = sum(r.total_cents for r in sale.refunds)

    return {
        "sale": sale.to_dict(),
        "refunds": [r.to_dict() for r in sale.refunds],
        "refunded_total_cents": refunded_total,
        "refundable_total_cents": max(0, sale.total_cents - refunded_total),
        "refundable_lines": [
            {
                "sale_line_id": line.id,
                "product_id": line.product_id,
                "quantity": line.quantity,
                "refundable_quantity": remaining[line.id],
            }
            for line in sale.lines
        ],
    }
