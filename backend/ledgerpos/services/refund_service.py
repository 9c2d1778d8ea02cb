"""
Refund Workflow

A refund reverses some or all of a prior sale in one transaction:

1. Lock and load the sale; refunded/cancelled sales accept no refunds.
2. Resolve the scope: no lines means "everything still refundable";
   otherwise each product's requested quantity must fit in what remains
   (original quantity minus what earlier refunds already took back).
3. Price every unit at the ORIGINAL sale line's unit price.
4. Restore stock through the Stock Ledger.
5. Persist the refund and its lines.
6. Re-derive the sale status from all refunds, in the same transaction.
7. After commit, request cache invalidation (fire-and-forget).

Refunded balances always come from persisted RefundLine rows, never from a
running counter, so they cannot drift from the audit trail.

TAX: a refund is taxed at the sale's snapshotted rate. The refund that takes
back the last refundable unit gets exactly the tax not yet refunded, so the
cumulative refunded total lands on sale.total_cents to the cent.
"""

from __future__ import annotations

import logging

from flask import current_app
from sqlalchemy.exc import IntegrityError

from ..errors import (
    InvalidRefundStateError,
    RefundExceedsOriginalError,
    RefundNotFoundError,
    StoreNotFoundError,
)
from ..extensions import cache_invalidator, db
from ..models import Refund, RefundLine, Sale, Store
from ..models.idempotency import IDEMPOTENCY_SCOPE_REFUND
from ..models.sales import TERMINAL_SALE_STATUSES
from ..time_utils import utcnow
from ..validation import coerce_id, parse_reason, parse_refund_lines
from . import idempotency_service, stock_service
from .concurrency import run_in_transaction
from .invariants import (
    assert_refund_within_sale,
    compute_line_total,
    compute_tax_cents,
    derive_sale_status,
    refunded_quantities_by_line,
    remaining_by_line,
    remaining_by_product,
)
from .sales_service import load_sale

logger = logging.getLogger(__name__)


def _tolerance_cents() -> int:
    return int(current_app.config.get("AMOUNT_TOLERANCE_CENTS", 1))


def _prior_refund_lines(sale_id: int) -> list[RefundLine]:
    """Authoritative refund history for a sale, straight from the DB."""
    return (
        db.session.query(RefundLine)
        .join(Refund, RefundLine.refund_id == Refund.id)
        .filter(Refund.sale_id == sale_id)
        .all()
    )


def _prior_refunds(sale_id: int) -> list[Refund]:
    return db.session.query(Refund).filter_by(sale_id=sale_id).order_by(Refund.id).all()


def _allocate(sale: Sale, requested, remaining_lines) -> list[tuple]:
    """
    Turn the requested scope into (sale_line, quantity) pairs.

    requested None: every line's full remaining quantity.
    Otherwise quantities are aggregated per product, checked against the
    product's remaining balance, then spread over that product's lines in
    line order.
    """
    if requested is None:
        return [(line, remaining_lines[line.id]) for line in sale.lines if remaining_lines[line.id] > 0]

    wanted: dict[int, int] = {}
    for req in requested:
        wanted[req.product_id] = wanted.get(req.product_id, 0) + req.quantity

    refunded_by_line = {line.id: line.quantity - remaining_lines[line.id] for line in sale.lines}
    remaining_products = remaining_by_product(sale.lines, refunded_by_line)

    for product_id, qty in wanted.items():
        refundable = remaining_products.get(product_id, 0)
        if qty > refundable:
            sold = sum(l.quantity for l in sale.lines if l.product_id == product_id)
            raise RefundExceedsOriginalError(
                f"Cannot refund {qty} units of product {product_id}: "
                f"sold {sold}, already refunded {sold - refundable}, refundable {refundable}",
                details={
                    "sale_id": sale.id,
                    "product_id": product_id,
                    "requested_quantity": qty,
                    "sold_quantity": sold,
                    "refundable_quantity": refundable,
                },
            )

    allocation = []
    for line in sale.lines:
        left = wanted.get(line.product_id, 0)
        if left <= 0:
            continue
        take = min(left, remaining_lines[line.id])
        if take > 0:
            allocation.append((line, take))
            wanted[line.product_id] = left - take
    return allocation


# =============================================================================
# REFUND CREATION
# =============================================================================

def submit_refund(
    sale_id: int,
    reason: str | None = None,
    lines=None,
    *,
    user_id: int | None = None,
    store_id: int | None = None,
    idempotency_key: str | None = None,
) -> tuple[Refund, bool]:
    """
    Refund part or all of a sale; returns (refund, created).

    Args:
        sale_id: Sale being refunded
        reason: Free-text reason
        lines: [{product_id, quantity}] or None for a full refund of what remains
        user_id: Who requested the refund (defaults to the sale's customer)
        store_id: Where stock is restored (defaults to the sale's store)
        idempotency_key: Collapses retried submissions into one refund

    Raises:
        SaleNotFoundError, InvalidRefundStateError, RefundExceedsOriginalError,
        ValidationError, IdempotencyConflictError, TransactionError
    """
    sale_id = coerce_id(sale_id, "sale_id")
    reason = parse_reason(reason)
    requested = parse_refund_lines(lines)
    if user_id is not None:
        user_id = coerce_id(user_id, "user_id")
    if store_id is not None:
        store_id = coerce_id(store_id, "store_id")
    key = idempotency_service.normalize_key(idempotency_key)
    request_fp = None
    if key:
        request_fp = idempotency_service.fingerprint({
            "sale_id": sale_id,
            "reason": reason,
            "lines": None if requested is None else [[r.product_id, r.quantity] for r in requested],
            "user_id": user_id,
            "store_id": store_id,
        })
    tolerance = _tolerance_cents()

    def _op():
        if key:
            existing_id = idempotency_service.lookup(IDEMPOTENCY_SCOPE_REFUND, key, request_fp)
            if existing_id is not None:
                return get_refund(existing_id), False

        sale = load_sale(sale_id, for_update=True)
        if sale.status in TERMINAL_SALE_STATUSES:
            raise InvalidRefundStateError(
                f"This sale has already been {sale.status}; no further refunds are accepted",
                details={"sale_id": sale.id, "status": sale.status},
            )

        refund_store_id = store_id or sale.store_id
        if refund_store_id != sale.store_id and db.session.get(Store, refund_store_id) is None:
            raise StoreNotFoundError(f"Store {refund_store_id} not found", details={"store_id": refund_store_id})

        prior_refunds = _prior_refunds(sale.id)
        prior_lines = _prior_refund_lines(sale.id)
        remaining_lines = remaining_by_line(sale.lines, refunded_quantities_by_line(prior_lines))

        allocation = _allocate(sale, requested, remaining_lines)
        if not allocation:
            raise InvalidRefundStateError(
                "Nothing left to refund on this sale",
                details={"sale_id": sale.id, "status": sale.status},
            )

        subtotal = sum(compute_line_total(qty, line.unit_price_cents) for line, qty in allocation)

        units_left_after = sum(remaining_lines.values()) - sum(qty for _, qty in allocation)
        prior_tax = sum(r.tax_cents for r in prior_refunds)
        if units_left_after == 0:
            tax = sale.tax_cents - prior_tax
        else:
            tax = min(compute_tax_cents(subtotal, sale.tax_rate_bps), sale.tax_cents - prior_tax)
        tax = max(0, tax)
        total = subtotal + tax

        prior_total = sum(r.total_cents for r in prior_refunds)
        cumulative = assert_refund_within_sale(sale.total_cents, prior_total, total, tolerance)

        for line, qty in allocation:
            stock_service.increment(refund_store_id, line.product_id, qty)

        refund = Refund(
            sale_id=sale.id,
            store_id=refund_store_id,
            user_id=user_id or sale.customer_id,
            reason=reason,
            subtotal_cents=subtotal,
            tax_cents=tax,
            total_cents=total,
            created_at=utcnow(),
        )
        db.session.add(refund)
        db.session.flush()

        for line, qty in allocation:
            db.session.add(RefundLine(
                refund_id=refund.id,
                sale_line_id=line.id,
                product_id=line.product_id,
                quantity=qty,
                unit_price_cents=line.unit_price_cents,
                line_total_cents=compute_line_total(qty, line.unit_price_cents),
            ))

        sale.status = derive_sale_status(
            sale.status,
            sale.total_cents,
            cumulative,
            refund_count=len(prior_refunds) + 1,
            tolerance_cents=tolerance,
        )
        db.session.flush()

        if key:
            idempotency_service.record(IDEMPOTENCY_SCOPE_REFUND, key, request_fp, refund.id)

        return refund, True

    try:
        refund, created = run_in_transaction(_op)
    except IntegrityError:
        if not key:
            raise
        existing_id = idempotency_service.lookup(IDEMPOTENCY_SCOPE_REFUND, key, request_fp)
        if existing_id is None:
            raise
        refund, created = get_refund(existing_id), False

    if created:
        logger.info(
            "refund_created refund_id=%s sale_id=%s store_id=%s total_cents=%s sale_status=%s",
            refund.id, refund.sale_id, refund.store_id, refund.total_cents, refund.sale.status,
        )
        cache_invalidator.invalidate("refunds", "sales", "stock")
    else:
        logger.info("refund_replayed refund_id=%s idempotency_key=%s", refund.id, key)
    return refund, created


def create_refund(
    sale_id: int,
    reason: str | None = None,
    lines=None,
    *,
    user_id: int | None = None,
    store_id: int | None = None,
    idempotency_key: str | None = None,
) -> Refund:
    """Create a refund and return it (see submit_refund)."""
    refund, _ = submit_refund(
        sale_id,
        reason,
        lines,
        user_id=user_id,
        store_id=store_id,
        idempotency_key=idempotency_key,
    )
    return refund


# =============================================================================
# QUERIES
# =============================================================================

def get_refund(refund_id: int) -> Refund:
    refund = db.session.get(Refund, refund_id)
    if refund is None:
        raise RefundNotFoundError(f"Refund {refund_id} not found", details={"refund_id": refund_id})
    return refund


def get_sale_refunds(sale_id: int) -> list[Refund]:
    """All refunds for a sale, oldest first. Raises if the sale does not exist."""
    load_sale(sale_id)
    return _prior_refunds(sale_id)


def list_refunds_by_store(store_id: int, limit: int | None = None) -> list[Refund]:
    query = (
        db.session.query(Refund)
        .filter_by(store_id=store_id)
        .order_by(Refund.created_at.desc(), Refund.id.desc())
    )
    if limit:
        query = query.limit(limit)
    return query.all()


def list_refunds_by_user(user_id: int, limit: int | None = None) -> list[Refund]:
    query = (
        db.session.query(Refund)
        .filter_by(user_id=user_id)
        .order_by(Refund.created_at.desc(), Refund.id.desc())
    )
    if limit:
        query = query.limit(limit)
    return query.all()


def refundable_quantities(sale_id: int) -> dict[int, int]:
    """product_id -> units still refundable on the sale."""
    sale = load_sale(sale_id)
    refunded = refunded_quantities_by_line(_prior_refund_lines(sale.id))
    return remaining_by_product(sale.lines, refunded)
