# Overview: Shared consistency rules for the sale and refund workflows.

"""
Consistency invariants (authoritative)

1. Stock never goes negative: enforced by stock_service.try_decrement.
2. Per sale line: sum(refund_line.quantity) <= sale_line.quantity.
3. Per sale: sum(refund.total_cents) <= sale.total_cents (+ tolerance).
4. Refunded balances are always re-derived from persisted RefundLine rows.
5. Sale status is derived in exactly one place: derive_sale_status().

Everything here is a pure function over already-loaded rows so both
workflows apply identical arithmetic.
"""

from __future__ import annotations

from collections import OrderedDict
from typing import Iterable

from ..errors import RefundExceedsOriginalError
from ..models.sales import (
    SALE_STATUS_ACTIVE,
    SALE_STATUS_COMPLETED,
    SALE_STATUS_PARTIALLY_REFUNDED,
    SALE_STATUS_REFUNDED,
    TERMINAL_SALE_STATUSES,
)
from ..money import apply_rate_bps


def compute_line_total(quantity: int, unit_price_cents: int) -> int:
    return quantity * unit_price_cents


def compute_tax_cents(subtotal_cents: int, tax_rate_bps: int) -> int:
    """Tax applied once to the subtotal, nearest cent (half-up)."""
    return apply_rate_bps(subtotal_cents, tax_rate_bps)


def amounts_match(a_cents: int, b_cents: int, tolerance_cents: int = 1) -> bool:
    """True when the amounts differ by strictly less than the tolerance."""
    return abs(a_cents - b_cents) < tolerance_cents


def refunded_quantities_by_line(refund_lines: Iterable) -> dict[int, int]:
    """sale_line_id -> quantity already refunded."""
    refunded: dict[int, int] = {}
    for rl in refund_lines:
        refunded[rl.sale_line_id] = refunded.get(rl.sale_line_id, 0) + rl.quantity
    return refunded


def remaining_by_line(sale_lines: Iterable, refunded_by_line: dict[int, int]) -> "OrderedDict[int, int]":
    """sale_line_id -> quantity still refundable, in line order."""
    remaining: OrderedDict[int, int] = OrderedDict()
    for line in sale_lines:
        remaining[line.id] = line.quantity - refunded_by_line.get(line.id, 0)
    return remaining


def remaining_by_product(sale_lines: Iterable, refunded_by_line: dict[int, int]) -> dict[int, int]:
    """product_id -> quantity still refundable across all lines for that product."""
    remaining: dict[int, int] = {}
    for line in sale_lines:
        left = line.quantity - refunded_by_line.get(line.id, 0)
        remaining[line.product_id] = remaining.get(line.product_id, 0) + left
    return remaining


def assert_refund_within_sale(
    sale_total_cents: int,
    prior_refunded_cents: int,
    refund_total_cents: int,
    tolerance_cents: int = 1,
) -> int:
    """
    Refund-does-not-exceed-sale check. Returns the cumulative refunded total.
    """
    cumulative = prior_refunded_cents + refund_total_cents
    if cumulative - sale_total_cents >= tolerance_cents:
        raise RefundExceedsOriginalError(
            "Refund total exceeds the remaining refundable amount of the sale",
            details={
                "sale_total_cents": sale_total_cents,
                "already_refunded_cents": prior_refunded_cents,
                "requested_refund_cents": refund_total_cents,
                "refundable_cents": max(0, sale_total_cents - prior_refunded_cents),
            },
        )
    return cumulative


def derive_sale_status(
    current_status: str,
    sale_total_cents: int,
    refunded_total_cents: int,
    refund_count: int,
    tolerance_cents: int = 1,
) -> str:
    """
    Single source of truth for a sale's status given its refund history.

    - Terminal statuses (refunded, cancelled) never change.
    - No refunds recorded: active/completed stay as they are.
    - Cumulative refunds equal to the total (within tolerance): refunded.
    - Otherwise: partially_refunded.
    """
    if current_status in TERMINAL_SALE_STATUSES:
        return current_status

    if refund_count <= 0:
        if current_status in (SALE_STATUS_ACTIVE, SALE_STATUS_COMPLETED):
            return current_status
        return SALE_STATUS_ACTIVE

    if amounts_match(refunded_total_cents, sale_total_cents, tolerance_cents):
        return SALE_STATUS_REFUNDED
    return SALE_STATUS_PARTIALLY_REFUNDED
