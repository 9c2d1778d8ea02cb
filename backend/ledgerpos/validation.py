from __future__ import annotations

from dataclasses import dataclass, asdict
from typing import Any, Iterable

from .errors import ValidationError
from .money import amount_to_cents, MAX_AMOUNT_CENTS

# Per-line quantity ceiling; keeps quantity * price well inside a 64-bit column
MAX_LINE_QUANTITY = 1_000_000
MAX_LINES_PER_REQUEST = 500
MAX_REASON_LENGTH = 2000


@dataclass(frozen=True)
class SaleLineRequest:
    product_id: int
    quantity: int
    unit_price_cents: int


@dataclass(frozen=True)
class SaleRequest:
    store_id: int
    customer_id: int
    lines: tuple[SaleLineRequest, ...]
    total_cents: int | None = None
    idempotency_key: str | None = None


@dataclass(frozen=True)
class RefundLineRequest:
    product_id: int
    quantity: int


@dataclass(frozen=True)
class RefundRequest:
    sale_id: int
    reason: str | None
    lines: tuple[RefundLineRequest, ...] | None = None
    user_id: int | None = None
    store_id: int | None = None
    idempotency_key: str | None = None


def _pick(data: dict, *names: str, default: Any = None) -> Any:
    """First present key among snake_case name and its camelCase aliases."""
    for name in names:
        if name in data:
            return data[name]
    return default


def coerce_int(value: Any, field: str) -> int:
    """
    Strict integer coercion: rejects bools, floats, decimals and scientific
    notation instead of truncating them.
    """
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    if isinstance(value, str):
        stripped = value.strip()
        if not stripped:
            raise ValidationError(f"{field} must be an integer")
        if "e" in stripped.lower():
            raise ValidationError(f"{field} must be a plain integer (scientific notation not allowed)")
        if "." in stripped:
            raise ValidationError(f"{field} must be an integer (no decimals)")
        try:
            return int(stripped)
        except ValueError:
            raise ValidationError(f"{field} must be an integer")
    if isinstance(value, float):
        raise ValidationError(f"{field} must be an integer, not a decimal")
    raise ValidationError(f"{field} must be an integer")


def coerce_id(value: Any, field: str) -> int:
    if value is None:
        raise ValidationError(f"{field} is required")
    ident = coerce_int(value, field)
    if ident <= 0:
        raise ValidationError(f"{field} must be a positive integer")
    return ident


def coerce_quantity(value: Any, field: str = "quantity") -> int:
    if value is None:
        raise ValidationError(f"{field} is required")
    qty = coerce_int(value, field)
    if qty <= 0:
        raise ValidationError(f"{field} must be > 0")
    if qty > MAX_LINE_QUANTITY:
        raise ValidationError(f"{field} cannot exceed {MAX_LINE_QUANTITY}")
    return qty


def _coerce_unit_price_cents(data: dict, field: str) -> int:
    cents_raw = _pick(data, "unit_price_cents", "unitPriceCents")
    amount_raw = _pick(data, "unit_price", "unitPrice", "price")
    if cents_raw is not None:
        cents = coerce_int(cents_raw, f"{field}.unit_price_cents")
        if cents > MAX_AMOUNT_CENTS:
            raise ValidationError(f"{field}.unit_price_cents cannot exceed {MAX_AMOUNT_CENTS}")
    elif amount_raw is not None:
        cents = amount_to_cents(amount_raw, f"{field}.unit_price")
    else:
        raise ValidationError(f"{field}.unit_price is required")
    if cents < 0:
        raise ValidationError(f"{field}.unit_price must be >= 0")
    return cents


def _require_list(value: Any, field: str) -> list:
    if not isinstance(value, (list, tuple)):
        raise ValidationError(f"{field} must be a list")
    if len(value) > MAX_LINES_PER_REQUEST:
        raise ValidationError(f"{field} cannot have more than {MAX_LINES_PER_REQUEST} entries")
    return list(value)


def parse_sale_lines(lines: Iterable) -> tuple[SaleLineRequest, ...]:
    """Validate sale lines; accepts dicts or SaleLineRequest instances."""
    if lines is None:
        raise ValidationError("lines is required")
    raw_lines = _require_list(lines, "lines")
    if not raw_lines:
        raise ValidationError("A sale needs at least one line")

    parsed = []
    for i, raw in enumerate(raw_lines):
        field = f"lines[{i}]"
        if isinstance(raw, SaleLineRequest):
            raw = asdict(raw)
        if not isinstance(raw, dict):
            raise ValidationError(f"{field} must be an object")
        parsed.append(
            SaleLineRequest(
                product_id=coerce_id(_pick(raw, "product_id", "productId"), f"{field}.product_id"),
                quantity=coerce_quantity(_pick(raw, "quantity"), f"{field}.quantity"),
                unit_price_cents=_coerce_unit_price_cents(raw, field),
            )
        )
    return tuple(parsed)


def parse_refund_lines(lines: Iterable | None) -> tuple[RefundLineRequest, ...] | None:
    """None means "refund everything still refundable"."""
    if lines is None:
        return None
    raw_lines = _require_list(lines, "lines")
    if not raw_lines:
        raise ValidationError("lines cannot be empty; omit it to refund everything")

    parsed = []
    for i, raw in enumerate(raw_lines):
        field = f"lines[{i}]"
        if isinstance(raw, RefundLineRequest):
            raw = asdict(raw)
        if not isinstance(raw, dict):
            raise ValidationError(f"{field} must be an object")
        parsed.append(
            RefundLineRequest(
                product_id=coerce_id(_pick(raw, "product_id", "productId"), f"{field}.product_id"),
                quantity=coerce_quantity(_pick(raw, "quantity"), f"{field}.quantity"),
            )
        )
    return tuple(parsed)


def parse_reason(value: Any) -> str | None:
    if value is None:
        return None
    if not isinstance(value, str):
        raise ValidationError("reason must be a string")
    value = value.strip()
    if len(value) > MAX_REASON_LENGTH:
        raise ValidationError(f"reason exceeds max length {MAX_REASON_LENGTH}")
    return value or None


def _parse_optional_total(data: dict) -> int | None:
    cents_raw = _pick(data, "total_cents", "totalCents")
    if cents_raw is not None:
        return coerce_int(cents_raw, "total_cents")
    amount_raw = _pick(data, "total")
    if amount_raw is not None:
        return amount_to_cents(amount_raw, "total")
    return None


def _require_object(payload: Any) -> dict:
    if payload is None:
        payload = {}
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")
    return payload


def parse_sale_request(payload: Any, idempotency_key: str | None = None) -> SaleRequest:
    """Validate a sale creation body once, at the boundary."""
    data = _require_object(payload)
    return SaleRequest(
        store_id=coerce_id(_pick(data, "store_id", "storeId"), "store_id"),
        customer_id=coerce_id(_pick(data, "customer_id", "customerId", "user_id", "userId"), "customer_id"),
        lines=parse_sale_lines(_pick(data, "lines")),
        total_cents=_parse_optional_total(data),
        idempotency_key=idempotency_key or _pick(data, "idempotency_key", "idempotencyKey"),
    )


def parse_refund_request(payload: Any, idempotency_key: str | None = None) -> RefundRequest:
    """Validate a refund creation body once, at the boundary."""
    data = _require_object(payload)
    user_id = _pick(data, "user_id", "userId")
    store_id = _pick(data, "store_id", "storeId")
    return RefundRequest(
        sale_id=coerce_id(_pick(data, "sale_id", "saleId"), "sale_id"),
        reason=parse_reason(_pick(data, "reason")),
        lines=parse_refund_lines(_pick(data, "lines", "items")),
        user_id=coerce_id(user_id, "user_id") if user_id is not None else None,
        store_id=coerce_id(store_id, "store_id") if store_id is not None else None,
        idempotency_key=idempotency_key or _pick(data, "idempotency_key", "idempotencyKey"),
    )
