# Overview: Stock ledger; one quantity counter per (store, product) with atomic updates.

"""
Stock Ledger invariants (authoritative)

- Exactly one StockRecord per (store_id, product_id); a missing record means 0.
- quantity >= 0 at all times.
- Every mutation is a single conditional UPDATE executed inside the caller's
  transaction. Workflow code never reads a quantity and writes it back:
  the "is there enough?" decision is the WHERE clause of the decrement itself.
- get_quantity() is for display only, never for deciding a write.
"""

from __future__ import annotations

import logging

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError

from ..errors import InsufficientStockError, StoreNotFoundError, ValidationError
from ..extensions import db
from ..models import Product, StockRecord, Store
from ..time_utils import utcnow

logger = logging.getLogger(__name__)


def _require_positive_amount(amount) -> int:
    if isinstance(amount, bool) or not isinstance(amount, int):
        raise ValidationError("Stock amount must be an integer")
    if amount <= 0:
        raise ValidationError("Stock amount must be positive")
    return amount


def try_decrement(store_id: int, product_id: int, amount: int) -> bool:
    """
    Atomically take `amount` units if at least that many are on hand.

    Returns True when the row was decremented, False (nothing mutated) when
    stock is insufficient or no record exists. Concurrent callers on the same
    row are serialised by the database; the losing caller re-evaluates the
    WHERE clause against the committed quantity and gets False.
    """
    amount = _require_positive_amount(amount)

    stmt = (
        update(StockRecord)
        .where(
            StockRecord.store_id == store_id,
            StockRecord.product_id == product_id,
            StockRecord.quantity >= amount,
        )
        .values(quantity=StockRecord.quantity - amount, updated_at=utcnow())
        .execution_options(synchronize_session=False)
    )
    result = db.session.execute(stmt)
    return result.rowcount == 1


def decrement_or_raise(store_id: int, product_id: int, amount: int) -> None:
    """try_decrement, translating a refusal into InsufficientStockError."""
    if not try_decrement(store_id, product_id, amount):
        available = get_quantity(store_id, product_id)
        logger.info(
            "stock_insufficient store_id=%s product_id=%s requested=%s available=%s",
            store_id, product_id, amount, available,
        )
        raise InsufficientStockError(store_id, product_id, amount, available)


def increment(store_id: int, product_id: int, amount: int) -> int:
    """
    Atomically add `amount` units, creating the record if it does not exist.

    Creation runs in a savepoint: if a concurrent transaction inserts the same
    (store, product) first, the unique constraint fires and we fall back to
    the UPDATE path. Returns the new quantity.
    """
    amount = _require_positive_amount(amount)

    stmt = (
        update(StockRecord)
        .where(
            StockRecord.store_id == store_id,
            StockRecord.product_id == product_id,
        )
        .values(quantity=StockRecord.quantity + amount, updated_at=utcnow())
        .execution_options(synchronize_session=False)
    )

    result = db.session.execute(stmt)
    if not result.rowcount:
        try:
            with db.session.begin_nested():
                db.session.add(StockRecord(store_id=store_id, product_id=product_id, quantity=amount))
        except IntegrityError:
            result = db.session.execute(stmt)
            if not result.rowcount:
                raise

    return get_quantity(store_id, product_id)


def get_quantity(store_id: int, product_id: int) -> int:
    """Current quantity on hand (0 when the record does not exist)."""
    quantity = (
        db.session.query(StockRecord.quantity)
        .filter_by(store_id=store_id, product_id=product_id)
        .scalar()
    )
    return int(quantity or 0)


def set_quantity(store_id: int, product_id: int, quantity: int) -> StockRecord:
    """
    Administrative restock / count correction: overwrite the quantity.

    Runs in the caller's transaction; not used by the sale/refund workflows.
    """
    if isinstance(quantity, bool) or not isinstance(quantity, int):
        raise ValidationError("quantity must be an integer")
    if quantity < 0:
        raise ValidationError("quantity must be >= 0")

    if db.session.get(Store, store_id) is None:
        raise StoreNotFoundError(f"Store {store_id} not found")
    if db.session.get(Product, product_id) is None:
        raise ValidationError(f"Product {product_id} not found")

    record = (
        db.session.query(StockRecord)
        .filter_by(store_id=store_id, product_id=product_id)
        .first()
    )
    if record is None:
        record = StockRecord(store_id=store_id, product_id=product_id, quantity=quantity)
        db.session.add(record)
    else:
        record.quantity = quantity
    db.session.flush()

    logger.info("stock_set store_id=%s product_id=%s quantity=%s", store_id, product_id, quantity)
    return record


def list_store_stock(store_id: int) -> list[StockRecord]:
    return (
        db.session.query(StockRecord)
        .filter_by(store_id=store_id)
        .order_by(StockRecord.product_id)
        .all()
    )


def list_product_stock(product_id: int) -> list[StockRecord]:
    return (
        db.session.query(StockRecord)
        .filter_by(product_id=product_id)
        .order_by(StockRecord.store_id)
        .all()
    )
