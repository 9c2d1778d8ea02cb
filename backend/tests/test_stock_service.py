import pytest

from ledgerpos.errors import InsufficientStockError, StoreNotFoundError, ValidationError
from ledgerpos.extensions import db
from ledgerpos.models import StockRecord
from ledgerpos.services import stock_service
from ledgerpos.services.concurrency import run_in_transaction


def test_try_decrement_takes_stock_when_enough(stocked):
    store, product = stocked

    assert run_in_transaction(lambda: stock_service.try_decrement(store.id, product.id, 3)) is True
    assert stock_service.get_quantity(store.id, product.id) == 2


def test_try_decrement_can_take_everything(stocked):
    store, product = stocked

    assert run_in_transaction(lambda: stock_service.try_decrement(store.id, product.id, 5)) is True
    assert stock_service.get_quantity(store.id, product.id) == 0


def test_try_decrement_refuses_without_mutating(stocked):
    store, product = stocked

    assert run_in_transaction(lambda: stock_service.try_decrement(store.id, product.id, 6)) is False
    assert stock_service.get_quantity(store.id, product.id) == 5


def test_try_decrement_missing_record_is_refused(store, product):
    assert run_in_transaction(lambda: stock_service.try_decrement(store.id, product.id, 1)) is False
    assert stock_service.get_quantity(store.id, product.id) == 0


@pytest.mark.parametrize("amount", [0, -1, 1.5, True, "2"])
def test_try_decrement_rejects_non_positive_or_non_integer(stocked, amount):
    store, product = stocked

    with pytest.raises(ValidationError):
        stock_service.try_decrement(store.id, product.id, amount)
    db.session.rollback()
    assert stock_service.get_quantity(store.id, product.id) == 5


def test_decrement_or_raise_reports_shortfall(stocked):
    store, product = stocked

    with pytest.raises(InsufficientStockError) as excinfo:
        run_in_transaction(lambda: stock_service.decrement_or_raise(store.id, product.id, 8))

    err = excinfo.value
    assert err.requested == 8
    assert err.available == 5
    assert err.shortfall == 3
    assert err.details["product_id"] == product.id
    assert stock_service.get_quantity(store.id, product.id) == 5


def test_increment_existing_record(stocked):
    store, product = stocked

    new_qty = run_in_transaction(lambda: stock_service.increment(store.id, product.id, 4))

    assert new_qty == 9
    assert stock_service.get_quantity(store.id, product.id) == 9


def test_increment_creates_missing_record(other_store, product):
    new_qty = run_in_transaction(lambda: stock_service.increment(other_store.id, product.id, 2))

    assert new_qty == 2
    records = db.session.query(StockRecord).filter_by(store_id=other_store.id, product_id=product.id).all()
    assert len(records) == 1
    assert records[0].quantity == 2


def test_increment_rejects_zero(stocked):
    store, product = stocked

    with pytest.raises(ValidationError):
        run_in_transaction(lambda: stock_service.increment(store.id, product.id, 0))
    assert stock_service.get_quantity(store.id, product.id) == 5


def test_get_quantity_defaults_to_zero(store, product):
    assert stock_service.get_quantity(store.id, product.id) == 0


def test_set_quantity_overwrites_and_validates(stocked, set_stock):
    store, product = stocked

    record = set_stock(store.id, product.id, 12)
    assert record.quantity == 12

    with pytest.raises(ValidationError):
        set_stock(store.id, product.id, -1)
    with pytest.raises(StoreNotFoundError):
        set_stock(999, product.id, 1)
    with pytest.raises(ValidationError):
        set_stock(store.id, 999, 1)

    assert stock_service.get_quantity(store.id, product.id) == 12


def test_list_stock_by_store_and_product(store, other_store, product, second_product, set_stock):
    set_stock(store.id, product.id, 1)
    set_stock(store.id, second_product.id, 2)
    set_stock(other_store.id, product.id, 3)

    by_store = stock_service.list_store_stock(store.id)
    assert [(r.product_id, r.quantity) for r in by_store] == [(product.id, 1), (second_product.id, 2)]

    by_product = stock_service.list_product_stock(product.id)
    assert [(r.store_id, r.quantity) for r in by_product] == [(store.id, 1), (other_store.id, 3)]
