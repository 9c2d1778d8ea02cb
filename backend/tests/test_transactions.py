import pytest
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ledgerpos.errors import TransactionError, ValidationError
from ledgerpos.extensions import db
from ledgerpos.models import Sale
from ledgerpos.services import sales_service, stock_service
from ledgerpos.services.concurrency import run_in_transaction


def _locked():
    return OperationalError("UPDATE stock_records", {}, Exception("database is locked"))


def test_transient_errors_are_retried(stocked):
    store, product = stocked
    calls = []

    def op():
        calls.append(1)
        if len(calls) < 3:
            raise _locked()
        return stock_service.try_decrement(store.id, product.id, 1)

    assert run_in_transaction(op, attempts=3, backoff_base=0) is True
    assert len(calls) == 3
    assert stock_service.get_quantity(store.id, product.id) == 4


def test_exhausted_retries_surface_transaction_error(stocked):
    store, product = stocked

    def op():
        stock_service.try_decrement(store.id, product.id, 1)
        raise StaleDataError("version mismatch")

    with pytest.raises(TransactionError) as excinfo:
        run_in_transaction(op, attempts=2, backoff_base=0)

    assert excinfo.value.retryable is True
    assert excinfo.value.http_status == 503
    assert excinfo.value.details == {"attempts": 2, "cause": "StaleDataError"}
    assert stock_service.get_quantity(store.id, product.id) == 5


def test_business_errors_roll_back_and_are_not_retried(stocked):
    store, product = stocked
    calls = []

    def op():
        calls.append(1)
        stock_service.try_decrement(store.id, product.id, 2)
        raise ValidationError("nope")

    with pytest.raises(ValidationError):
        run_in_transaction(op, attempts=3, backoff_base=0)

    assert len(calls) == 1
    assert stock_service.get_quantity(store.id, product.id) == 5


def test_flushed_caller_work_commits_with_the_sale(stocked):
    store, product = stocked
    # Flushed but not committed: the sale must join this transaction, not restart it
    stock_service.set_quantity(store.id, product.id, 4)

    sales_service.create_sale(store.id, 7, [{"product_id": product.id, "quantity": 1, "unit_price": "9.99"}])
    db.session.rollback()

    assert stock_service.get_quantity(store.id, product.id) == 3
    assert db.session.query(Sale).count() == 1


def test_joined_transaction_is_not_replayed(stocked):
    store, product = stocked
    stock_service.set_quantity(store.id, product.id, 4)
    calls = []

    def op():
        calls.append(1)
        raise _locked()

    with pytest.raises(TransactionError) as excinfo:
        run_in_transaction(op, attempts=3, backoff_base=0)

    assert len(calls) == 1
    assert excinfo.value.details == {"attempts": 1, "cause": "OperationalError"}
    assert stock_service.get_quantity(store.id, product.id) == 5
