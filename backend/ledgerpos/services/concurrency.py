# Overview: Transaction boundary and retry policy shared by the sale/refund workflows.

from __future__ import annotations

import logging
import time

from flask import current_app
from sqlalchemy import text
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..errors import TransactionError
from ..extensions import db

logger = logging.getLogger(__name__)

# Retried: lock timeouts/deadlocks and optimistic version conflicts
RETRYABLE_ERRORS = (OperationalError, StaleDataError)


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE; there the transaction takes
    the database write lock up front instead (see begin_write).
    """
    return query.with_for_update()


def _has_open_write(connection) -> bool:
    """True when the DBAPI connection already holds uncommitted changes."""
    dbapi_connection = connection.connection.dbapi_connection
    return bool(getattr(dbapi_connection, "in_transaction", False))


def begin_write() -> bool:
    """
    Start the write transaction; returns False when joining an open one.

    On SQLite this takes the RESERVED lock immediately (BEGIN IMMEDIATE), so
    two workflows touching the same stock row serialise instead of both
    reading first and deadlocking on upgrade.

    pysqlite opens its own transaction at the first write. If the caller has
    already flushed changes, that transaction is joined (and committed with
    ours) instead of issuing a second BEGIN.
    """
    if db.engine.dialect.name != "sqlite":
        return True
    if db.session().in_transaction() and _has_open_write(db.session.connection()):
        return False
    db.session.execute(text("BEGIN IMMEDIATE"))
    return True


def run_in_transaction(func, *, attempts: int | None = None, backoff_base: float | None = None):
    """
    Run func() as one all-or-nothing DB transaction and commit its work.

    - Any exception rolls the whole transaction back; business errors
      propagate unchanged and are never retried.
    - OperationalError / StaleDataError are retried with exponential backoff;
      once attempts run out the caller gets TransactionError (safe to retry).
    - When the session already carries flushed writes they are committed
      together with func()'s work. A failure then rolls both back, so the
      retry loop is skipped: replaying func() alone would drop the caller's
      changes.
    """
    if attempts is None:
        attempts = current_app.config.get("TX_RETRY_ATTEMPTS", 3)
    if backoff_base is None:
        backoff_base = current_app.config.get("TX_RETRY_BACKOFF_SECONDS", 0.1)
    attempts = max(1, int(attempts))

    attempt = 0
    while True:
        try:
            if not begin_write():
                attempts = 1
            result = func()
            db.session.commit()
            return result
        except RETRYABLE_ERRORS as exc:
            db.session.rollback()
            logger.warning(
                "transaction_retry attempt=%s/%s error=%s",
                attempt + 1, attempts, exc.__class__.__name__,
            )
            if attempt >= attempts - 1:
                raise TransactionError(
                    "The transaction could not be committed; no changes were applied. Retry the request.",
                    details={"attempts": attempt + 1, "cause": exc.__class__.__name__},
                ) from exc
            time.sleep(backoff_base * (2 ** attempt))
            attempt += 1
        except Exception:
            db.session.rollback()
            raise
