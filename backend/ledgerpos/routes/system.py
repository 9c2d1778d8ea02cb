# backend/ledgerpos/routes/system.py
"""
System health endpoint.

Reports database connectivity plus the two ledger invariants that must
never be violated at rest: no negative stock, and no sale refunded beyond
its total.
"""

import time

from flask import Blueprint, current_app
from sqlalchemy import func

from ..extensions import cache_invalidator, db
from ..models import Refund, Sale, StockRecord, Store
from ..time_utils import utcnow

system_bp = Blueprint("system", __name__)


def check_database_health() -> dict:
    start_time = time.time()
    try:
        store_count = db.session.query(Store).count()
        sale_count = db.session.query(Sale).count()
        elapsed_ms = (time.time() - start_time) * 1000
        return {
            "status": "healthy",
            "latency_ms": round(elapsed_ms, 2),
            "details": {"stores": store_count, "sales": sale_count},
        }
    except Exception:
        elapsed_ms = (time.time() - start_time) * 1000
        current_app.logger.exception("Database health check failed")
        return {
            "status": "unhealthy",
            "latency_ms": round(elapsed_ms, 2),
            "error": "Database error",
        }


def check_ledger_invariants() -> dict:
    """
    Scan for persisted invariant violations.

    Any hit means data was written outside the workflows; the API keeps
    serving (degraded) so operators can inspect it.
    """
    start_time = time.time()
    tolerance = int(current_app.config.get("AMOUNT_TOLERANCE_CENTS", 1))
    try:
        negative_stock = db.session.query(StockRecord).filter(StockRecord.quantity < 0).count()

        refunded = (
            db.session.query(Refund.sale_id, func.sum(Refund.total_cents).label("refunded"))
            .group_by(Refund.sale_id)
            .subquery()
        )
        over_refunded = (
            db.session.query(Sale.id)
            .join(refunded, refunded.c.sale_id == Sale.id)
            .filter(refunded.c.refunded - Sale.total_cents >= tolerance)
            .count()
        )
        elapsed_ms = (time.time() - start_time) * 1000

        details = {"negative_stock_records": negative_stock, "over_refunded_sales": over_refunded}
        if negative_stock or over_refunded:
            current_app.logger.error(
                "ledger_invariant_violation negative_stock=%s over_refunded=%s",
                negative_stock, over_refunded,
            )
            return {"status": "degraded", "latency_ms": round(elapsed_ms, 2), "details": details}
        return {"status": "healthy", "latency_ms": round(elapsed_ms, 2), "details": details}
    except Exception:
        elapsed_ms = (time.time() - start_time) * 1000
        current_app.logger.exception("Ledger invariant check failed")
        return {
            "status": "unhealthy",
            "latency_ms": round(elapsed_ms, 2),
            "error": "Ledger check error",
        }


def check_cache_invalidation() -> dict:
    state = current_app.extensions.get(cache_invalidator.extension_name)
    if state is None:
        return {"status": "degraded", "warning": "Cache invalidator not initialized"}
    return {
        "status": "healthy",
        "details": {
            "enabled": state.enabled,
            "async": state.run_async,
            "sink": type(state.sink).__name__,
        },
    }


@system_bp.get("/health")
def health():
    """
    Returns:
    - 200: healthy or degraded (still operational)
    - 503: database unreachable
    """
    start_time = time.time()

    checks = {
        "database": check_database_health(),
        "ledger": check_ledger_invariants(),
        "cache_invalidation": check_cache_invalidation(),
    }

    statuses = [check["status"] for check in checks.values()]
    if "unhealthy" in statuses:
        overall_status, http_status = "unhealthy", 503
    elif "degraded" in statuses:
        overall_status, http_status = "degraded", 200
    else:
        overall_status, http_status = "healthy", 200

    return {
        "status": overall_status,
        "timestamp": utcnow().isoformat() + "Z",
        "total_latency_ms": round((time.time() - start_time) * 1000, 2),
        "checks": checks,
    }, http_status
