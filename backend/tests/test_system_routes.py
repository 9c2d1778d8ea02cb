from ledgerpos.extensions import db
from ledgerpos.models import Refund


def test_health_reports_healthy_ledger(client, stocked):
    response = client.get("/health")

    assert response.status_code == 200
    body = response.get_json()
    assert body["status"] == "healthy"
    assert body["checks"]["ledger"]["details"] == {"negative_stock_records": 0, "over_refunded_sales": 0}
    assert body["checks"]["cache_invalidation"]["details"]["sink"] == "NullCacheSink"


def test_health_flags_over_refunded_sale(client, stocked):
    store, product = stocked
    sale_id = client.post("/api/sales", json={
        "store_id": store.id,
        "customer_id": 7,
        "lines": [{"product_id": product.id, "quantity": 1, "unit_price": "9.99"}],
    }).get_json()["sale"]["id"]

    # Written behind the workflow's back
    db.session.add(Refund(sale_id=sale_id, store_id=store.id, user_id=7, subtotal_cents=5000, tax_cents=0, total_cents=5000))
    db.session.commit()

    body = client.get("/health").get_json()
    assert body["status"] == "degraded"
    assert body["checks"]["ledger"]["details"]["over_refunded_sales"] == 1
