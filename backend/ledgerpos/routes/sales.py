# Overview: Flask API routes for sales; parses input and returns JSON responses.

"""
Sales API routes

POST /api/sales                 create a sale (201, or 200 on idempotent replay)
GET  /api/sales                 list by store_id or customer_id
GET  /api/sales/<id>            sale with lines, refunds and refundable balance
POST /api/sales/<id>/complete   active -> completed
POST /api/sales/<id>/cancel     cancel and restore stock (no refunds allowed)
"""

from flask import Blueprint, jsonify, request

from ..errors import LedgerError, ValidationError
from ..services import sales_service
from ..validation import parse_sale_request
from . import internal_error_response, ledger_error_response, query_int

sales_bp = Blueprint("sales", __name__, url_prefix="/api/sales")


@sales_bp.post("")
def create_sale_route():
    """
    Request body:
    {
        "store_id": 1,
        "customer_id": 7,
        "lines": [{"product_id": 10, "quantity": 3, "unit_price": 9.99}],
        "total": 29.97,           (optional, checked against server total)
        "idempotency_key": "..."  (optional, or Idempotency-Key header)
    }
    """
    try:
        req = parse_sale_request(
            request.get_json(silent=True),
            idempotency_key=request.headers.get("Idempotency-Key"),
        )
        sale, created = sales_service.submit_sale(
            req.store_id,
            req.customer_id,
            req.lines,
            total_cents=req.total_cents,
            idempotency_key=req.idempotency_key,
        )
        return jsonify({"sale": sale.to_dict()}), 201 if created else 200

    except LedgerError as e:
        return ledger_error_response(e)
    except Exception:
        return internal_error_response("create sale")


@sales_bp.get("")
def list_sales_route():
    try:
        store_id = query_int(request.args, "store_id")
        customer_id = query_int(request.args, "customer_id")
        limit = query_int(request.args, "limit")

        if store_id is not None:
            sales = sales_service.list_sales_by_store(store_id, limit)
        elif customer_id is not None:
            sales = sales_service.list_sales_by_customer(customer_id, limit)
        else:
            raise ValidationError("store_id or customer_id required")

        return jsonify({"sales": [s.to_dict() for s in sales]}), 200

    except LedgerError as e:
        return ledger_error_response(e)
    except Exception:
        return internal_error_response("list sales")


@sales_bp.get("/<int:sale_id>")
def get_sale_route(sale_id: int):
    try:
        return jsonify(sales_service.get_sale_summary(sale_id)), 200
    except LedgerError as e:
        return ledger_error_response(e)
    except Exception:
        return internal_error_response("load sale")


@sales_bp.post("/<int:sale_id>/complete")
def complete_sale_route(sale_id: int):
    try:
        sale = sales_service.complete_sale(sale_id)
        return jsonify({"sale": sale.to_dict()}), 200
    except LedgerError as e:
        return ledger_error_response(e)
    except Exception:
        return internal_error_response("complete sale")


@sales_bp.post("/<int:sale_id>/cancel")
def cancel_sale_route(sale_id: int):
    try:
        data = request.get_json(silent=True) or {}
        sale = sales_service.cancel_sale(sale_id, reason=data.get("reason"))
        return jsonify({"sale": sale.to_dict()}), 200
    except LedgerError as e:
        return ledger_error_response(e)
    except Exception:
        return internal_error_response("cancel sale")
