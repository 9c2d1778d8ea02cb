# Overview: Flask API routes for stock levels (display and administrative restock).

from flask import Blueprint, jsonify, request

from ..errors import LedgerError
from ..extensions import cache_invalidator
from ..services import stock_service
from ..services.concurrency import run_in_transaction
from ..validation import coerce_int
from . import internal_error_response, ledger_error_response

stock_bp = Blueprint("stock", __name__, url_prefix="/api/stock")


@stock_bp.get("/<int:store_id>")
def list_store_stock_route(store_id: int):
    try:
        records = stock_service.list_store_stock(store_id)
        return jsonify({"store_id": store_id, "stock": [r.to_dict() for r in records]}), 200
    except LedgerError as e:
        return ledger_error_response(e)
    except Exception:
        return internal_error_response("list stock")


@stock_bp.get("/<int:store_id>/<int:product_id>")
def get_stock_route(store_id: int, product_id: int):
    try:
        return jsonify({
            "store_id": store_id,
            "product_id": product_id,
            "quantity": stock_service.get_quantity(store_id, product_id),
        }), 200
    except LedgerError as e:
        return ledger_error_response(e)
    except Exception:
        return internal_error_response("get stock")


@stock_bp.put("/<int:store_id>/<int:product_id>")
def set_stock_route(store_id: int, product_id: int):
    """Overwrite quantity on hand (restock / count correction). Body: {"quantity": 5}"""
    try:
        data = request.get_json(silent=True) or {}
        quantity = coerce_int(data.get("quantity"), "quantity")
        record = run_in_transaction(lambda: stock_service.set_quantity(store_id, product_id, quantity))
        cache_invalidator.invalidate("stock")
        return jsonify({"stock": record.to_dict()}), 200
    except LedgerError as e:
        return ledger_error_response(e)
    except Exception:
        return internal_error_response("set stock")
