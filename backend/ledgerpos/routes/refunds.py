# Overview: Flask API routes for refunds; parses input and returns JSON responses.

from flask import Blueprint, jsonify, request

from ..errors import LedgerError, ValidationError
from ..services import refund_service
from ..validation import parse_refund_request
from . import internal_error_response, ledger_error_response, query_int

refunds_bp = Blueprint("refunds", __name__, url_prefix="/api/refunds")


@refunds_bp.post("")
def create_refund_route():
    """
    Refund part or all of a sale.

    Request body:
    {
        "sale_id": 123,
        "reason": "Damaged",
        "lines": [{"product_id": 10, "quantity": 1}],  (optional: omit to refund everything left)
        "user_id": 7,     (optional, defaults to the sale's customer)
        "store_id": 1     (optional, defaults to the sale's store)
    }

    Returns:
        201: Refund created
        400: Invalid input
        404: Sale not found
        409: Sale not refundable, or refund exceeds what remains
    """
    try:
        req = parse_refund_request(
            request.get_json(silent=True),
            idempotency_key=request.headers.get("Idempotency-Key"),
        )
        refund, created = refund_service.submit_refund(
            req.sale_id,
            req.reason,
            req.lines,
            user_id=req.user_id,
            store_id=req.store_id,
            idempotency_key=req.idempotency_key,
        )
        body = refund.to_dict()
        body["sale_status"] = refund.sale.status
        return jsonify({"refund": body}), 201 if created else 200

    except LedgerError as e:
        return ledger_error_response(e)
    except Exception:
        return internal_error_response("create refund")


@refunds_bp.get("")
def list_refunds_route():
    try:
        sale_id = query_int(request.args, "sale_id")
        store_id = query_int(request.args, "store_id")
        user_id = query_int(request.args, "user_id")
        limit = query_int(request.args, "limit")

        if sale_id is not None:
            refunds = refund_service.get_sale_refunds(sale_id)
        elif store_id is not None:
            refunds = refund_service.list_refunds_by_store(store_id, limit)
        elif user_id is not None:
            refunds = refund_service.list_refunds_by_user(user_id, limit)
        else:
            raise ValidationError("sale_id, store_id or user_id required")

        return jsonify({"refunds": [r.to_dict() for r in refunds]}), 200

    except LedgerError as e:
        return ledger_error_response(e)
    except Exception:
        return internal_error_response("list refunds")


@refunds_bp.get("/<int:refund_id>")
def get_refund_route(refund_id: int):
    try:
        refund = refund_service.get_refund(refund_id)
        return jsonify({"refund": refund.to_dict()}), 200
    except LedgerError as e:
        return ledger_error_response(e)
    except Exception:
        return internal_error_response("load refund")
