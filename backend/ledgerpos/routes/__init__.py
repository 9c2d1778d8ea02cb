from flask import current_app, jsonify

from ..errors import LedgerError
from ..validation import coerce_id


def ledger_error_response(exc: LedgerError):
    """Structured error body: {"error": code, "message": ..., "details": {...}}."""
    if exc.http_status >= 500:
        current_app.logger.warning("request_failed code=%s message=%s", exc.code, exc.message)
    return jsonify(exc.to_dict()), exc.http_status


def internal_error_response(what: str):
    current_app.logger.exception("Failed to %s", what)
    return jsonify({"error": "internal_error", "message": "Internal server error"}), 500


def query_int(args, name: str) -> int | None:
    raw = args.get(name)
    if raw is None or raw == "":
        return None
    return coerce_id(raw, name)
