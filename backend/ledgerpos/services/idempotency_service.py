# Overview: Idempotency keys that collapse retried sale/refund submissions.

from __future__ import annotations

import hashlib
import json

from ..errors import IdempotencyConflictError, ValidationError
from ..extensions import db
from ..models import IdempotencyKey

MAX_KEY_LENGTH = 255


def normalize_key(key) -> str | None:
    if key is None:
        return None
    if not isinstance(key, str):
        raise ValidationError("idempotency_key must be a string")
    key = key.strip()
    if not key:
        return None
    if len(key) > MAX_KEY_LENGTH:
        raise ValidationError(f"idempotency_key exceeds max length {MAX_KEY_LENGTH}")
    return key


def fingerprint(payload: dict) -> str:
    """Stable SHA-256 of the normalized request (key order independent)."""
    canonical = json.dumps(payload, sort_keys=True, separators=(",", ":"), default=str)
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


def lookup(scope: str, key: str, request_fingerprint: str) -> int | None:
    """
    Return the resource id a previous request with this key produced.

    Raises IdempotencyConflictError when the key was used for a different
    request body.
    """
    row = db.session.query(IdempotencyKey).filter_by(scope=scope, key=key).first()
    if row is None:
        return None
    if row.request_fingerprint != request_fingerprint:
        raise IdempotencyConflictError(
            "Idempotency key was already used with a different request",
            details={"scope": scope, "idempotency_key": key},
        )
    return row.resource_id


def record(scope: str, key: str, request_fingerprint: str, resource_id: int) -> IdempotencyKey:
    """
    Record the key in the current transaction.

    A concurrent duplicate loses on uq_idempotency_scope_key at flush time
    (IntegrityError); the caller then replays the winner's result.
    """
    row = IdempotencyKey(
        scope=scope,
        key=key,
        request_fingerprint=request_fingerprint,
        resource_id=resource_id,
    )
    db.session.add(row)
    db.session.flush()
    return row
