from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z

IDEMPOTENCY_SCOPE_SALE = "sale"
IDEMPOTENCY_SCOPE_REFUND = "refund"


class IdempotencyKey(db.Model):
    """
    Client-supplied key collapsing retried submissions into one effect.

    Written in the same transaction as the sale/refund it points at, so a key
    exists if and only if its effect was committed.
    """
    __tablename__ = "idempotency_keys"
    __table_args__ = (
        db.UniqueConstraint("scope", "key", name="uq_idempotency_scope_key"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    scope = db.Column(db.String(16), nullable=False)
    key = db.Column(db.String(255), nullable=False)
    request_fingerprint = db.Column(db.String(64), nullable=False)
    resource_id = db.Column(db.Integer, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "scope": self.scope,
            "key": self.key,
            "resource_id": self.resource_id,
            "created_at": to_utc_z(self.created_at),
        }
