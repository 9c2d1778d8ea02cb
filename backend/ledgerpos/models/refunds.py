from __future__ import annotations

from ..extensions import db
from ..money import cents_to_amount
from ..time_utils import to_utc_z


class Refund(db.Model):
    """
    Refund against a prior sale. Immutable once created.

    A sale can carry several partial refunds; the running refunded balance is
    always re-derived from these rows, never from a counter on the sale.
    """
    __tablename__ = "refunds"
    __table_args__ = (
        db.Index("ix_refunds_store_created", "store_id", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    sale_id = db.Column(db.Integer, db.ForeignKey("sales.id"), nullable=False, index=True)

    # Store where stock was restored (defaults to the sale's store)
    store_id = db.Column(db.Integer, db.ForeignKey("stores.id"), nullable=False, index=True)
    user_id = db.Column(db.Integer, nullable=False, index=True)

    reason = db.Column(db.Text, nullable=True)

    subtotal_cents = db.Column(db.Integer, nullable=False)
    tax_cents = db.Column(db.Integer, nullable=False, default=0)
    total_cents = db.Column(db.Integer, nullable=False)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)

    sale = db.relationship(
        "Sale",
        backref=db.backref("refunds", lazy=True, order_by="Refund.id"),
    )
    store = db.relationship("Store")

    def __repr__(self) -> str:
        return f"<Refund id={self.id} sale_id={self.sale_id} total_cents={self.total_cents}>"

    def to_dict(self, include_lines: bool = True) -> dict:
        data = {
            "id": self.id,
            "date": to_utc_z(self.created_at),
            "sale_id": self.sale_id,
            "store_id": self.store_id,
            "user_id": self.user_id,
            "reason": self.reason,
            "subtotal": cents_to_amount(self.subtotal_cents),
            "tax": cents_to_amount(self.tax_cents),
            "total": cents_to_amount(self.total_cents),
            "subtotal_cents": self.subtotal_cents,
            "tax_cents": self.tax_cents,
            "total_cents": self.total_cents,
        }
        if include_lines:
            data["lines"] = [line.to_dict() for line in self.lines]
        return data


class RefundLine(db.Model):
    """Reverses part of one sale line, at that line's original unit price."""
    __tablename__ = "refund_lines"
    __table_args__ = (
        db.CheckConstraint("quantity > 0", name="ck_refund_lines_quantity_positive"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    refund_id = db.Column(db.Integer, db.ForeignKey("refunds.id"), nullable=False, index=True)
    sale_line_id = db.Column(db.Integer, db.ForeignKey("sale_lines.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)

    quantity = db.Column(db.Integer, nullable=False)
    unit_price_cents = db.Column(db.Integer, nullable=False)  # Copied from the sale line
    line_total_cents = db.Column(db.Integer, nullable=False)

    refund = db.relationship(
        "Refund",
        backref=db.backref("lines", lazy=True, order_by="RefundLine.id"),
    )
    sale_line = db.relationship("SaleLine", backref=db.backref("refund_lines", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "refund_id": self.refund_id,
            "sale_line_id": self.sale_line_id,
            "product_id": self.product_id,
            "quantity": self.quantity,
            "unit_price": cents_to_amount(self.unit_price_cents),
            "unit_price_cents": self.unit_price_cents,
            "line_total_cents": self.line_total_cents,
        }
