from __future__ import annotations

from ..extensions import db
from ..money import cents_to_amount
from ..time_utils import to_utc_z

SALE_STATUS_ACTIVE = "active"
SALE_STATUS_COMPLETED = "completed"
SALE_STATUS_PARTIALLY_REFUNDED = "partially_refunded"
SALE_STATUS_REFUNDED = "refunded"
SALE_STATUS_CANCELLED = "cancelled"

SALE_STATUSES = {
    SALE_STATUS_ACTIVE,
    SALE_STATUS_COMPLETED,
    SALE_STATUS_PARTIALLY_REFUNDED,
    SALE_STATUS_REFUNDED,
    SALE_STATUS_CANCELLED,
}

# No further refunds once a sale reaches one of these
TERMINAL_SALE_STATUSES = {SALE_STATUS_REFUNDED, SALE_STATUS_CANCELLED}


class Sale(db.Model):
    """
    Sale header. Created atomically with its lines and never deleted.

    After creation only `status` changes (refunds, completion, cancellation);
    amounts and lines are immutable.
    """
    __tablename__ = "sales"
    __table_args__ = (
        db.Index("ix_sales_store_status_created", "store_id", "status", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    store_id = db.Column(db.Integer, db.ForeignKey("stores.id"), nullable=False, index=True)
    customer_id = db.Column(db.Integer, nullable=False, index=True)

    status = db.Column(db.String(32), nullable=False, default=SALE_STATUS_ACTIVE, index=True)

    # Amounts in cents; tax_rate_bps is the store rate at sale time
    subtotal_cents = db.Column(db.Integer, nullable=False)
    tax_rate_bps = db.Column(db.Integer, nullable=False, default=0)
    tax_cents = db.Column(db.Integer, nullable=False, default=0)
    total_cents = db.Column(db.Integer, nullable=False)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    completed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    cancelled_at = db.Column(db.DateTime(timezone=True), nullable=True)
    cancel_reason = db.Column(db.String(255), nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    store = db.relationship("Store", backref=db.backref("sales", lazy=True))
    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<Sale id={self.id} store_id={self.store_id} status={self.status} total_cents={self.total_cents}>"

    def to_dict(self, include_lines: bool = True) -> dict:
        data = {
            "id": self.id,
            "date": to_utc_z(self.created_at),
            "store_id": self.store_id,
            "customer_id": self.customer_id,
            "status": self.status,
            "subtotal": cents_to_amount(self.subtotal_cents),
            "tax": cents_to_amount(self.tax_cents),
            "total": cents_to_amount(self.total_cents),
            "subtotal_cents": self.subtotal_cents,
            "tax_rate_bps": self.tax_rate_bps,
            "tax_cents": self.tax_cents,
            "total_cents": self.total_cents,
            "completed_at": to_utc_z(self.completed_at),
            "cancelled_at": to_utc_z(self.cancelled_at),
            "cancel_reason": self.cancel_reason,
            "version_id": self.version_id,
        }
        if include_lines:
            data["lines"] = [line.to_dict() for line in self.lines]
        return data


class SaleLine(db.Model):
    """Line item on a sale. line_number preserves entry order (1-based)."""
    __tablename__ = "sale_lines"
    __table_args__ = (
        db.UniqueConstraint("sale_id", "line_number", name="uq_sale_lines_sale_line_number"),
        db.CheckConstraint("quantity > 0", name="ck_sale_lines_quantity_positive"),
        db.CheckConstraint("unit_price_cents >= 0", name="ck_sale_lines_unit_price_non_negative"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    sale_id = db.Column(db.Integer, db.ForeignKey("sales.id"), nullable=False, index=True)
    line_number = db.Column(db.Integer, nullable=False)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)

    quantity = db.Column(db.Integer, nullable=False)
    unit_price_cents = db.Column(db.Integer, nullable=False)
    line_total_cents = db.Column(db.Integer, nullable=False)

    sale = db.relationship(
        "Sale",
        backref=db.backref("lines", lazy=True, order_by="SaleLine.line_number"),
    )
    product = db.relationship("Product")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sale_id": self.sale_id,
            "line_number": self.line_number,
            "product_id": self.product_id,
            "quantity": self.quantity,
            "unit_price": cents_to_amount(self.unit_price_cents),
            "unit_price_cents": self.unit_price_cents,
            "line_total_cents": self.line_total_cents,
        }
