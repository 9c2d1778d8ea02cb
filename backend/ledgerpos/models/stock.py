from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


class StockRecord(db.Model):
    """
    Quantity on hand for one product at one store.

    INVARIANT: quantity >= 0 at all times. Writes go through the conditional
    UPDATEs in stock_service; the CHECK constraint is the last line if
    anything else ever tries to push it below zero.
    """
    __tablename__ = "stock_records"
    __table_args__ = (
        db.UniqueConstraint("store_id", "product_id", name="uq_stock_store_product"),
        db.CheckConstraint("quantity >= 0", name="ck_stock_quantity_non_negative"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    store_id = db.Column(db.Integer, db.ForeignKey("stores.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    quantity = db.Column(db.Integer, nullable=False, default=0)

    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    store = db.relationship("Store", backref=db.backref("stock_records", lazy=True))
    product = db.relationship("Product", backref=db.backref("stock_records", lazy=True))

    def __repr__(self) -> str:
        return f"<StockRecord store_id={self.store_id} product_id={self.product_id} quantity={self.quantity}>"

    def to_dict(self) -> dict:
        return {
            "store_id": self.store_id,
            "product_id": self.product_id,
            "quantity": self.quantity,
            "updated_at": to_utc_z(self.updated_at),
        }
