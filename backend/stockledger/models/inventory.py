from __future__ import annotations

from ..extensions import db
from stockledger.time_utils import to_utc_z, utcnow


class StockAdjustment(db.Model):
    """
    Append-only stock ledger row.

    Rows are never updated or deleted. quantity_change is signed:
    sale < 0, sale_cancel / sale_return > 0, purchase > 0, loss < 0,
    correction either way.
    """
    __tablename__ = "stock_adjustments"
    __table_args__ = (
        db.CheckConstraint("quantity_change <> 0", name="ck_stock_adjustments_nonzero"),
        db.Index("ix_stock_adj_product_created", "product_id", "created_at"),
        db.Index("ix_stock_adj_type_created", "adjustment_type", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)

    quantity_change = db.Column(db.Integer, nullable=False)
    adjustment_type = db.Column(db.String(20), nullable=False)
    reason = db.Column(db.Text, nullable=True)
    # Related document, e.g. receipt number
    reference = db.Column(db.String(100), nullable=True, index=True)

    sale_id = db.Column(db.Integer, db.ForeignKey("sales.id"), nullable=True, index=True)
    sale_item_id = db.Column(db.Integer, db.ForeignKey("sale_items.id"), nullable=True, index=True)

    # Counter value right after this row was applied
    resulting_quantity = db.Column(db.Integer, nullable=True)

    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)

    product = db.relationship("Product", backref=db.backref("stock_adjustments", lazy="dynamic"))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "quantity_change": self.quantity_change,
            "adjustment_type": self.adjustment_type,
            "reason": self.reason,
            "reference": self.reference,
            "sale_id": self.sale_id,
            "sale_item_id": self.sale_item_id,
            "resulting_quantity": self.resulting_quantity,
            "created_at": to_utc_z(self.created_at),
        }
