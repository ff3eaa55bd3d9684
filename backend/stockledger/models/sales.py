from __future__ import annotations

from ..extensions import db
from stockledger.time_utils import to_utc_z, utcnow


class Sale(db.Model):
    """
    Sale header.

    Created once by sales_service.create_sale; afterwards only cancel/return
    touch it, and only to flip is_returned, stamp canceled_at/returned_at and
    append to notes. Totals are never recomputed.
    """
    __tablename__ = "sales"
    __table_args__ = (
        db.Index("ix_sales_returned_created", "is_returned", "created_at"),
        db.Index("ix_sales_payment_method", "payment_method"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    # Human-readable, caller-supplied, globally unique
    receipt_number = db.Column(db.String(50), nullable=False, unique=True)

    # Amounts in cents
    subtotal_cents = db.Column(db.Integer, nullable=False)
    tax_amount_cents = db.Column(db.Integer, nullable=False, default=0)
    discount_amount_cents = db.Column(db.Integer, nullable=False, default=0)
    total_amount_cents = db.Column(db.Integer, nullable=False)

    payment_method = db.Column(db.String(20), nullable=False, default="cash")
    card_amount_cents = db.Column(db.Integer, nullable=True)
    cash_amount_cents = db.Column(db.Integer, nullable=True)
    amount_paid_cents = db.Column(db.Integer, nullable=False)
    change_amount_cents = db.Column(db.Integer, nullable=False, default=0)

    cashier = db.Column(db.String(100), nullable=True)

    # Terminal flag: canceled or fully returned
    is_returned = db.Column(db.Boolean, nullable=False, default=False)
    notes = db.Column(db.Text, nullable=True)
    canceled_at = db.Column(db.DateTime, nullable=True)
    returned_at = db.Column(db.DateTime, nullable=True)

    created_at = db.Column(db.DateTime, nullable=False, default=utcnow, index=True)
    updated_at = db.Column(db.DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    items = db.relationship(
        "SaleItem",
        backref="sale",
        lazy=True,
        order_by="SaleItem.id",
    )

    def append_note(self, note: str) -> None:
        self.notes = f"{self.notes} | {note}" if self.notes else note

    def to_dict(self, include_items: bool = False) -> dict:
        data = {
            "id": self.id,
            "receipt_number": self.receipt_number,
            "subtotal_cents": self.subtotal_cents,
            "tax_amount_cents": self.tax_amount_cents,
            "discount_amount_cents": self.discount_amount_cents,
            "total_amount_cents": self.total_amount_cents,
            "payment_method": self.payment_method,
            "card_amount_cents": self.card_amount_cents,
            "cash_amount_cents": self.cash_amount_cents,
            "amount_paid_cents": self.amount_paid_cents,
            "change_amount_cents": self.change_amount_cents,
            "cashier": self.cashier,
            "is_returned": self.is_returned,
            "notes": self.notes,
            "canceled_at": to_utc_z(self.canceled_at) if self.canceled_at else None,
            "returned_at": to_utc_z(self.returned_at) if self.returned_at else None,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
        if include_items:
            data["items"] = [item.to_dict() for item in self.items]
        return data


class SaleItem(db.Model):
    """
    Line item on a sale.

    historical_cost_price_cents is the product cost copied when the sale was
    created. Nothing writes it afterwards, so profit for past periods does not
    move when Product.cost_price_cents changes.
    """
    __tablename__ = "sale_items"
    __table_args__ = (
        db.CheckConstraint("quantity > 0", name="ck_sale_items_quantity_positive"),
        db.CheckConstraint(
            "returned_quantity >= 0 AND returned_quantity <= quantity",
            name="ck_sale_items_returned_range",
        ),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    sale_id = db.Column(db.Integer, db.ForeignKey("sales.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    product_name = db.Column(db.String(100), nullable=False)

    quantity = db.Column(db.Integer, nullable=False)
    unit_price_cents = db.Column(db.Integer, nullable=False)
    discount_amount_cents = db.Column(db.Integer, nullable=False, default=0)
    total_price_cents = db.Column(db.Integer, nullable=False)

    historical_cost_price_cents = db.Column(db.Integer, nullable=False)

    # Cumulative units handed back through partial returns
    returned_quantity = db.Column(db.Integer, nullable=False, default=0)

    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)

    product = db.relationship("Product")

    @property
    def remaining_quantity(self) -> int:
        return self.quantity - (self.returned_quantity or 0)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sale_id": self.sale_id,
            "product_id": self.product_id,
            "product_name": self.product_name,
            "quantity": self.quantity,
            "unit_price_cents": self.unit_price_cents,
            "discount_amount_cents": self.discount_amount_cents,
            "total_price_cents": self.total_price_cents,
            "historical_cost_price_cents": self.historical_cost_price_cents,
            "returned_quantity": self.returned_quantity,
            "remaining_quantity": self.remaining_quantity,
            "created_at": to_utc_z(self.created_at),
        }
