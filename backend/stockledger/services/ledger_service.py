# Overview: Service-layer operations for the stock ledger; append and read stock adjustments.

from __future__ import annotations

from sqlalchemy import func

from ..extensions import db
from ..models import Product, StockAdjustment
from ..errors import NotFound
from ..validation import ADJUSTMENT_TYPES
"""
Stock Ledger Invariants (authoritative)

- Append-only: rows are inserted, never updated or deleted.
- No domain/business logic in the ledger itself; callers decide the delta.
- Rows are written inside the same DB transaction as the counter mutation
  they record (see inventory_service.apply_stock_delta).
- For every product:
      stock_quantity == initial_stock_quantity + SUM(quantity_change)
"""


def append_adjustment(
    *,
    product_id: int,
    quantity_change: int,
    adjustment_type: str,
    reason: str | None = None,
    reference: str | None = None,
    sale_id: int | None = None,
    sale_item_id: int | None = None,
    resulting_quantity: int | None = None,
) -> StockAdjustment:
    """
    Append one stock adjustment row.

    - No commit here; the caller owns the unit of work.
    - No updates of existing rows.
    """
    if adjustment_type not in ADJUSTMENT_TYPES:
        raise ValueError(f"unknown adjustment_type {adjustment_type!r}")
    if quantity_change == 0:
        raise ValueError("quantity_change must be non-zero")

    row = StockAdjustment(
        product_id=product_id,
        quantity_change=quantity_change,
        adjustment_type=adjustment_type,
        reason=reason,
        reference=reference,
        sale_id=sale_id,
        sale_item_id=sale_item_id,
        resulting_quantity=resulting_quantity,
    )
    db.session.add(row)
    db.session.flush()  # ensures row.id is assigned without committing
    return row


def sum_quantity_change(product_id: int) -> int:
    total = db.session.query(
        func.coalesce(func.sum(StockAdjustment.quantity_change), 0)
    ).filter(StockAdjustment.product_id == product_id).scalar()
    return int(total or 0)


def ledger_balance(product_id: int) -> int:
    """Stock quantity implied by the ledger: initial count plus every delta."""
    initial = db.session.query(Product.initial_stock_quantity).filter_by(id=product_id).scalar()
    if initial is None:
        raise NotFound(f"Product {product_id} not found", details={"product_id": product_id})
    return int(initial) + sum_quantity_change(product_id)


def list_adjustments(
    product_id: int,
    *,
    adjustment_type: str | None = None,
    limit: int = 200,
) -> list[StockAdjustment]:
    q = StockAdjustment.query.filter_by(product_id=product_id)
    if adjustment_type:
        q = q.filter(StockAdjustment.adjustment_type == adjustment_type)
    return (
        q.order_by(StockAdjustment.created_at.desc(), StockAdjustment.id.desc())
        .limit(limit)
        .all()
    )


def list_adjustments_for_reference(reference: str) -> list[StockAdjustment]:
    return (
        StockAdjustment.query.filter_by(reference=reference)
        .order_by(StockAdjustment.id.asc())
        .all()
    )


def list_adjustments_for_sale(sale_id: int) -> list[StockAdjustment]:
    return (
        StockAdjustment.query.filter_by(sale_id=sale_id)
        .order_by(StockAdjustment.id.asc())
        .all()
    )
