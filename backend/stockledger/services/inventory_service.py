# Overview: Service-layer operations for product stock; the single write path for stock counters.

# backend/stockledger/services/inventory_service.py

from flask import current_app
from sqlalchemy import update

from ..extensions import db
from ..models import Product, StockAdjustment
from ..errors import NotFound, InsufficientStock
from ..validation import enforce_rules_stock_adjustment
from stockledger.time_utils import utcnow
from . import ledger_service
from .concurrency import lock_for_update, run_with_retry, begin_write_transaction
"""
Stock Invariants (authoritative)

Counter and ledger:
- Product.stock_quantity is the materialized current count.
- Every change to it goes through apply_stock_delta(), which appends the
  matching StockAdjustment in the same transaction. No other code path
  writes stock_quantity (product creation only sets the initial count).
- stock_quantity == initial_stock_quantity + SUM(quantity_change), always.

Non-negative stock:
- Decrements are conditional updates:
      UPDATE products SET stock_quantity = stock_quantity - :q
      WHERE id = :id AND stock_quantity >= :q
  Zero affected rows means the precondition failed -> InsufficientStock.
- The check and the write are one statement, so concurrent sellers of the
  same product cannot both pass it.
- Only 'correction' may go below zero, and only when
  ALLOW_NEGATIVE_CORRECTIONS is enabled.

Units of work:
- apply_stock_delta() never commits; the caller owns the transaction.
- adjust_stock() is a complete unit of work (retry + commit).
"""


def get_product(product_id: int, *, lock: bool = False, include_deleted: bool = False) -> Product:
    query = db.session.query(Product).filter_by(id=product_id)
    if lock:
        query = lock_for_update(query)
    product = query.first()
    if product is None or (product.is_deleted and not include_deleted):
        raise NotFound(f"Product {product_id} not found", details={"product_id": product_id})
    return product


def apply_stock_delta(
    *,
    product_id: int,
    delta: int,
    adjustment_type: str,
    reason: str | None = None,
    reference: str | None = None,
    sale_id: int | None = None,
    sale_item_id: int | None = None,
    allow_negative: bool = False,
) -> StockAdjustment:
    """
    Mutate a product's stock counter and append its ledger row.

    Core logic without retry or commit; must run inside the caller's
    unit of work.
    """
    stmt = (
        update(Product)
        .where(Product.id == product_id)
        .values(stock_quantity=Product.stock_quantity + delta, updated_at=utcnow())
        .execution_options(synchronize_session=False)
    )
    if delta < 0 and not allow_negative:
        stmt = stmt.where(Product.stock_quantity >= -delta)

    result = db.session.execute(stmt)
    if not result.rowcount:
        available = db.session.query(Product.stock_quantity).filter_by(id=product_id).scalar()
        if available is None:
            raise NotFound(f"Product {product_id} not found", details={"product_id": product_id})
        raise InsufficientStock(
            f"Insufficient stock for product {product_id}",
            details={
                "product_id": product_id,
                "requested_quantity": -delta,
                "available_quantity": int(available),
            },
        )

    # The identity map still holds the pre-update counter; reload it
    product = db.session.get(Product, product_id)
    db.session.refresh(product, ["stock_quantity", "updated_at"])

    return ledger_service.append_adjustment(
        product_id=product_id,
        quantity_change=delta,
        adjustment_type=adjustment_type,
        reason=reason,
        reference=reference,
        sale_id=sale_id,
        sale_item_id=sale_item_id,
        resulting_quantity=product.stock_quantity,
    )


def adjust_stock(
    product_id: int,
    delta: int,
    adjustment_type: str,
    reason: str | None = None,
    reference: str | None = None,
) -> Product:
    """
    Non-sale stock mutation (purchase, loss, correction).

    Raises:
        ValidationError: bad type or delta
        NotFound: product missing or soft-deleted
        InsufficientStock: negative delta larger than current stock
    """
    enforce_rules_stock_adjustment(delta, adjustment_type)

    allow_negative = (
        adjustment_type == "correction"
        and bool(current_app.config.get("ALLOW_NEGATIVE_CORRECTIONS", False))
    )

    def _op():
        begin_write_transaction()
        get_product(product_id, lock=True)

        adjustment = apply_stock_delta(
            product_id=product_id,
            delta=delta,
            adjustment_type=adjustment_type,
            reason=reason,
            reference=reference,
            allow_negative=allow_negative,
        )

        db.session.commit()
        current_app.logger.info(
            "Stock %s for product %s: %+d -> %s (ref=%s)",
            adjustment_type,
            product_id,
            delta,
            adjustment.resulting_quantity,
            reference,
        )
        return db.session.get(Product, product_id)

    return run_with_retry(_op)


def get_stock_summary(product_id: int) -> dict:
    product = get_product(product_id, include_deleted=True)
    ledger_quantity = ledger_service.ledger_balance(product_id)
    return {
        "product_id": product.id,
        "stock_quantity": product.stock_quantity,
        "ledger_quantity": ledger_quantity,
        "min_stock_threshold": product.min_stock_threshold,
        "is_low_stock": product.is_low_stock,
        "cost_price_cents": product.cost_price_cents,
        "inventory_value_cents": product.stock_quantity * product.cost_price_cents,
    }


def verify_product_stock(product_id: int) -> dict:
    """
    Compare the materialized counter with the ledger.

    drift = stock_quantity - ledger_quantity; zero when consistent.
    """
    product = get_product(product_id, include_deleted=True)
    ledger_quantity = ledger_service.ledger_balance(product_id)
    drift = product.stock_quantity - ledger_quantity
    return {
        "product_id": product.id,
        "name": product.name,
        "stock_quantity": product.stock_quantity,
        "ledger_quantity": ledger_quantity,
        "drift": drift,
        "consistent": drift == 0,
    }


def verify_all_stock() -> list[dict]:
    product_ids = [pid for (pid,) in db.session.query(Product.id).order_by(Product.id.asc()).all()]
    return [verify_product_stock(pid) for pid in product_ids]


def repair_product_stock(product_id: int) -> dict:
    """
    Reset the counter to the ledger balance.

    The ledger is the record; the counter is its materialized view, so
    repair never appends ledger rows.
    """
    def _op():
        begin_write_transaction()
        product = get_product(product_id, lock=True, include_deleted=True)
        before = product.stock_quantity
        ledger_quantity = ledger_service.ledger_balance(product_id)
        if before != ledger_quantity:
            product.stock_quantity = ledger_quantity
            product.updated_at = utcnow()
            current_app.logger.warning(
                "Repaired stock drift for product %s: %s -> %s", product_id, before, ledger_quantity
            )
        db.session.commit()
        return {
            "product_id": product_id,
            "previous_quantity": before,
            "stock_quantity": ledger_quantity,
            "repaired": before != ledger_quantity,
        }

    return run_with_retry(_op)
