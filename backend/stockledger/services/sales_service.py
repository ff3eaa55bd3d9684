"""
Sales Service - the sale transaction engine

WHY: A sale, its stock decrements, its cost snapshot and its ledger rows must
land together or not at all. Every public write here is one unit of work:
validate, lock, snapshot cost, write Sale + SaleItems, mutate stock through
inventory_service.apply_stock_delta, commit.

LIFECYCLE:
- create_sale: new, completed sale (is_returned = False)
- process_return: hands back part of the sold quantity per line; once every
  line is fully returned the sale becomes terminal (is_returned = True)
- cancel_sale: restores everything not yet returned; terminal

Totals are fixed at creation. Cancel/return never recompute them; they only
flip is_returned, stamp canceled_at/returned_at and append to notes.
"""

from __future__ import annotations

from flask import current_app
from sqlalchemy import func
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import Sale, SaleItem, Product
from ..errors import (
    ValidationError,
    InvalidItem,
    DuplicateReceipt,
    AlreadyReversed,
    OverReturn,
    NotFound,
)
from ..validation import (
    ModelValidationPolicy,
    validate_payload,
    enforce_rules_sale_header,
    enforce_rules_sale_item,
)
from stockledger.time_utils import utcnow, to_utc_z, not_in_future, parse_range_bound
from .inventory_service import apply_stock_delta
from .concurrency import lock_for_update, run_with_retry, begin_write_transaction


SALE_HEADER_POLICY = ModelValidationPolicy(
    writable_fields={
        "receipt_number",
        "subtotal_cents",
        "tax_amount_cents",
        "discount_amount_cents",
        "total_amount_cents",
        "payment_method",
        "card_amount_cents",
        "cash_amount_cents",
        "amount_paid_cents",
        "cashier",
        "notes",
        "created_at",
    },
    required_on_create={"receipt_number"},
)

SALE_ITEM_POLICY = ModelValidationPolicy(
    writable_fields={
        "product_id",
        "quantity",
        "unit_price_cents",
        "discount_amount_cents",
        "total_price_cents",
    },
    required_on_create={"product_id", "quantity"},
)


# =============================================================================
# VALIDATION HELPERS
# =============================================================================

def _normalize_items(items) -> list[dict]:
    if not isinstance(items, (list, tuple)) or not items:
        raise ValidationError("Sale must contain at least one item")

    normalized = []
    for index, raw in enumerate(items):
        try:
            patch = validate_payload(
                model=SaleItem,
                payload=raw,
                policy=SALE_ITEM_POLICY,
                partial=False,
                error_cls=InvalidItem,
            )
        except InvalidItem as exc:
            raise InvalidItem(f"items[{index}]: {exc.message}", details={"index": index}) from exc
        enforce_rules_sale_item(patch, index=index)
        normalized.append(patch)
    return normalized


def _load_products_locked(product_ids: set[int]) -> dict[int, Product]:
    query = db.session.query(Product).filter(Product.id.in_(sorted(product_ids)))
    return {p.id: p for p in lock_for_update(query).all()}


def _price_lines(item_patches: list[dict], products: dict[int, Product]) -> list[dict]:
    """
    Resolve price, discount and total per line and snapshot current cost.

    Must run inside the unit of work that decrements stock, so the cost
    copied here is the cost in effect when the sale commits.
    """
    lines = []
    for index, patch in enumerate(item_patches):
        product = products.get(patch["product_id"])
        if product is None or product.is_deleted:
            raise InvalidItem(
                f"items[{index}]: product {patch['product_id']} not found",
                details={"index": index, "product_id": patch["product_id"]},
            )

        quantity = patch["quantity"]
        unit_price = patch.get("unit_price_cents")
        if unit_price is None:
            unit_price = product.selling_price_cents
        discount = patch.get("discount_amount_cents") or 0

        gross = quantity * unit_price
        if discount > gross:
            raise InvalidItem(
                f"items[{index}]: discount_amount_cents exceeds line amount",
                details={"index": index, "line_amount_cents": gross},
            )
        total = gross - discount

        supplied_total = patch.get("total_price_cents")
        if supplied_total is not None and supplied_total != total:
            raise InvalidItem(
                f"items[{index}]: total_price_cents does not match quantity * unit_price - discount",
                details={"index": index, "expected": total, "supplied": supplied_total},
            )

        lines.append({
            "product": product,
            "quantity": quantity,
            "unit_price_cents": unit_price,
            "discount_amount_cents": discount,
            "total_price_cents": total,
            "historical_cost_price_cents": product.cost_price_cents,
        })
    return lines


def _resolve_totals(header: dict, lines: list[dict]) -> dict:
    subtotal = sum(line["total_price_cents"] for line in lines)
    supplied_subtotal = header.get("subtotal_cents")
    if supplied_subtotal is not None and supplied_subtotal != subtotal:
        raise ValidationError(
            "subtotal_cents does not match the sum of item totals",
            details={"expected": subtotal, "supplied": supplied_subtotal},
        )

    tax = header.get("tax_amount_cents") or 0
    discount = header.get("discount_amount_cents") or 0
    total = subtotal + tax - discount
    if total < 0:
        raise ValidationError("discount_amount_cents exceeds subtotal plus tax")

    supplied_total = header.get("total_amount_cents")
    if supplied_total is not None and supplied_total != total:
        raise ValidationError(
            "total_amount_cents must equal subtotal + tax - discount",
            details={"expected": total, "supplied": supplied_total},
        )

    method = header.get("payment_method") or "cash"
    card = header.get("card_amount_cents")
    cash = header.get("cash_amount_cents")

    paid = header.get("amount_paid_cents")
    if paid is None:
        paid = (card + cash) if method == "split" else total
    if paid < total:
        raise ValidationError(
            "amount_paid_cents is less than total_amount_cents",
            details={"total_amount_cents": total, "amount_paid_cents": paid},
        )
    if method == "split" and card + cash != paid:
        raise ValidationError(
            "card_amount_cents + cash_amount_cents must equal amount_paid_cents",
            details={"card_amount_cents": card, "cash_amount_cents": cash, "amount_paid_cents": paid},
        )

    return {
        "subtotal_cents": subtotal,
        "tax_amount_cents": tax,
        "discount_amount_cents": discount,
        "total_amount_cents": total,
        "payment_method": method,
        "card_amount_cents": card,
        "cash_amount_cents": cash,
        "amount_paid_cents": paid,
        "change_amount_cents": paid - total,
    }


def _receipt_exists(receipt_number: str) -> bool:
    return db.session.query(Sale.id).filter_by(receipt_number=receipt_number).first() is not None


def _get_sale_locked(sale_id: int) -> Sale:
    sale = lock_for_update(db.session.query(Sale).filter_by(id=sale_id)).first()
    if not sale:
        raise NotFound(f"Sale {sale_id} not found", details={"sale_id": sale_id})
    if sale.is_returned:
        raise AlreadyReversed(
            "This sale has already been returned or canceled",
            details={"sale_id": sale.id, "receipt_number": sale.receipt_number},
        )
    return sale


# =============================================================================
# SALE CREATION
# =============================================================================

def create_sale(header: dict, items: list[dict]) -> Sale:
    """
    Record a completed sale and decrement stock, atomically.

    Args:
        header: receipt_number (required, globally unique), payment fields,
            optional money totals (checked when supplied), cashier, notes,
            created_at (ISO-8601, for back-dated entry)
        items: non-empty list of {product_id, quantity, unit_price_cents?,
            discount_amount_cents?, total_price_cents?}

    Returns:
        The persisted Sale; sale.items holds its lines.

    Raises:
        ValidationError / InvalidItem: bad input, unknown or deleted product
        DuplicateReceipt: receipt_number already recorded
        InsufficientStock: a line would drive stock below zero
        StoreError: database failure (nothing was written)
    """
    header_patch = validate_payload(
        model=Sale,
        payload=header,
        policy=SALE_HEADER_POLICY,
        partial=False,
    )
    enforce_rules_sale_header(header_patch)
    item_patches = _normalize_items(items)

    receipt_number = header_patch["receipt_number"]
    created_at = header_patch.get("created_at")
    if created_at is not None and not not_in_future(created_at):
        raise ValidationError("created_at cannot be in the future")

    def _op():
        begin_write_transaction()

        existing = db.session.query(Sale.id).filter_by(receipt_number=receipt_number).first()
        if existing is not None:
            raise DuplicateReceipt(
                f"Receipt {receipt_number} already exists",
                details={"receipt_number": receipt_number, "sale_id": existing.id},
            )

        products = _load_products_locked({p["product_id"] for p in item_patches})
        lines = _price_lines(item_patches, products)
        totals = _resolve_totals(header_patch, lines)

        sale = Sale(
            receipt_number=receipt_number,
            cashier=header_patch.get("cashier"),
            notes=header_patch.get("notes"),
            is_returned=False,
            **totals,
        )
        if created_at is not None:
            sale.created_at = created_at
            sale.updated_at = created_at
        db.session.add(sale)
        try:
            db.session.flush()
        except IntegrityError as exc:
            db.session.rollback()
            if _receipt_exists(receipt_number):
                raise DuplicateReceipt(
                    f"Receipt {receipt_number} already exists",
                    details={"receipt_number": receipt_number},
                ) from exc
            raise

        sale_items = []
        for line in lines:
            product = line["product"]
            item = SaleItem(
                sale_id=sale.id,
                product_id=product.id,
                product_name=product.name,
                quantity=line["quantity"],
                unit_price_cents=line["unit_price_cents"],
                discount_amount_cents=line["discount_amount_cents"],
                total_price_cents=line["total_price_cents"],
                historical_cost_price_cents=line["historical_cost_price_cents"],
                returned_quantity=0,
            )
            db.session.add(item)
            sale_items.append(item)
        db.session.flush()

        for item in sale_items:
            apply_stock_delta(
                product_id=item.product_id,
                delta=-item.quantity,
                adjustment_type="sale",
                reference=receipt_number,
                sale_id=sale.id,
                sale_item_id=item.id,
            )

        db.session.commit()
        current_app.logger.info(
            "Sale %s recorded: receipt=%s items=%d total_cents=%s",
            sale.id, receipt_number, len(sale_items), sale.total_amount_cents,
        )
        return sale

    return run_with_retry(_op)


# =============================================================================
# CANCELLATION
# =============================================================================

def cancel_sale(sale_id: int) -> Sale:
    """
    Fully reverse a sale that is not yet returned.

    Stock is restored unconditionally for every unit still out (units handed
    back by earlier partial returns were already restored). Items themselves
    are left untouched. Terminal: a canceled sale cannot be canceled again.

    Raises:
        NotFound: no such sale
        AlreadyReversed: sale already canceled or fully returned
    """
    def _op():
        begin_write_transaction()
        sale = _get_sale_locked(sale_id)

        items = (
            db.session.query(SaleItem)
            .filter_by(sale_id=sale.id)
            .order_by(SaleItem.id.asc())
            .all()
        )

        restored = 0
        for item in items:
            remaining = item.remaining_quantity
            if remaining <= 0:
                continue
            apply_stock_delta(
                product_id=item.product_id,
                delta=remaining,
                adjustment_type="sale_cancel",
                reason="Sale canceled",
                reference=f"CANCEL-{sale.receipt_number}",
                sale_id=sale.id,
                sale_item_id=item.id,
            )
            restored += remaining

        now = utcnow()
        sale.is_returned = True
        sale.canceled_at = now
        sale.returned_at = now
        sale.updated_at = now
        sale.append_note(f"CANCELED: {to_utc_z(now)}")

        db.session.commit()
        current_app.logger.info(
            "Sale %s canceled: receipt=%s units_restored=%d",
            sale.id, sale.receipt_number, restored,
        )
        return sale

    return run_with_retry(_op)


# =============================================================================
# PARTIAL RETURNS
# =============================================================================

def _normalize_return_items(items) -> dict[int, int]:
    """Validate return lines and sum quantities per sale item, keeping order."""
    if not isinstance(items, (list, tuple)) or not items:
        raise ValidationError("Return must contain at least one item")

    requested: dict[int, int] = {}
    for index, raw in enumerate(items):
        if not isinstance(raw, dict):
            raise InvalidItem(f"items[{index}] must be an object", details={"index": index})

        item_id = raw.get("sale_item_id")
        quantity = raw.get("quantity")
        for key, value in (("sale_item_id", item_id), ("quantity", quantity)):
            if isinstance(value, bool) or not isinstance(value, int):
                raise InvalidItem(f"items[{index}].{key} must be an integer", details={"index": index})
        if quantity <= 0:
            raise InvalidItem(f"items[{index}].quantity must be > 0", details={"index": index})

        requested[item_id] = requested.get(item_id, 0) + quantity
    return requested


def process_return(sale_id: int, items: list[dict], reason: str | None = None) -> Sale:
    """
    Return part of a sale.

    Args:
        sale_id: Sale being returned from
        items: [{sale_item_id, quantity}, ...]; repeated lines are summed
        reason: free text recorded on the ledger rows

    Every line is checked before anything is written. When all lines are
    fully returned the sale becomes terminal (is_returned = True).

    Raises:
        NotFound: no such sale
        AlreadyReversed: sale already canceled or fully returned
        InvalidItem: sale item does not belong to this sale, bad quantity
        OverReturn: quantity exceeds what is left to return on a line
    """
    requested = _normalize_return_items(items)

    def _op():
        begin_write_transaction()
        sale = _get_sale_locked(sale_id)

        sale_items = {
            item.id: item
            for item in db.session.query(SaleItem).filter_by(sale_id=sale.id).all()
        }

        for item_id, quantity in requested.items():
            item = sale_items.get(item_id)
            if item is None:
                raise InvalidItem(
                    f"Sale item {item_id} does not belong to sale {sale.id}",
                    details={"sale_id": sale.id, "sale_item_id": item_id},
                )
            if quantity > item.remaining_quantity:
                raise OverReturn(
                    f"Cannot return {quantity} units of sale item {item_id}. "
                    f"Sold: {item.quantity}, already returned: {item.returned_quantity}, "
                    f"available: {item.remaining_quantity}",
                    details={
                        "sale_item_id": item_id,
                        "requested_quantity": quantity,
                        "sold_quantity": item.quantity,
                        "returned_quantity": item.returned_quantity,
                        "available_quantity": item.remaining_quantity,
                    },
                )

        for item_id, quantity in requested.items():
            item = sale_items[item_id]
            apply_stock_delta(
                product_id=item.product_id,
                delta=quantity,
                adjustment_type="sale_return",
                reason=reason or "Sale return",
                reference=f"RETURN-{sale.receipt_number}",
                sale_id=sale.id,
                sale_item_id=item.id,
            )
            item.returned_quantity = item.returned_quantity + quantity

        now = utcnow()
        units = sum(requested.values())
        sale.append_note(f"RETURNED: {to_utc_z(now)} ({units} units)")
        sale.updated_at = now
        if all(item.remaining_quantity == 0 for item in sale_items.values()):
            sale.is_returned = True
            sale.returned_at = now

        db.session.commit()
        current_app.logger.info(
            "Return on sale %s: receipt=%s units=%d fully_returned=%s",
            sale.id, sale.receipt_number, units, sale.is_returned,
        )
        return sale

    return run_with_retry(_op)


# =============================================================================
# QUERIES
# =============================================================================

def get_sale(sale_id: int) -> Sale | None:
    return db.session.get(Sale, sale_id)


def get_sale_with_items(sale_id: int) -> dict | None:
    """Sale with its items, or None."""
    sale = db.session.get(Sale, sale_id)
    if sale is None:
        return None
    return sale.to_dict(include_items=True)


def get_sale_by_receipt(receipt_number: str) -> Sale | None:
    return db.session.query(Sale).filter_by(receipt_number=receipt_number).first()


def list_sales(
    *,
    start=None,
    end=None,
    payment_method: str | None = None,
    query: str | None = None,
    include_returned: bool = True,
    page: int = 1,
    per_page: int = 20,
) -> dict:
    """
    Sales history with item counts, newest first.

    start/end accept dates (whole day, inclusive) or ISO-8601 datetimes.
    query is a substring match on receipt_number.
    """
    try:
        start_dt = parse_range_bound(start)
        end_dt = parse_range_bound(end, end=True)
    except ValueError as exc:
        raise ValidationError("start and end must be ISO-8601 dates or datetimes") from exc

    counts = (
        db.session.query(SaleItem.sale_id, func.count(SaleItem.id).label("item_count"))
        .group_by(SaleItem.sale_id)
        .subquery()
    )
    q = db.session.query(Sale, func.coalesce(counts.c.item_count, 0)).outerjoin(
        counts, counts.c.sale_id == Sale.id
    )

    if start_dt is not None:
        q = q.filter(Sale.created_at >= start_dt)
    if end_dt is not None:
        q = q.filter(Sale.created_at <= end_dt)
    if payment_method:
        q = q.filter(Sale.payment_method == payment_method)
    if query:
        q = q.filter(Sale.receipt_number.ilike(f"%{query.strip()}%"))
    if not include_returned:
        q = q.filter(Sale.is_returned.is_(False))

    per_page = min(max(per_page or 20, 1), 100)
    page = max(page or 1, 1)

    total = q.count()
    total_pages = (total + per_page - 1) // per_page if total > 0 else 1

    rows = (
        q.order_by(Sale.created_at.desc(), Sale.id.desc())
        .offset((page - 1) * per_page)
        .limit(per_page)
        .all()
    )

    items = []
    for sale, item_count in rows:
        data = sale.to_dict()
        data["item_count"] = int(item_count or 0)
        items.append(data)

    return {
        "items": items,
        "count": len(items),
        "pagination": {
            "page": page,
            "per_page": per_page,
            "total": total,
            "total_pages": total_pages,
            "has_next": page < total_pages,
            "has_prev": page > 1,
        },
    }
