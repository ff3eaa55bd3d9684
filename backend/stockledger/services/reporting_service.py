# Overview: Read-only profit reporting over recorded sales (revenue, cost, profit, margin).

from __future__ import annotations

from datetime import datetime

from flask import current_app
from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError

from ..extensions import db
from ..models import Sale, SaleItem, Product, Category, Supplier
from ..errors import ValidationError
from stockledger.time_utils import parse_range_bound, to_utc_z
"""
Profit Invariants (authoritative)

- Cost comes from SaleItem.historical_cost_price_cents only. Product.cost_price_cents
  is the current price and is never read here, so past periods do not move
  when a cost changes.
- Only sales with is_returned = False count.
- Partial returns are netted per line:
      net_quantity = quantity - returned_quantity
      net_revenue  = total_price - total_price * returned_quantity / quantity
      net_cost     = historical_cost_price * net_quantity
  A line with nothing returned contributes exactly total_price.
- margin = profit / revenue, 0 when revenue is 0.
"""

PERIOD_FORMATS = {
    "day": "%Y-%m-%d",
    "month": "%Y-%m",
}

TOP_PRODUCT_SORTS = ("quantity", "revenue", "profit")


def _parse_range(start, end) -> tuple[datetime | None, datetime | None]:
    try:
        start_dt = parse_range_bound(start)
        end_dt = parse_range_bound(end, end=True)
    except ValueError as exc:
        raise ValidationError("start and end must be YYYY-MM-DD or ISO-8601 datetimes") from exc
    if start_dt and end_dt and start_dt > end_dt:
        raise ValidationError("start must be before end")
    return start_dt, end_dt


def _line_query(start_dt, end_dt, *columns):
    query = db.session.query(
        SaleItem.total_price_cents,
        SaleItem.quantity,
        SaleItem.returned_quantity,
        SaleItem.historical_cost_price_cents,
        SaleItem.sale_id,
        *columns,
    ).join(Sale, Sale.id == SaleItem.sale_id).filter(Sale.is_returned.is_(False))

    if start_dt:
        query = query.filter(Sale.created_at >= start_dt)
    if end_dt:
        query = query.filter(Sale.created_at <= end_dt)
    return query


def _net_line(row) -> tuple[int, int, int]:
    """(net_quantity, net_revenue_cents, net_cost_cents) for one sale item row."""
    quantity = int(row.quantity)
    returned = int(row.returned_quantity or 0)
    net_quantity = quantity - returned
    total = int(row.total_price_cents)
    if returned:
        # Round half up in integer cents
        revenue = (total * net_quantity * 2 + quantity) // (2 * quantity)
    else:
        revenue = total
    cost = int(row.historical_cost_price_cents) * net_quantity
    return net_quantity, revenue, cost


def _new_bucket(**keys) -> dict:
    bucket = dict(keys)
    bucket.update(
        {
            "quantity_sold": 0,
            "revenue_cents": 0,
            "cost_cents": 0,
            "_sale_ids": set(),
        }
    )
    return bucket


def _add_line(bucket: dict, row) -> None:
    net_quantity, revenue, cost = _net_line(row)
    bucket["quantity_sold"] += net_quantity
    bucket["revenue_cents"] += revenue
    bucket["cost_cents"] += cost
    bucket["_sale_ids"].add(row.sale_id)


def _margin(profit_cents: int, revenue_cents: int) -> float:
    if revenue_cents == 0:
        return 0.0
    return round(profit_cents / revenue_cents, 4)


def _finish(bucket: dict) -> dict:
    sale_ids = bucket.pop("_sale_ids")
    bucket["sales_count"] = len(sale_ids)
    bucket["profit_cents"] = bucket["revenue_cents"] - bucket["cost_cents"]
    bucket["margin"] = _margin(bucket["profit_cents"], bucket["revenue_cents"])
    return bucket


def _range_echo(start_dt, end_dt) -> dict:
    return {
        "start": to_utc_z(start_dt) if start_dt else None,
        "end": to_utc_z(end_dt) if end_dt else None,
    }


def get_revenue_and_profit(start=None, end=None) -> dict:
    """
    Totals for non-returned sales created in [start, end].

    start/end: date (whole day, inclusive), ISO-8601 datetime, or None for
    an open bound.

    Returns:
        {start, end, revenue_cents, cost_cents, profit_cents, margin,
         sales_count, quantity_sold}
    """
    start_dt, end_dt = _parse_range(start, end)

    bucket = _new_bucket()
    for row in _line_query(start_dt, end_dt).all():
        _add_line(bucket, row)

    result = _range_echo(start_dt, end_dt)
    result.update(_finish(bucket))
    return result


def _grouped(start_dt, end_dt, key_columns: list, key_fn, label_fn) -> list[dict]:
    buckets: dict = {}
    for row in _line_query(start_dt, end_dt, *key_columns).all():
        key = key_fn(row)
        bucket = buckets.get(key)
        if bucket is None:
            bucket = buckets[key] = _new_bucket(**label_fn(row))
        _add_line(bucket, row)
    return [_finish(b) for b in buckets.values()]


def profit_by_product(start=None, end=None) -> dict:
    start_dt, end_dt = _parse_range(start, end)
    rows = _grouped(
        start_dt,
        end_dt,
        [SaleItem.product_id, SaleItem.product_name],
        key_fn=lambda r: r.product_id,
        label_fn=lambda r: {"product_id": r.product_id, "product_name": r.product_name},
    )
    rows.sort(key=lambda r: (-r["profit_cents"], r["product_id"]))
    result = _range_echo(start_dt, end_dt)
    result["rows"] = rows
    return result


def profit_by_category(start=None, end=None) -> dict:
    start_dt, end_dt = _parse_range(start, end)

    buckets: dict = {}
    query = (
        _line_query(
            start_dt,
            end_dt,
            Category.id.label("category_id"),
            Category.name.label("category_name"),
        )
        .outerjoin(Product, Product.id == SaleItem.product_id)
        .outerjoin(Category, Category.id == Product.category_id)
    )
    for row in query.all():
        bucket = buckets.get(row.category_id)
        if bucket is None:
            bucket = buckets[row.category_id] = _new_bucket(
                category_id=row.category_id,
                category_name=row.category_name or "Uncategorized",
            )
        _add_line(bucket, row)

    rows = [_finish(b) for b in buckets.values()]
    rows.sort(key=lambda r: (-r["profit_cents"], r["category_name"]))
    result = _range_echo(start_dt, end_dt)
    result["rows"] = rows
    return result


def profit_by_supplier(start=None, end=None) -> dict:
    start_dt, end_dt = _parse_range(start, end)

    buckets: dict = {}
    query = (
        _line_query(
            start_dt,
            end_dt,
            Supplier.id.label("supplier_id"),
            Supplier.company_name.label("company_name"),
        )
        .outerjoin(Product, Product.id == SaleItem.product_id)
        .outerjoin(Supplier, Supplier.id == Product.supplier_id)
    )
    for row in query.all():
        bucket = buckets.get(row.supplier_id)
        if bucket is None:
            bucket = buckets[row.supplier_id] = _new_bucket(
                supplier_id=row.supplier_id,
                company_name=row.company_name or "No supplier",
            )
        _add_line(bucket, row)

    rows = [_finish(b) for b in buckets.values()]
    rows.sort(key=lambda r: (-r["profit_cents"], r["company_name"]))
    result = _range_echo(start_dt, end_dt)
    result["rows"] = rows
    return result


def profit_by_period(start=None, end=None, group_by: str = "day") -> dict:
    """Profit per calendar day or month of Sale.created_at (UTC), oldest first."""
    fmt = PERIOD_FORMATS.get(group_by)
    if fmt is None:
        raise ValidationError("group_by must be day or month")

    start_dt, end_dt = _parse_range(start, end)
    rows = _grouped(
        start_dt,
        end_dt,
        [Sale.created_at],
        key_fn=lambda r: r.created_at.strftime(fmt),
        label_fn=lambda r: {"period": r.created_at.strftime(fmt)},
    )
    rows.sort(key=lambda r: r["period"])

    result = _range_echo(start_dt, end_dt)
    result["group_by"] = group_by
    result["rows"] = rows
    return result


def revenue_by_payment_method(start=None, end=None) -> dict:
    """Sale count and sale totals per payment method."""
    start_dt, end_dt = _parse_range(start, end)

    query = db.session.query(
        Sale.payment_method.label("payment_method"),
        func.count(Sale.id).label("sales_count"),
        func.coalesce(func.sum(Sale.total_amount_cents), 0).label("revenue_cents"),
    ).filter(Sale.is_returned.is_(False))
    if start_dt:
        query = query.filter(Sale.created_at >= start_dt)
    if end_dt:
        query = query.filter(Sale.created_at <= end_dt)

    rows = query.group_by(Sale.payment_method).order_by(Sale.payment_method.asc()).all()

    result = _range_echo(start_dt, end_dt)
    result["rows"] = [
        {
            "payment_method": row.payment_method,
            "sales_count": int(row.sales_count or 0),
            "revenue_cents": int(row.revenue_cents or 0),
        }
        for row in rows
    ]
    return result


def top_selling_products(start=None, end=None, limit: int = 10, sort_by: str = "quantity") -> dict:
    if sort_by not in TOP_PRODUCT_SORTS:
        raise ValidationError(f"sort_by must be one of: {', '.join(TOP_PRODUCT_SORTS)}")
    if limit is None or limit < 1:
        raise ValidationError("limit must be >= 1")

    report = profit_by_product(start, end)
    sort_key = {
        "quantity": "quantity_sold",
        "revenue": "revenue_cents",
        "profit": "profit_cents",
    }[sort_by]
    rows = sorted(report["rows"], key=lambda r: (-r[sort_key], r["product_id"]))

    report["sort_by"] = sort_by
    report["rows"] = rows[: min(limit, 100)]
    return report


def _zero_summary(start, end) -> dict:
    return {
        "start": start,
        "end": end,
        "revenue_cents": 0,
        "cost_cents": 0,
        "profit_cents": 0,
        "margin": 0.0,
        "sales_count": 0,
        "quantity_sold": 0,
        "low_stock_count": 0,
        "by_payment_method": [],
        "degraded": True,
    }


def get_summary(start=None, end=None) -> dict:
    """
    Dashboard figures.

    A database failure here is logged and reported as zeroed figures with
    degraded = True; write paths never do this.
    """
    _parse_range(start, end)

    try:
        totals = get_revenue_and_profit(start, end)
        payments = revenue_by_payment_method(start, end)
        low_stock_count = (
            db.session.query(func.count(Product.id))
            .filter(
                Product.is_deleted.is_(False),
                Product.stock_quantity <= Product.min_stock_threshold,
            )
            .scalar()
        )
    except SQLAlchemyError:
        db.session.rollback()
        current_app.logger.exception("Summary report failed; returning zeroed figures")
        return _zero_summary(start, end)

    totals["low_stock_count"] = int(low_stock_count or 0)
    totals["by_payment_method"] = payments["rows"]
    totals["degraded"] = False
    return totals
