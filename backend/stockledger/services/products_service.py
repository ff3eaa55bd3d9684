# backend/stockledger/services/products_service.py
"""
Product catalog service.

The catalog is a collaborator of the stock ledger: it creates products (and
their initial stock count), edits prices, and retires products. It never
changes stock_quantity after creation; that is inventory_service's job.
"""
from __future__ import annotations
from flask import current_app
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import Category, Supplier, Product, ProductPriceHistory, SaleItem, StockAdjustment
from ..errors import ConflictError, NotFound, ValidationError
from .inventory_service import get_product
from stockledger.time_utils import utcnow

PRODUCT_MUTABLE_FIELDS = {
    "name",
    "barcode",
    "description",
    "unit",
    "category_id",
    "supplier_id",
    "min_stock_threshold",
}


def apply_product_patch(p: Product, patch: dict) -> None:
    for k, v in patch.items():
        if k not in PRODUCT_MUTABLE_FIELDS:
            continue
        setattr(p, k, v)


def list_products(
    *,
    include_deleted: bool = False,
    page: int | None = None,
    per_page: int | None = None,
) -> dict:
    """
    Product listing with optional pagination.

    Args:
        include_deleted: include soft-deleted products
        page: Page number (1-indexed). If None, returns all items.
        per_page: Items per page (default 20, max 100)
    """
    base_query = db.session.query(Product)
    if not include_deleted:
        base_query = base_query.filter(Product.is_deleted.is_(False))
    base_query = base_query.order_by(Product.name.asc(), Product.id.asc())

    if page is None:
        products = base_query.all()
        return {
            "items": [p.to_dict() for p in products],
            "count": len(products),
        }

    per_page = min(per_page or 20, 100)  # Default 20, max 100
    page = max(page, 1)

    total = base_query.count()
    total_pages = (total + per_page - 1) // per_page if total > 0 else 1

    products = base_query.offset((page - 1) * per_page).limit(per_page).all()

    return {
        "items": [p.to_dict() for p in products],
        "count": len(products),
        "pagination": {
            "page": page,
            "per_page": per_page,
            "total": total,
            "total_pages": total_pages,
            "has_next": page < total_pages,
            "has_prev": page > 1,
        },
    }


def create_product(*, patch: dict) -> Product:
    """
    Create product using a validated patch dict.

    stock_quantity in the patch becomes the initial count; it is recorded as
    initial_stock_quantity and is the base the stock ledger sums from.

    Raises:
        ValidationError: name missing
        ConflictError: name or barcode already exists
    """
    name = patch.get("name")
    if not name:
        raise ValidationError("name is required")

    existing = db.session.query(Product).filter(Product.name == name).first()
    if existing:
        raise ConflictError("Product name already exists.", details={"product_id": existing.id})

    initial = patch.get("stock_quantity") or 0

    p = Product(
        cost_price_cents=patch.get("cost_price_cents") or 0,
        selling_price_cents=patch.get("selling_price_cents") or 0,
        stock_quantity=initial,
        initial_stock_quantity=initial,
        min_stock_threshold=current_app.config.get("DEFAULT_MIN_STOCK_THRESHOLD", 5),
    )
    apply_product_patch(p, patch)

    db.session.add(p)
    try:
        db.session.commit()
    except IntegrityError as exc:
        db.session.rollback()
        raise ConflictError("Product violates a uniqueness constraint (name or barcode).") from exc

    current_app.logger.info("Created product %s (%s) with initial stock %s", p.id, p.name, initial)
    return p


def update_product(*, product_id: int, patch: dict) -> Product:
    """Update descriptive fields. Prices and stock have their own paths."""
    p = get_product(product_id)

    if "name" in patch and patch["name"] != p.name:
        clash = (
            db.session.query(Product)
            .filter(Product.name == patch["name"], Product.id != p.id)
            .first()
        )
        if clash:
            raise ConflictError("Product name already exists.")

    apply_product_patch(p, patch)
    try:
        db.session.commit()
    except IntegrityError as exc:
        db.session.rollback()
        raise ConflictError("Product violates a uniqueness constraint (name or barcode).") from exc
    return p


def update_product_prices(
    *,
    product_id: int,
    cost_price_cents: int | None = None,
    selling_price_cents: int | None = None,
    reason: str | None = None,
) -> Product:
    """
    Change current prices and record the change in price history.

    Sale items keep the cost they captured at sale time; changing
    cost_price_cents here only affects sales created afterwards.
    """
    if cost_price_cents is None and selling_price_cents is None:
        raise ValidationError("cost_price_cents or selling_price_cents is required")

    p = get_product(product_id)

    cost_changed = cost_price_cents is not None and cost_price_cents != p.cost_price_cents
    selling_changed = selling_price_cents is not None and selling_price_cents != p.selling_price_cents

    if not (cost_changed or selling_changed):
        return p

    if cost_changed:
        p.cost_price_cents = cost_price_cents
    if selling_changed:
        p.selling_price_cents = selling_price_cents

    if cost_changed and selling_changed:
        change_type = "both"
    elif selling_changed:
        change_type = "selling_price"
    else:
        change_type = "cost_price"

    db.session.add(ProductPriceHistory(
        product_id=p.id,
        selling_price_cents=p.selling_price_cents,
        cost_price_cents=p.cost_price_cents,
        change_type=change_type,
        reason=reason or "Price update",
    ))
    db.session.commit()

    current_app.logger.info(
        "Price update for product %s (%s): cost=%s selling=%s",
        p.id, change_type, p.cost_price_cents, p.selling_price_cents,
    )
    return p


def get_product_by_barcode(barcode: str) -> Product:
    """Scanner lookup. Retired products are not found."""
    code = (barcode or "").strip()
    if not code:
        raise ValidationError("barcode is required")
    p = Product.query.filter_by(barcode=code, is_deleted=False).first()
    if p is None:
        raise NotFound(f"No product with barcode {code}", details={"barcode": code})
    return p


def get_price_history(product_id: int) -> list[ProductPriceHistory]:
    get_product(product_id, include_deleted=True)
    return (
        ProductPriceHistory.query.filter_by(product_id=product_id)
        .order_by(ProductPriceHistory.created_at.desc(), ProductPriceHistory.id.desc())
        .all()
    )


def _has_history(product_id: int) -> bool:
    sold = db.session.query(SaleItem.id).filter(SaleItem.product_id == product_id).first()
    if sold is not None:
        return True
    adjusted = db.session.query(StockAdjustment.id).filter(StockAdjustment.product_id == product_id).first()
    return adjusted is not None


def delete_product(*, product_id: int) -> dict:
    """
    Retire a product.

    Products referenced by a sale item or a stock adjustment are soft-deleted
    so historical joins keep resolving. Products with no history are removed.

    Returns:
        {"product_id": id, "soft_deleted": bool}
    """
    p = get_product(product_id)

    if _has_history(product_id):
        p.is_deleted = True
        p.deleted_at = utcnow()
        soft = True
    else:
        db.session.query(ProductPriceHistory).filter_by(product_id=product_id).delete()
        db.session.delete(p)
        soft = False

    db.session.commit()
    current_app.logger.info("Deleted product %s (soft=%s)", product_id, soft)
    return {"product_id": product_id, "soft_deleted": soft}


def list_low_stock() -> list[Product]:
    return (
        db.session.query(Product)
        .filter(
            Product.is_deleted.is_(False),
            Product.stock_quantity <= Product.min_stock_threshold,
        )
        .order_by(Product.stock_quantity.asc(), Product.name.asc())
        .all()
    )


def create_category(name: str, description: str | None = None) -> Category:
    if db.session.query(Category).filter_by(name=name).first():
        raise ConflictError("Category already exists.")
    category = Category(name=name, description=description)
    db.session.add(category)
    db.session.commit()
    return category


def create_supplier(company_name: str, **fields) -> Supplier:
    if db.session.query(Supplier).filter_by(company_name=company_name).first():
        raise ConflictError("Supplier already exists.")
    supplier = Supplier(company_name=company_name, **fields)
    db.session.add(supplier)
    db.session.commit()
    return supplier
