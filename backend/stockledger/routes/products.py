# Overview: Flask API routes for the product catalog; parses input and returns JSON responses.

# backend/stockledger/routes/products.py
from flask import Blueprint, request, jsonify, current_app

from ..errors import LedgerError, NotFound, ValidationError
from ..models import Product
from ..services import products_service, inventory_service
from ..validation import (
    ModelValidationPolicy,
    validate_payload,
    enforce_rules_product,
)

PRODUCT_POLICY = ModelValidationPolicy(
    writable_fields={
        "name",
        "barcode",
        "description",
        "unit",
        "category_id",
        "supplier_id",
        "cost_price_cents",
        "selling_price_cents",
        "stock_quantity",
        "min_stock_threshold",
    },
    required_on_create={"name"},
)

PRODUCT_UPDATE_POLICY = ModelValidationPolicy(
    writable_fields=products_service.PRODUCT_MUTABLE_FIELDS,
)

PRICE_POLICY = ModelValidationPolicy(
    writable_fields={"cost_price_cents", "selling_price_cents"},
)

products_bp = Blueprint("products", __name__, url_prefix="/api/products")


@products_bp.get("")
def list_products():
    """
    List products.

    Query params:
    - include_deleted: bool (optional) - include soft-deleted products
    - page: int (optional) - page number (1-indexed). If omitted, returns all items.
    - per_page: int (optional) - items per page (default 20, max 100)
    """
    include_deleted = request.args.get("include_deleted", "false").lower() == "true"
    page = request.args.get("page", type=int)
    per_page = request.args.get("per_page", type=int)

    result = products_service.list_products(
        include_deleted=include_deleted,
        page=page,
        per_page=per_page,
    )
    return jsonify(result), 200


@products_bp.post("")
def create_product_route():
    """Create a product; stock_quantity is its opening count."""
    payload = request.get_json(silent=True) or {}

    try:
        patch = validate_payload(model=Product, payload=payload, policy=PRODUCT_POLICY, partial=False)
        enforce_rules_product(patch)
        created = products_service.create_product(patch=patch)
        return jsonify({"product": created.to_dict()}), 201
    except LedgerError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to create product")
        return jsonify({"error": "Internal server error"}), 500


@products_bp.get("/low-stock")
def low_stock_route():
    products = products_service.list_low_stock()
    return jsonify({"items": [p.to_dict() for p in products], "count": len(products)}), 200


@products_bp.get("/by-barcode/<string:barcode>")
def get_product_by_barcode_route(barcode: str):
    try:
        product = products_service.get_product_by_barcode(barcode)
    except LedgerError as e:
        return jsonify(e.to_dict()), e.http_status
    return jsonify({"product": product.to_dict()}), 200


@products_bp.get("/<int:product_id>")
def get_product_route(product_id: int):
    try:
        product = inventory_service.get_product(product_id)
    except NotFound as e:
        return jsonify(e.to_dict()), e.http_status
    return jsonify({"product": product.to_dict()}), 200


@products_bp.patch("/<int:product_id>")
def update_product_route(product_id: int):
    """Update descriptive fields. Prices and stock have their own endpoints."""
    payload = request.get_json(silent=True) or {}

    try:
        patch = validate_payload(model=Product, payload=payload, policy=PRODUCT_UPDATE_POLICY, partial=True)
        enforce_rules_product(patch)
        updated = products_service.update_product(product_id=product_id, patch=patch)
        return jsonify({"product": updated.to_dict()}), 200
    except LedgerError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to update product")
        return jsonify({"error": "Internal server error"}), 500


@products_bp.patch("/<int:product_id>/prices")
def update_prices_route(product_id: int):
    """
    Change current prices.

    Body: {cost_price_cents?, selling_price_cents?, reason?}
    Past sales keep the cost they captured.
    """
    try:
        payload = request.get_json(silent=True) or {}
        if not isinstance(payload, dict):
            raise ValidationError("Invalid JSON payload")
        reason = payload.pop("reason", None)
        patch = validate_payload(model=Product, payload=payload, policy=PRICE_POLICY, partial=True)
        enforce_rules_product(patch)
        product = products_service.update_product_prices(
            product_id=product_id,
            cost_price_cents=patch.get("cost_price_cents"),
            selling_price_cents=patch.get("selling_price_cents"),
            reason=reason,
        )
        return jsonify({"product": product.to_dict()}), 200
    except LedgerError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to update product prices")
        return jsonify({"error": "Internal server error"}), 500


@products_bp.get("/<int:product_id>/price-history")
def price_history_route(product_id: int):
    try:
        rows = products_service.get_price_history(product_id)
    except NotFound as e:
        return jsonify(e.to_dict()), e.http_status
    return jsonify({"items": [r.to_dict() for r in rows], "count": len(rows)}), 200


@products_bp.delete("/<int:product_id>")
def delete_product_route(product_id: int):
    """Soft-deletes products with sales or stock history; removes the rest."""
    try:
        result = products_service.delete_product(product_id=product_id)
        return jsonify(result), 200
    except LedgerError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to delete product")
        return jsonify({"error": "Internal server error"}), 500
