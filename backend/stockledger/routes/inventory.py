# backend/stockledger/routes/inventory.py
"""
Inventory routes.

Manual stock adjustments (purchase, loss, correction) and read access to the
stock ledger. Sale-driven adjustments are only ever written by the sales
endpoints.
"""
from flask import Blueprint, request, jsonify, current_app

from ..errors import LedgerError, NotFound
from ..models import StockAdjustment
from ..services import inventory_service, ledger_service
from ..validation import ModelValidationPolicy, validate_payload


inventory_bp = Blueprint("inventory", __name__, url_prefix="/api/inventory")

STOCK_ADJUST_POLICY = ModelValidationPolicy(
    writable_fields={"product_id", "quantity_change", "adjustment_type", "reason", "reference"},
    required_on_create={"product_id", "quantity_change", "adjustment_type"},
)


@inventory_bp.post("/adjust")
def adjust_stock_route():
    """
    Body: {product_id, quantity_change, adjustment_type, reason?, reference?}

    adjustment_type is one of purchase (> 0), loss (< 0), correction.
    """
    payload = request.get_json(silent=True) or {}

    try:
        patch = validate_payload(
            model=StockAdjustment,
            payload=payload,
            policy=STOCK_ADJUST_POLICY,
            partial=False,
        )
        product = inventory_service.adjust_stock(
            patch["product_id"],
            patch["quantity_change"],
            patch["adjustment_type"],
            reason=patch.get("reason"),
            reference=patch.get("reference"),
        )
        return jsonify({"product": product.to_dict()}), 200
    except LedgerError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to adjust stock")
        return jsonify({"error": "Internal server error"}), 500


@inventory_bp.get("/<int:product_id>/adjustments")
def list_adjustments_route(product_id: int):
    """
    Ledger rows for one product, newest first.

    Query params:
    - type: adjustment_type filter (optional)
    - limit: max rows (default 200, max 1000)
    """
    adjustment_type = request.args.get("type")
    limit = min(max(request.args.get("limit", default=200, type=int), 1), 1000)

    try:
        inventory_service.get_product(product_id, include_deleted=True)
    except NotFound as e:
        return jsonify(e.to_dict()), e.http_status

    rows = ledger_service.list_adjustments(product_id, adjustment_type=adjustment_type, limit=limit)
    return jsonify({
        "product_id": product_id,
        "items": [r.to_dict() for r in rows],
        "count": len(rows),
    }), 200


@inventory_bp.get("/<int:product_id>/summary")
def stock_summary_route(product_id: int):
    try:
        return jsonify(inventory_service.get_stock_summary(product_id)), 200
    except NotFound as e:
        return jsonify(e.to_dict()), e.http_status


@inventory_bp.get("/<int:product_id>/verify")
def verify_stock_route(product_id: int):
    """Compare stock_quantity with initial count + SUM(ledger deltas)."""
    try:
        return jsonify(inventory_service.verify_product_stock(product_id)), 200
    except NotFound as e:
        return jsonify(e.to_dict()), e.http_status
