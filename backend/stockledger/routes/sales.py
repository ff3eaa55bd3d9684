# Overview: Flask API routes for sales operations; parses input and returns JSON responses.

# backend/stockledger/routes/sales.py
"""Sale recording, cancellation and returns."""

from flask import Blueprint, request, jsonify, current_app

from ..errors import LedgerError, ValidationError
from ..services import sales_service


sales_bp = Blueprint("sales", __name__, url_prefix="/api/sales")


@sales_bp.post("")
def create_sale_route():
    """
    Record a completed sale.

    Body: {receipt_number, items: [{product_id, quantity, ...}], payment_method?, ...}
    Everything except "items" is the sale header.
    """
    try:
        data = request.get_json(silent=True)
        if not isinstance(data, dict):
            raise ValidationError("Invalid JSON payload")

        header = dict(data)
        items = header.pop("items", None)

        sale = sales_service.create_sale(header, items)
        return jsonify({"sale": sale.to_dict(include_items=True)}), 201

    except LedgerError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to create sale")
        return jsonify({"error": "Internal server error"}), 500


@sales_bp.get("")
def list_sales_route():
    """
    Sales history.

    Query params: start, end (YYYY-MM-DD or ISO-8601), payment_method,
    q (receipt number search), include_returned (default true), page, per_page
    """
    try:
        result = sales_service.list_sales(
            start=request.args.get("start"),
            end=request.args.get("end"),
            payment_method=request.args.get("payment_method"),
            query=request.args.get("q"),
            include_returned=request.args.get("include_returned", "true").lower() == "true",
            page=request.args.get("page", default=1, type=int),
            per_page=request.args.get("per_page", default=20, type=int),
        )
        return jsonify(result), 200
    except LedgerError as e:
        return jsonify(e.to_dict()), e.http_status


@sales_bp.get("/<int:sale_id>")
def get_sale_route(sale_id: int):
    sale = sales_service.get_sale_with_items(sale_id)
    if sale is None:
        return jsonify({"error": "Sale not found", "code": "NotFound", "details": {"sale_id": sale_id}}), 404
    return jsonify({"sale": sale}), 200


@sales_bp.post("/<int:sale_id>/cancel")
def cancel_sale_route(sale_id: int):
    """Full reversal; restores every unit not already returned."""
    try:
        sale = sales_service.cancel_sale(sale_id)
        return jsonify({"sale": sale.to_dict(include_items=True)}), 200

    except LedgerError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to cancel sale")
        return jsonify({"error": "Internal server error"}), 500


@sales_bp.post("/<int:sale_id>/returns")
def return_sale_route(sale_id: int):
    """
    Partial return.

    Body: {items: [{sale_item_id, quantity}], reason?}
    """
    try:
        data = request.get_json(silent=True) or {}
        if not isinstance(data, dict):
            raise ValidationError("Invalid JSON payload")
        sale = sales_service.process_return(
            sale_id,
            data.get("items"),
            reason=data.get("reason"),
        )
        return jsonify({"sale": sale.to_dict(include_items=True)}), 200

    except LedgerError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to process return")
        return jsonify({"error": "Internal server error"}), 500
