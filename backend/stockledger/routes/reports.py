from __future__ import annotations

from flask import Blueprint, jsonify, request

from ..errors import LedgerError
from ..services import reporting_service


reports_bp = Blueprint("reports", __name__, url_prefix="/api/reports")


def _range_args() -> tuple[str | None, str | None]:
    return request.args.get("start"), request.args.get("end")


@reports_bp.get("/profit")
def profit_report():
    start, end = _range_args()
    try:
        report = reporting_service.get_revenue_and_profit(start, end)
        return jsonify(report), 200
    except LedgerError as exc:
        return jsonify(exc.to_dict()), exc.http_status


@reports_bp.get("/profit/by-product")
def profit_by_product_report():
    start, end = _range_args()
    try:
        report = reporting_service.profit_by_product(start, end)
        return jsonify(report), 200
    except LedgerError as exc:
        return jsonify(exc.to_dict()), exc.http_status


@reports_bp.get("/profit/by-category")
def profit_by_category_report():
    start, end = _range_args()
    try:
        report = reporting_service.profit_by_category(start, end)
        return jsonify(report), 200
    except LedgerError as exc:
        return jsonify(exc.to_dict()), exc.http_status


@reports_bp.get("/profit/by-supplier")
def profit_by_supplier_report():
    start, end = _range_args()
    try:
        report = reporting_service.profit_by_supplier(start, end)
        return jsonify(report), 200
    except LedgerError as exc:
        return jsonify(exc.to_dict()), exc.http_status


@reports_bp.get("/profit/by-period")
def profit_by_period_report():
    start, end = _range_args()
    group_by = request.args.get("group_by", "day")
    try:
        report = reporting_service.profit_by_period(start, end, group_by=group_by)
        return jsonify(report), 200
    except LedgerError as exc:
        return jsonify(exc.to_dict()), exc.http_status


@reports_bp.get("/revenue-by-payment")
def revenue_by_payment_report():
    start, end = _range_args()
    try:
        report = reporting_service.revenue_by_payment_method(start, end)
        return jsonify(report), 200
    except LedgerError as exc:
        return jsonify(exc.to_dict()), exc.http_status


@reports_bp.get("/top-products")
def top_products_report():
    start, end = _range_args()
    limit = request.args.get("limit", default=10, type=int)
    sort_by = request.args.get("sort_by", "quantity")
    try:
        report = reporting_service.top_selling_products(start, end, limit=limit, sort_by=sort_by)
        return jsonify(report), 200
    except LedgerError as exc:
        return jsonify(exc.to_dict()), exc.http_status


@reports_bp.get("/summary")
def summary_report():
    start, end = _range_args()
    try:
        report = reporting_service.get_summary(start, end)
        return jsonify(report), 200
    except LedgerError as exc:
        return jsonify(exc.to_dict()), exc.http_status
