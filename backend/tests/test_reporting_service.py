import pytest
from sqlalchemy.exc import OperationalError

from stockledger.errors import ValidationError
from stockledger.services import products_service, reporting_service, sales_service


def _sale(receipt, created_at, lines, payment_method="cash"):
    return sales_service.create_sale(
        {"receipt_number": receipt, "created_at": created_at, "payment_method": payment_method},
        [{"product_id": pid, "quantity": qty} for pid, qty in lines],
    )


@pytest.fixture
def history(db_session, make_product):
    tools = products_service.create_category("Tools")
    acme = products_service.create_supplier("Acme Ltd")
    hammer = make_product(
        name="Hammer", stock=10, cost_cents=500, selling_cents=800,
        category_id=tools.id, supplier_id=acme.id,
    )
    nails = make_product(name="Nails", stock=20, cost_cents=10, selling_cents=25)

    _sale("S1", "2024-01-15T10:00:00Z", [(hammer.id, 2)], payment_method="card")
    _sale("S2", "2024-01-15T23:30:00Z", [(nails.id, 10)])
    _sale("S3", "2024-02-03T12:00:00Z", [(hammer.id, 1), (nails.id, 4)])
    s4 = _sale("S4", "2024-02-04T09:00:00Z", [(hammer.id, 3)])
    sales_service.cancel_sale(s4.id)

    return {"hammer": hammer, "nails": nails}


def test_totals_exclude_returned_sales(history):
    report = reporting_service.get_revenue_and_profit()

    assert report["revenue_cents"] == 2750
    assert report["cost_cents"] == 1640
    assert report["profit_cents"] == 1110
    assert report["margin"] == pytest.approx(0.4036)
    assert report["sales_count"] == 3
    assert report["quantity_sold"] == 17


def test_date_only_bounds_cover_whole_day(history):
    report = reporting_service.get_revenue_and_profit("2024-01-15", "2024-01-15")

    assert report["sales_count"] == 2
    assert report["revenue_cents"] == 1850
    assert report["cost_cents"] == 1100
    assert report["start"] == "2024-01-15T00:00:00Z"


def test_datetime_bounds(history):
    report = reporting_service.get_revenue_and_profit("2024-01-15T12:00:00Z", "2024-02-03T12:00:00Z")
    assert report["sales_count"] == 2
    assert report["revenue_cents"] == 250 + 900


def test_empty_range_has_zero_margin(history):
    report = reporting_service.get_revenue_and_profit("2023-01-01", "2023-12-31")
    assert report["revenue_cents"] == 0
    assert report["margin"] == 0.0


def test_cost_change_does_not_rewrite_history(history):
    hammer = history["hammer"]
    before = reporting_service.profit_by_product()

    products_service.update_product_prices(product_id=hammer.id, cost_price_cents=9999)

    after = reporting_service.profit_by_product()
    assert after["rows"] == before["rows"]


def test_profit_by_product(history):
    rows = reporting_service.profit_by_product()["rows"]

    assert [r["product_name"] for r in rows] == ["Hammer", "Nails"]
    assert rows[0]["revenue_cents"] == 2400
    assert rows[0]["cost_cents"] == 1500
    assert rows[0]["profit_cents"] == 900
    assert rows[0]["quantity_sold"] == 3
    assert rows[1]["profit_cents"] == 210
    assert rows[1]["sales_count"] == 2


def test_profit_by_category(history):
    rows = reporting_service.profit_by_category()["rows"]
    assert [(r["category_name"], r["profit_cents"]) for r in rows] == [
        ("Tools", 900),
        ("Uncategorized", 210),
    ]


def test_profit_by_supplier(history):
    rows = reporting_service.profit_by_supplier()["rows"]
    assert [(r["company_name"], r["profit_cents"]) for r in rows] == [
        ("Acme Ltd", 900),
        ("No supplier", 210),
    ]


def test_profit_by_period(history):
    monthly = reporting_service.profit_by_period(group_by="month")["rows"]
    assert [(r["period"], r["revenue_cents"], r["cost_cents"]) for r in monthly] == [
        ("2024-01", 1850, 1100),
        ("2024-02", 900, 540),
    ]

    daily = reporting_service.profit_by_period(group_by="day")["rows"]
    assert [r["period"] for r in daily] == ["2024-01-15", "2024-02-03"]

    with pytest.raises(ValidationError):
        reporting_service.profit_by_period(group_by="week")


def test_revenue_by_payment_method(history):
    rows = reporting_service.revenue_by_payment_method()["rows"]
    assert rows == [
        {"payment_method": "card", "sales_count": 1, "revenue_cents": 1600},
        {"payment_method": "cash", "sales_count": 2, "revenue_cents": 1150},
    ]


def test_top_selling_products(history):
    by_quantity = reporting_service.top_selling_products()
    assert [r["product_name"] for r in by_quantity["rows"]] == ["Nails", "Hammer"]

    by_revenue = reporting_service.top_selling_products(limit=1, sort_by="revenue")
    assert [r["product_name"] for r in by_revenue["rows"]] == ["Hammer"]

    with pytest.raises(ValidationError):
        reporting_service.top_selling_products(sort_by="margin")


@pytest.mark.parametrize("start,end", [
    ("yesterday", None),
    ("2024-02-01", "2024-01-01"),
])
def test_bad_ranges(db_session, start, end):
    with pytest.raises(ValidationError):
        reporting_service.get_revenue_and_profit(start, end)


def test_summary(history):
    summary = reporting_service.get_summary()
    assert summary["degraded"] is False
    assert summary["revenue_cents"] == 2750
    assert len(summary["by_payment_method"]) == 2


def test_summary_degrades_on_store_failure(history, monkeypatch):
    def broken(*args, **kwargs):
        raise OperationalError("SELECT", {}, Exception("disk I/O error"))

    monkeypatch.setattr(reporting_service, "revenue_by_payment_method", broken)

    summary = reporting_service.get_summary()
    assert summary["degraded"] is True
    assert summary["revenue_cents"] == 0
    assert summary["by_payment_method"] == []
