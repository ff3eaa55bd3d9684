import pytest

from stockledger.extensions import db
from stockledger.errors import AlreadyReversed, InvalidItem, NotFound, OverReturn, ValidationError
from stockledger.models import Product, Sale, SaleItem
from stockledger.services import inventory_service, ledger_service, reporting_service, sales_service


def _stock(product_id):
    return db.session.get(Product, product_id).stock_quantity


@pytest.fixture
def two_line_sale(db_session, make_product, sell):
    a = make_product(name="Apple", stock=10, cost_cents=500, selling_cents=800)
    b = make_product(name="Bread", stock=10, cost_cents=100, selling_cents=300)
    sale = sell([(a.id, 5), (b.id, 2)], receipt_number="R-RET")
    line_a, line_b = sale.items
    return sale, a, b, line_a, line_b


def test_partial_return_restores_stock(two_line_sale):
    sale, a, b, line_a, line_b = two_line_sale

    sales_service.process_return(sale.id, [{"sale_item_id": line_a.id, "quantity": 2}], reason="Bruised")

    assert _stock(a.id) == 7
    assert _stock(b.id) == 8
    item = db.session.get(SaleItem, line_a.id)
    assert item.returned_quantity == 2
    assert item.remaining_quantity == 3

    sale = db.session.get(Sale, sale.id)
    assert sale.is_returned is False
    assert "RETURNED: " in sale.notes
    assert "(2 units)" in sale.notes

    rows = ledger_service.list_adjustments_for_reference("RETURN-R-RET")
    assert len(rows) == 1
    assert rows[0].adjustment_type == "sale_return"
    assert rows[0].quantity_change == 2
    assert rows[0].reason == "Bruised"
    assert rows[0].sale_item_id == line_a.id


def test_repeated_lines_are_summed(two_line_sale):
    sale, a, _, line_a, _ = two_line_sale

    sales_service.process_return(sale.id, [
        {"sale_item_id": line_a.id, "quantity": 1},
        {"sale_item_id": line_a.id, "quantity": 2},
    ])
    assert db.session.get(SaleItem, line_a.id).returned_quantity == 3
    assert _stock(a.id) == 8


def test_over_return_rejected_without_side_effects(two_line_sale):
    sale, a, b, line_a, line_b = two_line_sale
    sales_service.process_return(sale.id, [{"sale_item_id": line_a.id, "quantity": 3}])

    with pytest.raises(OverReturn) as excinfo:
        sales_service.process_return(sale.id, [
            {"sale_item_id": line_b.id, "quantity": 1},
            {"sale_item_id": line_a.id, "quantity": 3},
        ])

    assert excinfo.value.details["available_quantity"] == 2
    assert _stock(a.id) == 8
    assert _stock(b.id) == 8
    assert db.session.get(SaleItem, line_b.id).returned_quantity == 0


def test_item_from_another_sale_rejected(two_line_sale, sell):
    sale, a, _, _, _ = two_line_sale
    other = sell([(a.id, 1)])

    with pytest.raises(InvalidItem):
        sales_service.process_return(sale.id, [{"sale_item_id": other.items[0].id, "quantity": 1}])


@pytest.mark.parametrize("items", [
    [],
    None,
    [{"sale_item_id": 1, "quantity": 0}],
    [{"sale_item_id": 1, "quantity": "2"}],
    ["nope"],
])
def test_malformed_return_lines(two_line_sale, items):
    sale = two_line_sale[0]
    with pytest.raises(ValidationError):
        sales_service.process_return(sale.id, items)


def test_full_return_makes_sale_terminal(two_line_sale):
    sale, a, b, line_a, line_b = two_line_sale

    sales_service.process_return(sale.id, [{"sale_item_id": line_a.id, "quantity": 5}])
    assert db.session.get(Sale, sale.id).is_returned is False

    sales_service.process_return(sale.id, [{"sale_item_id": line_b.id, "quantity": 2}])
    sale_row = db.session.get(Sale, sale.id)
    assert sale_row.is_returned is True
    assert sale_row.returned_at is not None
    assert _stock(a.id) == 10
    assert _stock(b.id) == 10

    with pytest.raises(AlreadyReversed):
        sales_service.process_return(sale.id, [{"sale_item_id": line_a.id, "quantity": 1}])
    with pytest.raises(AlreadyReversed):
        sales_service.cancel_sale(sale.id)


def test_cancel_after_partial_return_restores_only_remaining(two_line_sale):
    sale, a, b, line_a, _ = two_line_sale
    sales_service.process_return(sale.id, [{"sale_item_id": line_a.id, "quantity": 2}])

    sales_service.cancel_sale(sale.id)

    assert _stock(a.id) == 10
    assert _stock(b.id) == 10
    assert inventory_service.verify_product_stock(a.id)["consistent"]


def test_return_on_missing_sale(db_session):
    with pytest.raises(NotFound):
        sales_service.process_return(31337, [{"sale_item_id": 1, "quantity": 1}])


def test_profit_nets_out_partial_returns(two_line_sale):
    sale, _, _, line_a, _ = two_line_sale
    before = reporting_service.get_revenue_and_profit()
    assert before["revenue_cents"] == 5 * 800 + 2 * 300
    assert before["cost_cents"] == 5 * 500 + 2 * 100

    sales_service.process_return(sale.id, [{"sale_item_id": line_a.id, "quantity": 2}])

    after = reporting_service.get_revenue_and_profit()
    assert after["revenue_cents"] == 3 * 800 + 2 * 300
    assert after["cost_cents"] == 3 * 500 + 2 * 100
    assert after["quantity_sold"] == 5
