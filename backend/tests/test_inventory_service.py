import pytest
from sqlalchemy import update

from stockledger.extensions import db
from stockledger.errors import InsufficientStock, NotFound, ValidationError
from stockledger.models import Product, StockAdjustment
from stockledger.services import inventory_service, ledger_service, products_service, sales_service


def test_purchase_adds_stock_and_ledger_row(db_session, product):
    updated = inventory_service.adjust_stock(product.id, 5, "purchase", reason="Delivery", reference="PO-7")

    assert updated.stock_quantity == 15
    rows = ledger_service.list_adjustments(product.id)
    assert len(rows) == 1
    assert rows[0].quantity_change == 5
    assert rows[0].adjustment_type == "purchase"
    assert rows[0].reference == "PO-7"
    assert rows[0].resulting_quantity == 15


def test_loss_cannot_drive_stock_negative(db_session, product):
    with pytest.raises(InsufficientStock) as excinfo:
        inventory_service.adjust_stock(product.id, -11, "loss")

    assert excinfo.value.details["available_quantity"] == 10
    assert db.session.get(Product, product.id).stock_quantity == 10
    assert db_session.query(StockAdjustment).count() == 0


@pytest.mark.parametrize("delta,adjustment_type", [
    (5, "loss"),
    (-5, "purchase"),
    (0, "correction"),
    (-1, "sale"),
    (1, "sale_return"),
    (1, "shrinkage"),
])
def test_adjustment_rules(db_session, product, delta, adjustment_type):
    with pytest.raises(ValidationError):
        inventory_service.adjust_stock(product.id, delta, adjustment_type)
    assert db.session.get(Product, product.id).stock_quantity == 10


def test_correction_respects_floor_unless_enabled(db_session, app, product, monkeypatch):
    with pytest.raises(InsufficientStock):
        inventory_service.adjust_stock(product.id, -12, "correction")

    monkeypatch.setitem(app.config, "ALLOW_NEGATIVE_CORRECTIONS", True)
    updated = inventory_service.adjust_stock(product.id, -12, "correction", reason="Recount")
    assert updated.stock_quantity == -2
    assert inventory_service.verify_product_stock(product.id)["consistent"]


def test_adjust_missing_or_deleted_product(db_session, product):
    with pytest.raises(NotFound):
        inventory_service.adjust_stock(999999, 1, "purchase")

    products_service.delete_product(product_id=product.id)
    with pytest.raises(NotFound):
        inventory_service.adjust_stock(product.id, 1, "purchase")


def test_ledger_completeness_across_operations(db_session, make_product, sell):
    a = make_product(stock=20)
    b = make_product(stock=3)

    inventory_service.adjust_stock(a.id, 7, "purchase")
    s1 = sell([(a.id, 4), (b.id, 3)])
    inventory_service.adjust_stock(a.id, -2, "loss")
    s2 = sell([(a.id, 6)])
    sales_service.process_return(s2.id, [{"sale_item_id": s2.items[0].id, "quantity": 1}])
    sales_service.cancel_sale(s1.id)
    with pytest.raises(InsufficientStock):
        sell([(b.id, 4)])

    for product_id in (a.id, b.id):
        product = db.session.get(Product, product_id)
        deltas = ledger_service.sum_quantity_change(product_id)
        assert product.stock_quantity == product.initial_stock_quantity + deltas
        assert product.stock_quantity >= 0

    assert db.session.get(Product, a.id).stock_quantity == 20 + 7 - 4 - 2 - 6 + 1 + 4
    assert all(r["consistent"] for r in inventory_service.verify_all_stock())


def test_verify_and_repair_drift(db_session, product, sell):
    sell([(product.id, 3)])

    # Simulate an out-of-band write to the counter
    db.session.execute(update(Product).where(Product.id == product.id).values(stock_quantity=99))
    db.session.commit()
    db.session.expire_all()

    report = inventory_service.verify_product_stock(product.id)
    assert report["consistent"] is False
    assert report["drift"] == 92
    assert report["ledger_quantity"] == 7

    result = inventory_service.repair_product_stock(product.id)
    assert result == {
        "product_id": product.id,
        "previous_quantity": 99,
        "stock_quantity": 7,
        "repaired": True,
    }
    assert inventory_service.verify_product_stock(product.id)["consistent"] is True
    # Repair never writes ledger rows
    assert len(ledger_service.list_adjustments(product.id)) == 1


def test_stock_summary(db_session, product):
    summary = inventory_service.get_stock_summary(product.id)
    assert summary["stock_quantity"] == 10
    assert summary["ledger_quantity"] == 10
    assert summary["inventory_value_cents"] == 5000
    assert summary["is_low_stock"] is False


def test_list_adjustments_filters_by_type(db_session, product, sell):
    inventory_service.adjust_stock(product.id, 2, "purchase")
    sell([(product.id, 1)])

    sales = ledger_service.list_adjustments(product.id, adjustment_type="sale")
    assert [r.quantity_change for r in sales] == [-1]
    assert len(ledger_service.list_adjustments(product.id)) == 2
