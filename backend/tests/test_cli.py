"""Flask CLI commands: ledger audit exit codes and profit summary."""

from sqlalchemy import update

from stockledger.extensions import db
from stockledger.models import Product


def _force_drift(product_id, quantity):
    db.session.execute(update(Product).where(Product.id == product_id).values(stock_quantity=quantity))
    db.session.commit()
    db.session.expire_all()


def test_stock_verify_passes_when_consistent(app, db_session, product, sell):
    sell([(product.id, 2)])
    runner = app.test_cli_runner()

    result = runner.invoke(args=["stock", "verify"])

    assert result.exit_code == 0, result.output
    assert "1 product(s) checked, 0 with drift." in result.output


def test_stock_verify_exits_nonzero_on_drift_and_repair_fixes_it(app, db_session, product):
    _force_drift(product.id, 99)
    runner = app.test_cli_runner()

    result = runner.invoke(args=["stock", "verify", "--product-id", str(product.id)])
    assert result.exit_code == 1
    assert "DRIFT" in result.output

    result = runner.invoke(args=["stock", "repair", "--product-id", str(product.id), "--yes"])
    assert result.exit_code == 0, result.output
    assert f"PASS Product {product.id}: 99 -> 10" in result.output

    db.session.expire_all()
    assert db.session.get(Product, product.id).stock_quantity == 10

    result = runner.invoke(args=["stock", "verify"])
    assert result.exit_code == 0, result.output


def test_stock_verify_unknown_product_is_an_error(app, db_session):
    result = app.test_cli_runner().invoke(args=["stock", "verify", "--product-id", "424242"])

    assert result.exit_code == 1
    assert "DRIFT" not in result.output


def test_reports_profit_prints_totals(app, db_session, product, sell):
    sell([(product.id, 3)])

    result = app.test_cli_runner().invoke(args=["reports", "profit"])

    assert result.exit_code == 0, result.output
    assert "Revenue:  24.00" in result.output
    assert "Cost:     15.00" in result.output
    assert "Profit:   9.00" in result.output
    assert "Margin:   37.50%" in result.output
