"""HTTP surface: status codes and error payloads."""


def _create_product(client, **overrides):
    payload = {
        "name": "Widget",
        "stock_quantity": 10,
        "cost_price_cents": 500,
        "selling_price_cents": 800,
    }
    payload.update(overrides)
    response = client.post("/api/products", json=payload)
    assert response.status_code == 201, response.json
    return response.json["product"]


def _create_sale(client, product_id, quantity, receipt="R-1"):
    return client.post("/api/sales", json={
        "receipt_number": receipt,
        "items": [{"product_id": product_id, "quantity": quantity}],
    })


def test_health(client, db_session):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json["checks"]["database"]["status"] == "healthy"


def test_product_crud(client, db_session):
    product = _create_product(client)
    assert product["initial_stock_quantity"] == 10

    response = client.get(f"/api/products/{product['id']}")
    assert response.status_code == 200

    response = client.post("/api/products", json={"name": "Widget"})
    assert response.status_code == 409
    assert response.json["code"] == "ConflictError"

    response = client.post("/api/products", json={"name": "Gadget", "selling_price_cents": 12.5})
    assert response.status_code == 400
    assert response.json["code"] == "ValidationError"

    response = client.patch(f"/api/products/{product['id']}/prices", json={"cost_price_cents": 650, "reason": "Q3"})
    assert response.status_code == 200
    assert response.json["product"]["cost_price_cents"] == 650

    history = client.get(f"/api/products/{product['id']}/price-history").json
    assert history["count"] == 1

    response = client.delete(f"/api/products/{product['id']}")
    assert response.json == {"product_id": product["id"], "soft_deleted": False}
    assert client.get(f"/api/products/{product['id']}").status_code == 404


def test_low_stock_endpoint(client, db_session):
    _create_product(client, name="Scarce", stock_quantity=1)
    _create_product(client, name="Plenty", stock_quantity=100)

    response = client.get("/api/products/low-stock")
    assert [p["name"] for p in response.json["items"]] == ["Scarce"]


def test_sale_lifecycle(client, db_session):
    product = _create_product(client)

    response = _create_sale(client, product["id"], 3)
    assert response.status_code == 201
    sale = response.json["sale"]
    assert sale["items"][0]["historical_cost_price_cents"] == 500
    assert sale["total_amount_cents"] == 2400

    response = client.get(f"/api/sales/{sale['id']}")
    assert response.status_code == 200
    assert response.json["sale"]["receipt_number"] == "R-1"

    response = client.post(f"/api/sales/{sale['id']}/returns", json={
        "items": [{"sale_item_id": sale["items"][0]["id"], "quantity": 1}],
    })
    assert response.status_code == 200
    assert response.json["sale"]["items"][0]["returned_quantity"] == 1

    response = client.post(f"/api/sales/{sale['id']}/returns", json={
        "items": [{"sale_item_id": sale["items"][0]["id"], "quantity": 5}],
    })
    assert response.status_code == 409
    assert response.json["code"] == "OverReturn"

    response = client.post(f"/api/sales/{sale['id']}/cancel")
    assert response.status_code == 200
    assert response.json["sale"]["is_returned"] is True

    response = client.post(f"/api/sales/{sale['id']}/cancel")
    assert response.status_code == 409
    assert response.json["code"] == "AlreadyReversed"

    stock = client.get(f"/api/products/{product['id']}").json["product"]["stock_quantity"]
    assert stock == 10

    listing = client.get("/api/sales?q=R-").json
    assert listing["pagination"]["total"] == 1


def test_sale_errors(client, db_session):
    product = _create_product(client, stock_quantity=2)

    response = _create_sale(client, product["id"], 3)
    assert response.status_code == 409
    assert response.json["code"] == "InsufficientStock"
    assert response.json["details"]["available_quantity"] == 2

    assert _create_sale(client, product["id"], 1, receipt="R-DUP").status_code == 201
    response = _create_sale(client, product["id"], 1, receipt="R-DUP")
    assert response.status_code == 409
    assert response.json["code"] == "DuplicateReceipt"

    response = _create_sale(client, 424242, 1, receipt="R-X")
    assert response.status_code == 400
    assert response.json["code"] == "InvalidItem"

    response = client.post("/api/sales", data="not json", content_type="text/plain")
    assert response.status_code == 400

    assert client.get("/api/sales/999").status_code == 404
    assert client.post("/api/sales/999/cancel").status_code == 404


def test_inventory_endpoints(client, db_session):
    product = _create_product(client)

    response = client.post("/api/inventory/adjust", json={
        "product_id": product["id"],
        "quantity_change": 4,
        "adjustment_type": "purchase",
        "reference": "PO-1",
    })
    assert response.status_code == 200
    assert response.json["product"]["stock_quantity"] == 14

    response = client.post("/api/inventory/adjust", json={
        "product_id": product["id"],
        "quantity_change": -1,
        "adjustment_type": "sale",
    })
    assert response.status_code == 400

    response = client.post("/api/inventory/adjust", json={
        "product_id": product["id"],
        "quantity_change": -100,
        "adjustment_type": "loss",
    })
    assert response.status_code == 409

    rows = client.get(f"/api/inventory/{product['id']}/adjustments").json
    assert rows["count"] == 1
    assert rows["items"][0]["reference"] == "PO-1"

    verify = client.get(f"/api/inventory/{product['id']}/verify").json
    assert verify["consistent"] is True
    assert verify["ledger_quantity"] == 14

    assert client.get("/api/inventory/999/verify").status_code == 404


def test_report_endpoints(client, db_session):
    product = _create_product(client)
    _create_sale(client, product["id"], 3)

    profit = client.get("/api/reports/profit").json
    assert profit["revenue_cents"] == 2400
    assert profit["cost_cents"] == 1500
    assert profit["profit_cents"] == 900

    for path in (
        "/api/reports/profit/by-product",
        "/api/reports/profit/by-category",
        "/api/reports/profit/by-supplier",
        "/api/reports/profit/by-period?group_by=month",
        "/api/reports/revenue-by-payment",
        "/api/reports/top-products?limit=5",
    ):
        response = client.get(path)
        assert response.status_code == 200, path
        assert len(response.json["rows"]) == 1, path

    assert client.get("/api/reports/profit?start=bogus").status_code == 400
    assert client.get("/api/reports/profit/by-period?group_by=year").status_code == 400
    assert client.get("/api/reports/summary").json["degraded"] is False


def test_non_object_bodies_are_rejected(client, db_session):
    product = _create_product(client)
    sale = _create_sale(client, product["id"], 1).json["sale"]

    response = client.patch(f"/api/products/{product['id']}/prices", json=[{"cost_price_cents": 1}])
    assert response.status_code == 400
    assert response.json["code"] == "ValidationError"

    response = client.post(f"/api/sales/{sale['id']}/returns", json=[{"sale_item_id": 1, "quantity": 1}])
    assert response.status_code == 400
    assert response.json["code"] == "ValidationError"


def test_product_lookup_by_barcode(client, db_session):
    product = _create_product(client, barcode="9780201379624")

    response = client.get("/api/products/by-barcode/9780201379624")
    assert response.status_code == 200
    assert response.json["product"]["id"] == product["id"]

    response = client.get("/api/products/by-barcode/1111111111111")
    assert response.status_code == 404
    assert response.json["code"] == "NotFound"
