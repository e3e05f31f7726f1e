from __future__ import annotations

from fastapi.testclient import TestClient


def test_cart_is_created_lazily_and_empty(client: TestClient, make_user) -> None:
    user = make_user()

    r = client.get("/v1/cart", headers={"X-User-Id": user})

    assert r.status_code == 200
    data = r.json()["data"]
    assert data["items"] == []
    assert data["items_count"] == 0
    assert data["subtotal"] == 0


def test_adding_same_product_merges_lines(client: TestClient, make_user, make_product) -> None:
    user = make_user()
    pid = make_product(name="Pagne", price=15000, discount_price=12000, stock=5)
    headers = {"X-User-Id": user}

    client.post("/v1/cart/items", json={"product_id": pid, "quantity": 1}, headers=headers)
    r = client.post("/v1/cart/items", json={"product_id": pid, "quantity": 2}, headers=headers)

    assert r.status_code == 200
    data = r.json()["data"]
    assert len(data["items"]) == 1
    item = data["items"][0]
    assert item["quantity"] == 3
    assert item["unit_price"] == 12000
    assert item["line_total"] == 36000
    assert item["on_sale"] is True
    assert item["discount_percentage"] == 20
    assert data["subtotal"] == 36000
    assert r.json()["currency"] == "FCFA"


def test_add_beyond_stock_or_unknown_product(client: TestClient, make_user, make_product) -> None:
    user = make_user()
    pid = make_product(name="Sac", stock=2)
    headers = {"X-User-Id": user}

    r = client.post("/v1/cart/items", json={"product_id": pid, "quantity": 3}, headers=headers)
    assert r.status_code == 422
    assert r.json()["errors"]["quantity"] == [
        "Insufficient stock for product: Sac. Available stock: 2"
    ]

    r = client.post("/v1/cart/items", json={"product_id": 999, "quantity": 1}, headers=headers)
    assert r.status_code == 404

    r = client.post("/v1/cart/items", json={"product_id": pid, "quantity": 0}, headers=headers)
    assert r.status_code == 422
    assert "quantity" in r.json()["errors"]


def test_remove_item(client: TestClient, make_user, make_product) -> None:
    user = make_user()
    other = make_user("u-2")
    pid = make_product()
    added = client.post(
        "/v1/cart/items", json={"product_id": pid, "quantity": 1}, headers={"X-User-Id": user}
    ).json()["data"]
    item_id = added["items"][0]["id"]

    foreign = client.delete(f"/v1/cart/items/{item_id}", headers={"X-User-Id": other})
    assert foreign.status_code == 404

    r = client.delete(f"/v1/cart/items/{item_id}", headers={"X-User-Id": user})
    assert r.status_code == 200
    assert r.json()["data"]["items"] == []


def test_validate_reports_lines_over_stock_without_mutating(
    client: TestClient, db, make_user, make_product, stock_of
) -> None:
    from services.api.app.services import inventory

    user = make_user()
    pid = make_product(name="Huile", stock=4)
    headers = {"X-User-Id": user}
    client.post("/v1/cart/items", json={"product_id": pid, "quantity": 4}, headers=headers)

    ok = client.post("/v1/cart/validate", headers=headers).json()
    assert ok["success"] is True
    assert ok["data"] == {"valid": True, "issues": []}

    inventory.reserve(db, pid, 3)
    db.commit()

    r = client.post("/v1/cart/validate", headers=headers).json()
    assert r["success"] is False
    assert r["data"]["issues"] == [
        {"product_id": pid, "product_name": "Huile", "requested": 4, "available": 1}
    ]
    assert stock_of(pid) == 1
    cart = client.get("/v1/cart", headers=headers).json()["data"]
    assert cart["items"][0]["quantity"] == 4
