from __future__ import annotations

import pytest
from fastapi.testclient import TestClient


def _count(model) -> int:
    from services.api.app.db.database import db_session
    from sqlalchemy import func, select

    session = db_session()
    try:
        return session.execute(select(func.count()).select_from(model)).scalar_one()
    finally:
        session.close()


def _add(client: TestClient, user_id: str, product_id: int, quantity: int) -> None:
    r = client.post(
        "/v1/cart/items",
        json={"product_id": product_id, "quantity": quantity},
        headers={"X-User-Id": user_id},
    )
    assert r.status_code == 200, r.text


def test_checkout_requires_authenticated_user(
    client: TestClient, checkout_payload: dict
) -> None:
    r = client.post("/v1/orders", json=checkout_payload)
    assert r.status_code == 401
    assert r.json() == {"success": False, "message": "Unauthenticated", "errors": {}}

    r = client.post("/v1/orders", json=checkout_payload, headers={"X-User-Id": "ghost"})
    assert r.status_code == 401


def test_checkout_prices_two_units_to_libreville(
    client: TestClient,
    checkout_payload: dict,
    make_user,
    make_product,
    stock_of,
    notifier,
) -> None:
    user = make_user()
    pid = make_product(name="P", price=1000, stock=5)
    _add(client, user, pid, 2)

    r = client.post("/v1/orders", json=checkout_payload, headers={"X-User-Id": user})
    assert r.status_code == 201, r.text

    body = r.json()
    assert body["success"] is True
    assert body["currency"] == "FCFA"
    order = body["data"]
    assert order["subtotal"] == 2000
    assert order["shipping_cost"] == 2000
    assert order["total_amount"] == 4000
    assert order["status"] == "pending"
    assert order["payment_status"] == "pending"
    assert order["order_number"].startswith("CMD-")
    assert order["items"] == [
        {
            "id": order["items"][0]["id"],
            "product_id": pid,
            "product_name": "P",
            "quantity": 2,
            "price": 1000,
            "subtotal": 2000,
        }
    ]

    assert stock_of(pid) == 3
    cart = client.get("/v1/cart", headers={"X-User-Id": user}).json()["data"]
    assert cart["items"] == []
    assert [event for _, event, _ in notifier.sent] == ["order_placed"]


def test_order_totals_add_up_across_lines(
    client: TestClient, make_user, make_product, place_order
) -> None:
    user = make_user()
    a = make_product(name="Pagne", price=15000, discount_price=12000, stock=10)
    b = make_product(name="Huile", price=6000, shipping_cost=1500, stock=10)

    order = place_order(user, [(a, 2), (b, 3)], shipping_city="Franceville")

    assert order["subtotal"] == sum(item["subtotal"] for item in order["items"])
    assert order["total_amount"] == order["subtotal"] + order["shipping_cost"]
    assert order["shipping_cost"] == 1500 + 7000
    for item in order["items"]:
        assert item["subtotal"] == item["quantity"] * item["price"]


def test_checkout_insufficient_stock_names_product(
    client: TestClient,
    checkout_payload: dict,
    db,
    make_user,
    make_product,
    stock_of,
) -> None:
    from services.api.app.db.models import CartItem, Order
    from services.api.app.services import inventory

    user = make_user()
    pid = make_product(name="P", price=1000, stock=3)
    _add(client, user, pid, 3)
    # Stock drops after the item went into the cart.
    inventory.reserve(db, pid, 1)
    db.commit()

    r = client.post("/v1/orders", json=checkout_payload, headers={"X-User-Id": user})
    assert r.status_code == 422
    body = r.json()
    assert body["success"] is False
    assert "P" in body["message"]
    assert body["data"]["available"] == 2
    assert body["data"]["product_id"] == pid

    assert _count(Order) == 0
    assert _count(CartItem) == 1
    assert stock_of(pid) == 2


def test_checkout_empty_cart(client: TestClient, checkout_payload: dict, make_user) -> None:
    user = make_user()

    r = client.post("/v1/orders", json=checkout_payload, headers={"X-User-Id": user})

    assert r.status_code == 422
    assert r.json()["message"] == "Your cart is empty"


@pytest.mark.parametrize(
    "override,field,message",
    [
        ({"shipping_city": "Paris"}, "shipping_city", "This city is not in our delivery area"),
        (
            {"phone": "12-34"},
            "phone",
            "Invalid phone number format (e.g. +24177123456 or 07123456)",
        ),
        ({"payment_method": "bitcoin"}, "payment_method", None),
        ({"shipping_address": ""}, "shipping_address", None),
    ],
)
def test_checkout_validation_errors_are_field_keyed(
    client: TestClient,
    checkout_payload: dict,
    make_user,
    override,
    field,
    message,
) -> None:
    user = make_user()

    r = client.post(
        "/v1/orders", json={**checkout_payload, **override}, headers={"X-User-Id": user}
    )

    assert r.status_code == 422
    body = r.json()
    assert body["success"] is False
    assert field in body["errors"]
    if message is not None:
        assert body["errors"][field] == [message]


def test_validation_runs_before_empty_cart_check(
    client: TestClient, checkout_payload: dict, make_user
) -> None:
    user = make_user()

    r = client.post(
        "/v1/orders",
        json={**checkout_payload, "shipping_city": "Nowhere"},
        headers={"X-User-Id": user},
    )

    assert r.status_code == 422
    assert "shipping_city" in r.json()["errors"]


def test_checkout_rolls_back_when_a_later_line_fails(
    client: TestClient,
    checkout_payload: dict,
    make_user,
    make_product,
    stock_of,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    from services.api.app.db.models import CartItem, Order, OrderItem
    from services.api.app.services import inventory
    from services.api.app.services.inventory import InsufficientStockError

    user = make_user()
    first = make_product(name="First", stock=5)
    second = make_product(name="Second", stock=5)
    _add(client, user, first, 1)
    _add(client, user, second, 1)

    real_reserve = inventory.reserve

    def reserve_then_lose_race(db, product_id, quantity):
        if product_id == second:
            raise InsufficientStockError(product_id, "Second", 0, quantity)
        return real_reserve(db, product_id, quantity)

    monkeypatch.setattr(inventory, "reserve", reserve_then_lose_race)

    r = client.post("/v1/orders", json=checkout_payload, headers={"X-User-Id": user})
    assert r.status_code == 422

    assert _count(Order) == 0
    assert _count(OrderItem) == 0
    assert _count(CartItem) == 2
    assert stock_of(first) == 5
    assert stock_of(second) == 5


def test_checkout_database_error_is_generic_500(
    client: TestClient,
    checkout_payload: dict,
    make_user,
    make_product,
    stock_of,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    from services.api.app.db.models import Order
    from services.api.app.services import checkout

    user = make_user()
    pid = make_product(stock=5)
    _add(client, user, pid, 1)

    def broken_log_event(*args, **kwargs):
        raise RuntimeError("disk full")

    monkeypatch.setattr(checkout, "log_event", broken_log_event)

    r = client.post("/v1/orders", json=checkout_payload, headers={"X-User-Id": user})
    assert r.status_code == 500
    assert r.json()["message"] == "Order creation failed"
    assert "disk full" not in r.text
    assert _count(Order) == 0
    assert stock_of(pid) == 5


def test_last_unit_sells_once(
    client: TestClient, checkout_payload: dict, make_user, make_product, stock_of
) -> None:
    from services.api.app.db.database import db_session
    from services.api.app.models.order import CheckoutRequest
    from services.api.app.services.checkout import place_order
    from services.api.app.services.inventory import InsufficientStockError

    pid = make_product(name="Last", stock=1)
    buyers = [make_user("u-a"), make_user("u-b")]
    for user in buyers:
        _add(client, user, pid, 1)

    request = CheckoutRequest(**checkout_payload)
    outcomes = []
    for user in buyers:
        session = db_session()
        try:
            outcomes.append(place_order(session, user, request).order_number)
        except InsufficientStockError as e:
            outcomes.append(e)
        finally:
            session.close()

    assert isinstance(outcomes[0], str)
    assert isinstance(outcomes[1], InsufficientStockError)
    assert outcomes[1].available == 0
    assert stock_of(pid) == 0


def test_stock_race_lost_after_availability_check_leaves_no_trace(
    client: TestClient,
    checkout_payload: dict,
    make_user,
    make_product,
    stock_of,
    monkeypatch,
) -> None:
    from services.api.app.db.database import db_session
    from services.api.app.db.models import CartItem, Order
    from services.api.app.models.order import CheckoutRequest
    from services.api.app.services import checkout
    from services.api.app.services.inventory import InsufficientStockError
    from sqlalchemy import select

    pid = make_product(name="Last", stock=1)
    winner, loser = make_user("u-a"), make_user("u-b")
    _add(client, winner, pid, 1)
    _add(client, loser, pid, 1)

    request = CheckoutRequest(**checkout_payload)
    real_check = checkout.check_availability
    won = []

    def check_then_lose_race(snapshot):
        real_check(snapshot)
        if snapshot.user_id == loser and not won:
            # The other buyer commits between this check and the reservation.
            other = db_session()
            try:
                won.append(checkout.place_order(other, winner, request).order_number)
            finally:
                other.close()

    monkeypatch.setattr(checkout, "check_availability", check_then_lose_race)

    session = db_session()
    try:
        with pytest.raises(InsufficientStockError) as excinfo:
            checkout.place_order(session, loser, request)
    finally:
        session.close()

    assert len(won) == 1
    assert excinfo.value.available == 0
    assert excinfo.value.requested == 1
    assert _count(Order) == 1
    assert stock_of(pid) == 0

    check = db_session()
    try:
        orders = check.execute(select(Order.user_id, Order.order_number)).all()
        assert [(o.user_id, o.order_number) for o in orders] == [(winner, won[0])]
        cart_lines = check.execute(select(CartItem)).scalars().all()
        assert [(c.product_id, c.quantity) for c in cart_lines] == [(pid, 1)]
        assert cart_lines[0].cart.user_id == loser
    finally:
        check.close()
