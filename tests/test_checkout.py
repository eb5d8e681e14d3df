import asyncio
from sqlalchemy import func, select, update
from atelier.common.errors import InsufficientStock
from atelier.inventory import ledger
from atelier.orders import repository as orders_repo
from atelier.schema.full_schema import CartLine, Order, OrderLine, Product

API = "/api/v1"

ADDRESS = {"full_name": "Alice Petrova", "line1": "Tverskaya 1", "city": "Moscow", "postal_code": "125009"}


def _checkout_body(shipping_method="standard"):
    return {"shipping_address": ADDRESS, "shipping_method": shipping_method, "payment_method": "card"}


async def _fill_cart(client, headers, *lines):
    for variation_id, qty in lines:
        r = await client.post(f"{API}/cart", headers=headers, json={"variation_id": variation_id, "quantity": qty})
        assert r.status_code in (200, 201), r.text


async def test_checkout_creates_order_and_decrements_stock(ac_client, user_auth, catalog, stock_of, db_session):
    await _fill_cart(ac_client, user_auth.headers, (catalog.dress_v, 1), (catalog.scarf_v, 2))

    r = await ac_client.post(f"{API}/orders", headers=user_auth.headers, json=_checkout_body())
    assert r.status_code == 201, r.text
    order = r.json()["data"]

    subtotal = 250000 + 2 * 40000
    assert order["status"] == "pending"
    assert order["payment_status"] == "pending"
    assert order["subtotal"] == subtotal
    assert order["shipping_cost"] == 30000
    assert order["tax"] == subtotal * 20 // 100
    assert order["final_amount"] == subtotal + 30000 + subtotal * 20 // 100
    assert order["order_number"].startswith("ORD-")
    assert order["shipping_address"]["city"] == "Moscow"

    by_variation = {line["variation_id"]: line for line in order["lines"]}
    assert by_variation[catalog.dress_v]["quantity"] == 1
    assert by_variation[catalog.scarf_v]["unit_price"] == 40000
    assert by_variation[catalog.scarf_v]["line_total"] == 80000
    assert by_variation[catalog.scarf_v]["product_name"] == "Silk Scarf"

    assert await stock_of(catalog.dress_v) == 4
    assert await stock_of(catalog.scarf_v) == 8

    remaining = (await db_session.execute(select(func.count()).select_from(CartLine))).scalar_one()
    assert remaining == 0


async def test_free_standard_shipping_above_threshold(ac_client, user_auth, catalog):
    await _fill_cart(ac_client, user_auth.headers, (catalog.dress_v, 3))

    r = await ac_client.post(f"{API}/orders", headers=user_auth.headers, json=_checkout_body())
    assert r.status_code == 201
    assert r.json()["data"]["shipping_cost"] == 0

    await _fill_cart(ac_client, user_auth.headers, (catalog.scarf_v, 1))
    r = await ac_client.post(f"{API}/orders", headers=user_auth.headers, json=_checkout_body("express"))
    assert r.json()["data"]["shipping_cost"] == 50000


async def test_insufficient_stock_changes_nothing(ac_client, user_auth, admin_auth, catalog, stock_of, db_session):
    await _fill_cart(ac_client, user_auth.headers, (catalog.scarf_v, 1), (catalog.dress_v, 3))

    # stock sold elsewhere after the cart was filled
    r = await ac_client.patch(f"{API}/admin/variations/{catalog.dress_v}/stock", headers=admin_auth,
                              json={"delta": -4})
    assert r.status_code == 200
    assert r.json()["data"]["quantity"] == 1

    r = await ac_client.post(f"{API}/orders", headers=user_auth.headers, json=_checkout_body())
    assert r.status_code == 409
    err = r.json()["error"]
    assert err["code"] == "INSUFFICIENT_STOCK"
    assert err["details"]["context"]["variation_id"] == catalog.dress_v

    orders = (await db_session.execute(select(func.count()).select_from(Order))).scalar_one()
    order_lines = (await db_session.execute(select(func.count()).select_from(OrderLine))).scalar_one()
    assert orders == 0
    assert order_lines == 0
    assert await stock_of(catalog.dress_v) == 1
    assert await stock_of(catalog.scarf_v) == 10

    cart = (await ac_client.get(f"{API}/cart", headers=user_auth.headers)).json()["data"]
    assert cart["item_count"] == 4


async def test_empty_cart_cannot_be_checked_out(ac_client, user_auth):
    r = await ac_client.post(f"{API}/orders", headers=user_auth.headers, json=_checkout_body())
    assert r.status_code == 409
    assert r.json()["error"]["code"] == "EMPTY_CART"


async def test_anonymous_checkout_requires_login(ac_client, catalog):
    await ac_client.post(f"{API}/cart", json={"variation_id": catalog.scarf_v, "quantity": 1})

    r = await ac_client.post(f"{API}/orders", json=_checkout_body())
    assert r.status_code == 401
    assert r.json()["error"]["code"] == "NOT_AUTHENTICATED"


async def test_missing_payment_method_is_rejected(ac_client, user_auth, catalog):
    await _fill_cart(ac_client, user_auth.headers, (catalog.scarf_v, 1))

    r = await ac_client.post(f"{API}/orders", headers=user_auth.headers,
                             json={"shipping_address": ADDRESS})
    assert r.status_code == 400
    assert r.json()["error"]["code"] == "VALIDATION_ERROR"


async def test_order_keeps_captured_price(ac_client, user_auth, catalog, session_maker):
    await _fill_cart(ac_client, user_auth.headers, (catalog.scarf_v, 2))
    r = await ac_client.post(f"{API}/orders", headers=user_auth.headers, json=_checkout_body())
    order_id = r.json()["data"]["id"]

    async with session_maker() as s:
        await s.execute(update(Product).where(Product.id == catalog.scarf).values(price=99000))
        await s.commit()

    r = await ac_client.get(f"{API}/orders/{order_id}", headers=user_auth.headers)
    assert r.status_code == 200
    order = r.json()["data"]
    assert order["subtotal"] == 80000
    assert order["lines"][0]["unit_price"] == 40000


async def test_user_sees_only_own_orders(ac_client, user_auth, catalog, register_and_login, other_client):
    await _fill_cart(ac_client, user_auth.headers, (catalog.scarf_v, 1))
    await ac_client.post(f"{API}/orders", headers=user_auth.headers, json=_checkout_body())

    other_headers, _ = await register_and_login(other_client, "zoe@atelier.shop")

    mine = (await ac_client.get(f"{API}/orders", headers=user_auth.headers)).json()["data"]["items"]
    theirs = (await other_client.get(f"{API}/orders", headers=other_headers)).json()["data"]["items"]
    assert len(mine) == 1
    assert theirs == []


async def _order_counts(db_session):
    orders = (await db_session.execute(select(func.count()).select_from(Order))).scalar_one()
    order_lines = (await db_session.execute(select(func.count()).select_from(OrderLine))).scalar_one()
    return orders, order_lines


async def test_stock_below_total_held_still_sells_what_fits(ac_client, other_client, user_auth, admin_auth, catalog,
                                                           stock_of):
    r = await other_client.post(f"{API}/cart", json={"variation_id": catalog.dress_v, "quantity": 3})
    assert r.status_code == 201
    await _fill_cart(ac_client, user_auth.headers, (catalog.dress_v, 2))

    # 5 held across two carts, physical stock drops to 2
    r = await ac_client.patch(f"{API}/admin/variations/{catalog.dress_v}/stock", headers=admin_auth,
                              json={"delta": -3})
    assert r.json()["data"]["quantity"] == 2

    r = await ac_client.post(f"{API}/orders", headers=user_auth.headers, json=_checkout_body())
    assert r.status_code == 201, r.text
    assert await stock_of(catalog.dress_v) == 0

    # the anonymous hold of 3 no longer fits anything
    r = await other_client.get(f"{API}/cart/validate")
    assert r.json()["data"]["valid"] is False


async def test_failed_reservation_after_order_insert_rolls_everything_back(ac_client, user_auth, catalog, stock_of,
                                                                          db_session, monkeypatch):
    await _fill_cart(ac_client, user_auth.headers, (catalog.scarf_v, 1), (catalog.dress_v, 3))

    real_reserve = ledger.reserve
    calls = []

    async def second_reservation_fails(session, variation_id, qty):
        calls.append(variation_id)
        if len(calls) == 2:
            raise InsufficientStock(variation_id, qty, 0)
        await real_reserve(session, variation_id, qty)

    monkeypatch.setattr(ledger, "reserve", second_reservation_fails)

    r = await ac_client.post(f"{API}/orders", headers=user_auth.headers, json=_checkout_body())
    assert r.status_code == 409
    assert r.json()["error"]["code"] == "INSUFFICIENT_STOCK"
    assert len(calls) == 2

    # the order row and the first reservation are gone with the rest
    assert await _order_counts(db_session) == (0, 0)
    assert await stock_of(catalog.dress_v) == 5
    assert await stock_of(catalog.scarf_v) == 10

    cart = (await ac_client.get(f"{API}/cart", headers=user_auth.headers)).json()["data"]
    assert cart["item_count"] == 4


async def test_checkout_timeout_rolls_back(app, ac_client, user_auth, catalog, stock_of, db_session, monkeypatch):
    await _fill_cart(ac_client, user_auth.headers, (catalog.scarf_v, 2))
    app.state.settings = app.state.settings.model_copy(update={"CHECKOUT_TIMEOUT_SECONDS": 0.05})

    async def stalled_insert(session, order_values, lines):
        await asyncio.sleep(2)

    monkeypatch.setattr(orders_repo, "insert_order", stalled_insert)

    r = await ac_client.post(f"{API}/orders", headers=user_auth.headers, json=_checkout_body())
    assert r.status_code == 503
    err = r.json()["error"]
    assert err["code"] == "CHECKOUT_TIMEOUT"
    assert "rolled back" in err["details"]["message"]

    assert await _order_counts(db_session) == (0, 0)
    assert await stock_of(catalog.scarf_v) == 10
    cart = (await ac_client.get(f"{API}/cart", headers=user_auth.headers)).json()["data"]
    assert cart["item_count"] == 2
