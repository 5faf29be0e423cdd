import pytest
from pymongo.errors import PyMongoError

import orders as orders_module
from errors import Conflict, EmptyCart, Forbidden, InvalidAddress, InvalidInput, InvalidState, NotFound


@pytest.fixture
def shopper(make_user, make_address):
    user_id = make_user()
    return user_id, make_address(user_id)


def fill_cart(carts, user_id, make_product):
    a = make_product("Malbec", price=10.0)
    b = make_product("Rioja", price=5.0)
    carts.add_item(user_id, a, 2)
    carts.add_item(user_id, b, 1)
    return a, b


def test_checkout_snapshots_cart_and_drains_it(db, carts, orders, shopper, make_product):
    user_id, address_id = shopper
    a, b = fill_cart(carts, user_id, make_product)

    order = orders.create_order(user_id, address_id)

    assert order["total"] == 25.0
    assert order["status"] == "pending"
    assert order["payment_status"] == "pending"
    assert order["shipping_address"]["id"] == address_id
    lines = {i["product_id"]: i for i in order["items"]}
    assert lines[a] == {"product_id": a, "product_name": "Malbec", "price": 10.0, "quantity": 2}
    assert lines[b]["product_name"] == "Rioja"
    assert lines[b]["quantity"] == 1

    cart = db["cart"].find_one({"user_id": user_id})
    assert cart["items"] == []
    assert cart["total"] == 0
    assert db["order"].count_documents({}) == 1


def test_order_lines_keep_checkout_price(db, carts, orders, shopper, make_product):
    user_id, address_id = shopper
    a, _ = fill_cart(carts, user_id, make_product)
    order = orders.create_order(user_id, address_id)

    db["product"].update_one({"_id": orders_module.to_object_id(a)}, {"$set": {"price": 99.0, "name": "Renamed"}})

    stored = orders.get_order(user_id, order["id"])
    line = next(i for i in stored["items"] if i["product_id"] == a)
    assert line["price"] == 10.0
    assert line["product_name"] == "Malbec"


def test_empty_cart_creates_no_order(db, orders, shopper):
    user_id, address_id = shopper
    with pytest.raises(EmptyCart):
        orders.create_order(user_id, address_id)
    assert db["order"].count_documents({}) == 0


def test_address_of_another_user_is_rejected(db, carts, orders, make_user, make_address, make_product):
    user_id = make_user()
    other_address = make_address(make_user("bob@example.com", "Bob"))
    fill_cart(carts, user_id, make_product)

    with pytest.raises(InvalidAddress):
        orders.create_order(user_id, other_address)
    with pytest.raises(InvalidAddress):
        orders.create_order(user_id, "garbage")
    with pytest.raises(InvalidInput):
        orders.create_order(user_id, None)

    assert db["order"].count_documents({}) == 0
    assert len(db["cart"].find_one({"user_id": user_id})["items"]) == 2


def test_second_checkout_finds_cart_empty(carts, orders, shopper, make_product):
    user_id, address_id = shopper
    fill_cart(carts, user_id, make_product)
    orders.create_order(user_id, address_id)
    with pytest.raises(EmptyCart):
        orders.create_order(user_id, address_id)


def test_failed_order_write_restores_cart(db, carts, orders, shopper, make_product, monkeypatch):
    user_id, address_id = shopper
    fill_cart(carts, user_id, make_product)

    def broken_insert(*args, **kwargs):
        raise PyMongoError("write failed")

    monkeypatch.setattr(orders_module, "create_document", broken_insert)
    with pytest.raises(PyMongoError):
        orders.create_order(user_id, address_id)

    cart = db["cart"].find_one({"user_id": user_id})
    assert len(cart["items"]) == 2
    assert cart["total"] == 25.0
    assert db["order"].count_documents({}) == 0


def test_checkout_retries_when_cart_changes(db, carts, orders, shopper, make_product):
    user_id, address_id = shopper
    fill_cart(carts, user_id, make_product)
    real_swap = carts.swap
    attempts = []

    def always_stale(cart, items, total):
        attempts.append(1)
        return None

    carts.swap = always_stale
    with pytest.raises(Conflict):
        orders.create_order(user_id, address_id)
    carts.swap = real_swap

    assert len(attempts) == orders_module.MAX_ATTEMPTS
    assert db["order"].count_documents({}) == 0


def test_checkout_with_deleted_product(db, carts, orders, shopper, make_product):
    user_id, address_id = shopper
    a, _ = fill_cart(carts, user_id, make_product)
    db["product"].delete_one({"_id": orders_module.to_object_id(a)})

    with pytest.raises(NotFound):
        orders.create_order(user_id, address_id)
    assert len(db["cart"].find_one({"user_id": user_id})["items"]) == 2


@pytest.mark.parametrize("status", ["pending", "processing"])
def test_cancel_allowed_states(db, carts, orders, shopper, make_product, status):
    user_id, address_id = shopper
    fill_cart(carts, user_id, make_product)
    order = orders.create_order(user_id, address_id)
    db["order"].update_one({"_id": orders_module.to_object_id(order["id"])}, {"$set": {"status": status}})

    assert orders.cancel_order(user_id, order["id"])["status"] == "cancelled"


@pytest.mark.parametrize("status", ["cancelled", "shipped", "delivered"])
def test_cancel_rejected_states(db, carts, orders, shopper, make_product, status):
    user_id, address_id = shopper
    fill_cart(carts, user_id, make_product)
    order = orders.create_order(user_id, address_id)
    db["order"].update_one({"_id": orders_module.to_object_id(order["id"])}, {"$set": {"status": status}})

    with pytest.raises(InvalidState):
        orders.cancel_order(user_id, order["id"])
    assert db["order"].find_one()["status"] == status


def test_cancel_ownership_and_existence(carts, orders, shopper, make_user, make_product):
    user_id, address_id = shopper
    fill_cart(carts, user_id, make_product)
    order = orders.create_order(user_id, address_id)
    intruder = make_user("mallory@example.com", "Mallory")

    with pytest.raises(Forbidden):
        orders.cancel_order(intruder, order["id"])
    with pytest.raises(NotFound):
        orders.cancel_order(user_id, "64b7f0c2e4b0a1a2b3c4d5e6")


def test_list_orders_paginates(carts, orders, shopper, make_product):
    user_id, address_id = shopper
    p = make_product(price=1.0, stock=100)
    for _ in range(3):
        carts.add_item(user_id, p, 1)
        orders.create_order(user_id, address_id)

    page = orders.list_orders(user_id, page=1, page_size=2)
    assert page["total"] == 3
    assert len(page["items"]) == 2
    assert page["hasMore"] is True
    assert orders.list_orders(user_id, page=2, page_size=2)["hasMore"] is False
    assert orders.list_orders(user_id, page="x", page_size=500)["pageSize"] == 100
    assert orders.list_orders(user_id, page=0, page_size=0)["pageSize"] == 10
    assert orders.list_orders(user_id, page=0, page_size="0")["page"] == 1


def test_admin_status_moves_forward_only(carts, orders, mailer, shopper, make_product):
    user_id, address_id = shopper
    fill_cart(carts, user_id, make_product)
    order = orders.create_order(user_id, address_id)

    shipped = orders.update_status(order["id"], "shipped", tracking_number="1Z999")
    assert shipped["status"] == "shipped"
    assert shipped["tracking_number"] == "1Z999"
    assert mailer.sent[-1]["to"] == "alice@example.com"
    assert "1Z999" in mailer.sent[-1]["html"]

    with pytest.raises(InvalidState):
        orders.update_status(order["id"], "processing")
    with pytest.raises(InvalidState):
        orders.update_status(order["id"], "cancelled")
    with pytest.raises(InvalidInput):
        orders.update_status(order["id"], "lost")
    assert orders.update_status(order["id"], "delivered")["status"] == "delivered"


def test_dashboard_counts_delivered_revenue(db, carts, orders, shopper, make_product):
    user_id, address_id = shopper
    fill_cart(carts, user_id, make_product)
    order = orders.create_order(user_id, address_id)
    orders.update_status(order["id"], "delivered")

    stats = orders_module.dashboard(db)
    assert stats == {"totalOrders": 1, "totalRevenue": 25.0, "totalProducts": 2, "totalUsers": 1}
