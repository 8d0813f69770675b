import mongomock
import pytest
from bson import ObjectId
from pymongo.errors import PyMongoError

import orders
from conftest import SHIPPING, auth, make_product, make_user
from database import ORDERS, PRODUCTS
from errors import InsufficientStock, Internal


def order_body(*items, **overrides):
    body = {
        "shipping_address": SHIPPING,
        "payment_method": "card",
        "items": list(items),
        "notes": "leave at the door",
    }
    body.update(overrides)
    return body


def stock_of(db, product_id):
    return db[PRODUCTS].find_one({"_id": ObjectId(product_id)})["stock"]


def test_create_order_prices_lines_and_takes_stock(client, db, customer):
    product_id = make_product(db, sku="R001", price=100000, stock=5, category="반지")

    res = client.post("/api/orders", json=order_body({"product_id": product_id, "quantity": 2}), headers=auth(customer))
    assert res.status_code == 201
    order = res.json()["data"]
    assert order["subtotal"] == 200000
    assert order["shipping_fee"] == 0
    assert order["discount"] == 0
    assert order["total_amount"] == 200000
    assert order["status"] == "pending"
    assert order["payment_status"] == "pending"
    assert order["status_text"] == "주문 대기"
    assert order["order_number"].startswith("ORD-")
    assert order["user_id"] == customer["id"]
    assert order["customer_email"] == customer["email"]
    assert order["customer_phone"] == SHIPPING["phone"]
    line = order["items"][0]
    assert line["sku"] == "R001"
    assert line["unit_price"] == 100000
    assert line["total_price"] == 200000
    assert stock_of(db, product_id) == 3


def test_option_adjustments_and_unknown_options(client, db, customer):
    product_id = make_product(
        db,
        price=50000,
        stock=10,
        options=[
            {"type": "size", "label": "Size", "values": [
                {"value": "9", "label": "9호", "price_adjustment": 0},
                {"value": "13", "label": "13호", "price_adjustment": 5000},
            ]},
            {"type": "color", "label": "Color", "values": [
                {"value": "rose", "label": "Rose gold", "price_adjustment": 2000},
            ]},
        ],
    )
    item = {
        "product_id": product_id,
        "quantity": 3,
        "selected_options": {"size": "13", "color": "rose", "engraving": "yes"},
    }
    res = client.post("/api/orders", json=order_body(item), headers=auth(customer))
    assert res.status_code == 201
    line = res.json()["data"]["items"][0]
    assert line["unit_price"] == 57000
    assert line["total_price"] == 171000
    assert line["selected_options"]["engraving"] == "yes"
    assert res.json()["data"]["total_amount"] == 171000


def test_unknown_option_value_adds_nothing(db, customer):
    product_id = make_product(db, price=1000, options=[
        {"type": "size", "label": "Size", "values": [{"value": "9", "price_adjustment": 500}]},
    ])
    product = db[PRODUCTS].find_one({"_id": ObjectId(product_id)})
    assert orders.unit_price(product, {"size": "99"}) == 1000
    assert orders.unit_price(product, {"size": "9"}) == 1500


def test_total_is_sum_of_lines(client, db, customer):
    ring = make_product(db, sku="R001", price=100000, stock=5)
    earring = make_product(db, sku="E001", price=39000, stock=5, category="귀걸이")
    res = client.post(
        "/api/orders",
        json=order_body({"product_id": ring, "quantity": 1}, {"product_id": earring, "quantity": 2}),
        headers=auth(customer),
    )
    assert res.status_code == 201
    assert res.json()["data"]["total_amount"] == 100000 + 2 * 39000


def test_insufficient_stock_changes_nothing(client, db, customer):
    ring = make_product(db, sku="R001", stock=5)
    earring = make_product(db, sku="E001", stock=1, category="귀걸이")
    res = client.post(
        "/api/orders",
        json=order_body({"product_id": ring, "quantity": 2}, {"product_id": earring, "quantity": 2}),
        headers=auth(customer),
    )
    assert res.status_code == 400
    assert "stock: 1" in res.json()["error"]
    assert stock_of(db, ring) == 5
    assert stock_of(db, earring) == 1
    assert db.count_documents(ORDERS) == 0


def test_competing_orders_cannot_oversell(client, db, customer):
    product_id = make_product(db, stock=3)
    other = make_user(db, email="other@example.com")
    first = client.post("/api/orders", json=order_body({"product_id": product_id, "quantity": 3}), headers=auth(customer))
    second = client.post("/api/orders", json=order_body({"product_id": product_id, "quantity": 3}), headers=auth(other))
    assert first.status_code == 201
    assert second.status_code == 400
    assert stock_of(db, product_id) == 0
    assert db.count_documents(ORDERS) == 1


def test_stock_taken_between_check_and_decrement(db, customer, monkeypatch):
    ring = make_product(db, sku="R001", stock=5)
    earring = make_product(db, sku="E001", stock=3, category="귀걸이")
    real_price_lines = orders._price_lines

    def racing(database, items):
        result = real_price_lines(database, items)
        # a concurrent order takes the earrings after the stock check passed
        database[PRODUCTS].update_one({"_id": ObjectId(earring)}, {"$inc": {"stock": -3}})
        return result

    monkeypatch.setattr(orders, "_price_lines", racing)
    with pytest.raises(InsufficientStock) as excinfo:
        orders.create_order(
            db, customer, dict(SHIPPING), "card",
            [{"product_id": ring, "quantity": 2}, {"product_id": earring, "quantity": 1}],
        )
    assert "stock: 0" in excinfo.value.message
    assert stock_of(db, ring) == 5
    assert stock_of(db, earring) == 0
    assert db.count_documents(ORDERS) == 0


def test_store_error_while_taking_stock_restores_earlier_lines(db, customer, monkeypatch):
    ring = make_product(db, sku="R001", stock=5)
    earring = make_product(db, sku="E001", stock=3, category="귀걸이")
    real_update = mongomock.Collection.find_one_and_update
    calls = []

    def flaky(self, *args, **kwargs):
        calls.append(1)
        if len(calls) == 2:
            raise PyMongoError("connection reset")
        return real_update(self, *args, **kwargs)

    monkeypatch.setattr(mongomock.Collection, "find_one_and_update", flaky)
    with pytest.raises(Internal):
        orders.create_order(
            db, customer, dict(SHIPPING), "card",
            [{"product_id": ring, "quantity": 2}, {"product_id": earring, "quantity": 1}],
        )
    assert stock_of(db, ring) == 5
    assert stock_of(db, earring) == 3
    assert db.count_documents(ORDERS) == 0


def test_create_order_validation(client, db, customer):
    product_id = make_product(db)
    item = {"product_id": product_id, "quantity": 1}
    headers = auth(customer)

    missing_phone = {k: v for k, v in SHIPPING.items() if k != "phone"}
    assert client.post("/api/orders", json=order_body(item, shipping_address=missing_phone), headers=headers).status_code == 400
    assert client.post("/api/orders", json=order_body(item, payment_method=None), headers=headers).status_code == 400
    assert client.post("/api/orders", json=order_body(item, payment_method="bitcoin"), headers=headers).status_code == 400
    assert client.post("/api/orders", json=order_body(), headers=headers).status_code == 400
    bad_qty = {"product_id": product_id, "quantity": 0}
    assert client.post("/api/orders", json=order_body(bad_qty), headers=headers).status_code == 400
    assert stock_of(db, product_id) == 5


def test_create_order_unknown_or_malformed_product(client, customer):
    headers = auth(customer)
    res = client.post("/api/orders", json=order_body({"product_id": "64b7f0c2a1b2c3d4e5f60718", "quantity": 1}), headers=headers)
    assert res.status_code == 404
    res = client.post("/api/orders", json=order_body({"product_id": "nope", "quantity": 1}), headers=headers)
    assert res.status_code == 400


def test_create_order_requires_login(client, db):
    product_id = make_product(db)
    res = client.post("/api/orders", json=order_body({"product_id": product_id, "quantity": 1}))
    assert res.status_code == 401


def test_line_items_are_snapshots(client, db, admin, customer):
    product_id = make_product(db, name="Classic Ring", price=100000)
    res = client.post("/api/orders", json=order_body({"product_id": product_id, "quantity": 1}), headers=auth(customer))
    order_id = res.json()["data"]["id"]

    client.put(f"/api/products/{product_id}", json={"name": "Renamed Ring", "price": 1}, headers=auth(admin))
    order = client.get(f"/api/orders/{order_id}", headers=auth(customer)).json()["data"]
    assert order["items"][0]["product_name"] == "Classic Ring"
    assert order["items"][0]["unit_price"] == 100000


def test_list_own_orders_newest_first(client, db, customer):
    product_id = make_product(db, stock=10)
    other = make_user(db, email="other@example.com")
    ids = []
    for _ in range(3):
        res = client.post("/api/orders", json=order_body({"product_id": product_id, "quantity": 1}), headers=auth(customer))
        ids.append(res.json()["data"]["id"])
    client.post("/api/orders", json=order_body({"product_id": product_id, "quantity": 1}), headers=auth(other))

    res = client.get("/api/orders", params={"limit": 2}, headers=auth(customer))
    body = res.json()
    assert body["total"] == 3
    assert body["pages"] == 2
    assert [o["id"] for o in body["data"]] == [ids[2], ids[1]]


def test_order_visibility(client, db, admin, customer):
    product_id = make_product(db)
    res = client.post("/api/orders", json=order_body({"product_id": product_id, "quantity": 1}), headers=auth(customer))
    order_id = res.json()["data"]["id"]
    stranger = make_user(db, email="stranger@example.com")

    assert client.get(f"/api/orders/{order_id}", headers=auth(customer)).status_code == 200
    assert client.get(f"/api/orders/{order_id}", headers=auth(admin)).status_code == 200
    res = client.get(f"/api/orders/{order_id}", headers=auth(stranger))
    assert res.status_code == 403
    assert res.json()["success"] is False
    assert client.get("/api/orders/64b7f0c2a1b2c3d4e5f60718", headers=auth(admin)).status_code == 404
    assert client.get("/api/orders/bad-id", headers=auth(admin)).status_code == 400


def test_shipping_then_delivery_dates(client, db, admin, customer):
    product_id = make_product(db)
    res = client.post("/api/orders", json=order_body({"product_id": product_id, "quantity": 1}), headers=auth(customer))
    order_id = res.json()["data"]["id"]

    res = client.put(
        f"/api/orders/{order_id}/status",
        json={"status": "shipped", "tracking_number": "CJ123456789"},
        headers=auth(admin),
    )
    assert res.status_code == 200
    shipped = res.json()["data"]
    assert shipped["status"] == "shipped"
    assert shipped["tracking_number"] == "CJ123456789"
    assert shipped["shipped_date"]

    res = client.put(f"/api/orders/{order_id}/status", json={"status": "delivered"}, headers=auth(admin))
    delivered = res.json()["data"]
    assert delivered["delivered_date"]
    assert delivered["shipped_date"] == shipped["shipped_date"]
    assert delivered["tracking_number"] == "CJ123456789"


def test_cancel_and_refund_stamps(client, db, admin, customer):
    product_id = make_product(db)
    res = client.post("/api/orders", json=order_body({"product_id": product_id, "quantity": 1}), headers=auth(customer))
    order_id = res.json()["data"]["id"]

    res = client.put(
        f"/api/orders/{order_id}/status",
        json={"status": "cancelled", "cancelled_reason": "changed my mind"},
        headers=auth(admin),
    )
    assert res.json()["data"]["cancelled_date"]
    assert res.json()["data"]["cancelled_reason"] == "changed my mind"

    res = client.put(f"/api/orders/{order_id}/status", json={"status": "refunded", "refund_amount": 100000}, headers=auth(admin))
    assert res.json()["data"]["refund_date"]
    assert res.json()["data"]["refund_amount"] == 100000


def test_status_accepts_any_transition(client, db, admin, customer):
    product_id = make_product(db)
    res = client.post("/api/orders", json=order_body({"product_id": product_id, "quantity": 1}), headers=auth(customer))
    order_id = res.json()["data"]["id"]
    client.put(f"/api/orders/{order_id}/status", json={"status": "delivered"}, headers=auth(admin))
    res = client.put(f"/api/orders/{order_id}/status", json={"status": "pending"}, headers=auth(admin))
    assert res.status_code == 200
    assert res.json()["data"]["status"] == "pending"


def test_status_update_requires_admin_and_valid_status(client, db, admin, customer):
    product_id = make_product(db)
    res = client.post("/api/orders", json=order_body({"product_id": product_id, "quantity": 1}), headers=auth(customer))
    order_id = res.json()["data"]["id"]
    assert client.put(f"/api/orders/{order_id}/status", json={"status": "shipped"}, headers=auth(customer)).status_code == 403
    assert client.put(f"/api/orders/{order_id}/status", json={"status": "lost"}, headers=auth(admin)).status_code == 400
    res = client.put("/api/orders/64b7f0c2a1b2c3d4e5f60718/status", json={"status": "shipped"}, headers=auth(admin))
    assert res.status_code == 404


def test_payment_completed_confirms_order(client, db, customer):
    product_id = make_product(db)
    res = client.post("/api/orders", json=order_body({"product_id": product_id, "quantity": 1}), headers=auth(customer))
    order_id = res.json()["data"]["id"]

    res = client.put(
        f"/api/orders/{order_id}/payment",
        json={"payment_status": "completed", "payment_id": "imp_123"},
        headers=auth(customer),
    )
    assert res.status_code == 200
    order = res.json()["data"]
    assert order["payment_status"] == "completed"
    assert order["status"] == "confirmed"
    assert order["payment_id"] == "imp_123"
    assert order["payment_date"]
    assert order["payment_status_text"] == "결제 완료"


def test_payment_failure_keeps_order_status(client, db, customer):
    product_id = make_product(db)
    res = client.post("/api/orders", json=order_body({"product_id": product_id, "quantity": 1}), headers=auth(customer))
    order_id = res.json()["data"]["id"]
    res = client.put(f"/api/orders/{order_id}/payment", json={"payment_status": "failed"}, headers=auth(customer))
    assert res.json()["data"]["payment_status"] == "failed"
    assert res.json()["data"]["status"] == "pending"
    assert res.json()["data"]["payment_date"] is None
