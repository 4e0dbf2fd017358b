import pytest

from conftest import address, auth
from database import db, to_obj_id

CONTACT = {"phone": "+541198765432"}


@pytest.fixture
def checkout(client, customer, store):
    def _checkout(payment_method="cash", **extra):
        token, _ = customer
        body = {"store_id": store["id"], "delivery_address": address(), "contact_info": CONTACT, "payment_method": payment_method}
        body.update(extra)
        return client.post("/api/orders", json=body, headers=auth(token))
    return _checkout


@pytest.fixture
def placed_order(add_to_cart, checkout):
    assert add_to_cart().status_code == 200
    r = checkout()
    assert r.status_code == 201, r.text
    return r.json()


def stock_of(product):
    return db["product"].find_one({"_id": to_obj_id(product["id"])})["stock"]


def test_checkout_matches_cart_preview(client, customer, store, product, add_to_cart, checkout):
    token, _ = customer
    add_to_cart()
    preview = client.put(f"/api/cart/{store['id']}/delivery-address", json={"address": address()}, headers=auth(token)).json()

    r = checkout()
    assert r.status_code == 201, r.text
    order = r.json()
    assert order["status"] == "pending"
    assert order["order_number"].startswith("ORD")
    assert len(order["order_number"]) == 12
    assert order["pricing"]["total"] == preview["total"] == 35.19
    assert order["pricing"]["delivery_fee"] == 2.99
    assert order["payment_info"]["status"] == "pending"
    assert order["timing"]["estimated_preparation"] == 15
    assert order["timing"]["estimated_delivery"] == 23
    assert order["loyalty_points_earned"] == 0

    assert stock_of(product) == 3
    cart = client.get(f"/api/cart/{store['id']}", headers=auth(token)).json()
    assert cart["items"] == []
    store_doc = db["store"].find_one({"_id": to_obj_id(store["id"])})
    assert store_doc["total_orders"] == 1


def test_checkout_rejects_empty_cart_and_far_address(client, customer, store, add_to_cart, checkout):
    token, _ = customer
    client.get(f"/api/cart/{store['id']}", headers=auth(token))
    assert checkout().status_code == 400
    add_to_cart()
    r = checkout(delivery_address=address({"lat": -34.9011, "lng": -56.1645}))
    assert r.status_code == 400
    assert r.json()["detail"] == "Store does not deliver to this location"
    r = checkout(payment_method="digital_wallet")
    assert r.status_code == 400


def test_checkout_with_card_is_paid(add_to_cart, checkout):
    add_to_cart()
    order = checkout(payment_method="card").json()
    assert order["payment_info"]["status"] == "paid"


def test_lifecycle_to_delivery_awards_points(client, owner, driver, customer, placed_order):
    owner_token, _ = owner
    driver_token, driver_user = driver
    token, user = customer
    oid = placed_order["id"]

    r = client.put(f"/api/orders/{oid}/status", json={"status": "preparing"}, headers=auth(owner_token))
    assert r.status_code == 400

    r = client.put(f"/api/orders/{oid}/status", json={"status": "confirmed"}, headers=auth(token))
    assert r.status_code == 403

    for status in ("confirmed", "preparing", "ready"):
        r = client.put(f"/api/orders/{oid}/status", json={"status": status}, headers=auth(owner_token))
        assert r.status_code == 200, r.text
    assert r.json()["timing"]["prepared_at"] is not None

    r = client.put(f"/api/orders/{oid}/status", json={"status": "on_way"}, headers=auth(driver_token))
    assert r.status_code == 200
    assert r.json()["driver_id"] == driver_user["id"]
    r = client.put(f"/api/orders/{oid}/status", json={"status": "delivered"}, headers=auth(driver_token))
    assert r.status_code == 200
    assert r.json()["loyalty_points_earned"] == 3
    assert [h["status"] for h in r.json()["status_history"]] == ["pending", "confirmed", "preparing", "ready", "on_way", "delivered"]

    loyalty = client.get("/api/users/loyalty", headers=auth(token)).json()
    assert loyalty["loyalty_points"] == 3

    assert client.put(f"/api/orders/{oid}/cancel", json={}, headers=auth(token)).status_code == 400


def test_cancel_restores_stock_and_coupon(client, customer, store, product, add_to_cart, checkout, make_coupon):
    token, _ = customer
    coupon = make_coupon("SAVE10")
    add_to_cart()
    client.post(f"/api/cart/{store['id']}/coupon", json={"coupon_code": "SAVE10"}, headers=auth(token))
    order = checkout(payment_method="card").json()
    assert order["coupon"]["code"] == "SAVE10"
    assert order["pricing"]["discount"] == 2.8
    assert stock_of(product) == 3
    assert db["coupon"].find_one({"code": "SAVE10"})["usage_count"] == 1

    r = client.put(f"/api/orders/{order['id']}/cancel", json={"reason": "Changed my mind"}, headers=auth(token))
    assert r.status_code == 200, r.text
    cancelled = r.json()
    assert cancelled["status"] == "cancelled"
    assert cancelled["payment_info"]["status"] == "refunded"
    assert cancelled["refund_amount"] == order["pricing"]["total"]
    assert cancelled["timing"]["cancelled_at"] is not None

    assert stock_of(product) == 5
    coupon_doc = db["coupon"].find_one({"_id": to_obj_id(coupon["id"])})
    assert coupon_doc["usage_count"] == 0
    assert coupon_doc["used_by"] == []


def test_only_owner_or_admin_cancels(client, make_user, placed_order):
    other_token, _ = make_user("other@example.com")
    r = client.put(f"/api/orders/{placed_order['id']}/cancel", json={}, headers=auth(other_token))
    assert r.status_code == 403
    assert client.get(f"/api/orders/{placed_order['id']}", headers=auth(other_token)).status_code == 403


def test_order_listing_by_role(client, customer, owner, admin, placed_order):
    for token in (customer[0], owner[0], admin[0]):
        r = client.get("/api/orders", headers=auth(token))
        assert r.json()["total"] == 1
    r = client.get("/api/orders?status=delivered", headers=auth(customer[0]))
    assert r.json()["total"] == 0


def test_rate_delivered_order(client, customer, owner, admin, store, placed_order):
    token, _ = customer
    oid = placed_order["id"]
    assert client.post(f"/api/orders/{oid}/rate", json={"food": 5, "delivery": 4}, headers=auth(token)).status_code == 400

    for status in ("confirmed", "preparing", "ready", "on_way", "delivered"):
        client.put(f"/api/orders/{oid}/status", json={"status": status}, headers=auth(admin[0]))

    r = client.post(f"/api/orders/{oid}/rate", json={"food": 5, "delivery": 4, "comment": "Great"}, headers=auth(token))
    assert r.status_code == 200
    assert r.json()["rating"]["overall"] == 5
    assert client.post(f"/api/orders/{oid}/rate", json={"food": 1, "delivery": 1}, headers=auth(token)).status_code == 400

    store_doc = db["store"].find_one({"_id": to_obj_id(store["id"])})
    assert store_doc["rating"] == {"average": 5.0, "count": 1}


def walk_to_delivered(client, token, oid):
    for status in ("confirmed", "preparing", "ready", "on_way", "delivered"):
        r = client.put(f"/api/orders/{oid}/status", json={"status": status}, headers=auth(token))
        assert r.status_code == 200, r.text


def test_cancel_keeps_product_the_owner_took_off_the_menu(client, owner, customer, product, placed_order):
    r = client.put(f"/api/products/{product['id']}", json={"is_available": False}, headers=auth(owner[0]))
    assert r.status_code == 200, r.text

    r = client.put(f"/api/orders/{placed_order['id']}/cancel", json={}, headers=auth(customer[0]))
    assert r.status_code == 200, r.text
    doc = db["product"].find_one({"_id": to_obj_id(product["id"])})
    assert doc["stock"] == 5
    assert doc["is_available"] is False


def test_cancel_puts_sold_out_product_back_on_sale(client, customer, product, add_to_cart, checkout):
    assert add_to_cart(quantity=5).status_code == 200
    order = checkout().json()
    assert db["product"].find_one({"_id": to_obj_id(product["id"])})["is_available"] is False

    client.put(f"/api/orders/{order['id']}/cancel", json={}, headers=auth(customer[0]))
    doc = db["product"].find_one({"_id": to_obj_id(product["id"])})
    assert doc["stock"] == 5
    assert doc["is_available"] is True


def test_refund_delivered_order_takes_back_points_and_revenue(client, customer, owner, admin, store, add_to_cart, checkout):
    token, _ = customer
    add_to_cart()
    order = checkout(payment_method="card").json()
    walk_to_delivered(client, admin[0], order["id"])
    assert client.get("/api/users/loyalty", headers=auth(token)).json()["loyalty_points"] == 3

    r = client.put(f"/api/orders/{order['id']}/status", json={"status": "refunded"}, headers=auth(owner[0]))
    assert r.status_code == 403
    r = client.put(f"/api/orders/{order['id']}/status", json={"status": "refunded"}, headers=auth(admin[0]))
    assert r.status_code == 200, r.text
    refunded = r.json()
    assert refunded["status"] == "refunded"
    assert refunded["payment_info"]["status"] == "refunded"
    assert refunded["refund_amount"] == 35.19

    assert client.get("/api/users/loyalty", headers=auth(token)).json()["loyalty_points"] == 0
    store_doc = db["store"].find_one({"_id": to_obj_id(store["id"])})
    assert store_doc["total_orders"] == 0
    assert store_doc["total_revenue"] == pytest.approx(0)


def test_refund_of_cancelled_cash_order_records_no_payment(client, customer, admin, store, placed_order):
    oid = placed_order["id"]
    client.put(f"/api/orders/{oid}/cancel", json={}, headers=auth(customer[0]))

    r = client.put(f"/api/orders/{oid}/status", json={"status": "refunded"}, headers=auth(admin[0]))
    assert r.status_code == 200, r.text
    assert r.json()["payment_info"]["status"] == "pending"
    assert r.json()["refund_amount"] is None

    # cancel already reversed the store counters
    store_doc = db["store"].find_one({"_id": to_obj_id(store["id"])})
    assert store_doc["total_orders"] == 0
    assert store_doc["total_revenue"] == pytest.approx(0)


def test_dashboard_revenue_counts_delivered_orders_only(client, customer, admin, add_to_cart, checkout):
    add_to_cart()
    delivered = checkout().json()
    walk_to_delivered(client, admin[0], delivered["id"])
    add_to_cart()
    cancelled = checkout().json()
    client.put(f"/api/orders/{cancelled['id']}/cancel", json={}, headers=auth(customer[0]))

    r = client.get("/api/admin/dashboard", headers=auth(admin[0]))
    assert r.status_code == 200
    body = r.json()
    assert body["total_orders"] == 2
    assert body["total_revenue"] == 35.19
    assert body["orders_by_status"] == {"delivered": 1, "cancelled": 1}
    assert client.get("/api/admin/dashboard", headers=auth(customer[0])).status_code == 403
