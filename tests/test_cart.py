from conftest import NEARBY, address, auth


def test_add_item_prices_from_catalog(client, customer, store, add_to_cart):
    r = add_to_cart()
    assert r.status_code == 200, r.text
    cart = r.json()
    assert len(cart["items"]) == 1
    assert cart["items"][0]["price"] == 14.0
    assert cart["subtotal"] == 28.0
    assert cart["tax"] == 2.8
    assert cart["service_fee"] == 1.4
    assert cart["delivery_fee"] == 2.5
    assert cart["total"] == 34.7


def test_same_line_merges_and_stock_is_enforced(client, customer, store, add_to_cart):
    assert add_to_cart(quantity=2).status_code == 200
    r = add_to_cart(quantity=2)
    assert len(r.json()["items"]) == 1
    assert r.json()["items"][0]["quantity"] == 4
    r = add_to_cart(quantity=1, size="Small", addons=())
    assert r.status_code == 200
    r = add_to_cart(quantity=1, size="Small", addons=())
    assert r.status_code == 400
    assert "Insufficient stock" in r.json()["detail"]


def test_missing_required_option_rejected(client, customer, store, product):
    token, _ = customer
    r = client.post(f"/api/cart/{store['id']}/items", json={"product_id": product["id"], "quantity": 1}, headers=auth(token))
    assert r.status_code == 400
    assert "Size" in r.json()["detail"]


def test_update_and_remove_lines(client, customer, store, add_to_cart):
    token, _ = customer
    item_id = add_to_cart().json()["items"][0]["id"]
    r = client.put(f"/api/cart/{store['id']}/items/{item_id}", json={"quantity": 1}, headers=auth(token))
    assert r.json()["subtotal"] == 14.0
    r = client.put(f"/api/cart/{store['id']}/items/unknown", json={"quantity": 1}, headers=auth(token))
    assert r.status_code == 404
    r = client.put(f"/api/cart/{store['id']}/items/{item_id}", json={"quantity": 0}, headers=auth(token))
    assert r.json()["items"] == []
    assert r.json()["total"] == 2.5


def test_delivery_address_switches_to_distance_fee(client, customer, store, add_to_cart):
    token, _ = customer
    add_to_cart()
    r = client.put(f"/api/cart/{store['id']}/delivery-address", json={"address": address(NEARBY)}, headers=auth(token))
    assert r.status_code == 200, r.text
    assert r.json()["delivery_fee"] == 2.99
    assert r.json()["total"] == 35.19

    far = address({"lat": -34.9011, "lng": -56.1645})
    r = client.put(f"/api/cart/{store['id']}/delivery-address", json={"address": far}, headers=auth(token))
    assert r.status_code == 400


def test_free_delivery_threshold(client, owner, store, product, add_to_cart):
    owner_token, _ = owner
    r = client.patch(f"/api/products/{product['id']}/stock", json={"stock": None}, headers=auth(owner_token))
    assert r.status_code == 200
    r = add_to_cart(quantity=8)
    assert r.json()["subtotal"] == 112.0
    assert r.json()["delivery_fee"] == 0.0


def test_coupon_applied_and_dropped(client, customer, store, add_to_cart, make_coupon):
    token, _ = customer
    make_coupon("SAVE10", min_order_amount=20)
    add_to_cart()
    r = client.post(f"/api/cart/{store['id']}/coupon", json={"coupon_code": "save10"}, headers=auth(token))
    assert r.status_code == 200, r.text
    assert r.json()["discount"] == 2.8
    assert r.json()["applied_coupon"]["code"] == "SAVE10"
    assert r.json()["total"] == 31.9

    item_id = r.json()["items"][0]["id"]
    r = client.put(f"/api/cart/{store['id']}/items/{item_id}", json={"quantity": 1}, headers=auth(token))
    assert r.json()["applied_coupon"] is None
    assert r.json()["discount"] == 0.0
    assert "Minimum order amount" in r.json()["coupon_dropped"]


def test_coupon_errors(client, customer, store, add_to_cart, make_coupon):
    token, _ = customer
    r = client.post(f"/api/cart/{store['id']}/coupon", json={"coupon_code": "SAVE10"}, headers=auth(token))
    assert r.status_code == 404
    add_to_cart(quantity=1)
    assert client.post(f"/api/cart/{store['id']}/coupon", json={"coupon_code": "NOPE"}, headers=auth(token)).status_code == 404
    make_coupon("BIG", min_order_amount=50)
    r = client.post(f"/api/cart/{store['id']}/coupon", json={"coupon_code": "BIG"}, headers=auth(token))
    assert r.status_code == 400
    assert r.json()["detail"] == "Minimum order amount is $50"


def test_clear_cart(client, customer, store, add_to_cart):
    token, _ = customer
    add_to_cart()
    r = client.delete(f"/api/cart/{store['id']}", headers=auth(token))
    assert r.json()["items"] == []
    assert r.json()["subtotal"] == 0.0
