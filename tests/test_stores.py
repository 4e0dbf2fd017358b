from conftest import NEARBY, STORE_LOCATION, auth


def new_store(client, token, name, location, fee=2.5):
    return client.post(
        "/api/stores",
        json={
            "name": name,
            "address": {"street": "Somewhere 1", "city": "Buenos Aires", "state": "CABA"},
            "location": location,
            "phone": "+541112345678",
            "delivery_info": {"delivery_fee": fee},
        },
        headers=auth(token),
    )


def test_one_store_per_owner(client, owner, store):
    r = new_store(client, owner[0], "Second", STORE_LOCATION)
    assert r.status_code == 400


def test_clients_cannot_open_stores(client, customer):
    assert new_store(client, customer[0], "Nope", STORE_LOCATION).status_code == 403


def test_list_filters_by_distance_and_paginates(client, make_user, store):
    far_owner, _ = make_user("far@example.com", "store_owner")
    new_store(client, far_owner, "Far Away", {"lat": -34.9011, "lng": -56.1645}, fee=1.0)

    r = client.get("/api/stores", params={"lat": -34.61, "lng": -58.39, "radius": 10, "sort_by": "distance"})
    body = r.json()
    assert [s["name"] for s in body["stores"]] == ["Pizza Palace"]
    assert body["stores"][0]["distance"] < 2
    assert body["pagination"]["total_stores"] == 1

    r = client.get("/api/stores", params={"sort_by": "delivery_fee", "limit": 1})
    body = r.json()
    assert body["stores"][0]["name"] == "Far Away"
    assert body["pagination"] == {"current_page": 1, "total_pages": 2, "total_stores": 2, "has_next": True, "has_prev": False}

    assert client.get("/api/stores", params={"search": "pizza"}).json()["pagination"]["total_stores"] == 1


def test_store_detail_and_quote(client, store, product):
    r = client.get(f"/api/stores/{store['id']}")
    assert r.status_code == 200
    assert [p["name"] for p in r.json()["products"]] == ["Margherita"]
    assert r.json()["store"]["is_open"] is True

    quote = client.get(f"/api/stores/{store['id']}/delivery-quote", params={"lat": -34.61, "lng": -58.39, "subtotal": 20}).json()
    assert quote["can_deliver"] is True
    assert quote["delivery_fee"] == 2.99
    assert quote["estimated_minutes"] == 15 + 23

    assert client.get("/api/stores/not-an-id").status_code == 400


def test_only_admin_features_and_soft_delete(client, owner, admin, store):
    token, _ = owner
    assert client.put(f"/api/stores/{store['id']}", json={"is_featured": True}, headers=auth(token)).status_code == 403
    r = client.put(f"/api/stores/{store['id']}", json={"is_featured": True}, headers=auth(admin[0]))
    assert r.json()["is_featured"] is True
    assert [s["id"] for s in client.get("/api/stores/featured/list").json()] == [store["id"]]

    assert client.delete(f"/api/stores/{store['id']}", headers=auth(token)).status_code == 200
    assert client.get(f"/api/stores/{store['id']}").status_code == 404


def test_other_owner_cannot_manage_products(client, make_user, store, product):
    other, _ = make_user("intruder@example.com", "store_owner")
    r = client.put(f"/api/products/{product['id']}", json={"price": 1}, headers=auth(other))
    assert r.status_code == 403


def test_stock_update_toggles_availability(client, owner, product):
    token, _ = owner
    r = client.patch(f"/api/products/{product['id']}/stock", json={"stock": 0}, headers=auth(token))
    assert r.json()["is_available"] is False
    assert client.get("/api/products").json()["pagination"]["total"] == 0
    r = client.patch(f"/api/products/{product['id']}/stock", json={"stock": 4}, headers=auth(token))
    assert r.json()["is_available"] is True


def test_categories(client, admin):
    token, _ = admin
    parent = client.post("/api/categories", json={"name": "Fast Food"}, headers=auth(token)).json()
    assert parent["slug"] == "fast-food"
    child = client.post("/api/categories", json={"name": "Burgers", "parent_id": parent["id"]}, headers=auth(token)).json()
    assert child["level"] == 1
    assert client.post("/api/categories", json={"name": "Fast Food"}, headers=auth(token)).status_code == 409

    detail = client.get("/api/categories/burgers").json()
    assert [c["slug"] for c in detail["path"]] == ["fast-food", "burgers"]
    assert [c["name"] for c in client.get("/api/categories").json()] == ["Fast Food"]


def test_search_treats_text_literally(client, store, product):
    r = client.get("/api/stores", params={"search": "pizza("})
    assert r.status_code == 200
    assert r.json()["pagination"]["total_stores"] == 0
    assert client.get("/api/stores", params={"search": "Pizza Pal"}).json()["pagination"]["total_stores"] == 1

    r = client.get("/api/products", params={"search": "marg*[("})
    assert r.status_code == 200
    assert r.json()["pagination"]["total"] == 0


def test_delivery_check(client, store):
    r = client.get("/api/location/delivery-check", params={"store_id": store["id"], **NEARBY})
    assert r.status_code == 200
    body = r.json()
    assert body["can_deliver"] is True
    assert body["distance_km"] < 2
    assert body["delivery_radius"] == 10

    far = client.get("/api/location/delivery-check", params={"store_id": store["id"], "lat": -34.9011, "lng": -56.1645}).json()
    assert far["can_deliver"] is False
    assert far["distance_km"] > 10


def test_distance_endpoint(client):
    r = client.get("/api/location/distance", params={"lat1": -34.6037, "lng1": -58.3816, "lat2": -34.6037, "lng2": -58.3816})
    assert r.json() == {"distance_km": 0.0, "estimated_minutes": 20}
