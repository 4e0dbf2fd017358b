from datetime import datetime, timedelta, timezone

import mongomock
import pytest

# pymongo.MongoClient must be swapped before the app modules create their client
_mongo_patch = mongomock.patch(servers=(("localhost", 27017),))
_mongo_patch.start()

from fastapi.testclient import TestClient  # noqa: E402

from database import db, ensure_indexes, now_utc  # noqa: E402
from main import app  # noqa: E402
from schemas import User as UserSchema  # noqa: E402
from security import hash_password  # noqa: E402

STORE_LOCATION = {"lat": -34.6037, "lng": -58.3816}
NEARBY = {"lat": -34.61, "lng": -58.39}


def auth(token):
    return {"Authorization": f"Bearer {token}"}


def address(coords=None):
    return {
        "label": "Home",
        "street": "Av. Corrientes 1234",
        "city": "Buenos Aires",
        "state": "CABA",
        "coordinates": coords or NEARBY,
    }


@pytest.fixture(autouse=True)
def clean_db():
    for name in db.list_collection_names():
        db.drop_collection(name)
    ensure_indexes()
    yield


@pytest.fixture
def client():
    return TestClient(app)


@pytest.fixture
def make_user(client):
    def _make(email="ana@example.com", role="client", name="Ana Test", password="secret123"):
        if role in ("client", "store_owner"):
            r = client.post("/api/auth/register", json={"name": name, "email": email, "password": password, "role": role})
            assert r.status_code == 201, r.text
            return r.json()["access_token"], r.json()["user"]
        doc = UserSchema(name=name, email=email, password_hash=hash_password(password), role=role).model_dump()
        doc.update({"created_at": now_utc(), "updated_at": now_utc()})
        db["user"].insert_one(doc)
        r = client.post("/api/auth/login", json={"email": email, "password": password})
        assert r.status_code == 200, r.text
        return r.json()["access_token"], r.json()["user"]
    return _make


@pytest.fixture
def customer(make_user):
    return make_user("customer@example.com", "client", "Carla Customer")


@pytest.fixture
def owner(make_user):
    return make_user("owner@example.com", "store_owner", "Oscar Owner")


@pytest.fixture
def admin(make_user):
    return make_user("root@example.com", "admin", "Adela Admin")


@pytest.fixture
def driver(make_user):
    return make_user("driver@example.com", "delivery_driver", "Dario Driver")


@pytest.fixture
def store(client, owner):
    token, _ = owner
    r = client.post(
        "/api/stores",
        json={
            "name": "Pizza Palace",
            "address": {"street": "Florida 100", "city": "Buenos Aires", "state": "CABA"},
            "location": STORE_LOCATION,
            "phone": "+541112345678",
            "delivery_info": {"delivery_radius": 10, "minimum_order": 0, "delivery_fee": 2.5, "free_delivery_threshold": 100},
            "payment_methods": ["cash", "card"],
        },
        headers=auth(token),
    )
    assert r.status_code == 201, r.text
    return r.json()


@pytest.fixture
def product(client, owner, store):
    token, _ = owner
    r = client.post(
        "/api/products",
        json={
            "store_id": store["id"],
            "name": "Margherita",
            "category": "pizza",
            "price": 10,
            "stock": 5,
            "options": [
                {
                    "name": "Size",
                    "type": "single",
                    "required": True,
                    "choices": [{"name": "Small", "price": 0}, {"name": "Large", "price": 2.5}],
                }
            ],
            "addons": [{"name": "Extra cheese", "price": 1.5}],
        },
        headers=auth(token),
    )
    assert r.status_code == 201, r.text
    return r.json()


@pytest.fixture
def add_to_cart(client, customer, store, product):
    def _add(quantity=2, size="Large", addons=({"name": "Extra cheese"},)):
        token, _ = customer
        r = client.post(
            f"/api/cart/{store['id']}/items",
            json={
                "product_id": product["id"],
                "quantity": quantity,
                "customizations": [{"name": "Size", "options": [size]}],
                "addons": list(addons),
            },
            headers=auth(token),
        )
        return r
    return _add


@pytest.fixture
def make_coupon(client, admin):
    def _make(code="SAVE10", **overrides):
        token, _ = admin
        now = datetime.now(timezone.utc)
        body = {
            "code": code,
            "title": "Ten off",
            "discount_type": "percentage",
            "discount_value": 10,
            "start_date": (now - timedelta(days=1)).isoformat(),
            "end_date": (now + timedelta(days=30)).isoformat(),
        }
        body.update(overrides)
        r = client.post("/api/coupons", json=body, headers=auth(token))
        assert r.status_code == 201, r.text
        return r.json()
    return _make
