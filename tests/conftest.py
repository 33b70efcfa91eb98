import os
import tempfile
from unittest import mock

import mongomock
import pytest

os.environ["DATABASE_URL"] = "mongodb://localhost:27017"
os.environ["DATABASE_NAME"] = "artvia_test"
os.environ["UPLOAD_DIR"] = tempfile.mkdtemp(prefix="artvia-uploads-")
os.environ["ENVIRONMENT"] = "test"
os.environ.pop("GEMINI_API_KEY", None)

# database.py connects at import time, so the in-memory client must be in place first
mock.patch("pymongo.MongoClient", mongomock.MongoClient).start()

from fastapi.testclient import TestClient  # noqa: E402

import database  # noqa: E402
import main  # noqa: E402


def _clear():
    for name in database.db.list_collection_names():
        database.db[name].delete_many({})


@pytest.fixture(autouse=True)
def clean_db():
    _clear()
    yield
    _clear()


@pytest.fixture
def client():
    with TestClient(main.app) as c:
        yield c


@pytest.fixture
def make_user(client):
    def _make(name="Test User", email="user@example.com", password="secret123", role="user"):
        res = client.post("/api/auth/register", json={"name": name, "email": email, "password": password})
        assert res.status_code == 201, res.text
        if role != "user":
            database.db["user"].update_one({"email": email}, {"$set": {"role": role}})
        data = res.json()
        data["headers"] = {"Authorization": f"Bearer {data['token']}"}
        return data
    return _make


@pytest.fixture
def user(make_user):
    return make_user()


@pytest.fixture
def other_user(make_user):
    return make_user(name="Other", email="other@example.com")


@pytest.fixture
def admin(make_user):
    return make_user(name="Admin", email="admin@example.com", role="admin")


@pytest.fixture
def category():
    res = database.db["category"].insert_one({
        "name": "Grafika", "nameUz": "Grafika", "nameRu": "Графика", "slug": "grafika",
    })
    return database.db["category"].find_one({"_id": res.inserted_id})


@pytest.fixture
def product(category):
    res = database.db["product"].insert_one({
        "title": "Clay jug",
        "titleUz": "Ko'za",
        "titleRu": "Кувшин",
        "description": "Hand made clay jug",
        "descriptionUz": "Qo'lda yasalgan ko'za",
        "descriptionRu": "Глиняный кувшин",
        "price": 120000,
        "image": "/uploads/jug.png",
        "category": category["_id"],
        "categoryName": category["name"],
    })
    return database.db["product"].find_one({"_id": res.inserted_id})


@pytest.fixture
def order_payload(product):
    def _payload(**overrides):
        body = {
            "items": [{"product": str(product["_id"]), "quantity": 2, "price": 120000}],
            "totalPrice": 240000,
            "personalInfo": {"name": "Ali", "email": "ali@example.com", "phone": "+998901234567"},
            "paymentMethod": "card",
            "deliveryAddress": {"region": "Toshkent", "address": "Amir Temur 1", "comment": ""},
            "deliveryLocation": {"lat": 41.31, "lng": 69.28},
        }
        body.update(overrides)
        return body
    return _payload


@pytest.fixture
def place_order(client, user, order_payload):
    def _place(owner=None, **overrides):
        owner = owner or user
        res = client.post("/api/orders", json=order_payload(**overrides), headers=owner["headers"])
        assert res.status_code == 201, res.text
        return res.json()
    return _place


@pytest.fixture
def png():
    return ("payment.png", b"\x89PNG\r\n\x1a\n" + b"\x00" * 64, "image/png")
