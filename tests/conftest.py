"""Shared pytest fixtures for the storefront API tests."""

from datetime import datetime

import mongomock
import pytest
from fastapi.testclient import TestClient

import main
from cart import CartStore
from config import Settings
from feed import OrderFeed
from storage import StorageError, StoredFile

ADMIN_PASSWORD = "s3cret-pass"

# Smallest payloads that still carry the right magic bytes.
PNG = b"\x89PNG\r\n\x1a\n" + b"\x00" * 64
JPEG = b"\xff\xd8\xff\xe0" + b"\x00" * 64


class MemoryStorage:
    """Object store double: keeps blobs in a dict and can be switched to fail."""

    def __init__(self):
        self.files = {}
        self.fail = False

    def put(self, path, data, content_type):
        if self.fail:
            raise StorageError("storage offline")
        self.files[path] = StoredFile(data, content_type)
        return f"http://testserver/files/{path}"

    def get(self, path):
        try:
            return self.files[path]
        except KeyError:
            raise FileNotFoundError(path)


@pytest.fixture
def db():
    return mongomock.MongoClient()["storefront_test"]


@pytest.fixture
def storage():
    return MemoryStorage()


@pytest.fixture
def settings():
    return Settings(admin_password=ADMIN_PASSWORD, checkout_flow="payment_proof", max_image_bytes=1024)


@pytest.fixture
def feed(monkeypatch):
    order_feed = OrderFeed(poll_interval=0.05)
    monkeypatch.setattr(main, "feed", order_feed)
    return order_feed


@pytest.fixture
def carts(monkeypatch):
    store = CartStore()
    monkeypatch.setattr(main, "carts", store)
    return store


@pytest.fixture
def client(db, storage, settings, feed, carts):
    main.app.dependency_overrides[main.get_db] = lambda: db
    main.app.dependency_overrides[main.get_storage] = lambda: storage
    main.app.dependency_overrides[main.get_settings] = lambda: settings
    with TestClient(main.app) as c:
        yield c
    main.app.dependency_overrides.clear()


@pytest.fixture
def user_id(client):
    return client.post("/auth/anonymous").json()["user_id"]


@pytest.fixture
def customer(user_id):
    return {"X-User-Id": user_id}


@pytest.fixture
def admin(client):
    token = client.post("/admin/login", json={"password": ADMIN_PASSWORD}).json()["token"]
    return {"Authorization": f"Bearer {token}"}


def insert_product(db, name="Kovil Mani", price=1800.0, **extra):
    doc = {
        "name": name,
        "description": "Brass temple bell for the pooja room",
        "price": price,
        "image_url": f"http://testserver/files/products/1_{name}.png",
        "created_at": datetime(2024, 1, 1),
        **extra,
    }
    return str(db["product"].insert_one(doc).inserted_id)


def insert_order(db, status="pending", user_id="someone", **extra):
    doc = {
        "user_id": user_id,
        "customer_name": "Meena",
        "customer_phone": "9876543210",
        "customer_address": "12 Car Street, Madurai",
        "location": {"lat": 9.9252, "lng": 78.1198},
        "order_date": datetime(2024, 5, 10, 12, 0),
        "order_items": [{"product_id": "p1", "name": "Malli Poo String", "price": 80.0, "quantity": 2}],
        "total_price": 160.0,
        "payment_screenshot_url": None,
        "status": status,
        **extra,
    }
    return str(db["order"].insert_one(doc).inserted_id)
