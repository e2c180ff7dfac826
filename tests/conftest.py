import pytest
from fastapi.testclient import TestClient

import auth
from database import InMemoryStore, get_store
from main import app


@pytest.fixture
def store():
    return InMemoryStore()


@pytest.fixture
def client(store):
    app.dependency_overrides[get_store] = lambda: store
    yield TestClient(app)
    app.dependency_overrides.clear()


def bearer(user: dict) -> dict:
    return {"Authorization": f"Bearer {auth.create_access_token(user)}"}


@pytest.fixture
def admin_headers(store):
    admin = auth.ensure_admin(store, "admin@shop.io", "admin-secret")
    return bearer(admin)


@pytest.fixture
def customer_headers(client):
    resp = client.post("/api/auth/register", json={
        "name": "Alice",
        "email": "alice@mail.com",
        "password": "wonderland",
    })
    assert resp.status_code == 201
    return {"Authorization": f"Bearer {resp.json()['token']}"}


@pytest.fixture
def make_product(store):
    def _make(name="Nike Air Force 1", price=430.0, category="Nike", stock=10, **extra):
        return store.insert_product({
            "name": name,
            "price": price,
            "category": category,
            "stock": stock,
            "status": "active",
            "featured": False,
            **extra,
        })
    return _make


def customer_info(**overrides):
    info = {
        "name": "Bob Buyer",
        "email": "bob@mail.com",
        "phone": "0801234567",
        "address": "12 Market Street",
    }
    info.update(overrides)
    return info
