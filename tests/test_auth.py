from datetime import timedelta

import pytest

import auth
from errors import Forbidden, Unauthorized


def register(client, email="carol@mail.com", password="s3cret-pass", name="Carol"):
    return client.post("/api/auth/register", json={"name": name, "email": email, "password": password})


def test_register_then_login(client):
    resp = register(client)
    assert resp.status_code == 201
    body = resp.json()
    assert body["token"]
    assert body["user"]["email"] == "carol@mail.com"
    assert body["user"]["role"] == "customer"
    assert "passwordHash" not in body["user"]

    resp = client.post("/api/auth/login", json={"email": "carol@mail.com", "password": "s3cret-pass"})
    assert resp.status_code == 200
    assert resp.json()["user"]["_id"] == body["user"]["_id"]


def test_password_is_stored_hashed(client, store):
    register(client)
    user = store.get_user_by_email("carol@mail.com")
    assert user["password_hash"] != "s3cret-pass"
    assert auth.verify_password("s3cret-pass", user["password_hash"])


def test_duplicate_email_rejected(client):
    register(client)
    resp = register(client, name="Other Carol")
    assert resp.status_code == 400
    assert resp.json() == {"message": "Email already registered"}


def test_email_is_case_insensitive(client):
    register(client, email="Dave@Mail.com")
    resp = client.post("/api/auth/login", json={"email": "dave@mail.com", "password": "s3cret-pass"})
    assert resp.status_code == 200
    assert register(client, email="DAVE@mail.com").status_code == 400


def test_login_failures_are_indistinguishable(client):
    register(client)
    wrong_password = client.post("/api/auth/login", json={"email": "carol@mail.com", "password": "nope-nope"})
    unknown_email = client.post("/api/auth/login", json={"email": "nobody@mail.com", "password": "nope-nope"})
    assert wrong_password.status_code == unknown_email.status_code == 401
    assert wrong_password.json() == unknown_email.json() == {"message": "Invalid credentials"}


def test_me_returns_current_user(client, customer_headers):
    resp = client.get("/api/auth/me", headers=customer_headers)
    assert resp.status_code == 200
    assert resp.json()["user"]["email"] == "alice@mail.com"
    assert "passwordHash" not in resp.json()["user"]


def test_me_requires_token(client):
    resp = client.get("/api/auth/me")
    assert resp.status_code == 401
    assert resp.json() == {"message": "No token provided"}
    assert resp.headers["WWW-Authenticate"] == "Bearer"


def test_me_rejects_garbage_token(client):
    resp = client.get("/api/auth/me", headers={"Authorization": "Bearer not-a-jwt"})
    assert resp.status_code == 401
    assert resp.json() == {"message": "Invalid token"}


def test_expired_token_rejected(store):
    user = auth.ensure_admin(store, "admin@shop.io", "admin-secret")
    token = auth.create_access_token(user, expires_delta=timedelta(seconds=-5))
    with pytest.raises(Unauthorized):
        auth.authenticate(store, token)


def test_token_for_unknown_user_rejected(store):
    token = auth.create_access_token({"_id": "65f000000000000000000000", "role": "admin"})
    with pytest.raises(Unauthorized):
        auth.authenticate(store, token)


def test_require_role():
    assert auth.require_role({"role": "admin"}, "admin") == {"role": "admin"}
    with pytest.raises(Forbidden):
        auth.require_role({"role": "customer"}, "admin")


def test_ensure_admin_is_idempotent(store):
    first = auth.ensure_admin(store, "admin@shop.io", "admin-secret")
    second = auth.ensure_admin(store, "ADMIN@shop.io", "other")
    assert first["_id"] == second["_id"]
    assert store.count_users(role="admin") == 1


@pytest.mark.parametrize("method,path", [
    ("get", "/api/orders"),
    ("get", "/api/customers"),
    ("get", "/api/admin/stats"),
    ("post", "/api/products"),
    ("put", "/api/products/65f000000000000000000000"),
    ("delete", "/api/products/65f000000000000000000000"),
    ("put", "/api/orders/65f000000000000000000000/status"),
])
def test_customer_forbidden_on_admin_routes(client, customer_headers, method, path):
    kwargs = {"headers": customer_headers}
    if method in ("post", "put"):
        kwargs["json"] = {"name": "X", "price": 1, "category": "Y", "status": "active"}
    resp = getattr(client, method)(path, **kwargs)
    assert resp.status_code == 403
    assert resp.json() == {"message": "Admin access required"}
