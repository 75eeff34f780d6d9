import time

import pytest

from homework_helper import auth
from homework_helper.errors import AuthError

from conftest import register_and_login


def test_health_needs_no_session(client):
    resp = client.get("/health")
    assert resp.status_code == 200
    assert resp.json() == {"status": "ok"}


def test_protected_routes_require_session(client):
    for method, path in [
        ("get", "/api/homework"),
        ("get", "/api/mistakes"),
        ("get", "/api/statistics"),
        ("get", "/api/practice"),
        ("get", "/api/knowledge"),
    ]:
        resp = getattr(client, method)(path)
        assert resp.status_code == 401, path
        assert resp.json()["detail"] == "Not authenticated"


def test_register_login_me(client):
    user = register_and_login(client)
    assert user["email"] == "student@example.com"
    assert "passwordHash" not in user

    me = client.get("/api/auth/me")
    assert me.status_code == 200
    assert me.json()["id"] == user["id"]
    assert me.json()["grade"] == "初二"


def test_duplicate_email_conflicts(client):
    register_and_login(client)
    resp = client.post(
        "/api/auth/register",
        json={"name": "又一个", "email": "student@example.com", "password": "another1"},
    )
    assert resp.status_code == 409


def test_register_rejects_short_password(client):
    resp = client.post("/api/auth/register", json={"name": "a", "email": "a@example.com", "password": "123"})
    assert resp.status_code == 400
    assert resp.json()["field"] == "password"


def test_wrong_password(client):
    register_and_login(client)
    resp = client.post("/api/auth/login", json={"email": "student@example.com", "password": "wrong-pass"})
    assert resp.status_code == 401


def test_logout_clears_session(auth_client):
    assert auth_client.post("/api/auth/logout").status_code == 200
    assert auth_client.get("/api/auth/me").status_code == 401


def test_bearer_token_accepted(client):
    user = register_and_login(client)
    token = auth.mint_session_token(user["id"])
    client.cookies.clear()
    resp = client.get("/api/auth/me", headers={"Authorization": f"Bearer {token}"})
    assert resp.status_code == 200


def test_tampered_and_expired_tokens_rejected(client):
    user = register_and_login(client)
    client.cookies.clear()

    token = auth.mint_session_token(user["id"])
    payload, sig = token.split(".")
    tampered = f"{payload}.{'A' * len(sig)}"
    assert client.get("/api/auth/me", headers={"Authorization": f"Bearer {tampered}"}).status_code == 401

    expired = auth.mint_session_token(user["id"], now=int(time.time()) - 30 * 24 * 3600)
    resp = client.get("/api/auth/me", headers={"Authorization": f"Bearer {expired}"})
    assert resp.status_code == 401
    assert resp.json()["detail"] == "Session expired"

    # Non-ASCII bytes in the token are an invalid session, not a server error.
    resp = client.get("/api/auth/me", headers={"Authorization": "Bearer \xe9.abc".encode("latin-1")})
    assert resp.status_code == 401
    with pytest.raises(AuthError):
        auth.decode_session_token("\xe9.abc")


def test_password_hash_roundtrip():
    stored = auth.hash_password("secret123")
    assert stored.startswith("pbkdf2_sha256$")
    assert auth.verify_password("secret123", stored)
    assert not auth.verify_password("secret124", stored)
    assert not auth.verify_password("secret123", "garbage")
