"""
Admin console authentication tests.

Verifies:
- login returns a session token usable on /me and admin routes
- bad credentials are rejected with 401
- logout revokes the token
- password strength rules
"""

import pytest

from shopbot.services.auth_service import (
    AuthError,
    PasswordValidationError,
    create_user,
    validate_password_strength,
)


def _login(client, email="admin@shop.local", password="Password123"):
    return client.post("/api/auth/login", json={"email": email, "password": password})


class TestLogin:

    def test_login_and_me(self, client, admin_user):
        resp = _login(client)
        assert resp.status_code == 200
        body = resp.get_json()
        assert body["user"]["email"] == "admin@shop.local"
        assert body["expires_at"].endswith("Z")

        me = client.get("/api/auth/me", headers={"Authorization": f"Bearer {body['token']}"})
        assert me.status_code == 200
        assert me.get_json()["user"]["role"] == "admin"

    def test_email_is_case_insensitive(self, client, admin_user):
        assert _login(client, email="Admin@Shop.Local").status_code == 200

    def test_wrong_password(self, client, admin_user):
        resp = _login(client, password="Wrong12345")
        assert resp.status_code == 401
        assert resp.get_json()["error"] == "Invalid credentials"

    def test_unknown_user(self, client):
        assert _login(client, email="nobody@shop.local").status_code == 401

    def test_missing_fields(self, client):
        resp = client.post("/api/auth/login", json={"email": "admin@shop.local"})
        assert resp.status_code == 400

    def test_inactive_user_cannot_login(self, client, admin_user, db_session):
        admin_user.is_active = False
        db_session.commit()
        assert _login(client).status_code == 401


class TestSessions:

    def test_token_opens_admin_routes(self, client, admin_user):
        token = _login(client).get_json()["token"]
        resp = client.get("/api/products", headers={"Authorization": f"Bearer {token}"})
        assert resp.status_code == 200

    def test_bad_token_rejected(self, client):
        resp = client.get("/api/products", headers={"Authorization": "Bearer not-a-token"})
        assert resp.status_code == 401

    def test_me_requires_token(self, client):
        assert client.get("/api/auth/me").status_code == 401

    def test_logout_revokes_token(self, client, admin_user):
        token = _login(client).get_json()["token"]
        headers = {"Authorization": f"Bearer {token}"}

        assert client.post("/api/auth/logout", headers=headers).status_code == 200
        assert client.get("/api/auth/me", headers=headers).status_code == 401


class TestUsers:

    @pytest.mark.parametrize("password", ["short1A", "alllowercase1", "ALLUPPERCASE1", "NoDigitsHere"])
    def test_weak_passwords(self, password):
        with pytest.raises(PasswordValidationError):
            validate_password_strength(password)

    def test_duplicate_email(self, admin_user):
        with pytest.raises(AuthError):
            create_user(email="ADMIN@shop.local", password="Password123")

    def test_invalid_role(self, db_session):
        with pytest.raises(AuthError):
            create_user(email="x@shop.local", password="Password123", role="owner")
