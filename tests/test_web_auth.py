"""Tests for auth endpoints."""

from datetime import timedelta

from smartpromptiq.core.security import create_access_token
from smartpromptiq.db import users_repository

PASSWORD = "s3cret-pass"


class TestRegister:
    """Tests for POST /api/auth/register."""

    def test_register_free_account(self, client):
        """New accounts start on free with the free monthly allowance."""
        response = client.post(
            "/api/auth/register",
            json={"email": "Ada@Example.com", "password": "s3cret-pass", "first_name": "Ada"},
        )

        assert response.status_code == 201
        data = response.json()
        assert data["token_type"] == "bearer"
        assert data["access_token"]
        assert data["user"]["email"] == "ada@example.com"
        assert data["user"]["subscription_tier"] == "free"
        assert data["user"]["token_balance"] == 5

        user = users_repository.get_user_by_email("ada@example.com")
        assert user.monthly_reset_date is not None

    def test_duplicate_email(self, client):
        """Registering the same email twice is a conflict."""
        body = {"email": "ada@example.com", "password": "s3cret-pass"}
        client.post("/api/auth/register", json=body)

        response = client.post("/api/auth/register", json=body)

        assert response.status_code == 409

    def test_short_password(self, client):
        """Passwords under 8 characters are rejected."""
        response = client.post(
            "/api/auth/register", json={"email": "ada@example.com", "password": "short"}
        )
        assert response.status_code == 422

    def test_invalid_email(self, client):
        response = client.post(
            "/api/auth/register", json={"email": "not-an-email", "password": "s3cret-pass"}
        )
        assert response.status_code == 422


class TestLogin:
    """Tests for POST /api/auth/login."""

    def test_login_returns_token(self, client, make_user):
        """Valid credentials return a working token."""
        user = make_user(email="ada@example.com", password=PASSWORD)

        response = client.post(
            "/api/auth/login", json={"email": "ADA@example.com", "password": PASSWORD}
        )

        assert response.status_code == 200
        token = response.json()["access_token"]
        me = client.get("/api/auth/me", headers={"Authorization": f"Bearer {token}"})
        assert me.json()["user_id"] == user.user_id

    def test_wrong_password(self, client, make_user):
        make_user(email="ada@example.com", password=PASSWORD)
        response = client.post(
            "/api/auth/login", json={"email": "ada@example.com", "password": "wrong-password"}
        )
        assert response.status_code == 401
        assert response.json()["detail"] == "Invalid email or password"

    def test_unknown_email(self, client):
        response = client.post(
            "/api/auth/login", json={"email": "ghost@example.com", "password": PASSWORD}
        )
        assert response.status_code == 401

    def test_suspended_account(self, client, make_user):
        user = make_user(email="ada@example.com", password=PASSWORD)
        users_repository.set_active(user.user_id, False)

        response = client.post(
            "/api/auth/login", json={"email": "ada@example.com", "password": PASSWORD}
        )

        assert response.status_code == 403


class TestMe:
    """Tests for GET /api/auth/me."""

    def test_requires_token(self, client):
        response = client.get("/api/auth/me")
        assert response.status_code == 401
        assert response.headers["WWW-Authenticate"] == "Bearer"

    def test_bad_token(self, client):
        response = client.get("/api/auth/me", headers={"Authorization": "Bearer garbage"})
        assert response.status_code == 401

    def test_expired_token(self, client, make_user):
        """Expired tokens are rejected."""
        user = make_user()
        token = create_access_token(user.user_id, expires_delta=timedelta(minutes=-1))

        response = client.get("/api/auth/me", headers={"Authorization": f"Bearer {token}"})

        assert response.status_code == 401

    def test_deleted_user(self, client):
        token = create_access_token("no-such-user")
        response = client.get("/api/auth/me", headers={"Authorization": f"Bearer {token}"})
        assert response.status_code == 401

    def test_suspended_user(self, client, make_user, auth_headers):
        user = make_user()
        users_repository.set_active(user.user_id, False)

        response = client.get("/api/auth/me", headers=auth_headers(user))

        assert response.status_code == 403

    def test_returns_user(self, client, make_user, auth_headers):
        user = make_user(tier="pro", balance=120)

        data = client.get("/api/auth/me", headers=auth_headers(user)).json()

        assert data["subscription_tier"] == "pro"
        assert data["token_balance"] == 120
        assert "password_hash" not in data


class TestOAuth2Token:
    """Tests for the form-based POST /api/auth/token."""

    def test_form_login(self, client, make_user):
        user = make_user(email="ada@example.com", password=PASSWORD)

        response = client.post(
            "/api/auth/token", data={"username": "ada@example.com", "password": PASSWORD}
        )

        assert response.status_code == 200
        assert response.json()["user"]["user_id"] == user.user_id

    def test_form_login_wrong_password(self, client, make_user):
        make_user(email="ada@example.com", password=PASSWORD)
        response = client.post(
            "/api/auth/token", data={"username": "ada@example.com", "password": "nope-nope"}
        )
        assert response.status_code == 401
