from blissbay.models import User
from blissbay.security import create_token, decode_token
from tests.factories import headers_for


class TestRegisterLogin:
    def test_register_returns_token(self, client):
        resp = client.post(
            "/api/auth/register",
            json={"name": "Ada", "email": "Ada@Example.com", "password": "correct-horse"},
        )
        assert resp.status_code == 201
        body = resp.json()
        assert body["user"]["email"] == "ada@example.com"
        assert body["user"]["role"] == "user"

        me = client.get("/api/auth/me", headers={"Authorization": f"Bearer {body['access_token']}"})
        assert me.status_code == 200
        assert me.json()["name"] == "Ada"

    def test_duplicate_email(self, client, user):
        resp = client.post(
            "/api/auth/register",
            json={"name": "Again", "email": user.email, "password": "password123"},
        )
        assert resp.status_code == 409
        assert resp.json()["reason"] == "email_taken"

    def test_short_password_is_validation_error(self, client):
        resp = client.post("/api/auth/register", json={"name": "X", "email": "x@example.com", "password": "short"})
        assert resp.status_code == 400
        assert resp.json()["errors"][0]["field"] == "password"

    def test_login(self, client, user):
        resp = client.post("/api/auth/login", json={"email": user.email, "password": "password123"})
        assert resp.status_code == 200
        assert resp.json()["user"]["id"] == user.id

    def test_wrong_password(self, client, user):
        resp = client.post("/api/auth/login", json={"email": user.email, "password": "nope-nope"})
        assert resp.status_code == 401


class TestAccessControl:
    def test_missing_token(self, client):
        assert client.get("/api/carts").status_code == 401

    def test_garbage_token(self, client):
        resp = client.get("/api/carts", headers={"Authorization": "Bearer not-a-jwt"})
        assert resp.status_code == 401

    def test_token_signed_with_other_key(self, client, user, settings):
        other = settings.model_copy(update={"SECRET_KEY": "different"})
        token = create_token(user.id, "user", other)
        assert decode_token(token, settings) is None
        resp = client.get("/api/carts", headers={"Authorization": f"Bearer {token}"})
        assert resp.status_code == 401

    def test_disabled_user(self, client, db, user, auth):
        db.get(User, user.id).is_active = False
        db.commit()
        assert client.get("/api/carts", headers=auth).status_code == 401

    def test_admin_routes_reject_customers(self, client, auth):
        assert client.get("/api/admin/dashboard", headers=auth).status_code == 403

    def test_admin_routes_accept_admins(self, client, admin_auth):
        assert client.get("/api/admin/dashboard", headers=admin_auth).status_code == 200

    def test_role_comes_from_database(self, client, user, settings):
        # a forged role claim does not grant admin access
        token = create_token(user.id, "admin", settings)
        resp = client.get("/api/admin/dashboard", headers={"Authorization": f"Bearer {token}"})
        assert resp.status_code == 403


class TestAdminUsers:
    def test_disable_and_enable(self, client, user, admin_auth, auth):
        resp = client.post(f"/api/admin/users/{user.id}/disable", headers=admin_auth)
        assert resp.status_code == 200
        assert client.get("/api/auth/me", headers=auth).status_code == 401

        client.post(f"/api/admin/users/{user.id}/enable", headers=admin_auth)
        assert client.get("/api/auth/me", headers=auth).status_code == 200

    def test_promote_to_admin(self, client, user, settings, admin_auth):
        resp = client.put(f"/api/admin/users/{user.id}/role", json={"role": "admin"}, headers=admin_auth)
        assert resp.status_code == 200
        assert client.get("/api/admin/dashboard", headers=headers_for(user, settings)).status_code == 200
