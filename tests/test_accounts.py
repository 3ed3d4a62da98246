import re
from datetime import datetime, timedelta

import pytest

from blissbay.models import Order, PasswordResetToken, Product, User
from tests.factories import make_order, make_product, stock_of


def login(client, email, password):
    return client.post("/api/auth/login", json={"email": email, "password": password})


def reset_link_token(queue):
    job = queue.jobs[-1]
    assert job["name"] == "send_email"
    return re.search(r'/reset-password/([^"]+)"', job["payload"]["html"]).group(1)


def delete_me(client, headers, password):
    return client.request("DELETE", "/api/users/me", json={"password": password}, headers=headers)


class TestChangePassword:
    def test_change_password(self, client, user, auth):
        resp = client.put(
            "/api/users/me/password",
            json={"currentPassword": "password123", "newPassword": "new-password-1"},
            headers=auth,
        )
        assert resp.status_code == 200
        assert login(client, user.email, "password123").status_code == 401
        assert login(client, user.email, "new-password-1").status_code == 200

    def test_wrong_current_password(self, client, auth):
        resp = client.put(
            "/api/users/me/password",
            json={"currentPassword": "not-it-at-all", "newPassword": "new-password-1"},
            headers=auth,
        )
        assert resp.status_code == 400
        assert resp.json()["reason"] == "incorrect_password"

    def test_same_password_rejected(self, client, auth):
        resp = client.put(
            "/api/users/me/password",
            json={"currentPassword": "password123", "newPassword": "password123"},
            headers=auth,
        )
        assert resp.status_code == 400
        assert resp.json()["reason"] == "password_unchanged"

    def test_short_new_password(self, client, auth):
        resp = client.put(
            "/api/users/me/password",
            json={"currentPassword": "password123", "newPassword": "short"},
            headers=auth,
        )
        assert resp.status_code == 400
        assert resp.json()["errors"][0]["field"] == "newPassword"


class TestPasswordReset:
    def test_reset_flow(self, client, queue, user):
        resp = client.post("/api/auth/forgot-password", json={"email": user.email})
        assert resp.status_code == 200
        token = reset_link_token(queue)
        assert queue.jobs[-1]["payload"]["to"] == user.email

        resp = client.post("/api/auth/reset-password", json={"token": token, "newPassword": "fresh-password"})
        assert resp.status_code == 200
        assert login(client, user.email, "fresh-password").status_code == 200

        # links work once
        again = client.post("/api/auth/reset-password", json={"token": token, "newPassword": "other-password"})
        assert again.status_code == 400
        assert again.json()["reason"] == "invalid_reset_token"

    def test_unknown_email_looks_the_same(self, client, queue, user):
        unknown = client.post("/api/auth/forgot-password", json={"email": "nobody@example.com"})
        known = client.post("/api/auth/forgot-password", json={"email": user.email})
        assert unknown.status_code == known.status_code == 200
        assert unknown.json() == known.json()
        assert queue.names() == ["send_email"]

    def test_only_a_hash_is_stored(self, client, db, queue, user):
        client.post("/api/auth/forgot-password", json={"email": user.email})
        token = reset_link_token(queue)

        db.expire_all()
        record = db.query(PasswordResetToken).filter(PasswordResetToken.user_id == user.id).one()
        assert len(record.token_hash) == 64
        assert record.token_hash != token

    def test_expired_token(self, client, db, queue, user):
        client.post("/api/auth/forgot-password", json={"email": user.email})
        token = reset_link_token(queue)

        db.expire_all()
        record = db.query(PasswordResetToken).filter(PasswordResetToken.user_id == user.id).one()
        record.expires_at = datetime.utcnow() - timedelta(minutes=1)
        db.commit()

        resp = client.post("/api/auth/reset-password", json={"token": token, "newPassword": "fresh-password"})
        assert resp.status_code == 400
        assert resp.json()["reason"] == "invalid_reset_token"

    def test_new_request_replaces_old_link(self, client, queue, user):
        client.post("/api/auth/forgot-password", json={"email": user.email})
        first = reset_link_token(queue)
        client.post("/api/auth/forgot-password", json={"email": user.email})
        second = reset_link_token(queue)

        stale = client.post("/api/auth/reset-password", json={"token": first, "newPassword": "fresh-password"})
        assert stale.status_code == 400
        current = client.post("/api/auth/reset-password", json={"token": second, "newPassword": "fresh-password"})
        assert current.status_code == 200

    def test_unknown_token(self, client):
        resp = client.post("/api/auth/reset-password", json={"token": "made-up", "newPassword": "fresh-password"})
        assert resp.status_code == 400
        assert resp.json()["reason"] == "invalid_reset_token"


class TestDeleteAccount:
    @pytest.fixture()
    def product(self, db):
        return make_product(db, name="Lamp", stock=5)

    def test_wrong_password(self, client, auth):
        resp = delete_me(client, auth, "not-my-password")
        assert resp.status_code == 400
        assert resp.json()["reason"] == "incorrect_password"

    def test_account_without_orders_is_removed(self, client, db, user, auth, product, address_payload):
        user_id, product_id = user.id, product.id
        client.post("/api/carts/add", json={"productId": product_id, "quantity": 2}, headers=auth)
        client.post("/api/addresses", json=address_payload, headers=auth)
        client.post(f"/api/products/{product_id}/reviews", json={"rating": 5}, headers=auth)

        resp = delete_me(client, auth, "password123")
        assert resp.status_code == 200
        assert resp.json()["mode"] == "deleted"

        assert stock_of(db, product_id) == 5
        assert db.get(User, user_id) is None
        assert db.get(Product, product_id).rating_count == 0
        assert client.get("/api/auth/me", headers=auth).status_code == 401

    def test_account_with_orders_is_anonymized(self, client, db, user, auth):
        order_id, user_id, email = make_order(db, user).id, user.id, user.email

        resp = delete_me(client, auth, "password123")
        assert resp.status_code == 200
        assert resp.json()["mode"] == "anonymized"

        db.expire_all()
        stored = db.get(User, user_id)
        assert stored.is_active is False
        assert stored.email.startswith("deleted+")
        assert stored.name == "Deleted user"
        assert db.get(Order, order_id).user_id == user_id

        assert login(client, email, "password123").status_code == 401
        again = client.post("/api/auth/register", json={"name": "Back", "email": email, "password": "password123"})
        assert again.status_code == 201
