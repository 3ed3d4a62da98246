import pytest

from blissbay.models import ActivityLog
from tests.factories import headers_for, make_product, stock_of


@pytest.fixture()
def place_order(client, db, auth, address_payload):
    def _place(quantity=2, stock=5, payment_method="credit_card"):
        product = make_product(db, stock=stock, price=25.0)
        client.post("/api/carts/add", json={"productId": product.id, "quantity": quantity}, headers=auth)
        resp = client.post(
            "/api/carts/checkout",
            json={"paymentMethod": payment_method, "shippingAddress": address_payload},
            headers=auth,
        )
        assert resp.status_code == 201, resp.json()
        return resp.json(), product
    return _place


def set_status(client, admin_auth, order_id, status, note=None):
    return client.put(
        f"/api/admin/orders/{order_id}/status",
        json={"status": status, "note": note},
        headers=admin_auth,
    )


class TestOrderStatusMachine:
    def test_happy_path_to_delivered(self, client, admin_auth, place_order):
        order, _ = place_order()
        for status in ("processing", "shipped", "delivered"):
            resp = set_status(client, admin_auth, order["id"], status)
            assert resp.status_code == 200, resp.json()
            assert resp.json()["status"] == status

        final = resp.json()
        assert final["shipped_at"] is not None
        assert final["delivered_at"] is not None

    def test_unknown_status_is_bad_request(self, client, admin_auth, place_order):
        order, _ = place_order()
        resp = set_status(client, admin_auth, order["id"], "teleported")
        assert resp.status_code == 400
        assert resp.json()["reason"] == "invalid_status"
        assert "pending" in resp.json()["detail"]

    def test_skipping_a_step_is_conflict(self, client, admin_auth, place_order):
        order, _ = place_order()
        resp = set_status(client, admin_auth, order["id"], "delivered")
        assert resp.status_code == 409
        assert resp.json()["reason"] == "invalid_transition"

    def test_terminal_states_are_final(self, client, admin_auth, place_order):
        order, _ = place_order()
        set_status(client, admin_auth, order["id"], "cancelled")
        resp = set_status(client, admin_auth, order["id"], "processing")
        assert resp.status_code == 409

    def test_shipping_enqueues_notification(self, client, admin_auth, queue, place_order):
        order, _ = place_order()
        set_status(client, admin_auth, order["id"], "processing")
        assert "order_shipped" not in queue.names()

        set_status(client, admin_auth, order["id"], "shipped")
        assert queue.names().count("order_shipped") == 1
        assert queue.jobs[-1]["payload"] == {"order_id": order["id"]}

    def test_cancelling_restores_stock(self, client, db, admin_auth, place_order):
        order, product = place_order(quantity=3, stock=5)
        assert stock_of(db, product.id) == 2

        set_status(client, admin_auth, order["id"], "cancelled")
        assert stock_of(db, product.id) == 5

    def test_status_change_is_logged(self, client, db, admin, admin_auth, place_order):
        order, _ = place_order()
        set_status(client, admin_auth, order["id"], "processing", note="picked")

        log = db.query(ActivityLog).filter(ActivityLog.entity_id == order["id"]).one()
        assert log.action == "STATUS_UPDATE"
        assert log.performed_by == admin.id
        assert log.details == {"before": "pending", "after": "processing", "note": "picked"}

    def test_requires_admin(self, client, auth, place_order):
        order, _ = place_order()
        resp = client.put(f"/api/admin/orders/{order['id']}/status", json={"status": "processing"}, headers=auth)
        assert resp.status_code == 403


class TestCustomerOrders:
    def test_list_and_detail(self, client, auth, place_order):
        order, _ = place_order()
        listing = client.get("/api/orders", headers=auth).json()
        assert listing["total"] == 1
        assert listing["results"][0]["id"] == order["id"]

        detail = client.get(f"/api/orders/{order['id']}", headers=auth)
        assert detail.status_code == 200
        assert len(detail.json()["items"]) == 1

    def test_other_users_order_is_hidden(self, client, db, other_user, settings, place_order):
        order, _ = place_order()
        resp = client.get(f"/api/orders/{order['id']}", headers=headers_for(other_user, settings))
        assert resp.status_code == 404

    def test_orders_by_user_requires_self_or_admin(self, client, user, other_user, settings, admin_auth, place_order):
        place_order()
        resp = client.get(f"/api/orders/user/{user.id}", headers=headers_for(other_user, settings))
        assert resp.status_code == 403

        resp = client.get(f"/api/orders/user/{user.id}", headers=admin_auth)
        assert resp.status_code == 200
        assert resp.json()["total"] == 1

    def test_cancel_pending_order(self, client, db, auth, place_order):
        order, product = place_order(quantity=1, stock=3)
        resp = client.post(f"/api/orders/{order['id']}/cancel", headers=auth)
        assert resp.status_code == 200
        assert resp.json()["status"] == "cancelled"
        assert stock_of(db, product.id) == 3

    def test_cannot_cancel_processing_order(self, client, auth, admin_auth, place_order):
        order, _ = place_order()
        set_status(client, admin_auth, order["id"], "processing")
        resp = client.post(f"/api/orders/{order['id']}/cancel", headers=auth)
        assert resp.status_code == 409
