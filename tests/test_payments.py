import pytest

from blissbay.models import Order, OrderPaymentStatus, OrderStatus, Payment, PaymentStatus
from tests.factories import card_declined, headers_for, make_product


@pytest.fixture()
def order(client, db, auth, address_payload):
    product = make_product(db, price=40.0, stock=10)
    client.post("/api/carts/add", json={"productId": product.id, "quantity": 2}, headers=auth)
    resp = client.post(
        "/api/carts/checkout",
        json={"paymentMethod": "credit_card", "shippingAddress": address_payload},
        headers=auth,
    )
    return resp.json()


def pay(client, auth, order_id, method="pm_card_visa"):
    return client.post("/api/payments/process", json={"orderId": order_id, "paymentMethodId": method}, headers=auth)


def load_order(db, order_id):
    db.expire_all()
    return db.get(Order, order_id)


class TestProcessPayment:
    def test_success_marks_order_paid(self, client, db, auth, gateway, queue, order):
        resp = pay(client, auth, order["id"])
        assert resp.status_code == 200
        payment = resp.json()["payment"]
        assert payment["status"] == "completed"
        assert payment["amount"] == 80.0
        assert payment["transaction_id"] == "pi_test_1"

        assert gateway.intents[0]["amount"] == 8000
        assert gateway.intents[0]["metadata"]["order_id"] == order["id"]

        stored = load_order(db, order["id"])
        assert stored.payment_status == OrderPaymentStatus.paid
        assert stored.transaction_id == "pi_test_1"
        assert stored.status == OrderStatus.processing
        assert stored.paid_at is not None
        assert "payment_completed" in queue.names()

    def test_already_paid_fails_fast(self, client, auth, gateway, order):
        pay(client, auth, order["id"])
        resp = pay(client, auth, order["id"])
        assert resp.status_code == 409
        assert resp.json()["reason"] == "already_paid"
        assert len(gateway.intents) == 1

    def test_declined_card_leaves_order_untouched(self, client, db, auth, gateway, queue, order):
        gateway.error = card_declined()
        resp = pay(client, auth, order["id"])
        assert resp.status_code == 402
        body = resp.json()
        assert body["reason"] == "payment_failed"
        assert body["code"] == "card_declined"

        stored = load_order(db, order["id"])
        assert stored.payment_status == OrderPaymentStatus.pending
        assert stored.status == OrderStatus.pending
        assert stored.transaction_id is None

        payment = db.query(Payment).filter(Payment.order_id == order["id"]).one()
        assert payment.status == PaymentStatus.failed
        assert payment.error_message == "Your card was declined."

        failed_jobs = [job for job in queue.jobs if job["name"] == "payment_failed"]
        assert len(failed_jobs) == 1
        assert failed_jobs[0]["max_attempts"] == 3
        assert failed_jobs[0]["payload"]["order_id"] == order["id"]

    def test_intent_needing_action_stays_pending(self, client, db, auth, gateway, queue, order):
        gateway.next_status = "requires_action"
        resp = pay(client, auth, order["id"])
        assert resp.status_code == 202
        body = resp.json()
        assert body["requires_action"] is True
        assert body["intent_id"] == "pi_test_1"
        assert body["payment"]["status"] == "pending"
        assert body["payment"]["error_message"] is None

        stored = load_order(db, order["id"])
        assert stored.payment_status == OrderPaymentStatus.pending
        assert stored.transaction_id is None
        assert "payment_failed" not in queue.names()

    def test_cancelled_intent_is_a_failure(self, client, db, auth, gateway, order):
        gateway.next_status = "canceled"
        resp = pay(client, auth, order["id"])
        assert resp.status_code == 402
        assert resp.json()["code"] == "canceled"
        db.expire_all()
        assert db.query(Payment).filter(Payment.order_id == order["id"]).one().status == PaymentStatus.failed

    def test_retry_after_failure_succeeds(self, client, db, auth, gateway, order):
        gateway.error = card_declined()
        pay(client, auth, order["id"])
        gateway.error = None

        resp = pay(client, auth, order["id"], method="pm_card_mastercard")
        assert resp.status_code == 200
        assert db.query(Payment).filter(Payment.order_id == order["id"]).count() == 1

    def test_cash_on_delivery_is_rejected(self, client, db, auth, address_payload):
        product = make_product(db, stock=3)
        client.post("/api/carts/add", json={"productId": product.id, "quantity": 1}, headers=auth)
        cod = client.post(
            "/api/carts/checkout",
            json={"paymentMethod": "cod", "shippingAddress": address_payload},
            headers=auth,
        ).json()

        resp = pay(client, auth, cod["id"])
        assert resp.status_code == 400
        assert resp.json()["reason"] == "cash_on_delivery"

    def test_cancelled_order_cannot_be_paid(self, client, auth, gateway, order):
        client.post(f"/api/orders/{order['id']}/cancel", headers=auth)
        resp = pay(client, auth, order["id"])
        assert resp.status_code == 409
        assert resp.json()["reason"] == "order_cancelled"
        assert gateway.intents == []

    def test_someone_elses_order(self, client, other_user, settings, order):
        resp = pay(client, headers_for(other_user, settings), order["id"])
        assert resp.status_code == 404

    def test_history_lists_own_payments(self, client, auth, order):
        pay(client, auth, order["id"])
        history = client.get("/api/payments/history", headers=auth).json()
        assert history["total"] == 1

        payment_id = history["results"][0]["id"]
        detail = client.get(f"/api/payments/{payment_id}", headers=auth).json()
        assert [h["new_status"] for h in detail["history"]] == ["completed"]


class TestRefund:
    def _paid(self, client, auth, order):
        return pay(client, auth, order["id"]).json()["payment"]

    def test_full_refund(self, client, db, auth, admin_auth, gateway, order):
        payment = self._paid(client, auth, order)
        resp = client.post(f"/api/admin/payments/{payment['id']}/refund", json={}, headers=admin_auth)
        assert resp.status_code == 200
        assert resp.json()["status"] == "refunded"
        assert gateway.refunds[0]["amount"] == 8000

        stored = load_order(db, order["id"])
        assert stored.payment_status == OrderPaymentStatus.refunded
        assert stored.transaction_id is None

    def test_partial_refunds_accumulate(self, client, db, auth, admin_auth, order):
        payment = self._paid(client, auth, order)
        url = f"/api/admin/payments/{payment['id']}/refund"

        first = client.post(url, json={"amount": 30}, headers=admin_auth).json()
        assert first["status"] == "partially_refunded"
        assert first["refund_amount"] == 30.0
        assert load_order(db, order["id"]).payment_status == OrderPaymentStatus.paid

        resp = client.post(url, json={"amount": 60}, headers=admin_auth)
        assert resp.status_code == 400
        assert resp.json()["reason"] == "invalid_refund_amount"

        second = client.post(url, json={"amount": 50}, headers=admin_auth).json()
        assert second["status"] == "refunded"

    def test_failed_payment_is_not_refundable(self, client, auth, admin_auth, gateway, order):
        gateway.error = card_declined()
        pay(client, auth, order["id"])
        payment_id = client.get("/api/payments/history", headers=auth).json()["results"][0]["id"]

        resp = client.post(f"/api/admin/payments/{payment_id}/refund", json={}, headers=admin_auth)
        assert resp.status_code == 409
        assert resp.json()["reason"] == "not_refundable"


class TestReconcile:
    def test_pending_payment_converges_when_gateway_succeeded(self, client, db, auth, admin_auth, gateway, order):
        gateway.next_status = "processing"
        pay(client, auth, order["id"])
        payment_id = client.get("/api/payments/history", headers=auth).json()["results"][0]["id"]

        gateway.remote_status = "succeeded"
        resp = client.post(f"/api/admin/payments/{payment_id}/reconcile", headers=admin_auth)
        assert resp.status_code == 200
        assert resp.json()["status"] == "completed"

        stored = load_order(db, order["id"])
        assert stored.payment_status == OrderPaymentStatus.paid
        assert stored.transaction_id == "pi_test_1"

    def test_payment_without_reference(self, client, auth, admin_auth, gateway, order):
        gateway.error = card_declined()
        pay(client, auth, order["id"])
        payment_id = client.get("/api/payments/history", headers=auth).json()["results"][0]["id"]

        resp = client.post(f"/api/admin/payments/{payment_id}/reconcile", headers=admin_auth)
        assert resp.status_code == 409
        assert resp.json()["reason"] == "nothing_to_reconcile"
