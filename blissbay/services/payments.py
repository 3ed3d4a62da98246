"""
Stripe payment attempts and their reconciliation into orders.

Order and Payment converge inside a single transaction on success. A
failed attempt never touches the order; it records the failed Payment and
fires a best-effort notification before surfacing the error.
"""

import logging
from datetime import datetime
from typing import Optional

from fastapi import status
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from blissbay.database import transaction
from blissbay.errors import AppError, BadRequest, Conflict, GatewayError, NotFound, PaymentFailed
from blissbay.gateway import to_cents
from blissbay.jobs import NOTIFICATION_MAX_ATTEMPTS, dispatch
from blissbay.models import (
    Order,
    OrderPaymentStatus,
    OrderStatus,
    Payment,
    PaymentMethod,
    PaymentStatus,
    PaymentStatusHistory,
    User,
)
from blissbay.services.audit import log_activity
from blissbay.tasks import NOTIFY_USER, PAYMENT_COMPLETED, PAYMENT_FAILED

logger = logging.getLogger(__name__)

SUCCEEDED = "succeeded"
FAILED_INTENT_STATUSES = {"canceled", "requires_payment_method"}
# the customer still has to act (3-D Secure) or the gateway is still working
PENDING_INTENT_STATUSES = {"requires_action", "requires_confirmation", "processing"}


# =====================================================
# HELPERS
# =====================================================

def _record_status_history(
    db: Session,
    payment: Payment,
    old_status: Optional[str],
    new_status: PaymentStatus,
    changed_by: Optional[str] = None,
    reason: Optional[str] = None,
) -> None:
    db.add(PaymentStatusHistory(
        payment_id=payment.id,
        old_status=old_status,
        new_status=new_status.value,
        changed_by=changed_by,
        reason=reason,
    ))


def _status_value(value) -> Optional[str]:
    if value is None:
        return None
    return value.value if hasattr(value, "value") else str(value)


def _get_or_create_payment(db: Session, order: Order, currency: str) -> Payment:
    payment = db.query(Payment).filter(Payment.order_id == order.id).first()
    if payment is None:
        payment = Payment(
            order_id=order.id,
            user_id=order.user_id,
            amount=order.total_amount,
            currency=currency,
            status=PaymentStatus.pending,
            meta={},
        )
        db.add(payment)
        db.flush()
    return payment


def _mark_paid(db: Session, order: Order, payment: Payment, intent_id: str, changed_by: Optional[str], reason: str) -> None:
    now = datetime.utcnow()
    old = _status_value(payment.status)

    payment.status = PaymentStatus.completed
    payment.transaction_id = intent_id
    payment.amount = order.total_amount
    payment.error_message = None
    _record_status_history(db, payment, old, PaymentStatus.completed, changed_by, reason)

    order.payment_status = OrderPaymentStatus.paid
    order.transaction_id = intent_id
    order.paid_at = now
    if order.status == OrderStatus.pending:
        order.status = OrderStatus.processing


# =====================================================
# PROCESS
# =====================================================

def process_payment(
    db: Session,
    user: User,
    order_id: str,
    payment_method_id: str,
    gateway,
    queue,
    currency: str = "usd",
) -> Payment:
    order = db.query(Order).filter(Order.id == order_id, Order.user_id == user.id).first()
    if not order:
        raise NotFound("Order not found")

    # all of these fail before the gateway is contacted
    if order.payment_status == OrderPaymentStatus.paid:
        raise Conflict("Order is already paid", reason="already_paid")
    if order.status == OrderStatus.cancelled:
        raise Conflict("Order has been cancelled", reason="order_cancelled")
    if order.payment_method == PaymentMethod.cod:
        raise BadRequest("Cash on delivery orders are paid on delivery", reason="cash_on_delivery")

    try:
        intent = gateway.create_payment_intent(
            to_cents(order.total_amount),
            currency,
            payment_method_id,
            metadata={"order_id": order.id, "user_id": user.id},
        )
    except GatewayError as exc:
        _handle_failure(db, order, payment_method_id, currency, None, str(exc), queue)
        raise PaymentFailed(str(exc), extra={"code": exc.code})

    if intent.get("status") in PENDING_INTENT_STATUSES:
        return _hold_pending(db, order, payment_method_id, currency, intent, user.id)

    if intent.get("status") != SUCCEEDED:
        message = f"Payment was not completed (status: {intent.get('status')})"
        _handle_failure(db, order, payment_method_id, currency, intent.get("id"), message, queue)
        raise PaymentFailed(message, extra={"code": intent.get("status")})

    with transaction(db):
        payment = _get_or_create_payment(db, order, currency)
        payment.payment_method_id = payment_method_id
        payment.meta = dict(payment.meta or {}, intent_id=intent["id"])
        _mark_paid(db, order, payment, intent["id"], user.id, "gateway_succeeded")

    dispatch(queue, PAYMENT_COMPLETED, {"order_id": order.id})
    logger.info("Payment completed | order=%s intent=%s amount=%.2f", order.id, intent["id"], order.total_amount)
    return payment


def _hold_pending(
    db: Session,
    order: Order,
    payment_method_id: str,
    currency: str,
    intent: dict,
    changed_by: str,
) -> Payment:
    """Keep the payment pending on an unfinished intent; reconcile settles it later."""
    with transaction(db):
        payment = _get_or_create_payment(db, order, currency)
        old = _status_value(payment.status)
        payment.status = PaymentStatus.pending
        payment.payment_method_id = payment_method_id
        payment.error_message = None
        payment.meta = dict(payment.meta or {}, intent_id=intent["id"], intent_status=intent["status"])
        if old != PaymentStatus.pending.value:
            _record_status_history(db, payment, old, PaymentStatus.pending, changed_by, intent["status"])

    logger.info("Payment awaiting %s | order=%s intent=%s", intent["status"], order.id, intent["id"])
    return payment


def _handle_failure(
    db: Session,
    order: Order,
    payment_method_id: str,
    currency: str,
    intent_id: Optional[str],
    message: str,
    queue,
) -> None:
    """Record the failed attempt and notify; never raises."""
    logger.warning("Payment failed | order=%s | %s", order.id, message)

    try:
        with transaction(db):
            payment = _get_or_create_payment(db, order, currency)
            old = _status_value(payment.status)
            payment.status = PaymentStatus.failed
            payment.payment_method_id = payment_method_id
            payment.error_message = message
            if intent_id:
                payment.meta = dict(payment.meta or {}, intent_id=intent_id)
            _record_status_history(db, payment, old, PaymentStatus.failed, order.user_id, message)
    except SQLAlchemyError:
        logger.exception("Could not record failed payment for order %s", order.id)

    try:
        dispatch(
            queue,
            PAYMENT_FAILED,
            {"user_id": order.user_id, "order_id": order.id, "error": message},
            max_attempts=NOTIFICATION_MAX_ATTEMPTS,
        )
    except Exception:
        logger.exception("Payment failure notification could not be sent for order %s", order.id)


# =====================================================
# REFUND
# =====================================================

def refund_payment(
    db: Session,
    payment_id: str,
    admin: User,
    gateway,
    queue,
    amount: Optional[float] = None,
    reason: Optional[str] = None,
) -> Payment:
    payment = db.query(Payment).filter(Payment.id == payment_id).first()
    if not payment:
        raise NotFound("Payment not found")
    if payment.status not in (PaymentStatus.completed, PaymentStatus.partially_refunded):
        raise Conflict("Only completed payments can be refunded", reason="not_refundable")

    already = payment.refund_amount or 0.0
    remaining = round(payment.amount - already, 2)
    amount = round(amount if amount is not None else remaining, 2)
    if amount <= 0 or amount > remaining:
        raise BadRequest(
            f"Refund amount must be between 0 and {remaining:.2f}",
            reason="invalid_refund_amount",
        )

    try:
        refund = gateway.refund(payment.transaction_id, to_cents(amount))
    except GatewayError as exc:
        raise AppError(str(exc), reason="gateway_error", status_code=status.HTTP_502_BAD_GATEWAY)

    with transaction(db):
        old = _status_value(payment.status)
        total_refunded = round(already + amount, 2)
        fully = total_refunded >= round(payment.amount, 2)
        new_status = PaymentStatus.refunded if fully else PaymentStatus.partially_refunded

        payment.status = new_status
        payment.refund_id = refund["id"]
        payment.refund_amount = total_refunded
        payment.refunded_at = datetime.utcnow()
        _record_status_history(db, payment, old, new_status, admin.id, reason)

        order = payment.order
        if fully:
            order.payment_status = OrderPaymentStatus.refunded
            order.transaction_id = None

        log_activity(
            db, "payment", payment.id, "REFUND", admin.id,
            {"amount": amount, "refund_id": refund["id"], "status": new_status.value, "reason": reason},
        )

    dispatch(
        queue,
        NOTIFY_USER,
        {
            "user_id": payment.user_id,
            "type": "payment_refunded",
            "title": "Refund issued",
            "message": f"A refund of {amount:.2f} has been issued.",
            "data": {"order_id": payment.order_id, "payment_id": payment.id},
        },
        max_attempts=NOTIFICATION_MAX_ATTEMPTS,
    )
    return payment


# =====================================================
# RECONCILE
# =====================================================

def reconcile_payment(db: Session, payment_id: str, admin: User, gateway, queue) -> Payment:
    """Pull the intent from the gateway and converge the local records with it."""
    payment = db.query(Payment).filter(Payment.id == payment_id).first()
    if not payment:
        raise NotFound("Payment not found")

    intent_id = payment.transaction_id or (payment.meta or {}).get("intent_id")
    if not intent_id:
        raise Conflict("Payment has no gateway reference to reconcile", reason="nothing_to_reconcile")

    try:
        intent = gateway.retrieve(intent_id)
    except GatewayError as exc:
        raise AppError(str(exc), reason="gateway_error", status_code=status.HTTP_502_BAD_GATEWAY)

    remote = intent.get("status")
    became_paid = False

    with transaction(db):
        order = payment.order
        if remote == SUCCEEDED and payment.status in (PaymentStatus.pending, PaymentStatus.failed):
            _mark_paid(db, order, payment, intent_id, admin.id, "reconciled")
            became_paid = True
        elif remote in FAILED_INTENT_STATUSES and payment.status == PaymentStatus.pending:
            old = _status_value(payment.status)
            payment.status = PaymentStatus.failed
            payment.error_message = f"Gateway reports {remote}"
            _record_status_history(db, payment, old, PaymentStatus.failed, admin.id, "reconciled")

        log_activity(
            db, "payment", payment.id, "RECONCILE", admin.id,
            {"remote_status": remote, "local_status": _status_value(payment.status)},
        )

    if became_paid:
        dispatch(queue, PAYMENT_COMPLETED, {"order_id": payment.order_id})
    return payment


# =====================================================
# QUERIES & SERIALIZATION
# =====================================================

def payment_history(db: Session, user_id: str, page: int = 1, per_page: int = 20):
    query = db.query(Payment).filter(Payment.user_id == user_id)
    total = query.count()
    payments = (
        query.order_by(Payment.created_at.desc())
        .offset((page - 1) * per_page)
        .limit(per_page)
        .all()
    )
    return payments, total


def serialize_payment(payment: Payment, include_history: bool = False) -> dict:
    data = {
        "id": payment.id,
        "order_id": payment.order_id,
        "user_id": payment.user_id,
        "amount": payment.amount,
        "currency": payment.currency,
        "status": payment.status,
        "transaction_id": payment.transaction_id,
        "error_message": payment.error_message,
        "refund_id": payment.refund_id,
        "refund_amount": payment.refund_amount,
        "refunded_at": payment.refunded_at,
        "created_at": payment.created_at,
        "updated_at": payment.updated_at,
    }
    if include_history:
        data["history"] = [
            {
                "old_status": h.old_status,
                "new_status": h.new_status,
                "changed_by": h.changed_by,
                "reason": h.reason,
                "created_at": h.created_at,
            }
            for h in payment.history
        ]
    return data
