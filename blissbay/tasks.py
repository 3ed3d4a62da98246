"""Job handlers: emails and in-app notifications triggered by state changes."""

import logging
from typing import Callable, Dict

from blissbay.database import Database, transaction
from blissbay.models import Notification, Order, User
from blissbay.utils.email import MailgunClient

logger = logging.getLogger(__name__)

SEND_EMAIL = "send_email"
NOTIFY_USER = "notify_user"
ORDER_SHIPPED = "order_shipped"
PAYMENT_COMPLETED = "payment_completed"
PAYMENT_FAILED = "payment_failed"


class RetryableEmailError(RuntimeError):
    pass


def build_handlers(database: Database, mailer: MailgunClient) -> Dict[str, Callable[[dict], None]]:

    def _create_notification(
        user_id: str, type_: str, title: str, message: str, data: dict, once_per_order: bool = False,
    ) -> None:
        db = database.session()
        try:
            with transaction(db):
                # a retried job must not notify twice about the same order
                if once_per_order and _already_notified(db, user_id, type_, data.get("order_id")):
                    logger.info("%s for order %s already recorded", type_, data.get("order_id"))
                    return
                db.add(Notification(
                    user_id=user_id,
                    type=type_,
                    title=title,
                    message=message,
                    data=data,
                ))
        finally:
            db.close()

    def _already_notified(db, user_id: str, type_: str, order_id: str) -> bool:
        existing = db.query(Notification).filter(
            Notification.user_id == user_id,
            Notification.type == type_,
        )
        return any((note.data or {}).get("order_id") == order_id for note in existing)

    def _send(to: str, subject: str, html: str) -> None:
        if not mailer.enabled:
            logger.info("Email delivery disabled, skipping '%s' to %s", subject, to)
            return
        if not mailer.send_email(to, subject, html):
            raise RetryableEmailError(f"Email '{subject}' to {to} was not accepted")

    def _load_order(order_id: str):
        db = database.session()
        try:
            order = db.query(Order).filter(Order.id == order_id).first()
            if not order:
                return None, None
            user = db.query(User).filter(User.id == order.user_id).first()
            return order, user
        finally:
            db.close()

    def send_email(payload: dict) -> None:
        _send(payload["to"], payload["subject"], payload["html"])

    def notify_user(payload: dict) -> None:
        _create_notification(
            payload["user_id"],
            payload.get("type", "general"),
            payload["title"],
            payload.get("message", ""),
            payload.get("data") or {},
        )

    def order_shipped(payload: dict) -> None:
        order, user = _load_order(payload["order_id"])
        if not order:
            logger.warning("order_shipped: order %s no longer exists", payload["order_id"])
            return

        short_id = order.id[:8]
        _create_notification(
            user.id,
            "order_shipped",
            "Your order is on its way",
            f"Order #{short_id} has been shipped.",
            {"order_id": order.id},
            once_per_order=True,
        )
        _send(
            user.email,
            f"Order #{short_id} shipped",
            f"<p>Hi {user.name},</p><p>Your order <b>#{short_id}</b> has been shipped.</p>",
        )

    def payment_completed(payload: dict) -> None:
        order, user = _load_order(payload["order_id"])
        if not order:
            logger.warning("payment_completed: order %s no longer exists", payload["order_id"])
            return

        short_id = order.id[:8]
        _create_notification(
            user.id,
            "payment_completed",
            "Payment received",
            f"We received {order.total_amount:.2f} for order #{short_id}.",
            {"order_id": order.id, "transaction_id": order.transaction_id},
            once_per_order=True,
        )
        _send(
            user.email,
            f"Payment confirmation for order #{short_id}",
            (
                f"<p>Hi {user.name},</p>"
                f"<p>Your payment of <b>{order.total_amount:.2f}</b> for order "
                f"<b>#{short_id}</b> was successful.</p>"
            ),
        )

    def payment_failed(payload: dict) -> None:
        _create_notification(
            payload["user_id"],
            "payment_failed",
            "Payment failed",
            payload.get("error") or "Your payment could not be processed.",
            {"order_id": payload.get("order_id")},
        )

    return {
        SEND_EMAIL: send_email,
        NOTIFY_USER: notify_user,
        ORDER_SHIPPED: order_shipped,
        PAYMENT_COMPLETED: payment_completed,
        PAYMENT_FAILED: payment_failed,
    }
