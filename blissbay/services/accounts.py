import hashlib
import logging
import secrets
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy.orm import Session

from blissbay.config import Settings
from blissbay.database import transaction
from blissbay.errors import BadRequest, Conflict
from blissbay.jobs import dispatch
from blissbay.models import (
    Comment,
    Notification,
    Order,
    PasswordResetToken,
    Review,
    User,
    UserRole,
)
from blissbay.security import hash_password, verify_password
from blissbay.services.audit import log_activity
from blissbay.services.cart import clear_cart, get_cart
from blissbay.services.reviews import recompute_product_rating
from blissbay.services.wishlist import get_wishlist
from blissbay.tasks import SEND_EMAIL

logger = logging.getLogger(__name__)


def normalize_email(email: str) -> str:
    return email.strip().lower()


def register_user(
    db: Session,
    name: str,
    email: str,
    password: str,
    phone: Optional[str] = None,
    role: UserRole = UserRole.user,
) -> User:
    email = normalize_email(email)
    with transaction(db):
        if db.query(User.id).filter(User.email == email).first():
            raise Conflict("Email already registered", reason="email_taken")

        user = User(
            name=name.strip(),
            email=email,
            hashed_password=hash_password(password),
            phone=phone,
            role=role,
            is_active=True,
        )
        db.add(user)
    logger.info("User registered | id=%s role=%s", user.id, role.value)
    return user


def authenticate(db: Session, email: str, password: str) -> Optional[User]:
    user = db.query(User).filter(User.email == normalize_email(email)).first()
    if not user or not verify_password(password, user.hashed_password):
        return None
    return user


def ensure_admin_exists(db: Session, settings: Settings) -> None:
    if not settings.ADMIN_EMAIL or not settings.ADMIN_PASSWORD:
        return

    email = normalize_email(settings.ADMIN_EMAIL)
    admin = db.query(User).filter(User.email == email).first()
    if admin:
        if admin.role != UserRole.admin:
            with transaction(db):
                admin.role = UserRole.admin
            logger.info("Promoted existing user %s to admin", email)
        return

    register_user(db, "Administrator", email, settings.ADMIN_PASSWORD, role=UserRole.admin)
    logger.info("Bootstrap admin created: %s", email)


# =====================================================
# PASSWORDS
# =====================================================

def _hash_token(raw: str) -> str:
    return hashlib.sha256(raw.encode("utf-8")).hexdigest()


def change_password(db: Session, user: User, current_password: str, new_password: str) -> None:
    if not verify_password(current_password, user.hashed_password):
        raise BadRequest("Current password is incorrect", reason="incorrect_password")
    if verify_password(new_password, user.hashed_password):
        raise BadRequest("New password cannot be the same as the current password", reason="password_unchanged")

    with transaction(db):
        user.hashed_password = hash_password(new_password)
        log_activity(db, "user", user.id, "PASSWORD_CHANGE", user.id)
    logger.info("Password changed | user=%s", user.id)


def request_password_reset(db: Session, email: str, settings: Settings, queue) -> None:
    """
    Issue a single-use reset link by email.

    Unknown or disabled accounts get the same silent success so the endpoint
    does not reveal which emails are registered.
    """
    user = db.query(User).filter(User.email == normalize_email(email)).first()
    if not user or not user.is_active:
        logger.info("Password reset requested for unknown or disabled account")
        return

    raw = secrets.token_urlsafe(32)
    with transaction(db):
        # a new link supersedes any earlier unused one
        db.query(PasswordResetToken).filter(
            PasswordResetToken.user_id == user.id,
            PasswordResetToken.used_at.is_(None),
        ).delete(synchronize_session=False)
        db.add(PasswordResetToken(
            user_id=user.id,
            token_hash=_hash_token(raw),
            expires_at=datetime.utcnow() + timedelta(minutes=settings.PASSWORD_RESET_MINUTES),
        ))

    link = f"{settings.FRONTEND_URL.rstrip('/')}/reset-password/{raw}"
    dispatch(queue, SEND_EMAIL, {
        "to": user.email,
        "subject": "Reset your BlissBay password",
        "html": (
            f"<p>Hi {user.name},</p>"
            f'<p><a href="{link}">Choose a new password</a>. '
            f"The link expires in {settings.PASSWORD_RESET_MINUTES} minutes.</p>"
            "<p>If you did not ask for this, you can ignore this email.</p>"
        ),
    })
    logger.info("Password reset issued | user=%s", user.id)


def reset_password(db: Session, token: str, new_password: str) -> User:
    with transaction(db):
        record = (
            db.query(PasswordResetToken)
            .filter(PasswordResetToken.token_hash == _hash_token(token))
            .first()
        )
        if not record or record.used_at is not None or record.expires_at < datetime.utcnow():
            raise BadRequest("Invalid or expired reset token", reason="invalid_reset_token")

        user = db.query(User).filter(User.id == record.user_id).first()
        if not user or not user.is_active:
            raise BadRequest("Invalid or expired reset token", reason="invalid_reset_token")

        user.hashed_password = hash_password(new_password)
        record.used_at = datetime.utcnow()
        log_activity(db, "user", user.id, "PASSWORD_RESET", user.id)

    logger.info("Password reset completed | user=%s", user.id)
    return user


# =====================================================
# ACCOUNT DELETION
# =====================================================

def delete_account(db: Session, user: User, password: str) -> str:
    """
    Remove the user's account and personal data. Returns ``"deleted"`` or,
    when orders reference the account, ``"anonymized"``: order and payment
    history is kept against a scrubbed, disabled user row.
    """
    if not verify_password(password, user.hashed_password):
        raise BadRequest("Incorrect password", reason="incorrect_password")
    user_id = user.id

    # gives reserved stock back first
    clear_cart(db, user_id)

    with transaction(db):
        cart = get_cart(db, user_id)
        if cart is not None:
            db.delete(cart)
        wishlist = get_wishlist(db, user_id)
        if wishlist is not None:
            db.delete(wishlist)

        for address in list(user.addresses):
            db.delete(address)

        reviews = db.query(Review).filter(Review.user_id == user_id).all()
        product_ids = {review.product_id for review in reviews}
        for review in reviews:
            db.delete(review)
        db.flush()
        for product_id in product_ids:
            recompute_product_rating(db, product_id)

        db.query(Comment).filter(Comment.user_id == user_id).delete(synchronize_session=False)
        db.query(Notification).filter(Notification.user_id == user_id).delete(synchronize_session=False)
        db.query(PasswordResetToken).filter(PasswordResetToken.user_id == user_id).delete(synchronize_session=False)

        has_orders = db.query(Order.id).filter(Order.user_id == user_id).first() is not None
        if has_orders:
            user.name = "Deleted user"
            user.email = f"deleted+{user_id}@blissbay.invalid"
            user.phone = None
            user.avatar_url = None
            user.is_active = False
            user.hashed_password = hash_password(secrets.token_urlsafe(32))
            mode = "anonymized"
        else:
            db.delete(user)
            mode = "deleted"

        log_activity(db, "user", user_id, "DELETE_ACCOUNT", None, {"mode": mode})

    logger.info("Account removed | user=%s mode=%s", user_id, mode)
    return mode


def serialize_user(user: User) -> dict:
    return {
        "id": user.id,
        "name": user.name,
        "email": user.email,
        "phone": user.phone,
        "avatar_url": user.avatar_url,
        "role": user.role,
        "is_active": user.is_active,
        "created_at": user.created_at,
    }
