import enum
import uuid
from datetime import datetime

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    Enum,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship

from blissbay.database import Base


def _uuid() -> str:
    return str(uuid.uuid4())


# =========================
# ENUMS
# =========================

class UserRole(str, enum.Enum):
    user = "user"
    admin = "admin"


class OrderStatus(str, enum.Enum):
    pending = "pending"
    processing = "processing"
    shipped = "shipped"
    delivered = "delivered"
    cancelled = "cancelled"


class OrderPaymentStatus(str, enum.Enum):
    pending = "pending"
    paid = "paid"
    failed = "failed"
    refunded = "refunded"


class PaymentMethod(str, enum.Enum):
    credit_card = "credit_card"
    paypal = "paypal"
    cod = "cod"


class PaymentStatus(str, enum.Enum):
    pending = "pending"
    completed = "completed"
    failed = "failed"
    refunded = "refunded"
    partially_refunded = "partially_refunded"


class DiscountType(str, enum.Enum):
    percentage = "percentage"
    fixed = "fixed"


class CouponStatus(str, enum.Enum):
    active = "active"
    inactive = "inactive"
    expired = "expired"


class ReviewStatus(str, enum.Enum):
    active = "active"
    inactive = "inactive"
    flagged = "flagged"


# =========================
# USER
# =========================

class User(Base):
    __tablename__ = "users"

    id = Column(String(36), primary_key=True, default=_uuid)

    name = Column(String(100), nullable=False)
    email = Column(String, nullable=False, unique=True, index=True)
    hashed_password = Column(String, nullable=False)
    phone = Column(String)
    avatar_url = Column(String)

    role = Column(Enum(UserRole, name="user_role"), default=UserRole.user, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    orders = relationship("Order", back_populates="user")
    addresses = relationship("Address", back_populates="user", cascade="all, delete-orphan")


class PasswordResetToken(Base):
    __tablename__ = "password_reset_tokens"

    id = Column(String(36), primary_key=True, default=_uuid)
    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)

    # sha256 of the emailed token; the raw value is never stored
    token_hash = Column(String(64), nullable=False, unique=True)
    expires_at = Column(DateTime, nullable=False)
    used_at = Column(DateTime)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)


# =========================
# CATEGORY
# =========================

class Category(Base):
    __tablename__ = "categories"

    id = Column(String(36), primary_key=True, default=_uuid)

    name = Column(String(50), nullable=False, unique=True)
    slug = Column(String(60), nullable=False, unique=True, index=True)
    description = Column(Text)
    image_url = Column(String)

    parent_id = Column(String(36), ForeignKey("categories.id", ondelete="SET NULL"), index=True)
    # [{id, name, slug}] root first, denormalized for breadcrumb lookups
    ancestors = Column(JSON, default=list, nullable=False)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    parent = relationship("Category", remote_side=[id], backref="children")
    products = relationship("Product", back_populates="category")


# =========================
# PRODUCT
# =========================

PRODUCT_FLAGS = (
    "is_featured",
    "is_popular",
    "is_new_arrival",
    "is_best_seller",
    "is_trending",
    "is_hot_deal",
    "is_limited_offer",
    "is_flash_sale",
    "is_back_in_stock",
    "is_exclusive",
    "is_coupon",
    "is_low_stock",
    "is_free_shipping",
)


class Product(Base):
    __tablename__ = "products"
    __table_args__ = (
        CheckConstraint("stock >= 0", name="ck_products_stock_non_negative"),
    )

    id = Column(String(36), primary_key=True, default=_uuid)

    name = Column(String(200), nullable=False)
    description = Column(Text)
    brand = Column(String, index=True)

    price = Column(Float, nullable=False)
    discounted_price = Column(Float)
    stock = Column(Integer, default=0, nullable=False)

    category_id = Column(String(36), ForeignKey("categories.id"), index=True)
    image_url = Column(String)

    rating = Column(Float, default=0)
    rating_count = Column(Integer, default=0)

    is_featured = Column(Boolean, default=False, nullable=False)
    is_popular = Column(Boolean, default=False, nullable=False)
    is_new_arrival = Column(Boolean, default=False, nullable=False)
    is_best_seller = Column(Boolean, default=False, nullable=False)
    is_trending = Column(Boolean, default=False, nullable=False)
    is_hot_deal = Column(Boolean, default=False, nullable=False)
    is_limited_offer = Column(Boolean, default=False, nullable=False)
    is_flash_sale = Column(Boolean, default=False, nullable=False)
    is_back_in_stock = Column(Boolean, default=False, nullable=False)
    is_exclusive = Column(Boolean, default=False, nullable=False)
    is_coupon = Column(Boolean, default=False, nullable=False)
    is_low_stock = Column(Boolean, default=False, nullable=False)
    is_free_shipping = Column(Boolean, default=False, nullable=False)

    is_deleted = Column(Boolean, default=False, nullable=False)
    deleted_at = Column(DateTime)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    category = relationship("Category", back_populates="products")

    @property
    def effective_price(self) -> float:
        if self.discounted_price is not None and self.discounted_price < self.price:
            return self.discounted_price
        return self.price


Index("idx_products_price", Product.price)
Index("idx_products_created_at", Product.created_at)


# =========================
# CART
# =========================

class Cart(Base):
    __tablename__ = "carts"

    id = Column(String(36), primary_key=True, default=_uuid)
    user_id = Column(
        String(36),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        unique=True,
    )

    total_amount = Column(Float, default=0, nullable=False)
    reserved_until = Column(DateTime)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    items = relationship(
        "CartItem",
        back_populates="cart",
        cascade="all, delete-orphan",
        order_by="CartItem.created_at",
    )


class CartItem(Base):
    __tablename__ = "cart_items"
    __table_args__ = (
        UniqueConstraint("cart_id", "product_id", name="uq_cart_items_cart_product"),
        CheckConstraint("quantity >= 1", name="ck_cart_items_quantity_positive"),
    )

    id = Column(String(36), primary_key=True, default=_uuid)
    cart_id = Column(String(36), ForeignKey("carts.id", ondelete="CASCADE"), nullable=False, index=True)
    product_id = Column(String(36), ForeignKey("products.id", ondelete="CASCADE"), nullable=False, index=True)

    quantity = Column(Integer, nullable=False, default=1)
    price = Column(Float, nullable=False)
    # True while the line's quantity is held out of Product.stock
    reserved = Column(Boolean, default=True, nullable=False)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    cart = relationship("Cart", back_populates="items")
    product = relationship("Product")


# =========================
# ADDRESS
# =========================

class Address(Base):
    __tablename__ = "addresses"

    id = Column(String(36), primary_key=True, default=_uuid)
    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)

    full_name = Column(String)
    phone = Column(String)
    street = Column(String, nullable=False)
    city = Column(String, nullable=False)
    state = Column(String, nullable=False)
    postal_code = Column(String)
    country = Column(String, nullable=False)

    is_default = Column(Boolean, default=False, nullable=False)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    user = relationship("User", back_populates="addresses")


# =========================
# ORDER
# =========================

class Order(Base):
    __tablename__ = "orders"
    __table_args__ = (
        CheckConstraint(
            "(payment_status = 'paid' AND transaction_id IS NOT NULL)"
            " OR (payment_status <> 'paid' AND transaction_id IS NULL)",
            name="ck_orders_transaction_id_iff_paid",
        ),
    )

    id = Column(String(36), primary_key=True, default=_uuid)
    user_id = Column(String(36), ForeignKey("users.id", ondelete="RESTRICT"), nullable=False, index=True)

    subtotal = Column(Float, nullable=False)
    discount_amount = Column(Float, default=0, nullable=False)
    total_amount = Column(Float, nullable=False)
    coupon_code = Column(String)

    status = Column(
        Enum(OrderStatus, name="order_status"),
        default=OrderStatus.pending,
        nullable=False,
    )
    payment_status = Column(
        Enum(OrderPaymentStatus, name="order_payment_status"),
        default=OrderPaymentStatus.pending,
        nullable=False,
    )
    payment_method = Column(Enum(PaymentMethod, name="payment_method"), nullable=False)
    transaction_id = Column(String)

    shipping_address = Column(JSON, nullable=False)
    notes = Column(Text)

    estimated_delivery = Column(DateTime)
    paid_at = Column(DateTime)
    shipped_at = Column(DateTime)
    delivered_at = Column(DateTime)
    cancelled_at = Column(DateTime)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    user = relationship("User", back_populates="orders")
    items = relationship("OrderItem", back_populates="order", cascade="all, delete-orphan")
    payment = relationship("Payment", back_populates="order", uselist=False)


Index("idx_orders_status", Order.status)
Index("idx_orders_created_at", Order.created_at)


class OrderItem(Base):
    __tablename__ = "order_items"

    id = Column(String(36), primary_key=True, default=_uuid)
    order_id = Column(String(36), ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True)
    # no FK: the snapshot outlives hard-deleted products
    product_id = Column(String(36), nullable=False, index=True)

    name_snapshot = Column(String, nullable=False)
    category_snapshot = Column(String)
    image_snapshot = Column(String)

    price = Column(Float, nullable=False)
    quantity = Column(Integer, nullable=False)
    subtotal = Column(Float, nullable=False)

    order = relationship("Order", back_populates="items")


# =========================
# PAYMENT
# =========================

class Payment(Base):
    __tablename__ = "payments"

    id = Column(String(36), primary_key=True, default=_uuid)
    order_id = Column(String(36), ForeignKey("orders.id", ondelete="RESTRICT"), nullable=False, unique=True)
    user_id = Column(String(36), ForeignKey("users.id"), nullable=False, index=True)

    amount = Column(Float, nullable=False)
    currency = Column(String(3), default="usd", nullable=False)
    status = Column(
        Enum(PaymentStatus, name="payment_status"),
        default=PaymentStatus.pending,
        nullable=False,
    )
    payment_method_id = Column(String)
    transaction_id = Column(String, index=True)
    error_message = Column(Text)

    refund_id = Column(String)
    refund_amount = Column(Float)
    refunded_at = Column(DateTime)

    meta = Column("metadata", JSON, default=dict)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    order = relationship("Order", back_populates="payment")
    history = relationship(
        "PaymentStatusHistory",
        back_populates="payment",
        cascade="all, delete-orphan",
        order_by="PaymentStatusHistory.created_at",
    )


class PaymentStatusHistory(Base):
    __tablename__ = "payment_status_history"

    id = Column(String(36), primary_key=True, default=_uuid)
    payment_id = Column(String(36), ForeignKey("payments.id", ondelete="CASCADE"), nullable=False, index=True)

    old_status = Column(String)
    new_status = Column(String, nullable=False)
    changed_by = Column(String(36))
    reason = Column(Text)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    payment = relationship("Payment", back_populates="history")


# =========================
# COUPON
# =========================

class Coupon(Base):
    __tablename__ = "coupons"
    __table_args__ = (
        CheckConstraint("used_count >= 0", name="ck_coupons_used_count"),
    )

    id = Column(String(36), primary_key=True, default=_uuid)
    code = Column(String(50), nullable=False, unique=True, index=True)
    description = Column(Text)

    discount_type = Column(Enum(DiscountType, name="discount_type"), nullable=False)
    discount_value = Column(Float, nullable=False)
    min_order_amount = Column(Float, default=0, nullable=False)
    max_discount_amount = Column(Float)

    starts_at = Column(DateTime)
    expiry_date = Column(DateTime)

    usage_limit = Column(Integer)
    used_count = Column(Integer, default=0, nullable=False)
    per_user_limit = Column(Integer)

    applicable_products = Column(JSON, default=list, nullable=False)
    applicable_categories = Column(JSON, default=list, nullable=False)

    status = Column(Enum(CouponStatus, name="coupon_status"), default=CouponStatus.active, nullable=False)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)


class CouponUsage(Base):
    __tablename__ = "coupon_usages"

    id = Column(String(36), primary_key=True, default=_uuid)
    coupon_id = Column(String(36), ForeignKey("coupons.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    order_id = Column(String(36), ForeignKey("orders.id", ondelete="SET NULL"))
    discount_amount = Column(Float, nullable=False)

    used_at = Column(DateTime, default=datetime.utcnow, nullable=False)


# =========================
# WISHLIST
# =========================

class Wishlist(Base):
    __tablename__ = "wishlists"

    id = Column(String(36), primary_key=True, default=_uuid)
    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, unique=True)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    items = relationship(
        "WishlistItem",
        back_populates="wishlist",
        cascade="all, delete-orphan",
        order_by="WishlistItem.added_at",
    )


class WishlistItem(Base):
    __tablename__ = "wishlist_items"
    __table_args__ = (
        UniqueConstraint("wishlist_id", "product_id", name="uq_wishlist_items_product"),
    )

    id = Column(String(36), primary_key=True, default=_uuid)
    wishlist_id = Column(String(36), ForeignKey("wishlists.id", ondelete="CASCADE"), nullable=False, index=True)
    product_id = Column(String(36), ForeignKey("products.id", ondelete="CASCADE"), nullable=False)

    is_deleted = Column(Boolean, default=False, nullable=False)
    deleted_at = Column(DateTime)

    added_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    wishlist = relationship("Wishlist", back_populates="items")
    product = relationship("Product")


# =========================
# REVIEWS & COMMENTS
# =========================

class Review(Base):
    __tablename__ = "reviews"
    __table_args__ = (
        UniqueConstraint("user_id", "product_id", name="uq_reviews_user_product"),
        CheckConstraint("rating >= 1 AND rating <= 5", name="ck_reviews_rating_range"),
    )

    id = Column(String(36), primary_key=True, default=_uuid)
    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    product_id = Column(String(36), ForeignKey("products.id", ondelete="CASCADE"), nullable=False, index=True)

    rating = Column(Integer, nullable=False)
    comment = Column(Text)
    status = Column(Enum(ReviewStatus, name="review_status"), default=ReviewStatus.active, nullable=False)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    user = relationship("User")
    comments = relationship("Comment", back_populates="review", cascade="all, delete-orphan")


class Comment(Base):
    __tablename__ = "comments"

    id = Column(String(36), primary_key=True, default=_uuid)
    review_id = Column(String(36), ForeignKey("reviews.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    parent_comment_id = Column(String(36), ForeignKey("comments.id", ondelete="CASCADE"))

    content = Column(Text, nullable=False)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    review = relationship("Review", back_populates="comments")
    user = relationship("User")


# =========================
# NOTIFICATIONS & ACTIVITY
# =========================

class Notification(Base):
    __tablename__ = "notifications"

    id = Column(String(36), primary_key=True, default=_uuid)
    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)

    type = Column(String(50), nullable=False)
    title = Column(String, nullable=False)
    message = Column(Text)
    data = Column(JSON, default=dict)
    is_read = Column(Boolean, default=False, nullable=False)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)


class ActivityLog(Base):
    __tablename__ = "activity_logs"

    id = Column(String(36), primary_key=True, default=_uuid)

    entity_type = Column(String(50), nullable=False, index=True)
    entity_id = Column(String(36), nullable=False, index=True)
    action = Column(String(50), nullable=False)
    performed_by = Column(String(36), ForeignKey("users.id", ondelete="SET NULL"))
    details = Column(JSON, default=dict)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
