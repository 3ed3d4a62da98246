from typing import Optional

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from blissbay.config import Settings
from blissbay.database import get_db
from blissbay.dependencies import get_current_user, get_settings
from blissbay.models import PaymentMethod, User
from blissbay.services import cart as cart_service
from blissbay.services import orders as order_service

router = APIRouter(prefix="/carts", tags=["cart"])


# =====================================================
# Pydantic Schemas
# =====================================================

class AddToCartPayload(BaseModel):
    productId: str
    quantity: int = Field(1, ge=1)


class UpdateCartItemPayload(BaseModel):
    productId: str
    quantity: int = Field(..., ge=1)


class ShippingAddressPayload(BaseModel):
    full_name: Optional[str] = None
    phone: Optional[str] = None
    street: str
    city: str
    state: str
    postal_code: Optional[str] = None
    country: str


class CheckoutPayload(BaseModel):
    paymentMethod: PaymentMethod
    addressId: Optional[str] = None
    shippingAddress: Optional[ShippingAddressPayload] = None
    couponCode: Optional[str] = None
    notes: Optional[str] = Field(None, max_length=1000)


# =====================================================
# USER: GET CART
# =====================================================
@router.get("", status_code=status.HTTP_200_OK)
def get_cart(
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    cart = cart_service.get_cart(db, user.id)
    if cart is not None:
        cart_service.release_if_expired(db, cart)
    return cart_service.serialize_cart(cart)


# =====================================================
# USER: ADD TO CART
# =====================================================
@router.post("/add", status_code=status.HTTP_201_CREATED)
def add_to_cart(
    payload: AddToCartPayload,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
    settings: Settings = Depends(get_settings),
):
    cart = cart_service.add_to_cart(db, user.id, payload.productId, payload.quantity, settings)
    return cart_service.serialize_cart(cart)


# =====================================================
# USER: UPDATE QUANTITY
# =====================================================
@router.put("/update")
def update_cart_item(
    payload: UpdateCartItemPayload,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
    settings: Settings = Depends(get_settings),
):
    cart = cart_service.update_cart_line(db, user.id, payload.productId, payload.quantity, settings)
    return cart_service.serialize_cart(cart)


# =====================================================
# USER: REMOVE ITEM
# =====================================================
@router.delete("/remove/{product_id}")
def remove_from_cart(
    product_id: str,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
    settings: Settings = Depends(get_settings),
):
    cart = cart_service.remove_cart_line(db, user.id, product_id, settings)
    return cart_service.serialize_cart(cart)


# =====================================================
# USER: CLEAR CART
# =====================================================
@router.delete("/clear")
def clear_cart(
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    cart = cart_service.clear_cart(db, user.id)
    return cart_service.serialize_cart(cart)


# =====================================================
# USER: CHECKOUT
# =====================================================
@router.post("/checkout", status_code=status.HTTP_201_CREATED)
def checkout(
    payload: CheckoutPayload,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    address = order_service.resolve_shipping_address(
        db,
        user.id,
        address_id=payload.addressId,
        inline=payload.shippingAddress.model_dump() if payload.shippingAddress else None,
    )
    order = order_service.checkout(
        db,
        user,
        address,
        payload.paymentMethod,
        coupon_code=payload.couponCode,
        notes=payload.notes,
    )
    return order_service.serialize_order(order)
