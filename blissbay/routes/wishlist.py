from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from blissbay.config import Settings
from blissbay.database import get_db
from blissbay.dependencies import get_current_user, get_settings
from blissbay.errors import NotFound
from blissbay.models import User
from blissbay.services import cart as cart_service
from blissbay.services import wishlist as wishlist_service

router = APIRouter(prefix="/wishlist", tags=["wishlist"])


class WishlistAddPayload(BaseModel):
    productId: str


class MoveToCartPayload(BaseModel):
    quantity: int = Field(1, ge=1)


def _page(items, total, page, per_page) -> dict:
    return {
        "total": total,
        "page": page,
        "per_page": per_page,
        "items": [wishlist_service.serialize_item(i) for i in items],
    }


# =====================================================
# USER: GET WISHLIST
# =====================================================
@router.get("")
def get_wishlist(
    page: int = Query(1, ge=1),
    per_page: int = Query(20, ge=1, le=100),
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    items, total = wishlist_service.list_items(db, user.id, page, per_page)
    return _page(items, total, page, per_page)


@router.get("/removed")
def get_removed_items(
    page: int = Query(1, ge=1),
    per_page: int = Query(20, ge=1, le=100),
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    items, total = wishlist_service.list_items(db, user.id, page, per_page, deleted=True)
    return _page(items, total, page, per_page)


# =====================================================
# USER: ADD / CHECK
# =====================================================
@router.post("", status_code=status.HTTP_201_CREATED)
def add_to_wishlist(
    payload: WishlistAddPayload,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    item = wishlist_service.add_item(db, user.id, payload.productId)
    return wishlist_service.serialize_item(item)


@router.get("/check/{product_id}")
def check_wishlist(
    product_id: str,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    return {"product_id": product_id, "in_wishlist": wishlist_service.contains(db, user.id, product_id)}


# =====================================================
# USER: RESTORE
# =====================================================
@router.post("/restore")
def restore_wishlist(
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    restored = wishlist_service.restore_all(db, user.id)
    return {"restored": restored}


@router.post("/{product_id}/restore")
def restore_item(
    product_id: str,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    item = wishlist_service.restore_item(db, user.id, product_id)
    return wishlist_service.serialize_item(item)


# =====================================================
# USER: MOVE TO CART
# =====================================================
@router.post("/{product_id}/move-to-cart")
def move_to_cart(
    product_id: str,
    payload: MoveToCartPayload,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
    settings: Settings = Depends(get_settings),
):
    if not wishlist_service.contains(db, user.id, product_id):
        raise NotFound("Item not in wishlist")
    cart = cart_service.add_to_cart(db, user.id, product_id, payload.quantity, settings)
    wishlist_service.hard_remove(db, user.id, product_id)
    return cart_service.serialize_cart(cart)


# =====================================================
# USER: REMOVE
# =====================================================
@router.delete("/clear")
def clear_wishlist(
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    removed = wishlist_service.clear(db, user.id)
    return {"removed": removed}


@router.delete("/{product_id}/permanent")
def hard_remove(
    product_id: str,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    wishlist_service.hard_remove(db, user.id, product_id)
    return {"message": "Item permanently removed"}


@router.delete("/{product_id}")
def soft_remove(
    product_id: str,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    item = wishlist_service.soft_remove(db, user.id, product_id)
    return wishlist_service.serialize_item(item)
