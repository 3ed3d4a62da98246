from datetime import datetime
from typing import Optional

from sqlalchemy.orm import Session

from blissbay.database import transaction
from blissbay.errors import Conflict, NotFound
from blissbay.models import Product, Wishlist, WishlistItem


def get_wishlist(db: Session, user_id: str) -> Optional[Wishlist]:
    return db.query(Wishlist).filter(Wishlist.user_id == user_id).first()


def get_or_create_wishlist(db: Session, user_id: str) -> Wishlist:
    wishlist = get_wishlist(db, user_id)
    if wishlist is None:
        wishlist = Wishlist(user_id=user_id)
        db.add(wishlist)
        db.flush()
    return wishlist


def _find(wishlist: Optional[Wishlist], product_id: str) -> Optional[WishlistItem]:
    if wishlist is None:
        return None
    for item in wishlist.items:
        if item.product_id == product_id:
            return item
    return None


def list_items(db: Session, user_id: str, page: int = 1, per_page: int = 20, deleted: bool = False):
    wishlist = get_wishlist(db, user_id)
    if wishlist is None:
        return [], 0
    query = db.query(WishlistItem).filter(
        WishlistItem.wishlist_id == wishlist.id,
        WishlistItem.is_deleted.is_(deleted),
    )
    total = query.count()
    items = (
        query.order_by(WishlistItem.added_at.desc())
        .offset((page - 1) * per_page)
        .limit(per_page)
        .all()
    )
    return items, total


def add_item(db: Session, user_id: str, product_id: str) -> WishlistItem:
    with transaction(db):
        product = db.query(Product).filter(Product.id == product_id, Product.is_deleted.is_(False)).first()
        if not product:
            raise NotFound("Product not found")

        wishlist = get_or_create_wishlist(db, user_id)
        item = _find(wishlist, product_id)
        if item is not None and not item.is_deleted:
            raise Conflict("Product already in wishlist", reason="already_in_wishlist")

        if item is not None:
            item.is_deleted = False
            item.deleted_at = None
            item.added_at = datetime.utcnow()
        else:
            item = WishlistItem(product_id=product_id)
            wishlist.items.append(item)
    return item


def soft_remove(db: Session, user_id: str, product_id: str) -> WishlistItem:
    with transaction(db):
        item = _find(get_wishlist(db, user_id), product_id)
        if item is None or item.is_deleted:
            raise NotFound("Item not in wishlist")
        item.is_deleted = True
        item.deleted_at = datetime.utcnow()
    return item


def restore_item(db: Session, user_id: str, product_id: str) -> WishlistItem:
    with transaction(db):
        item = _find(get_wishlist(db, user_id), product_id)
        if item is None or not item.is_deleted:
            raise NotFound("No removed item to restore")
        item.is_deleted = False
        item.deleted_at = None
    return item


def restore_all(db: Session, user_id: str) -> int:
    with transaction(db):
        wishlist = get_wishlist(db, user_id)
        restored = 0
        for item in (wishlist.items if wishlist else []):
            if item.is_deleted:
                item.is_deleted = False
                item.deleted_at = None
                restored += 1
    return restored


def hard_remove(db: Session, user_id: str, product_id: str) -> None:
    with transaction(db):
        wishlist = get_wishlist(db, user_id)
        item = _find(wishlist, product_id)
        if item is None:
            raise NotFound("Item not in wishlist")
        wishlist.items.remove(item)


def clear(db: Session, user_id: str) -> int:
    """Permanently delete every item, tombstoned or not."""
    with transaction(db):
        wishlist = get_wishlist(db, user_id)
        if wishlist is None:
            return 0
        count = len(wishlist.items)
        wishlist.items.clear()
    return count


def contains(db: Session, user_id: str, product_id: str) -> bool:
    item = _find(get_wishlist(db, user_id), product_id)
    return item is not None and not item.is_deleted


def serialize_item(item: WishlistItem) -> dict:
    product = item.product
    return {
        "id": item.id,
        "product_id": item.product_id,
        "name": product.name if product else None,
        "price": product.price if product else None,
        "discounted_price": product.discounted_price if product else None,
        "image_url": product.image_url if product else None,
        "in_stock": bool(product and product.stock > 0),
        "is_deleted": item.is_deleted,
        "deleted_at": item.deleted_at,
        "added_at": item.added_at,
    }
