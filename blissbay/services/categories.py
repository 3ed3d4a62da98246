"""
Category tree maintenance.

Each category stores its ancestor chain (root first) so breadcrumbs never
need a recursive query. Slugs and ancestor lists are computed here before
a category is written; nothing happens implicitly on flush.
"""

import logging
import re
from typing import List, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from blissbay.database import transaction
from blissbay.errors import BadRequest, Conflict, Forbidden, NotFound
from blissbay.models import Cart, CartItem, Category, OrderItem, Product, User
from blissbay.services.audit import log_activity
from blissbay.services.cart import recompute_total, release_stock

logger = logging.getLogger(__name__)

FALLBACK_CATEGORY_NAME = "Uncategorized"
FALLBACK_CATEGORY_SLUG = "uncategorized"


# =====================================================
# SLUGS & ANCESTORS
# =====================================================

def slugify(value: str) -> str:
    slug = re.sub(r"[^a-z0-9]+", "-", value.strip().lower()).strip("-")
    return slug or "category"


def unique_slug(db: Session, name: str, exclude_id: Optional[str] = None) -> str:
    base = slugify(name)
    slug, n = base, 2
    while True:
        query = db.query(Category.id).filter(Category.slug == slug)
        if exclude_id:
            query = query.filter(Category.id != exclude_id)
        if not query.first():
            return slug
        slug = f"{base}-{n}"
        n += 1


def build_ancestors(parent: Optional[Category]) -> List[dict]:
    if parent is None:
        return []
    return list(parent.ancestors or []) + [
        {"id": parent.id, "name": parent.name, "slug": parent.slug}
    ]


def _refresh_descendants(db: Session, category: Category) -> None:
    for child in db.query(Category).filter(Category.parent_id == category.id).all():
        child.ancestors = build_ancestors(category)
        _refresh_descendants(db, child)


def _ensure_unique_name(db: Session, name: str, exclude_id: Optional[str] = None) -> None:
    query = db.query(Category.id).filter(func.lower(Category.name) == name.strip().lower())
    if exclude_id:
        query = query.filter(Category.id != exclude_id)
    if query.first():
        raise Conflict(f"Category '{name}' already exists", reason="duplicate_category")


def _load_parent(db: Session, parent_id: Optional[str]) -> Optional[Category]:
    if not parent_id:
        return None
    parent = db.query(Category).filter(Category.id == parent_id).first()
    if not parent:
        raise NotFound("Parent category not found")
    return parent


def get_or_create_fallback(db: Session) -> Category:
    fallback = db.query(Category).filter(Category.slug == FALLBACK_CATEGORY_SLUG).first()
    if fallback is None:
        fallback = Category(
            name=FALLBACK_CATEGORY_NAME,
            slug=FALLBACK_CATEGORY_SLUG,
            description="Products whose category was removed",
            ancestors=[],
        )
        db.add(fallback)
        db.flush()
    return fallback


def is_fallback(category: Category) -> bool:
    return category.slug == FALLBACK_CATEGORY_SLUG


# =====================================================
# CRUD
# =====================================================

def create_category(
    db: Session,
    name: str,
    admin: User,
    description: Optional[str] = None,
    parent_id: Optional[str] = None,
    image_url: Optional[str] = None,
) -> Category:
    with transaction(db):
        _ensure_unique_name(db, name)
        parent = _load_parent(db, parent_id)

        category = Category(
            name=name.strip(),
            slug=unique_slug(db, name),
            description=description,
            image_url=image_url,
            parent_id=parent.id if parent else None,
            ancestors=build_ancestors(parent),
        )
        db.add(category)
        db.flush()
        log_activity(db, "category", category.id, "CREATE", admin.id, {"after": serialize_category(category)})

    return category


def update_category(db: Session, category_id: str, admin: User, changes: dict) -> Category:
    with transaction(db):
        category = db.query(Category).filter(Category.id == category_id).first()
        if not category:
            raise NotFound("Category not found")
        if is_fallback(category) and "name" in changes:
            raise Forbidden("The fallback category cannot be renamed", reason="protected_category")

        before = serialize_category(category)
        tree_changed = False

        if "name" in changes and changes["name"] != category.name:
            _ensure_unique_name(db, changes["name"], exclude_id=category.id)
            category.name = changes["name"].strip()
            category.slug = unique_slug(db, category.name, exclude_id=category.id)
            tree_changed = True

        if "parent_id" in changes and changes["parent_id"] != category.parent_id:
            parent = _load_parent(db, changes["parent_id"])
            if parent is not None:
                ancestor_ids = {a["id"] for a in parent.ancestors or []}
                if parent.id == category.id or category.id in ancestor_ids:
                    raise BadRequest("A category cannot be moved under itself", reason="category_cycle")
            category.parent_id = parent.id if parent else None
            category.ancestors = build_ancestors(parent)
            tree_changed = True

        for field in ("description", "image_url"):
            if field in changes:
                setattr(category, field, changes[field])

        if tree_changed:
            db.flush()
            _refresh_descendants(db, category)

        log_activity(db, "category", category.id, "UPDATE", admin.id,
                     {"before": before, "after": serialize_category(category)})

    return category


def delete_category(db: Session, category_id: str, admin: User) -> dict:
    """
    Remove a category, moving its products to the fallback category and
    pulling them out of every cart. Refused when any order references one
    of its products.
    """
    with transaction(db):
        category = db.query(Category).filter(Category.id == category_id).first()
        if not category:
            raise NotFound("Category not found")
        if is_fallback(category):
            raise Forbidden("The fallback category cannot be deleted", reason="protected_category")

        product_ids = [
            pid for (pid,) in db.query(Product.id).filter(Product.category_id == category.id).all()
        ]

        if product_ids:
            ordered = db.query(OrderItem.id).filter(OrderItem.product_id.in_(product_ids)).first()
            if ordered:
                raise Conflict(
                    "Category has products that appear in orders and cannot be deleted",
                    reason="category_has_orders",
                )

        before = serialize_category(category)
        fallback = get_or_create_fallback(db)

        db.query(Product).filter(Product.id.in_(product_ids)).update(
            {Product.category_id: fallback.id}, synchronize_session=False,
        )

        removed_lines = 0
        if product_ids:
            lines = db.query(CartItem).filter(CartItem.product_id.in_(product_ids)).all()
            touched_carts = set()
            for line in lines:
                if line.reserved:
                    release_stock(db, line.product_id, line.quantity)
                touched_carts.add(line.cart_id)
                line.cart.items.remove(line)
                removed_lines += 1
            for cart in db.query(Cart).filter(Cart.id.in_(touched_carts)).all():
                recompute_total(cart)

        for child in db.query(Category).filter(Category.parent_id == category.id).all():
            child.parent_id = category.parent_id
            child.ancestors = build_ancestors(category.parent)
            db.flush()
            _refresh_descendants(db, child)

        db.delete(category)

        log_activity(
            db,
            "category",
            category_id,
            "DELETE",
            admin.id,
            {
                "before": before,
                "after": {
                    "reassigned_to": fallback.id,
                    "product_ids": product_ids,
                    "removed_cart_lines": removed_lines,
                },
            },
        )

    logger.info(
        "Category %s deleted by %s; %s product(s) moved to %s",
        category_id, admin.id, len(product_ids), FALLBACK_CATEGORY_NAME,
    )
    return {
        "deleted": category_id,
        "reassigned_to": fallback.id,
        "products_reassigned": len(product_ids),
        "cart_lines_removed": removed_lines,
    }


# =====================================================
# QUERIES & SERIALIZATION
# =====================================================

def category_tree(db: Session) -> List[dict]:
    categories = db.query(Category).order_by(Category.name.asc()).all()
    nodes = {c.id: dict(serialize_category(c), children=[]) for c in categories}
    roots = []
    for c in categories:
        node = nodes[c.id]
        if c.parent_id and c.parent_id in nodes:
            nodes[c.parent_id]["children"].append(node)
        else:
            roots.append(node)
    return roots


def serialize_category(category: Category) -> dict:
    return {
        "id": category.id,
        "name": category.name,
        "slug": category.slug,
        "description": category.description,
        "image_url": category.image_url,
        "parent_id": category.parent_id,
        "ancestors": category.ancestors or [],
    }
