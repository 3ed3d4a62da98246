from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from blissbay.database import get_db
from blissbay.errors import BadRequest
from blissbay.models import PRODUCT_FLAGS, Category, Product
from blissbay.services.products import descendant_category_ids, get_product, serialize_product

router = APIRouter(prefix="/products", tags=["products"])

SORTS = {
    "newest": Product.created_at.desc(),
    "price_asc": Product.price.asc(),
    "price_desc": Product.price.desc(),
    "rating": Product.rating.desc(),
}


# =====================================================
# PUBLIC: LIST PRODUCTS
# =====================================================
@router.get("")
def list_products(
    db: Session = Depends(get_db),
    q: Optional[str] = None,
    category: Optional[str] = Query(None, description="Category id or slug; includes subcategories"),
    flag: Optional[str] = Query(None, description="One of the marketing flags, e.g. is_featured"),
    min_price: Optional[float] = None,
    max_price: Optional[float] = None,
    in_stock: Optional[bool] = None,
    sort: str = "newest",
    page: int = Query(1, ge=1),
    per_page: int = Query(20, ge=1, le=100),
):
    query = db.query(Product).filter(Product.is_deleted.is_(False))

    if q:
        like = f"%{q.strip()}%"
        query = query.filter(Product.name.ilike(like) | Product.description.ilike(like))

    if category:
        cat = db.query(Category).filter((Category.id == category) | (Category.slug == category)).first()
        if not cat:
            return {"total": 0, "page": page, "per_page": per_page, "results": []}
        query = query.filter(Product.category_id.in_(descendant_category_ids(db, cat.id)))

    if flag:
        if flag not in PRODUCT_FLAGS:
            raise BadRequest(f"Unknown product flag '{flag}'", reason="invalid_flag")
        query = query.filter(getattr(Product, flag).is_(True))

    if min_price is not None:
        query = query.filter(Product.price >= min_price)
    if max_price is not None:
        query = query.filter(Product.price <= max_price)
    if in_stock is not None:
        query = query.filter(Product.stock > 0 if in_stock else Product.stock <= 0)

    total = query.count()
    products = (
        query.order_by(SORTS.get(sort, SORTS["newest"]))
        .offset((page - 1) * per_page)
        .limit(per_page)
        .all()
    )

    return {
        "total": total,
        "page": page,
        "per_page": per_page,
        "results": [serialize_product(p) for p in products],
    }


# =====================================================
# PUBLIC: PRODUCT DETAIL
# =====================================================
@router.get("/{product_id}")
def product_detail(product_id: str, db: Session = Depends(get_db)):
    return serialize_product(get_product(db, product_id))
