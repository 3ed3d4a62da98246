from typing import Optional

from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from blissbay.database import get_db
from blissbay.dependencies import require_admin
from blissbay.models import Product, User
from blissbay.services import products as product_service

router = APIRouter(prefix="/admin/products", tags=["admin-products"])


# =====================================================
# Pydantic Schemas
# =====================================================

class ProductFlags(BaseModel):
    is_featured: bool = False
    is_popular: bool = False
    is_new_arrival: bool = False
    is_best_seller: bool = False
    is_trending: bool = False
    is_hot_deal: bool = False
    is_limited_offer: bool = False
    is_flash_sale: bool = False
    is_back_in_stock: bool = False
    is_exclusive: bool = False
    is_coupon: bool = False
    is_low_stock: bool = False
    is_free_shipping: bool = False


class ProductCreate(ProductFlags):
    name: str = Field(..., min_length=1, max_length=200)
    description: Optional[str] = None
    brand: Optional[str] = None
    price: float = Field(..., gt=0)
    discounted_price: Optional[float] = Field(None, ge=0)
    stock: int = Field(0, ge=0)
    category_id: Optional[str] = None
    image_url: Optional[str] = None


class ProductUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=200)
    description: Optional[str] = None
    brand: Optional[str] = None
    price: Optional[float] = Field(None, gt=0)
    discounted_price: Optional[float] = Field(None, ge=0)
    category_id: Optional[str] = None
    image_url: Optional[str] = None
    is_featured: Optional[bool] = None
    is_popular: Optional[bool] = None
    is_new_arrival: Optional[bool] = None
    is_best_seller: Optional[bool] = None
    is_trending: Optional[bool] = None
    is_hot_deal: Optional[bool] = None
    is_limited_offer: Optional[bool] = None
    is_flash_sale: Optional[bool] = None
    is_back_in_stock: Optional[bool] = None
    is_exclusive: Optional[bool] = None
    is_coupon: Optional[bool] = None
    is_low_stock: Optional[bool] = None
    is_free_shipping: Optional[bool] = None


class StockAdjustment(BaseModel):
    delta: int
    reason: Optional[str] = None


# =====================================================
# ADMIN: LIST (includes soft-deleted on request)
# =====================================================
@router.get("")
def list_products(
    include_deleted: bool = False,
    page: int = Query(1, ge=1),
    per_page: int = Query(50, ge=1, le=200),
    db: Session = Depends(get_db),
    admin: User = Depends(require_admin),
):
    query = db.query(Product)
    if not include_deleted:
        query = query.filter(Product.is_deleted.is_(False))
    total = query.count()
    products = query.order_by(Product.created_at.desc()).offset((page - 1) * per_page).limit(per_page).all()
    return {
        "total": total,
        "page": page,
        "results": [product_service.serialize_product(p) for p in products],
    }


@router.get("/{product_id}")
def get_product(product_id: str, db: Session = Depends(get_db), admin: User = Depends(require_admin)):
    return product_service.serialize_product(product_service.get_product(db, product_id, include_deleted=True))


# =====================================================
# ADMIN: CREATE / UPDATE
# =====================================================
@router.post("", status_code=status.HTTP_201_CREATED)
def create_product(
    payload: ProductCreate,
    db: Session = Depends(get_db),
    admin: User = Depends(require_admin),
):
    product = product_service.create_product(db, admin, payload.model_dump())
    return product_service.serialize_product(product)


@router.put("/{product_id}")
def update_product(
    product_id: str,
    payload: ProductUpdate,
    db: Session = Depends(get_db),
    admin: User = Depends(require_admin),
):
    product = product_service.update_product(db, admin, product_id, payload.model_dump(exclude_unset=True))
    return product_service.serialize_product(product)


@router.post("/{product_id}/stock")
def adjust_stock(
    product_id: str,
    payload: StockAdjustment,
    db: Session = Depends(get_db),
    admin: User = Depends(require_admin),
):
    product = product_service.adjust_stock(db, admin, product_id, payload.delta, payload.reason)
    return {"id": product.id, "stock": product.stock}


# =====================================================
# ADMIN: DELETE
# =====================================================
@router.delete("/{product_id}")
def delete_product(
    product_id: str,
    db: Session = Depends(get_db),
    admin: User = Depends(require_admin),
):
    mode = product_service.delete_product(db, admin, product_id)
    return {"message": "Product deleted", "mode": mode}
