from typing import Optional

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from blissbay.database import get_db
from blissbay.dependencies import require_admin
from blissbay.errors import NotFound
from blissbay.models import Category, Product, User
from blissbay.services import categories as category_service

router = APIRouter(prefix="/admin/categories", tags=["admin-categories"])


class CategoryCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=50)
    description: Optional[str] = None
    parent_id: Optional[str] = None
    image_url: Optional[str] = None


class CategoryUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=50)
    description: Optional[str] = None
    parent_id: Optional[str] = None
    image_url: Optional[str] = None


# =====================================================
# ADMIN: LIST / GET
# =====================================================
@router.get("")
def list_categories(db: Session = Depends(get_db), admin: User = Depends(require_admin)):
    categories = db.query(Category).order_by(Category.name.asc()).all()
    results = []
    for c in categories:
        data = category_service.serialize_category(c)
        data["product_count"] = db.query(Product).filter(Product.category_id == c.id).count()
        results.append(data)
    return results


@router.get("/{category_id}")
def get_category(category_id: str, db: Session = Depends(get_db), admin: User = Depends(require_admin)):
    category = db.query(Category).filter(Category.id == category_id).first()
    if not category:
        raise NotFound("Category not found")
    return category_service.serialize_category(category)


# =====================================================
# ADMIN: CREATE / UPDATE
# =====================================================
@router.post("", status_code=status.HTTP_201_CREATED)
def create_category(
    payload: CategoryCreate,
    db: Session = Depends(get_db),
    admin: User = Depends(require_admin),
):
    category = category_service.create_category(
        db,
        payload.name,
        admin,
        description=payload.description,
        parent_id=payload.parent_id,
        image_url=payload.image_url,
    )
    return category_service.serialize_category(category)


@router.put("/{category_id}")
def update_category(
    category_id: str,
    payload: CategoryUpdate,
    db: Session = Depends(get_db),
    admin: User = Depends(require_admin),
):
    category = category_service.update_category(db, category_id, admin, payload.model_dump(exclude_unset=True))
    return category_service.serialize_category(category)


# =====================================================
# ADMIN: DELETE (cascade to fallback category)
# =====================================================
@router.delete("/{category_id}")
def delete_category(
    category_id: str,
    db: Session = Depends(get_db),
    admin: User = Depends(require_admin),
):
    return category_service.delete_category(db, category_id, admin)
