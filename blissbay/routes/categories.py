from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from blissbay.database import get_db
from blissbay.errors import NotFound
from blissbay.models import Category
from blissbay.services.categories import category_tree, serialize_category

router = APIRouter(prefix="/categories", tags=["categories"])


@router.get("")
def list_categories(db: Session = Depends(get_db)):
    return [serialize_category(c) for c in db.query(Category).order_by(Category.name.asc()).all()]


@router.get("/tree")
def get_category_tree(db: Session = Depends(get_db)):
    return category_tree(db)


@router.get("/{id_or_slug}")
def get_category(id_or_slug: str, db: Session = Depends(get_db)):
    category = (
        db.query(Category)
        .filter((Category.id == id_or_slug) | (Category.slug == id_or_slug))
        .first()
    )
    if not category:
        raise NotFound("Category not found")

    data = serialize_category(category)
    data["children"] = [
        serialize_category(c)
        for c in db.query(Category).filter(Category.parent_id == category.id).order_by(Category.name.asc())
    ]
    return data
