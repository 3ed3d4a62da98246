from fastapi import APIRouter, Depends, File, UploadFile
from sqlalchemy.orm import Session

from blissbay.database import get_db, transaction
from blissbay.dependencies import get_storage, require_admin
from blissbay.errors import NotFound
from blissbay.models import Category, Product, User
from blissbay.services.audit import log_activity

router = APIRouter(prefix="/admin/uploads", tags=["uploads"])


@router.post("/product-image/{product_id}")
def upload_product_image(
    product_id: str,
    file: UploadFile = File(...),
    db: Session = Depends(get_db),
    storage=Depends(get_storage),
    admin: User = Depends(require_admin),
):
    product = db.query(Product).filter(Product.id == product_id, Product.is_deleted.is_(False)).first()
    if not product:
        raise NotFound("Product not found")

    url = storage.save_image(file, "products")
    old_url = product.image_url

    with transaction(db):
        product.image_url = url
        log_activity(db, "product", product.id, "IMAGE_UPDATE", admin.id, {"before": old_url, "after": url})

    storage.delete(old_url)
    return {"image_url": url}


@router.post("/category-image/{category_id}")
def upload_category_image(
    category_id: str,
    file: UploadFile = File(...),
    db: Session = Depends(get_db),
    storage=Depends(get_storage),
    admin: User = Depends(require_admin),
):
    category = db.query(Category).filter(Category.id == category_id).first()
    if not category:
        raise NotFound("Category not found")

    url = storage.save_image(file, "categories")
    old_url = category.image_url

    with transaction(db):
        category.image_url = url
        log_activity(db, "category", category.id, "IMAGE_UPDATE", admin.id, {"before": old_url, "after": url})

    storage.delete(old_url)
    return {"image_url": url}
