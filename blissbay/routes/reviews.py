from typing import Optional

from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from blissbay.database import get_db
from blissbay.dependencies import get_current_user
from blissbay.models import User
from blissbay.services import reviews as review_service

router = APIRouter(tags=["reviews"])


# =====================================================
# Pydantic Schemas
# =====================================================

class ReviewCreate(BaseModel):
    rating: int = Field(..., ge=1, le=5)
    comment: Optional[str] = Field(None, max_length=2000)


class ReviewUpdate(BaseModel):
    rating: Optional[int] = Field(None, ge=1, le=5)
    comment: Optional[str] = Field(None, max_length=2000)


class CommentCreate(BaseModel):
    content: str = Field(..., min_length=1, max_length=2000)
    parentCommentId: Optional[str] = None


# =====================================================
# PUBLIC: PRODUCT REVIEWS
# =====================================================
@router.get("/products/{product_id}/reviews")
def list_reviews(
    product_id: str,
    page: int = Query(1, ge=1),
    per_page: int = Query(20, ge=1, le=100),
    db: Session = Depends(get_db),
):
    reviews, total = review_service.list_product_reviews(db, product_id, page, per_page)
    return {
        "total": total,
        "page": page,
        "per_page": per_page,
        "results": [review_service.serialize_review(r) for r in reviews],
    }


# =====================================================
# USER: WRITE REVIEWS
# =====================================================
@router.post("/products/{product_id}/reviews", status_code=status.HTTP_201_CREATED)
def create_review(
    product_id: str,
    payload: ReviewCreate,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    review = review_service.create_review(db, user, product_id, payload.rating, payload.comment)
    return review_service.serialize_review(review)


@router.put("/reviews/{review_id}")
def update_review(
    review_id: str,
    payload: ReviewUpdate,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    review = review_service.update_review(db, user, review_id, payload.model_dump(exclude_unset=True))
    return review_service.serialize_review(review)


@router.delete("/reviews/{review_id}")
def delete_review(
    review_id: str,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    review_service.delete_review(db, user, review_id)
    return {"message": "Review deleted"}


# =====================================================
# COMMENTS
# =====================================================
@router.get("/reviews/{review_id}/comments")
def list_comments(review_id: str, db: Session = Depends(get_db)):
    return review_service.comment_thread(db, review_id)


@router.post("/reviews/{review_id}/comments", status_code=status.HTTP_201_CREATED)
def add_comment(
    review_id: str,
    payload: CommentCreate,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    comment = review_service.add_comment(db, user, review_id, payload.content, payload.parentCommentId)
    return review_service.serialize_comment(comment)


@router.delete("/comments/{comment_id}")
def delete_comment(
    comment_id: str,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    review_service.delete_comment(db, user, comment_id)
    return {"message": "Comment deleted"}
