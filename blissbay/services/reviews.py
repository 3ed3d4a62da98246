from typing import List, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from blissbay.database import transaction
from blissbay.errors import BadRequest, Conflict, Forbidden, NotFound
from blissbay.models import Comment, Product, Review, ReviewStatus, User, UserRole
from blissbay.services.audit import log_activity


def recompute_product_rating(db: Session, product_id: str) -> None:
    avg, count = (
        db.query(func.avg(Review.rating), func.count(Review.id))
        .filter(Review.product_id == product_id, Review.status == ReviewStatus.active)
        .one()
    )
    product = db.query(Product).filter(Product.id == product_id).first()
    if product:
        product.rating = round(float(avg), 2) if avg is not None else 0
        product.rating_count = count


def _get_review(db: Session, review_id: str) -> Review:
    review = db.query(Review).filter(Review.id == review_id).first()
    if not review:
        raise NotFound("Review not found")
    return review


def _can_modify(user: User, owner_id: str) -> bool:
    return user.id == owner_id or user.role == UserRole.admin


# =====================================================
# REVIEWS
# =====================================================

def create_review(db: Session, user: User, product_id: str, rating: int, comment: Optional[str]) -> Review:
    with transaction(db):
        product = db.query(Product).filter(Product.id == product_id, Product.is_deleted.is_(False)).first()
        if not product:
            raise NotFound("Product not found")

        exists = db.query(Review.id).filter(
            Review.user_id == user.id,
            Review.product_id == product_id,
        ).first()
        if exists:
            raise Conflict("You have already reviewed this product", reason="already_reviewed")

        review = Review(user_id=user.id, product_id=product_id, rating=rating, comment=comment)
        db.add(review)
        db.flush()
        recompute_product_rating(db, product_id)
    return review


def update_review(db: Session, user: User, review_id: str, changes: dict) -> Review:
    with transaction(db):
        review = _get_review(db, review_id)
        if review.user_id != user.id:
            raise Forbidden("You can only edit your own reviews")
        for field in ("rating", "comment"):
            if field in changes:
                setattr(review, field, changes[field])
        db.flush()
        recompute_product_rating(db, review.product_id)
    return review


def set_review_status(db: Session, review_id: str, status: ReviewStatus, admin: User) -> Review:
    with transaction(db):
        review = _get_review(db, review_id)
        before = review.status
        review.status = status
        db.flush()
        recompute_product_rating(db, review.product_id)
        log_activity(db, "review", review.id, "MODERATE", admin.id,
                     {"before": ReviewStatus(before).value, "after": status.value})
    return review


def delete_review(db: Session, user: User, review_id: str) -> None:
    with transaction(db):
        review = _get_review(db, review_id)
        if not _can_modify(user, review.user_id):
            raise Forbidden("You can only delete your own reviews")
        product_id = review.product_id
        db.delete(review)
        db.flush()
        recompute_product_rating(db, product_id)


def list_product_reviews(db: Session, product_id: str, page: int = 1, per_page: int = 20):
    query = db.query(Review).filter(
        Review.product_id == product_id,
        Review.status == ReviewStatus.active,
    )
    total = query.count()
    reviews = query.order_by(Review.created_at.desc()).offset((page - 1) * per_page).limit(per_page).all()
    return reviews, total


# =====================================================
# COMMENTS
# =====================================================

def add_comment(db: Session, user: User, review_id: str, content: str, parent_comment_id: Optional[str] = None) -> Comment:
    with transaction(db):
        review = _get_review(db, review_id)
        if parent_comment_id:
            parent = db.query(Comment).filter(Comment.id == parent_comment_id).first()
            if not parent:
                raise NotFound("Parent comment not found")
            if parent.review_id != review.id:
                raise BadRequest("Parent comment belongs to another review", reason="comment_review_mismatch")

        comment = Comment(
            review_id=review.id,
            user_id=user.id,
            content=content,
            parent_comment_id=parent_comment_id,
        )
        db.add(comment)
    return comment


def delete_comment(db: Session, user: User, comment_id: str) -> None:
    with transaction(db):
        comment = db.query(Comment).filter(Comment.id == comment_id).first()
        if not comment:
            raise NotFound("Comment not found")
        if not _can_modify(user, comment.user_id):
            raise Forbidden("You can only delete your own comments")
        # replies go with their parent
        db.query(Comment).filter(Comment.parent_comment_id == comment.id).delete(synchronize_session=False)
        db.delete(comment)


def comment_thread(db: Session, review_id: str) -> List[dict]:
    _get_review(db, review_id)
    comments = (
        db.query(Comment)
        .filter(Comment.review_id == review_id)
        .order_by(Comment.created_at.asc())
        .all()
    )
    nodes = {c.id: dict(serialize_comment(c), replies=[]) for c in comments}
    roots = []
    for c in comments:
        if c.parent_comment_id and c.parent_comment_id in nodes:
            nodes[c.parent_comment_id]["replies"].append(nodes[c.id])
        else:
            roots.append(nodes[c.id])
    return roots


# =====================================================
# SERIALIZATION
# =====================================================

def serialize_review(review: Review) -> dict:
    return {
        "id": review.id,
        "product_id": review.product_id,
        "user_id": review.user_id,
        "user_name": review.user.name if review.user else None,
        "rating": review.rating,
        "comment": review.comment,
        "status": review.status,
        "created_at": review.created_at,
        "updated_at": review.updated_at,
    }


def serialize_comment(comment: Comment) -> dict:
    return {
        "id": comment.id,
        "review_id": comment.review_id,
        "user_id": comment.user_id,
        "user_name": comment.user.name if comment.user else None,
        "parent_comment_id": comment.parent_comment_id,
        "content": comment.content,
        "created_at": comment.created_at,
    }
