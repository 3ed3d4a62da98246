from typing import Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel
from sqlalchemy.orm import Session

from blissbay.database import get_db, transaction
from blissbay.dependencies import require_admin
from blissbay.errors import BadRequest, NotFound
from blissbay.models import Order, User, UserRole
from blissbay.services.accounts import serialize_user
from blissbay.services.audit import log_activity

router = APIRouter(prefix="/admin/users", tags=["admin-users"])


class RoleUpdate(BaseModel):
    role: UserRole


def _get_user(db: Session, user_id: str) -> User:
    user = db.query(User).filter(User.id == user_id).first()
    if not user:
        raise NotFound("User not found")
    return user


# =====================================================
# ADMIN: LIST USERS
# =====================================================
@router.get("")
def list_users(
    q: Optional[str] = None,
    role: Optional[UserRole] = None,
    page: int = Query(1, ge=1),
    per_page: int = Query(50, ge=1, le=200),
    db: Session = Depends(get_db),
    admin: User = Depends(require_admin),
):
    query = db.query(User)
    if q:
        like = f"%{q.strip()}%"
        query = query.filter(User.email.ilike(like) | User.name.ilike(like))
    if role:
        query = query.filter(User.role == role)

    total = query.count()
    users = query.order_by(User.created_at.desc()).offset((page - 1) * per_page).limit(per_page).all()
    return {"total": total, "page": page, "results": [serialize_user(u) for u in users]}


# =====================================================
# ADMIN: USER DETAIL
# =====================================================
@router.get("/{user_id}")
def get_user(user_id: str, db: Session = Depends(get_db), admin: User = Depends(require_admin)):
    user = _get_user(db, user_id)
    data = serialize_user(user)
    data["order_count"] = db.query(Order).filter(Order.user_id == user.id).count()
    return data


# =====================================================
# ADMIN: ROLE / ACTIVATION
# =====================================================
@router.put("/{user_id}/role")
def update_role(
    user_id: str,
    payload: RoleUpdate,
    db: Session = Depends(get_db),
    admin: User = Depends(require_admin),
):
    with transaction(db):
        user = _get_user(db, user_id)
        if user.id == admin.id and payload.role != UserRole.admin:
            raise BadRequest("You cannot remove your own admin role", reason="self_demotion")
        before = UserRole(user.role).value
        user.role = payload.role
        log_activity(db, "user", user.id, "ROLE_UPDATE", admin.id, {"before": before, "after": payload.role.value})
    return serialize_user(user)


@router.post("/{user_id}/disable")
def disable_user(user_id: str, db: Session = Depends(get_db), admin: User = Depends(require_admin)):
    with transaction(db):
        user = _get_user(db, user_id)
        if user.id == admin.id:
            raise BadRequest("You cannot disable your own account", reason="self_disable")
        user.is_active = False
        log_activity(db, "user", user.id, "DISABLE", admin.id)
    return {"message": "User disabled"}


@router.post("/{user_id}/enable")
def enable_user(user_id: str, db: Session = Depends(get_db), admin: User = Depends(require_admin)):
    with transaction(db):
        user = _get_user(db, user_id)
        user.is_active = True
        log_activity(db, "user", user.id, "ENABLE", admin.id)
    return {"message": "User enabled"}
