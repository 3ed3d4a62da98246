from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from blissbay.database import get_db
from blissbay.dependencies import get_current_user
from blissbay.errors import NotFound
from blissbay.models import Notification, User

router = APIRouter(prefix="/notifications", tags=["notifications"])


def _serialize(n: Notification) -> dict:
    return {"id": n.id, "type": n.type, "title": n.title, "message": n.message, "data": n.data, "is_read": n.is_read, "created_at": n.created_at}


@router.get("", status_code=status.HTTP_200_OK)
def get_notifications(db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    notifs = db.query(Notification).filter(Notification.user_id == user.id).order_by(Notification.created_at.desc()).limit(50).all()
    unread = db.query(Notification).filter(Notification.user_id == user.id, Notification.is_read.is_(False)).count()
    return {"unread": unread, "results": [_serialize(n) for n in notifs]}


@router.patch("/read-all", status_code=status.HTTP_200_OK)
def mark_all_read(db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    db.query(Notification).filter(Notification.user_id == user.id, Notification.is_read.is_(False)).update({Notification.is_read: True})
    db.commit()
    return {"message": "All notifications marked as read"}


@router.patch("/{notification_id}/read", status_code=status.HTTP_200_OK)
def mark_read(notification_id: str, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    notif = db.query(Notification).filter(Notification.id == notification_id, Notification.user_id == user.id).first()
    if not notif:
        raise NotFound("Notification not found")
    notif.is_read = True
    db.commit()
    return {"message": "Marked as read"}


@router.delete("/{notification_id}", status_code=status.HTTP_200_OK)
def delete_notification(notification_id: str, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    notif = db.query(Notification).filter(Notification.id == notification_id, Notification.user_id == user.id).first()
    if not notif:
        raise NotFound("Notification not found")
    db.delete(notif)
    db.commit()
    return {"message": "Notification deleted"}
