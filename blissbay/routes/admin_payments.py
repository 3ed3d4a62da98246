from typing import Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from blissbay.database import get_db
from blissbay.dependencies import get_gateway, get_queue, require_admin
from blissbay.errors import NotFound
from blissbay.models import Payment, PaymentStatus, User
from blissbay.services import payments as payment_service

router = APIRouter(prefix="/admin/payments", tags=["admin-payments"])


class RefundPayload(BaseModel):
    amount: Optional[float] = Field(None, gt=0)
    reason: Optional[str] = None


@router.get("")
def list_payments(
    status: Optional[PaymentStatus] = None,
    page: int = Query(1, ge=1),
    per_page: int = Query(50, ge=1, le=200),
    db: Session = Depends(get_db),
    admin: User = Depends(require_admin),
):
    query = db.query(Payment)
    if status:
        query = query.filter(Payment.status == status)
    total = query.count()
    payments = query.order_by(Payment.created_at.desc()).offset((page - 1) * per_page).limit(per_page).all()
    return {"total": total, "page": page, "results": [payment_service.serialize_payment(p) for p in payments]}


@router.get("/{payment_id}")
def get_payment(payment_id: str, db: Session = Depends(get_db), admin: User = Depends(require_admin)):
    payment = db.query(Payment).filter(Payment.id == payment_id).first()
    if not payment:
        raise NotFound("Payment not found")
    return payment_service.serialize_payment(payment, include_history=True)


@router.post("/{payment_id}/refund")
def refund_payment(
    payment_id: str,
    payload: RefundPayload,
    db: Session = Depends(get_db),
    admin: User = Depends(require_admin),
    gateway=Depends(get_gateway),
    queue=Depends(get_queue),
):
    payment = payment_service.refund_payment(
        db, payment_id, admin, gateway, queue, amount=payload.amount, reason=payload.reason,
    )
    return payment_service.serialize_payment(payment)


@router.post("/{payment_id}/reconcile")
def reconcile_payment(
    payment_id: str,
    db: Session = Depends(get_db),
    admin: User = Depends(require_admin),
    gateway=Depends(get_gateway),
    queue=Depends(get_queue),
):
    payment = payment_service.reconcile_payment(db, payment_id, admin, gateway, queue)
    return payment_service.serialize_payment(payment)
