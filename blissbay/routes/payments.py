from fastapi import APIRouter, Depends, Query, Response, status
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from blissbay.config import Settings
from blissbay.database import get_db
from blissbay.dependencies import get_current_user, get_gateway, get_queue, get_settings
from blissbay.errors import NotFound
from blissbay.models import Payment, PaymentStatus, User, UserRole
from blissbay.services import payments as payment_service

router = APIRouter(prefix="/payments", tags=["payments"])


class ProcessPaymentPayload(BaseModel):
    orderId: str
    paymentMethodId: str = Field(..., min_length=1)


# =====================================================
# PROCESS PAYMENT
# =====================================================
@router.post("/process")
def process_payment(
    payload: ProcessPaymentPayload,
    response: Response,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
    gateway=Depends(get_gateway),
    queue=Depends(get_queue),
    settings: Settings = Depends(get_settings),
):
    payment = payment_service.process_payment(
        db,
        user,
        payload.orderId,
        payload.paymentMethodId,
        gateway,
        queue,
        currency=settings.CURRENCY,
    )
    if payment.status == PaymentStatus.pending:
        response.status_code = status.HTTP_202_ACCEPTED
        return {
            "message": "Payment requires additional action",
            "requires_action": True,
            "intent_id": (payment.meta or {}).get("intent_id"),
            "payment": payment_service.serialize_payment(payment),
        }
    return {
        "message": "Payment successful",
        "requires_action": False,
        "payment": payment_service.serialize_payment(payment),
    }


# =====================================================
# PAYMENT HISTORY
# =====================================================
@router.get("/history")
def payment_history(
    page: int = Query(1, ge=1),
    per_page: int = Query(20, ge=1, le=100),
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    payments, total = payment_service.payment_history(db, user.id, page, per_page)
    return {
        "total": total,
        "page": page,
        "per_page": per_page,
        "results": [payment_service.serialize_payment(p) for p in payments],
    }


# =====================================================
# PAYMENT DETAIL
# =====================================================
@router.get("/{payment_id}")
def get_payment(
    payment_id: str,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    payment = db.query(Payment).filter(Payment.id == payment_id).first()
    if not payment or (payment.user_id != user.id and user.role != UserRole.admin):
        raise NotFound("Payment not found")
    return payment_service.serialize_payment(payment, include_history=True)
