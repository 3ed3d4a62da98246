import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Response, status
from pydantic import BaseModel, EmailStr, Field
from sqlalchemy.orm import Session

from blissbay.config import Settings
from blissbay.database import get_db
from blissbay.dependencies import get_current_user, get_queue, get_settings
from blissbay.models import User
from blissbay.security import create_token
from blissbay.services.accounts import (
    authenticate,
    register_user,
    request_password_reset,
    reset_password,
    serialize_user,
)

router = APIRouter(prefix="/auth", tags=["auth"])

logger = logging.getLogger(__name__)


# =============================
# SCHEMAS
# =============================

class RegisterRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    email: EmailStr
    password: str = Field(..., min_length=8)
    phone: Optional[str] = None


class LoginRequest(BaseModel):
    email: EmailStr
    password: str


class ForgotPasswordRequest(BaseModel):
    email: EmailStr


class ResetPasswordRequest(BaseModel):
    token: str = Field(..., min_length=1)
    newPassword: str = Field(..., min_length=8)


def _set_auth_cookie(response: Response, token: str, settings: Settings) -> None:
    response.set_cookie(
        key="access_token",
        value=token,
        httponly=True,
        secure=not settings.is_development,
        samesite="lax",
        max_age=settings.ACCESS_TOKEN_EXPIRE_DAYS * 24 * 3600,
        path="/",
    )


# =============================
# REGISTER
# =============================

@router.post("/register", status_code=status.HTTP_201_CREATED)
def register(
    payload: RegisterRequest,
    response: Response,
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    user = register_user(db, payload.name, payload.email, payload.password, payload.phone)
    token = create_token(user.id, user.role.value, settings)
    _set_auth_cookie(response, token, settings)

    return {
        "access_token": token,
        "token_type": "bearer",
        "user": serialize_user(user),
    }


# =============================
# LOGIN
# =============================

@router.post("/login")
def login(
    payload: LoginRequest,
    response: Response,
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    user = authenticate(db, payload.email, payload.password)
    if not user:
        logger.warning("Failed login for %s", payload.email)
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid email or password",
        )

    if not user.is_active:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Account disabled",
        )

    token = create_token(user.id, user.role.value, settings)
    _set_auth_cookie(response, token, settings)

    return {
        "access_token": token,
        "token_type": "bearer",
        "user": serialize_user(user),
    }


# =============================
# LOGOUT / ME
# =============================

@router.post("/logout")
def logout(response: Response):
    response.delete_cookie("access_token", path="/")
    return {"message": "Logged out"}


@router.get("/me")
def me(user: User = Depends(get_current_user)):
    return serialize_user(user)


# =============================
# PASSWORD RESET
# =============================

@router.post("/forgot-password")
def forgot_password(
    payload: ForgotPasswordRequest,
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
    queue=Depends(get_queue),
):
    request_password_reset(db, payload.email, settings, queue)
    return {"message": "If your email is registered, you will receive a password reset link"}


@router.post("/reset-password")
def reset_password_with_token(payload: ResetPasswordRequest, db: Session = Depends(get_db)):
    reset_password(db, payload.token, payload.newPassword)
    return {"message": "Password has been reset successfully"}
