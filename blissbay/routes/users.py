from typing import Optional

from fastapi import APIRouter, Depends, File, Response, UploadFile, status
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from blissbay.database import get_db, transaction
from blissbay.dependencies import get_current_user, get_storage
from blissbay.models import User
from blissbay.services.accounts import change_password, delete_account, serialize_user

router = APIRouter(prefix="/users", tags=["users"])


class ProfileUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=100)
    phone: Optional[str] = None


class ChangePasswordRequest(BaseModel):
    currentPassword: str = Field(..., min_length=1)
    newPassword: str = Field(..., min_length=8)


class DeleteAccountRequest(BaseModel):
    password: str = Field(..., min_length=1)


# =========================
# USER: PROFILE
# =========================

@router.get("/me")
def get_profile(current_user: User = Depends(get_current_user)):
    return serialize_user(current_user)


@router.put("/me")
def update_profile(
    payload: ProfileUpdate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    with transaction(db):
        for field, value in payload.model_dump(exclude_unset=True).items():
            setattr(current_user, field, value)
    return serialize_user(current_user)


# =========================
# USER: UPLOAD AVATAR
# =========================

@router.post("/me/avatar", status_code=status.HTTP_200_OK)
def upload_avatar(
    file: UploadFile = File(...),
    db: Session = Depends(get_db),
    storage=Depends(get_storage),
    current_user: User = Depends(get_current_user),
):
    avatar_url = storage.save_image(file, "avatars")
    old_url = current_user.avatar_url

    with transaction(db):
        current_user.avatar_url = avatar_url

    storage.delete(old_url)
    return {"avatar_url": avatar_url}


# =========================
# USER: PASSWORD & ACCOUNT
# =========================

@router.put("/me/password")
def update_password(
    payload: ChangePasswordRequest,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    change_password(db, current_user, payload.currentPassword, payload.newPassword)
    return {"message": "Password updated successfully"}


@router.delete("/me")
def remove_account(
    payload: DeleteAccountRequest,
    response: Response,
    db: Session = Depends(get_db),
    storage=Depends(get_storage),
    current_user: User = Depends(get_current_user),
):
    avatar_url = current_user.avatar_url
    mode = delete_account(db, current_user, payload.password)

    storage.delete(avatar_url)
    response.delete_cookie("access_token", path="/")
    return {"message": "Account deleted successfully", "mode": mode}
