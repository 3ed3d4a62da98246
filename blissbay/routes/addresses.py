from typing import Optional

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from blissbay.database import get_db
from blissbay.dependencies import get_current_user
from blissbay.models import User
from blissbay.services import addresses as address_service

router = APIRouter(prefix="/addresses", tags=["addresses"])


# =====================================================
# Pydantic Schemas
# =====================================================

class AddressCreate(BaseModel):
    full_name: Optional[str] = None
    phone: Optional[str] = None
    street: str = Field(..., min_length=1)
    city: str = Field(..., min_length=1)
    state: str = Field(..., min_length=1)
    postal_code: Optional[str] = None
    country: str = Field(..., min_length=1)
    is_default: bool = False


class AddressUpdate(BaseModel):
    full_name: Optional[str] = None
    phone: Optional[str] = None
    street: Optional[str] = Field(None, min_length=1)
    city: Optional[str] = Field(None, min_length=1)
    state: Optional[str] = Field(None, min_length=1)
    postal_code: Optional[str] = None
    country: Optional[str] = Field(None, min_length=1)
    is_default: Optional[bool] = None


# =====================================================
# USER: LIST ADDRESSES
# =====================================================
@router.get("", status_code=status.HTTP_200_OK)
def list_addresses(
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    return [address_service.serialize_address(a) for a in address_service.list_addresses(db, user.id)]


# =====================================================
# USER: CREATE ADDRESS
# =====================================================
@router.post("", status_code=status.HTTP_201_CREATED)
def create_address(
    payload: AddressCreate,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    data = payload.model_dump()
    make_default = data.pop("is_default")
    address = address_service.create_address(db, user.id, data, make_default=make_default)
    return address_service.serialize_address(address)


# =====================================================
# USER: UPDATE ADDRESS
# =====================================================
@router.put("/{address_id}")
def update_address(
    address_id: str,
    payload: AddressUpdate,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    address = address_service.update_address(db, user.id, address_id, payload.model_dump(exclude_unset=True))
    return address_service.serialize_address(address)


# =====================================================
# USER: SET DEFAULT ADDRESS
# =====================================================
@router.patch("/{address_id}/default")
def set_default_address(
    address_id: str,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    address = address_service.set_default_address(db, user.id, address_id)
    return address_service.serialize_address(address)


# =====================================================
# USER: DELETE ADDRESS
# =====================================================
@router.delete("/{address_id}")
def delete_address(
    address_id: str,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    address_service.delete_address(db, user.id, address_id)
    return {"message": "Address deleted"}
