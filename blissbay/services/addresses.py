from typing import List

from sqlalchemy.orm import Session

from blissbay.database import transaction
from blissbay.errors import NotFound
from blissbay.models import Address

ADDRESS_FIELDS = ("full_name", "phone", "street", "city", "state", "postal_code", "country")


def _unset_other_defaults(db: Session, user_id: str, keep_id: str) -> None:
    db.query(Address).filter(
        Address.user_id == user_id,
        Address.id != keep_id,
        Address.is_default.is_(True),
    ).update({Address.is_default: False}, synchronize_session="fetch")


def _get_owned(db: Session, user_id: str, address_id: str) -> Address:
    address = db.query(Address).filter(
        Address.id == address_id,
        Address.user_id == user_id,
    ).first()
    if not address:
        raise NotFound("Address not found")
    return address


def list_addresses(db: Session, user_id: str) -> List[Address]:
    return (
        db.query(Address)
        .filter(Address.user_id == user_id)
        .order_by(Address.is_default.desc(), Address.created_at.desc())
        .all()
    )


def create_address(db: Session, user_id: str, data: dict, make_default: bool = False) -> Address:
    with transaction(db):
        has_any = db.query(Address.id).filter(Address.user_id == user_id).first() is not None
        address = Address(user_id=user_id, **{k: data.get(k) for k in ADDRESS_FIELDS})
        # first address is always the default
        address.is_default = make_default or not has_any
        db.add(address)
        db.flush()
        if address.is_default:
            _unset_other_defaults(db, user_id, address.id)
    return address


def update_address(db: Session, user_id: str, address_id: str, changes: dict) -> Address:
    with transaction(db):
        address = _get_owned(db, user_id, address_id)
        for field in ADDRESS_FIELDS:
            if field in changes:
                setattr(address, field, changes[field])
        if changes.get("is_default"):
            address.is_default = True
            _unset_other_defaults(db, user_id, address.id)
    return address


def set_default_address(db: Session, user_id: str, address_id: str) -> Address:
    with transaction(db):
        address = _get_owned(db, user_id, address_id)
        address.is_default = True
        _unset_other_defaults(db, user_id, address.id)
    return address


def delete_address(db: Session, user_id: str, address_id: str) -> None:
    with transaction(db):
        address = _get_owned(db, user_id, address_id)
        was_default = address.is_default
        db.delete(address)
        db.flush()

        if was_default:
            replacement = (
                db.query(Address)
                .filter(Address.user_id == user_id)
                .order_by(Address.created_at.desc())
                .first()
            )
            if replacement:
                replacement.is_default = True


def serialize_address(address: Address) -> dict:
    data = {field: getattr(address, field) for field in ADDRESS_FIELDS}
    data.update({
        "id": address.id,
        "is_default": address.is_default,
        "created_at": address.created_at,
    })
    return data
