from typing import List

from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from app.api.deps import get_cipher, get_current_user, get_db, require_role
from app.core.encryption import FieldCipher
from app.core.principal import Principal
from app.models import User, UserRole
from app.schemas.booking import BookingCreate, BookingOut
from app.services import booking_service

router = APIRouter(prefix="/api/bookings", tags=["bookings"])


@router.post("", response_model=BookingOut, status_code=status.HTTP_201_CREATED)
def create_booking(
    body: BookingCreate,
    db: Session = Depends(get_db),
    cipher: FieldCipher = Depends(get_cipher),
    user: User = Depends(get_current_user),
):
    booking = booking_service.create_booking(
        db,
        cipher,
        user.id,
        body.tour_package_id,
        body.number_of_people,
        body.start_date,
        body.total_price,
        body.contact_email,
        contact_phone=body.contact_phone,
        special_requests=body.special_requests,
    )
    return booking_service.serialize_booking(cipher, booking)


@router.get("/my", response_model=List[BookingOut])
def my_bookings(
    db: Session = Depends(get_db),
    cipher: FieldCipher = Depends(get_cipher),
    user: User = Depends(get_current_user),
):
    return booking_service.list_bookings(db, cipher, user_id=user.id)


@router.get("", response_model=List[BookingOut])
def all_bookings(
    db: Session = Depends(get_db),
    cipher: FieldCipher = Depends(get_cipher),
    principal: Principal = Depends(require_role(UserRole.ADMIN)),
):
    """Every booking in the system; records whose details cannot be opened come back flagged."""
    return booking_service.list_bookings(db, cipher)
