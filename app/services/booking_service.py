"""
Booking writes and reads with sealed contact details.

Contact email, contact phone and special requests are only stored inside the
encrypted bundle. Every read opens the bundle per record; a record that
cannot be opened is returned with those fields redacted and flagged instead
of failing the whole request.
"""
import logging
from datetime import date
from typing import Any, Dict, List

from sqlalchemy.orm import Session

from app.core.encryption import DecryptionFailure, FieldCipher
from app.models import Booking

logger = logging.getLogger(__name__)

SEALED_FIELDS = ("specialRequests", "contactEmail", "contactPhone")


def seal_details(cipher: FieldCipher, special_requests: str | None, contact_email: str, contact_phone: str | None) -> Dict[str, str]:
    return cipher.seal({
        "specialRequests": special_requests or "",
        "contactEmail": contact_email,
        "contactPhone": contact_phone,
    })


def open_details(cipher: FieldCipher, booking: Booking) -> Dict[str, Any] | DecryptionFailure:
    if booking.encrypted_details is None:
        return DecryptionFailure("No encrypted details")
    result = cipher.open(booking.encrypted_details)
    if isinstance(result, DecryptionFailure):
        logger.warning("DECRYPTION_FAILED booking_id=%s reason=%s", booking.id, result.reason)
    return result


def serialize_booking(cipher: FieldCipher, booking: Booking) -> Dict[str, Any]:
    details = open_details(cipher, booking)
    failed = isinstance(details, DecryptionFailure)
    out = {
        "id": booking.id,
        "userId": booking.user_id,
        "tourPackageId": booking.tour_package_id,
        "numberOfPeople": booking.number_of_people,
        "startDate": booking.start_date,
        "totalPrice": booking.total_price,
        "status": booking.status.value,
        "createdAt": booking.created_at_utc,
        "decryptionFailed": failed,
    }
    for field in SEALED_FIELDS:
        out[field] = None if failed else details.get(field)
    return out


def create_booking(
    db: Session,
    cipher: FieldCipher,
    user_id: str,
    tour_package_id: str,
    number_of_people: int,
    start_date: date,
    total_price: float,
    contact_email: str,
    contact_phone: str | None = None,
    special_requests: str | None = None,
) -> Booking:
    booking = Booking(
        user_id=user_id,
        tour_package_id=tour_package_id,
        number_of_people=number_of_people,
        start_date=start_date,
        total_price=total_price,
        encrypted_details=seal_details(cipher, special_requests, contact_email, contact_phone),
    )
    db.add(booking)
    db.commit()
    db.refresh(booking)
    logger.info("BOOKING_CREATED booking_id=%s user_id=%s", booking.id, user_id)
    return booking


def list_bookings(db: Session, cipher: FieldCipher, user_id: str | None = None) -> List[Dict[str, Any]]:
    query = db.query(Booking)
    if user_id is not None:
        query = query.filter(Booking.user_id == user_id)
    bookings = query.order_by(Booking.created_at_utc.desc()).all()
    return [serialize_booking(cipher, b) for b in bookings]
