from .user import User, UserRole
from .booking import Booking, BookingStatus

__all__ = [
    "User",
    "UserRole",
    "Booking",
    "BookingStatus",
]
