import enum
import uuid

from sqlalchemy import JSON, Column, Date, DateTime, Enum, Float, ForeignKey, Integer, String
from sqlalchemy.orm import relationship

from app.core.time import utcnow
from app.db.base import Base


class BookingStatus(str, enum.Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    CANCELLED = "cancelled"
    COMPLETED = "completed"


class Booking(Base):
    __tablename__ = "bookings"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id = Column(String(36), ForeignKey("users.id"), nullable=False, index=True)
    tour_package_id = Column(String(36), nullable=False, index=True)
    number_of_people = Column(Integer, nullable=False)
    start_date = Column(Date, nullable=False)
    total_price = Column(Float, nullable=False)
    status = Column(
        Enum(BookingStatus, values_callable=lambda e: [m.value for m in e]),
        nullable=False,
        default=BookingStatus.PENDING,
    )
    # sealed {specialRequests, contactEmail, contactPhone}
    encrypted_details = Column(JSON, nullable=True)
    created_at_utc = Column(DateTime(timezone=True), default=utcnow, nullable=False)

    user = relationship("User")
