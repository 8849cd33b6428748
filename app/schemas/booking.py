from datetime import date, datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field

from app.models.booking import BookingStatus


class BookingCreate(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    tour_package_id: str = Field(..., alias="tourPackageId", min_length=1, max_length=36)
    number_of_people: int = Field(..., alias="numberOfPeople", ge=1)
    start_date: date = Field(..., alias="startDate")
    total_price: float = Field(..., alias="totalPrice", ge=0)
    contact_email: EmailStr = Field(..., alias="contactEmail")
    contact_phone: Optional[str] = Field(None, alias="contactPhone", max_length=32)
    special_requests: Optional[str] = Field(None, alias="specialRequests", max_length=2000)


class BookingOut(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: str
    user_id: str = Field(..., alias="userId")
    tour_package_id: str = Field(..., alias="tourPackageId")
    number_of_people: int = Field(..., alias="numberOfPeople")
    start_date: date = Field(..., alias="startDate")
    total_price: float = Field(..., alias="totalPrice")
    status: BookingStatus
    created_at: datetime = Field(..., alias="createdAt")
    special_requests: Optional[str] = Field(None, alias="specialRequests")
    contact_email: Optional[str] = Field(None, alias="contactEmail")
    contact_phone: Optional[str] = Field(None, alias="contactPhone")
    decryption_failed: bool = Field(False, alias="decryptionFailed")
