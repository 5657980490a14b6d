# app/models/booking.py

from pydantic import BaseModel, Field, field_validator
from datetime import date
from typing import Optional, Literal, List

from app.utils.date_utils import is_valid_clock_time


def _check_clock_time(v: str) -> str:
    if not is_valid_clock_time(v):
        raise ValueError('Time must be in HH:MM (24-hour) format')
    return v.strip()


class ServiceItem(BaseModel):
    id: Optional[str] = None
    name: str = Field(..., min_length=1, max_length=100)
    price: float = Field(0, ge=0)


class BookingCreate(BaseModel):
    """Booking made by a signed-in customer, or a walk-in entered by the barber"""
    barber_id: str
    date: date
    time: str = Field(..., description="Clock time in HH:MM format")
    services: List[ServiceItem] = Field(default_factory=list)
    total_price: float = Field(..., ge=0)
    appointment_type: Optional[str] = Field(None, description="Free, Basic, Premium or Black Premium")
    is_offline_booking: bool = False
    customer_name: Optional[str] = Field(None, max_length=100)
    customer_phone: Optional[str] = Field(None, max_length=20)

    @field_validator('time')
    @classmethod
    def validate_time_format(cls, v: str) -> str:
        return _check_clock_time(v)


class CustomerInfo(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    phone: str = Field(..., min_length=5, max_length=20)


class PublicBookingCreate(BaseModel):
    """Booking made from the public website without an account"""
    barber_id: str
    date: date
    time: str
    services: List[ServiceItem] = Field(default_factory=list)
    total_price: float = Field(..., ge=0)
    appointment_type: Optional[str] = None
    customer_info: CustomerInfo

    @field_validator('time')
    @classmethod
    def validate_time_format(cls, v: str) -> str:
        return _check_clock_time(v)


class StartBookingRequest(BaseModel):
    otp: Optional[str] = ""


class VerifyOtpRequest(BaseModel):
    booking_id: str
    otp: str


class PaymentUpdateRequest(BaseModel):
    payment_status: Optional[Literal["pending", "completed"]] = None
    payment_method: Optional[str] = Field(None, max_length=50)
    transaction_id: Optional[str] = Field(None, max_length=100)
    payment_amount: Optional[float] = Field(None, ge=0)


class CapacityUpdateRequest(BaseModel):
    max_appointments_per_day: int = Field(..., ge=1, le=500)


class AvailabilityResponse(BaseModel):
    type: Literal["free", "premium"]
    count: int
