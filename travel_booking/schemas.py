from datetime import date
from decimal import Decimal
from typing import Any, Optional

from pydantic import BaseModel, Field


class BookingRequest(BaseModel):
    # required fields are checked by the orchestrator so that missing ones
    # are reported together, as a booking ValidationError
    package_id: Optional[int] = None
    customer_name: Optional[str] = None
    customer_email: Optional[str] = None
    customer_phone: Optional[str] = None
    travel_date: Optional[date] = None
    adults: int = Field(default=0, ge=0)
    children: int = Field(default=0, ge=0)
    infants: int = Field(default=0, ge=0)
    total_amount: Optional[Decimal] = None
    special_requests: Optional[str] = None
    passenger_details: Optional[Any] = None
    contact_details: Optional[Any] = None
    merchant_order_id: Optional[str] = Field(default=None, max_length=128)


class ConfirmRequest(BaseModel):
    payment_intent_id: str = Field(min_length=1)
