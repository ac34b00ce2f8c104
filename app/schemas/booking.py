from datetime import datetime
from uuid import UUID
from typing import Optional

from pydantic import BaseModel, Field


class BookingCreate(BaseModel):
    professionalId: str
    scheduledStart: datetime
    durationMinutes: Optional[int] = Field(default=None, gt=0)
    amount: Optional[int] = Field(default=None, ge=0)  # minor units; derived from the hourly rate when 0 or missing
    currency: Optional[str] = Field(default=None, min_length=3, max_length=3)
    serviceName: Optional[str] = None
    serviceHourlyRate: Optional[int] = Field(default=None, gt=0)
    address: Optional[dict] = None
    specialInstructions: Optional[str] = None
    paymentProvider: Optional[str] = None  # stripe|paypal; defaults from the customer's country


class BookingAction(BaseModel):
    bookingId: UUID


class DeclineRequest(BookingAction):
    reason: Optional[str] = None


class CancelRequest(BookingAction):
    reason: Optional[str] = None


class LocationRequest(BookingAction):
    latitude: float = Field(ge=-90, le=90)
    longitude: float = Field(ge=-180, le=180)


class CheckOutRequest(LocationRequest):
    completionNotes: Optional[str] = None


class RebookRequest(BookingAction):
    scheduledStart: datetime
