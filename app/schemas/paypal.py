from uuid import UUID
from pydantic import BaseModel


class PayPalOrderCreate(BaseModel):
    bookingId: UUID
