from uuid import UUID
from typing import Literal, Optional

from pydantic import BaseModel, Field


class DisputeCreate(BaseModel):
    bookingId: UUID
    reason: str = Field(min_length=1, max_length=80)
    description: str = ""


class DisputeResolve(BaseModel):
    resolutionType: Literal["refund", "warning", "suspend", "no_action", "request_info"]
    refundAmount: Optional[int] = Field(default=None, gt=0)
    adminNotes: Optional[str] = None
    suspensionDays: Optional[int] = Field(default=None, gt=0, le=365)
