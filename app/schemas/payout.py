from pydantic import BaseModel, Field


class InstantPayoutRequest(BaseModel):
    amount: int = Field(gt=0)  # minor units, deducted from available balance
