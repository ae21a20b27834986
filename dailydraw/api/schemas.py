"""Request bodies accepted by the HTTP surface."""

from datetime import datetime
from typing import Optional, Union

from pydantic import BaseModel, Field


class OpsModeRequest(BaseModel):
    mode: str = Field(..., description="MANUAL or AUTO")


class ScheduleBonusRequest(BaseModel):
    # Validated by the workflow so a bad value maps to INVALID_AMOUNT.
    amount: Union[float, str, None] = Field(None, description="Reward amount, a positive integer")
    label: Optional[str] = Field(None, description="Display label, defaults to 'Bonus'")
    scheduled_at: Optional[datetime] = Field(
        None, description="Explicit fire time; wins over delay_minutes"
    )
    delay_minutes: Optional[int] = Field(None, description="One of 5, 15, 30, 60")


class MarkPaidRequest(BaseModel):
    settlement_ref: Optional[str] = Field(
        None, max_length=128, description="Payout transaction reference"
    )


class IssueTicketRequest(BaseModel):
    wallet_address: str = Field(..., description="Participant's wallet public key")
