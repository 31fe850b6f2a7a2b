"""
Withdrawal schemas
"""

from pydantic import BaseModel, Field
from typing import Optional
from datetime import datetime
import uuid

from app.models.withdrawal import WithdrawalStatus

class WithdrawalCreate(BaseModel):
    """Schema for requesting a payout"""
    amount_kes: int = Field(..., ge=1)
    phone_number: str = Field(..., min_length=9, max_length=20)

class WithdrawalInitiateResponse(BaseModel):
    id: uuid.UUID
    order_id: str
    amount_kes: int
    phone_number: str
    status: str
    message: str

class WithdrawalResponse(BaseModel):
    """Schema for withdrawal response"""
    id: uuid.UUID
    order_id: str
    amount_cents: int
    phone_number: str
    status: WithdrawalStatus
    provider_ref: Optional[str] = None
    completed_at: Optional[datetime] = None
    created_at: datetime

    class Config:
        from_attributes = True
        use_enum_values = True
