"""
Wallet schemas
"""

from pydantic import BaseModel
from typing import Optional
from datetime import datetime
import uuid

from app.models.wallet import WalletTransactionType

class WalletBalanceResponse(BaseModel):
    balance_cents: int
    withdrawable_cents: int
    currency: str

class WalletTransactionResponse(BaseModel):
    """Ledger entry"""
    id: uuid.UUID
    sequence: int
    type: WalletTransactionType
    amount_cents: int
    balance_delta_cents: int
    withdrawable_delta_cents: int
    reference: Optional[str] = None
    created_at: datetime

    class Config:
        from_attributes = True
        use_enum_values = True
