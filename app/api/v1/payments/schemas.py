"""
Payment schemas for request/response validation
"""

from pydantic import BaseModel, Field
from typing import Optional, Dict, Any, Literal
from datetime import datetime
import uuid

from app.core.config import settings
from app.models.payment import PaymentStatus, PaymentProvider

InteractionKind = Literal["CHAT", "VIDEO", "BOOKING"]

class CustomerDetails(BaseModel):
    """M-Pesa customer details, required whenever an STK push is sent"""
    customer_phone: Optional[str] = None
    customer_first_name: Optional[str] = None
    customer_last_name: Optional[str] = None
    customer_email: Optional[str] = None

class InteractionPaymentRequest(CustomerDetails):
    """Schema for paying for a companion interaction"""
    companion_id: uuid.UUID
    interaction_type: InteractionKind
    service_type: Optional[str] = Field(None, max_length=50)
    amount_kes: int = Field(..., ge=1, description="Total price in whole KES")
    wallet_amount_kes: int = Field(0, description="Portion paid from the wallet, clamped to [0, amount_kes]")
    duration_minutes: Optional[int] = Field(
        None,
        le=settings.MAX_DURATION_MINUTES,
        description="Session length in minutes, 24h when omitted or not positive"
    )

    class Config:
        json_schema_extra = {
            "example": {
                "companion_id": "123e4567-e89b-12d3-a456-426614174000",
                "interaction_type": "CHAT",
                "service_type": "MASSAGE",
                "amount_kes": 500,
                "wallet_amount_kes": 200,
                "customer_phone": "0712345678",
                "customer_first_name": "Jane",
                "customer_last_name": "Doe",
                "customer_email": "jane@example.com"
            }
        }

class CryptoPaymentRequest(BaseModel):
    """Schema for paying over Solana/USDT"""
    companion_id: uuid.UUID
    interaction_type: InteractionKind
    service_type: Optional[str] = Field(None, max_length=50)
    amount_kes: int = Field(..., ge=1)
    wallet_amount_kes: int = 0
    duration_minutes: Optional[int] = Field(None, le=settings.MAX_DURATION_MINUTES)

class BoostPaymentRequest(BaseModel):
    """Schema for buying a profile boost"""
    amount_kes: Optional[int] = Field(None, ge=1, description="Defaults to the configured boost price")
    customer_phone: str
    customer_first_name: str
    customer_last_name: str
    customer_email: str

class SettlementResponse(BaseModel):
    """Outcome of a wallet or M-Pesa payment"""
    order_id: str
    payment_id: Optional[uuid.UUID] = None
    interaction_id: Optional[uuid.UUID] = None
    amount: Optional[int] = None
    currency: str = "KES"
    payment_status: str
    message: str
    requires_kyc: bool = False

class CryptoInitiateResponse(BaseModel):
    """Deposit page for a Solana/USDT payment"""
    order_id: str
    payment_id: uuid.UUID
    page_url: Optional[str] = None
    amount_kes: int
    amount_usdt: str
    usdt_rate: str
    currency: str = "KES"
    payment_status: str
    expires_at: Optional[str] = None
    message: str

class BoostInitiateResponse(BaseModel):
    order_id: str
    payment_id: uuid.UUID
    checkout_request_id: Optional[str] = None
    status: Optional[str] = None
    amount_kes: int
    message: str

class QuoteResponse(BaseModel):
    """Price breakdown for a companion base price"""
    base_cents: int
    platform_fee_cents: int
    client_price_cents: int
    companion_payout_cents: int

class RatesResponse(BaseModel):
    usdt_buying_rate: str
    usdt_selling_rate: str

class PaymentResponse(BaseModel):
    """Schema for payment response"""
    id: uuid.UUID
    provider: PaymentProvider
    provider_ref: str
    amount_cents: int
    currency: str
    status: PaymentStatus
    context_data: Optional[Dict[str, Any]] = None
    expires_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    created_at: datetime

    class Config:
        from_attributes = True
        use_enum_values = True
