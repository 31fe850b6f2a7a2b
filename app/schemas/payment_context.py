"""
Typed settlement context carried on a Payment

Each settlement flow stores exactly one of these variants. The ``kind`` field
is the discriminator, so a stored payment always decodes back to the model of
the flow that created it.
"""

from typing import Annotated, Literal, Optional, Union
import uuid

from pydantic import BaseModel, Field, TypeAdapter

InteractionKind = Literal["CHAT", "VIDEO", "BOOKING"]

class WalletOnlyContext(BaseModel):
    """Paid entirely from the client's gross wallet balance"""
    kind: Literal["wallet_only"] = "wallet_only"
    companion_id: uuid.UUID
    interaction_type: InteractionKind
    service_type: Optional[str] = None
    duration_minutes: int
    wallet_cents: int

class PushPaymentContext(BaseModel):
    """M-Pesa STK push, optionally topped up from the wallet"""
    kind: Literal["push_payment"] = "push_payment"
    companion_id: uuid.UUID
    interaction_type: InteractionKind
    service_type: Optional[str] = None
    duration_minutes: int
    wallet_cents: int = 0
    mpesa_cents: int = 0
    checkout_request_id: Optional[str] = None

class OnChainContext(BaseModel):
    """Solana/USDT deposit; the interaction is created on confirmation"""
    kind: Literal["on_chain"] = "on_chain"
    companion_id: uuid.UUID
    interaction_type: InteractionKind
    service_type: Optional[str] = None
    duration_minutes: int
    wallet_cents: int = 0
    usdt_amount: str
    usdt_rate: str
    page_url: Optional[str] = None

class BoostContext(BaseModel):
    """Companion profile boost bought over M-Pesa"""
    kind: Literal["boost"] = "boost"
    boost_type: str = "30d"
    duration_days: int = 30
    wallet_cents: int = 0
    checkout_request_id: Optional[str] = None

PaymentContext = Annotated[
    Union[WalletOnlyContext, PushPaymentContext, OnChainContext, BoostContext],
    Field(discriminator="kind"),
]

payment_context_adapter: TypeAdapter = TypeAdapter(PaymentContext)

def dump_context(context) -> dict:
    """Serialize a context for the JSON column"""
    return context.model_dump(mode="json")

def load_context(data: Optional[dict]):
    """Decode a stored context, None when the payment carries none"""
    if not data:
        return None
    return payment_context_adapter.validate_python(data)
