"""
Payment API routes
"""

from fastapi import APIRouter, Depends, Header, Query, Request, status
from sqlalchemy.ext.asyncio import AsyncSession
from typing import Optional, Union
import uuid

from app.core.database import get_db
from app.core.security import get_current_user, require_client, require_companion
from app.services import pricing
from .mpesa_client import MpesaClient, get_mpesa_client
from .swapuzi_client import SwapuziClient, get_swapuzi_client
from .schemas import (
    BoostInitiateResponse,
    BoostPaymentRequest,
    CryptoInitiateResponse,
    CryptoPaymentRequest,
    InteractionPaymentRequest,
    PaymentResponse,
    QuoteResponse,
    RatesResponse,
    SettlementResponse,
)
from .services import SettlementService

router = APIRouter()

def get_settlement_service(
    db: AsyncSession = Depends(get_db),
    mpesa: MpesaClient = Depends(get_mpesa_client),
    swapuzi: SwapuziClient = Depends(get_swapuzi_client)
) -> SettlementService:
    return SettlementService(db, mpesa=mpesa, swapuzi=swapuzi)

@router.get(
    "/quote",
    response_model=QuoteResponse,
    summary="Price quote",
    description="Platform fee, client price and companion payout for a base price"
)
async def get_quote(
    base_cents: int = Query(..., ge=0, description="Companion base price in cents")
):
    """Price breakdown"""
    return QuoteResponse(**pricing.quote(base_cents))

@router.post(
    "/wallet",
    response_model=SettlementResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Pay from wallet",
    description="Pay for an interaction entirely from the wallet balance"
)
async def pay_with_wallet(
    payment_data: InteractionPaymentRequest,
    idempotency_key: Optional[str] = Header(None, alias="Idempotency-Key"),
    current_user: dict = Depends(require_client),
    service: SettlementService = Depends(get_settlement_service)
):
    """Wallet-only payment"""
    result = await service.pay_with_wallet(
        client_id=uuid.UUID(current_user["id"]),
        data=payment_data,
        idempotency_key=idempotency_key
    )
    return SettlementResponse(**result)

@router.post(
    "/mpesa/initiate",
    response_model=SettlementResponse,
    summary="Pay with M-Pesa",
    description="STK push for the amount not covered by the wallet, waits for confirmation"
)
async def pay_with_mpesa(
    request: Request,
    payment_data: InteractionPaymentRequest,
    idempotency_key: Optional[str] = Header(None, alias="Idempotency-Key"),
    current_user: dict = Depends(require_client),
    service: SettlementService = Depends(get_settlement_service)
):
    """M-Pesa payment with optional wallet portion"""
    result = await service.pay_with_mpesa(
        client_id=uuid.UUID(current_user["id"]),
        data=payment_data,
        idempotency_key=idempotency_key,
        is_disconnected=request.is_disconnected
    )
    return SettlementResponse(**result)

@router.get(
    "/crypto/rates",
    response_model=RatesResponse,
    summary="USDT rates",
    description="Current USDT/KES buying and selling rates"
)
async def get_crypto_rates(
    current_user: dict = Depends(get_current_user),
    service: SettlementService = Depends(get_settlement_service)
):
    """Exchange rates"""
    rates = await service.get_rates()
    return RatesResponse(**rates)

@router.post(
    "/crypto/initiate",
    response_model=Union[CryptoInitiateResponse, SettlementResponse],
    status_code=status.HTTP_201_CREATED,
    summary="Pay with USDT",
    description="Open a Solana/USDT deposit page for an interaction"
)
async def initiate_crypto_payment(
    payment_data: CryptoPaymentRequest,
    idempotency_key: Optional[str] = Header(None, alias="Idempotency-Key"),
    current_user: dict = Depends(require_client),
    service: SettlementService = Depends(get_settlement_service)
):
    """USDT deposit"""
    result = await service.initiate_crypto(
        client_id=uuid.UUID(current_user["id"]),
        data=payment_data,
        idempotency_key=idempotency_key
    )
    if "page_url" not in result:
        # Wallet covered the whole amount
        return SettlementResponse(**result)
    return CryptoInitiateResponse(**result)

@router.post(
    "/boost",
    response_model=BoostInitiateResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Buy profile boost",
    description="M-Pesa payment for a profile boost, activated on confirmation"
)
async def initiate_boost(
    payment_data: BoostPaymentRequest,
    idempotency_key: Optional[str] = Header(None, alias="Idempotency-Key"),
    current_user: dict = Depends(require_companion),
    service: SettlementService = Depends(get_settlement_service)
):
    """Boost payment"""
    result = await service.initiate_boost(
        companion_id=uuid.UUID(current_user["id"]),
        data=payment_data,
        idempotency_key=idempotency_key
    )
    return BoostInitiateResponse(**result)

@router.get(
    "/{payment_id}",
    response_model=PaymentResponse,
    summary="Get payment",
    description="Get one of your payments"
)
async def get_payment(
    payment_id: uuid.UUID,
    current_user: dict = Depends(get_current_user),
    service: SettlementService = Depends(get_settlement_service)
):
    """Get payment details"""
    payment = await service.get_payment(uuid.UUID(current_user["id"]), payment_id)
    return PaymentResponse.model_validate(payment)
