"""
Wallet API routes
"""

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession
from typing import List
import uuid

from app.core.database import get_db
from app.services.wallet import WalletService
from app.utils.dependencies import current_user_id, get_limit_offset_params
from app.utils.pagination import LimitOffsetParams
from .schemas import WalletBalanceResponse, WalletTransactionResponse

router = APIRouter()

@router.get("/balance", response_model=WalletBalanceResponse, summary="Wallet balance")
async def get_balance(
    user_id: uuid.UUID = Depends(current_user_id),
    db: AsyncSession = Depends(get_db)
):
    """Gross and withdrawable balance"""
    service = WalletService(db)
    return await service.get_balance(user_id)

@router.get(
    "/transactions",
    response_model=List[WalletTransactionResponse],
    summary="Wallet ledger",
    description="Ledger entries, newest first"
)
async def list_transactions(
    pagination: LimitOffsetParams = Depends(get_limit_offset_params),
    user_id: uuid.UUID = Depends(current_user_id),
    db: AsyncSession = Depends(get_db)
):
    service = WalletService(db)
    return await service.list_transactions(
        user_id,
        limit=pagination.limit,
        offset=pagination.offset
    )
