"""
Withdrawal API routes
"""

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession
from typing import List
import uuid

from app.core.database import get_db
from app.core.security import require_companion
from app.api.v1.payments.mpesa_client import MpesaClient, get_mpesa_client
from app.utils.dependencies import get_limit_offset_params
from app.utils.pagination import LimitOffsetParams
from .schemas import WithdrawalCreate, WithdrawalInitiateResponse, WithdrawalResponse
from .services import WithdrawalService

router = APIRouter()

@router.post(
    "",
    response_model=WithdrawalInitiateResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Withdraw",
    description="Pay out from the withdrawable balance to M-Pesa"
)
async def create_withdrawal(
    withdrawal_data: WithdrawalCreate,
    current_user: dict = Depends(require_companion),
    mpesa: MpesaClient = Depends(get_mpesa_client),
    db: AsyncSession = Depends(get_db)
):
    """Create withdrawal"""
    service = WithdrawalService(db, mpesa=mpesa)
    result = await service.create_withdrawal(
        user_id=uuid.UUID(current_user["id"]),
        amount_kes=withdrawal_data.amount_kes,
        phone_number=withdrawal_data.phone_number
    )
    return WithdrawalInitiateResponse(**result)

@router.get("", response_model=List[WithdrawalResponse], summary="List withdrawals")
async def list_withdrawals(
    pagination: LimitOffsetParams = Depends(get_limit_offset_params),
    current_user: dict = Depends(require_companion),
    db: AsyncSession = Depends(get_db)
):
    service = WithdrawalService(db)
    return await service.list_withdrawals(
        uuid.UUID(current_user["id"]),
        limit=pagination.limit,
        offset=pagination.offset
    )
