"""
Referral API routes
"""

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession
import uuid

from app.core.database import get_db
from app.models import User
from app.services.referral import ReferralService
from app.utils.dependencies import current_user_id, get_current_active_user, get_limit_offset_params
from app.utils.pagination import LimitOffsetParams
from .schemas import (
    ApplyReferralRequest,
    ApplyReferralResponse,
    ReferralCodeResponse,
    ReferralListResponse,
)

router = APIRouter()

@router.get("/code", response_model=ReferralCodeResponse, summary="My referral code")
async def get_referral_code(
    user_id: uuid.UUID = Depends(current_user_id),
    db: AsyncSession = Depends(get_db)
):
    """Get (or generate) the caller's referral code"""
    code = await ReferralService(db).get_or_create_code(user_id)
    return ReferralCodeResponse(code=code.code, is_active=code.is_active)

@router.get("", response_model=ReferralListResponse, summary="My referrals")
async def list_referrals(
    pagination: LimitOffsetParams = Depends(get_limit_offset_params),
    user_id: uuid.UUID = Depends(current_user_id),
    db: AsyncSession = Depends(get_db)
):
    referrals = await ReferralService(db).list_referrals(
        user_id,
        limit=pagination.limit,
        offset=pagination.offset
    )
    return {"referrals": referrals}

@router.post("/apply", response_model=ApplyReferralResponse, summary="Apply referral code")
async def apply_referral_code(
    data: ApplyReferralRequest,
    current_user: User = Depends(get_current_active_user),
    db: AsyncSession = Depends(get_db)
):
    """Attach the caller to the owner of a referral code"""
    await ReferralService(db).apply_referral_code(data.code, current_user)
    return ApplyReferralResponse(message="Referral code applied")
