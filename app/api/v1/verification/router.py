"""
Identity verification API routes
"""

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession
from pydantic import BaseModel
import uuid

from app.core.database import get_db
from app.core.security import require_admin
from app.services.audit_service import AuditService
from app.services.verification import VerificationService
from app.utils.dependencies import current_user_id

router = APIRouter()

class VerificationResponse(BaseModel):
    status: str
    kyc: bool
    released: int
    refunded: int

@router.post(
    "/complete",
    response_model=VerificationResponse,
    summary="Complete verification",
    description="Mark the caller verified and release requests held for verification"
)
async def complete_verification(
    user_id: uuid.UUID = Depends(current_user_id),
    db: AsyncSession = Depends(get_db)
):
    service = VerificationService(db)
    return await service.complete_verification(user_id)

@router.post(
    "/{user_id}/complete",
    response_model=VerificationResponse,
    summary="Verify a user (admin)"
)
async def admin_complete_verification(
    user_id: uuid.UUID,
    current_user: dict = Depends(require_admin),
    db: AsyncSession = Depends(get_db)
):
    """Admin override of the verification flag"""
    result = await VerificationService(db).complete_verification(user_id)

    await AuditService(db).log_action(
        action="kyc_verified",
        entity_type="user",
        entity_id=user_id,
        actor_id=uuid.UUID(current_user["id"]),
        new_values=result
    )
    return result
