"""
Interaction API routes
"""

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession
from typing import List
import uuid

from app.core.database import get_db
from app.core.security import get_current_user, require_client, require_companion
from app.utils.pagination import LimitOffsetParams
from app.utils.dependencies import get_limit_offset_params
from .schemas import InteractionResponse, RejectResponse, ServiceDoneResponse
from .services import InteractionService

router = APIRouter()

@router.get(
    "",
    response_model=List[InteractionResponse],
    summary="List my requests",
    description="Requests sent by a client or received by a companion"
)
async def list_interactions(
    pagination: LimitOffsetParams = Depends(get_limit_offset_params),
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """List interactions for the caller's role"""
    service = InteractionService(db)
    return await service.list_for_user(
        user_id=uuid.UUID(current_user["id"]),
        role=current_user["role"],
        limit=pagination.limit,
        offset=pagination.offset
    )

@router.get(
    "/{interaction_id}",
    response_model=InteractionResponse,
    summary="Get request"
)
async def get_interaction(
    interaction_id: uuid.UUID,
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """Get one interaction the caller is a party to"""
    service = InteractionService(db)
    return await service.get_for_user(uuid.UUID(current_user["id"]), interaction_id)

@router.post(
    "/{interaction_id}/accept",
    response_model=InteractionResponse,
    summary="Accept request",
    description="Accept a paid request and open the chat"
)
async def accept_interaction(
    interaction_id: uuid.UUID,
    current_user: dict = Depends(require_companion),
    db: AsyncSession = Depends(get_db)
):
    """Accept interaction"""
    service = InteractionService(db)
    user_id = uuid.UUID(current_user["id"])
    await service.accept(user_id, interaction_id)
    return await service.get_for_user(user_id, interaction_id)

@router.post(
    "/{interaction_id}/reject",
    response_model=RejectResponse,
    summary="Reject request",
    description="Decline a pending request; a paid request is refunded to the client's wallet"
)
async def reject_interaction(
    interaction_id: uuid.UUID,
    current_user: dict = Depends(require_companion),
    db: AsyncSession = Depends(get_db)
):
    """Reject interaction"""
    service = InteractionService(db)
    result = await service.reject(uuid.UUID(current_user["id"]), interaction_id)
    return RejectResponse(**result)

@router.post(
    "/{interaction_id}/service-done",
    response_model=ServiceDoneResponse,
    summary="Confirm service",
    description="Client confirms the service was delivered; releases the companion's earning"
)
async def confirm_service_done(
    interaction_id: uuid.UUID,
    current_user: dict = Depends(require_client),
    db: AsyncSession = Depends(get_db)
):
    """Service done"""
    service = InteractionService(db)
    result = await service.service_done(uuid.UUID(current_user["id"]), interaction_id)
    return ServiceDoneResponse(**result)
