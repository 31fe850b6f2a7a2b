"""
Common dependencies for FastAPI
"""

import uuid
from fastapi import Query, Depends
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select

from app.core.database import get_db
from app.core.exceptions import NotFoundException, UnauthorizedException
from app.core.security import get_current_user
from app.models import User
from .pagination import LimitOffsetParams

def get_limit_offset_params(
    limit: int = Query(50, ge=1, le=100, description="Page size"),
    offset: int = Query(0, ge=0, description="Rows to skip")
) -> LimitOffsetParams:
    """Get limit/offset pagination parameters from query"""
    return LimitOffsetParams(limit=limit, offset=offset)

def current_user_id(current_user: dict = Depends(get_current_user)) -> uuid.UUID:
    """Caller's user id as a UUID"""
    try:
        return uuid.UUID(str(current_user["id"]))
    except (KeyError, ValueError):
        raise UnauthorizedException("Invalid token subject")

async def get_current_active_user(
    user_id: uuid.UUID = Depends(current_user_id),
    db: AsyncSession = Depends(get_db)
) -> User:
    """
    Get current user from database

    Args:
        user_id: Current user id from JWT
        db: Database session

    Returns:
        User model instance

    Raises:
        NotFoundException: If user not found
    """
    result = await db.execute(select(User).where(User.id == user_id))
    user = result.scalar_one_or_none()

    if not user:
        raise NotFoundException("User not found")

    return user
