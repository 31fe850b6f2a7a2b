"""Audit logging service"""

from typing import Dict, Any, Optional
from sqlalchemy.ext.asyncio import AsyncSession
import uuid

from app.models import AuditLog

class AuditService:
    """Service for logging money-moving actions"""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def log_action(
        self,
        action: str,
        entity_type: str,
        entity_id: Any,
        actor_id: Optional[uuid.UUID] = None,
        description: Optional[str] = None,
        new_values: Optional[Dict[str, Any]] = None
    ) -> AuditLog:
        """Log an action in the caller's transaction"""
        log = AuditLog(
            actor_id=actor_id,
            action=action,
            entity_type=entity_type,
            entity_id=str(entity_id),
            description=description,
            new_values=new_values
        )

        self.db.add(log)
        await self.db.flush()

        return log
