"""Settlement audit log model"""

from sqlalchemy import Column, String, Text, ForeignKey, JSON
from sqlalchemy.dialects.postgresql import UUID
import uuid

from app.models.base import Base, TimestampedModel

class AuditLog(Base, TimestampedModel):
    """Record of money-moving actions for the audit trail"""

    __tablename__ = "audit_logs"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    actor_id = Column(UUID(as_uuid=True), ForeignKey("users.id"), nullable=True)
    action = Column(String(100), nullable=False)  # payment_completed, payment_failed, withdrawal_completed, etc.
    entity_type = Column(String(50), nullable=False)  # payment, interaction, withdrawal
    entity_id = Column(String(200), nullable=False)
    description = Column(Text)
    new_values = Column(JSON)
