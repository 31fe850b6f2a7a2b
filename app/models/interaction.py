"""
Interaction request model
Paid engagement between a client and a companion
"""

from sqlalchemy import Column, String, Integer, ForeignKey, Index, Enum, DateTime
from sqlalchemy.dialects.postgresql import UUID
from datetime import datetime
from typing import Optional
import uuid
import enum

from .base import Base, TimestampedModel
from app.utils.helpers import as_utc, utcnow

class InteractionStatus(str, enum.Enum):
    """Interaction request lifecycle"""
    PENDING = "PENDING"
    PENDING_VERIFICATION = "PENDING_VERIFICATION"
    ACCEPTED = "ACCEPTED"
    REJECTED = "REJECTED"
    EXPIRED = "EXPIRED"

class InteractionType(str, enum.Enum):
    CHAT = "CHAT"
    VIDEO = "VIDEO"
    BOOKING = "BOOKING"

class InteractionRequest(Base, TimestampedModel):
    """Client request for a companion's time, backed by a payment"""

    __tablename__ = "interaction_requests"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    client_id = Column(UUID(as_uuid=True), ForeignKey("users.id"), nullable=False, index=True)
    companion_id = Column(UUID(as_uuid=True), ForeignKey("users.id"), nullable=False, index=True)
    payment_id = Column(UUID(as_uuid=True), ForeignKey("payments.id"), nullable=True, unique=True)

    interaction_type = Column(Enum(InteractionType), nullable=False)
    service_type = Column(String(50), nullable=True)
    status = Column(Enum(InteractionStatus), default=InteractionStatus.PENDING, nullable=False)
    duration_minutes = Column(Integer, default=1440, nullable=False)

    # Timestamps
    expires_at = Column(DateTime(timezone=True), nullable=True)
    accepted_at = Column(DateTime(timezone=True), nullable=True)
    rejected_at = Column(DateTime(timezone=True), nullable=True)
    service_completed_at = Column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        Index("idx_interactions_companion_status", "companion_id", "status"),
        Index("idx_interactions_client_status", "client_id", "status"),
    )

    def effective_status(self, now: Optional[datetime] = None) -> InteractionStatus:
        """
        Status as readers should see it

        A PENDING request past its expiry is reported as EXPIRED even
        when no sweep has rewritten the row yet.
        """
        now = now or utcnow()
        expires_at = as_utc(self.expires_at)
        if (
            self.status == InteractionStatus.PENDING
            and expires_at is not None
            and expires_at <= now
        ):
            return InteractionStatus.EXPIRED
        return self.status

    def __str__(self):
        return f"InteractionRequest {self.id} ({self.status})"
