"""
Notification model for user communications
"""

from sqlalchemy import Column, String, Text, Boolean, ForeignKey, Index, DateTime, JSON
from sqlalchemy.dialects.postgresql import UUID
import uuid

from .base import Base, TimestampedModel

class Notification(Base, TimestampedModel):
    """User notifications"""

    __tablename__ = "notifications"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id = Column(UUID(as_uuid=True), ForeignKey("users.id"), nullable=False)

    # Notification content
    title = Column(String(255), nullable=False)
    message = Column(Text, nullable=False)
    type = Column(String(50), nullable=False)  # paid_request, accepted, rejected, payment, kyc_refund, boost

    # Action
    action_url = Column(String(500), nullable=True)

    # Status
    is_read = Column(Boolean, default=False)
    read_at = Column(DateTime(timezone=True), nullable=True)

    # Metadata
    notification_metadata = Column(JSON, default=dict)

    # Indexes
    __table_args__ = (
        Index("idx_notifications_user_unread", "user_id", "is_read"),
        Index("idx_notifications_type", "type"),
    )
