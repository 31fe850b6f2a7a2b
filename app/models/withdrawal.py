"""
Withdrawal model
M-Pesa B2C payouts from the withdrawable balance
"""

from sqlalchemy import Column, String, BigInteger, ForeignKey, Enum, DateTime, Index
from sqlalchemy.dialects.postgresql import UUID
import uuid
import enum

from .base import Base, TimestampedModel

class WithdrawalStatus(str, enum.Enum):
    PENDING = "PENDING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"

class Withdrawal(Base, TimestampedModel):
    """Payout request"""

    __tablename__ = "withdrawals"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id = Column(UUID(as_uuid=True), ForeignKey("users.id"), nullable=False, index=True)
    order_id = Column(String(64), unique=True, nullable=False)
    amount_cents = Column(BigInteger, nullable=False)
    phone_number = Column(String(20), nullable=False)
    status = Column(Enum(WithdrawalStatus), default=WithdrawalStatus.PENDING, nullable=False)
    provider_ref = Column(String(128), nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        Index("idx_withdrawals_status", "status"),
    )
