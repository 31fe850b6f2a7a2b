"""
Payment model for settlement records
Provider-agnostic record of a money movement attempt
"""

from sqlalchemy import Column, String, BigInteger, ForeignKey, Index, Enum, DateTime, JSON
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship
import uuid
import enum

from .base import Base, TimestampedModel
from app.schemas.payment_context import load_context

class PaymentStatus(str, enum.Enum):
    """Payment status enumeration"""
    PENDING = "PENDING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"
    EXPIRED = "EXPIRED"

class PaymentProvider(str, enum.Enum):
    """Settlement rail"""
    WALLET = "WALLET"
    PUSH_PAYMENT = "PUSH_PAYMENT"
    ON_CHAIN = "ON_CHAIN"
    GENERIC = "GENERIC"

class Payment(Base, TimestampedModel):
    """Payment attempt records"""

    __tablename__ = "payments"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    payer_id = Column(UUID(as_uuid=True), ForeignKey("users.id"), nullable=False, index=True)

    # Money, always minor units
    amount_cents = Column(BigInteger, nullable=False)
    currency = Column(String(3), default="KES", nullable=False)

    # Provider details
    provider = Column(Enum(PaymentProvider), nullable=False)
    provider_ref = Column(String(128), unique=True, nullable=False)
    idempotency_key = Column(String(128), unique=True, nullable=False)
    status = Column(Enum(PaymentStatus), default=PaymentStatus.PENDING, nullable=False)

    # Typed settlement context, see app.schemas.payment_context
    context_data = Column(JSON, nullable=True)

    # Timestamps
    expires_at = Column(DateTime(timezone=True), nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)

    # Relationships
    payer = relationship("User")

    __table_args__ = (
        Index("idx_payments_status", "status"),
        Index("idx_payments_provider", "provider"),
    )

    @property
    def context(self):
        return load_context(self.context_data)

    @property
    def wallet_cents(self) -> int:
        """Wallet portion already deducted for this payment"""
        ctx = self.context
        return getattr(ctx, "wallet_cents", 0) if ctx is not None else 0

    def __str__(self):
        return f"Payment {self.id} - {self.amount_cents} {self.currency} ({self.status})"
