"""
User and companion profile models
Identity and eligibility flags consumed by the settlement core
"""

from sqlalchemy import Column, String, Boolean, BigInteger, ForeignKey, Enum, DateTime, Index
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship
import uuid
import enum

from .base import Base, TimestampedModel, UUIDModel

class UserRole(str, enum.Enum):
    CLIENT = "client"
    COMPANION = "companion"
    ADMIN = "admin"

class User(Base, TimestampedModel, UUIDModel):
    """Platform user (client, companion or admin)"""

    __tablename__ = "users"

    email = Column(String(255), unique=True, index=True)
    phone = Column(String(20), index=True)
    first_name = Column(String(100))
    last_name = Column(String(100))
    username = Column(String(100))
    role = Column(Enum(UserRole), default=UserRole.CLIENT, nullable=False)

    # Identity verification (KYC) flag, set by the verification gate
    is_kyc_verified = Column(Boolean, default=False, nullable=False)
    kyc_verified_at = Column(DateTime(timezone=True), nullable=True)

    # Relationships
    companion_profile = relationship("CompanionProfile", back_populates="user", uselist=False)

    @property
    def display_name(self) -> str:
        return self.username or self.email or "A client"

    def __str__(self):
        return f"User {self.id} ({self.role})"

class CompanionProfile(Base, TimestampedModel):
    """Companion-side profile with request eligibility flags"""

    __tablename__ = "companion_profiles"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id = Column(UUID(as_uuid=True), ForeignKey("users.id"), unique=True, nullable=False)
    display_name = Column(String(100), nullable=False)
    base_price_cents = Column(BigInteger, default=0, nullable=False)

    # Eligibility: both must be true for a request to be delivered
    accepting_requests = Column(Boolean, default=True, nullable=False)
    is_available = Column(Boolean, default=True, nullable=False)

    # Relationships
    user = relationship("User", back_populates="companion_profile")

    __table_args__ = (
        Index("idx_companion_profiles_available", "accepting_requests", "is_available"),
    )

    @property
    def can_receive_requests(self) -> bool:
        return bool(self.accepting_requests and self.is_available)

class CompanionBoost(Base, TimestampedModel):
    """Paid profile boost"""

    __tablename__ = "companion_boosts"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    companion_id = Column(UUID(as_uuid=True), ForeignKey("users.id"), nullable=False, index=True)
    payment_id = Column(UUID(as_uuid=True), ForeignKey("payments.id"), unique=True, nullable=True)
    boost_type = Column(String(30), nullable=False)
    start_at = Column(DateTime(timezone=True), nullable=False)
    end_at = Column(DateTime(timezone=True), nullable=False, index=True)
    is_active = Column(Boolean, default=True, nullable=False, index=True)
