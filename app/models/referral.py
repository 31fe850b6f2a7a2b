"""Referral system models"""

from sqlalchemy import Column, String, Integer, Boolean, ForeignKey
from sqlalchemy.dialects.postgresql import UUID
import uuid

from app.models.base import Base, TimestampedModel

class Referral(Base, TimestampedModel):
    """Track referrals between users"""

    __tablename__ = "referrals"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    referrer_id = Column(UUID(as_uuid=True), ForeignKey("users.id"), nullable=False, index=True)
    referred_user_id = Column(UUID(as_uuid=True), ForeignKey("users.id"), nullable=False, unique=True)
    # Commissions paid so far, capped by REFERRAL_MAX_TRANSACTIONS
    completed_count = Column(Integer, default=0, nullable=False)

class ReferralCode(Base, TimestampedModel):
    """Shareable referral code, one per user"""

    __tablename__ = "referral_codes"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id = Column(UUID(as_uuid=True), ForeignKey("users.id"), unique=True, nullable=False)
    code = Column(String(16), unique=True, nullable=False, index=True)
    is_active = Column(Boolean, default=True, nullable=False)
