"""
Wallet models
Per-user balances and the append-only ledger that explains them
"""

from sqlalchemy import Column, String, BigInteger, ForeignKey, Index, Enum, CheckConstraint, UniqueConstraint
from sqlalchemy.dialects.postgresql import UUID
import uuid
import enum

from .base import Base, TimestampedModel

class WalletTransactionType(str, enum.Enum):
    """Ledger entry types"""
    EARNING = "EARNING"
    PENDING_EARNING = "PENDING_EARNING"
    PAYMENT = "PAYMENT"
    WITHDRAWAL = "WITHDRAWAL"
    BOOST_PAYMENT = "BOOST_PAYMENT"
    REFERRAL_COMMISSION = "REFERRAL_COMMISSION"
    REFERRAL_BONUS = "REFERRAL_BONUS"
    REFUND = "REFUND"
    PLATFORM_FEE = "PLATFORM_FEE"

class Wallet(Base, TimestampedModel):
    """
    User wallet

    ``balance_cents`` is the gross balance clients spend from and companions
    accrue unreleased earnings in. ``withdrawable_cents`` is the released
    part that can be paid out. The two buckets are disjoint.
    """

    __tablename__ = "wallets"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id = Column(UUID(as_uuid=True), ForeignKey("users.id"), unique=True, nullable=False)
    balance_cents = Column(BigInteger, default=0, nullable=False)
    withdrawable_cents = Column(BigInteger, default=0, nullable=False)
    currency = Column(String(3), default="KES", nullable=False)

    # Ledger entries written so far; stamped on each entry as its sequence
    entry_count = Column(BigInteger, default=0, nullable=False)

    __table_args__ = (
        CheckConstraint("balance_cents >= 0", name="ck_wallets_balance_non_negative"),
        CheckConstraint("withdrawable_cents >= 0", name="ck_wallets_withdrawable_non_negative"),
    )

class WalletTransaction(Base, TimestampedModel):
    """Append-only wallet ledger entry"""

    __tablename__ = "wallet_transactions"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id = Column(UUID(as_uuid=True), ForeignKey("users.id"), nullable=False)
    sequence = Column(BigInteger, nullable=False)
    type = Column(Enum(WalletTransactionType), nullable=False)

    # Signed logical amount plus the effect on each bucket
    amount_cents = Column(BigInteger, nullable=False)
    balance_delta_cents = Column(BigInteger, default=0, nullable=False)
    withdrawable_delta_cents = Column(BigInteger, default=0, nullable=False)

    reference = Column(String(255), nullable=True)

    __table_args__ = (
        UniqueConstraint("user_id", "sequence", name="uq_wallet_transactions_user_sequence"),
        Index("idx_wallet_transactions_user_created", "user_id", "created_at"),
        Index("idx_wallet_transactions_reference", "reference"),
    )
