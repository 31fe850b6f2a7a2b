"""Models package initialization"""

from .base import Base
from .user import User, UserRole, CompanionProfile, CompanionBoost
from .payment import Payment, PaymentStatus, PaymentProvider
from .interaction import InteractionRequest, InteractionStatus, InteractionType
from .chat import ChatSession, ChatMessage
from .wallet import Wallet, WalletTransaction, WalletTransactionType
from .referral import Referral, ReferralCode
from .withdrawal import Withdrawal, WithdrawalStatus
from .notification import Notification
from .audit_log import AuditLog

__all__ = [
    "Base",
    "User",
    "UserRole",
    "CompanionProfile",
    "CompanionBoost",
    "Payment",
    "PaymentStatus",
    "PaymentProvider",
    "InteractionRequest",
    "InteractionStatus",
    "InteractionType",
    "ChatSession",
    "ChatMessage",
    "Wallet",
    "WalletTransaction",
    "WalletTransactionType",
    "Referral",
    "ReferralCode",
    "Withdrawal",
    "WithdrawalStatus",
    "Notification",
    "AuditLog",
]
