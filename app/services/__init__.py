"""Services package"""

from .wallet import WalletService
from .notification import NotificationService
from .referral import ReferralService
from .audit_service import AuditService
from .saga import Saga
from .token_cache import TokenCache

__all__ = [
    "WalletService",
    "NotificationService",
    "ReferralService",
    "AuditService",
    "Saga",
    "TokenCache",
]
