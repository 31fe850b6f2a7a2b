"""API v1 routes aggregation"""

from fastapi import APIRouter

from .payments.router import router as payments_router
from .interactions.router import router as interactions_router
from .webhooks.router import router as webhooks_router
from .wallet.router import router as wallet_router
from .withdrawals.router import router as withdrawals_router
from .referrals.router import router as referrals_router
from .verification.router import router as verification_router

# Create v1 router
api_router = APIRouter()

# Include all routers
api_router.include_router(payments_router, prefix="/payments", tags=["Payments"])
api_router.include_router(interactions_router, prefix="/interactions", tags=["Interactions"])
api_router.include_router(webhooks_router, prefix="/webhooks", tags=["Webhooks"])
api_router.include_router(wallet_router, prefix="/wallet", tags=["Wallet"])
api_router.include_router(withdrawals_router, prefix="/withdrawals", tags=["Withdrawals"])
api_router.include_router(referrals_router, prefix="/referrals", tags=["Referrals"])
api_router.include_router(verification_router, prefix="/verification", tags=["Verification"])
