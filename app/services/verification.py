"""
Identity verification gate
Releases requests that were paid while the client was unverified
"""

from typing import Any, Dict, Optional
from datetime import timedelta
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, update
import uuid
import logging

from app.models import (
    User,
    CompanionProfile,
    InteractionRequest,
    InteractionStatus,
    Payment,
    PaymentStatus,
    WalletTransactionType,
)
from app.core.config import settings
from app.core.exceptions import NotFoundException
from app.api.v1.interactions.state_machine import InteractionStateMachine
from app.services.notification import NotificationService
from app.services.wallet import WalletService
from app.utils.helpers import utcnow

logger = logging.getLogger(__name__)

RELEASE_BATCH_SIZE = 50

class VerificationService:
    """Completes identity verification and settles held requests"""

    def __init__(self, db: AsyncSession):
        self.db = db
        self.wallet_service = WalletService(db)
        self.notification_service = NotificationService(db)

    async def complete_verification(self, user_id: uuid.UUID) -> Dict[str, Any]:
        """
        Mark a client verified and release their held requests

        Each PENDING_VERIFICATION request with a completed payment is either
        sent on to its companion (when they are still accepting and
        available) or rejected and refunded in full.

        Args:
            user_id: Client who finished verification

        Returns:
            Dict with status, kyc, released and refunded counts

        Raises:
            NotFoundException: If the user does not exist
        """
        result = await self.db.execute(
            update(User)
            .where(User.id == user_id)
            .values(is_kyc_verified=True, kyc_verified_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            raise NotFoundException("User not found")

        client = await self.db.get(User, user_id)
        client_name = client.display_name if client else "A client"

        released = 0
        refunded = 0
        last_id: Optional[uuid.UUID] = None

        while True:
            query = (
                select(InteractionRequest, Payment)
                .join(Payment, Payment.id == InteractionRequest.payment_id)
                .where(
                    InteractionRequest.client_id == user_id,
                    InteractionRequest.status == InteractionStatus.PENDING_VERIFICATION
                )
                .order_by(InteractionRequest.id)
                .limit(RELEASE_BATCH_SIZE)
            )
            if last_id is not None:
                query = query.where(InteractionRequest.id > last_id)

            batch = (await self.db.execute(query)).all()
            if not batch:
                break

            for interaction, payment in batch:
                last_id = interaction.id

                if payment.status != PaymentStatus.COMPLETED:
                    continue

                companion = await self._get_companion_profile(interaction.companion_id)

                if companion and companion.can_receive_requests:
                    if await self._release(interaction, client_name):
                        released += 1
                else:
                    if await self._refund(interaction, payment):
                        refunded += 1

            if len(batch) < RELEASE_BATCH_SIZE:
                break

        logger.info(f"Verification complete for {user_id}: released={released} refunded={refunded}")

        return {
            "status": "ok",
            "kyc": True,
            "released": released,
            "refunded": refunded
        }

    async def _get_companion_profile(self, companion_id: uuid.UUID) -> Optional[CompanionProfile]:
        result = await self.db.execute(
            select(CompanionProfile).where(CompanionProfile.user_id == companion_id)
        )
        return result.scalar_one_or_none()

    async def _release(self, interaction: InteractionRequest, client_name: str) -> bool:
        moved = await InteractionStateMachine.transition(
            self.db,
            interaction.id,
            InteractionStatus.PENDING_VERIFICATION,
            InteractionStatus.PENDING,
            expires_at=utcnow() + timedelta(minutes=settings.REQUEST_EXPIRY_MINUTES)
        )
        if moved:
            await self.notification_service.notify_paid_request(interaction, client_name)
        return moved

    async def _refund(self, interaction: InteractionRequest, payment: Payment) -> bool:
        moved = await InteractionStateMachine.transition(
            self.db,
            interaction.id,
            InteractionStatus.PENDING_VERIFICATION,
            InteractionStatus.REJECTED,
            rejected_at=utcnow()
        )
        if not moved:
            return False

        await self.wallet_service.credit(
            user_id=interaction.client_id,
            amount_cents=payment.amount_cents,
            type=WalletTransactionType.REFUND,
            reference=f"interaction_{interaction.id}"
        )
        await self.notification_service.notify_kyc_refund(interaction, payment.amount_cents)
        return True
