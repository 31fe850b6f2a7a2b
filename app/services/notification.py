"""
Notification service for settlement events
Persists in-app notifications; delivery to devices happens elsewhere
"""

from typing import Optional, Dict, Any
import uuid
import logging

from sqlalchemy.ext.asyncio import AsyncSession
from app.models import Notification, InteractionRequest, Payment
from app.utils.helpers import cents_to_kes

logger = logging.getLogger(__name__)

class NotificationService:
    """Service for managing notifications"""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def create_notification(
        self,
        user_id: uuid.UUID,
        title: str,
        message: str,
        type: str,
        action_url: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None
    ) -> Notification:
        """
        Create in-app notification

        The row joins the caller's transaction, so a notification is never
        persisted for a state change that was rolled back.
        """
        notification = Notification(
            user_id=user_id,
            title=title,
            message=message,
            type=type,
            action_url=action_url,
            notification_metadata=metadata or {}
        )

        self.db.add(notification)
        await self.db.flush()

        logger.info(f"Notification '{type}' queued for user {user_id}")
        return notification

    async def notify_paid_request(
        self,
        interaction: InteractionRequest,
        client_name: str
    ) -> Notification:
        """Tell a companion a paid request is waiting"""
        return await self.create_notification(
            user_id=interaction.companion_id,
            title="New paid request",
            message=f"{client_name} sent you a paid {interaction.interaction_type.value.lower()} request",
            type="paid_request",
            action_url=f"/interactions/{interaction.id}",
            metadata={"interaction_id": str(interaction.id)}
        )

    async def notify_request_accepted(self, interaction: InteractionRequest) -> Notification:
        return await self.create_notification(
            user_id=interaction.client_id,
            title="Request accepted",
            message="Your request was accepted. Your chat is now open.",
            type="accepted",
            action_url=f"/interactions/{interaction.id}",
            metadata={"interaction_id": str(interaction.id)}
        )

    async def notify_request_rejected(
        self,
        interaction: InteractionRequest,
        refunded_cents: int = 0
    ) -> Notification:
        message = "Your request was declined."
        if refunded_cents:
            message += f" KES {cents_to_kes(refunded_cents)} was returned to your wallet."

        return await self.create_notification(
            user_id=interaction.client_id,
            title="Request declined",
            message=message,
            type="rejected",
            action_url=f"/interactions/{interaction.id}",
            metadata={"interaction_id": str(interaction.id), "refunded_cents": refunded_cents}
        )

    async def notify_payment_confirmed(self, payment: Payment) -> Notification:
        return await self.create_notification(
            user_id=payment.payer_id,
            title="Payment confirmed",
            message=f"Your payment of KES {cents_to_kes(payment.amount_cents)} was received.",
            type="payment",
            metadata={"payment_id": str(payment.id)}
        )

    async def notify_kyc_refund(
        self,
        interaction: InteractionRequest,
        refunded_cents: int
    ) -> Notification:
        """Companion became unavailable while the client was verifying"""
        return await self.create_notification(
            user_id=interaction.client_id,
            title="Request refunded",
            message=(
                "The companion is no longer available. "
                f"KES {cents_to_kes(refunded_cents)} was returned to your wallet."
            ),
            type="kyc_refund",
            metadata={"interaction_id": str(interaction.id), "refunded_cents": refunded_cents}
        )

    async def notify_boost_activated(
        self,
        companion_id: uuid.UUID,
        days: int
    ) -> Notification:
        return await self.create_notification(
            user_id=companion_id,
            title="Profile boosted",
            message=f"Your profile boost is active for {days} days.",
            type="boost"
        )
