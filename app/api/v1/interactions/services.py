"""
Interaction service layer
Request creation, accept/reject, service confirmation and expiry
"""

from typing import Any, Dict, List, Optional
from datetime import datetime, timedelta
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, update, delete, exists, or_, and_
from sqlalchemy.orm import aliased
import uuid
import logging

from app.models import (
    User,
    UserRole,
    CompanionProfile,
    InteractionRequest,
    InteractionStatus,
    InteractionType,
    ChatSession,
    ChatMessage,
    Payment,
    PaymentStatus,
    WalletTransactionType,
)
from app.core.config import settings
from app.core.exceptions import (
    ConflictException,
    ForbiddenException,
    InvalidStateTransitionException,
    NotFoundException,
)
from app.services.notification import NotificationService
from app.services.referral import ReferralService
from app.services.wallet import WalletService
from app.utils.helpers import as_utc, utcnow
from .state_machine import InteractionStateMachine

logger = logging.getLogger(__name__)

def session_length(duration_minutes: Optional[int]) -> timedelta:
    """Chat session length, 24 hours when no positive duration was bought"""
    if not duration_minutes or duration_minutes <= 0:
        return timedelta(minutes=settings.DEFAULT_DURATION_MINUTES)
    return timedelta(minutes=duration_minutes)

class InteractionService:
    """Interaction request lifecycle"""

    def __init__(self, db: AsyncSession):
        self.db = db
        self.state_machine = InteractionStateMachine()
        self.wallet_service = WalletService(db)
        self.notification_service = NotificationService(db)
        self.referral_service = ReferralService(db)

    async def create_for_payment(
        self,
        client_id: uuid.UUID,
        companion_id: uuid.UUID,
        payment_id: uuid.UUID,
        interaction_type: str,
        service_type: Optional[str],
        duration_minutes: Optional[int],
        status: InteractionStatus = InteractionStatus.PENDING
    ) -> InteractionRequest:
        """
        Create the request that a payment pays for

        Args:
            client_id: Paying client
            companion_id: Requested companion (user id)
            payment_id: Backing payment
            interaction_type: CHAT, VIDEO or BOOKING
            service_type: Free-text service label
            duration_minutes: Session length, defaults to 24h
            status: PENDING, or PENDING_VERIFICATION for unverified clients

        Returns:
            Created interaction request
        """
        if not duration_minutes or duration_minutes <= 0:
            duration_minutes = settings.DEFAULT_DURATION_MINUTES

        interaction = InteractionRequest(
            client_id=client_id,
            companion_id=companion_id,
            payment_id=payment_id,
            interaction_type=InteractionType(interaction_type),
            service_type=service_type,
            status=status,
            duration_minutes=duration_minutes,
            expires_at=utcnow() + timedelta(minutes=settings.REQUEST_EXPIRY_MINUTES)
        )
        self.db.add(interaction)
        await self.db.flush()

        logger.info(f"Interaction {interaction.id} created ({status.value}) for payment {payment_id}")
        return interaction

    async def get_by_payment(self, payment_id: uuid.UUID) -> Optional[InteractionRequest]:
        result = await self.db.execute(
            select(InteractionRequest)
            .where(InteractionRequest.payment_id == payment_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def notify_companion(self, interaction: InteractionRequest) -> None:
        """Send the paid-request notification for a deliverable request"""
        client = await self.db.get(User, interaction.client_id)
        client_name = client.display_name if client else "A client"
        await self.notification_service.notify_paid_request(interaction, client_name)

    async def accept(
        self,
        companion_id: uuid.UUID,
        interaction_id: uuid.UUID
    ) -> InteractionRequest:
        """
        Accept a paid request

        The companion profile row is locked so accepts for one companion are
        serialised, and the status change is a single conditional UPDATE
        that also requires a completed payment and no other open
        engagement. Everything that follows (chat session, earning credit,
        auto-rejecting the other pending requests) rides on that one win.

        Args:
            companion_id: Accepting companion (user id)
            interaction_id: Request to accept

        Returns:
            Accepted interaction

        Raises:
            NotFoundException: If the request does not belong to the companion
            InvalidStateTransitionException: If it is not pending, expired or unpaid
            ConflictException: If the companion is already engaged
        """
        profile = await self._lock_companion_profile(companion_id)
        interaction = await self._get_for_companion(interaction_id, companion_id)

        now = utcnow()
        moved = await self.state_machine.transition(
            self.db,
            interaction.id,
            InteractionStatus.PENDING,
            InteractionStatus.ACCEPTED,
            extra_conditions=[
                InteractionRequest.companion_id == companion_id,
                or_(
                    InteractionRequest.expires_at.is_(None),
                    InteractionRequest.expires_at > now
                ),
                self._payment_completed_clause(),
                ~self._open_engagement_clause(companion_id, interaction.id, now),
            ],
            accepted_at=now
        )

        if not moved:
            await self._raise_accept_failure(interaction.id, companion_id, now)

        payment = await self.db.get(Payment, interaction.payment_id)

        session = ChatSession(
            interaction_id=interaction.id,
            started_at=now,
            ends_at=now + session_length(interaction.duration_minutes)
        )
        self.db.add(session)
        await self.db.flush()

        await self.wallet_service.credit(
            user_id=companion_id,
            amount_cents=payment.amount_cents,
            type=WalletTransactionType.PENDING_EARNING,
            reference=f"interaction_{interaction.id}"
        )

        rejected = await self._auto_reject_pending(companion_id, interaction.id)

        profile.is_available = False
        await self.db.flush()

        interaction = await self._reload(interaction.id)
        await self.notification_service.notify_request_accepted(interaction)

        logger.info(
            f"Interaction {interaction.id} accepted by {companion_id}; "
            f"{rejected} other pending request(s) auto-rejected"
        )
        return interaction

    async def reject(
        self,
        companion_id: uuid.UUID,
        interaction_id: uuid.UUID
    ) -> Dict[str, Any]:
        """
        Decline a pending request and refund the client if it was paid

        Raises:
            NotFoundException: If the request does not belong to the companion
            InvalidStateTransitionException: If the request is no longer pending
        """
        interaction = await self._get_for_companion(interaction_id, companion_id)

        refunded = await self._reject_pending(interaction)
        if refunded is None:
            raise InvalidStateTransitionException("Request is no longer pending")

        return {
            "status": InteractionStatus.REJECTED.value,
            "refunded_cents": refunded
        }

    async def service_done(
        self,
        client_id: uuid.UUID,
        interaction_id: uuid.UUID
    ) -> Dict[str, Any]:
        """
        Client confirms the service was delivered

        Closes the chat (purging its messages), releases the companion's
        earning into their withdrawable balance and pays the companion's
        referrer, if any.

        Raises:
            NotFoundException: If the request does not belong to the client
            InvalidStateTransitionException: If not accepted or already confirmed
        """
        interaction = await self._get_for_client(interaction_id, client_id)

        now = utcnow()
        result = await self.db.execute(
            update(InteractionRequest)
            .where(
                InteractionRequest.id == interaction.id,
                InteractionRequest.client_id == client_id,
                InteractionRequest.status == InteractionStatus.ACCEPTED,
                InteractionRequest.service_completed_at.is_(None)
            )
            .values(service_completed_at=now)
            .execution_options(synchronize_session=False)
        )

        if result.rowcount == 0:
            raise InvalidStateTransitionException("Request is not accepted or service already confirmed")

        session = (await self.db.execute(
            select(ChatSession).where(ChatSession.interaction_id == interaction.id)
        )).scalar_one_or_none()

        if session:
            await self.db.execute(
                update(ChatSession)
                .where(ChatSession.id == session.id, ChatSession.ended_at.is_(None))
                .values(ended_at=now)
                .execution_options(synchronize_session=False)
            )
            await self.db.execute(
                delete(ChatMessage)
                .where(ChatMessage.session_id == session.id)
                .execution_options(synchronize_session=False)
            )

        payment = await self.db.get(Payment, interaction.payment_id)
        released = 0
        if payment and payment.status == PaymentStatus.COMPLETED:
            await self.wallet_service.release_to_withdrawable(
                user_id=interaction.companion_id,
                amount_cents=payment.amount_cents,
                type=WalletTransactionType.EARNING,
                reference=f"interaction_{interaction.id}"
            )
            released = payment.amount_cents

            await self.referral_service.award_commission(
                referred_user_id=interaction.companion_id,
                settled_amount_cents=payment.amount_cents,
                source=f"interaction_{interaction.id}"
            )

        await self.db.execute(
            update(CompanionProfile)
            .where(CompanionProfile.user_id == interaction.companion_id)
            .values(is_available=True)
            .execution_options(synchronize_session=False)
        )

        logger.info(f"Service confirmed for interaction {interaction.id}, released {released}")
        return {
            "status": "ok",
            "message": "Service confirmed. Companion can now withdraw.",
            "released_cents": released
        }

    async def expire_stale(self, now: Optional[datetime] = None, batch_size: int = 100) -> int:
        """
        Persist the expiry of overdue pending requests

        Each request is moved with its own compare-and-swap, so a concurrent
        accept or reject always wins or loses cleanly. Paid requests are
        refunded.

        Returns:
            Number of requests expired
        """
        now = now or utcnow()
        result = await self.db.execute(
            select(InteractionRequest)
            .where(
                InteractionRequest.status == InteractionStatus.PENDING,
                InteractionRequest.expires_at.isnot(None),
                InteractionRequest.expires_at <= now
            )
            .order_by(InteractionRequest.expires_at)
            .limit(batch_size)
        )

        expired = 0
        for interaction in result.scalars().all():
            moved = await self.state_machine.transition(
                self.db,
                interaction.id,
                InteractionStatus.PENDING,
                InteractionStatus.EXPIRED
            )
            if not moved:
                continue
            await self._refund_if_paid(interaction)
            expired += 1

        return expired

    async def list_for_user(
        self,
        user_id: uuid.UUID,
        role: str,
        limit: int = 20,
        offset: int = 0
    ) -> List[Dict[str, Any]]:
        """
        Requests visible to the caller, newest first

        Companions only see paid requests that reached them, so
        PENDING_VERIFICATION and unpaid requests are hidden.
        """
        query = (
            select(InteractionRequest, Payment, ChatSession)
            .outerjoin(Payment, Payment.id == InteractionRequest.payment_id)
            .outerjoin(ChatSession, ChatSession.interaction_id == InteractionRequest.id)
        )

        if role == UserRole.COMPANION.value:
            query = query.where(
                InteractionRequest.companion_id == user_id,
                InteractionRequest.status != InteractionStatus.PENDING_VERIFICATION,
                Payment.status == PaymentStatus.COMPLETED
            )
        else:
            query = query.where(InteractionRequest.client_id == user_id)

        query = (
            query.order_by(InteractionRequest.created_at.desc(), InteractionRequest.id)
            .offset(offset)
            .limit(limit)
        )

        now = utcnow()
        rows = (await self.db.execute(query)).all()
        return [self.serialize(interaction, payment, session, now) for interaction, payment, session in rows]

    async def get_for_user(self, user_id: uuid.UUID, interaction_id: uuid.UUID) -> Dict[str, Any]:
        """
        Single request for either party

        Raises:
            NotFoundException: If the caller is not a party to the request
        """
        result = await self.db.execute(
            select(InteractionRequest, Payment, ChatSession)
            .outerjoin(Payment, Payment.id == InteractionRequest.payment_id)
            .outerjoin(ChatSession, ChatSession.interaction_id == InteractionRequest.id)
            .where(
                InteractionRequest.id == interaction_id,
                or_(
                    InteractionRequest.client_id == user_id,
                    InteractionRequest.companion_id == user_id
                )
            )
        )
        row = result.one_or_none()

        if not row:
            raise NotFoundException("Interaction not found")

        interaction, payment, session = row
        return self.serialize(interaction, payment, session, utcnow())

    @staticmethod
    def serialize(
        interaction: InteractionRequest,
        payment: Optional[Payment],
        session: Optional[ChatSession],
        now: datetime
    ) -> Dict[str, Any]:
        return {
            "id": interaction.id,
            "client_id": interaction.client_id,
            "companion_id": interaction.companion_id,
            "payment_id": interaction.payment_id,
            "interaction_type": interaction.interaction_type.value,
            "service_type": interaction.service_type,
            "status": interaction.effective_status(now).value,
            "payment_status": payment.status.value if payment else None,
            "amount_cents": payment.amount_cents if payment else None,
            "duration_minutes": interaction.duration_minutes,
            "expires_at": as_utc(interaction.expires_at),
            "accepted_at": as_utc(interaction.accepted_at),
            "service_completed_at": as_utc(interaction.service_completed_at),
            "session_ends_at": as_utc(session.ends_at) if session else None,
            "session_ended": bool(session and session.ended_at is not None),
            "created_at": as_utc(interaction.created_at),
        }

    # Internal helpers

    async def _reject_pending(self, interaction: InteractionRequest) -> Optional[int]:
        """
        CAS a pending request to REJECTED, refund and notify

        Returns:
            Refunded cents, or None if the request was no longer pending
        """
        moved = await self.state_machine.transition(
            self.db,
            interaction.id,
            InteractionStatus.PENDING,
            InteractionStatus.REJECTED,
            rejected_at=utcnow()
        )
        if not moved:
            return None

        refunded = await self._refund_if_paid(interaction)
        await self.notification_service.notify_request_rejected(interaction, refunded)
        return refunded

    async def _refund_if_paid(self, interaction: InteractionRequest) -> int:
        """
        Refund the client the full payment if it has completed

        The payment row is locked first so this read and a concurrent
        webhook completing the payment are ordered: whichever commits
        second sees the other's outcome and exactly one of them refunds.
        """
        if interaction.payment_id is None:
            return 0

        result = await self.db.execute(
            select(Payment.status, Payment.amount_cents)
            .where(Payment.id == interaction.payment_id)
            .with_for_update()
        )
        row = result.one_or_none()

        if not row or row.status != PaymentStatus.COMPLETED:
            return 0

        await self.wallet_service.credit(
            user_id=interaction.client_id,
            amount_cents=row.amount_cents,
            type=WalletTransactionType.REFUND,
            reference=f"interaction_{interaction.id}"
        )
        return row.amount_cents

    async def _auto_reject_pending(self, companion_id: uuid.UUID, accepted_id: uuid.UUID) -> int:
        result = await self.db.execute(
            select(InteractionRequest)
            .where(
                InteractionRequest.companion_id == companion_id,
                InteractionRequest.status == InteractionStatus.PENDING,
                InteractionRequest.id != accepted_id
            )
        )

        rejected = 0
        for other in result.scalars().all():
            if await self._reject_pending(other) is not None:
                rejected += 1
        return rejected

    async def _lock_companion_profile(self, companion_id: uuid.UUID) -> CompanionProfile:
        result = await self.db.execute(
            select(CompanionProfile)
            .where(CompanionProfile.user_id == companion_id)
            .with_for_update()
        )
        profile = result.scalar_one_or_none()

        if not profile:
            raise ForbiddenException("Companion profile required")
        return profile

    @staticmethod
    def _payment_completed_clause():
        return exists().where(
            Payment.id == InteractionRequest.payment_id,
            Payment.status == PaymentStatus.COMPLETED
        )

    @staticmethod
    def _open_engagement_clause(companion_id: uuid.UUID, excluding_id: uuid.UUID, now: datetime):
        """Another accepted request of this companion whose session is still running"""
        other = aliased(InteractionRequest)
        live_session = exists().where(
            ChatSession.interaction_id == other.id,
            ChatSession.ended_at.is_(None),
            ChatSession.ends_at > now
        )
        return (
            exists()
            .where(
                and_(
                    other.companion_id == companion_id,
                    other.id != excluding_id,
                    other.status == InteractionStatus.ACCEPTED,
                    other.service_completed_at.is_(None),
                    live_session
                )
            )
        )

    async def _raise_accept_failure(
        self,
        interaction_id: uuid.UUID,
        companion_id: uuid.UUID,
        now: datetime
    ) -> None:
        interaction = await self._reload(interaction_id)

        if interaction.status != InteractionStatus.PENDING:
            raise InvalidStateTransitionException(
                f"Request is {interaction.status.value.lower()}, not pending"
            )

        if interaction.effective_status(now) == InteractionStatus.EXPIRED:
            raise InvalidStateTransitionException("Request has expired")

        payment_status = await self.db.scalar(
            select(Payment.status).where(Payment.id == interaction.payment_id)
        )
        if payment_status != PaymentStatus.COMPLETED:
            raise InvalidStateTransitionException("Request has not been paid")

        raise ConflictException(
            "You already have an active engagement",
            error_code="COMPANION_ENGAGED"
        )

    async def _reload(self, interaction_id: uuid.UUID) -> InteractionRequest:
        result = await self.db.execute(
            select(InteractionRequest)
            .where(InteractionRequest.id == interaction_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one()

    async def _get_for_companion(
        self,
        interaction_id: uuid.UUID,
        companion_id: uuid.UUID
    ) -> InteractionRequest:
        result = await self.db.execute(
            select(InteractionRequest)
            .where(
                InteractionRequest.id == interaction_id,
                InteractionRequest.companion_id == companion_id,
                InteractionRequest.status != InteractionStatus.PENDING_VERIFICATION
            )
        )
        interaction = result.scalar_one_or_none()

        if not interaction:
            raise NotFoundException("Interaction not found")
        return interaction

    async def _get_for_client(
        self,
        interaction_id: uuid.UUID,
        client_id: uuid.UUID
    ) -> InteractionRequest:
        result = await self.db.execute(
            select(InteractionRequest)
            .where(
                InteractionRequest.id == interaction_id,
                InteractionRequest.client_id == client_id
            )
        )
        interaction = result.scalar_one_or_none()

        if not interaction:
            raise NotFoundException("Interaction not found")
        return interaction
