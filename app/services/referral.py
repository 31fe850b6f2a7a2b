"""Referral system service"""

from typing import Dict, Any, List, Optional
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from decimal import Decimal, ROUND_FLOOR
import secrets
import uuid
import logging

from app.models import User, UserRole, Referral, ReferralCode, WalletTransactionType
from app.core.config import settings
from app.core.exceptions import BadRequestException, ConflictException, NotFoundException
from app.services.wallet import WalletService

logger = logging.getLogger(__name__)

class ReferralService:
    """Service for managing referrals"""

    def __init__(self, db: AsyncSession):
        self.db = db
        self.wallet_service = WalletService(db)

    async def get_referral_by_referred_user(self, user_id: uuid.UUID) -> Optional[Referral]:
        result = await self.db.execute(
            select(Referral).where(Referral.referred_user_id == user_id)
        )
        return result.scalar_one_or_none()

    async def award_commission(
        self,
        referred_user_id: uuid.UUID,
        settled_amount_cents: int,
        source: str
    ) -> int:
        """
        Pay the referrer of ``referred_user_id`` a commission on a settled amount

        The referral's counter is incremented with a capped conditional
        UPDATE, so concurrent settlements can never push it past
        REFERRAL_MAX_TRANSACTIONS. Only the caller whose increment landed
        credits the referrer.

        Args:
            referred_user_id: User whose settlement qualifies
            settled_amount_cents: Amount the commission is computed from
            source: What settled, e.g. "payment_<id>" or "interaction_<id>";
                the ledger reference becomes "ref_<referral id>_<source>"

        Returns:
            Commission credited in cents, 0 when nothing was paid
        """
        result = await self.db.execute(
            update(Referral)
            .where(
                Referral.referred_user_id == referred_user_id,
                Referral.completed_count < settings.REFERRAL_MAX_TRANSACTIONS
            )
            .values(completed_count=Referral.completed_count + 1)
            .execution_options(synchronize_session=False)
        )

        if result.rowcount == 0:
            return 0

        row = await self.db.execute(
            select(Referral.id, Referral.referrer_id)
            .where(Referral.referred_user_id == referred_user_id)
        )
        referral_id, referrer_id = row.one()
        reference = f"ref_{referral_id}_{source}"

        commission = self.commission_for(settled_amount_cents)
        if commission <= 0:
            return 0

        await self.wallet_service.credit(
            user_id=referrer_id,
            amount_cents=commission,
            type=WalletTransactionType.REFERRAL_COMMISSION,
            reference=reference
        )

        logger.info(f"Referral commission {commission} paid to {referrer_id} ({reference})")
        return commission

    @staticmethod
    def commission_for(amount_cents: int) -> int:
        """floor(amount x commission rate)"""
        commission = Decimal(amount_cents) * Decimal(str(settings.REFERRAL_COMMISSION_RATE))
        return int(commission.to_integral_value(rounding=ROUND_FLOOR))

    async def get_or_create_code(self, user_id: uuid.UUID) -> ReferralCode:
        """Return the user's referral code, generating one on first request"""
        result = await self.db.execute(
            select(ReferralCode).where(ReferralCode.user_id == user_id)
        )
        code = result.scalar_one_or_none()

        if code:
            return code

        code = ReferralCode(
            user_id=user_id,
            code=secrets.token_hex(4),
            is_active=True
        )
        self.db.add(code)
        await self.db.flush()
        return code

    async def apply_referral_code(self, code: str, new_user: User) -> Referral:
        """
        Attach a new user to the owner of a referral code

        Companion signups also earn the signup bonus for both sides, paid
        straight into the withdrawable balance.

        Raises:
            NotFoundException: If the code does not exist or is inactive
            BadRequestException: If the user tries to refer themselves
            ConflictException: If the user was already referred
        """
        result = await self.db.execute(
            select(ReferralCode).where(
                ReferralCode.code == code.strip().lower(),
                ReferralCode.is_active.is_(True)
            )
        )
        referral_code = result.scalar_one_or_none()

        if not referral_code:
            raise NotFoundException("Invalid referral code")

        if referral_code.user_id == new_user.id:
            raise BadRequestException("Cannot refer yourself")

        if await self.get_referral_by_referred_user(new_user.id):
            raise ConflictException("User already referred")

        referral = Referral(
            referrer_id=referral_code.user_id,
            referred_user_id=new_user.id,
            completed_count=0
        )
        self.db.add(referral)

        try:
            await self.db.flush()
        except IntegrityError:
            raise ConflictException("User already referred")

        if new_user.role == UserRole.COMPANION:
            await self._credit_signup_bonus(referral_code.user_id, new_user.id)

        return referral

    async def _credit_signup_bonus(self, referrer_id: uuid.UUID, referred_id: uuid.UUID) -> None:
        if settings.REFERRAL_BONUS_REFERRER_CENTS > 0:
            await self.wallet_service.credit_withdrawable(
                user_id=referrer_id,
                amount_cents=settings.REFERRAL_BONUS_REFERRER_CENTS,
                type=WalletTransactionType.REFERRAL_BONUS,
                reference=f"referral_bonus_for_user_{referred_id}"
            )

        if settings.REFERRAL_BONUS_REFERRED_CENTS > 0:
            await self.wallet_service.credit_withdrawable(
                user_id=referred_id,
                amount_cents=settings.REFERRAL_BONUS_REFERRED_CENTS,
                type=WalletTransactionType.REFERRAL_BONUS,
                reference=f"referral_signup_bonus_from_user_{referrer_id}"
            )

    async def list_referrals(
        self,
        referrer_id: uuid.UUID,
        limit: int = 20,
        offset: int = 0
    ) -> List[Dict[str, Any]]:
        """Users referred by ``referrer_id`` with commissions remaining"""
        result = await self.db.execute(
            select(Referral, User)
            .join(User, User.id == Referral.referred_user_id)
            .where(Referral.referrer_id == referrer_id)
            .order_by(Referral.created_at.desc())
            .offset(offset)
            .limit(limit)
        )

        referrals = []
        for referral, user in result.all():
            referrals.append({
                "referred_user": {
                    "username": user.username or user.email,
                    "role": user.role.value,
                },
                "completed_count": referral.completed_count,
                "commissions_remaining": max(
                    settings.REFERRAL_MAX_TRANSACTIONS - referral.completed_count, 0
                ),
                "created_at": referral.created_at,
            })
        return referrals
