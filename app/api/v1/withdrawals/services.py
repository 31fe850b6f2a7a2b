"""
Withdrawal service layer
M-Pesa B2C payouts from the withdrawable balance
"""

from typing import Any, Dict, List, Optional
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, update
import uuid
import logging

from app.models import Withdrawal, WithdrawalStatus, WalletTransactionType
from app.core.exceptions import ValidationException
from app.services.saga import Saga
from app.services.wallet import WalletService
from app.utils.helpers import kes_to_cents, utcnow
from app.utils.validators import normalize_kenyan_phone
from app.api.v1.payments.mpesa_client import MpesaClient, get_mpesa_client

logger = logging.getLogger(__name__)

class WithdrawalService:
    """Payout requests and their settlement"""

    def __init__(self, db: AsyncSession, mpesa: Optional[MpesaClient] = None):
        self.db = db
        self._mpesa = mpesa
        self.wallet_service = WalletService(db)

    @property
    def mpesa(self) -> MpesaClient:
        if self._mpesa is None:
            self._mpesa = get_mpesa_client()
        return self._mpesa

    async def create_withdrawal(
        self,
        user_id: uuid.UUID,
        amount_kes: int,
        phone_number: str
    ) -> Dict[str, Any]:
        """
        Pay out part of the withdrawable balance

        The balance is debited before the B2C call; a failed call marks the
        withdrawal FAILED and puts the money back.

        Args:
            user_id: Companion withdrawing
            amount_kes: Whole shillings to pay out
            phone_number: Destination M-Pesa number

        Returns:
            Withdrawal summary

        Raises:
            ValidationException: If the phone number is invalid
            InsufficientBalanceException: If the withdrawable balance is too low
            ProviderErrorException: If the payout could not be started
        """
        phone = normalize_kenyan_phone(phone_number)
        if not phone:
            raise ValidationException("Invalid phone number")

        amount_cents = kes_to_cents(amount_kes)
        order_id = f"wd-{uuid.uuid4()}"

        async def reserve():
            await self.wallet_service.debit_withdrawable(
                user_id=user_id,
                amount_cents=amount_cents,
                type=WalletTransactionType.WITHDRAWAL,
                reference=order_id
            )
            withdrawal = Withdrawal(
                user_id=user_id,
                order_id=order_id,
                amount_cents=amount_cents,
                phone_number=phone,
                status=WithdrawalStatus.PENDING
            )
            self.db.add(withdrawal)
            await self.db.flush()
            return withdrawal

        async def release(withdrawal):
            await self.fail_withdrawal(withdrawal.order_id)

        async with Saga(self.db, "withdrawal") as saga:
            withdrawal = await saga.step(reserve, release)
            response = await saga.step(lambda: self.mpesa.initiate_b2c(
                amount_kes=amount_kes,
                phone_number=phone,
                order_id=order_id
            ))

        provider_ref = response.get("uuid") or response.get("transaction_uuid")
        if provider_ref:
            await self.db.execute(
                update(Withdrawal)
                .where(Withdrawal.id == withdrawal.id)
                .values(provider_ref=str(provider_ref))
                .execution_options(synchronize_session=False)
            )

        logger.info(f"Withdrawal {order_id} of {amount_cents} started for {user_id}")
        return {
            "id": withdrawal.id,
            "order_id": order_id,
            "amount_kes": amount_kes,
            "phone_number": phone,
            "status": WithdrawalStatus.PENDING.value,
            "message": "Withdrawal initiated. Check your phone for confirmation.",
        }

    async def complete_withdrawal(self, order_id: str, provider_ref: Optional[str] = None) -> bool:
        """PENDING -> COMPLETED; False when already settled"""
        values = {"status": WithdrawalStatus.COMPLETED, "completed_at": utcnow()}
        if provider_ref:
            values["provider_ref"] = provider_ref

        result = await self.db.execute(
            update(Withdrawal)
            .where(
                Withdrawal.order_id == order_id,
                Withdrawal.status == WithdrawalStatus.PENDING
            )
            .values(**values)
            .execution_options(synchronize_session=False)
        )

        if result.rowcount == 0:
            logger.info(f"Withdrawal {order_id} not pending, completion ignored")
            return False

        logger.info(f"Withdrawal {order_id} completed")
        return True

    async def fail_withdrawal(self, order_id: str) -> bool:
        """
        PENDING -> FAILED and return the amount to the withdrawable balance

        Returns:
            True if this call failed the withdrawal
        """
        result = await self.db.execute(
            update(Withdrawal)
            .where(
                Withdrawal.order_id == order_id,
                Withdrawal.status == WithdrawalStatus.PENDING
            )
            .values(status=WithdrawalStatus.FAILED)
            .execution_options(synchronize_session=False)
        )

        if result.rowcount == 0:
            logger.info(f"Withdrawal {order_id} not pending, failure ignored")
            return False

        row = (await self.db.execute(
            select(Withdrawal.user_id, Withdrawal.amount_cents)
            .where(Withdrawal.order_id == order_id)
        )).one()

        await self.wallet_service.credit_withdrawable(
            user_id=row.user_id,
            amount_cents=row.amount_cents,
            type=WalletTransactionType.REFUND,
            reference=order_id
        )

        logger.info(f"Withdrawal {order_id} failed, {row.amount_cents} returned to {row.user_id}")
        return True

    async def list_withdrawals(
        self,
        user_id: uuid.UUID,
        limit: int = 20,
        offset: int = 0
    ) -> List[Withdrawal]:
        result = await self.db.execute(
            select(Withdrawal)
            .where(Withdrawal.user_id == user_id)
            .order_by(Withdrawal.created_at.desc())
            .offset(offset)
            .limit(limit)
        )
        return result.scalars().all()
