"""
Wallet ledger service
Atomic balance mutations with an append-only transaction log
"""

from typing import Any, Dict, List, Optional
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, update
import uuid
import logging

from app.models import Wallet, WalletTransaction, WalletTransactionType
from app.core.config import settings
from app.core.exceptions import BadRequestException, InsufficientBalanceException

logger = logging.getLogger(__name__)

class WalletService:
    """
    Wallet ledger

    Every mutator issues a single conditional UPDATE against the wallet row
    and appends its ledger entry in the same transaction. Nothing here
    commits; the caller owns the transaction boundary.
    """

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_or_create_wallet(self, user_id: uuid.UUID) -> Wallet:
        """Return the user's wallet, creating an empty one on first use"""
        result = await self.db.execute(
            select(Wallet).where(Wallet.user_id == user_id)
        )
        wallet = result.scalar_one_or_none()

        if not wallet:
            wallet = Wallet(
                user_id=user_id,
                balance_cents=0,
                withdrawable_cents=0,
                currency=settings.CURRENCY
            )
            self.db.add(wallet)
            await self.db.flush()

        return wallet

    async def credit(
        self,
        user_id: uuid.UUID,
        amount_cents: int,
        type: WalletTransactionType,
        reference: Optional[str] = None
    ) -> WalletTransaction:
        """
        Credit the gross balance

        Args:
            user_id: Wallet owner
            amount_cents: Positive amount
            type: Ledger entry type
            reference: Correlation reference (payment, interaction, ...)

        Returns:
            Ledger entry
        """
        self._check_amount(amount_cents)
        await self.get_or_create_wallet(user_id)

        await self.db.execute(
            update(Wallet)
            .where(Wallet.user_id == user_id)
            .values(
                balance_cents=Wallet.balance_cents + amount_cents,
                entry_count=Wallet.entry_count + 1
            )
            .execution_options(synchronize_session=False)
        )

        return await self.record_transaction(
            user_id=user_id,
            amount_cents=amount_cents,
            type=type,
            reference=reference,
            balance_delta_cents=amount_cents
        )

    async def debit(
        self,
        user_id: uuid.UUID,
        amount_cents: int,
        type: WalletTransactionType,
        reference: Optional[str] = None
    ) -> WalletTransaction:
        """
        Debit the gross balance

        Args:
            user_id: Wallet owner
            amount_cents: Positive amount
            type: Ledger entry type
            reference: Correlation reference

        Returns:
            Ledger entry

        Raises:
            InsufficientBalanceException: If the balance is below the amount
        """
        self._check_amount(amount_cents)
        await self.get_or_create_wallet(user_id)

        result = await self.db.execute(
            update(Wallet)
            .where(
                Wallet.user_id == user_id,
                Wallet.balance_cents >= amount_cents
            )
            .values(
                balance_cents=Wallet.balance_cents - amount_cents,
                entry_count=Wallet.entry_count + 1
            )
            .execution_options(synchronize_session=False)
        )

        if result.rowcount == 0:
            logger.info(f"Debit of {amount_cents} refused for user {user_id}: insufficient balance")
            raise InsufficientBalanceException()

        return await self.record_transaction(
            user_id=user_id,
            amount_cents=-amount_cents,
            type=type,
            reference=reference,
            balance_delta_cents=-amount_cents
        )

    async def credit_withdrawable(
        self,
        user_id: uuid.UUID,
        amount_cents: int,
        type: WalletTransactionType,
        reference: Optional[str] = None
    ) -> WalletTransaction:
        """Credit the withdrawable balance"""
        self._check_amount(amount_cents)
        await self.get_or_create_wallet(user_id)

        await self.db.execute(
            update(Wallet)
            .where(Wallet.user_id == user_id)
            .values(
                withdrawable_cents=Wallet.withdrawable_cents + amount_cents,
                entry_count=Wallet.entry_count + 1
            )
            .execution_options(synchronize_session=False)
        )

        return await self.record_transaction(
            user_id=user_id,
            amount_cents=amount_cents,
            type=type,
            reference=reference,
            withdrawable_delta_cents=amount_cents
        )

    async def debit_withdrawable(
        self,
        user_id: uuid.UUID,
        amount_cents: int,
        type: WalletTransactionType,
        reference: Optional[str] = None
    ) -> WalletTransaction:
        """
        Debit the withdrawable balance

        Raises:
            InsufficientBalanceException: If the withdrawable balance is below the amount
        """
        self._check_amount(amount_cents)
        await self.get_or_create_wallet(user_id)

        result = await self.db.execute(
            update(Wallet)
            .where(
                Wallet.user_id == user_id,
                Wallet.withdrawable_cents >= amount_cents
            )
            .values(
                withdrawable_cents=Wallet.withdrawable_cents - amount_cents,
                entry_count=Wallet.entry_count + 1
            )
            .execution_options(synchronize_session=False)
        )

        if result.rowcount == 0:
            raise InsufficientBalanceException("insufficient withdrawable balance")

        return await self.record_transaction(
            user_id=user_id,
            amount_cents=-amount_cents,
            type=type,
            reference=reference,
            withdrawable_delta_cents=-amount_cents
        )

    async def release_to_withdrawable(
        self,
        user_id: uuid.UUID,
        amount_cents: int,
        type: WalletTransactionType,
        reference: Optional[str] = None
    ) -> WalletTransaction:
        """
        Move funds from the gross balance into the withdrawable balance

        Both buckets change in one statement, so the gross balance can never
        be released twice.

        Raises:
            InsufficientBalanceException: If the gross balance is below the amount
        """
        self._check_amount(amount_cents)
        await self.get_or_create_wallet(user_id)

        result = await self.db.execute(
            update(Wallet)
            .where(
                Wallet.user_id == user_id,
                Wallet.balance_cents >= amount_cents
            )
            .values(
                balance_cents=Wallet.balance_cents - amount_cents,
                withdrawable_cents=Wallet.withdrawable_cents + amount_cents,
                entry_count=Wallet.entry_count + 1
            )
            .execution_options(synchronize_session=False)
        )

        if result.rowcount == 0:
            raise InsufficientBalanceException("insufficient balance to release")

        return await self.record_transaction(
            user_id=user_id,
            amount_cents=amount_cents,
            type=type,
            reference=reference,
            balance_delta_cents=-amount_cents,
            withdrawable_delta_cents=amount_cents
        )

    async def record_transaction(
        self,
        user_id: uuid.UUID,
        amount_cents: int,
        type: WalletTransactionType,
        reference: Optional[str] = None,
        balance_delta_cents: int = 0,
        withdrawable_delta_cents: int = 0
    ) -> WalletTransaction:
        """
        Append a ledger entry

        Called right after the wallet UPDATE that bumped ``entry_count``; the
        row lock held by that UPDATE makes the counter this entry's sequence.
        """
        sequence = await self.db.scalar(
            select(Wallet.entry_count).where(Wallet.user_id == user_id)
        )
        transaction = WalletTransaction(
            user_id=user_id,
            sequence=sequence,
            type=type,
            amount_cents=amount_cents,
            balance_delta_cents=balance_delta_cents,
            withdrawable_delta_cents=withdrawable_delta_cents,
            reference=reference
        )
        self.db.add(transaction)
        await self.db.flush()

        logger.info(
            f"Wallet {type.value} for user {user_id}: amount={amount_cents} "
            f"balance_delta={balance_delta_cents} withdrawable_delta={withdrawable_delta_cents} "
            f"ref={reference}"
        )
        return transaction

    async def get_balance(self, user_id: uuid.UUID) -> Dict[str, Any]:
        """
        Current balances read straight from the row

        Returns:
            Dict with balance_cents, withdrawable_cents and currency
        """
        result = await self.db.execute(
            select(Wallet.balance_cents, Wallet.withdrawable_cents, Wallet.currency)
            .where(Wallet.user_id == user_id)
        )
        row = result.one_or_none()

        if row is None:
            return {
                "balance_cents": 0,
                "withdrawable_cents": 0,
                "currency": settings.CURRENCY
            }

        return {
            "balance_cents": row.balance_cents,
            "withdrawable_cents": row.withdrawable_cents,
            "currency": row.currency
        }

    async def list_transactions(
        self,
        user_id: uuid.UUID,
        limit: int = 50,
        offset: int = 0
    ) -> List[WalletTransaction]:
        """Ledger entries, newest first by per-wallet sequence"""
        result = await self.db.execute(
            select(WalletTransaction)
            .where(WalletTransaction.user_id == user_id)
            .order_by(WalletTransaction.sequence.desc())
            .offset(offset)
            .limit(limit)
        )
        return list(result.scalars().all())

    @staticmethod
    def _check_amount(amount_cents: int) -> None:
        if amount_cents is None or amount_cents <= 0:
            raise BadRequestException("Amount must be positive")
