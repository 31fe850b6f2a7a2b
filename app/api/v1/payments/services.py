"""
Payment service layer
Settlement flows for the wallet, M-Pesa STK push and Solana/USDT rails
"""

from typing import Any, Awaitable, Callable, Dict, Optional
from datetime import datetime, timedelta
from decimal import Decimal, ROUND_CEILING
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
import asyncio
import time
import uuid
import logging

from app.models import (
    User,
    UserRole,
    CompanionProfile,
    CompanionBoost,
    InteractionRequest,
    InteractionStatus,
    Payment,
    PaymentStatus,
    PaymentProvider,
    WalletTransactionType,
)
from app.core.cache import cached
from app.core.config import settings
from app.core.exceptions import (
    ConflictException,
    ForbiddenException,
    NotFoundException,
    ValidationException,
)
from app.schemas.payment_context import (
    BoostContext,
    OnChainContext,
    PushPaymentContext,
    WalletOnlyContext,
    dump_context,
)
from app.services.audit_service import AuditService
from app.services.notification import NotificationService
from app.services.referral import ReferralService
from app.services.saga import Saga
from app.services.wallet import WalletService
from app.utils.helpers import generate_order_id, kes_to_cents, utcnow
from app.utils.validators import normalize_kenyan_phone
from app.api.v1.interactions.services import InteractionService
from app.api.v1.interactions.state_machine import InteractionStateMachine
from .mpesa_client import MpesaClient, get_mpesa_client
from .schemas import (
    BoostPaymentRequest,
    CryptoPaymentRequest,
    CustomerDetails,
    InteractionPaymentRequest,
)
from .state import transition_payment
from .swapuzi_client import SwapuziClient, get_swapuzi_client

logger = logging.getLogger(__name__)

USDT_QUANTUM = Decimal("0.0001")

@cached("usdt_rates", expire=settings.EXCHANGE_RATE_CACHE_SECONDS, key_func=lambda *args, **kwargs: "current")
async def fetch_usdt_rates(client: SwapuziClient) -> Dict[str, str]:
    """Current USDT/KES rates as strings, cached briefly"""
    rates = await client.get_rates()
    return {name: str(value) for name, value in rates.items()}

def usdt_for_cents(amount_cents: int, rate: Decimal) -> Decimal:
    """KES amount in USDT at ``rate``, rounded up to 4 decimal places"""
    kes = Decimal(amount_cents) / Decimal(100)
    return (kes / rate).quantize(USDT_QUANTUM, rounding=ROUND_CEILING)

class SettlementService:
    """Payment settlement flows and their shared outcomes"""

    def __init__(
        self,
        db: AsyncSession,
        mpesa: Optional[MpesaClient] = None,
        swapuzi: Optional[SwapuziClient] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic
    ):
        self.db = db
        self._mpesa = mpesa
        self._swapuzi = swapuzi
        self.sleep = sleep
        self.clock = clock
        self.wallet_service = WalletService(db)
        self.interaction_service = InteractionService(db)
        self.notification_service = NotificationService(db)
        self.referral_service = ReferralService(db)
        self.audit_service = AuditService(db)
        self.state_machine = InteractionStateMachine()

    @property
    def mpesa(self) -> MpesaClient:
        if self._mpesa is None:
            self._mpesa = get_mpesa_client()
        return self._mpesa

    @property
    def swapuzi(self) -> SwapuziClient:
        if self._swapuzi is None:
            self._swapuzi = get_swapuzi_client()
        return self._swapuzi

    # Initiation flows

    async def pay_with_wallet(
        self,
        client_id: uuid.UUID,
        data: InteractionPaymentRequest,
        idempotency_key: Optional[str] = None
    ) -> Dict[str, Any]:
        """
        Pay for an interaction entirely from the wallet

        The debit is committed first; everything after it (payment,
        interaction, referral, notification) is one transaction whose
        failure refunds the debit.

        Args:
            client_id: Paying client
            data: Payment request; the whole amount is taken from the wallet
            idempotency_key: Optional client-chosen key

        Returns:
            Settlement outcome

        Raises:
            InsufficientBalanceException: If the wallet cannot cover the amount
            NotFoundException: If the companion does not exist
        """
        amount_cents = kes_to_cents(data.amount_kes)
        order_id = generate_order_id("metchi-w")
        key = idempotency_key or order_id

        replay = await self._replay(client_id, key)
        if replay is not None:
            return await self._settlement_outcome(replay, "Payment already processed")

        client = await self._get_user(client_id)
        await self._check_companion(client_id, data.companion_id)
        requires_kyc = not client.is_kyc_verified
        duration = self._duration(data.duration_minutes)

        context = WalletOnlyContext(
            companion_id=data.companion_id,
            interaction_type=data.interaction_type,
            service_type=data.service_type,
            duration_minutes=duration,
            wallet_cents=amount_cents
        )

        async def debit():
            return await self.wallet_service.debit(
                user_id=client_id,
                amount_cents=amount_cents,
                type=WalletTransactionType.PAYMENT,
                reference=order_id
            )

        async def refund_debit(_):
            await self.wallet_service.credit(
                user_id=client_id,
                amount_cents=amount_cents,
                type=WalletTransactionType.REFUND,
                reference=order_id
            )

        async def settle():
            now = utcnow()
            payment = Payment(
                payer_id=client_id,
                amount_cents=amount_cents,
                currency=settings.CURRENCY,
                provider=PaymentProvider.WALLET,
                provider_ref=order_id,
                idempotency_key=key,
                status=PaymentStatus.COMPLETED,
                context_data=dump_context(context),
                completed_at=now
            )
            self.db.add(payment)
            await self.db.flush()

            interaction = await self.interaction_service.create_for_payment(
                client_id=client_id,
                companion_id=data.companion_id,
                payment_id=payment.id,
                interaction_type=data.interaction_type,
                service_type=data.service_type,
                duration_minutes=duration,
                status=self._initial_status(requires_kyc)
            )

            await self.referral_service.award_commission(
                referred_user_id=client_id,
                settled_amount_cents=amount_cents,
                source=f"payment_{payment.id}"
            )

            if not requires_kyc:
                await self.interaction_service.notify_companion(interaction)

            return payment, interaction

        try:
            async with Saga(self.db, "wallet_only") as saga:
                await saga.step(debit, refund_debit)
                payment, interaction = await saga.step(settle)
        except IntegrityError:
            return await self._replay_after_race(client_id, key)

        logger.info(f"Wallet payment {payment.id} settled for interaction {interaction.id}")
        return self._settlement_response(
            payment,
            interaction,
            message=(
                "Payment successful. Complete identity verification to send your request."
                if requires_kyc else "Payment successful. Request sent."
            )
        )

    async def pay_with_mpesa(
        self,
        client_id: uuid.UUID,
        data: InteractionPaymentRequest,
        idempotency_key: Optional[str] = None,
        is_disconnected: Optional[Callable[[], Awaitable[bool]]] = None
    ) -> Dict[str, Any]:
        """
        Pay for an interaction over M-Pesa, optionally topped up from the wallet

        The interaction is created before the STK push so an early webhook
        always finds it. The call then polls the payment until it settles,
        the poll window closes or the caller disconnects.

        Args:
            client_id: Paying client
            data: Payment request with customer details
            idempotency_key: Optional client-chosen key
            is_disconnected: Coroutine function reporting a closed connection

        Returns:
            Settlement outcome; payment_status is COMPLETED, FAILED, TIMEOUT
            or PENDING (caller went away)

        Raises:
            ValidationException: If customer details are missing
            InsufficientBalanceException: If the wallet portion cannot be covered
            ProviderErrorException: If the STK push could not be sent
        """
        amount_cents = kes_to_cents(data.amount_kes)
        wallet_cents = kes_to_cents(min(max(data.wallet_amount_kes, 0), data.amount_kes))
        mpesa_cents = amount_cents - wallet_cents

        if mpesa_cents == 0:
            return await self.pay_with_wallet(client_id, data, idempotency_key)

        phone = self._validate_customer(data)
        order_id = generate_order_id("metchi")
        key = idempotency_key or order_id

        replay = await self._replay(client_id, key)
        if replay is not None:
            return await self._settlement_outcome(replay, "Payment already initiated")

        await self._get_user(client_id)
        await self._check_companion(client_id, data.companion_id)
        duration = self._duration(data.duration_minutes)

        context = PushPaymentContext(
            companion_id=data.companion_id,
            interaction_type=data.interaction_type,
            service_type=data.service_type,
            duration_minutes=duration,
            wallet_cents=wallet_cents,
            mpesa_cents=mpesa_cents
        )

        async def open_payment():
            if wallet_cents > 0:
                await self.wallet_service.debit(
                    user_id=client_id,
                    amount_cents=wallet_cents,
                    type=WalletTransactionType.PAYMENT,
                    reference=order_id
                )

            payment = Payment(
                payer_id=client_id,
                amount_cents=amount_cents,
                currency=settings.CURRENCY,
                provider=PaymentProvider.PUSH_PAYMENT,
                provider_ref=order_id,
                idempotency_key=key,
                status=PaymentStatus.PENDING,
                context_data=dump_context(context),
                expires_at=utcnow() + timedelta(minutes=settings.PUSH_PAYMENT_EXPIRY_MINUTES)
            )
            self.db.add(payment)
            await self.db.flush()

            # Created PENDING even for unverified clients; the webhook holds
            # it for verification once the money is in
            interaction = await self.interaction_service.create_for_payment(
                client_id=client_id,
                companion_id=data.companion_id,
                payment_id=payment.id,
                interaction_type=data.interaction_type,
                service_type=data.service_type,
                duration_minutes=duration
            )
            return payment, interaction

        async def abandon_payment(opened):
            payment, _ = opened
            await self.fail_payment(payment.id, PaymentStatus.FAILED)

        try:
            async with Saga(self.db, "push_payment") as saga:
                payment, interaction = await saga.step(open_payment, abandon_payment)
                response = await saga.step(lambda: self.mpesa.initiate_stk_push(
                    amount_cents=mpesa_cents,
                    order_id=order_id,
                    customer_phone=phone,
                    customer_first_name=data.customer_first_name,
                    customer_last_name=data.customer_last_name,
                    customer_email=data.customer_email,
                    description="Metchi interaction payment"
                ))
        except IntegrityError:
            return await self._replay_after_race(client_id, key)

        await self._store_checkout_id(payment, response.get("checkout_request_id"))

        status = await self._poll_payment(payment.id, is_disconnected)

        if status is None:
            return self._settlement_response(
                payment,
                interaction,
                payment_status=PaymentStatus.PENDING.value,
                message="Waiting for M-Pesa confirmation"
            )

        if status == PaymentStatus.PENDING:
            status = await self._handle_timeout(payment, interaction)

        interaction = await self.interaction_service.get_by_payment(payment.id)

        if status == PaymentStatus.COMPLETED:
            outcome, message = status.value, "Payment received. Request sent."
            if interaction and interaction.status == InteractionStatus.PENDING_VERIFICATION:
                message = "Payment received. Complete identity verification to send your request."
        elif status == PaymentStatus.CANCELLED:
            outcome, message = "TIMEOUT", "Payment was not confirmed in time"
        else:
            outcome, message = PaymentStatus.FAILED.value, "Payment failed"

        return self._settlement_response(payment, interaction, payment_status=outcome, message=message)

    async def initiate_crypto(
        self,
        client_id: uuid.UUID,
        data: CryptoPaymentRequest,
        idempotency_key: Optional[str] = None
    ) -> Dict[str, Any]:
        """
        Open a Solana/USDT deposit for an interaction

        No interaction exists until the deposit webhook confirms the payment.

        Raises:
            ProviderErrorException: If rates or the deposit call fail
        """
        amount_cents = kes_to_cents(data.amount_kes)
        wallet_cents = kes_to_cents(min(max(data.wallet_amount_kes, 0), data.amount_kes))
        chain_cents = amount_cents - wallet_cents

        if chain_cents == 0:
            wallet_request = InteractionPaymentRequest(
                companion_id=data.companion_id,
                interaction_type=data.interaction_type,
                service_type=data.service_type,
                amount_kes=data.amount_kes,
                wallet_amount_kes=data.amount_kes,
                duration_minutes=data.duration_minutes
            )
            return await self.pay_with_wallet(client_id, wallet_request, idempotency_key)

        order_id = generate_order_id("metchi-sol")
        key = idempotency_key or order_id

        replay = await self._replay(client_id, key)
        if replay is not None:
            return self._crypto_response(replay, "Deposit already initiated")

        await self._get_user(client_id)
        await self._check_companion(client_id, data.companion_id)

        rates = await self.swapuzi.get_rates()
        rate = rates["usdt_buying_rate"]
        usdt = usdt_for_cents(chain_cents, rate)

        context = OnChainContext(
            companion_id=data.companion_id,
            interaction_type=data.interaction_type,
            service_type=data.service_type,
            duration_minutes=self._duration(data.duration_minutes),
            wallet_cents=wallet_cents,
            usdt_amount=str(usdt),
            usdt_rate=str(rate)
        )

        async def open_payment():
            if wallet_cents > 0:
                await self.wallet_service.debit(
                    user_id=client_id,
                    amount_cents=wallet_cents,
                    type=WalletTransactionType.PAYMENT,
                    reference=order_id
                )

            payment = Payment(
                payer_id=client_id,
                amount_cents=amount_cents,
                currency=settings.CURRENCY,
                provider=PaymentProvider.ON_CHAIN,
                provider_ref=order_id,
                idempotency_key=key,
                status=PaymentStatus.PENDING,
                context_data=dump_context(context),
                expires_at=utcnow() + timedelta(minutes=settings.CRYPTO_DEPOSIT_EXPIRY_MINUTES)
            )
            self.db.add(payment)
            await self.db.flush()
            return payment

        async def abandon_payment(payment):
            await self.fail_payment(payment.id, PaymentStatus.FAILED)

        try:
            async with Saga(self.db, "on_chain") as saga:
                payment = await saga.step(open_payment, abandon_payment)
                deposit = await saga.step(lambda: self.swapuzi.initiate_deposit(
                    deposit_id=order_id,
                    expected_amount_usdt=usdt,
                    notes=f"Metchi interaction payment {order_id}"
                ))
        except IntegrityError:
            existing = await self._find_by_key(key)
            if existing is None:
                raise ConflictException("Duplicate payment request")
            return self._crypto_response(existing, "Deposit already initiated")

        context = context.model_copy(update={"page_url": deposit.get("page_url")})
        await self.db.execute(
            update(Payment)
            .where(Payment.id == payment.id)
            .values(context_data=dump_context(context))
            .execution_options(synchronize_session=False)
        )
        await self.db.commit()
        payment.context_data = dump_context(context)

        logger.info(f"Solana deposit {order_id} opened for {usdt} USDT at {rate}")
        return self._crypto_response(
            payment,
            "Complete the USDT deposit to send your request",
            expires_at=deposit.get("expires_at")
        )

    async def initiate_boost(
        self,
        companion_id: uuid.UUID,
        data: BoostPaymentRequest,
        idempotency_key: Optional[str] = None
    ) -> Dict[str, Any]:
        """
        Start an M-Pesa payment for a profile boost

        The boost is activated by the webhook; this call does not poll.
        """
        amount_kes = data.amount_kes or settings.BOOST_PRICE_KES
        amount_cents = kes_to_cents(amount_kes)
        phone = self._validate_customer(data)
        order_id = generate_order_id("metchi-boost")
        key = idempotency_key or order_id

        replay = await self._replay(companion_id, key)
        if replay is not None:
            return self._boost_response(replay, "Boost payment already initiated")

        context = BoostContext(
            boost_type=f"{settings.BOOST_DURATION_DAYS}d",
            duration_days=settings.BOOST_DURATION_DAYS
        )

        async def open_payment():
            payment = Payment(
                payer_id=companion_id,
                amount_cents=amount_cents,
                currency=settings.CURRENCY,
                provider=PaymentProvider.PUSH_PAYMENT,
                provider_ref=order_id,
                idempotency_key=key,
                status=PaymentStatus.PENDING,
                context_data=dump_context(context),
                expires_at=utcnow() + timedelta(minutes=settings.PUSH_PAYMENT_EXPIRY_MINUTES)
            )
            self.db.add(payment)
            await self.db.flush()
            return payment

        async def abandon_payment(payment):
            await self.fail_payment(payment.id, PaymentStatus.FAILED)

        try:
            async with Saga(self.db, "boost") as saga:
                payment = await saga.step(open_payment, abandon_payment)
                response = await saga.step(lambda: self.mpesa.initiate_stk_push(
                    amount_cents=amount_cents,
                    order_id=order_id,
                    customer_phone=phone,
                    customer_first_name=data.customer_first_name,
                    customer_last_name=data.customer_last_name,
                    customer_email=data.customer_email,
                    description="Metchi profile boost"
                ))
        except IntegrityError:
            existing = await self._find_by_key(key)
            if existing is None:
                raise ConflictException("Duplicate payment request")
            return self._boost_response(existing, "Boost payment already initiated")

        await self._store_checkout_id(payment, response.get("checkout_request_id"))

        result = self._boost_response(payment, "Check your phone to complete the boost payment")
        result["status"] = response.get("status")
        return result

    async def get_rates(self) -> Dict[str, str]:
        return await fetch_usdt_rates(self.swapuzi)

    async def get_payment(self, user_id: uuid.UUID, payment_id: uuid.UUID) -> Payment:
        """
        Payment owned by the caller

        Raises:
            NotFoundException: If it does not exist or belongs to someone else
        """
        result = await self.db.execute(
            select(Payment).where(Payment.id == payment_id, Payment.payer_id == user_id)
        )
        payment = result.scalar_one_or_none()

        if not payment:
            raise NotFoundException("Payment not found")
        return payment

    # Settlement outcomes, shared with the webhook reconciler

    async def complete_payment(self, payment: Payment) -> bool:
        """
        Settle a payment as COMPLETED and apply its side effects

        Runs in the caller's transaction. Only the caller that wins the
        PENDING -> COMPLETED swap applies the side effects.

        Returns:
            True if this call completed the payment
        """
        now = utcnow()
        if not await transition_payment(self.db, payment.id, PaymentStatus.COMPLETED, completed_at=now):
            return False

        payment = await self._reload(payment.id)
        context = payment.context

        await self.notification_service.notify_payment_confirmed(payment)
        await self.audit_service.log_action(
            action="payment_completed",
            entity_type="payment",
            entity_id=payment.id,
            description=f"{payment.provider.value} payment {payment.provider_ref} completed",
            new_values={"status": PaymentStatus.COMPLETED.value, "amount_cents": payment.amount_cents}
        )

        if isinstance(context, BoostContext):
            await self._activate_boost(payment, context, now)
            return True

        payer = await self._get_user(payment.payer_id)
        if payer.role == UserRole.CLIENT:
            await self.referral_service.award_commission(
                referred_user_id=payment.payer_id,
                settled_amount_cents=payment.amount_cents,
                source=f"payment_{payment.id}"
            )

        if isinstance(context, PushPaymentContext):
            await self._release_push_interaction(payment, payer)
        elif isinstance(context, OnChainContext):
            await self._create_on_chain_interaction(payment, context, payer)

        logger.info(f"Payment {payment.id} completed")
        return True

    async def fail_payment(
        self,
        payment_id: uuid.UUID,
        to_status: PaymentStatus = PaymentStatus.FAILED
    ) -> bool:
        """
        Settle a payment as FAILED, CANCELLED or EXPIRED and undo its holds

        The winner of the swap refunds the wallet portion and expires the
        linked pending interaction.

        Returns:
            True if this call failed the payment
        """
        if not await transition_payment(self.db, payment_id, to_status):
            return False

        payment = await self._reload(payment_id)
        wallet_cents = payment.wallet_cents

        if wallet_cents > 0:
            await self.wallet_service.credit(
                user_id=payment.payer_id,
                amount_cents=wallet_cents,
                type=WalletTransactionType.REFUND,
                reference=f"payment_{payment.id}"
            )

        interaction = await self.interaction_service.get_by_payment(payment.id)
        if interaction:
            await self.state_machine.transition(
                self.db,
                interaction.id,
                InteractionStatus.PENDING,
                InteractionStatus.EXPIRED
            )

        logger.info(f"Payment {payment.id} -> {to_status.value}, refunded wallet portion {wallet_cents}")
        return True

    async def expire_stale_payments(self, now: Optional[datetime] = None, batch_size: int = 100) -> int:
        """
        Expire PENDING payments whose confirmation window has closed

        Picks up STK pushes the caller stopped waiting for and deposits that
        were never paid. Each goes through fail_payment, so its wallet
        portion comes back once even if a webhook lands at the same time.

        Returns:
            Number of payments expired
        """
        now = now or utcnow()
        result = await self.db.execute(
            select(Payment.id)
            .where(
                Payment.status == PaymentStatus.PENDING,
                Payment.expires_at.isnot(None),
                Payment.expires_at <= now
            )
            .order_by(Payment.expires_at)
            .limit(batch_size)
        )

        expired = 0
        for payment_id in result.scalars().all():
            if await self.fail_payment(payment_id, PaymentStatus.EXPIRED):
                expired += 1

        return expired

    # Internal helpers

    async def _release_push_interaction(self, payment: Payment, payer: User) -> None:
        interaction = await self.interaction_service.get_by_payment(payment.id)
        if interaction is None:
            logger.warning(f"Completed push payment {payment.id} has no interaction")
            return

        if interaction.status in (InteractionStatus.REJECTED, InteractionStatus.EXPIRED):
            # Money arrived after the request was closed
            await self.wallet_service.credit(
                user_id=payment.payer_id,
                amount_cents=payment.amount_cents,
                type=WalletTransactionType.REFUND,
                reference=f"payment_{payment.id}"
            )
            logger.info(f"Late payment {payment.id} refunded, interaction {interaction.id} is {interaction.status.value}")
            return

        if interaction.status != InteractionStatus.PENDING:
            return

        if not payer.is_kyc_verified:
            await self.state_machine.transition(
                self.db,
                interaction.id,
                InteractionStatus.PENDING,
                InteractionStatus.PENDING_VERIFICATION
            )
            return

        await self.notification_service.notify_paid_request(interaction, payer.display_name)

    async def _create_on_chain_interaction(
        self,
        payment: Payment,
        context: OnChainContext,
        payer: User
    ) -> None:
        if await self.interaction_service.get_by_payment(payment.id):
            return

        status = self._initial_status(not payer.is_kyc_verified)
        interaction = await self.interaction_service.create_for_payment(
            client_id=payment.payer_id,
            companion_id=context.companion_id,
            payment_id=payment.id,
            interaction_type=context.interaction_type,
            service_type=context.service_type,
            duration_minutes=context.duration_minutes,
            status=status
        )

        if status == InteractionStatus.PENDING:
            await self.notification_service.notify_paid_request(interaction, payer.display_name)

    async def _activate_boost(self, payment: Payment, context: BoostContext, now) -> None:
        boost = CompanionBoost(
            companion_id=payment.payer_id,
            payment_id=payment.id,
            boost_type=context.boost_type,
            start_at=now,
            end_at=now + timedelta(days=context.duration_days),
            is_active=True
        )
        self.db.add(boost)
        await self.db.flush()

        await self.notification_service.notify_boost_activated(payment.payer_id, context.duration_days)
        logger.info(f"Boost {boost.id} active for {payment.payer_id} until {boost.end_at}")

    async def _poll_payment(
        self,
        payment_id: uuid.UUID,
        is_disconnected: Optional[Callable[[], Awaitable[bool]]]
    ) -> Optional[PaymentStatus]:
        """
        Wait for the webhook to settle the payment

        Returns:
            The settled status, PENDING when the window closed, or None when
            the caller disconnected
        """
        deadline = self.clock() + settings.STK_POLL_TIMEOUT_SECONDS

        while True:
            # End the read transaction so the next read sees the webhook's commit
            await self.db.commit()
            status = await self.db.scalar(select(Payment.status).where(Payment.id == payment_id))

            if status != PaymentStatus.PENDING:
                return status

            if is_disconnected is not None and await is_disconnected():
                logger.info(f"Caller left while polling payment {payment_id}; webhook will settle it")
                return None

            if self.clock() >= deadline:
                return PaymentStatus.PENDING

            await self.sleep(settings.STK_POLL_INTERVAL_SECONDS)

    async def _handle_timeout(self, payment: Payment, interaction: InteractionRequest) -> PaymentStatus:
        """Cancel an unconfirmed STK push; the webhook may win the race instead"""
        if await self.fail_payment(payment.id, PaymentStatus.CANCELLED):
            await self.db.commit()
            logger.info(f"Payment {payment.id} timed out and was cancelled")
            return PaymentStatus.CANCELLED

        status = await self.db.scalar(select(Payment.status).where(Payment.id == payment.id))
        if status == PaymentStatus.FAILED:
            # Webhook already refunded
            await self.state_machine.transition(
                self.db,
                interaction.id,
                InteractionStatus.PENDING,
                InteractionStatus.EXPIRED
            )
            await self.db.commit()
        return status

    async def _store_checkout_id(self, payment: Payment, checkout_request_id: Optional[str]) -> None:
        if not checkout_request_id:
            return

        context = payment.context.model_copy(update={"checkout_request_id": checkout_request_id})
        await self.db.execute(
            update(Payment)
            .where(Payment.id == payment.id)
            .values(context_data=dump_context(context))
            .execution_options(synchronize_session=False)
        )
        await self.db.commit()
        payment.context_data = dump_context(context)

    async def _replay(self, payer_id: uuid.UUID, key: str) -> Optional[Payment]:
        """
        Existing payment for an idempotency key

        Raises:
            ConflictException: If another payer already used the key
        """
        payment = await self._find_by_key(key)
        if payment is None:
            return None

        if payment.payer_id != payer_id:
            raise ConflictException("Idempotency key already used", error_code="IDEMPOTENCY_CONFLICT")

        logger.info(f"Idempotent replay of payment {payment.id}")
        return payment

    async def _replay_after_race(self, payer_id: uuid.UUID, key: str) -> Dict[str, Any]:
        payment = await self._replay(payer_id, key)
        if payment is None:
            raise ConflictException("Duplicate payment request")
        return await self._settlement_outcome(payment, "Payment already processed")

    async def _find_by_key(self, key: str) -> Optional[Payment]:
        result = await self.db.execute(
            select(Payment)
            .where(Payment.idempotency_key == key)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def _reload(self, payment_id: uuid.UUID) -> Payment:
        result = await self.db.execute(
            select(Payment)
            .where(Payment.id == payment_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one()

    async def _settlement_outcome(self, payment: Payment, message: str) -> Dict[str, Any]:
        interaction = await self.interaction_service.get_by_payment(payment.id)
        return self._settlement_response(payment, interaction, message=message)

    @staticmethod
    def _settlement_response(
        payment: Payment,
        interaction: Optional[InteractionRequest],
        message: str,
        payment_status: Optional[str] = None
    ) -> Dict[str, Any]:
        return {
            "order_id": payment.provider_ref,
            "payment_id": payment.id,
            "interaction_id": interaction.id if interaction else None,
            "amount": payment.amount_cents // 100,
            "currency": payment.currency,
            "payment_status": payment_status or payment.status.value,
            "message": message,
            "requires_kyc": bool(
                interaction and interaction.status == InteractionStatus.PENDING_VERIFICATION
            ),
        }

    @staticmethod
    def _crypto_response(payment: Payment, message: str, expires_at: Optional[str] = None) -> Dict[str, Any]:
        context = payment.context
        return {
            "order_id": payment.provider_ref,
            "payment_id": payment.id,
            "page_url": getattr(context, "page_url", None),
            "amount_kes": payment.amount_cents // 100,
            "amount_usdt": getattr(context, "usdt_amount", "0"),
            "usdt_rate": getattr(context, "usdt_rate", "0"),
            "currency": payment.currency,
            "payment_status": payment.status.value,
            "expires_at": expires_at,
            "message": message,
        }

    @staticmethod
    def _boost_response(payment: Payment, message: str) -> Dict[str, Any]:
        return {
            "order_id": payment.provider_ref,
            "payment_id": payment.id,
            "checkout_request_id": getattr(payment.context, "checkout_request_id", None),
            "status": payment.status.value,
            "amount_kes": payment.amount_cents // 100,
            "message": message,
        }

    @staticmethod
    def _initial_status(requires_kyc: bool) -> InteractionStatus:
        return InteractionStatus.PENDING_VERIFICATION if requires_kyc else InteractionStatus.PENDING

    @staticmethod
    def _duration(duration_minutes: Optional[int]) -> int:
        if not duration_minutes or duration_minutes <= 0:
            return settings.DEFAULT_DURATION_MINUTES
        return duration_minutes

    @staticmethod
    def _validate_customer(data: CustomerDetails) -> str:
        """
        Check the M-Pesa customer details

        Returns:
            Normalized phone number

        Raises:
            ValidationException: If a field is missing or the phone is invalid
        """
        missing = [
            name for name in (
                "customer_phone",
                "customer_first_name",
                "customer_last_name",
                "customer_email",
            )
            if not getattr(data, name)
        ]
        if missing:
            raise ValidationException(f"Missing customer details: {', '.join(missing)}")

        phone = normalize_kenyan_phone(data.customer_phone)
        if not phone:
            raise ValidationException("Invalid phone number. Use the 07XXXXXXXX or 2547XXXXXXXX format")
        return phone

    async def _get_user(self, user_id: uuid.UUID) -> User:
        user = await self.db.get(User, user_id)
        if not user:
            raise NotFoundException("User not found")
        return user

    async def _check_companion(self, client_id: uuid.UUID, companion_id: uuid.UUID) -> None:
        if client_id == companion_id:
            raise ForbiddenException("Cannot pay yourself")

        exists = await self.db.scalar(
            select(CompanionProfile.id).where(CompanionProfile.user_id == companion_id)
        )
        if not exists:
            raise NotFoundException("Companion not found")
