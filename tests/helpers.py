"""Seeding and query helpers shared by the tests"""

import json
import uuid
from datetime import timedelta
from typing import List, Optional

import httpx
from sqlalchemy import select

from app.models import (
    CompanionProfile,
    InteractionRequest,
    InteractionStatus,
    InteractionType,
    Notification,
    Payment,
    PaymentProvider,
    PaymentStatus,
    Referral,
    User,
    UserRole,
    Wallet,
    WalletTransaction,
)
from app.schemas.payment_context import PushPaymentContext, WalletOnlyContext, dump_context
from app.utils.helpers import utcnow
from app.api.v1.payments.mpesa_client import MpesaClient
from app.api.v1.payments.swapuzi_client import SwapuziClient


async def create_user(db, role=UserRole.CLIENT, kyc=True, username=None) -> User:
    user = User(
        id=uuid.uuid4(),
        email=f"{uuid.uuid4().hex[:8]}@example.com",
        username=username,
        role=role,
        is_kyc_verified=kyc,
    )
    db.add(user)
    await db.flush()
    return user


async def create_companion(db, accepting=True, available=True, username="companion") -> User:
    user = await create_user(db, role=UserRole.COMPANION, username=username)
    db.add(CompanionProfile(
        user_id=user.id,
        display_name=username,
        base_price_cents=50000,
        accepting_requests=accepting,
        is_available=available,
    ))
    await db.flush()
    return user


async def fund_wallet(db, user_id, balance_cents=0, withdrawable_cents=0) -> Wallet:
    wallet = Wallet(
        user_id=user_id,
        balance_cents=balance_cents,
        withdrawable_cents=withdrawable_cents,
        currency="KES",
    )
    db.add(wallet)
    await db.flush()
    return wallet


async def refer(db, referrer_id, referred_id) -> Referral:
    referral = Referral(referrer_id=referrer_id, referred_user_id=referred_id, completed_count=0)
    db.add(referral)
    await db.flush()
    return referral


async def balances(session_factory, user_id):
    async with session_factory() as db:
        row = (await db.execute(
            select(Wallet.balance_cents, Wallet.withdrawable_cents).where(Wallet.user_id == user_id)
        )).one_or_none()
        return (row.balance_cents, row.withdrawable_cents) if row else (0, 0)


async def ledger(session_factory, user_id, type=None) -> List[WalletTransaction]:
    async with session_factory() as db:
        query = select(WalletTransaction).where(WalletTransaction.user_id == user_id)
        if type is not None:
            query = query.where(WalletTransaction.type == type)
        return list((await db.execute(query)).scalars().all())


async def get_interaction(session_factory, interaction_id) -> InteractionRequest:
    async with session_factory() as db:
        return await db.get(InteractionRequest, interaction_id)


async def get_payment(session_factory, payment_id) -> Payment:
    async with session_factory() as db:
        return await db.get(Payment, payment_id)


async def interactions_for_payment(session_factory, payment_id) -> List[InteractionRequest]:
    async with session_factory() as db:
        result = await db.execute(
            select(InteractionRequest).where(InteractionRequest.payment_id == payment_id)
        )
        return list(result.scalars().all())


async def notifications(session_factory, user_id, type=None) -> List[Notification]:
    async with session_factory() as db:
        query = select(Notification).where(Notification.user_id == user_id)
        if type is not None:
            query = query.where(Notification.type == type)
        return list((await db.execute(query)).scalars().all())


def mpesa_client(handler, calls: Optional[list] = None) -> MpesaClient:
    """MpesaClient over a MockTransport; logins always succeed"""

    def dispatch(request: httpx.Request) -> httpx.Response:
        if calls is not None:
            calls.append(request)
        if request.url.path.endswith("/merchants/login"):
            return httpx.Response(200, json={"token": "tok"})
        return handler(request)

    return MpesaClient(
        base_url="https://mpesa.test",
        email="merchant@example.com",
        password="secret",
        http_client=httpx.AsyncClient(transport=httpx.MockTransport(dispatch)),
    )


def swapuzi_client(handler) -> SwapuziClient:
    def dispatch(request: httpx.Request) -> httpx.Response:
        if request.url.path.endswith("/merchants/login"):
            return httpx.Response(200, json={"token": "tok"})
        return handler(request)

    return SwapuziClient(
        base_url="https://swapuzi.test",
        email="merchant@example.com",
        password="secret",
        http_client=httpx.AsyncClient(transport=httpx.MockTransport(dispatch)),
    )


def body(**fields) -> bytes:
    return json.dumps(fields).encode()


async def create_push_payment(db, payer_id, companion_id, amount_cents=50000, wallet_cents=0) -> Payment:
    """PENDING STK push payment with its PENDING interaction, as right after initiation"""
    order_id = f"metchi-{uuid.uuid4()}"
    payment = Payment(
        payer_id=payer_id,
        amount_cents=amount_cents,
        currency="KES",
        provider=PaymentProvider.PUSH_PAYMENT,
        provider_ref=order_id,
        idempotency_key=order_id,
        status=PaymentStatus.PENDING,
        context_data=dump_context(PushPaymentContext(
            companion_id=companion_id,
            interaction_type="CHAT",
            duration_minutes=60,
            wallet_cents=wallet_cents,
            mpesa_cents=amount_cents - wallet_cents,
        )),
    )
    db.add(payment)
    await db.flush()
    await create_interaction(db, payer_id, companion_id, payment.id)
    return payment


async def create_interaction(
    db,
    client_id,
    companion_id,
    payment_id,
    status=InteractionStatus.PENDING,
    expires_in=timedelta(minutes=30),
    duration_minutes=60,
) -> InteractionRequest:
    interaction = InteractionRequest(
        client_id=client_id,
        companion_id=companion_id,
        payment_id=payment_id,
        interaction_type=InteractionType.CHAT,
        status=status,
        duration_minutes=duration_minutes,
        expires_at=utcnow() + expires_in,
    )
    db.add(interaction)
    await db.flush()
    return interaction


async def paid_request(db, client_id, companion_id, amount_cents=50000, **interaction_fields) -> InteractionRequest:
    """Request backed by a COMPLETED wallet payment"""
    order_id = f"metchi-w-{uuid.uuid4()}"
    payment = Payment(
        payer_id=client_id,
        amount_cents=amount_cents,
        currency="KES",
        provider=PaymentProvider.WALLET,
        provider_ref=order_id,
        idempotency_key=order_id,
        status=PaymentStatus.COMPLETED,
        completed_at=utcnow(),
        context_data=dump_context(WalletOnlyContext(
            companion_id=companion_id,
            interaction_type="CHAT",
            duration_minutes=60,
            wallet_cents=amount_cents,
        )),
    )
    db.add(payment)
    await db.flush()
    return await create_interaction(db, client_id, companion_id, payment.id, **interaction_fields)
