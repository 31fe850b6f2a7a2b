import asyncio
import json

import httpx
import pytest
from sqlalchemy import func, select

from app.core.cache import cache
from app.core.exceptions import (
    ConflictException,
    ForbiddenException,
    InsufficientBalanceException,
    ProviderErrorException,
    ValidationException,
)
from app.models import InteractionStatus, Payment, PaymentStatus, WalletTransactionType
from app.api.v1.payments.schemas import CryptoPaymentRequest, InteractionPaymentRequest
from app.api.v1.payments.services import SettlementService
from app.api.v1.payments.webhooks import WebhookReconciler

from helpers import (
    balances,
    body,
    create_companion,
    create_user,
    fund_wallet,
    get_interaction,
    get_payment,
    interactions_for_payment,
    ledger,
    mpesa_client,
    notifications,
    swapuzi_client,
)


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


def seed(session_factory, client_balance=0, kyc=True):
    async def run():
        async with session_factory() as db:
            client = await create_user(db, kyc=kyc, username="client")
            companion = await create_companion(db)
            if client_balance:
                await fund_wallet(db, client.id, balance_cents=client_balance)
            await db.commit()
            return client, companion

    return asyncio.run(run())


def payment_request(companion, amount_kes=500, wallet_amount_kes=0):
    return InteractionPaymentRequest(
        companion_id=companion.id,
        interaction_type="CHAT",
        service_type="MASSAGE",
        amount_kes=amount_kes,
        wallet_amount_kes=wallet_amount_kes,
        customer_phone="0712345678",
        customer_first_name="Jane",
        customer_last_name="Doe",
        customer_email="jane@example.com",
    )


async def count_payments(session_factory):
    async with session_factory() as db:
        return await db.scalar(select(func.count()).select_from(Payment))


def test_wallet_only_payment_refused_when_balance_too_low(session_factory):
    client, companion = seed(session_factory, client_balance=30000)

    async def pay():
        async with session_factory() as db:
            await SettlementService(db).pay_with_wallet(client.id, payment_request(companion, amount_kes=500))

    with pytest.raises(InsufficientBalanceException):
        asyncio.run(pay())

    assert asyncio.run(balances(session_factory, client.id)) == (30000, 0)
    assert asyncio.run(count_payments(session_factory)) == 0


def test_wallet_only_payment_settles_immediately(session_factory):
    client, companion = seed(session_factory, client_balance=50000)

    async def pay():
        async with session_factory() as db:
            return await SettlementService(db).pay_with_wallet(client.id, payment_request(companion, amount_kes=500))

    result = asyncio.run(pay())

    assert result["payment_status"] == "COMPLETED"
    assert result["amount"] == 500
    assert result["requires_kyc"] is False
    assert result["order_id"].startswith("metchi-w-")
    assert asyncio.run(balances(session_factory, client.id)) == (0, 0)

    interaction = asyncio.run(get_interaction(session_factory, result["interaction_id"]))
    assert interaction.status == InteractionStatus.PENDING
    assert interaction.duration_minutes == 1440
    assert len(asyncio.run(notifications(session_factory, companion.id, "paid_request"))) == 1


def test_wallet_only_payment_for_unverified_client_is_held(session_factory):
    client, companion = seed(session_factory, client_balance=50000, kyc=False)

    async def pay():
        async with session_factory() as db:
            return await SettlementService(db).pay_with_wallet(client.id, payment_request(companion, amount_kes=500))

    result = asyncio.run(pay())

    assert result["requires_kyc"] is True
    interaction = asyncio.run(get_interaction(session_factory, result["interaction_id"]))
    assert interaction.status == InteractionStatus.PENDING_VERIFICATION
    assert asyncio.run(notifications(session_factory, companion.id)) == []


def test_repeated_idempotency_key_replays_without_second_debit(session_factory):
    client, companion = seed(session_factory, client_balance=100000)

    async def pay():
        async with session_factory() as db:
            return await SettlementService(db).pay_with_wallet(
                client.id, payment_request(companion, amount_kes=500), idempotency_key="key-1"
            )

    first = asyncio.run(pay())
    second = asyncio.run(pay())

    assert second["payment_id"] == first["payment_id"]
    assert second["interaction_id"] == first["interaction_id"]
    assert asyncio.run(balances(session_factory, client.id)) == (50000, 0)
    assert asyncio.run(count_payments(session_factory)) == 1


def test_idempotency_key_of_another_payer_conflicts(session_factory):
    client, companion = seed(session_factory, client_balance=100000)

    async def other_client():
        async with session_factory() as db:
            other = await create_user(db)
            await fund_wallet(db, other.id, balance_cents=100000)
            await db.commit()
            return other

    other = asyncio.run(other_client())

    async def pay(user):
        async with session_factory() as db:
            return await SettlementService(db).pay_with_wallet(
                user.id, payment_request(companion, amount_kes=500), idempotency_key="shared"
            )

    asyncio.run(pay(client))
    with pytest.raises(ConflictException):
        asyncio.run(pay(other))

    assert asyncio.run(balances(session_factory, other.id)) == (100000, 0)


def test_push_payment_timeout_restores_wallet_portion(session_factory):
    client, companion = seed(session_factory, client_balance=30000)
    clock = FakeClock()

    async def sleep(seconds):
        clock.now += seconds

    mpesa = mpesa_client(lambda request: httpx.Response(200, json={"checkout_request_id": "ws_CO_1", "status": "PENDING"}))

    async def pay():
        async with session_factory() as db:
            service = SettlementService(db, mpesa=mpesa, sleep=sleep, clock=clock)
            return await service.pay_with_mpesa(
                client.id, payment_request(companion, amount_kes=1000, wallet_amount_kes=300)
            )

    result = asyncio.run(pay())

    assert result["payment_status"] == "TIMEOUT"
    assert asyncio.run(balances(session_factory, client.id)) == (30000, 0)

    payment = asyncio.run(get_payment(session_factory, result["payment_id"]))
    assert payment.status == PaymentStatus.CANCELLED
    assert payment.context.checkout_request_id == "ws_CO_1"
    assert payment.context.wallet_cents == 30000
    assert payment.context.mpesa_cents == 70000

    interaction = asyncio.run(get_interaction(session_factory, result["interaction_id"]))
    assert interaction.status == InteractionStatus.EXPIRED

    refunds = asyncio.run(ledger(session_factory, client.id, WalletTransactionType.REFUND))
    assert [row.amount_cents for row in refunds] == [30000]


def test_push_payment_completed_by_webhook_while_polling(session_factory):
    client, companion = seed(session_factory)
    sent = {}

    def handler(request):
        sent.update(json.loads(request.content))
        return httpx.Response(200, json={"checkout_request_id": "ws_CO_2", "status": "PENDING"})

    async def sleep(seconds):
        async with session_factory() as other:
            await WebhookReconciler(other).handle_mpesa(
                body(merchant_order_id=sent["order_id"], status="COMPLETED", amount="500")
            )
            await other.commit()

    async def pay():
        async with session_factory() as db:
            service = SettlementService(db, mpesa=mpesa_client(handler), sleep=sleep, clock=FakeClock())
            return await service.pay_with_mpesa(client.id, payment_request(companion, amount_kes=500))

    result = asyncio.run(pay())

    assert result["payment_status"] == "COMPLETED"
    assert result["requires_kyc"] is False
    assert sent["amount"] == "500"
    assert len(asyncio.run(notifications(session_factory, companion.id, "paid_request"))) == 1
    assert len(asyncio.run(notifications(session_factory, client.id, "payment"))) == 1


def test_push_payment_left_pending_when_caller_disconnects(session_factory):
    client, companion = seed(session_factory, client_balance=30000)
    mpesa = mpesa_client(lambda request: httpx.Response(200, json={"checkout_request_id": "ws_CO_3", "status": "PENDING"}))

    async def sleep(seconds):
        raise AssertionError("should not poll after the caller left")

    async def is_disconnected():
        return True

    async def pay():
        async with session_factory() as db:
            service = SettlementService(db, mpesa=mpesa, sleep=sleep, clock=FakeClock())
            return await service.pay_with_mpesa(
                client.id,
                payment_request(companion, amount_kes=1000, wallet_amount_kes=300),
                is_disconnected=is_disconnected
            )

    result = asyncio.run(pay())

    assert result["payment_status"] == "PENDING"
    assert asyncio.run(get_payment(session_factory, result["payment_id"])).status == PaymentStatus.PENDING
    assert asyncio.run(get_interaction(session_factory, result["interaction_id"])).status == InteractionStatus.PENDING
    # Wallet portion stays held for the webhook
    assert asyncio.run(balances(session_factory, client.id)) == (0, 0)

    async def deliver():
        async with session_factory() as db:
            await WebhookReconciler(db).handle_mpesa(
                body(merchant_order_id=result["order_id"], status="COMPLETED", amount="700")
            )
            await db.commit()

    asyncio.run(deliver())
    asyncio.run(deliver())

    assert asyncio.run(get_payment(session_factory, result["payment_id"])).status == PaymentStatus.COMPLETED
    assert len(asyncio.run(notifications(session_factory, companion.id, "paid_request"))) == 1
    assert len(asyncio.run(notifications(session_factory, client.id, "payment"))) == 1
    assert asyncio.run(ledger(session_factory, client.id, WalletTransactionType.REFUND)) == []
    assert asyncio.run(balances(session_factory, client.id)) == (0, 0)


def test_push_payment_provider_error_runs_compensations(session_factory):
    client, companion = seed(session_factory, client_balance=20000)
    mpesa = mpesa_client(lambda request: httpx.Response(503, text="unavailable"))

    async def pay():
        async with session_factory() as db:
            service = SettlementService(db, mpesa=mpesa)
            await service.pay_with_mpesa(client.id, payment_request(companion, amount_kes=500, wallet_amount_kes=200))

    with pytest.raises(ProviderErrorException):
        asyncio.run(pay())

    assert asyncio.run(balances(session_factory, client.id)) == (20000, 0)

    async def stored():
        async with session_factory() as db:
            return (await db.execute(select(Payment))).scalar_one()

    payment = asyncio.run(stored())
    assert payment.status == PaymentStatus.FAILED
    (interaction,) = asyncio.run(interactions_for_payment(session_factory, payment.id))
    assert interaction.status == InteractionStatus.EXPIRED


def test_push_payment_requires_customer_details(session_factory):
    client, companion = seed(session_factory)
    request = payment_request(companion)
    request.customer_email = None

    async def pay():
        async with session_factory() as db:
            await SettlementService(db, mpesa=mpesa_client(lambda r: httpx.Response(200, json={}))).pay_with_mpesa(
                client.id, request
            )

    with pytest.raises(ValidationException):
        asyncio.run(pay())


def test_crypto_initiate_opens_deposit_without_interaction(session_factory):
    client, companion = seed(session_factory)

    def handler(request):
        if request.url.path == "/merchants/rates":
            return httpx.Response(200, json={"usdt_buying_rate": 130, "usdt_selling_rate": 128})
        return httpx.Response(200, json={"page_url": "https://pay.test/d/1", "expires_at": "2026-01-01T00:30:00Z"})

    async def pay():
        async with session_factory() as db:
            service = SettlementService(db, swapuzi=swapuzi_client(handler))
            return await service.initiate_crypto(
                client.id,
                CryptoPaymentRequest(companion_id=companion.id, interaction_type="VIDEO", amount_kes=1000),
            )

    result = asyncio.run(pay())

    assert result["order_id"].startswith("metchi-sol-")
    assert result["amount_usdt"] == "7.6924"
    assert result["page_url"] == "https://pay.test/d/1"
    assert result["payment_status"] == "PENDING"
    assert asyncio.run(interactions_for_payment(session_factory, result["payment_id"])) == []

    payment = asyncio.run(get_payment(session_factory, result["payment_id"]))
    assert payment.context.kind == "on_chain"
    assert payment.context.page_url == "https://pay.test/d/1"


def test_companion_cannot_be_paid_by_themselves(session_factory):
    async def run():
        async with session_factory() as db:
            companion = await create_companion(db)
            await fund_wallet(db, companion.id, balance_cents=50000)
            await db.commit()
        async with session_factory() as db:
            await SettlementService(db).pay_with_wallet(companion.id, payment_request(companion))

    with pytest.raises(ForbiddenException):
        asyncio.run(run())


def test_rates_are_cached_between_calls(session_factory):
    asyncio.run(cache.delete("usdt_rates:current"))
    calls = []

    def handler(request):
        calls.append(request.url.path)
        return httpx.Response(200, json={"usdt_buying_rate": "129.5", "usdt_selling_rate": "127"})

    swapuzi = swapuzi_client(handler)

    async def rates():
        async with session_factory() as db:
            return await SettlementService(db, swapuzi=swapuzi).get_rates()

    first = asyncio.run(rates())
    second = asyncio.run(rates())

    assert first == second == {"usdt_buying_rate": "129.5", "usdt_selling_rate": "127"}
    assert calls == ["/merchants/rates"]
    asyncio.run(cache.delete("usdt_rates:current"))
