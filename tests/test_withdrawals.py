import asyncio
import json

import httpx
import pytest
from sqlalchemy import select

from app.core.exceptions import (
    InsufficientBalanceException,
    ProviderErrorException,
    ValidationException,
)
from app.models import WalletTransactionType, Withdrawal, WithdrawalStatus
from app.api.v1.payments.webhooks import WebhookReconciler
from app.api.v1.withdrawals.services import WithdrawalService

from helpers import balances, body, create_companion, fund_wallet, ledger, mpesa_client


def seed_companion(session_factory, withdrawable_cents=100000):
    async def run():
        async with session_factory() as db:
            companion = await create_companion(db)
            await fund_wallet(db, companion.id, withdrawable_cents=withdrawable_cents)
            await db.commit()
            return companion

    return asyncio.run(run())


def withdraw(session_factory, user_id, amount_kes, handler, phone="0712345678"):
    async def run():
        async with session_factory() as db:
            service = WithdrawalService(db, mpesa=mpesa_client(handler))
            result = await service.create_withdrawal(user_id, amount_kes, phone)
            await db.commit()
            return result

    return asyncio.run(run())


def accepted(request):
    return httpx.Response(200, json={"uuid": "b2c-1", "status": "PENDING"})


async def stored_withdrawals(session_factory):
    async with session_factory() as db:
        return list((await db.execute(select(Withdrawal))).scalars().all())


def deliver(session_factory, raw):
    async def run():
        async with session_factory() as db:
            await WebhookReconciler(db).handle_withdrawal(raw)
            await db.commit()

    asyncio.run(run())


def test_withdrawal_reserves_funds_and_sends_payout(session_factory):
    companion = seed_companion(session_factory)
    sent = []

    def handler(request):
        sent.append(json.loads(request.content))
        return accepted(request)

    result = withdraw(session_factory, companion.id, 500, handler)

    assert result["status"] == "PENDING"
    assert result["order_id"].startswith("wd-")
    assert result["phone_number"] == "254712345678"
    assert sent[0]["amount"] == "500"
    assert sent[0]["order_id"] == result["order_id"]
    assert asyncio.run(balances(session_factory, companion.id)) == (0, 50000)

    (withdrawal,) = asyncio.run(stored_withdrawals(session_factory))
    assert withdrawal.status == WithdrawalStatus.PENDING
    assert withdrawal.provider_ref == "b2c-1"
    assert withdrawal.amount_cents == 50000


def test_payout_confirmation_completes_withdrawal(session_factory):
    companion = seed_companion(session_factory)
    result = withdraw(session_factory, companion.id, 500, accepted)

    deliver(session_factory, body(order_id=result["order_id"], status="SUCCESS", transaction_uuid="tx-9"))
    deliver(session_factory, body(order_id=result["order_id"], status="FAILED"))

    (withdrawal,) = asyncio.run(stored_withdrawals(session_factory))
    assert withdrawal.status == WithdrawalStatus.COMPLETED
    assert withdrawal.provider_ref == "tx-9"
    assert withdrawal.completed_at is not None
    assert asyncio.run(balances(session_factory, companion.id)) == (0, 50000)


def test_payout_failure_returns_funds_once(session_factory):
    companion = seed_companion(session_factory)
    result = withdraw(session_factory, companion.id, 500, accepted)
    raw = body(merchant_order_id=result["order_id"], status="FAILED")

    deliver(session_factory, raw)
    deliver(session_factory, raw)

    (withdrawal,) = asyncio.run(stored_withdrawals(session_factory))
    assert withdrawal.status == WithdrawalStatus.FAILED
    assert asyncio.run(balances(session_factory, companion.id)) == (0, 100000)

    refunds = asyncio.run(ledger(session_factory, companion.id, WalletTransactionType.REFUND))
    assert [(row.amount_cents, row.reference) for row in refunds] == [(50000, result["order_id"])]


def test_rejected_payout_call_compensates(session_factory):
    companion = seed_companion(session_factory)

    with pytest.raises(ProviderErrorException):
        withdraw(session_factory, companion.id, 500, lambda request: httpx.Response(500, text="down"))

    (withdrawal,) = asyncio.run(stored_withdrawals(session_factory))
    assert withdrawal.status == WithdrawalStatus.FAILED
    assert asyncio.run(balances(session_factory, companion.id)) == (0, 100000)


def test_withdrawal_beyond_withdrawable_balance_is_refused(session_factory):
    companion = seed_companion(session_factory)

    with pytest.raises(InsufficientBalanceException):
        withdraw(session_factory, companion.id, 2000, accepted)

    assert asyncio.run(stored_withdrawals(session_factory)) == []
    assert asyncio.run(balances(session_factory, companion.id)) == (0, 100000)


def test_invalid_phone_is_refused(session_factory):
    companion = seed_companion(session_factory)

    with pytest.raises(ValidationException):
        withdraw(session_factory, companion.id, 500, accepted, phone="12ab")
