import asyncio
from datetime import timedelta

import httpx
import pytest
from fastapi.testclient import TestClient
from sqlalchemy import select

from app.core.config import settings
from app.core.database import get_db
from app.core.security import SecurityUtils
from app.main import app
from app.models import ChatSession
from app.services import pricing
from app.api.v1.payments.mpesa_client import get_mpesa_client
from app.api.v1.payments.webhooks import compute_signature
from app.api.v1.payments.schemas import InteractionPaymentRequest
from app.api.v1.payments.services import SettlementService
from app.api.v1.interactions.services import InteractionService
from app.utils.helpers import as_utc

from helpers import (
    balances,
    body,
    create_companion,
    create_push_payment,
    create_user,
    fund_wallet,
    get_payment,
    mpesa_client,
    paid_request,
)


@pytest.fixture
def api(session_factory):
    async def override_get_db():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = override_get_db
    yield TestClient(app)
    app.dependency_overrides.clear()


def auth(user):
    token = SecurityUtils.create_access_token({"sub": str(user.id), "role": user.role.value})
    return {"Authorization": f"Bearer {token}"}


def seed(session_factory, client_balance=0):
    async def run():
        async with session_factory() as db:
            client = await create_user(db)
            companion = await create_companion(db)
            if client_balance:
                await fund_wallet(db, client.id, balance_cents=client_balance)
            await db.commit()
            return client, companion

    return asyncio.run(run())


def test_health(api):
    response = api.get("/health")

    assert response.status_code == 200
    assert response.json()["status"] == "healthy"


def test_quote_needs_no_auth(api):
    response = api.get("/api/v1/payments/quote", params={"base_cents": 50000})

    assert response.status_code == 200
    assert response.json() == pricing.quote(50000)


def test_missing_or_bad_token_is_refused(api):
    assert api.get("/api/v1/wallet/balance").status_code in (401, 403)

    response = api.get("/api/v1/wallet/balance", headers={"Authorization": "Bearer not-a-jwt"})
    assert response.status_code == 401
    assert response.json()["error_code"] == "UNAUTHORIZED"


def test_wallet_balance_and_ledger(api, session_factory):
    client, _ = seed(session_factory, client_balance=12300)

    balance = api.get("/api/v1/wallet/balance", headers=auth(client))
    ledger = api.get("/api/v1/wallet/transactions", headers=auth(client))

    assert balance.json() == {"balance_cents": 12300, "withdrawable_cents": 0, "currency": "KES"}
    assert ledger.status_code == 200
    assert ledger.json() == []


def test_wallet_payment_over_http(api, session_factory):
    client, companion = seed(session_factory, client_balance=50000)
    payload = {"companion_id": str(companion.id), "interaction_type": "CHAT", "amount_kes": 500}
    headers = {**auth(client), "Idempotency-Key": "http-1"}

    first = api.post("/api/v1/payments/wallet", json=payload, headers=headers)
    second = api.post("/api/v1/payments/wallet", json=payload, headers=headers)

    assert first.status_code == 201
    assert first.json()["payment_status"] == "COMPLETED"
    assert second.json()["payment_id"] == first.json()["payment_id"]
    assert asyncio.run(balances(session_factory, client.id)) == (0, 0)

    payment = api.get(f"/api/v1/payments/{first.json()['payment_id']}", headers=auth(client))
    assert payment.status_code == 200
    assert payment.json()["context_data"]["kind"] == "wallet_only"
    assert payment.json()["provider"] == "WALLET"

    assert api.get(f"/api/v1/payments/{first.json()['payment_id']}", headers=auth(companion)).status_code == 404


def test_insufficient_balance_maps_to_400(api, session_factory):
    client, companion = seed(session_factory, client_balance=100)
    payload = {"companion_id": str(companion.id), "interaction_type": "CHAT", "amount_kes": 500}

    response = api.post("/api/v1/payments/wallet", json=payload, headers=auth(client))

    assert response.status_code == 400
    assert response.json()["error_code"] == "INSUFFICIENT_BALANCE"


@pytest.mark.parametrize("path", [
    "/api/v1/payments/wallet",
    "/api/v1/payments/mpesa/initiate",
    "/api/v1/payments/crypto/initiate",
])
def test_overlong_duration_is_refused_before_any_debit(api, session_factory, path):
    client, companion = seed(session_factory, client_balance=50000)
    payload = {
        "companion_id": str(companion.id),
        "interaction_type": "CHAT",
        "amount_kes": 500,
        "wallet_amount_kes": 500,
        "duration_minutes": 10 ** 10,
    }

    response = api.post(path, json=payload, headers=auth(client))

    assert response.status_code == 422
    assert asyncio.run(balances(session_factory, client.id)) == (50000, 0)


def test_longest_allowed_duration_can_be_accepted(session_factory):
    async def run():
        async with session_factory() as db:
            client = await create_user(db)
            companion = await create_companion(db)
            await fund_wallet(db, client.id, balance_cents=50000)
            await db.commit()

        async with session_factory() as db:
            result = await SettlementService(db).pay_with_wallet(
                client.id,
                InteractionPaymentRequest(
                    companion_id=companion.id,
                    interaction_type="CHAT",
                    amount_kes=500,
                    duration_minutes=settings.MAX_DURATION_MINUTES,
                )
            )

        async with session_factory() as db:
            await InteractionService(db).accept(companion.id, result["interaction_id"])
            await db.commit()

        async with session_factory() as db:
            return await db.scalar(
                select(ChatSession).where(ChatSession.interaction_id == result["interaction_id"])
            )

    session = asyncio.run(run())

    assert as_utc(session.ends_at) - as_utc(session.started_at) == timedelta(minutes=settings.MAX_DURATION_MINUTES)


def test_companion_cannot_use_client_routes(api, session_factory):
    _, companion = seed(session_factory)
    payload = {"companion_id": str(companion.id), "interaction_type": "CHAT", "amount_kes": 500}

    response = api.post("/api/v1/payments/wallet", json=payload, headers=auth(companion))

    assert response.status_code == 403
    assert response.json()["error_code"] == "FORBIDDEN"


def test_accept_and_confirm_over_http(api, session_factory):
    async def run():
        async with session_factory() as db:
            client = await create_user(db)
            companion = await create_companion(db)
            request = await paid_request(db, client.id, companion.id)
            await db.commit()
            return client, companion, request

    client, companion, request = asyncio.run(run())

    accepted = api.post(f"/api/v1/interactions/{request.id}/accept", headers=auth(companion))
    assert accepted.status_code == 200
    assert accepted.json()["status"] == "ACCEPTED"
    assert accepted.json()["session_ends_at"] is not None

    again = api.post(f"/api/v1/interactions/{request.id}/accept", headers=auth(companion))
    assert again.status_code == 409
    assert again.json()["error_code"] == "INVALID_STATE_TRANSITION"

    done = api.post(f"/api/v1/interactions/{request.id}/service-done", headers=auth(client))
    assert done.status_code == 200
    assert done.json()["released_cents"] == 50000

    listing = api.get("/api/v1/interactions", headers=auth(companion))
    assert [item["id"] for item in listing.json()] == [str(request.id)]


def test_mpesa_webhook_over_http(api, session_factory):
    async def run():
        async with session_factory() as db:
            client = await create_user(db)
            companion = await create_companion(db)
            payment = await create_push_payment(db, client.id, companion.id)
            await db.commit()
            return payment

    payment = asyncio.run(run())

    response = api.post(
        "/api/v1/webhooks/mpesa",
        content=body(merchant_order_id=payment.provider_ref, status="COMPLETED"),
    )

    assert response.json() == {"received": True}
    assert asyncio.run(get_payment(session_factory, payment.id)).status.value == "COMPLETED"


def test_malformed_webhook_is_acknowledged(api):
    response = api.post("/api/v1/webhooks/mpesa", content=b"{not json")

    assert response.status_code == 200
    assert response.json() == {"received": True}


def test_signed_webhook_over_http(api, session_factory, monkeypatch):
    monkeypatch.setattr(settings, "PAYMENT_WEBHOOK_SECRET", "s3cret")
    raw = body(reference="metchi-unknown", status="COMPLETED")

    bad = api.post("/api/v1/webhooks/payment", content=raw, headers={"X-Webhook-Signature": "0" * 64})
    good = api.post(
        "/api/v1/webhooks/payment",
        content=raw,
        headers={"X-Webhook-Signature": compute_signature(raw, "s3cret")},
    )

    assert bad.status_code == 401
    assert bad.json()["error_code"] == "INVALID_SIGNATURE"
    assert good.status_code == 200
    assert good.json() == {"received": True}


def test_withdrawal_over_http(api, session_factory):
    async def run():
        async with session_factory() as db:
            companion = await create_companion(db)
            await fund_wallet(db, companion.id, withdrawable_cents=80000)
            await db.commit()
            return companion

    companion = asyncio.run(run())
    app.dependency_overrides[get_mpesa_client] = lambda: mpesa_client(
        lambda request: httpx.Response(200, json={"uuid": "b2c-7", "status": "PENDING"})
    )

    created = api.post(
        "/api/v1/withdrawals",
        json={"amount_kes": 300, "phone_number": "0712345678"},
        headers=auth(companion),
    )
    listed = api.get("/api/v1/withdrawals", headers=auth(companion))

    assert created.status_code == 201
    assert created.json()["status"] == "PENDING"
    assert [item["provider_ref"] for item in listed.json()] == ["b2c-7"]
    assert asyncio.run(balances(session_factory, companion.id)) == (0, 50000)
