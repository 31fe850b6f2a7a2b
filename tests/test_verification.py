import asyncio
import uuid

import pytest

from app.core.exceptions import NotFoundException
from app.models import InteractionStatus, User
from app.services.verification import VerificationService

from helpers import (
    balances,
    create_companion,
    create_push_payment,
    create_user,
    get_interaction,
    notifications,
    paid_request,
)


def verify(session_factory, user_id):
    async def run():
        async with session_factory() as db:
            result = await VerificationService(db).complete_verification(user_id)
            await db.commit()
            return result

    return asyncio.run(run())


def test_verification_releases_or_refunds_held_requests(session_factory):
    async def seed():
        async with session_factory() as db:
            client = await create_user(db, kyc=False)
            open_companion = await create_companion(db, username="open")
            closed_companion = await create_companion(db, username="closed", accepting=False)
            held = InteractionStatus.PENDING_VERIFICATION
            released = await paid_request(db, client.id, open_companion.id, status=held)
            refunded = await paid_request(db, client.id, closed_companion.id, amount_cents=30000, status=held)
            await db.commit()
            return client, open_companion, closed_companion, released, refunded

    client, open_companion, closed_companion, released, refunded = asyncio.run(seed())

    result = verify(session_factory, client.id)

    assert result == {"status": "ok", "kyc": True, "released": 1, "refunded": 1}

    assert asyncio.run(get_interaction(session_factory, released.id)).status == InteractionStatus.PENDING
    assert len(asyncio.run(notifications(session_factory, open_companion.id, "paid_request"))) == 1

    assert asyncio.run(get_interaction(session_factory, refunded.id)).status == InteractionStatus.REJECTED
    assert asyncio.run(balances(session_factory, client.id)) == (30000, 0)
    assert len(asyncio.run(notifications(session_factory, client.id, "kyc_refund"))) == 1
    assert asyncio.run(notifications(session_factory, closed_companion.id)) == []

    async def stored_user():
        async with session_factory() as db:
            return await db.get(User, client.id)

    user = asyncio.run(stored_user())
    assert user.is_kyc_verified is True
    assert user.kyc_verified_at is not None


def test_verification_twice_settles_nothing_more(session_factory):
    async def seed():
        async with session_factory() as db:
            client = await create_user(db, kyc=False)
            companion = await create_companion(db, available=False)
            await paid_request(db, client.id, companion.id, status=InteractionStatus.PENDING_VERIFICATION)
            await db.commit()
            return client

    client = asyncio.run(seed())

    assert verify(session_factory, client.id)["refunded"] == 1
    assert verify(session_factory, client.id)["refunded"] == 0
    assert asyncio.run(balances(session_factory, client.id)) == (50000, 0)


def test_unpaid_held_request_is_left_alone(session_factory):
    async def seed():
        async with session_factory() as db:
            client = await create_user(db, kyc=False)
            companion = await create_companion(db)
            payment = await create_push_payment(db, client.id, companion.id)
            await db.commit()
            return client, payment

    client, payment = asyncio.run(seed())

    assert verify(session_factory, client.id) == {"status": "ok", "kyc": True, "released": 0, "refunded": 0}


def test_unknown_user_is_not_found(session_factory):
    with pytest.raises(NotFoundException):
        verify(session_factory, uuid.uuid4())
