import asyncio

import pytest

from app.core.exceptions import BadRequestException, ConflictException, NotFoundException
from app.models import UserRole, WalletTransactionType
from app.services.referral import ReferralService

from helpers import balances, create_companion, create_user, ledger, refer


def run_referrals(session_factory, method, *args, **kwargs):
    async def run():
        async with session_factory() as db:
            result = await getattr(ReferralService(db), method)(*args, **kwargs)
            await db.commit()
            return result

    return asyncio.run(run())


def seed_pair(session_factory):
    async def run():
        async with session_factory() as db:
            referrer = await create_user(db, username="referrer")
            referred = await create_user(db, username="referred")
            await refer(db, referrer.id, referred.id)
            await db.commit()
            return referrer, referred

    return asyncio.run(run())


def test_commission_is_floored():
    assert ReferralService.commission_for(50000) == 2500
    assert ReferralService.commission_for(333) == 16
    assert ReferralService.commission_for(19) == 0


def test_commission_stops_after_two_settlements(session_factory):
    referrer, referred = seed_pair(session_factory)

    paid = [
        run_referrals(session_factory, "award_commission", referred.id, 50000, f"payment_{n}")
        for n in range(3)
    ]

    assert paid == [2500, 2500, 0]
    assert asyncio.run(balances(session_factory, referrer.id)) == (5000, 0)
    rows = asyncio.run(ledger(session_factory, referrer.id, WalletTransactionType.REFERRAL_COMMISSION))
    assert {row.reference.rsplit("_", 1)[1] for row in rows} == {"0", "1"}


def test_commission_without_referral_pays_nothing(session_factory):
    async def seed():
        async with session_factory() as db:
            user = await create_user(db)
            await db.commit()
            return user

    user = asyncio.run(seed())
    assert run_referrals(session_factory, "award_commission", user.id, 50000, "payment_x") == 0


def test_code_is_stable_per_user(session_factory):
    async def seed():
        async with session_factory() as db:
            user = await create_user(db)
            await db.commit()
            return user

    user = asyncio.run(seed())
    first = run_referrals(session_factory, "get_or_create_code", user.id)
    second = run_referrals(session_factory, "get_or_create_code", user.id)

    assert first.code == second.code
    assert len(first.code) == 8


def test_companion_signup_pays_both_bonuses(session_factory):
    async def seed():
        async with session_factory() as db:
            referrer = await create_user(db, username="referrer")
            companion = await create_companion(db)
            await db.commit()
            return referrer, companion

    referrer, companion = asyncio.run(seed())
    code = run_referrals(session_factory, "get_or_create_code", referrer.id)

    run_referrals(session_factory, "apply_referral_code", code.code.upper(), companion)

    assert asyncio.run(balances(session_factory, referrer.id)) == (0, 10000)
    assert asyncio.run(balances(session_factory, companion.id)) == (0, 20000)


def test_client_signup_pays_no_bonus(session_factory):
    async def seed():
        async with session_factory() as db:
            referrer = await create_user(db, username="referrer")
            client = await create_user(db, role=UserRole.CLIENT)
            await db.commit()
            return referrer, client

    referrer, client = asyncio.run(seed())
    code = run_referrals(session_factory, "get_or_create_code", referrer.id)

    referral = run_referrals(session_factory, "apply_referral_code", code.code, client)

    assert referral.referrer_id == referrer.id
    assert asyncio.run(balances(session_factory, referrer.id)) == (0, 0)


def test_invalid_codes_are_refused(session_factory):
    referrer, referred = seed_pair(session_factory)
    code = run_referrals(session_factory, "get_or_create_code", referrer.id)

    with pytest.raises(BadRequestException):
        run_referrals(session_factory, "apply_referral_code", code.code, referrer)
    with pytest.raises(ConflictException):
        run_referrals(session_factory, "apply_referral_code", code.code, referred)
    with pytest.raises(NotFoundException):
        run_referrals(session_factory, "apply_referral_code", "nope", referred)


def test_list_shows_remaining_commissions(session_factory):
    referrer, referred = seed_pair(session_factory)
    run_referrals(session_factory, "award_commission", referred.id, 50000, "payment_1")

    (item,) = run_referrals(session_factory, "list_referrals", referrer.id)

    assert item["referred_user"]["username"] == "referred"
    assert item["completed_count"] == 1
    assert item["commissions_remaining"] == 1
