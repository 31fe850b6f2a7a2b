"""Periodic settlement maintenance tasks"""

from celery.utils.log import get_task_logger
from sqlalchemy import update
import asyncio

from app.core.celery_app import celery_app
from app.core.database import get_db_context
from app.models import CompanionBoost
from app.api.v1.interactions.services import InteractionService
from app.api.v1.payments.services import SettlementService
from app.utils.helpers import utcnow

logger = get_task_logger(__name__)

async def _expire_stale_requests() -> int:
    async with get_db_context() as db:
        return await InteractionService(db).expire_stale()

async def _expire_stale_payments() -> int:
    async with get_db_context() as db:
        return await SettlementService(db).expire_stale_payments()

async def _deactivate_expired_boosts() -> int:
    async with get_db_context() as db:
        result = await db.execute(
            update(CompanionBoost)
            .where(
                CompanionBoost.is_active.is_(True),
                CompanionBoost.end_at <= utcnow()
            )
            .values(is_active=False)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount

@celery_app.task(name="expire_stale_requests")
def expire_stale_requests():
    """Persist expiry of pending requests past their deadline and refund them"""
    try:
        expired = asyncio.run(_expire_stale_requests())
        logger.info(f"Expired {expired} stale interaction requests")
        return {"expired": expired}
    except Exception as e:
        logger.error(f"Error expiring stale requests: {str(e)}")
        raise

@celery_app.task(name="deactivate_expired_boosts")
def deactivate_expired_boosts():
    """Switch off profile boosts that ran out"""
    try:
        deactivated = asyncio.run(_deactivate_expired_boosts())
        logger.info(f"Deactivated {deactivated} expired boosts")
        return {"deactivated": deactivated}
    except Exception as e:
        logger.error(f"Error deactivating boosts: {str(e)}")
        raise

@celery_app.task(name="expire_stale_payments")
def expire_stale_payments():
    """Expire unconfirmed payments and return their wallet holds"""
    try:
        expired = asyncio.run(_expire_stale_payments())
        logger.info(f"Expired {expired} unconfirmed payments")
        return {"expired": expired}
    except Exception as e:
        logger.error(f"Error expiring stale payments: {str(e)}")
        raise
