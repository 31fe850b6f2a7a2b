"""
Payment status compare-and-swap
"""

from typing import Any
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import update
import uuid
import logging

from app.models import Payment, PaymentStatus

logger = logging.getLogger(__name__)

async def transition_payment(
    db: AsyncSession,
    payment_id: uuid.UUID,
    to_status: PaymentStatus,
    **values: Any
) -> bool:
    """
    Move a payment out of PENDING exactly once

    Terminal payments never move again, so every settlement path goes
    through this compare-and-swap and treats a False result as
    "someone else already settled it".

    Returns:
        True if this call moved the row
    """
    result = await db.execute(
        update(Payment)
        .where(
            Payment.id == payment_id,
            Payment.status == PaymentStatus.PENDING
        )
        .values(status=to_status, **values)
        .execution_options(synchronize_session=False)
    )

    moved = result.rowcount == 1
    if not moved:
        logger.info(f"Payment {payment_id} -> {to_status.value} lost (already terminal)")
    return moved
