"""
Webhook API routes
Provider callbacks; always acknowledged unless processing failed
"""

from fastapi import APIRouter, Depends, Header, Request
from sqlalchemy.ext.asyncio import AsyncSession
from typing import Awaitable, Callable, Dict, Optional
import logging

from app.core.database import get_db
from app.core.exceptions import MalformedWebhookException
from app.api.v1.payments.webhooks import ACK, WebhookReconciler

logger = logging.getLogger(__name__)

router = APIRouter()

async def acknowledge(name: str, handler: Callable[[], Awaitable[Dict]]) -> Dict:
    """Run a handler; malformed callbacks are acknowledged and dropped"""
    try:
        return await handler()
    except MalformedWebhookException as e:
        logger.warning(f"{name} webhook dropped: {e.detail}")
        return ACK

@router.post("/mpesa", summary="M-Pesa STK callback")
async def mpesa_webhook(request: Request, db: AsyncSession = Depends(get_db)):
    body = await request.body()
    reconciler = WebhookReconciler(db)
    return await acknowledge("M-Pesa", lambda: reconciler.handle_mpesa(body))

@router.post("/crypto", summary="Solana deposit callback")
async def crypto_webhook(request: Request, db: AsyncSession = Depends(get_db)):
    body = await request.body()
    reconciler = WebhookReconciler(db)
    return await acknowledge("Crypto", lambda: reconciler.handle_crypto(body))

@router.post("/payment", summary="Generic payment callback")
async def payment_webhook(
    request: Request,
    x_webhook_signature: Optional[str] = Header(None, alias="X-Webhook-Signature"),
    db: AsyncSession = Depends(get_db)
):
    """HMAC-SHA256 signed when PAYMENT_WEBHOOK_SECRET is set"""
    body = await request.body()
    reconciler = WebhookReconciler(db)
    return await acknowledge("Payment", lambda: reconciler.handle_generic(body, x_webhook_signature))

@router.post("/withdrawal", summary="B2C payout callback")
async def withdrawal_webhook(request: Request, db: AsyncSession = Depends(get_db)):
    body = await request.body()
    reconciler = WebhookReconciler(db)
    return await acknowledge("Withdrawal", lambda: reconciler.handle_withdrawal(body))
