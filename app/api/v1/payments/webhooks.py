"""
Payment webhook reconciliation
Turns provider callbacks into terminal payment and withdrawal states
"""

from typing import Any, Dict, Optional
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select
import hashlib
import hmac
import json
import logging

from app.models import Payment, PaymentStatus
from app.core.config import settings
from app.core.exceptions import (
    InvalidWebhookSignatureException,
    MalformedWebhookException,
)
from app.api.v1.withdrawals.services import WithdrawalService
from .services import SettlementService

logger = logging.getLogger(__name__)

SUCCESS_STATUSES = frozenset({"COMPLETED", "SUCCESS", "SUCCESSFUL", "completed"})
FAILURE_STATUSES = frozenset({
    "FAILED", "CANCELLED", "EXPIRED", "TIMEOUT", "REJECTED",
    "failed", "expired", "cancelled",
})

ACK = {"received": True}

def parse_body(body: bytes) -> Dict[str, Any]:
    """
    Decode a webhook body

    Raises:
        MalformedWebhookException: If the body is not a JSON object
    """
    try:
        data = json.loads(body)
    except (TypeError, ValueError):
        raise MalformedWebhookException("invalid json")

    if not isinstance(data, dict):
        raise MalformedWebhookException("invalid json")
    return data

def first_present(data: Dict[str, Any], *fields: str) -> Optional[str]:
    """First non-empty value among ``fields``"""
    for field in fields:
        value = data.get(field)
        if value:
            return str(value)
    return None

def compute_signature(body: bytes, secret: str) -> str:
    return hmac.new(secret.encode(), body, hashlib.sha256).hexdigest()

def verify_signature(body: bytes, signature: Optional[str], secret: Optional[str]) -> None:
    """
    Check the HMAC-SHA256 hex signature of a generic webhook

    Skipped when no secret is configured.

    Raises:
        InvalidWebhookSignatureException: If the signature is missing or wrong
    """
    if not secret:
        return

    if not signature or not hmac.compare_digest(compute_signature(body, secret), signature):
        raise InvalidWebhookSignatureException()

class WebhookReconciler:
    """Applies provider callbacks to payments and withdrawals"""

    def __init__(self, db: AsyncSession):
        self.db = db
        self.settlement = SettlementService(db)
        self.withdrawals = WithdrawalService(db)

    async def handle_mpesa(self, body: bytes) -> Dict[str, Any]:
        """STK push callback from the Liberec API"""
        data = parse_body(body)
        order_id = first_present(data, "merchant_order_id", "order_id", "reference_order_id")

        if not order_id:
            raise MalformedWebhookException("no order_id in payload")

        logger.info(
            f"M-Pesa callback order_id={order_id} status={data.get('status')} "
            f"status_code={data.get('status_code')} amount={data.get('amount')}"
        )
        return await self.reconcile(order_id, data.get("status"))

    async def handle_crypto(self, body: bytes) -> Dict[str, Any]:
        """Solana deposit callback from Swapuzi"""
        data = parse_body(body)
        deposit_id = first_present(data, "merchant_deposit_id")

        if not deposit_id:
            raise MalformedWebhookException("no merchant_deposit_id in payload")

        logger.info(
            f"Crypto callback event={data.get('event')} deposit_id={deposit_id} "
            f"status={data.get('status')} received={data.get('received_amount')} "
            f"expected={data.get('expected_amount')}"
        )
        return await self.reconcile(deposit_id, data.get("status"))

    async def handle_generic(self, body: bytes, signature: Optional[str] = None) -> Dict[str, Any]:
        """
        Provider-agnostic callback: {"reference": ..., "status": ...}

        Raises:
            InvalidWebhookSignatureException: If a secret is configured and
                the signature does not match
        """
        verify_signature(body, signature, settings.PAYMENT_WEBHOOK_SECRET)

        data = parse_body(body)
        reference = first_present(data, "reference")

        if not reference:
            raise MalformedWebhookException("no reference in payload")

        logger.info(f"Payment callback reference={reference} status={data.get('status')}")
        return await self.reconcile(reference, data.get("status"))

    async def handle_withdrawal(self, body: bytes) -> Dict[str, Any]:
        """B2C payout callback"""
        data = parse_body(body)
        order_id = first_present(data, "merchant_order_id", "order_id", "reference_order_id")

        if not order_id:
            raise MalformedWebhookException("no order_id in payload")

        status = data.get("status")
        logger.info(f"Withdrawal callback order_id={order_id} status={status}")

        if status in SUCCESS_STATUSES:
            await self.withdrawals.complete_withdrawal(order_id, provider_ref=data.get("transaction_uuid"))
        elif status in FAILURE_STATUSES:
            await self.withdrawals.fail_withdrawal(order_id)
        else:
            logger.info(f"Withdrawal callback status {status} for {order_id} ignored")

        return ACK

    async def reconcile(self, provider_ref: str, status: Optional[str]) -> Dict[str, Any]:
        """
        Apply a provider status to the payment with ``provider_ref``

        Unknown payments and statuses are acknowledged so the provider stops
        retrying; already-settled payments lose the swap and are left alone.
        """
        result = await self.db.execute(
            select(Payment).where(Payment.provider_ref == provider_ref)
        )
        payment = result.scalar_one_or_none()

        if not payment:
            logger.info(f"Callback for unknown payment {provider_ref}, acknowledging")
            return ACK

        if status in SUCCESS_STATUSES:
            if not await self.settlement.complete_payment(payment):
                logger.info(f"Payment {payment.id} already settled, completion ignored")
        elif status in FAILURE_STATUSES:
            if not await self.settlement.fail_payment(payment.id, PaymentStatus.FAILED):
                logger.info(f"Payment {payment.id} already settled, failure ignored")
        else:
            logger.info(f"Payment {payment.id}: status {status} is not final, ignoring")

        return ACK
