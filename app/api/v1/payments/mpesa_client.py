"""
M-Pesa integration through the Liberec card API
STK push collections and B2C payouts
"""

from functools import lru_cache
from typing import Any, Dict, Optional
import logging

from app.core.config import settings
from .provider_client import ProviderClient

logger = logging.getLogger(__name__)

def stk_amount(amount_cents: int) -> str:
    """Whole shillings as the API expects them, never below "1" for a positive amount"""
    if 0 < amount_cents < 100:
        return "1"
    return str(amount_cents // 100)

class MpesaClient(ProviderClient):
    """Liberec M-Pesa API client"""

    provider = "mpesa"
    login_path = "/api/v1/merchants/login"

    def __init__(self, base_url: Optional[str] = None, **kwargs):
        super().__init__(
            base_url=base_url or settings.LIBEREC_BASE_URL,
            email=kwargs.pop("email", settings.LIBEREC_EMAIL),
            password=kwargs.pop("password", settings.LIBEREC_PASSWORD),
            **kwargs
        )

    async def initiate_stk_push(
        self,
        amount_cents: int,
        order_id: str,
        customer_phone: str,
        customer_first_name: str,
        customer_last_name: str,
        customer_email: str,
        description: str,
        callback_url: Optional[str] = None
    ) -> Dict[str, Any]:
        """
        Send an STK push prompt to the customer's phone

        Args:
            amount_cents: Amount to collect
            order_id: Our provider reference, echoed back in the webhook
            customer_phone: 2547XXXXXXXX
            customer_first_name: Customer first name
            customer_last_name: Customer last name
            customer_email: Customer email
            description: Shown on the prompt
            callback_url: Webhook URL, defaults to /webhooks/mpesa

        Returns:
            Provider response (checkout_request_id, status, ...)

        Raises:
            ProviderErrorException: If the API call fails
        """
        payload = {
            "amount": stk_amount(amount_cents),
            "currency": settings.CURRENCY,
            "description": description,
            "customer_phone": customer_phone,
            "customer_first_name": customer_first_name,
            "customer_last_name": customer_last_name,
            "customer_email": customer_email,
            "callback_url": callback_url or settings.webhook_url("mpesa"),
            "order_id": order_id,
        }

        logger.info(f"STK push order_id={order_id} amount={payload['amount']}")
        return await self.authorized_request("POST", "/api/v1/transactions/mpesa", json=payload)

    async def initiate_b2c(
        self,
        amount_kes: int,
        phone_number: str,
        order_id: str,
        description: str = "B2C Payment to customer",
        remarks: str = "Withdrawal payment",
        callback_url: Optional[str] = None
    ) -> Dict[str, Any]:
        """
        Pay out to a phone number

        Returns:
            Provider response (uuid, status, ...)
        """
        payload = {
            "amount": str(amount_kes),
            "phone_number": phone_number,
            "description": description,
            "remarks": remarks,
            "order_id": order_id,
            "callback_url": callback_url or settings.webhook_url("withdrawal"),
        }

        logger.info(f"B2C order_id={order_id} amount={amount_kes}")
        return await self.authorized_request("POST", "/api/v1/transactions/mpesa/b2c", json=payload)

@lru_cache()
def get_mpesa_client() -> MpesaClient:
    """Process-wide client so the login token is shared between requests"""
    return MpesaClient()
