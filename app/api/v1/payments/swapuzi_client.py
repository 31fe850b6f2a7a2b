"""
Solana/USDT deposits through the Swapuzi merchant API
"""

from decimal import Decimal
from functools import lru_cache
from typing import Any, Dict, Optional
import logging

from app.core.config import settings
from app.core.exceptions import ProviderErrorException
from .provider_client import ProviderClient

logger = logging.getLogger(__name__)

class SwapuziClient(ProviderClient):
    """Swapuzi API client"""

    provider = "swapuzi"
    login_path = "/merchants/login"

    def __init__(self, base_url: Optional[str] = None, **kwargs):
        super().__init__(
            base_url=base_url or settings.SWAPUZI_BASE_URL,
            email=kwargs.pop("email", settings.SWAPUZI_EMAIL),
            password=kwargs.pop("password", settings.SWAPUZI_PASSWORD),
            **kwargs
        )

    async def get_rates(self) -> Dict[str, Decimal]:
        """
        Current USDT/KES rates

        Returns:
            Dict with usdt_buying_rate and usdt_selling_rate

        Raises:
            ProviderErrorException: If the call fails or the buying rate is not positive
        """
        data = await self.authorized_request("GET", "/merchants/rates")

        try:
            rates = {
                "usdt_buying_rate": Decimal(str(data.get("usdt_buying_rate", 0))),
                "usdt_selling_rate": Decimal(str(data.get("usdt_selling_rate", 0))),
            }
        except ArithmeticError:
            raise ProviderErrorException(self.provider, "unparseable rates")

        if rates["usdt_buying_rate"] <= 0:
            raise ProviderErrorException(self.provider, "invalid buying rate")

        return rates

    async def initiate_deposit(
        self,
        deposit_id: str,
        expected_amount_usdt: Decimal,
        notes: str = "",
        webhook_url: Optional[str] = None
    ) -> Dict[str, Any]:
        """
        Open a deposit page for the client

        Args:
            deposit_id: Our provider reference (merchant_deposit_id on their side)
            expected_amount_usdt: Amount to receive
            notes: Free text shown to the merchant
            webhook_url: Webhook URL, defaults to /webhooks/crypto

        Returns:
            Provider response (page_url, expires_at, ...)
        """
        payload = {
            "expected_amount": float(expected_amount_usdt),
            "webhook_url": webhook_url or settings.webhook_url("crypto"),
            "notes": notes,
            "deposit_id": deposit_id,
        }

        logger.info(f"Solana deposit deposit_id={deposit_id} amount_usdt={expected_amount_usdt}")
        return await self.authorized_request("POST", "/merchants/solana/deposit/initiate", json=payload)

@lru_cache()
def get_swapuzi_client() -> SwapuziClient:
    return SwapuziClient()
