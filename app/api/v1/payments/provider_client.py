"""
Shared HTTP plumbing for payment provider APIs
"""

from typing import Any, Callable, Dict, Optional
import time
import logging

import httpx

from app.core.config import settings
from app.core.exceptions import ProviderErrorException
from app.services.token_cache import TokenCache

logger = logging.getLogger(__name__)

class ProviderClient:
    """
    Bearer-token JSON API client

    Subclasses set ``provider`` and ``login_path``. The login token is held
    in a TokenCache; a 401 on an authorized call drops the token, logs in
    again and retries the call once.
    """

    provider = "provider"
    login_path = "/login"

    def __init__(
        self,
        base_url: str,
        email: Optional[str],
        password: Optional[str],
        http_client: Optional[httpx.AsyncClient] = None,
        clock: Callable[[], float] = time.monotonic
    ):
        self.base_url = base_url.rstrip("/")
        self.email = email
        self.password = password
        self._http = http_client or httpx.AsyncClient(timeout=settings.PROVIDER_HTTP_TIMEOUT)
        self.tokens = TokenCache(
            self.login,
            ttl_seconds=settings.PROVIDER_TOKEN_TTL_SECONDS,
            clock=clock
        )

    async def login(self) -> str:
        """
        Authenticate with merchant credentials

        Returns:
            Bearer token

        Raises:
            ProviderErrorException: If login fails or returns no token
        """
        response = await self._send(
            "POST",
            self.login_path,
            json={"email": self.email, "password": self.password}
        )

        if response.status_code != 200:
            raise ProviderErrorException(self.provider, f"login failed: {response.status_code}")

        token = self._decode(response).get("token")
        if not token:
            raise ProviderErrorException(self.provider, "login returned empty token")

        return token

    async def authorized_request(
        self,
        method: str,
        path: str,
        json: Optional[Dict[str, Any]] = None
    ) -> Dict[str, Any]:
        """
        Call an authenticated endpoint

        Raises:
            ProviderErrorException: On transport errors, non-2xx answers or bad JSON
        """
        token = await self.tokens.get()
        response = await self._send(method, path, json=json, token=token)

        if response.status_code == 401:
            logger.info(f"{self.provider}: token rejected, logging in again")
            self.tokens.invalidate()
            token = await self.tokens.refresh()
            response = await self._send(method, path, json=json, token=token)

        logger.info(f"{self.provider}: {method} {path} -> {response.status_code}")

        if response.status_code not in (200, 201):
            raise ProviderErrorException(
                self.provider,
                f"{path} returned {response.status_code}: {response.text[:200]}"
            )

        return self._decode(response)

    async def _send(
        self,
        method: str,
        path: str,
        json: Optional[Dict[str, Any]] = None,
        token: Optional[str] = None
    ) -> httpx.Response:
        headers = {"Content-Type": "application/json"}
        if token:
            headers["Authorization"] = f"Bearer {token}"

        try:
            return await self._http.request(
                method,
                f"{self.base_url}{path}",
                json=json,
                headers=headers
            )
        except httpx.HTTPError as e:
            logger.error(f"{self.provider}: {method} {path} failed: {e}")
            raise ProviderErrorException(self.provider, f"request failed: {e}")

    def _decode(self, response: httpx.Response) -> Dict[str, Any]:
        try:
            data = response.json()
        except ValueError:
            raise ProviderErrorException(self.provider, "invalid JSON response")

        if not isinstance(data, dict):
            raise ProviderErrorException(self.provider, "unexpected response shape")
        return data

    async def aclose(self) -> None:
        await self._http.aclose()
