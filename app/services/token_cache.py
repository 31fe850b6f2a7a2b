"""Bearer token cache for provider APIs"""

from typing import Awaitable, Callable, Optional
import time
import logging

logger = logging.getLogger(__name__)

class TokenCache:
    """
    Caches one provider bearer token for a fixed TTL

    Args:
        fetch: Coroutine function that logs in and returns a fresh token
        ttl_seconds: How long a token is trusted
        clock: Monotonic clock, injectable for tests
    """

    def __init__(
        self,
        fetch: Callable[[], Awaitable[str]],
        ttl_seconds: float,
        clock: Callable[[], float] = time.monotonic
    ):
        self._fetch = fetch
        self._ttl = ttl_seconds
        self._clock = clock
        self._token: Optional[str] = None
        self._expires_at: float = 0.0

    @property
    def is_valid(self) -> bool:
        return self._token is not None and self._clock() < self._expires_at

    async def get(self) -> str:
        """Cached token, logging in again once it has expired"""
        if self.is_valid:
            return self._token
        return await self.refresh()

    async def refresh(self) -> str:
        """Fetch and cache a new token"""
        token = await self._fetch()
        self._token = token
        self._expires_at = self._clock() + self._ttl
        logger.debug(f"Provider token refreshed, valid for {self._ttl}s")
        return token

    def invalidate(self) -> None:
        """Drop the cached token, e.g. after the provider answered 401"""
        self._token = None
        self._expires_at = 0.0
