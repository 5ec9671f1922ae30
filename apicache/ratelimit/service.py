"""Per-client rate limiting on top of a fixed-window backend."""

import sys
from typing import Optional

import structlog

from apicache.config import ApiCacheConfig
from apicache.ratelimit.backends import InMemoryRateLimitBackend, RateLimitBackend

logger = structlog.get_logger()

UNLIMITED = sys.maxsize


class RateLimitService:
    """Tracks attempts per client against the client's configured quota.

    ``rate_limit_max_attempts`` of ``None`` or below zero means unlimited; the
    remaining count is then reported as ``sys.maxsize``.
    """

    def __init__(
        self,
        backend: Optional[RateLimitBackend] = None,
        config: Optional[ApiCacheConfig] = None,
    ) -> None:
        """Initialize the rate limit service.

        Args:
            backend: Fixed-window counter (in-memory when omitted)
            config: Cache configuration holding per-client limits
        """
        self.backend = backend or InMemoryRateLimitBackend()
        self.config = config or ApiCacheConfig()

    @staticmethod
    def get_rate_limit_key(client: str) -> str:
        return f"api-cache:rate-limit:{client}"

    def get_max_attempts(self, client: str) -> Optional[int]:
        value = self.config.client(client).rate_limit_max_attempts
        return None if value is None else int(value)

    def get_decay_seconds(self, client: str) -> int:
        return int(self.config.client(client).rate_limit_decay_seconds)

    def is_unlimited(self, client: str) -> bool:
        max_attempts = self.get_max_attempts(client)
        return max_attempts is None or max_attempts < 0

    async def get_remaining_attempts(self, client: str) -> int:
        """Get remaining attempts in the current window.

        Args:
            client: Client identifier

        Returns:
            Remaining attempts, ``sys.maxsize`` when unlimited
        """
        if self.is_unlimited(client):
            return UNLIMITED
        return await self.backend.remaining(self.get_rate_limit_key(client), self.get_max_attempts(client))

    async def get_available_in(self, client: str) -> int:
        """Seconds until the client may send again (0 if not throttled)."""
        if self.is_unlimited(client):
            return 0
        key = self.get_rate_limit_key(client)
        if not await self.backend.too_many_attempts(key, self.get_max_attempts(client)):
            return 0
        return await self.backend.available_in(key)

    async def allow_request(self, client: str) -> bool:
        """Check if a request is allowed for the client.

        Args:
            client: Client identifier

        Returns:
            True if the client has attempts left in the window
        """
        max_attempts = self.get_max_attempts(client)
        remaining = await self.get_remaining_attempts(client)
        allowed = remaining > 0

        if not allowed:
            logger.warning(
                "rate_limit_exceeded",
                client=client,
                max_attempts=max_attempts,
                decay_seconds=self.get_decay_seconds(client),
            )
        else:
            logger.debug(
                "rate_limit_checked",
                client=client,
                remaining_attempts=remaining,
                max_attempts=max_attempts,
            )
        return allowed

    async def increment_attempts(self, client: str, amount: int = 1) -> None:
        """Add attempts to the client's current window.

        Args:
            client: Client identifier
            amount: Attempts to add
        """
        key = self.get_rate_limit_key(client)
        await self.backend.increment(key, self.get_decay_seconds(client), amount)

        logger.debug(
            "rate_limit_incremented",
            client=client,
            amount=amount,
            remaining_attempts=await self.get_remaining_attempts(client),
            max_attempts=self.get_max_attempts(client),
        )

    async def clear(self, client: str) -> None:
        """Reset the client's window immediately."""
        before = await self.get_remaining_attempts(client)
        await self.backend.clear(self.get_rate_limit_key(client))
        logger.debug(
            "rate_limit_cleared",
            client=client,
            remaining_attempts_before_clear=before,
            remaining_attempts_after_clear=await self.get_remaining_attempts(client),
        )
