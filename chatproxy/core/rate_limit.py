"""
rate_limit.py — Request throttling for the AI proxy.

Two layers, both built on the `limits` library:

1. `limiter` — a slowapi Limiter keyed by client IP. Routes opt in with
   @limiter.limit(settings.ip_rate_limit) as a coarse ceiling across all
   models.

2. `rate_limiter` — the per-client-per-model counter. Each (client, model)
   pair owns the key ``ratelimit:<clientAddress>:<model>`` holding a decimal
   count that expires `window` seconds after the last request it counted.
   The counter lives in a limits async storage, so the same code works with
   in-process memory or a shared Redis when several workers serve the proxy.

Usage in routes:
    from fastapi import Request
    from chatproxy.core.rate_limit import client_address, rate_limiter

    key = rate_limiter.key_for(client_address(request), model)
    if not await rate_limiter.check(key, limit=10, window=60):
        raise RateLimitError(60)
"""

import logging
import urllib.parse
from typing import Optional

from fastapi import Request
from limits.aio.storage import Storage
from limits.errors import StorageError
from limits.storage import storage_from_string
from slowapi import Limiter
from slowapi.util import get_remote_address

from chatproxy.core.config import settings

logger = logging.getLogger(__name__)


def client_address(request: Request) -> str:
    """
    Best-effort client IP.

    Order: CF-Connecting-IP (set by Cloudflare at the edge), then the socket
    peer. X-Forwarded-For is ignored: its first hop is whatever the caller
    sent. Behind another reverse proxy, run uvicorn with --proxy-headers and
    --forwarded-allow-ips so request.client already holds the real peer.
    Never empty; "unknown" when nothing is available.
    """
    cf_ip = request.headers.get("cf-connecting-ip", "").strip()
    if cf_ip:
        return cf_ip

    if request.client is None or not request.client.host:
        return "unknown"
    return get_remote_address(request)


# Coarse per-IP ceiling, applied as a route decorator.
limiter = Limiter(key_func=client_address)


class RateLimiter:
    """
    Expiring counter over a limits async storage.

    check() reads the counter and refuses without touching it once the
    limit is reached; otherwise it increments and sets the expiry to
    `window` seconds from now, so the count only resets after `window`
    seconds without a counted request. Refused requests do not extend it.
    Concurrent requests can both pass the read, so the post-increment value
    is compared to the limit as well.
    """

    KEY_PREFIX = "ratelimit"

    def __init__(self, storage: Optional[Storage] = None) -> None:
        self.storage = storage

    @classmethod
    def from_uri(cls, uri: str) -> "RateLimiter":
        """Build from a limits storage URI; empty URI → disabled limiter."""
        if not uri:
            logger.warning("RATE_LIMIT_STORAGE_URI empty, per-model rate limiting disabled")
            return cls(None)

        scheme = urllib.parse.urlparse(uri).scheme
        if not scheme.startswith("async+"):
            # The proxy is fully async; sync storages would block the event loop.
            uri = f"async+{uri}"
        storage = storage_from_string(uri, wrap_exceptions=True)
        logger.info("Rate-limit storage: %s", storage.__class__.__name__)
        return cls(storage)

    @property
    def enabled(self) -> bool:
        return self.storage is not None

    @classmethod
    def key_for(cls, client: str, model: str) -> str:
        return f"{cls.KEY_PREFIX}:{client}:{model}"

    async def check(self, key: str, limit: int, window: int) -> bool:
        """
        Return True when the request identified by *key* may proceed.

        Args:
            key:    Counter key, see key_for().
            limit:  Requests allowed per window.
            window: Window length in seconds (counter TTL).
        """
        if self.storage is None:
            return True

        try:
            count = await self.storage.get(key)
            if count >= limit:
                logger.info("Rate limit hit for %s (%d/%d)", key, count, limit)
                return False
            count = await self.storage.incr(key, window)
            if count > 1:
                # incr() only sets the expiry on a new key; rewrite the count
                # so every counted request pushes the expiry `window` out.
                await self.storage.clear(key)
                count = await self.storage.incr(key, window, amount=count)
        except StorageError as exc:
            # Fail open: an unreachable counter store must not take the proxy down.
            logger.error("Rate-limit storage error for %s: %s", key, exc.storage_error)
            return True

        return count <= limit

    async def current(self, key: str) -> int:
        if self.storage is None:
            return 0
        return await self.storage.get(key)

    async def ping(self) -> bool:
        if self.storage is None:
            return False
        try:
            return await self.storage.check()
        except StorageError as exc:
            logger.warning("Rate-limit storage ping failed: %s", exc.storage_error)
            return False

    async def reset(self) -> None:
        if self.storage is not None:
            await self.storage.reset()


# Module-level singleton
rate_limiter = RateLimiter.from_uri(settings.rate_limit_storage_uri)
