"""Redis client and rate limiting.

Request counters live in Redis with a TTL per window, so limits hold
across several API instances and old entries expire on their own. The
client is ``redis.asyncio`` so counter round trips never block the event
loop.

For deployments:
- Set REDIS_HOST to the Redis instance host
- Set REDIS_PASSWORD if authentication is enabled
"""
import time
from typing import Optional

import redis.asyncio as redis
from redis.exceptions import RedisError
from fastapi import Request

from app.core.config import settings
from app.core.errors import RateLimitError
from app.core.logging import get_logger

logger = get_logger(__name__)

# Redis connection pool (lazy initialization)
_redis_pool: Optional[redis.ConnectionPool] = None
_redis_client: Optional[redis.Redis] = None
_last_failure: Optional[float] = None
RECONNECT_AFTER_SECONDS = 30.0


async def get_redis_client() -> Optional[redis.Redis]:
    """Get or create the Redis client with connection pooling.

    Returns None if Redis is not available (graceful fallback). After a
    failed connection no new attempt is made for RECONNECT_AFTER_SECONDS.
    """
    global _redis_pool, _redis_client, _last_failure

    if _redis_client is None:
        if _last_failure is not None and time.monotonic() - _last_failure < RECONNECT_AFTER_SECONDS:
            return None

        logger.info(f"Initializing Redis connection pool: {settings.redis_host}:{settings.redis_port}")

        pool = redis.ConnectionPool(
            host=settings.redis_host,
            port=settings.redis_port,
            db=settings.redis_db,
            password=settings.redis_password,
            decode_responses=True,
            max_connections=50,
            socket_connect_timeout=2,
            socket_timeout=2,
        )
        client = redis.Redis(connection_pool=pool)
        try:
            await client.ping()
        except (RedisError, OSError) as e:
            logger.error(f"Failed to connect to Redis: {e}")
            await pool.disconnect()
            _last_failure = time.monotonic()
            return None

        logger.info("Redis connection established successfully")
        _redis_pool, _redis_client, _last_failure = pool, client, None

    return _redis_client


async def close_redis_client() -> None:
    global _redis_pool, _redis_client
    if _redis_client is not None:
        await _redis_client.aclose()
    if _redis_pool is not None:
        await _redis_pool.disconnect()
    _redis_pool = _redis_client = None


def client_identity(request: Request) -> str:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else "unknown"


class RateLimiter:
    """Fixed-window request counter per client address.

    Each (scope, client) pair maps to one Redis key holding the number of
    requests seen in the current window; the key expires with the window.
    When Redis is unreachable the limiter lets requests through and logs a
    warning.

    Example:
        >>> limiter = RateLimiter("pdf", limit=30, window_seconds=900)
        >>> @router.get("/pdf/{name}", dependencies=[Depends(limiter)])
    """

    def __init__(
        self,
        scope: str,
        limit: int,
        window_seconds: int,
        message: Optional[str] = None,
        key_prefix: str = "ratelimit:"
    ):
        self.scope = scope
        self.limit = limit
        self.window_seconds = window_seconds
        self.message = message
        self.key_prefix = key_prefix

    def _make_key(self, identity: str) -> str:
        return f"{self.key_prefix}{self.scope}:{identity}"

    async def hit(self, identity: str) -> None:
        """Count one request for ``identity``; raise RateLimitError above the limit."""
        client = await get_redis_client()
        if client is None:
            logger.warning(f"Rate limiter '{self.scope}' disabled: Redis unavailable")
            return

        key = self._make_key(identity)
        try:
            count = int(await client.incr(key))
            if count == 1:
                await client.expire(key, self.window_seconds)
            if count <= self.limit:
                return
            ttl = await client.ttl(key)
        except (RedisError, OSError) as e:
            logger.warning(f"Rate limiter '{self.scope}' skipped: {e}")
            return

        retry_after = int(ttl) if isinstance(ttl, int) and ttl > 0 else self.window_seconds
        logger.warning(
            f"Rate limit exceeded for {identity} on {self.scope}",
            extra={"client": identity},
        )
        raise RateLimitError(retry_after=retry_after, message=self.message)

    async def __call__(self, request: Request) -> None:
        await self.hit(client_identity(request))


api_limiter = RateLimiter("api", settings.api_rate_limit, settings.api_rate_window)
auth_limiter = RateLimiter(
    "auth",
    settings.auth_rate_limit,
    settings.auth_rate_window,
    message="Too many authentication attempts, please try again later",
)
pdf_limiter = RateLimiter(
    "pdf",
    settings.pdf_rate_limit,
    settings.pdf_rate_window,
    message="Too many downloads, please try again later",
)
