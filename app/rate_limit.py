"""Per-project Redis-backed rate limiting for completions.

Usage:
    limiter = RedisRateLimiter(get_redis(settings.REDIS_URL), per_minute=20)
    outcome = await limiter.check(project_id)
    if not outcome.allowed:
        ...  # 429 with outcome.retry_after

Each project owns a refilling token bucket:
- capacity: per_minute tokens
- refill:   per_minute / 60 tokens per second
A request consumes one token. The check and the consume are a single Lua script, so
concurrent requests on several API instances never overdraw a bucket.

The limiter only reports; turning a refusal into a 429 is the caller's job.
"""
from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Protocol

import redis.asyncio as redis

logger = logging.getLogger(__name__)

_redis_clients: Dict[str, redis.Redis] = {}


def get_redis(url: str) -> redis.Redis:
    """Return a cached asyncio Redis client for `url`.

    Returns:
        redis.Redis: Client with decode_responses=True.
    """
    client = _redis_clients.get(url)
    if client is None:
        client = redis.from_url(url, decode_responses=True)
        _redis_clients[url] = client
    return client


@dataclass(frozen=True)
class RateLimitOutcome:
    """Result of one admission check.

    Attributes:
        allowed: Whether the request may proceed.
        limit: Bucket capacity.
        remaining: Whole tokens left after this check.
        retry_after: Seconds until a token is available again (0 when allowed).
    """
    allowed: bool
    limit: int
    remaining: int
    retry_after: int = 0

    def headers(self) -> Dict[str, str]:
        return {
            "X-RateLimit-Limit": str(self.limit),
            "X-RateLimit-Remaining": str(self.remaining),
        }


class RateLimiter(Protocol):
    async def check(self, project_id: str) -> RateLimitOutcome: ...


# Lua script: token-bucket with refill and consume
# KEYS[1] = tokens_key
# KEYS[2] = ts_key
# ARGV[1] = capacity
# ARGV[2] = refill_rate (tokens per second, can be fractional)
# ARGV[3] = now (seconds, float/number)
# Returns {allowed, retry_after, remaining}
TOKEN_BUCKET_LUA = r"""
local tokens_key = KEYS[1]
local ts_key = KEYS[2]
local capacity = tonumber(ARGV[1])
local refill_rate = tonumber(ARGV[2])
local now = tonumber(ARGV[3])

local tokens = tonumber(redis.call('GET', tokens_key))
local last_ts = tonumber(redis.call('GET', ts_key))

if tokens == nil then
    tokens = capacity
end
if last_ts == nil then
    last_ts = now
end

local elapsed = now - last_ts
if elapsed < 0 then
    elapsed = 0
end

local new_tokens = tokens + (elapsed * refill_rate)
if new_tokens > capacity then
    new_tokens = capacity
end

local allowed = 0
local retry_after = 0

if new_tokens >= 1.0 then
    new_tokens = new_tokens - 1.0
    allowed = 1
else
    local needed = 1.0 - new_tokens
    if refill_rate > 0 then
        retry_after = math.ceil(needed / refill_rate)
    else
        retry_after = 1
    end
end

redis.call('SET', tokens_key, tostring(new_tokens))
redis.call('SET', ts_key, tostring(now))

-- Set TTL to ~2 full bucket refill times (avoid stale keys)
local ttl = math.max(5, math.ceil((capacity / math.max(refill_rate, 0.000001)) * 2))
redis.call('EXPIRE', tokens_key, ttl)
redis.call('EXPIRE', ts_key, ttl)

return {allowed, retry_after, math.floor(new_tokens)}
"""


def _as_int(value: Any, default: int) -> int:
    try:
        return int(float(value))
    except (TypeError, ValueError):
        return default


class RedisRateLimiter:
    """Refilling token bucket per project, stored in Redis."""

    def __init__(
        self,
        client: redis.Redis,
        per_minute: int,
        key_prefix: str = "rag:rl:completions",
        clock: Callable[[], float] = time.time,
    ):
        self._client = client
        self.per_minute = per_minute
        self.key_prefix = key_prefix
        self._clock = clock

    async def check(self, project_id: str) -> RateLimitOutcome:
        """Consume one token from the project's bucket.

        Args:
            project_id: Identity the bucket is keyed by.

        Returns:
            RateLimitOutcome: Admission decision with limit/remaining for response headers.
        """
        capacity = float(self.per_minute)
        base_key = f"{self.key_prefix}:{project_id}"
        res = await self._client.eval(
            TOKEN_BUCKET_LUA,
            2,
            f"{base_key}:tokens",
            f"{base_key}:ts",
            str(capacity),
            str(capacity / 60.0),
            str(self._clock()),
        )
        allowed = _as_int(res[0], 0) == 1
        retry_after = _as_int(res[1], 1)
        remaining = max(0, _as_int(res[2], 0))
        if not allowed:
            logger.info("Rate limit reached for project %s, retry in %ss", project_id, retry_after)
        return RateLimitOutcome(
            allowed=allowed,
            limit=self.per_minute,
            remaining=remaining,
            retry_after=0 if allowed else max(1, retry_after),
        )


async def close_redis_clients() -> None:
    """Close every cached Redis client; called on application shutdown."""
    while _redis_clients:
        _, client = _redis_clients.popitem()
        await client.aclose()
