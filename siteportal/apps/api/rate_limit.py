from __future__ import annotations

import asyncio
from dataclasses import dataclass
import logging
import math
import time
from typing import Callable, Protocol
from uuid import uuid4

from fastapi import Request, Response
from redis.asyncio import Redis

from siteportal.core.config import Settings, get_settings
from siteportal.core.errors import RateLimitError
from siteportal.services.security_log import SecurityEventLog, get_client_ip


logger = logging.getLogger(__name__)

BUCKET_PUBLIC = "public"
BUCKET_AUTH_LOGIN = "auth/login"
BUCKET_AUTH_RESET = "auth/reset"
BUCKET_ADMIN = "admin"
BUCKET_CLIENT = "client"
BUCKET_UPLOAD = "upload"

BUCKETS = (
    BUCKET_PUBLIC,
    BUCKET_AUTH_LOGIN,
    BUCKET_AUTH_RESET,
    BUCKET_ADMIN,
    BUCKET_CLIENT,
    BUCKET_UPLOAD,
)


@dataclass(frozen=True)
class BucketConfig:
    # Sliding-window quota: at most `requests` hits in any `window_s` span.
    requests: int
    window_s: int


@dataclass(frozen=True)
class CounterResult:
    allowed: bool
    count: int
    reset_ms: int


@dataclass(frozen=True)
class RateLimitDecision:
    # Capture the outcome and header values for a rate-limited request.
    success: bool
    limit: int
    remaining: int
    reset_ms: int
    degraded: bool = False

    def retry_after_s(self, now_ms: int) -> int:
        return max(1, int(math.ceil((self.reset_ms - now_ms) / 1000.0)))


class CounterBackend(Protocol):
    async def hit(self, key: str, *, now_ms: int, window_ms: int, limit: int) -> CounterResult: ...


_SLIDING_WINDOW_LUA = r"""
local key = KEYS[1]
local now_ms = tonumber(ARGV[1])
local window_ms = tonumber(ARGV[2])
local limit = tonumber(ARGV[3])
local member = ARGV[4]

redis.call("ZREMRANGEBYSCORE", key, 0, now_ms - window_ms)
local count = redis.call("ZCARD", key)
local allowed = 0
if count < limit then
  redis.call("ZADD", key, now_ms, member)
  count = count + 1
  allowed = 1
end
redis.call("PEXPIRE", key, window_ms)

local reset_ms = now_ms + window_ms
local oldest = redis.call("ZRANGE", key, 0, 0, "WITHSCORES")
if oldest[2] then
  reset_ms = tonumber(oldest[2]) + window_ms
end
return {allowed, count, reset_ms}
"""


class RedisCounterBackend:
    """Sliding-window log kept in a Redis sorted set, evaluated atomically in Lua."""

    def __init__(self, redis: Redis) -> None:
        self._redis = redis

    @classmethod
    def from_settings(cls, settings: Settings) -> "RedisCounterBackend":
        url = settings.require("rate_limit_redis_url")
        return cls(
            Redis.from_url(
                url,
                password=settings.rate_limit_redis_token,
                encoding="utf-8",
                decode_responses=True,
            )
        )

    async def hit(self, key: str, *, now_ms: int, window_ms: int, limit: int) -> CounterResult:
        result = await self._redis.eval(
            _SLIDING_WINDOW_LUA,
            1,
            key,
            now_ms,
            window_ms,
            limit,
            f"{now_ms}-{uuid4().hex}",
        )
        return CounterResult(allowed=int(result[0]) == 1, count=int(result[1]), reset_ms=int(float(result[2])))

    async def close(self) -> None:
        await self._redis.aclose()


def limits_for_bucket(bucket: str, settings: Settings | None = None) -> BucketConfig:
    settings = settings or get_settings()
    attr = bucket.replace("/", "_")
    return BucketConfig(
        requests=int(getattr(settings, f"rl_{attr}_requests")),
        window_s=int(getattr(settings, f"rl_{attr}_window_s")),
    )


class RateLimiter:
    def __init__(
        self,
        backend: CounterBackend | None = None,
        *,
        time_provider: Callable[[], float] | None = None,
    ) -> None:
        self._backend = backend
        # Allow injecting time for deterministic tests.
        self._time_provider = time_provider or time.time

    @property
    def backend(self) -> CounterBackend | None:
        return self._backend

    def now_ms(self) -> int:
        return int(self._time_provider() * 1000)

    async def check(self, bucket: str, identifier: str) -> RateLimitDecision:
        settings = get_settings()
        now_ms = self.now_ms()
        if not settings.rate_limit_enabled:
            return RateLimitDecision(success=True, limit=0, remaining=0, reset_ms=now_ms)
        limits = limits_for_bucket(bucket, settings)
        key = f"{settings.rate_limit_prefix}:{bucket}:{identifier}"
        try:
            if self._backend is None:
                raise ConnectionError("rate limit counter service is not configured")
            result = await asyncio.wait_for(
                self._backend.hit(
                    key,
                    now_ms=now_ms,
                    window_ms=limits.window_s * 1000,
                    limit=limits.requests,
                ),
                timeout=settings.rate_limit_timeout_s,
            )
        except Exception as exc:  # noqa: BLE001 - counter outages fail open
            logger.warning(
                "rate_limit_fail_open bucket=%s identifier=%s error=%s",
                bucket,
                identifier,
                str(exc) or type(exc).__name__,
            )
            return RateLimitDecision(success=True, limit=0, remaining=0, reset_ms=now_ms, degraded=True)
        return RateLimitDecision(
            success=result.allowed,
            limit=limits.requests,
            remaining=max(0, limits.requests - result.count),
            reset_ms=result.reset_ms,
        )

    async def close(self) -> None:
        close = getattr(self._backend, "close", None)
        if close is not None:
            await close()


def rate_limit_headers(decision: RateLimitDecision) -> dict[str, str]:
    return {
        "X-RateLimit-Limit": str(decision.limit),
        "X-RateLimit-Remaining": str(decision.remaining),
        "X-RateLimit-Reset": str(decision.reset_ms),
    }


async def enforce_rate_limit(
    *,
    request: Request,
    limiter: RateLimiter,
    security_log: SecurityEventLog,
    bucket: str,
    identifier: str | None = None,
    response: Response | None = None,
    user_id: str | None = None,
    user_type: str | None = None,
    severity: str | None = None,
) -> RateLimitDecision:
    # Key by client address unless the caller supplies a composite identifier.
    identifier = identifier or get_client_ip(request)
    decision = await limiter.check(bucket, identifier)
    headers = rate_limit_headers(decision)
    if decision.success:
        if response is not None:
            response.headers.update(headers)
        return decision
    await security_log.log(
        "rate_limit_exceeded",
        request=request,
        user_id=user_id,
        user_type=user_type,
        details={"bucket": bucket, "identifier": identifier},
        severity=severity,
    )
    raise RateLimitError(retry_after_s=decision.retry_after_s(limiter.now_ms()), headers=headers)
