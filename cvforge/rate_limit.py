"""Sliding-window rate limiting for write endpoints, in memory or on Redis."""

from __future__ import annotations

from collections import deque
from dataclasses import dataclass
import logging
from math import ceil
from secrets import token_hex
from threading import Lock
from time import monotonic, time
from typing import Protocol

from redis.asyncio import Redis
from redis.exceptions import RedisError


@dataclass(frozen=True, slots=True)
class RateLimitRule:
    """Allow ``limit`` hits per ``window_seconds`` for one bucket family."""

    name: str
    limit: int
    window_seconds: int


@dataclass(slots=True)
class RateLimitResult:
    """Outcome of recording one hit against a bucket."""

    allowed: bool
    retry_after_seconds: int


class RateLimitBackendError(RuntimeError):
    """Raised when the configured rate-limit backend is unavailable."""


class RateLimiter(Protocol):
    async def hit(self, rule: RateLimitRule, subject: str) -> RateLimitResult:
        """Record a hit for ``subject`` under ``rule`` and report if it is allowed."""

    async def close(self) -> None:
        """Release backend resources."""

    async def reset(self) -> None:
        """Forget every bucket."""


def _bucket_key(rule: RateLimitRule, subject: str) -> str:
    return f"{rule.name}:{subject}"


def _rejected_outright(rule: RateLimitRule) -> RateLimitResult | None:
    if rule.limit <= 0:
        return RateLimitResult(allowed=False, retry_after_seconds=max(rule.window_seconds, 1))
    return None


class MemoryRateLimiter:
    """Per-process limiter; buckets are deques of hit timestamps."""

    def __init__(self) -> None:
        self._buckets: dict[str, deque[float]] = {}
        self._lock = Lock()

    async def hit(self, rule: RateLimitRule, subject: str) -> RateLimitResult:
        rejected = _rejected_outright(rule)
        if rejected is not None:
            return rejected

        now = monotonic()
        cutoff = now - rule.window_seconds
        with self._lock:
            bucket = self._buckets.setdefault(_bucket_key(rule, subject), deque())
            while bucket and bucket[0] <= cutoff:
                bucket.popleft()

            if len(bucket) >= rule.limit:
                retry_after = max(1, ceil(rule.window_seconds - (now - bucket[0])))
                return RateLimitResult(allowed=False, retry_after_seconds=retry_after)

            bucket.append(now)
        return RateLimitResult(allowed=True, retry_after_seconds=0)

    async def close(self) -> None:
        return

    async def reset(self) -> None:
        with self._lock:
            self._buckets.clear()


class RedisRateLimiter:
    """Limiter shared across app instances through a Redis sorted set per bucket."""

    _HIT_SCRIPT = """
local key = KEYS[1]
local now_ms = tonumber(ARGV[1])
local window_ms = tonumber(ARGV[2])
local limit = tonumber(ARGV[3])
local member = ARGV[4]

redis.call("ZREMRANGEBYSCORE", key, 0, now_ms - window_ms)
if redis.call("ZCARD", key) >= limit then
  local oldest = redis.call("ZRANGE", key, 0, 0, "WITHSCORES")
  local retry_ms = window_ms - (now_ms - (tonumber(oldest[2]) or now_ms))
  if retry_ms < 1 then
    retry_ms = 1
  end
  redis.call("PEXPIRE", key, window_ms + 1000)
  return {0, retry_ms}
end

redis.call("ZADD", key, now_ms, member)
redis.call("PEXPIRE", key, window_ms + 1000)
return {1, 0}
"""

    def __init__(self, *, redis_url: str, prefix: str = "cvforge:rate_limit") -> None:
        self._client = Redis.from_url(redis_url, encoding="utf-8", decode_responses=True)
        self._prefix = prefix

    async def hit(self, rule: RateLimitRule, subject: str) -> RateLimitResult:
        rejected = _rejected_outright(rule)
        if rejected is not None:
            return rejected

        # Wall clock, since every instance shares the same sorted sets.
        now_ms = int(time() * 1000)
        try:
            result = await self._client.eval(
                self._HIT_SCRIPT,
                1,
                f"{self._prefix}:{_bucket_key(rule, subject)}",
                now_ms,
                rule.window_seconds * 1000,
                rule.limit,
                f"{now_ms}:{token_hex(8)}",
            )
        except RedisError as exc:
            raise RateLimitBackendError("Rate-limit backend unavailable") from exc

        if not isinstance(result, (list, tuple)) or len(result) != 2:
            raise RateLimitBackendError("Rate-limit backend returned unexpected response")

        allowed = bool(int(result[0]))
        if allowed:
            return RateLimitResult(allowed=True, retry_after_seconds=0)
        return RateLimitResult(allowed=False, retry_after_seconds=max(1, ceil(int(result[1]) / 1000)))

    async def close(self) -> None:
        await self._client.aclose()

    async def reset(self) -> None:
        try:
            keys = [str(key) async for key in self._client.scan_iter(match=f"{self._prefix}:*")]
            if keys:
                await self._client.delete(*keys)
        except RedisError as exc:
            raise RateLimitBackendError("Rate-limit backend unavailable") from exc


def create_rate_limiter(
    *,
    backend: str,
    redis_url: str | None,
    prefix: str = "cvforge:rate_limit",
    logger: logging.Logger | None = None,
) -> tuple[RateLimiter, bool]:
    """Build the configured limiter; the flag says whether state is shared."""

    normalized_backend = backend.strip().lower()
    if normalized_backend == "memory":
        return MemoryRateLimiter(), False

    if normalized_backend == "redis":
        if not redis_url:
            raise RuntimeError("RATE_LIMIT_BACKEND=redis requires REDIS_URL")
        return RedisRateLimiter(redis_url=redis_url, prefix=prefix), True

    if normalized_backend == "auto":
        if redis_url:
            return RedisRateLimiter(redis_url=redis_url, prefix=prefix), True
        if logger:
            logger.warning("rate_limit_backend_auto_fallback backend=memory reason=redis_url_missing")
        return MemoryRateLimiter(), False

    raise ValueError(f"Unsupported RATE_LIMIT_BACKEND value: {backend}")
