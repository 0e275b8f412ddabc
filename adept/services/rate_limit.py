from __future__ import annotations

import asyncio
import math
import time
from collections import deque
from dataclasses import dataclass
from typing import Callable, Protocol

try:
    from redis.asyncio import Redis
except ModuleNotFoundError:  # pragma: no cover - optional dependency
    Redis = None  # type: ignore[misc,assignment]

from ..core.config import ToolRateLimitRule, ToolRateLimitSettings
from ..core.logging import get_logger

logger = get_logger(name=__name__)

_ANONYMOUS = "anonymous"


@dataclass(slots=True)
class RateLimitDecision:
    allowed: bool
    reason: str | None = None
    retry_after_seconds: int | None = None


class ToolRateLimiter(Protocol):
    async def check(self, tool: str, user_id: str | None) -> RateLimitDecision:
        """Report whether another call is admissible without consuming quota."""

    async def record(self, tool: str, user_id: str | None) -> None:
        """Consume one unit of quota for ``(tool, user_id)``."""


def _rule_for(settings: ToolRateLimitSettings, tool: str) -> ToolRateLimitRule:
    return settings.per_tool.get(tool) or settings.default


def _denied(tool: str, rule: ToolRateLimitRule, retry_after: int) -> RateLimitDecision:
    return RateLimitDecision(
        allowed=False,
        reason=f"Rate limit reached for {tool}: {rule.max_calls} calls per {rule.window_seconds}s.",
        retry_after_seconds=max(1, retry_after),
    )


class InMemoryToolRateLimiter:
    """Sliding-window limiter keyed by ``(tool, user)``, for single-process deployments."""

    def __init__(
        self,
        settings: ToolRateLimitSettings,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._settings = settings
        self._clock = clock
        self._calls: dict[tuple[str, str], deque[float]] = {}
        self._lock = asyncio.Lock()

    def _prune(self, bucket: deque[float], window: int, now: float) -> None:
        while bucket and now - bucket[0] >= window:
            bucket.popleft()

    async def check(self, tool: str, user_id: str | None) -> RateLimitDecision:
        if not self._settings.enabled:
            return RateLimitDecision(allowed=True)
        rule = _rule_for(self._settings, tool)
        async with self._lock:
            bucket = self._calls.get((tool, user_id or _ANONYMOUS))
            if not bucket:
                return RateLimitDecision(allowed=True)
            now = self._clock()
            self._prune(bucket, rule.window_seconds, now)
            if len(bucket) < rule.max_calls:
                return RateLimitDecision(allowed=True)
            retry_after = math.ceil(bucket[0] + rule.window_seconds - now)
        return _denied(tool, rule, retry_after)

    async def record(self, tool: str, user_id: str | None) -> None:
        if not self._settings.enabled:
            return
        rule = _rule_for(self._settings, tool)
        async with self._lock:
            now = self._clock()
            bucket = self._calls.setdefault((tool, user_id or _ANONYMOUS), deque())
            self._prune(bucket, rule.window_seconds, now)
            bucket.append(now)

    def reset(self) -> None:
        self._calls.clear()


class RedisToolRateLimiter:
    """Fixed-window limiter backed by Redis counters shared across processes."""

    def __init__(
        self,
        redis: "Redis",  # type: ignore[name-defined]
        settings: ToolRateLimitSettings,
        *,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._redis = redis
        self._settings = settings
        self._clock = clock

    @classmethod
    def from_settings(cls, settings: ToolRateLimitSettings) -> "RedisToolRateLimiter":
        if Redis is None:
            raise RuntimeError("redis is not installed. Install redis to use the redis rate limit backend.")
        return cls(Redis.from_url(str(settings.redis_url)), settings)

    def _key(self, tool: str, user_id: str | None, rule: ToolRateLimitRule) -> str:
        window_started = int(self._clock() // max(1, rule.window_seconds))
        return f"{self._settings.namespace}:{tool}:{user_id or _ANONYMOUS}:{window_started}"

    async def check(self, tool: str, user_id: str | None) -> RateLimitDecision:
        if not self._settings.enabled:
            return RateLimitDecision(allowed=True)
        rule = _rule_for(self._settings, tool)
        key = self._key(tool, user_id, rule)
        try:
            raw = await self._redis.get(key)
            count = int(raw or 0)
            if count < rule.max_calls:
                return RateLimitDecision(allowed=True)
            ttl = await self._redis.ttl(key)
        except Exception as exc:  # pragma: no cover - connection failures
            logger.warning("tool_rate_limit_redis_error", error=str(exc), key=key, operation="check")
            return RateLimitDecision(allowed=True)
        return _denied(tool, rule, ttl if ttl and ttl > 0 else rule.window_seconds)

    async def record(self, tool: str, user_id: str | None) -> None:
        if not self._settings.enabled:
            return
        rule = _rule_for(self._settings, tool)
        key = self._key(tool, user_id, rule)
        try:
            count = await self._redis.incr(key)
            if count == 1:
                await self._redis.expire(key, rule.window_seconds)
        except Exception as exc:  # pragma: no cover - connection failures
            logger.warning("tool_rate_limit_redis_error", error=str(exc), key=key, operation="record")


def build_tool_rate_limiter(settings: ToolRateLimitSettings) -> ToolRateLimiter:
    if settings.backend == "redis":
        return RedisToolRateLimiter.from_settings(settings)
    return InMemoryToolRateLimiter(settings)


__all__ = [
    "RateLimitDecision",
    "ToolRateLimiter",
    "InMemoryToolRateLimiter",
    "RedisToolRateLimiter",
    "build_tool_rate_limiter",
]
