"""Complexity-aware rate limiting for composition endpoints.

Each request costs more the bigger it is, so a client sending large
compositions gets fewer requests per window:

    complexity      = max(1, 1 + n//5 + total_qty//50 + constraint_fields + (distinct_pkg - 1))
    effective_limit = max(1, base_limit - complexity // 2)

A client (ip + user) is rejected once its request count reaches the
effective limit or its running complexity score exceeds
``effective_limit * 10``.  Windows are fixed and reset on expiry, never on
rejection.

Routes call ``enforce_composition_rate_limit`` explicitly with the parsed
body, since the cost depends on the payload.
"""

import logging
import math
import time
from dataclasses import dataclass
from typing import Awaitable, Callable, Protocol

import redis.asyncio as redis
from fastapi import Request

from app.middleware.exceptions import RateLimitExceededError
from app.schemas.composition import CompositionRequest
from app.utils.cache import get_redis

logger = logging.getLogger(__name__)


def request_complexity(body: CompositionRequest) -> int:
    products = body.products
    total_quantity = sum(p.quantity for p in products)
    constraint_fields = body.constraints.fields_set_count() if body.constraints else 0
    # lines without a packaging type share the "default" one
    distinct_packaging = len({
        p.packaging_type_id if p.packaging_type_id is not None else "default" for p in products
    })
    complexity = (
        1
        + len(products) // 5
        + int(total_quantity // 50)
        + constraint_fields
        + max(0, distinct_packaging - 1)
    )
    return max(1, complexity)


def effective_limit(base_limit: int, complexity: int) -> int:
    return max(1, base_limit - complexity // 2)


@dataclass
class RateLimitDecision:
    allowed: bool
    limit: int
    count: int
    complexity: int
    complexity_score: int
    reset_at: float
    retry_after: int

    @property
    def remaining(self) -> int:
        return max(0, self.limit - self.count)


class ComplexityRateLimiter(Protocol):
    base_limit: int
    window_seconds: int

    async def hit(self, key: str, complexity: int) -> RateLimitDecision: ...

    async def reset(self) -> None: ...


@dataclass
class _Window:
    count: int
    score: int
    reset_at: float


class InMemoryRateLimiter:
    """Process-local fixed-window limiter (not shared across instances)."""

    def __init__(
        self,
        base_limit: int = 10,
        window_seconds: int = 60,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.base_limit = base_limit
        self.window_seconds = window_seconds
        self._clock = clock
        self._windows: dict[str, _Window] = {}

    async def hit(self, key: str, complexity: int) -> RateLimitDecision:
        now = self._clock()
        limit = effective_limit(self.base_limit, complexity)

        window = self._windows.get(key)
        if window is None or now > window.reset_at:
            self._prune(now)
            window = _Window(count=0, score=0, reset_at=now + self.window_seconds)
            self._windows[key] = window

        window.score += complexity
        allowed = window.count < limit and window.score <= limit * 10
        if allowed:
            window.count += 1

        return RateLimitDecision(
            allowed=allowed,
            limit=limit,
            count=window.count,
            complexity=complexity,
            complexity_score=window.score,
            reset_at=window.reset_at,
            retry_after=max(1, math.ceil(window.reset_at - now)),
        )

    def _prune(self, now: float) -> None:
        for stale in [k for k, w in self._windows.items() if now > w.reset_at]:
            del self._windows[stale]

    async def reset(self) -> None:
        self._windows.clear()


class RedisRateLimiter:
    """Fixed-window limiter on a Redis hash per client: {count, score}.

    Fails open when Redis is unavailable.
    """

    def __init__(
        self,
        base_limit: int = 10,
        window_seconds: int = 60,
        client_factory: Callable[[], Awaitable[redis.Redis]] = get_redis,
        prefix: str = "ratelimit:composition",
    ):
        self.base_limit = base_limit
        self.window_seconds = window_seconds
        self._client_factory = client_factory
        self.prefix = prefix

    async def hit(self, key: str, complexity: int) -> RateLimitDecision:
        limit = effective_limit(self.base_limit, complexity)
        redis_key = f"{self.prefix}:{key}"
        now = time.time()

        try:
            client = await self._client_factory()
            async with client.pipeline(transaction=True) as pipe:
                pipe.hincrby(redis_key, "score", complexity)
                pipe.hget(redis_key, "count")
                pipe.ttl(redis_key)
                score, count, ttl = await pipe.execute()
            if ttl is None or ttl < 0:
                await client.expire(redis_key, self.window_seconds)
                ttl = self.window_seconds

            count = int(count or 0)
            allowed = count < limit and int(score) <= limit * 10
            if allowed:
                count = await client.hincrby(redis_key, "count", 1)
        except redis.RedisError as e:
            logger.error(f"Rate limit check failed: {e}")
            return RateLimitDecision(
                allowed=True, limit=limit, count=0, complexity=complexity,
                complexity_score=complexity, reset_at=now + self.window_seconds,
                retry_after=self.window_seconds,
            )

        return RateLimitDecision(
            allowed=allowed,
            limit=limit,
            count=count,
            complexity=complexity,
            complexity_score=int(score),
            reset_at=now + ttl,
            retry_after=max(1, int(ttl)),
        )

    async def reset(self) -> None:
        try:
            client = await self._client_factory()
            keys = [k async for k in client.scan_iter(match=f"{self.prefix}:*")]
            if keys:
                await client.delete(*keys)
        except redis.RedisError as e:
            logger.warning(f"Failed to reset rate limits: {e}")


def build_rate_limiter(backend: str, base_limit: int, window_seconds: int) -> ComplexityRateLimiter:
    if backend == "redis":
        return RedisRateLimiter(base_limit, window_seconds)
    return InMemoryRateLimiter(base_limit, window_seconds)


def client_ip(request: Request) -> str:
    # Check for X-Forwarded-For (load balancer)
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else "unknown"


async def enforce_composition_rate_limit(
    request: Request,
    user_id: str | None,
    body: CompositionRequest,
) -> RateLimitDecision:
    """Consume budget for ``body``; raise 429 when the client is over it."""
    limiter: ComplexityRateLimiter = request.app.state.rate_limiter
    key = f"{client_ip(request)}:{user_id or 'anonymous'}"
    complexity = request_complexity(body)
    decision = await limiter.hit(key, complexity)

    if not decision.allowed:
        logger.warning(
            f"Composition rate limit exceeded for {key}",
            extra={
                "client_key": key,
                "complexity": complexity,
                "complexity_score": decision.complexity_score,
                "limit": decision.limit,
                "path": request.url.path,
            },
        )
        raise RateLimitExceededError(
            retry_after=decision.retry_after,
            details={
                "request_count": decision.count,
                "complexity_score": decision.complexity_score,
                "limit": decision.limit,
                "current_complexity": complexity,
                "retry_after": decision.retry_after,
            },
        )
    return decision
