from __future__ import annotations

import asyncio
from dataclasses import dataclass
import logging
import time
from typing import Any, Awaitable, Callable

from fastapi import Depends, HTTPException, Request, Response, status
from redis.asyncio import Redis
from redis.exceptions import RedisError
from sqlalchemy.ext.asyncio import AsyncSession

from teamgroups.apps.api.deps import Principal, get_current_principal, get_db
from teamgroups.core.config import get_settings
from teamgroups.services.audit import get_request_context, record_event


logger = logging.getLogger(__name__)

HOUR_SECONDS = 3600

# Increment the window counter and arm its expiry on first hit in one round trip.
_FIXED_WINDOW_LUA = r"""
local current = redis.call("INCR", KEYS[1])
if current == 1 then
  redis.call("EXPIRE", KEYS[1], ARGV[1])
end
local ttl = redis.call("TTL", KEYS[1])
return {current, ttl}
"""


@dataclass(frozen=True)
class RateLimitDecision:
    allowed: bool
    action: str
    limit: int
    count: int
    retry_after_s: int


_redis_pool: Redis | None = None
_redis_loop: asyncio.AbstractEventLoop | None = None
_redis_lock = asyncio.Lock()


async def _get_redis() -> Redis:
    # Cache Redis connections per event loop to avoid reconnecting per request.
    global _redis_pool, _redis_loop
    current_loop = asyncio.get_running_loop()
    if _redis_pool is not None and _redis_loop == current_loop:
        return _redis_pool
    if _redis_pool is not None and _redis_loop != current_loop:
        _redis_pool = None
    async with _redis_lock:
        if _redis_pool is None:
            settings = get_settings()
            _redis_pool = Redis.from_url(
                settings.redis_url,
                encoding="utf-8",
                decode_responses=True,
            )
            _redis_loop = current_loop
    return _redis_pool


class RateLimiter:
    """Fixed-window counters keyed by action and actor."""

    def __init__(
        self,
        *,
        redis_provider: Callable[[], Awaitable[Any]] | None = None,
        time_provider: Callable[[], float] | None = None,
    ) -> None:
        # Allow injecting storage and time for deterministic tests.
        self._redis_provider = redis_provider or _get_redis
        self._time_provider = time_provider or time.time

    def bucket_key(self, *, action: str, actor_id: str, window_seconds: int) -> str:
        settings = get_settings()
        window = int(self._time_provider()) // window_seconds
        return f"{settings.rl_redis_prefix}:{action}:{actor_id}:{window}"

    async def hit(
        self,
        *,
        action: str,
        actor_id: str,
        limit: int,
        window_seconds: int = HOUR_SECONDS,
    ) -> RateLimitDecision:
        key = self.bucket_key(action=action, actor_id=actor_id, window_seconds=window_seconds)
        redis = await self._redis_provider()
        result = await redis.eval(_FIXED_WINDOW_LUA, 1, key, window_seconds)
        count = int(result[0])
        ttl = int(result[1])
        if ttl < 0:
            ttl = window_seconds
        allowed = count <= limit
        return RateLimitDecision(
            allowed=allowed,
            action=action,
            limit=limit,
            count=count,
            retry_after_s=0 if allowed else max(1, ttl),
        )


_rate_limiter: RateLimiter | None = None


def get_rate_limiter() -> RateLimiter:
    global _rate_limiter
    if _rate_limiter is None:
        _rate_limiter = RateLimiter()
    return _rate_limiter


def set_rate_limiter(limiter: RateLimiter | None) -> None:
    # Swap the shared limiter, e.g. for a fake-backed one in tests.
    global _rate_limiter
    _rate_limiter = limiter


def reset_rate_limiter_state() -> None:
    # Reset cached Redis connections for deterministic test setup.
    global _rate_limiter, _redis_pool, _redis_loop
    _rate_limiter = None
    _redis_pool = None
    _redis_loop = None


def _throttle_exception(*, decision: RateLimitDecision) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_429_TOO_MANY_REQUESTS,
        detail={
            "code": "RATE_LIMITED",
            "message": "Rate limit exceeded",
            "action": decision.action,
            "limit": decision.limit,
            "retry_after_s": decision.retry_after_s,
        },
        headers={"Retry-After": str(decision.retry_after_s)},
    )


def _unavailable_exception() -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        detail={"code": "RATE_LIMIT_UNAVAILABLE", "message": "Rate limiting unavailable"},
    )


async def enforce_rate_limit(
    *,
    request: Request,
    response: Response,
    principal: Principal,
    db: AsyncSession,
    action: str,
    limit: int,
    window_seconds: int = HOUR_SECONDS,
) -> None:
    settings = get_settings()
    if not settings.rate_limit_enabled:
        return

    limiter = get_rate_limiter()
    try:
        decision = await limiter.hit(
            action=action,
            actor_id=principal.user_id,
            limit=limit,
            window_seconds=window_seconds,
        )
    except (RedisError, OSError) as exc:
        if settings.rl_fail_mode.lower() == "closed":
            raise _unavailable_exception() from exc
        response.headers["X-RateLimit-Status"] = "degraded"
        logger.warning("rate_limit_degraded action=%s path=%s", action, request.url.path)
        return

    response.headers["X-RateLimit-Limit"] = str(decision.limit)
    response.headers["X-RateLimit-Remaining"] = str(max(0, decision.limit - decision.count))
    if decision.allowed:
        return

    request_ctx = get_request_context(request)
    await record_event(
        session=db,
        team_id=principal.team_id,
        actor_type="api_key",
        actor_id=principal.api_key_id,
        actor_role=principal.role,
        event_type="security.rate_limited",
        outcome="failure",
        resource_type="rate_limit",
        user_id=principal.user_id,
        request_id=request_ctx["request_id"],
        ip_address=request_ctx["ip_address"],
        user_agent=request_ctx["user_agent"],
        metadata={
            "action": action,
            "limit": decision.limit,
            "retry_after_s": decision.retry_after_s,
            "path": request.url.path,
        },
        commit=True,
        best_effort=True,
    )
    raise _throttle_exception(decision=decision)


def rate_limited(action: str, limit_provider: Callable[[], int]) -> Callable[..., Awaitable[None]]:
    """Build a route dependency enforcing an hourly per-actor quota for ``action``."""

    async def dependency(
        request: Request,
        response: Response,
        principal: Principal = Depends(get_current_principal),
        db: AsyncSession = Depends(get_db),
    ) -> None:
        await enforce_rate_limit(
            request=request,
            response=response,
            principal=principal,
            db=db,
            action=action,
            limit=limit_provider(),
        )

    return dependency
