from __future__ import annotations

import pytest

from teamgroups.apps.api.rate_limit import RateLimiter
from teamgroups.tests.utils.fakes import FakeRedis


def _limiter(redis: FakeRedis, now: list[float]) -> RateLimiter:
    async def provider() -> FakeRedis:
        return redis

    return RateLimiter(redis_provider=provider, time_provider=lambda: now[0])


@pytest.mark.asyncio
async def test_fixed_window_blocks_after_limit() -> None:
    redis = FakeRedis()
    limiter = _limiter(redis, [7200.0])

    decisions = [
        await limiter.hit(action="groups.create", actor_id="u-1", limit=2) for _ in range(3)
    ]

    assert [decision.allowed for decision in decisions] == [True, True, False]
    assert decisions[-1].count == 3
    assert decisions[-1].retry_after_s == 3600


@pytest.mark.asyncio
async def test_fixed_window_resets_next_hour_and_isolates_actors() -> None:
    redis = FakeRedis()
    now = [7200.0]
    limiter = _limiter(redis, now)

    assert (await limiter.hit(action="groups.create", actor_id="u-1", limit=1)).allowed
    assert not (await limiter.hit(action="groups.create", actor_id="u-1", limit=1)).allowed
    assert (await limiter.hit(action="groups.create", actor_id="u-2", limit=1)).allowed

    now[0] += 3600
    assert (await limiter.hit(action="groups.create", actor_id="u-1", limit=1)).allowed


def test_bucket_key_includes_prefix_action_and_window() -> None:
    limiter = RateLimiter(time_provider=lambda: 7201.0)
    key = limiter.bucket_key(action="groups.create", actor_id="u-1", window_seconds=3600)
    assert key == "teamgroups:rl:groups.create:u-1:2"
