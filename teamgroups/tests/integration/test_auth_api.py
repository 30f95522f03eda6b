from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from teamgroups.tests.utils.api import api_client, fetch_events
from teamgroups.tests.utils.auth import create_test_api_key, create_test_team


@pytest.mark.asyncio
async def test_missing_and_unknown_keys_are_unauthorized() -> None:
    async with api_client() as client:
        missing = await client.post("/v1/groups.list", json={})
        malformed = await client.post(
            "/v1/groups.list", json={}, headers={"Authorization": "Token abc"}
        )
        unknown = await client.post(
            "/v1/groups.list", json={}, headers={"Authorization": "Bearer tgk_unknown"}
        )

    for response in (missing, malformed, unknown):
        assert response.status_code == 401
        assert response.json()["error"]["code"] == "AUTH_UNAUTHORIZED"
        assert response.headers["WWW-Authenticate"] == "Bearer"
    assert len(await fetch_events(event_type="auth.access.failure")) == 3


@pytest.mark.asyncio
async def test_revoked_expired_and_inactive_keys_are_rejected() -> None:
    team_id = await create_test_team()
    revoked, _ = await create_test_api_key(team_id=team_id, key_revoked=True)
    expired, _ = await create_test_api_key(
        team_id=team_id, key_expires_at=datetime.now(timezone.utc) - timedelta(seconds=5)
    )
    inactive, _ = await create_test_api_key(team_id=team_id, user_active=False)

    async with api_client() as client:
        responses = [
            await client.post("/v1/groups.list", json={}, headers=headers)
            for headers in (revoked, expired, inactive)
        ]

    assert [response.status_code for response in responses] == [401, 401, 401]
    events = await fetch_events(event_type="auth.access.failure")
    assert {event.team_id for event in events} == {team_id}


@pytest.mark.asyncio
async def test_request_id_is_echoed_in_meta_and_header() -> None:
    team_id = await create_test_team()
    headers, _user_id = await create_test_api_key(team_id=team_id)

    async with api_client() as client:
        response = await client.post(
            "/v1/groups.list", json={}, headers={**headers, "X-Request-Id": "req-123"}
        )
        health = await client.get("/v1/health")

    assert response.status_code == 200
    assert response.headers["X-Request-Id"] == "req-123"
    assert response.json()["meta"] == {"request_id": "req-123", "api_version": "v1"}
    assert health.json()["data"] == {"status": "ok"}
