from __future__ import annotations

import pytest

from teamgroups.tests.utils.api import (
    api_client,
    count_memberships,
    create_group_via_api,
    fetch_events,
)
from teamgroups.tests.utils.auth import create_test_api_key, create_test_team, create_test_user


@pytest.mark.asyncio
async def test_create_then_info_returns_group_in_actor_team() -> None:
    team_id = await create_test_team()
    headers, user_id = await create_test_api_key(team_id=team_id)

    async with api_client() as client:
        created = await create_group_via_api(client, headers, "Engineering")
        response = await client.post("/v1/groups.info", json={"id": created["id"]}, headers=headers)

    assert response.status_code == 200
    body = response.json()
    assert body["meta"]["api_version"] == "v1"
    group = body["data"]["group"]
    assert group["name"] == "Engineering"
    assert group["team_id"] == team_id
    assert group["created_by_id"] == user_id
    assert group["member_count"] == 0
    assert body["data"]["policies"] == [
        {"id": created["id"], "abilities": {"read": True, "update": True, "delete": True}}
    ]

    events = await fetch_events(event_type="groups.create", resource_id=created["id"])
    assert len(events) == 1
    assert events[0].metadata_json == {"name": "Engineering"}
    assert events[0].actor_id == user_id


@pytest.mark.asyncio
async def test_update_emits_event_only_when_name_changes() -> None:
    team_id = await create_test_team()
    headers, _user_id = await create_test_api_key(team_id=team_id)

    async with api_client() as client:
        group = await create_group_via_api(client, headers, "Design")
        unchanged = await client.post(
            "/v1/groups.update", json={"id": group["id"], "name": "Design"}, headers=headers
        )
        assert unchanged.status_code == 200
        assert await fetch_events(event_type="groups.update", resource_id=group["id"]) == []

        changed = await client.post(
            "/v1/groups.update", json={"id": group["id"], "name": "Product Design"}, headers=headers
        )

    assert changed.status_code == 200
    assert changed.json()["data"]["group"]["name"] == "Product Design"
    events = await fetch_events(event_type="groups.update", resource_id=group["id"])
    assert len(events) == 1
    assert events[0].metadata_json == {"name": "Product Design"}


@pytest.mark.asyncio
async def test_delete_removes_group_and_memberships() -> None:
    team_id = await create_test_team()
    headers, _user_id = await create_test_api_key(team_id=team_id)
    member_id = await create_test_user(team_id=team_id, name="Jane")

    async with api_client() as client:
        group = await create_group_via_api(client, headers, "Ops")
        added = await client.post(
            "/v1/groups.add_user", json={"id": group["id"], "user_id": member_id}, headers=headers
        )
        assert added.status_code == 200

        deleted = await client.post("/v1/groups.delete", json={"id": group["id"]}, headers=headers)
        assert deleted.status_code == 200
        assert deleted.json()["data"] == {"success": True}

        missing = await client.post("/v1/groups.info", json={"id": group["id"]}, headers=headers)

    assert missing.status_code == 404
    assert missing.json()["error"]["code"] == "NOT_FOUND"
    assert await count_memberships(group["id"]) == 0
    events = await fetch_events(event_type="groups.delete", resource_id=group["id"])
    assert [event.metadata_json for event in events] == [{"name": "Ops"}]


@pytest.mark.asyncio
async def test_list_filters_by_exact_name_within_team() -> None:
    team_id = await create_test_team()
    other_team_id = await create_test_team()
    headers, _user_id = await create_test_api_key(team_id=team_id)
    other_headers, _other_user_id = await create_test_api_key(team_id=other_team_id)

    async with api_client() as client:
        await create_group_via_api(client, headers, "Eng")
        await create_group_via_api(client, headers, "Engineering")
        await create_group_via_api(client, other_headers, "Eng")
        response = await client.post("/v1/groups.list", json={"name": "Eng"}, headers=headers)

    assert response.status_code == 200
    groups = response.json()["data"]["groups"]
    assert len(groups) == 1
    assert groups[0]["name"] == "Eng"
    assert groups[0]["team_id"] == team_id


@pytest.mark.asyncio
async def test_list_caps_membership_previews_and_paginates() -> None:
    team_id = await create_test_team()
    headers, _user_id = await create_test_api_key(team_id=team_id)
    member_ids = [await create_test_user(team_id=team_id, name=f"Member {i}") for i in range(8)]

    async with api_client() as client:
        big = await create_group_via_api(client, headers, "Big")
        await create_group_via_api(client, headers, "Small")
        for member_id in member_ids:
            response = await client.post(
                "/v1/groups.add_user", json={"id": big["id"], "user_id": member_id}, headers=headers
            )
            assert response.status_code == 200

        first_page = await client.post(
            "/v1/groups.list",
            json={"sort": "name", "direction": "asc", "limit": 1},
            headers=headers,
        )
        second_page = await client.post(
            "/v1/groups.list",
            json={"sort": "name", "direction": "asc", "limit": 1, "offset": 1},
            headers=headers,
        )

    data = first_page.json()["data"]
    assert [group["name"] for group in data["groups"]] == ["Big"]
    assert data["groups"][0]["member_count"] == 8
    assert data["pagination"] == {"offset": 0, "limit": 1, "next_offset": 1}
    previews = data["group_memberships"]
    assert len(previews) == 6
    assert all(item["group_id"] == big["id"] and item["user"] for item in previews)

    second = second_page.json()["data"]
    assert [group["name"] for group in second["groups"]] == ["Small"]
    assert second["group_memberships"] == []
    assert second["pagination"]["next_offset"] is None


@pytest.mark.asyncio
async def test_list_filters_groups_by_member() -> None:
    team_id = await create_test_team()
    headers, _user_id = await create_test_api_key(team_id=team_id)
    member_id = await create_test_user(team_id=team_id, name="Jan")

    async with api_client() as client:
        joined = await create_group_via_api(client, headers, "Joined")
        await create_group_via_api(client, headers, "Other")
        await client.post(
            "/v1/groups.add_user", json={"id": joined["id"], "user_id": member_id}, headers=headers
        )
        response = await client.post(
            "/v1/groups.list", json={"user_id": member_id}, headers=headers
        )

    assert [group["id"] for group in response.json()["data"]["groups"]] == [joined["id"]]


@pytest.mark.asyncio
async def test_member_role_cannot_create_or_update_groups() -> None:
    team_id = await create_test_team()
    admin_headers, _admin_id = await create_test_api_key(team_id=team_id)
    member_headers, _member_id = await create_test_api_key(team_id=team_id, role="member")

    async with api_client() as client:
        denied_create = await client.post(
            "/v1/groups.create", json={"name": "Nope"}, headers=member_headers
        )
        group = await create_group_via_api(client, admin_headers, "Readable")
        info = await client.post("/v1/groups.info", json={"id": group["id"]}, headers=member_headers)
        denied_update = await client.post(
            "/v1/groups.update", json={"id": group["id"], "name": "Renamed"}, headers=member_headers
        )

    assert denied_create.status_code == 403
    assert denied_create.json()["error"]["code"] == "AUTH_FORBIDDEN"
    assert info.status_code == 200
    assert info.json()["data"]["policies"][0]["abilities"] == {
        "read": True,
        "update": False,
        "delete": False,
    }
    assert denied_update.status_code == 403


@pytest.mark.asyncio
async def test_groups_of_other_teams_are_forbidden() -> None:
    team_id = await create_test_team()
    other_team_id = await create_test_team()
    headers, _user_id = await create_test_api_key(team_id=team_id)
    other_headers, _other_user_id = await create_test_api_key(team_id=other_team_id)

    async with api_client() as client:
        group = await create_group_via_api(client, other_headers, "Private")
        response = await client.post("/v1/groups.info", json={"id": group["id"]}, headers=headers)

    assert response.status_code == 403
    assert response.json()["error"] == {"code": "AUTH_FORBIDDEN", "message": "Forbidden"}


@pytest.mark.asyncio
async def test_create_rejects_invalid_payloads() -> None:
    team_id = await create_test_team()
    headers, _user_id = await create_test_api_key(team_id=team_id)

    async with api_client() as client:
        empty = await client.post("/v1/groups.create", json={"name": ""}, headers=headers)
        extra = await client.post(
            "/v1/groups.create", json={"name": "Eng", "team_id": "other"}, headers=headers
        )
        bad_sort = await client.post("/v1/groups.list", json={"sort": "email"}, headers=headers)

    for response in (empty, extra, bad_sort):
        assert response.status_code == 422
        assert response.json()["error"]["code"] == "REQUEST_VALIDATION_ERROR"
