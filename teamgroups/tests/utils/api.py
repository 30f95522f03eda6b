from __future__ import annotations

from typing import Any

from httpx import ASGITransport, AsyncClient
from sqlalchemy import func, select

from teamgroups.apps.api.main import create_app
from teamgroups.domain.models import AuditEvent, GroupMembership
from teamgroups.persistence.db import SessionLocal


def api_client() -> AsyncClient:
    transport = ASGITransport(app=create_app())
    return AsyncClient(transport=transport, base_url="http://test")


async def fetch_events(*, event_type: str, resource_id: str | None = None) -> list[AuditEvent]:
    async with SessionLocal() as session:
        stmt = select(AuditEvent).where(AuditEvent.event_type == event_type)
        if resource_id is not None:
            stmt = stmt.where(AuditEvent.resource_id == resource_id)
        result = await session.execute(stmt.order_by(AuditEvent.id))
        return list(result.scalars().all())


async def count_memberships(group_id: str, user_id: str | None = None) -> int:
    async with SessionLocal() as session:
        stmt = select(func.count()).select_from(GroupMembership).where(
            GroupMembership.group_id == group_id
        )
        if user_id is not None:
            stmt = stmt.where(GroupMembership.user_id == user_id)
        result = await session.execute(stmt)
        return int(result.scalar() or 0)


async def create_group_via_api(client: AsyncClient, headers: dict[str, str], name: str) -> dict[str, Any]:
    response = await client.post("/v1/groups.create", json={"name": name}, headers=headers)
    assert response.status_code == 200, response.text
    return response.json()["data"]["group"]
