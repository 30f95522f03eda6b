from __future__ import annotations

from uuid import uuid4

from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from teamgroups.domain.models import Group, GroupMembership


SORTABLE_COLUMNS = {
    "name": Group.name,
    "created_at": Group.created_at,
    "updated_at": Group.updated_at,
}


async def get_group(session: AsyncSession, group_id: str, *, for_update: bool = False) -> Group | None:
    stmt = select(Group).where(Group.id == group_id)
    if for_update:
        # Row lock serializes concurrent writers touching the same group.
        stmt = stmt.with_for_update()
    result = await session.execute(stmt)
    return result.scalar_one_or_none()


async def list_groups_for_team(
    session: AsyncSession,
    team_id: str,
    *,
    name: str | None = None,
    member_user_id: str | None = None,
    sort: str = "updated_at",
    direction: str = "desc",
    offset: int = 0,
    limit: int = 25,
) -> list[Group]:
    # Always scope by team so group listings never cross workspace boundaries.
    stmt = select(Group).where(Group.team_id == team_id)
    if name:
        stmt = stmt.where(Group.name == name)
    if member_user_id:
        stmt = stmt.where(
            Group.id.in_(
                select(GroupMembership.group_id).where(GroupMembership.user_id == member_user_id)
            )
        )
    column = SORTABLE_COLUMNS.get(sort, Group.updated_at)
    ordered = column.asc() if direction.lower() == "asc" else column.desc()
    # Tie-break on id so pages stay stable across requests.
    stmt = stmt.order_by(ordered, Group.id).offset(offset).limit(limit)
    result = await session.execute(stmt)
    return list(result.scalars().all())


async def count_members(session: AsyncSession, group_ids: list[str]) -> dict[str, int]:
    if not group_ids:
        return {}
    result = await session.execute(
        select(GroupMembership.group_id, func.count(GroupMembership.id))
        .where(GroupMembership.group_id.in_(group_ids))
        .group_by(GroupMembership.group_id)
    )
    counts = {group_id: 0 for group_id in group_ids}
    for group_id, total in result.all():
        counts[group_id] = int(total)
    return counts


async def create_group(session: AsyncSession, *, team_id: str, name: str, created_by_id: str) -> Group:
    group = Group(id=uuid4().hex, team_id=team_id, name=name, created_by_id=created_by_id)
    session.add(group)
    await session.flush()
    return group


async def delete_group(session: AsyncSession, group: Group) -> None:
    # Remove memberships explicitly; sqlite test databases do not enforce FK cascades.
    await session.execute(delete(GroupMembership).where(GroupMembership.group_id == group.id))
    await session.execute(delete(Group).where(Group.id == group.id))
