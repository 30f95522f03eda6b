from __future__ import annotations

from uuid import uuid4

from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from teamgroups.domain.models import GroupMembership, User


async def get_membership(session: AsyncSession, group_id: str, user_id: str) -> GroupMembership | None:
    result = await session.execute(
        select(GroupMembership).where(
            GroupMembership.group_id == group_id,
            GroupMembership.user_id == user_id,
        )
    )
    return result.scalar_one_or_none()


async def get_memberships_for_users(
    session: AsyncSession,
    group_id: str,
    user_ids: list[str],
) -> dict[str, GroupMembership]:
    # Load existing memberships for a batch of users in a single query.
    if not user_ids:
        return {}
    result = await session.execute(
        select(GroupMembership).where(
            GroupMembership.group_id == group_id,
            GroupMembership.user_id.in_(user_ids),
        )
    )
    return {membership.user_id: membership for membership in result.scalars().all()}


async def list_memberships_with_users(
    session: AsyncSession,
    group_id: str,
    *,
    query: str | None = None,
    offset: int = 0,
    limit: int = 25,
) -> list[tuple[GroupMembership, User]]:
    # Inner join: memberships whose user does not match the filter are dropped.
    stmt = (
        select(GroupMembership, User)
        .join(User, User.id == GroupMembership.user_id)
        .where(GroupMembership.group_id == group_id)
    )
    if query:
        # Wildcards in the query match literally.
        stmt = stmt.where(func.lower(User.name).contains(query.lower(), autoescape=True))
    stmt = (
        stmt.order_by(GroupMembership.created_at.desc(), GroupMembership.id)
        .offset(offset)
        .limit(limit)
    )
    result = await session.execute(stmt)
    return [(membership, user) for membership, user in result.all()]


async def list_preview_memberships(
    session: AsyncSession,
    group_ids: list[str],
    *,
    per_group: int,
) -> dict[str, list[tuple[GroupMembership, User]]]:
    # Return at most `per_group` memberships with a resolved user for each group.
    if not group_ids or per_group <= 0:
        return {group_id: [] for group_id in group_ids}
    ranked = (
        select(
            GroupMembership.id.label("membership_id"),
            func.row_number()
            .over(
                partition_by=GroupMembership.group_id,
                order_by=(GroupMembership.created_at.desc(), GroupMembership.id),
            )
            .label("position"),
        )
        .join(User, User.id == GroupMembership.user_id)
        .where(GroupMembership.group_id.in_(group_ids))
        .subquery()
    )
    result = await session.execute(
        select(GroupMembership, User)
        .join(User, User.id == GroupMembership.user_id)
        .join(ranked, ranked.c.membership_id == GroupMembership.id)
        .where(ranked.c.position <= per_group)
        .order_by(GroupMembership.group_id, ranked.c.position)
    )
    previews: dict[str, list[tuple[GroupMembership, User]]] = {group_id: [] for group_id in group_ids}
    for membership, user in result.all():
        previews[membership.group_id].append((membership, user))
    return previews


async def add_membership(
    session: AsyncSession,
    *,
    group_id: str,
    user_id: str,
    created_by_id: str,
) -> GroupMembership:
    membership = GroupMembership(
        id=uuid4().hex,
        group_id=group_id,
        user_id=user_id,
        created_by_id=created_by_id,
    )
    session.add(membership)
    await session.flush()
    return membership


async def remove_membership(session: AsyncSession, group_id: str, user_id: str) -> bool:
    result = await session.execute(
        delete(GroupMembership).where(
            GroupMembership.group_id == group_id,
            GroupMembership.user_id == user_id,
        )
    )
    return bool(result.rowcount)
