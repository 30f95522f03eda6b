from __future__ import annotations

from contextlib import asynccontextmanager
from dataclasses import dataclass
import logging
from typing import Any, AsyncIterator

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from teamgroups.core.errors import DatabaseError, NotFoundError
from teamgroups.domain.models import Group, GroupMembership, User
from teamgroups.domain.views import GroupView
from teamgroups.persistence.repos import groups as groups_repo
from teamgroups.persistence.repos import memberships as memberships_repo
from teamgroups.persistence.repos import users as users_repo
from teamgroups.services.audit import record_event
from teamgroups.services.policies import PrincipalLike, authorize


logger = logging.getLogger(__name__)

EVENT_GROUP_CREATE = "groups.create"
EVENT_GROUP_UPDATE = "groups.update"
EVENT_GROUP_DELETE = "groups.delete"
EVENT_GROUP_ADD_USER = "groups.add_user"
EVENT_GROUP_REMOVE_USER = "groups.remove_user"

RequestContext = dict[str, str | None]


@dataclass(frozen=True)
class GroupListing:
    groups: list[GroupView]
    # Flattened per-group membership previews, each paired with its user.
    memberships: list[tuple[GroupMembership, User]]


@dataclass(frozen=True)
class MembershipChange:
    group: GroupView
    membership: GroupMembership
    user: User
    created: bool


async def project_group(session: AsyncSession, group: Group) -> GroupView:
    """Recompute derived group fields after a write."""
    counts = await groups_repo.count_members(session, [group.id])
    return GroupView.from_group(group, member_count=counts.get(group.id, 0))


async def project_groups(session: AsyncSession, groups: list[Group]) -> list[GroupView]:
    counts = await groups_repo.count_members(session, [group.id for group in groups])
    return [GroupView.from_group(group, member_count=counts.get(group.id, 0)) for group in groups]


@asynccontextmanager
async def write_transaction(session: AsyncSession, *, operation: str) -> AsyncIterator[None]:
    """Commit the writes made in the block, or roll all of them back.

    Storage failures anywhere in the block, including the audit insert, surface
    as ``DatabaseError`` after the rollback.
    """
    try:
        yield
        await session.commit()
    except SQLAlchemyError as exc:
        await session.rollback()
        logger.error("group_write_failed operation=%s", operation, exc_info=exc)
        raise DatabaseError(f"Database error during {operation}") from exc


async def _audit(
    session: AsyncSession,
    *,
    actor: PrincipalLike,
    event_type: str,
    team_id: str,
    group_id: str,
    request_ctx: RequestContext | None,
    metadata: dict[str, Any],
    user_id: str | None = None,
) -> None:
    # Group audit events join the caller's transaction and must not be dropped.
    ctx = request_ctx or {}
    await record_event(
        session=session,
        team_id=team_id,
        actor_type="user",
        actor_id=actor.user_id,
        actor_role=actor.role,
        event_type=event_type,
        resource_type="group",
        resource_id=group_id,
        user_id=user_id,
        request_id=ctx.get("request_id"),
        ip_address=ctx.get("ip_address"),
        user_agent=ctx.get("user_agent"),
        metadata=metadata,
        commit=False,
        best_effort=False,
    )


async def _require_group(session: AsyncSession, group_id: str) -> Group:
    group = await groups_repo.get_group(session, group_id)
    if group is None:
        raise NotFoundError("Group not found")
    return group


async def _require_user(session: AsyncSession, user_id: str) -> User:
    user = await users_repo.get_user(session, user_id)
    if user is None:
        raise NotFoundError("User not found")
    return user


async def list_groups(
    session: AsyncSession,
    *,
    actor: PrincipalLike,
    user_id: str | None = None,
    name: str | None = None,
    sort: str = "updated_at",
    direction: str = "desc",
    offset: int = 0,
    limit: int = 25,
    max_preview: int = 6,
) -> GroupListing:
    groups = await groups_repo.list_groups_for_team(
        session,
        actor.team_id,
        name=name,
        member_user_id=user_id,
        sort=sort,
        direction=direction,
        offset=offset,
        limit=limit,
    )
    group_ids = [group.id for group in groups]
    previews = await memberships_repo.list_preview_memberships(session, group_ids, per_group=max_preview)
    memberships = [pair for group_id in group_ids for pair in previews.get(group_id, [])]
    return GroupListing(groups=await project_groups(session, groups), memberships=memberships)


async def get_group(session: AsyncSession, *, actor: PrincipalLike, group_id: str) -> GroupView:
    group = await _require_group(session, group_id)
    authorize(actor, "read", group)
    return await project_group(session, group)


async def create_group(
    session: AsyncSession,
    *,
    actor: PrincipalLike,
    name: str,
    request_ctx: RequestContext | None = None,
) -> GroupView:
    team = await users_repo.get_team(session, actor.team_id)
    authorize(actor, "createGroup", team)
    async with write_transaction(session, operation=EVENT_GROUP_CREATE):
        group = await groups_repo.create_group(
            session,
            team_id=actor.team_id,
            name=name,
            created_by_id=actor.user_id,
        )
        await _audit(
            session,
            actor=actor,
            event_type=EVENT_GROUP_CREATE,
            team_id=actor.team_id,
            group_id=group.id,
            request_ctx=request_ctx,
            metadata={"name": group.name},
        )
    logger.info("group_created group_id=%s team_id=%s", group.id, group.team_id)
    return await project_group(session, group)


async def update_group(
    session: AsyncSession,
    *,
    actor: PrincipalLike,
    group_id: str,
    name: str,
    request_ctx: RequestContext | None = None,
) -> GroupView:
    group = await _require_group(session, group_id)
    authorize(actor, "update", group)

    # Skip the write and the audit event when nothing changed.
    if group.name != name:
        async with write_transaction(session, operation=EVENT_GROUP_UPDATE):
            group.name = name
            await _audit(
                session,
                actor=actor,
                event_type=EVENT_GROUP_UPDATE,
                team_id=actor.team_id,
                group_id=group.id,
                request_ctx=request_ctx,
                metadata={"name": name},
            )
    return await project_group(session, group)


async def delete_group(
    session: AsyncSession,
    *,
    actor: PrincipalLike,
    group_id: str,
    request_ctx: RequestContext | None = None,
) -> bool:
    group = await _require_group(session, group_id)
    authorize(actor, "delete", group)

    prior_name = group.name
    team_id = group.team_id
    async with write_transaction(session, operation=EVENT_GROUP_DELETE):
        await groups_repo.delete_group(session, group)
        await _audit(
            session,
            actor=actor,
            event_type=EVENT_GROUP_DELETE,
            team_id=team_id,
            group_id=group_id,
            request_ctx=request_ctx,
            metadata={"name": prior_name},
        )
    logger.info("group_deleted group_id=%s team_id=%s", group_id, team_id)
    return True


async def list_memberships(
    session: AsyncSession,
    *,
    actor: PrincipalLike,
    group_id: str,
    query: str | None = None,
    offset: int = 0,
    limit: int = 25,
) -> list[tuple[GroupMembership, User]]:
    group = await _require_group(session, group_id)
    authorize(actor, "read", group)
    return await memberships_repo.list_memberships_with_users(
        session,
        group_id,
        query=query,
        offset=offset,
        limit=limit,
    )


async def add_user(
    session: AsyncSession,
    *,
    actor: PrincipalLike,
    group_id: str,
    user_id: str,
    request_ctx: RequestContext | None = None,
) -> MembershipChange:
    user = await _require_user(session, user_id)
    authorize(actor, "read", user)
    group = await _require_group(session, group_id)
    authorize(actor, "update", group)

    existing = await memberships_repo.get_membership(session, group_id, user_id)
    if existing is not None:
        return MembershipChange(
            group=await project_group(session, group),
            membership=existing,
            user=user,
            created=False,
        )

    try:
        membership = await memberships_repo.add_membership(
            session,
            group_id=group_id,
            user_id=user_id,
            created_by_id=actor.user_id,
        )
        await _audit(
            session,
            actor=actor,
            event_type=EVENT_GROUP_ADD_USER,
            team_id=user.team_id,
            group_id=group.id,
            user_id=user_id,
            request_ctx=request_ctx,
            metadata={"name": user.name},
        )
        await session.commit()
    except IntegrityError:
        # A concurrent request added the same member first; report its row instead.
        await session.rollback()
        existing = await memberships_repo.get_membership(session, group_id, user_id)
        if existing is None:
            raise
        # Rollback expired the loaded rows; reload them before projecting.
        group = await _require_group(session, group_id)
        user = await _require_user(session, user_id)
        return MembershipChange(
            group=await project_group(session, group),
            membership=existing,
            user=user,
            created=False,
        )
    except SQLAlchemyError as exc:
        await session.rollback()
        logger.error("group_write_failed operation=%s", EVENT_GROUP_ADD_USER, exc_info=exc)
        raise DatabaseError(f"Database error during {EVENT_GROUP_ADD_USER}") from exc

    return MembershipChange(
        group=await project_group(session, group),
        membership=membership,
        user=user,
        created=True,
    )


async def remove_user(
    session: AsyncSession,
    *,
    actor: PrincipalLike,
    group_id: str,
    user_id: str,
    request_ctx: RequestContext | None = None,
) -> GroupView:
    group = await _require_group(session, group_id)
    authorize(actor, "update", group)
    user = await _require_user(session, user_id)
    authorize(actor, "read", user)

    # The event is recorded even when there was no membership to remove.
    async with write_transaction(session, operation=EVENT_GROUP_REMOVE_USER):
        removed = await memberships_repo.remove_membership(session, group_id, user_id)
        await _audit(
            session,
            actor=actor,
            event_type=EVENT_GROUP_REMOVE_USER,
            team_id=user.team_id,
            group_id=group.id,
            user_id=user_id,
            request_ctx=request_ctx,
            metadata={"name": user.name},
        )
    if not removed:
        logger.info("group_remove_user_noop group_id=%s user_id=%s", group_id, user_id)
    return await project_group(session, group)
