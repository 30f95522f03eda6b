"""Membership sync driven by an identity provisioning system (SCIM-style PATCH).

The caller is trusted through a provisioning token rather than a logged-in
user, so nothing here consults the per-user policy layer. The token binds the
sync to one team and one fixed actor id, which is recorded as creator of new
memberships and as actor of every audit event.

Writes for a group are serialized twice: an in-process ``asyncio.Lock`` per
group id, and a ``SELECT ... FOR UPDATE`` row lock for deployments running
several API processes. All membership changes, their audit events and the
group's ``updated_at`` bump commit in one transaction.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timezone
import logging
from typing import Any
import weakref

from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession

from teamgroups.core.errors import NotFoundError, ProvisioningPayloadError
from teamgroups.domain.models import GroupMembership, ProvisioningToken, User
from teamgroups.domain.views import GroupView
from teamgroups.persistence.repos import groups as groups_repo
from teamgroups.persistence.repos import memberships as memberships_repo
from teamgroups.persistence.repos import users as users_repo
from teamgroups.services.audit import record_event
from teamgroups.services.groups import (
    EVENT_GROUP_ADD_USER,
    EVENT_GROUP_REMOVE_USER,
    RequestContext,
    project_group,
    write_transaction,
)


logger = logging.getLogger(__name__)

OPERATION_ADD = "add"
OPERATION_REMOVE = "remove"
_SUPPORTED_OPERATIONS = {OPERATION_ADD, OPERATION_REMOVE}
_SUPPORTED_PATHS = {"", "members"}

_group_locks: "weakref.WeakValueDictionary[str, asyncio.Lock]" = weakref.WeakValueDictionary()


@dataclass(frozen=True)
class ProvisioningOperation:
    operation: str
    emails: tuple[str, ...]


@dataclass(frozen=True)
class ProvisioningCredential:
    # Trusted-service identity resolved from a provisioning token.
    token_id: str
    team_id: str
    actor_user_id: str


@dataclass(frozen=True)
class MembershipIntent:
    action: str
    user: User


@dataclass
class ProvisioningSyncResult:
    group: GroupView
    users: list[User]
    added: list[GroupMembership] = field(default_factory=list)
    removed_user_ids: list[str] = field(default_factory=list)
    unresolved_emails: list[str] = field(default_factory=list)

    @property
    def last_membership(self) -> GroupMembership | None:
        return self.added[-1] if self.added else None


def parse_patch_payload(payload: Any) -> list[ProvisioningOperation]:
    """Validate a PATCH body into explicit operations before any storage access."""
    if not isinstance(payload, dict):
        raise ProvisioningPayloadError("Body must be a JSON object")
    raw_operations = payload.get("Operations")
    if not isinstance(raw_operations, list) or not raw_operations:
        raise ProvisioningPayloadError("Operations must be a non-empty array")

    operations: list[ProvisioningOperation] = []
    for index, entry in enumerate(raw_operations):
        if not isinstance(entry, dict):
            raise ProvisioningPayloadError(f"Operations[{index}] must be an object")
        op = entry.get("op")
        if not isinstance(op, str) or op.strip().lower() not in _SUPPORTED_OPERATIONS:
            raise ProvisioningPayloadError(f"Operations[{index}].op must be 'add' or 'remove'")
        path = entry.get("path") or ""
        if not isinstance(path, str) or path.strip().lower() not in _SUPPORTED_PATHS:
            raise ProvisioningPayloadError(f"Operations[{index}].path must target members")
        value = entry.get("value")
        if not isinstance(value, list):
            raise ProvisioningPayloadError(f"Operations[{index}].value must be an array")
        emails: list[str] = []
        for item in value:
            email = item.get("email") if isinstance(item, dict) else None
            if not isinstance(email, str) or not email.strip():
                raise ProvisioningPayloadError(f"Operations[{index}].value entries require an email")
            emails.append(email.strip())
        operations.append(ProvisioningOperation(operation=op.strip().lower(), emails=tuple(emails)))
    return operations


def requested_emails(operations: list[ProvisioningOperation]) -> list[str]:
    # Lowercased, de-duplicated, in first-seen order.
    seen: dict[str, None] = {}
    for operation in operations:
        for email in operation.emails:
            seen.setdefault(email.lower(), None)
    return list(seen)


def plan_membership_changes(
    operations: list[ProvisioningOperation],
    *,
    users_by_email: dict[str, User],
    member_user_ids: set[str],
) -> list[MembershipIntent]:
    """Diff requested operations against current members.

    Adds for existing members and removes for non-members are dropped, as are
    emails without a matching user.
    """
    members = set(member_user_ids)
    intents: list[MembershipIntent] = []
    for operation in operations:
        for email in operation.emails:
            user = users_by_email.get(email.lower())
            if user is None:
                continue
            if operation.operation == OPERATION_ADD and user.id not in members:
                members.add(user.id)
                intents.append(MembershipIntent(action=OPERATION_ADD, user=user))
            elif operation.operation == OPERATION_REMOVE and user.id in members:
                members.discard(user.id)
                intents.append(MembershipIntent(action=OPERATION_REMOVE, user=user))
    return intents


def _lock_for_group(group_id: str) -> asyncio.Lock:
    # No await between lookup and insert, so the registry needs no lock of its own.
    lock = _group_locks.get(group_id)
    if lock is None:
        lock = asyncio.Lock()
        _group_locks[group_id] = lock
    return lock


async def sync_group_memberships(
    session: AsyncSession,
    *,
    group_id: str,
    operations: list[ProvisioningOperation],
    credential: ProvisioningCredential,
    request_ctx: RequestContext | None = None,
) -> ProvisioningSyncResult:
    ctx = request_ctx or {}
    lock = _lock_for_group(group_id)
    async with lock:
        group = await groups_repo.get_group(session, group_id, for_update=True)
        if group is None or group.team_id != credential.team_id:
            raise NotFoundError("Group not found")

        emails = requested_emails(operations)
        users = await users_repo.list_users_by_email(session, credential.team_id, emails)
        users_by_email = {user.email.lower(): user for user in users if user.email}
        unresolved = [email for email in emails if email not in users_by_email]
        if unresolved:
            logger.info(
                "provisioning_unresolved_emails group_id=%s count=%s",
                group_id,
                len(unresolved),
            )

        existing = await memberships_repo.get_memberships_for_users(
            session, group.id, [user.id for user in users]
        )
        intents = plan_membership_changes(
            operations,
            users_by_email=users_by_email,
            member_user_ids=set(existing),
        )

        added: dict[str, GroupMembership] = {}
        removed_user_ids: list[str] = []
        async with write_transaction(session, operation="groups.provisioning_sync"):
            for intent in intents:
                user = intent.user
                if intent.action == OPERATION_ADD:
                    added[user.id] = await memberships_repo.add_membership(
                        session,
                        group_id=group.id,
                        user_id=user.id,
                        created_by_id=credential.actor_user_id,
                    )
                    event_type = EVENT_GROUP_ADD_USER
                else:
                    await memberships_repo.remove_membership(session, group.id, user.id)
                    added.pop(user.id, None)
                    removed_user_ids.append(user.id)
                    event_type = EVENT_GROUP_REMOVE_USER
                await record_event(
                    session=session,
                    team_id=user.team_id,
                    actor_type="provisioning",
                    actor_id=credential.actor_user_id,
                    event_type=event_type,
                    resource_type="group",
                    resource_id=group.id,
                    user_id=user.id,
                    request_id=ctx.get("request_id"),
                    ip_address=ctx.get("ip_address"),
                    user_agent=ctx.get("user_agent"),
                    metadata={"name": user.name, "credential_id": credential.token_id},
                    commit=False,
                    best_effort=False,
                )

            now = datetime.now(timezone.utc)
            if intents:
                group.updated_at = now
            await session.execute(
                update(ProvisioningToken)
                .where(ProvisioningToken.id == credential.token_id)
                .values(last_used_at=now)
            )
        view = await project_group(session, group)

    logger.info(
        "provisioning_sync_applied group_id=%s added=%s removed=%s unresolved=%s",
        group_id,
        len(added),
        len(removed_user_ids),
        len(unresolved),
    )
    return ProvisioningSyncResult(
        group=view,
        users=users,
        added=list(added.values()),
        removed_user_ids=removed_user_ids,
        unresolved_emails=unresolved,
    )
