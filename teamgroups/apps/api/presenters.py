from __future__ import annotations

from pydantic import BaseModel

from teamgroups.domain.models import GroupMembership, User
from teamgroups.domain.views import GroupView


class GroupResponse(BaseModel):
    id: str
    name: str
    team_id: str
    created_by_id: str
    member_count: int
    created_at: str
    updated_at: str


class UserResponse(BaseModel):
    id: str
    name: str
    email: str | None
    team_id: str


class GroupMembershipResponse(BaseModel):
    id: str
    group_id: str
    user_id: str
    created_by_id: str
    created_at: str
    user: UserResponse | None = None


def present_group(group: GroupView) -> GroupResponse:
    # Serialize datetimes to ISO 8601 for API clients.
    return GroupResponse(
        id=group.id,
        name=group.name,
        team_id=group.team_id,
        created_by_id=group.created_by_id,
        member_count=group.member_count,
        created_at=group.created_at.isoformat(),
        updated_at=group.updated_at.isoformat(),
    )


def present_user(user: User) -> UserResponse:
    return UserResponse(id=user.id, name=user.name, email=user.email, team_id=user.team_id)


def present_membership(membership: GroupMembership, user: User | None = None) -> GroupMembershipResponse:
    # Embed the member when the caller already joined it in.
    return GroupMembershipResponse(
        id=membership.id,
        group_id=membership.group_id,
        user_id=membership.user_id,
        created_by_id=membership.created_by_id,
        created_at=membership.created_at.isoformat(),
        user=present_user(user) if user is not None else None,
    )
