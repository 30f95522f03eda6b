from __future__ import annotations

from typing import Any, Literal

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from teamgroups.apps.api.deps import Principal, get_current_principal, get_db
from teamgroups.apps.api.openapi import DEFAULT_ERROR_RESPONSES
from teamgroups.apps.api.pagination import PaginationMeta, PaginationParams, paginate
from teamgroups.apps.api.presenters import (
    GroupMembershipResponse,
    GroupResponse,
    UserResponse,
    present_group,
    present_membership,
    present_user,
)
from teamgroups.apps.api.rate_limit import rate_limited
from teamgroups.apps.api.response import SuccessEnvelope, success_response
from teamgroups.core.config import get_settings
from teamgroups.services import groups as groups_service
from teamgroups.services.audit import get_request_context
from teamgroups.services.policies import serialize_policies


router = APIRouter(tags=["groups"], responses=DEFAULT_ERROR_RESPONSES)

_STRICT = {"extra": "forbid"}


class GroupsListRequest(PaginationParams):
    sort: Literal["name", "created_at", "updated_at"] = "updated_at"
    direction: Literal["asc", "desc"] = "desc"
    user_id: str | None = None
    name: str | None = Field(default=None, min_length=1, max_length=255)

    model_config = _STRICT


class GroupIdRequest(BaseModel):
    id: str = Field(min_length=1)

    model_config = _STRICT


class GroupCreateRequest(BaseModel):
    name: str = Field(min_length=1, max_length=255)

    model_config = _STRICT


class GroupUpdateRequest(BaseModel):
    id: str = Field(min_length=1)
    name: str = Field(min_length=1, max_length=255)

    model_config = _STRICT


class GroupMembershipsRequest(PaginationParams):
    id: str = Field(min_length=1)
    query: str | None = Field(default=None, max_length=255)

    model_config = _STRICT


class GroupUserRequest(BaseModel):
    id: str = Field(min_length=1)
    user_id: str = Field(min_length=1)

    model_config = _STRICT


class GroupPolicy(BaseModel):
    id: str
    abilities: dict[str, bool]


class GroupsListResponse(BaseModel):
    pagination: PaginationMeta
    groups: list[GroupResponse]
    group_memberships: list[GroupMembershipResponse]
    policies: list[GroupPolicy]


class GroupWithPoliciesResponse(BaseModel):
    group: GroupResponse
    policies: list[GroupPolicy]


class DeleteResponse(BaseModel):
    success: bool


class GroupMembershipsResponse(BaseModel):
    pagination: PaginationMeta
    group_memberships: list[GroupMembershipResponse]
    users: list[UserResponse]


class GroupAddUserResponse(BaseModel):
    groups: list[GroupResponse]
    group_memberships: list[GroupMembershipResponse]
    users: list[UserResponse]


class GroupRemoveUserResponse(BaseModel):
    groups: list[GroupResponse]


def _group_payload(principal: Principal, group: Any) -> GroupWithPoliciesResponse:
    return GroupWithPoliciesResponse(
        group=present_group(group),
        policies=[GroupPolicy(**policy) for policy in serialize_policies(principal, [group])],
    )


@router.post("/groups.list", response_model=SuccessEnvelope[GroupsListResponse])
async def list_groups(
    request: Request,
    payload: GroupsListRequest,
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
) -> dict:
    settings = get_settings()
    # Fetch one extra row to know whether another page exists.
    listing = await groups_service.list_groups(
        db,
        actor=principal,
        user_id=payload.user_id,
        name=payload.name,
        sort=payload.sort,
        direction=payload.direction,
        offset=payload.offset,
        limit=payload.limit + 1,
        max_preview=settings.max_avatar_display,
    )
    groups, pagination = paginate(listing.groups, offset=payload.offset, limit=payload.limit)
    page_ids = {group.id for group in groups}
    data = GroupsListResponse(
        pagination=pagination,
        groups=[present_group(group) for group in groups],
        group_memberships=[
            present_membership(membership, user)
            for membership, user in listing.memberships
            if membership.group_id in page_ids
        ],
        policies=[GroupPolicy(**policy) for policy in serialize_policies(principal, groups)],
    )
    return success_response(request=request, data=data)


@router.post("/groups.info", response_model=SuccessEnvelope[GroupWithPoliciesResponse])
async def group_info(
    request: Request,
    payload: GroupIdRequest,
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
) -> dict:
    group = await groups_service.get_group(db, actor=principal, group_id=payload.id)
    return success_response(request=request, data=_group_payload(principal, group))


@router.post(
    "/groups.create",
    response_model=SuccessEnvelope[GroupWithPoliciesResponse],
    dependencies=[
        Depends(rate_limited("groups.create", lambda: get_settings().group_create_per_hour))
    ],
)
async def create_group(
    request: Request,
    payload: GroupCreateRequest,
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
) -> dict:
    group = await groups_service.create_group(
        db,
        actor=principal,
        name=payload.name,
        request_ctx=get_request_context(request),
    )
    return success_response(request=request, data=_group_payload(principal, group))


@router.post("/groups.update", response_model=SuccessEnvelope[GroupWithPoliciesResponse])
async def update_group(
    request: Request,
    payload: GroupUpdateRequest,
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
) -> dict:
    group = await groups_service.update_group(
        db,
        actor=principal,
        group_id=payload.id,
        name=payload.name,
        request_ctx=get_request_context(request),
    )
    return success_response(request=request, data=_group_payload(principal, group))


@router.post("/groups.delete", response_model=SuccessEnvelope[DeleteResponse])
async def delete_group(
    request: Request,
    payload: GroupIdRequest,
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
) -> dict:
    deleted = await groups_service.delete_group(
        db,
        actor=principal,
        group_id=payload.id,
        request_ctx=get_request_context(request),
    )
    return success_response(request=request, data=DeleteResponse(success=deleted))


@router.post("/groups.memberships", response_model=SuccessEnvelope[GroupMembershipsResponse])
async def list_group_memberships(
    request: Request,
    payload: GroupMembershipsRequest,
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
) -> dict:
    rows = await groups_service.list_memberships(
        db,
        actor=principal,
        group_id=payload.id,
        query=payload.query,
        offset=payload.offset,
        limit=payload.limit + 1,
    )
    rows, pagination = paginate(rows, offset=payload.offset, limit=payload.limit)
    data = GroupMembershipsResponse(
        pagination=pagination,
        group_memberships=[present_membership(membership, user) for membership, user in rows],
        users=[present_user(user) for _, user in rows],
    )
    return success_response(request=request, data=data)


@router.post("/groups.add_user", response_model=SuccessEnvelope[GroupAddUserResponse])
async def add_group_user(
    request: Request,
    payload: GroupUserRequest,
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
) -> dict:
    change = await groups_service.add_user(
        db,
        actor=principal,
        group_id=payload.id,
        user_id=payload.user_id,
        request_ctx=get_request_context(request),
    )
    # Single-element arrays keep the shape symmetric with batch responses.
    data = GroupAddUserResponse(
        groups=[present_group(change.group)],
        group_memberships=[present_membership(change.membership, change.user)],
        users=[present_user(change.user)],
    )
    return success_response(request=request, data=data)


@router.post("/groups.remove_user", response_model=SuccessEnvelope[GroupRemoveUserResponse])
async def remove_group_user(
    request: Request,
    payload: GroupUserRequest,
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
) -> dict:
    group = await groups_service.remove_user(
        db,
        actor=principal,
        group_id=payload.id,
        user_id=payload.user_id,
        request_ctx=get_request_context(request),
    )
    data = GroupRemoveUserResponse(groups=[present_group(group)])
    return success_response(request=request, data=data)
