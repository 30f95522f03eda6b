from __future__ import annotations

from datetime import datetime, timezone
from json import JSONDecodeError

from fastapi import APIRouter, Depends, HTTPException, Request, status
from pydantic import BaseModel
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from teamgroups.apps.api.deps import as_utc, auth_error, get_db, parse_bearer_token
from teamgroups.apps.api.openapi import DEFAULT_ERROR_RESPONSES
from teamgroups.apps.api.presenters import (
    GroupMembershipResponse,
    GroupResponse,
    UserResponse,
    present_group,
    present_membership,
    present_user,
)
from teamgroups.apps.api.response import SuccessEnvelope, success_response
from teamgroups.core.config import get_settings
from teamgroups.core.errors import ProvisioningPayloadError
from teamgroups.domain.models import ProvisioningToken
from teamgroups.services.audit import get_request_context
from teamgroups.services.auth.api_keys import hash_secret
from teamgroups.services.provisioning import (
    ProvisioningCredential,
    parse_patch_payload,
    sync_group_memberships,
)


router = APIRouter(tags=["provisioning"], responses=DEFAULT_ERROR_RESPONSES)

_UNAUTHORIZED_CODE = "PROVISIONING_UNAUTHORIZED"


class ProvisioningSyncResponse(BaseModel):
    ok: bool
    group: GroupResponse
    group_membership: GroupMembershipResponse | None
    group_memberships: list[GroupMembershipResponse]
    users: list[UserResponse]
    removed_user_ids: list[str]
    unresolved_emails: list[str]


def _provisioning_disabled() -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_403_FORBIDDEN,
        detail={"code": "PROVISIONING_DISABLED", "message": "Provisioning is disabled"},
    )


async def _require_provisioning_credential(
    request: Request,
    db: AsyncSession,
) -> ProvisioningCredential:
    # Resolve the bearer token into the trusted team/actor pair; usage is stamped by the sync.
    settings = get_settings()
    if not settings.provisioning_enabled:
        raise _provisioning_disabled()
    raw_token = parse_bearer_token(request.headers.get("Authorization"), code=_UNAUTHORIZED_CODE)
    if not raw_token:
        raise auth_error("Missing bearer token", code=_UNAUTHORIZED_CODE)
    result = await db.execute(
        select(ProvisioningToken).where(ProvisioningToken.token_hash == hash_secret(raw_token))
    )
    token = result.scalar_one_or_none()
    if token is None or token.revoked_at is not None:
        raise auth_error("Invalid provisioning token", code=_UNAUTHORIZED_CODE)
    if token.expires_at is not None and as_utc(token.expires_at) <= datetime.now(timezone.utc):
        raise auth_error("Provisioning token expired", code=_UNAUTHORIZED_CODE)
    return ProvisioningCredential(
        token_id=token.id,
        team_id=token.team_id,
        actor_user_id=token.actor_user_id,
    )


async def _read_json(request: Request) -> object:
    try:
        return await request.json()
    except (JSONDecodeError, UnicodeDecodeError) as exc:
        raise ProvisioningPayloadError("Body must be valid JSON") from exc


@router.patch("/groups/{group_id}", response_model=SuccessEnvelope[ProvisioningSyncResponse])
async def patch_group_members(
    group_id: str,
    request: Request,
    db: AsyncSession = Depends(get_db),
) -> dict:
    credential = await _require_provisioning_credential(request, db)
    # Reject malformed bodies before touching membership rows.
    operations = parse_patch_payload(await _read_json(request))
    result = await sync_group_memberships(
        db,
        group_id=group_id,
        operations=operations,
        credential=credential,
        request_ctx=get_request_context(request),
    )
    users_by_id = {user.id: user for user in result.users}
    last = result.last_membership
    data = ProvisioningSyncResponse(
        ok=True,
        group=present_group(result.group),
        group_membership=(
            present_membership(last, users_by_id.get(last.user_id)) if last is not None else None
        ),
        group_memberships=[
            present_membership(membership, users_by_id.get(membership.user_id))
            for membership in result.added
        ],
        users=[present_user(user) for user in result.users],
        removed_user_ids=result.removed_user_ids,
        unresolved_emails=result.unresolved_emails,
    )
    return success_response(request=request, data=data)
