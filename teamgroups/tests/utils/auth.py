from __future__ import annotations

from datetime import datetime, timezone
from uuid import uuid4

from teamgroups.domain.models import ApiKey, ProvisioningToken, Team, User
from teamgroups.persistence.db import SessionLocal
from teamgroups.services.auth.api_keys import (
    generate_api_key,
    generate_provisioning_token,
    normalize_role,
)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


async def create_test_team(*, team_id: str | None = None, name: str = "Test team") -> str:
    resolved_id = team_id or f"team-{uuid4().hex}"
    async with SessionLocal() as session:
        session.add(Team(id=resolved_id, name=name))
        await session.commit()
    return resolved_id


async def create_test_user(
    *,
    team_id: str,
    name: str = "Test user",
    email: str | None = None,
    role: str = "member",
    is_active: bool = True,
) -> str:
    user_id = uuid4().hex
    async with SessionLocal() as session:
        session.add(
            User(
                id=user_id,
                team_id=team_id,
                name=name,
                email=email,
                role=normalize_role(role),
                is_active=is_active,
            )
        )
        await session.commit()
    return user_id


async def create_test_api_key(
    *,
    team_id: str,
    role: str = "admin",
    name: str = "Test admin",
    email: str | None = None,
    user_active: bool = True,
    key_revoked: bool = False,
    key_expires_at: datetime | None = None,
) -> tuple[dict[str, str], str]:
    # Provision a user + API key pair and return ready-to-use auth headers.
    user_id = await create_test_user(
        team_id=team_id,
        name=name,
        email=email,
        role=role,
        is_active=user_active,
    )
    key_id, raw_key, key_prefix, key_hash = generate_api_key()
    async with SessionLocal() as session:
        session.add(
            ApiKey(
                id=key_id,
                user_id=user_id,
                team_id=team_id,
                key_prefix=key_prefix,
                key_hash=key_hash,
                name="test-key",
                expires_at=key_expires_at,
                revoked_at=_utc_now() if key_revoked else None,
            )
        )
        await session.commit()
    return {"Authorization": f"Bearer {raw_key}"}, user_id


async def create_test_provisioning_token(
    *,
    team_id: str,
    actor_user_id: str,
    revoked: bool = False,
    expires_at: datetime | None = None,
) -> tuple[dict[str, str], str]:
    token_id, raw_token, token_prefix, token_hash = generate_provisioning_token()
    async with SessionLocal() as session:
        session.add(
            ProvisioningToken(
                id=token_id,
                team_id=team_id,
                actor_user_id=actor_user_id,
                token_prefix=token_prefix,
                token_hash=token_hash,
                expires_at=expires_at,
                revoked_at=_utc_now() if revoked else None,
            )
        )
        await session.commit()
    return {"Authorization": f"Bearer {raw_token}"}, token_id
