from __future__ import annotations

from datetime import datetime, timezone
from typing import AsyncGenerator

from fastapi import Depends, HTTPException, Request, status
from pydantic import BaseModel
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from teamgroups.core.config import get_settings
from teamgroups.domain.models import ApiKey, User
from teamgroups.persistence.db import get_session
from teamgroups.services.audit import get_request_context, record_event
from teamgroups.services.auth.api_keys import hash_secret, normalize_role


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    # One AsyncSession per request; context manager ensures close on success/error.
    async with get_session() as session:
        yield session


class Principal(BaseModel):
    # Authenticated workspace user resolved from a bearer API key.
    user_id: str
    team_id: str
    role: str
    api_key_id: str


def as_utc(value: datetime) -> datetime:
    # Sqlite hands back naive datetimes; treat them as UTC for comparisons.
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def auth_error(message: str, *, code: str = "AUTH_UNAUTHORIZED") -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail={"code": code, "message": message},
        headers={"WWW-Authenticate": "Bearer"},
    )


def _forbidden_error(message: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_403_FORBIDDEN,
        detail={"code": "AUTH_FORBIDDEN", "message": message},
    )


def parse_bearer_token(header_value: str | None, *, code: str = "AUTH_UNAUTHORIZED") -> str | None:
    if not header_value:
        return None
    parts = header_value.split()
    if len(parts) != 2 or parts[0].lower() != "bearer":
        raise auth_error("Missing or invalid bearer token", code=code)
    return parts[1]


async def _record_auth_failure(
    *,
    request: Request,
    db: AsyncSession,
    error: HTTPException,
    team_id: str | None = None,
    actor_id: str | None = None,
    user_id: str | None = None,
) -> None:
    # Auth telemetry is best effort; a failed write must not mask the auth error.
    request_ctx = get_request_context(request)
    detail = error.detail if isinstance(error.detail, dict) else {}
    await record_event(
        session=db,
        team_id=team_id,
        actor_type="api_key" if actor_id else "anonymous",
        actor_id=actor_id,
        event_type="auth.access.failure",
        outcome="failure",
        resource_type="auth",
        user_id=user_id,
        request_id=request_ctx["request_id"],
        ip_address=request_ctx["ip_address"],
        user_agent=request_ctx["user_agent"],
        metadata={"path": request.url.path, "method": request.method},
        error_code=detail.get("code"),
        commit=True,
        best_effort=True,
    )


async def get_current_principal(
    request: Request,
    db: AsyncSession = Depends(get_db),
) -> Principal:
    settings = get_settings()
    try:
        bearer_token = parse_bearer_token(request.headers.get(settings.auth_api_key_header))
    except HTTPException as exc:
        await _record_auth_failure(request=request, db=db, error=exc)
        raise
    if not bearer_token:
        error = auth_error("Missing API key")
        await _record_auth_failure(request=request, db=db, error=error)
        raise error

    try:
        result = await db.execute(
            select(ApiKey, User)
            .join(User, ApiKey.user_id == User.id)
            .where(ApiKey.key_hash == hash_secret(bearer_token))
        )
    except SQLAlchemyError as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail={"code": "AUTH_UNAVAILABLE", "message": "Authentication unavailable"},
        ) from exc

    row = result.first()
    if row is None:
        error = auth_error("Invalid API key")
        await _record_auth_failure(request=request, db=db, error=error)
        raise error
    api_key, user = row

    rejection: HTTPException | None = None
    if api_key.revoked_at is not None or not user.is_active:
        rejection = auth_error("API key is revoked or inactive")
    elif api_key.expires_at is not None and as_utc(api_key.expires_at) <= datetime.now(timezone.utc):
        rejection = auth_error("API key expired")
    elif api_key.team_id != user.team_id:
        rejection = _forbidden_error("Team mismatch for API key")
    if rejection is not None:
        await _record_auth_failure(
            request=request,
            db=db,
            error=rejection,
            team_id=api_key.team_id,
            actor_id=api_key.id,
            user_id=user.id,
        )
        raise rejection

    try:
        role = normalize_role(user.role)
    except ValueError as exc:
        error = _forbidden_error(str(exc))
        await _record_auth_failure(
            request=request,
            db=db,
            error=error,
            team_id=user.team_id,
            actor_id=api_key.id,
            user_id=user.id,
        )
        raise error from exc

    return Principal(
        user_id=user.id,
        team_id=user.team_id,
        role=role,
        api_key_id=api_key.id,
    )
