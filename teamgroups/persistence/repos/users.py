from __future__ import annotations

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from teamgroups.domain.models import Team, User


async def get_user(session: AsyncSession, user_id: str) -> User | None:
    result = await session.execute(select(User).where(User.id == user_id))
    return result.scalar_one_or_none()


async def get_team(session: AsyncSession, team_id: str) -> Team | None:
    result = await session.execute(select(Team).where(Team.id == team_id))
    return result.scalar_one_or_none()


async def list_users_by_email(session: AsyncSession, team_id: str, emails: list[str]) -> list[User]:
    # Match emails case-insensitively within one team in a single round trip.
    normalized = sorted({email.strip().lower() for email in emails if email and email.strip()})
    if not normalized:
        return []
    result = await session.execute(
        select(User)
        .where(User.team_id == team_id, func.lower(User.email).in_(normalized))
        .order_by(User.email, User.id)
    )
    return list(result.scalars().all())
