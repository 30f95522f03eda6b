from __future__ import annotations

import argparse
import asyncio
import sys
from uuid import uuid4

from teamgroups.domain.models import ApiKey, Team, User
from teamgroups.persistence.db import SessionLocal
from teamgroups.services.audit import record_event
from teamgroups.services.auth.api_keys import generate_api_key, normalize_role


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Create an API key for a workspace user")
    parser.add_argument("--team", required=True, help="Team identifier")
    parser.add_argument("--role", required=True, help="Role: viewer|member|admin")
    parser.add_argument("--name", required=True, help="Key label for auditing")
    parser.add_argument("--user-id", default=None, help="Existing user id to attach")
    parser.add_argument("--user-name", default=None, help="Display name for a new user")
    parser.add_argument("--email", default=None, help="Optional user email")
    return parser


async def _create_key(args: argparse.Namespace) -> int:
    role = normalize_role(args.role)
    user_id = args.user_id or uuid4().hex
    key_id, raw_key, key_prefix, key_hash = generate_api_key()

    async with SessionLocal() as session:
        team = await session.get(Team, args.team)
        if team is None:
            session.add(Team(id=args.team, name=args.team))
        user = await session.get(User, user_id)
        if user is None:
            user = User(
                id=user_id,
                team_id=args.team,
                name=args.user_name or args.email or user_id,
                email=args.email,
                role=role,
                is_active=True,
            )
            session.add(user)
        else:
            # Keys never move a user across teams.
            if user.team_id != args.team:
                raise ValueError("User team_id does not match requested team")
            if user.role != role:
                user.role = role
            if args.email and user.email != args.email:
                user.email = args.email
        # Flush the team and user rows before inserting the key to satisfy FK constraints.
        await session.flush()

        session.add(
            ApiKey(
                id=key_id,
                user_id=user.id,
                team_id=user.team_id,
                key_prefix=key_prefix,
                key_hash=key_hash,
                name=args.name,
            )
        )
        await record_event(
            session=session,
            team_id=user.team_id,
            actor_type="system",
            actor_id="create_api_key",
            actor_role=role,
            event_type="auth.api_key.created",
            resource_type="api_key",
            resource_id=key_id,
            metadata={"user_id": user.id, "key_prefix": key_prefix, "key_name": args.name},
            commit=True,
            best_effort=False,
        )

    print("API key created:")
    print(f"  key_id: {key_id}")
    print(f"  user_id: {user_id}")
    print(f"  key_prefix: {key_prefix}")
    print("  api_key: ")
    print(f"    {raw_key}")
    return 0


def main() -> int:
    parser = _build_parser()
    args = parser.parse_args()
    try:
        return asyncio.run(_create_key(args))
    except Exception as exc:  # noqa: BLE001 - surface provisioning failures clearly
        print(f"create_api_key failed: {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
