from __future__ import annotations

import argparse
import asyncio
from datetime import datetime, timedelta, timezone
import sys

from teamgroups.domain.models import ProvisioningToken, User
from teamgroups.persistence.db import SessionLocal
from teamgroups.services.audit import record_event
from teamgroups.services.auth.api_keys import generate_provisioning_token


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Issue a provisioning token for identity-provider membership sync"
    )
    parser.add_argument("--team", required=True, help="Team identifier")
    parser.add_argument(
        "--actor-user-id",
        required=True,
        help="User recorded as creator of provisioned memberships",
    )
    parser.add_argument("--expires-in-days", type=int, default=None, help="Optional lifetime")
    return parser


async def _create_token(args: argparse.Namespace) -> int:
    token_id, raw_token, token_prefix, token_hash = generate_provisioning_token()
    expires_at = None
    if args.expires_in_days:
        expires_at = datetime.now(timezone.utc) + timedelta(days=args.expires_in_days)

    async with SessionLocal() as session:
        actor = await session.get(User, args.actor_user_id)
        if actor is None or actor.team_id != args.team:
            raise ValueError("Actor user must exist in the requested team")
        session.add(
            ProvisioningToken(
                id=token_id,
                team_id=args.team,
                actor_user_id=actor.id,
                token_prefix=token_prefix,
                token_hash=token_hash,
                expires_at=expires_at,
            )
        )
        await record_event(
            session=session,
            team_id=args.team,
            actor_type="system",
            actor_id="create_provisioning_token",
            event_type="auth.provisioning_credential.created",
            resource_type="provisioning_credential",
            resource_id=token_id,
            metadata={"actor_user_id": actor.id, "prefix": token_prefix},
            commit=True,
            best_effort=False,
        )

    print("Provisioning token created:")
    print(f"  token_id: {token_id}")
    print(f"  token_prefix: {token_prefix}")
    print("  token: ")
    print(f"    {raw_token}")
    return 0


def main() -> int:
    parser = _build_parser()
    args = parser.parse_args()
    try:
        return asyncio.run(_create_token(args))
    except Exception as exc:  # noqa: BLE001 - surface provisioning failures clearly
        print(f"create_provisioning_token failed: {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
