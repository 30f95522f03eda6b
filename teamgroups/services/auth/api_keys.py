from __future__ import annotations

import hashlib
import secrets
from uuid import uuid4


ROLE_ORDER: dict[str, int] = {
    "viewer": 1,
    "member": 2,
    "admin": 3,
}


def normalize_role(role: str) -> str:
    # Enforce a stable, lowercased role vocabulary for policy checks.
    normalized = role.strip().lower()
    if normalized not in ROLE_ORDER:
        raise ValueError(f"Unsupported role: {role}")
    return normalized


def role_allows(*, role: str, minimum_role: str) -> bool:
    return ROLE_ORDER.get(role, 0) >= ROLE_ORDER.get(minimum_role, 0)


def hash_secret(raw_secret: str) -> str:
    # Use SHA-256 for deterministic, non-reversible credential storage.
    return hashlib.sha256(raw_secret.encode("utf-8")).hexdigest()


def _generate(prefix: str, resolved_id: str) -> tuple[str, str, str, str]:
    secret = secrets.token_urlsafe(32)
    raw = f"{prefix}{resolved_id}_{secret}"
    return resolved_id, raw, raw[:12], hash_secret(raw)


def generate_api_key(*, key_id: str | None = None) -> tuple[str, str, str, str]:
    # Embed the key id in the token so operators can trace secrets safely.
    return _generate("tgk_", key_id or uuid4().hex)


def generate_provisioning_token(*, token_id: str | None = None) -> tuple[str, str, str, str]:
    return _generate("tgprov_", token_id or uuid4().hex)
