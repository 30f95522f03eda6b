from __future__ import annotations

from typing import Any, Callable, Iterable, Protocol

from teamgroups.core.errors import AuthorizationError
from teamgroups.domain.models import Group, Team, User
from teamgroups.domain.views import GroupView
from teamgroups.services.auth.api_keys import role_allows


GROUP_ABILITIES = ("read", "update", "delete")


class PrincipalLike(Protocol):
    # Minimal actor shape the policy layer needs.
    user_id: str
    team_id: str
    role: str


def _same_team(actor: PrincipalLike, subject: Any) -> bool:
    return bool(subject.team_id) and subject.team_id == actor.team_id


def _group_policy(actor: PrincipalLike, action: str, group: Group | GroupView) -> bool:
    if not _same_team(actor, group):
        return False
    if action == "read":
        return True
    if action in {"update", "delete"}:
        return role_allows(role=actor.role, minimum_role="admin")
    return False


def _user_policy(actor: PrincipalLike, action: str, user: User) -> bool:
    if action == "read":
        return _same_team(actor, user)
    return False


def _team_policy(actor: PrincipalLike, action: str, team: Team) -> bool:
    if team.id != actor.team_id:
        return False
    if action == "createGroup":
        return role_allows(role=actor.role, minimum_role="admin")
    return False


_POLICIES: list[tuple[tuple[type, ...], Callable[[PrincipalLike, str, Any], bool]]] = [
    ((Group, GroupView), _group_policy),
    ((User,), _user_policy),
    ((Team,), _team_policy),
]


def can(actor: PrincipalLike, action: str, subject: Any) -> bool:
    if subject is None:
        return False
    for types, policy in _POLICIES:
        if isinstance(subject, types):
            return policy(actor, action, subject)
    return False


def authorize(actor: PrincipalLike, action: str, subject: Any) -> None:
    """Raise AuthorizationError unless ``actor`` may perform ``action`` on ``subject``."""
    if not can(actor, action, subject):
        subject_type = type(subject).__name__.lower() if subject is not None else None
        raise AuthorizationError(action, subject_type)


def serialize_policies(actor: PrincipalLike, groups: Iterable[Group | GroupView]) -> list[dict[str, Any]]:
    # Expose per-group abilities so clients can hide controls the actor cannot use.
    return [
        {
            "id": group.id,
            "abilities": {action: can(actor, action, group) for action in GROUP_ABILITIES},
        }
        for group in groups
    ]
