from __future__ import annotations


class TeamGroupsError(Exception):
    """Base error for teamgroups."""


class NotFoundError(TeamGroupsError):
    """Referenced group or user does not exist (or is not visible)."""


class AuthorizationError(TeamGroupsError):
    """Policy denied the requested action."""

    def __init__(self, action: str, subject_type: str | None = None) -> None:
        super().__init__(f"{action} denied on {subject_type or 'subject'}")
        self.action = action
        self.subject_type = subject_type


class ProvisioningPayloadError(TeamGroupsError):
    """Provisioning PATCH body does not match the expected operation shape."""


class DatabaseError(TeamGroupsError):
    """Database layer failure."""
