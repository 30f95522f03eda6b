from __future__ import annotations

import pytest

from teamgroups.core.errors import ProvisioningPayloadError
from teamgroups.domain.models import User
from teamgroups.services.provisioning import (
    OPERATION_ADD,
    OPERATION_REMOVE,
    ProvisioningOperation,
    parse_patch_payload,
    plan_membership_changes,
    requested_emails,
)


def _user(user_id: str, email: str) -> User:
    return User(id=user_id, team_id="team-1", name=user_id, email=email, role="member")


def test_parse_patch_payload_accepts_members_operations() -> None:
    payload = {
        "schemas": ["urn:ietf:params:scim:api:messages:2.0:PatchOp"],
        "Operations": [
            {"op": "Add", "path": "members", "value": [{"email": " a@x.com ", "display": "A"}]},
            {"op": "remove", "value": [{"email": "b@x.com"}]},
        ],
    }

    operations = parse_patch_payload(payload)

    assert operations == [
        ProvisioningOperation(operation=OPERATION_ADD, emails=("a@x.com",)),
        ProvisioningOperation(operation=OPERATION_REMOVE, emails=("b@x.com",)),
    ]


@pytest.mark.parametrize(
    "payload",
    [
        [],
        {},
        {"Operations": []},
        {"Operations": "add"},
        {"Operations": ["add"]},
        {"Operations": [{"op": "replace", "value": [{"email": "a@x.com"}]}]},
        {"Operations": [{"op": "add", "path": "displayName", "value": [{"email": "a@x.com"}]}]},
        {"Operations": [{"op": "add", "value": {"email": "a@x.com"}}]},
        {"Operations": [{"op": "add", "value": [{"value": "user-1"}]}]},
        {"Operations": [{"op": "add", "value": [{"email": "  "}]}]},
    ],
)
def test_parse_patch_payload_rejects_malformed_shapes(payload: object) -> None:
    with pytest.raises(ProvisioningPayloadError):
        parse_patch_payload(payload)


def test_requested_emails_dedupes_case_insensitively() -> None:
    operations = [
        ProvisioningOperation(operation=OPERATION_ADD, emails=("A@x.com", "b@x.com")),
        ProvisioningOperation(operation=OPERATION_REMOVE, emails=("a@X.com",)),
    ]
    assert requested_emails(operations) == ["a@x.com", "b@x.com"]


def test_plan_skips_existing_members_and_unknown_emails() -> None:
    alice = _user("u-alice", "alice@x.com")
    bob = _user("u-bob", "bob@x.com")
    operations = [
        ProvisioningOperation(
            operation=OPERATION_ADD,
            emails=("alice@x.com", "bob@x.com", "ghost@x.com"),
        )
    ]

    intents = plan_membership_changes(
        operations,
        users_by_email={"alice@x.com": alice, "bob@x.com": bob},
        member_user_ids={"u-alice"},
    )

    assert [(intent.action, intent.user.id) for intent in intents] == [(OPERATION_ADD, "u-bob")]


def test_plan_skips_removing_non_members() -> None:
    alice = _user("u-alice", "alice@x.com")
    operations = [ProvisioningOperation(operation=OPERATION_REMOVE, emails=("ALICE@x.com",))]

    intents = plan_membership_changes(
        operations,
        users_by_email={"alice@x.com": alice},
        member_user_ids=set(),
    )

    assert intents == []


def test_plan_applies_operations_in_order() -> None:
    alice = _user("u-alice", "alice@x.com")
    operations = [
        ProvisioningOperation(operation=OPERATION_ADD, emails=("alice@x.com", "alice@x.com")),
        ProvisioningOperation(operation=OPERATION_REMOVE, emails=("alice@x.com",)),
    ]

    intents = plan_membership_changes(
        operations,
        users_by_email={"alice@x.com": alice},
        member_user_ids=set(),
    )

    assert [intent.action for intent in intents] == [OPERATION_ADD, OPERATION_REMOVE]
