from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

from teamgroups.domain.models import Group


@dataclass(frozen=True)
class GroupView:
    # Read projection of a group with derived fields recomputed after every write.
    id: str
    team_id: str
    name: str
    created_by_id: str
    created_at: datetime
    updated_at: datetime
    member_count: int

    @classmethod
    def from_group(cls, group: Group, *, member_count: int) -> "GroupView":
        return cls(
            id=group.id,
            team_id=group.team_id,
            name=group.name,
            created_by_id=group.created_by_id,
            created_at=group.created_at,
            updated_at=group.updated_at,
            member_count=member_count,
        )
