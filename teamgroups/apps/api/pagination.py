from __future__ import annotations

from typing import Sequence, TypeVar

from pydantic import BaseModel, Field, model_validator

from teamgroups.core.config import get_settings


T = TypeVar("T")


class PaginationParams(BaseModel):
    # Offset pagination fields shared by list request bodies.
    offset: int = Field(default=0, ge=0)
    limit: int | None = Field(default=None, ge=1)

    @model_validator(mode="after")
    def bound_limit(self) -> "PaginationParams":
        settings = get_settings()
        if self.limit is None:
            self.limit = settings.default_page_size
        self.limit = min(self.limit, settings.max_page_size)
        return self


class PaginationMeta(BaseModel):
    offset: int
    limit: int
    next_offset: int | None = None


def paginate(items: Sequence[T], *, offset: int, limit: int) -> tuple[list[T], PaginationMeta]:
    """Trim a ``limit + 1`` fetch to one page and compute the next offset."""
    next_offset = None
    page = list(items)
    if len(page) > limit:
        page = page[:limit]
        next_offset = offset + limit
    return page, PaginationMeta(offset=offset, limit=limit, next_offset=next_offset)
