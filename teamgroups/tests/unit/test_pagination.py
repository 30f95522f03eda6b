from __future__ import annotations

import pytest
from pydantic import ValidationError

from teamgroups.apps.api.pagination import PaginationParams, paginate


def test_paginate_trims_extra_row_and_sets_next_offset() -> None:
    page, meta = paginate([1, 2, 3], offset=10, limit=2)
    assert page == [1, 2]
    assert meta.next_offset == 12

    last_page, last_meta = paginate([1], offset=12, limit=2)
    assert last_page == [1]
    assert last_meta.next_offset is None


def test_pagination_params_default_and_cap_limit() -> None:
    assert PaginationParams().limit == 25
    assert PaginationParams(limit=1000).limit == 100


def test_pagination_params_reject_negative_offset() -> None:
    with pytest.raises(ValidationError):
        PaginationParams(offset=-1)
