from __future__ import annotations

import os
import tempfile

# Point the engine at a throwaway sqlite file before any teamgroups module builds it.
os.environ.setdefault(
    "DATABASE_URL",
    f"sqlite+aiosqlite:///{tempfile.gettempdir()}/teamgroups-test-{os.getpid()}.db",
)
os.environ.setdefault("RATE_LIMIT_ENABLED", "false")

import pytest  # noqa: E402

from teamgroups.apps.api.rate_limit import reset_rate_limiter_state  # noqa: E402
from teamgroups.domain.models import Base  # noqa: E402
from teamgroups.persistence.db import engine  # noqa: E402


@pytest.fixture(autouse=True)
async def fresh_schema() -> None:
    # Rebuild the schema per test so rows never leak between cases.
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)
    yield
    # Dispose the async engine to prevent cross-loop connection reuse between tests.
    await engine.dispose()


@pytest.fixture(autouse=True)
def reset_rate_limiter() -> None:
    reset_rate_limiter_state()
    yield
    reset_rate_limiter_state()
