from __future__ import annotations

import uvicorn

from teamgroups.apps.api.main import create_app
from teamgroups.core.config import get_settings


def main() -> None:
    # Run the groups API with env-driven bind settings for compose and local use.
    settings = get_settings()
    uvicorn.run(create_app(), host=settings.api_host, port=settings.api_port)


if __name__ == "__main__":
    main()
