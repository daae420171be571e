"""
metrics_gateway.api.__main__

Entrypoint for running the gateway via `python -m metrics_gateway.api`.

Responsibilities:
- Load settings and build the app.
- Start uvicorn in a single process (caches and the service session are per process).
"""

from __future__ import annotations

import uvicorn

from metrics_gateway.api.app import create_app
from metrics_gateway.settings import get_settings


def main() -> None:
    settings = get_settings()
    uvicorn.run(
        create_app(settings=settings),
        host=settings.api_host,
        port=settings.api_port,
        workers=1,
        log_config=None,  # structlog
    )


if __name__ == "__main__":
    main()
