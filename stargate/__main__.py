"""Run the gateway with uvicorn: ``python -m stargate``."""
from __future__ import annotations

import uvicorn

from .app.config import settings


def main() -> None:
    uvicorn.run(
        "stargate.app.main:app",
        host="0.0.0.0",
        port=settings.port,
        log_level=settings.effective_log_level.lower(),
        access_log=False,
    )


if __name__ == "__main__":
    main()
