# titlequote/main.py
from __future__ import annotations

import logging

from .entrypoints.fastapi_app import create_app


def _quiet_logging() -> None:
    logging.basicConfig(
        level=logging.INFO,
        format="%(levelname)s:%(name)s:%(message)s",
    )

    # Quiet the usual offenders
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("apscheduler").setLevel(logging.WARNING)
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)


_quiet_logging()

# uvicorn titlequote.main:app
app = create_app()
