from __future__ import annotations

import asyncio
import logging

from titlequote.adapters.repos.sessions import SqlAlchemySessionStore
from titlequote.db import async_session_maker
from titlequote.jobs.scheduler import build_scheduler


def _quiet_logging() -> None:
    # Root defaults
    logging.basicConfig(
        level=logging.INFO,
        format="%(levelname)s:%(name)s:%(message)s",
    )

    # Quiet the usual offenders
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("apscheduler").setLevel(logging.WARNING)


async def main() -> None:
    _quiet_logging()

    # Standalone sweeper: only the durable table, there is no in-memory fallback to sweep here.
    scheduler = build_scheduler(SqlAlchemySessionStore(async_session_maker))
    scheduler.start()
    logging.getLogger(__name__).info("Scheduler started")

    try:
        while True:
            await asyncio.sleep(3600)
    except (KeyboardInterrupt, asyncio.CancelledError):
        scheduler.shutdown()
        logging.getLogger(__name__).info("Scheduler stopped")


if __name__ == "__main__":
    asyncio.run(main())
