# titlequote/jobs/scheduler.py
from __future__ import annotations

import asyncio
import logging

from apscheduler.schedulers.asyncio import AsyncIOScheduler

from ..adapters.repos.sessions import SessionStore
from ..config import settings
from ..domain.errors import StorageUnavailable

log = logging.getLogger(__name__)


async def sweep_expired_sessions(store: SessionStore) -> int:
    """Housekeeping only; a failed sweep just waits for the next tick."""
    try:
        purged = await store.purge_expired()
    except StorageUnavailable as e:
        log.warning("session sweep skipped: %r", e.__cause__ or e)
        return 0
    if purged:
        log.info("session sweep purged=%s", purged)
    return purged


def build_scheduler(store: SessionStore, *, interval_minutes: int | None = None) -> AsyncIOScheduler:
    sched = AsyncIOScheduler()

    sched.add_job(
        lambda: asyncio.create_task(sweep_expired_sessions(store)),
        "interval",
        minutes=interval_minutes or settings.SESSION_SWEEP_INTERVAL_MINUTES,
        id="sweep_expired_sessions",
    )

    return sched
