# titlequote/adapters/repos/sessions.py
from __future__ import annotations

import json
import logging
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Protocol

from sqlalchemy import delete, func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ...config import settings
from ...domain.errors import NotFound, StorageUnavailable
from ...models import QuoteSession
from ..circuit_breaker import CircuitBreaker

log = logging.getLogger(__name__)

Record = dict[str, Any]

# Keys the store owns; callers can read them but never write them.
_META_KEYS = ("sessionId", "createdAt", "updatedAt", "expiresAt")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _naive(dt: datetime) -> datetime:
    return dt.astimezone(timezone.utc).replace(tzinfo=None)


def _aware(dt: datetime) -> datetime:
    # SQLite hands back naive datetimes; they are UTC.
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def _strip_meta(data: Record) -> Record:
    return {k: v for k, v in data.items() if k not in _META_KEYS}


def new_session_id() -> str:
    return uuid.uuid4().hex


class SessionStore(Protocol):
    async def create(self, initial: Record) -> str: ...
    async def get(self, session_id: str) -> Record: ...
    async def update(self, session_id: str, partial: Record) -> None: ...
    async def delete(self, session_id: str) -> None: ...
    async def purge_expired(self) -> int: ...
    async def count(self) -> int: ...


# -----------------------------
# Primary: SQL table
# -----------------------------
class SqlAlchemySessionStore:
    def __init__(
        self,
        session_maker: async_sessionmaker[AsyncSession],
        *,
        ttl_hours: int | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.session_maker = session_maker
        self.ttl = timedelta(hours=ttl_hours if ttl_hours is not None else settings.SESSION_TTL_HOURS)
        self.clock = clock

    @staticmethod
    def _record(row: QuoteSession) -> Record:
        data = json.loads(row.data_json or "{}")
        data["sessionId"] = row.session_id
        data["createdAt"] = _aware(row.created_at).isoformat()
        data["updatedAt"] = _aware(row.updated_at).isoformat()
        data["expiresAt"] = _aware(row.expires_at).isoformat()
        return data

    async def _live_row(self, session: AsyncSession, session_id: str) -> QuoteSession:
        row = await session.get(QuoteSession, session_id)
        if row is None or _aware(row.expires_at) <= self.clock():
            raise NotFound("session_not_found", details=session_id)
        return row

    async def create(self, initial: Record) -> str:
        session_id = initial.get("sessionId") or new_session_id()
        now = self.clock()
        data = _strip_meta(initial)
        try:
            async with self.session_maker() as session:
                session.add(
                    QuoteSession(
                        session_id=session_id,
                        status=str(data.get("state", "created")),
                        data_json=json.dumps(data),
                        created_at=_naive(now),
                        updated_at=_naive(now),
                        expires_at=_naive(now + self.ttl),
                    )
                )
                await session.commit()
        except (SQLAlchemyError, OSError) as e:
            raise StorageUnavailable("session_store_create_failed") from e
        return session_id

    async def get(self, session_id: str) -> Record:
        try:
            async with self.session_maker() as session:
                row = await self._live_row(session, session_id)
                return self._record(row)
        except (SQLAlchemyError, OSError) as e:
            raise StorageUnavailable("session_store_read_failed") from e

    async def update(self, session_id: str, partial: Record) -> None:
        try:
            async with self.session_maker() as session:
                row = await self._live_row(session, session_id)
                data = json.loads(row.data_json or "{}")
                data.update(_strip_meta(partial))
                row.data_json = json.dumps(data)
                row.status = str(data.get("state", row.status))
                row.updated_at = _naive(self.clock())
                await session.commit()
        except (SQLAlchemyError, OSError) as e:
            raise StorageUnavailable("session_store_update_failed") from e

    async def delete(self, session_id: str) -> None:
        try:
            async with self.session_maker() as session:
                await session.execute(delete(QuoteSession).where(QuoteSession.session_id == session_id))
                await session.commit()
        except (SQLAlchemyError, OSError) as e:
            raise StorageUnavailable("session_store_delete_failed") from e

    async def purge_expired(self) -> int:
        try:
            async with self.session_maker() as session:
                res = await session.execute(
                    delete(QuoteSession).where(QuoteSession.expires_at <= _naive(self.clock()))
                )
                await session.commit()
                return int(res.rowcount or 0)
        except (SQLAlchemyError, OSError) as e:
            raise StorageUnavailable("session_store_purge_failed") from e

    async def count(self) -> int:
        try:
            async with self.session_maker() as session:
                return int(
                    (
                        await session.execute(
                            select(func.count())
                            .select_from(QuoteSession)
                            .where(QuoteSession.expires_at > _naive(self.clock()))
                        )
                    ).scalar_one()
                )
        except (SQLAlchemyError, OSError) as e:
            raise StorageUnavailable("session_store_count_failed") from e


# -----------------------------
# Secondary: process memory
# -----------------------------
class InMemorySessionStore:
    """
    Same contract as the SQL store, but nothing survives the process.
    Only meant to carry negotiations through a primary-store outage.
    """

    def __init__(self, *, ttl_hours: int | None = None, clock: Callable[[], datetime] = _utcnow) -> None:
        self.ttl = timedelta(hours=ttl_hours if ttl_hours is not None else settings.SESSION_TTL_HOURS)
        self.clock = clock
        self._sessions: dict[str, Record] = {}

    def __contains__(self, session_id: object) -> bool:
        return session_id in self._sessions

    def _live(self, session_id: str) -> Record:
        rec = self._sessions.get(session_id)
        if rec is None:
            raise NotFound("session_not_found", details=session_id)
        if datetime.fromisoformat(rec["expiresAt"]) <= self.clock():
            self._sessions.pop(session_id, None)
            raise NotFound("session_not_found", details=session_id)
        return rec

    async def create(self, initial: Record) -> str:
        session_id = initial.get("sessionId") or new_session_id()
        now = self.clock()
        rec = _strip_meta(initial)
        rec.update(
            {
                "sessionId": session_id,
                "createdAt": now.isoformat(),
                "updatedAt": now.isoformat(),
                "expiresAt": (now + self.ttl).isoformat(),
            }
        )
        self._sessions[session_id] = rec
        return session_id

    async def get(self, session_id: str) -> Record:
        return json.loads(json.dumps(self._live(session_id)))

    async def update(self, session_id: str, partial: Record) -> None:
        rec = self._live(session_id)
        rec.update(json.loads(json.dumps(_strip_meta(partial))))
        rec["updatedAt"] = self.clock().isoformat()

    async def delete(self, session_id: str) -> None:
        self._sessions.pop(session_id, None)

    async def purge_expired(self) -> int:
        now = self.clock()
        expired = [sid for sid, rec in self._sessions.items() if datetime.fromisoformat(rec["expiresAt"]) <= now]
        for sid in expired:
            self._sessions.pop(sid, None)
        return len(expired)

    async def count(self) -> int:
        return len(self._sessions)


# -----------------------------
# Breaker-selected pair
# -----------------------------
class FallbackSessionStore:
    """
    Primary store behind a circuit breaker, in-memory store behind that.

    While the breaker is open every call goes to memory. Sessions created in
    memory stay there for their lifetime, so reads and updates check memory
    first. StorageUnavailable only escapes when neither side can serve.
    """

    def __init__(
        self,
        primary: SessionStore,
        secondary: InMemorySessionStore | None = None,
        *,
        breaker: CircuitBreaker | None = None,
    ) -> None:
        self.primary = primary
        self.secondary = secondary or InMemorySessionStore()
        self.breaker = breaker or CircuitBreaker(
            fail_threshold=settings.STORE_CIRCUIT_FAIL_THRESHOLD,
            reset_s=settings.STORE_CIRCUIT_RESET_S,
        )

    def _primary_down(self, op: str, e: StorageUnavailable) -> None:
        self.breaker.on_failure()
        log.warning("session store primary failed op=%s breaker=%s err=%r", op, self.breaker.state, e.__cause__ or e)

    async def create(self, initial: Record) -> str:
        if not self.breaker.is_open():
            try:
                sid = await self.primary.create(initial)
                self.breaker.on_success()
                return sid
            except StorageUnavailable as e:
                self._primary_down("create", e)
        sid = await self.secondary.create(initial)
        log.warning("session %s created in memory fallback", sid)
        return sid

    async def get(self, session_id: str) -> Record:
        if session_id in self.secondary:
            return await self.secondary.get(session_id)
        if self.breaker.is_open():
            raise StorageUnavailable("session_store_unavailable", details=session_id)
        try:
            rec = await self.primary.get(session_id)
        except StorageUnavailable as e:
            self._primary_down("get", e)
            raise
        self.breaker.on_success()
        return rec

    async def update(self, session_id: str, partial: Record) -> None:
        if session_id in self.secondary:
            await self.secondary.update(session_id, partial)
            return
        if self.breaker.is_open():
            raise StorageUnavailable("session_store_unavailable", details=session_id)
        try:
            await self.primary.update(session_id, partial)
        except StorageUnavailable as e:
            self._primary_down("update", e)
            raise
        self.breaker.on_success()

    async def delete(self, session_id: str) -> None:
        await self.secondary.delete(session_id)
        if self.breaker.is_open():
            return
        try:
            await self.primary.delete(session_id)
        except StorageUnavailable as e:
            self._primary_down("delete", e)

    async def purge_expired(self) -> int:
        purged = await self.secondary.purge_expired()
        if self.breaker.is_open():
            return purged
        try:
            purged += await self.primary.purge_expired()
            self.breaker.on_success()
        except StorageUnavailable as e:
            self._primary_down("purge", e)
        return purged

    async def count(self) -> int:
        total = await self.secondary.count()
        if not self.breaker.is_open():
            try:
                total += await self.primary.count()
            except StorageUnavailable as e:
                self._primary_down("count", e)
        return total

    async def stats(self) -> dict[str, Any]:
        primary: int | None = None
        if not self.breaker.is_open():
            try:
                primary = await self.primary.count()
            except StorageUnavailable as e:
                self._primary_down("stats", e)
        return {
            "primarySessions": primary,
            "inMemorySessions": await self.secondary.count(),
            "breaker": self.breaker.state,
        }
