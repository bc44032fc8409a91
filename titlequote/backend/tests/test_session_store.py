import pytest

from conftest import FrozenClock
from titlequote.adapters.circuit_breaker import CircuitBreaker
from titlequote.adapters.repos.sessions import (
    FallbackSessionStore,
    InMemorySessionStore,
    SqlAlchemySessionStore,
)
from titlequote.domain.errors import NotFound, StorageUnavailable
from titlequote.jobs.scheduler import build_scheduler, sweep_expired_sessions


class BrokenStore:
    """Primary that is down for every operation."""

    def __init__(self) -> None:
        self.calls = 0

    async def _fail(self, *args, **kwargs):
        self.calls += 1
        raise StorageUnavailable("primary_down")

    create = get = update = delete = purge_expired = count = _fail


@pytest.mark.asyncio
async def test_sql_store_create_get_update_delete(async_session_maker, clock):
    store = SqlAlchemySessionStore(async_session_maker, ttl_hours=24, clock=clock)

    sid = await store.create({"state": "created", "round": 0})
    rec = await store.get(sid)
    assert rec["state"] == "created"
    assert rec["sessionId"] == sid
    assert rec["expiresAt"] == "2024-05-02T12:00:00+00:00"

    clock.advance(minutes=5)
    await store.update(sid, {"state": "pending_answers", "createdAt": "tampered"})
    rec = await store.get(sid)
    assert rec["state"] == "pending_answers"
    assert rec["round"] == 0
    assert rec["createdAt"] == "2024-05-01T12:00:00+00:00"
    assert rec["updatedAt"] == "2024-05-01T12:05:00+00:00"

    await store.delete(sid)
    await store.delete(sid)
    with pytest.raises(NotFound):
        await store.get(sid)
    with pytest.raises(NotFound):
        await store.update(sid, {"state": "completed"})


@pytest.mark.asyncio
async def test_sql_store_expiry(async_session_maker, clock):
    store = SqlAlchemySessionStore(async_session_maker, ttl_hours=24, clock=clock)
    sid = await store.create({"state": "created"})

    clock.advance(hours=24)

    with pytest.raises(NotFound):
        await store.get(sid)
    assert await store.count() == 0
    assert await store.purge_expired() == 1


@pytest.mark.asyncio
async def test_in_memory_store_isolates_callers():
    store = InMemorySessionStore(ttl_hours=1, clock=FrozenClock())
    sid = await store.create({"questions": [{"id": "a"}]})

    rec = await store.get(sid)
    rec["questions"].append({"id": "b"})

    assert (await store.get(sid))["questions"] == [{"id": "a"}]


@pytest.mark.asyncio
async def test_fallback_store_serves_from_memory_when_primary_is_down():
    primary = BrokenStore()
    store = FallbackSessionStore(primary, breaker=CircuitBreaker(fail_threshold=2, reset_s=60))

    sid = await store.create({"state": "created"})
    await store.update(sid, {"state": "completed"})

    assert (await store.get(sid))["state"] == "completed"
    assert sid in store.secondary

    # second create failure opens the breaker; the third never reaches the primary
    await store.create({"state": "created"})
    calls = primary.calls
    await store.create({"state": "created"})
    assert primary.calls == calls
    assert store.breaker.state == "open"

    stats = await store.stats()
    assert stats == {"primarySessions": None, "inMemorySessions": 3, "breaker": "open"}

    # a session the memory side never saw cannot be served while the primary is down
    with pytest.raises(StorageUnavailable):
        await store.get("unknown")


@pytest.mark.asyncio
async def test_fallback_store_uses_primary_when_healthy(async_session_maker, clock):
    store = FallbackSessionStore(SqlAlchemySessionStore(async_session_maker, clock=clock))

    sid = await store.create({"state": "created"})

    assert sid not in store.secondary
    assert (await store.stats())["primarySessions"] == 1


def test_breaker_half_opens_after_reset():
    t = [0.0]
    breaker = CircuitBreaker(fail_threshold=2, reset_s=10, clock=lambda: t[0])

    breaker.on_failure()
    assert breaker.state == "closed"
    breaker.on_failure()
    assert breaker.is_open()

    t[0] = 11
    assert breaker.state == "half_open"
    assert not breaker.is_open()
    breaker.on_success()
    assert breaker.state == "closed"


@pytest.mark.asyncio
async def test_sweep_tolerates_storage_outage():
    assert await sweep_expired_sessions(BrokenStore()) == 0


@pytest.mark.asyncio
async def test_scheduler_registers_sweep_job():
    sched = build_scheduler(InMemorySessionStore(), interval_minutes=5)
    job = sched.get_job("sweep_expired_sessions")
    assert job is not None
