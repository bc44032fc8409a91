# titlequote/adapters/repos/locations.py
from __future__ import annotations

import json
import logging
from decimal import Decimal
from typing import Any, Protocol

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ...domain.errors import NotFound, StorageUnavailable
from ...domain.parsing import to_decimal
from ...domain.types import LocationInfo, StateFeeSchedule
from ...models import StateFee, ZipCode

log = logging.getLogger(__name__)


class LocationLookup(Protocol):
    async def lookup_location(self, postal_code: str) -> LocationInfo: ...
    async def lookup_state_fees(self, state_code: str) -> StateFeeSchedule | None: ...


def schedule_from_json(state_code: str, fees_json: str | None) -> StateFeeSchedule:
    raw: dict[str, Any] = json.loads(fees_json or "{}")
    fees: dict[str, Decimal | None] = {}
    for key, value in raw.items():
        amount = to_decimal(value)
        # negative or junk entries count as absent
        fees[key] = amount if amount is not None and amount >= 0 else None
    return StateFeeSchedule(state_code=state_code, fees=fees)


class SqlAlchemyLocationLookup:
    def __init__(self, session_maker: async_sessionmaker[AsyncSession]) -> None:
        self.session_maker = session_maker

    async def lookup_location(self, postal_code: str) -> LocationInfo:
        try:
            async with self.session_maker() as session:
                row = await session.get(ZipCode, postal_code)
        except (SQLAlchemyError, OSError) as e:
            raise StorageUnavailable("location_lookup_failed") from e
        if row is None:
            raise NotFound(f"Zip code {postal_code} not found", details=postal_code)
        return LocationInfo(city=row.city, county=row.county_name, state_code=row.state_id)

    async def lookup_state_fees(self, state_code: str) -> StateFeeSchedule | None:
        """A missing or unreadable schedule is not fatal; the quote goes out without it."""
        try:
            async with self.session_maker() as session:
                row = (
                    await session.execute(select(StateFee).where(StateFee.state_code == state_code))
                ).scalars().first()
        except (SQLAlchemyError, OSError) as e:
            log.error("state fee lookup failed state=%s err=%r", state_code, e)
            return None
        if row is None:
            return None
        try:
            return schedule_from_json(row.state_code, row.fees_json)
        except ValueError as e:
            log.error("state fee row unreadable state=%s err=%r", state_code, e)
            return None


async def upsert_zip(session: AsyncSession, *, zip: str, city: str, county_name: str, state_id: str) -> None:
    row = await session.get(ZipCode, zip)
    if row:
        row.city = city
        row.county_name = county_name
        row.state_id = state_id
    else:
        session.add(ZipCode(zip=zip, city=city, county_name=county_name, state_id=state_id))
    await session.flush()


async def upsert_state_fees(session: AsyncSession, *, state_code: str, fees: dict[str, Any]) -> None:
    row = await session.get(StateFee, state_code)
    payload = json.dumps(fees)
    if row:
        row.fees_json = payload
    else:
        session.add(StateFee(state_code=state_code, fees_json=payload))
    await session.flush()
