from __future__ import annotations

import asyncio

from titlequote.db import async_session_maker, engine
from titlequote.models import Base
from titlequote.service_layer.reference_seed import seed_reference


async def _ensure_schema() -> None:
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def main() -> None:
    await _ensure_schema()

    async with async_session_maker() as session:
        result = await seed_reference(session)
        await session.commit()

    print(f"Seeded reference data. zips={result['zips']} state_fees={result['stateFees']}")


if __name__ == "__main__":
    asyncio.run(main())
