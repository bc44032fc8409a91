# titlequote/service_layer/reference_seed.py
from __future__ import annotations

from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from ..adapters.repos.locations import upsert_state_fees, upsert_zip

REFERENCE_ZIPS: tuple[dict[str, str], ...] = (
    {"zip": "10001", "city": "New York", "county_name": "New York", "state_id": "NY"},
    {"zip": "02801", "city": "Adamsville", "county_name": "Newport", "state_id": "RI"},
    {"zip": "02837", "city": "Little Compton", "county_name": "Newport", "state_id": "RI"},
    {"zip": "33101", "city": "Miami", "county_name": "Miami-Dade", "state_id": "FL"},
    {"zip": "06103", "city": "Hartford", "county_name": "Hartford", "state_id": "CT"},
)

REFERENCE_STATE_FEES: dict[str, dict[str, Any]] = {
    "NY": {"SettlementFee": 0, "SettlementFeeRefi": 0, "NotaryFee": 25, "ErecordingFee": 15},
    "RI": {"SettlementFee": 650, "SettlementFeeRefi": 450, "TitleCertFee": 150, "ErecordingFee": 10},
    "FL": {
        "SettlementFee": 595,
        "SettlementFeeRefi": 495,
        "SearchFee": 125,
        "ErecordingFee": 10,
        "AbstractorTitleSearch": 200,
        "AbstractorTitleSearchREFI": 150,
    },
    "CT": {"SettlementFee": 750, "SettlementFeeRefi": 550, "AttorneyFee": 500},
}


async def seed_reference(session: AsyncSession) -> dict[str, Any]:
    """
    Idempotent reference seed for ZIP locations and state fee schedules.
    Safe to run multiple times.
    """
    for row in REFERENCE_ZIPS:
        await upsert_zip(session, **row)
    for state_code, fees in REFERENCE_STATE_FEES.items():
        await upsert_state_fees(session, state_code=state_code, fees=fees)

    return {"zips": len(REFERENCE_ZIPS), "stateFees": len(REFERENCE_STATE_FEES)}
