# titlequote/models.py
from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import DateTime, Index, String, Text
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    pass


def utcnow_naive() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


# -----------------------------
# Models
# -----------------------------
class QuoteSession(Base):
    """
    One row per official-quote negotiation.

    The negotiation state itself lives in data_json; status and the timestamps
    are duplicated into columns so the sweep and stats can query them.
    Timestamps are naive UTC (SQLite drops tzinfo anyway).
    """

    __tablename__ = "quote_sessions"
    __table_args__ = (Index("ix_quote_sessions_expires_at", "expires_at"),)

    session_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    status: Mapped[str] = mapped_column(String(32), default="created")
    data_json: Mapped[str] = mapped_column(Text, default="{}")

    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow_naive)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow_naive)
    expires_at: Mapped[datetime] = mapped_column(DateTime)


class ZipCode(Base):
    __tablename__ = "zip_codes"

    zip: Mapped[str] = mapped_column(String(5), primary_key=True)
    city: Mapped[str] = mapped_column(String(128))
    county_name: Mapped[str] = mapped_column(String(128))
    state_id: Mapped[str] = mapped_column(String(2), index=True)


class StateFee(Base):
    __tablename__ = "state_fees"

    state_code: Mapped[str] = mapped_column(String(2), primary_key=True)
    # {"SettlementFee": 450, "SettlementFeeRefi": 350, "NotaryFee": 25, ...}
    fees_json: Mapped[str] = mapped_column(Text, default="{}")
