# titlequote/domain/parsing.py
from __future__ import annotations

import re
from datetime import date, datetime
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any

CENT = Decimal("0.01")

_TRUE = {"true", "1", "yes", "y", "on"}
_FALSE = {"false", "0", "no", "n", "off"}
_TAG_RE = re.compile(r"<[^>]*>")


def to_int(x: Any) -> int | None:
    """Integral values only: '3' and 3.0 pass, '3.5' does not."""
    if x is None or isinstance(x, bool) or x == "":
        return None
    d = to_decimal(x)
    if d is None or d != d.to_integral_value():
        return None
    return int(d)


def to_decimal(x: Any) -> Decimal | None:
    if x is None or isinstance(x, bool):
        return None
    if isinstance(x, Decimal):
        return x if x.is_finite() else None
    if isinstance(x, str):
        x = x.strip().replace(",", "").lstrip("$")
        if not x:
            return None
    try:
        d = Decimal(str(x))
    except (InvalidOperation, ValueError):
        return None
    return d if d.is_finite() else None


def money(x: Any) -> Decimal:
    """Round to cents, half-up. Unparseable input is a caller bug, so it raises."""
    d = to_decimal(x)
    if d is None:
        raise ValueError(f"not a monetary amount: {x!r}")
    return d.quantize(CENT, rounding=ROUND_HALF_UP)


def money_str(x: Any) -> str:
    return f"{money(x):.2f}"


def parse_bool(x: Any) -> bool | None:
    if isinstance(x, bool):
        return x
    if isinstance(x, (int, float)) and x in (0, 1):
        return bool(x)
    if isinstance(x, str):
        v = x.strip().lower()
        if v in _TRUE:
            return True
        if v in _FALSE:
            return False
    return None


def parse_date(x: Any) -> date | None:
    """ISO dates (2024-05-01) or US style (05/01/2024)."""
    if isinstance(x, datetime):
        return x.date()
    if isinstance(x, date):
        return x
    if not isinstance(x, str) or not x.strip():
        return None
    raw = x.strip()
    try:
        return date.fromisoformat(raw[:10])
    except ValueError:
        pass
    try:
        return datetime.strptime(raw, "%m/%d/%Y").date()
    except ValueError:
        return None


def strip_html(text: str | None) -> str:
    if not text:
        return ""
    return " ".join(_TAG_RE.sub(" ", text).split())


def normalize_postal_code(raw: Any) -> str | None:
    """'2801' -> '02801', '10001-1234' -> '10001'. None when it can't be a US ZIP."""
    if raw is None or isinstance(raw, bool):
        return None
    if isinstance(raw, int):
        raw = str(raw)
    if not isinstance(raw, str):
        return None
    v = raw.strip().split("-", 1)[0]
    if not v.isdigit() or len(v) > 5:
        return None
    return v.zfill(5)
