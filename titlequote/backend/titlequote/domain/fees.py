# titlequote/domain/fees.py
"""
Business rules applied to parsed fee rows before they are returned.

The rate service's own math is opaque; everything here is local policy
layered on top of it (which lines to drop, which to synthesize).
"""
from __future__ import annotations

from decimal import Decimal
from typing import Any, Iterable

from .parsing import money, money_str
from .types import FeeCategory, FeeLine, FeeRow, QuoteRequestParams, StateFeeSchedule

AG_TAX_POSTAL_CODES = frozenset({"02801", "02837"})
AG_TAX_THRESHOLD = Decimal("450000")
AG_TAX_RATE = Decimal("0.04")

# The rate service's settlement product for these states is broken (FL returns
# closing product 531 that fails to price). The settlement service block is left
# out of the request and the settlement line comes from the state schedule.
DEFECTIVE_SETTLEMENT_CATALOG_STATES = frozenset({"FL"})

OWNER_POLICY = "Title - Owner's Title Insurance"
LENDER_POLICY = "Title - Lender's Title Insurance"
OWNER_POLICY_TAX = "Title - Sales Tax - Owner's Title Insurance"
LENDER_POLICY_TAX = "Title - Sales Tax - Lender's Title Insurance"
SETTLEMENT_FEE = "Title - Settlement Fee"
AGRICULTURAL_TAX = "Agricultural Tax"

STATE_FEE_TITLES: dict[str, str] = {
    "SettlementFee": SETTLEMENT_FEE,
    "ShortFormPolicy": "Title - Short Form Policy",
    "CountersignLender": "Title - Countersign Lender",
    "CountersignOwner": "Title - Countersign Owner",
    "NotaryFee": "Title - Notary Fee",
    "JudgementSearch": "Title - Judgement Search",
    "AttorneyFee": "Title - Attorney Fee",
    "AbstractorTitleSearch": "Title - Abstractor Title Search",
    "AbstractorTitleSearchREFI": "Title - Abstractor Title Search",
    "SearchFee": "Title - Search Fee",
    "ExamFee": "Title - Exam Fee",
    "AbstractCopyFee": "Title - Abstract Copy Fee",
    "AbstractStorageFee": "Title - Abstract Storage Fee",
    "TitleInsuranceBinderFee": "Title - Title Insurance Binder Fee",
    "TitleCertFee": "Title - Title Cert Fee",
    "ErecordingFee": "Title - E-recording Fee",
    "Rec/SvcFee": "Title - Recording Service Fee",
    "TaxReview": "Title - Tax Review",
    "TitleCertOpinion": "Title - Title Cert Opinion",
    "CPLBuyer": "Title - CPL Buyer",
    "CPLSeller": "Title - CPL Seller",
}

_SCHEDULE_NON_FEES = frozenset({"StateCode", "State", "SettlementFee", "SettlementFeeRefi"})
_REFI_EXCLUDED_DISCLOSURES = ("Assignment", "Conveyance Deed")

_ZERO = Decimal("0")


def policy_role(label: str, params: QuoteRequestParams) -> str | None:
    """
    Map a fee label to owner/lender policy roles.

    Refinance requests carry only the loan policy, so FEE_POLICY_1 is the
    lender's policy there.
    """
    label = (label or "").upper()
    first = "lender" if params.is_refinance else "owner"
    return {
        "FEE_POLICY_1": first,
        "FEE_POLICY_2": "lender",
        "FEE_POLICY_1_SALES_TAX_1": f"{first}_tax",
        "FEE_POLICY_2_SALES_TAX_1": "lender_tax",
    }.get(label)


_ROLE_DESCRIPTIONS = {
    "owner": OWNER_POLICY,
    "lender": LENDER_POLICY,
    "owner_tax": OWNER_POLICY_TAX,
    "lender_tax": LENDER_POLICY_TAX,
}


def infer_category(description: str, disclosure_name: str | None = None) -> FeeCategory:
    text = f"{description} {disclosure_name or ''}".lower()
    if "settlement" in text or "closing" in text:
        return FeeCategory.settlement
    if "recording" in text:
        return FeeCategory.recording
    if "tax" in text:
        return FeeCategory.tax
    if "title" in text:
        return FeeCategory.title
    return FeeCategory.other


def _line(description: str, buyer: Decimal, seller: Decimal, *, guaranteed: bool, disclosure: str | None = None) -> FeeLine:
    return FeeLine(
        description=description,
        buyer=money(buyer),
        seller=money(seller),
        category=infer_category(description, disclosure),
        guaranteed=guaranteed,
        disclosure_name=disclosure or None,
    )


def settlement_line(params: QuoteRequestParams, schedule: StateFeeSchedule | None) -> FeeLine | None:
    if schedule is None:
        return None
    amount = schedule.amount("SettlementFeeRefi" if params.is_refinance else "SettlementFee")
    if amount <= 0:
        return None
    return _line(SETTLEMENT_FEE, amount, _ZERO, guaranteed=False)


def agricultural_tax_line(params: QuoteRequestParams) -> FeeLine | None:
    if params.is_refinance or params.postal_code not in AG_TAX_POSTAL_CODES:
        return None
    if params.sale_amount <= AG_TAX_THRESHOLD:
        return None
    tax = (params.sale_amount - AG_TAX_THRESHOLD) * AG_TAX_RATE
    return _line(AGRICULTURAL_TAX, tax, _ZERO, guaranteed=False)


def schedule_extra_lines(params: QuoteRequestParams, schedule: StateFeeSchedule | None) -> list[FeeLine]:
    if schedule is None:
        return []
    out: list[FeeLine] = []
    for key, amount in schedule.fees.items():
        if key in _SCHEDULE_NON_FEES or amount is None or amount == 0:
            continue
        if key == "AbstractorTitleSearch" and params.is_refinance:
            continue
        if key == "AbstractorTitleSearchREFI" and not params.is_refinance:
            continue
        out.append(_line(STATE_FEE_TITLES.get(key, key), amount, _ZERO, guaranteed=False))
    return out


def compose_fee_lines(
    rows: Iterable[FeeRow],
    params: QuoteRequestParams,
    schedule: StateFeeSchedule | None,
    *,
    guaranteed: bool,
    synthesize_settlement: bool,
    include_schedule_extras: bool = False,
) -> list[FeeLine]:
    lines: list[FeeLine] = []

    for row in rows:
        role = policy_role(row.label, params)
        if params.is_refinance and role in ("owner", "owner_tax"):
            continue
        if params.is_cash_purchase and role in ("lender", "lender_tax"):
            continue
        if params.is_refinance and any(x in row.disclosure_name for x in _REFI_EXCLUDED_DISCLOSURES):
            continue

        description = _ROLE_DESCRIPTIONS[role] if role else row.description
        lines.append(
            _line(description, row.buyer, row.seller, guaranteed=guaranteed, disclosure=row.disclosure_name)
        )

    if synthesize_settlement:
        settlement = settlement_line(params, schedule)
        if settlement is not None:
            lines.append(settlement)

    if include_schedule_extras:
        lines.extend(schedule_extra_lines(params, schedule))

    ag = agricultural_tax_line(params)
    if ag is not None:
        lines.append(ag)

    return lines


def summarize_fees(lines: Iterable[FeeLine]) -> dict[str, Any]:
    """Per-category counts and totals, plus the grand totals."""
    summary: dict[str, dict[str, Any]] = {}
    total_buyer = _ZERO
    total_seller = _ZERO
    for line in lines:
        bucket = summary.setdefault(line.category.value, {"count": 0, "buyer": _ZERO, "seller": _ZERO})
        bucket["count"] += 1
        bucket["buyer"] += line.buyer
        bucket["seller"] += line.seller
        total_buyer += line.buyer
        total_seller += line.seller

    return {
        "byCategory": {
            name: {
                "count": b["count"],
                "totalBuyerFee": money_str(b["buyer"]),
                "totalSellerFee": money_str(b["seller"]),
            }
            for name, b in summary.items()
        },
        "totalBuyerFee": money_str(total_buyer),
        "totalSellerFee": money_str(total_seller),
    }
