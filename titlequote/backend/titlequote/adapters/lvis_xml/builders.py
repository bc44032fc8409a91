# titlequote/adapters/lvis_xml/builders.py
from __future__ import annotations

import re
import uuid
from datetime import date, datetime
from decimal import Decimal
from typing import Mapping
from zoneinfo import ZoneInfo

from lxml import etree

from ...config import settings
from ...domain.fees import DEFECTIVE_SETTLEMENT_CATALOG_STATES
from ...domain.types import (
    LocationInfo,
    PendingStructure,
    PolicyProduct,
    ProductCatalog,
    QuoteRequestParams,
    RecordingDocument,
    RecordingOverrides,
)
from .pending import merge_answers
from .tree import LVIS_NS, MISMO_NS, XLINK_LABEL, XLINK_NS, XSI_NS, parse_xml

PACIFIC = ZoneInfo("America/Los_Angeles")

DEFAULT_DEED_PAGES = 3
DEFAULT_MORTGAGE_PAGES = 15

ACTION_PRODUCT_LIST = "ProductList"
ACTION_RATE_CALC = "RateCalc"
ACTION_RATE_CALC_NO_AUTO = "RateCalcNoAutoCalc"


def _amount(d: Decimal) -> str:
    # Whole dollars go over the wire without a fraction, like the calculator UI sends them.
    if d == d.to_integral_value():
        return str(int(d))
    return format(d, "f")


def _l(parent: etree._Element, name: str, text: str | None = None) -> etree._Element:
    el = etree.SubElement(parent, f"{{{LVIS_NS}}}{name}")
    if text is not None:
        el.text = text
    return el


def _m(
    parent: etree._Element,
    name: str,
    text: str | None = None,
    *,
    label: str | None = None,
    seq: int | None = None,
) -> etree._Element:
    el = etree.SubElement(parent, f"{{{MISMO_NS}}}{name}")
    if label is not None:
        el.set(XLINK_LABEL, label)
    if seq is not None:
        el.set("SequenceNumber", str(seq))
    if text is not None:
        el.text = text
    return el


def _envelope(action: str, request_prefix: str, client_customer_id: str | None) -> etree._Element:
    root = etree.Element(f"{{{LVIS_NS}}}LVIS_XML", nsmap={"lvis": LVIS_NS, "xlink": XLINK_NS, "xsi": XSI_NS})
    header = _l(root, "LVIS_HEADER")
    _l(header, "LVISActionType", action)
    _l(header, "ClientCustomerId", client_customer_id or settings.LVIS_CLIENT_CUSTOMER_ID)
    _l(header, "ClientUniqueRequestId", f"{request_prefix}-{uuid.uuid4()}")
    return root


def _serialize(root: etree._Element) -> bytes:
    return etree.tostring(root, xml_declaration=True, encoding="utf-8")


def effective_timestamp(now: datetime | None = None) -> str:
    """Pacific local time as '5/1/2024 3:04:05 PM' (the calculator rejects commas here)."""
    now = (now or datetime.now(PACIFIC)).astimezone(PACIFIC)
    hour = now.hour % 12 or 12
    ampm = "AM" if now.hour < 12 else "PM"
    return f"{now.month}/{now.day}/{now.year} {hour}:{now.minute:02d}:{now.second:02d} {ampm}"


# -----------------------------
# ProductList
# -----------------------------
def build_product_list_request(
    params: QuoteRequestParams,
    location: LocationInfo,
    *,
    client_customer_id: str | None = None,
    now: datetime | None = None,
) -> bytes:
    root = _envelope(ACTION_PRODUCT_LIST, "CALC", client_customer_id)
    req = _l(_l(root, "LVIS_CALCULATOR_TYPE_DATA_REQUEST"), "LVIS_REQUEST_PARAMS")

    pairs = [
        ("PropertyStateCode", location.state_code),
        ("PropertyCountyName", location.county),
        ("PropertyCityName", location.city),
        ("ClosingStateCode", ""),
        ("ClosingCountyName", ""),
        ("ClosingCityName", ""),
        ("TransactionType", params.kind.external_type),
        ("SalesAmount", _amount(params.computation_sale_amount)),
        ("LoanAmount", _amount(params.note_amount)),
        ("EffectiveDate", effective_timestamp(now)),
        ("PropertyType", "Residential"),
        ("IsTitle", "True"),
        ("IsClosing", "True"),
        ("IsRecording", "True"),
        ("IsEndorsements", "True"),
    ]
    for name, value in pairs:
        nv = _l(req, "LVIS_NAME_VALUE")
        _l(nv, "Name", name)
        _l(nv, "Value", value)

    return _serialize(root)


# -----------------------------
# RateCalc (discovery round)
# -----------------------------
_UNSAFE_LABEL = re.compile(r"[^A-Z0-9_]")


def settlement_fees(catalog: ProductCatalog) -> list[tuple[str, str]]:
    """Included fees of the default closing-cost product, the ones priced as settlement."""
    if not catalog.closing_products:
        return []
    return [(fee_id, name) for fee_id, name in catalog.closing_products[0].included_fees if fee_id and name]


def recording_documents(
    params: QuoteRequestParams,
    catalog: ProductCatalog,
    overrides: RecordingOverrides | None = None,
) -> list[RecordingDocument]:
    """
    Documents to price for recording. Falls back to deed + mortgage when the
    catalog lists none (CT and several other states never return any).
    """
    o = overrides or RecordingOverrides()
    deed_consideration = o.deed_consideration if o.deed_consideration is not None else params.computation_sale_amount
    mortgage_consideration = (
        o.mortgage_consideration if o.mortgage_consideration is not None else params.note_amount
    )

    docs: list[RecordingDocument] = []
    if catalog.recording_documents:
        for i, (doc_id, name, pages) in enumerate(catalog.recording_documents, start=1):
            lowered = name.lower()
            # mortgage first: "Mortgage (Deed of Trust)" mentions both
            if "mortgage" in lowered or "trust" in lowered:
                docs.append(RecordingDocument("MORTGAGE", name, o.mortgage_pages or pages, mortgage_consideration))
            elif "deed" in lowered:
                docs.append(RecordingDocument("DEED", name, o.deed_pages or pages, deed_consideration))
            else:
                docs.append(RecordingDocument(doc_id or f"DOC_{i}", name, pages, mortgage_consideration))
    else:
        docs = [
            RecordingDocument("DEED", "Conveyance Deed", o.deed_pages or DEFAULT_DEED_PAGES, deed_consideration),
            RecordingDocument(
                "MORTGAGE",
                "Mortgage (Deed of Trust)",
                o.mortgage_pages or DEFAULT_MORTGAGE_PAGES,
                mortgage_consideration,
            ),
        ]

    if params.is_cash_purchase:
        docs = [d for d in docs if d.doc_type != "MORTGAGE"]
    return docs


def _policy(
    parent: etree._Element,
    policy: PolicyProduct,
    *,
    label: str,
    seq: int,
    amount: Decimal,
    effective: date,
    endorsements: list[tuple[str, str]],
) -> None:
    el = _m(parent, "TITLE_POLICY", label=label, seq=seq)
    if endorsements:
        endrs = _m(el, "TITLE_ENDORSEMENTS")
        for j, (product_id, name) in enumerate(endorsements, start=1):
            e = _m(endrs, "TITLE_ENDORSEMENT", label=f"{label}_ENDR_{j}", seq=j)
            _m(e, "TitleEndorsementFormIdentifier", product_id)
            _m(e, "TitleEndorsementFormName", name)
    detail = _m(el, "TITLE_POLICY_DETAIL")
    _m(detail, "TitleInsuranceAmount", _amount(amount))
    _m(detail, "TitlePolicyEffectiveDate", effective.isoformat())
    _m(detail, "TitlePolicyIdentifier", policy.policy_id)
    ext = _l(_m(_m(detail, "EXTENSION"), "OTHER"), "TITLE_POLICY_DETAIL_EXTENSION")
    _l(ext, "ProductName", policy.name)
    _l(ext, "RateType", policy.rate_type)


def _service_product(service: etree._Element, description: str) -> etree._Element:
    req = _m(_m(service, "SERVICE_PRODUCT"), "SERVICE_PRODUCT_REQUEST")
    _m(_m(req, "SERVICE_PRODUCT_DETAIL"), "ServiceProductDescription", description)
    return req


def _product_name(names: etree._Element, *, label: str, seq: int, description: str, identifier: str) -> None:
    detail = _m(_m(names, "SERVICE_PRODUCT_NAME", label=label, seq=seq), "SERVICE_PRODUCT_NAME_DETAIL")
    _m(detail, "ServiceProductNameDescription", description)
    _m(detail, "ServiceProductNameIdentifier", identifier)


def _services(
    deal: etree._Element,
    params: QuoteRequestParams,
    location: LocationInfo,
    catalog: ProductCatalog,
    overrides: RecordingOverrides | None,
    effective: date,
) -> None:
    services = _m(deal, "SERVICES")
    seq = 1

    # Title: owner policies priced on the sale, lender policies on the loan.
    title = _m(services, "SERVICE", seq=seq)
    seq += 1
    policies = _m(_m(_m(_m(_m(title, "TITLE"), "TITLE_RESPONSE"), "TITLE_PRODUCTS"), "TITLE_PRODUCT"), "TITLE_POLICIES")
    n = 0
    if not params.is_refinance:
        for policy in catalog.title_policies:
            n += 1
            _policy(
                policies,
                policy,
                label=f"POLICY_{n}",
                seq=n,
                amount=params.computation_sale_amount,
                effective=effective,
                endorsements=[],
            )
    if not params.is_cash_purchase:
        for policy in catalog.lender_policies:
            n += 1
            endorsements = [
                (e.product_id, e.name) for e in catalog.endorsements if e.parent_policy_id == policy.policy_id
            ]
            _policy(
                policies,
                policy,
                label=f"POLICY_{n}",
                seq=n,
                amount=params.note_amount,
                effective=effective,
                endorsements=endorsements,
            )
    _service_product(title, "TitlePolicy")

    # Settlement: see DEFECTIVE_SETTLEMENT_CATALOG_STATES.
    fees = settlement_fees(catalog)
    if fees and location.state_code not in DEFECTIVE_SETTLEMENT_CATALOG_STATES:
        settlement = _m(services, "SERVICE", seq=seq)
        seq += 1
        names = _m(_service_product(settlement, "ClosingCost"), "SERVICE_PRODUCT_NAMES")
        for i, (fee_id, name) in enumerate(fees, start=1):
            label = _UNSAFE_LABEL.sub("_", f"CLOSING_{fee_id}")
            _product_name(names, label=label, seq=i, description=name, identifier=fee_id)

    for i, doc in enumerate(recording_documents(params, catalog, overrides), start=1):
        service = _m(services, "SERVICE", seq=seq)
        seq += 1
        names = _m(_service_product(service, "Recording"), "SERVICE_PRODUCT_NAMES")
        label = f"RECORDING_{i}"
        _product_name(names, label=label, seq=1, description=doc.name, identifier=doc.doc_type)
        _product_name(
            names,
            label=f"{label}_CONSIDERATION",
            seq=2,
            description="ConsiderationAmount",
            identifier=_amount(doc.consideration),
        )
        _product_name(names, label=f"{label}_PAGES", seq=3, description="PageCount", identifier=str(doc.pages))


def build_rate_calc_request(
    params: QuoteRequestParams,
    location: LocationInfo,
    catalog: ProductCatalog,
    *,
    overrides: RecordingOverrides | None = None,
    client_customer_id: str | None = None,
    today: date | None = None,
) -> bytes:
    action = ACTION_RATE_CALC_NO_AUTO if params.force_questions else ACTION_RATE_CALC
    root = _envelope(action, "L1", client_customer_id)
    mismo = _l(_l(root, "LVIS_CALCULATOR_REQUEST"), "MISMO_XML")

    message = etree.SubElement(
        mismo,
        f"{{{MISMO_NS}}}MESSAGE",
        nsmap={None: MISMO_NS},
        attrib={"MISMOReferenceModelIdentifier": "3.4.0", XLINK_LABEL: "M1", "SequenceNumber": "1"},
    )
    deal_set = _m(_m(message, "DEAL_SETS"), "DEAL_SET", label="DS1", seq=1)
    deal = _m(_m(deal_set, "DEALS"), "DEAL", label="D1", seq=1)

    party = _m(_m(deal, "PARTIES"), "PARTY", label="Party_ID", seq=1)
    name = _m(_m(party, "INDIVIDUAL"), "NAME")
    _m(name, "FirstName", "Test")
    _m(name, "LastName", "User")
    role = _m(_m(party, "ROLES"), "ROLE", seq=1)
    _m(_m(role, "ROLE_DETAIL"), "PartyRoleType", "Borrower")

    collateral = _m(_m(deal, "COLLATERALS"), "COLLATERAL", label="PropertyLocations", seq=1)
    subject = _m(collateral, "SUBJECT_PROPERTY")
    address = _m(subject, "ADDRESS")
    _m(address, "CityName", location.city)
    _m(address, "CountyName", location.county)
    _m(address, "PostalCode", params.postal_code)
    _m(address, "StateCode", location.state_code)
    contract = _m(_m(_m(subject, "SALES_CONTRACTS"), "SALES_CONTRACT"), "SALES_CONTRACT_DETAIL")
    _m(contract, "SalesContractAmount", _amount(params.computation_sale_amount))
    _m(_m(_m(_m(subject, "SITE"), "SITE_LOCATIONS"), "SITE_LOCATION"), "LocationType", "Residential")

    loan = _m(_m(deal, "LOANS"), "LOAN", label="SubjectLoan", seq=1)
    ident = _m(_m(loan, "LOAN_IDENTIFIERS"), "LOAN_IDENTIFIER", seq=1)
    _m(ident, "LoanIdentifier", "1234567")
    _m(ident, "LoanIdentifierType", "LenderLoan")
    terms = _m(loan, "TERMS_OF_LOAN")
    if params.is_refinance:
        _m(terms, "LoanPurposeType", "Refinance")
    else:
        _m(terms, "LoanPurposeType", "Other")
        _m(terms, "LoanPurposeTypeOtherDescription", params.kind.external_type)
    _m(terms, "NoteAmount", _amount(params.note_amount))

    _services(deal, params, location, catalog, overrides, today or date.today())
    return _serialize(root)


# -----------------------------
# Answer round
# -----------------------------
def build_answer_round_request(
    pending: PendingStructure,
    answers_by_code: Mapping[str, str],
    *,
    client_customer_id: str | None = None,
) -> bytes:
    """
    Echo the stored CalcRateLevel2Data (patched with answers) followed by the
    original MISMO message, under a RateCalcNoAutoCalc header.
    """
    root = _envelope(ACTION_RATE_CALC_NO_AUTO, "L2", client_customer_id)
    req = _l(root, "LVIS_CALCULATOR_REQUEST")
    req.append(parse_xml(merge_answers(pending.level2_xml, answers_by_code)))
    if pending.mismo_xml:
        req.append(parse_xml(pending.mismo_xml))
    return _serialize(root)
