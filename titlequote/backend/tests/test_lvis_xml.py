from datetime import date, datetime, timezone
from decimal import Decimal

import pytest

from conftest import DEFAULT_FEES, NACK_XML, PENDING_XML, PRODUCT_LIST_XML, XLINK, rates_xml
from titlequote.adapters.lvis_xml.builders import (
    build_answer_round_request,
    build_product_list_request,
    build_rate_calc_request,
    effective_timestamp,
    recording_documents,
    settlement_fees,
)
from titlequote.adapters.lvis_xml.parsers import (
    parse_answer_round_response,
    parse_discovery_response,
    parse_final_response,
    parse_product_list,
)
from titlequote.adapters.lvis_xml.pending import merge_answers
from titlequote.adapters.lvis_xml.tree import first_named, iter_named, parse_xml
from titlequote.domain.errors import MalformedUpstreamResponse, UpstreamRejected
from titlequote.domain.types import (
    LocationInfo,
    ProductCatalog,
    QuestionsPending,
    QuoteRequestParams,
    RatesReady,
    RecordingOverrides,
    TransactionKind,
)

NY = LocationInfo(city="New York", county="New York", state_code="NY")


def _params(kind=TransactionKind.purchase, loan="400000", force=False):
    return QuoteRequestParams(
        postal_code="10001",
        sale_amount=Decimal("500000"),
        loan_amount=Decimal(loan),
        kind=kind,
        force_questions=force,
    )


# -----------------------------
# Parsing
# -----------------------------
def test_product_list_keeps_default_products_only():
    catalog = parse_product_list(PRODUCT_LIST_XML)

    assert [p.policy_id for p in catalog.title_policies] == ["101"]
    assert catalog.title_policies[0].rate_type == "Basic"
    assert [p.policy_id for p in catalog.lender_policies] == ["201"]
    assert catalog.endorsements[0].parent_policy_id == "201"
    assert [c.product_id for c in catalog.closing_products] == ["531"]
    assert catalog.closing_products[0].included_fees[:2] == (("9001", "Escrow Fee"), ("9002", "Courier Fee"))
    assert catalog.recording_documents == ()


def test_rates_response_sums_payments_per_payer():
    outcome = parse_discovery_response(rates_xml())

    assert isinstance(outcome, RatesReady)
    rows = {r.label: r for r in outcome.fee_rows}
    # actual beats estimated
    assert rows["FEE_POLICY_2"].buyer == Decimal("400.00")
    assert rows["FEE_CLOSING_1"].buyer == Decimal("500")
    assert rows["FEE_CLOSING_1"].seller == Decimal("250.005")
    assert rows["FEE_RECORDING_1"].disclosure_name == "Conveyance Deed"
    assert outcome.comments == ("Rates valid for 30 days",)


def test_misspelled_rates_flag_is_honoured():
    outcome = parse_discovery_response(rates_xml(flag="HasCalcualtedRates"))
    assert isinstance(outcome, RatesReady)


def test_pending_response_keeps_only_prompt_questions():
    outcome = parse_discovery_response(PENDING_XML)

    assert isinstance(outcome, QuestionsPending)
    assert [q.param_code for q in outcome.questions] == ["VACANT", "LIENS", "ENDPKG"]
    assert outcome.questions[2].options == (("Standard", "STD"), ("Enhanced", "ENH"))
    # the non-prompt entry is still in the echo material
    assert "UWCODE" in outcome.pending.level2_xml
    assert "MISMOReferenceModelIdentifier" in outcome.pending.mismo_xml


def test_nack_is_upstream_rejected():
    with pytest.raises(UpstreamRejected) as exc:
        parse_discovery_response(NACK_XML)
    assert exc.value.details == "3001: County not serviced"


@pytest.mark.parametrize(
    "raw",
    [
        "",
        "<LVIS_XML><unclosed></LVIS_XML>",
        "<OTHER_ROOT/>",
        rates_xml(fees="").replace("<FEES>", "<NOT_FEES>").replace("</FEES>", "</NOT_FEES>"),
    ],
)
def test_structural_problems_are_malformed(raw):
    with pytest.raises(MalformedUpstreamResponse):
        parse_final_response(raw)


def test_payment_without_any_amount_is_malformed():
    fees = DEFAULT_FEES.replace("<FeeEstimatedPaymentAmount>1500.00</FeeEstimatedPaymentAmount>", "")
    with pytest.raises(MalformedUpstreamResponse):
        parse_final_response(rates_xml(fees))


def test_negative_amount_is_malformed():
    fees = DEFAULT_FEES.replace("1500.00", "-1500.00")
    with pytest.raises(MalformedUpstreamResponse):
        parse_final_response(rates_xml(fees))


def test_answer_round_with_fees_but_no_flag_is_final():
    raw = rates_xml().replace("<HasCalculatedRates>true</HasCalculatedRates>", "")
    assert isinstance(parse_answer_round_response(raw), RatesReady)


def test_answer_round_with_nothing_usable_is_malformed():
    raw = PENDING_XML.replace("<IsPrompt>true</IsPrompt>", "<IsPrompt>false</IsPrompt>")
    with pytest.raises(MalformedUpstreamResponse):
        parse_answer_round_response(raw)


# -----------------------------
# Pending structure merge
# -----------------------------
def test_merge_without_answers_is_byte_identical():
    pending = parse_discovery_response(PENDING_XML).pending
    assert merge_answers(pending.level2_xml, {}) == pending.level2_xml


def test_merge_touches_only_prompt_answers():
    pending = parse_discovery_response(PENDING_XML).pending

    # same values as already stored: nothing else may move
    same = merge_answers(pending.level2_xml, {"VACANT": "false", "LIENS": "0", "ENDPKG": "STD"})
    assert same == pending.level2_xml

    merged = merge_answers(pending.level2_xml, {"VACANT": "true", "UWCODE": "XX"})
    root = parse_xml(merged)
    answers = {first_named(qa, "ParamCode").text: first_named(qa, "string").text for qa in iter_named(root, "RateCalcQandA")}
    assert answers["VACANT"] == "true"
    # non-prompt entries are never overwritten
    assert answers["UWCODE"] == "FA"
    assert merged.replace("<string>true</string>", "<string>false</string>", 1) == pending.level2_xml


def test_answer_round_request_wraps_level2_and_message():
    pending = parse_discovery_response(PENDING_XML).pending

    root = parse_xml(build_answer_round_request(pending, {"LIENS": "3"}, client_customer_id="ACME"))

    assert first_named(root, "ClientCustomerId").text == "ACME"
    request = first_named(root, "LVIS_CALCULATOR_REQUEST")
    assert [c.tag.split("}")[-1] for c in request] == ["CalcRateLevel2Data", "MISMO_XML"]


# -----------------------------
# Request building
# -----------------------------
def test_effective_timestamp_is_pacific_without_commas():
    now = datetime(2024, 5, 1, 22, 4, 5, tzinfo=timezone.utc)
    assert effective_timestamp(now) == "5/1/2024 3:04:05 PM"


def test_product_list_request_fields():
    root = parse_xml(build_product_list_request(_params(), NY, client_customer_id="ACME"))

    assert first_named(root, "LVISActionType").text == "ProductList"
    names = [el.text for el in iter_named(root, "Name")]
    assert "PropertyStateCode" in names and "EffectiveDate" in names


def test_rate_calc_request_prices_policies_and_endorsements():
    catalog = parse_product_list(PRODUCT_LIST_XML)

    root = parse_xml(build_rate_calc_request(_params(), NY, catalog, today=date(2024, 5, 1)))

    assert first_named(root, "LVISActionType").text == "RateCalc"
    assert first_named(root, "ClientUniqueRequestId").text.startswith("L1-")
    message = first_named(root, "MESSAGE")
    assert message.get("MISMOReferenceModelIdentifier") == "3.4.0"

    amounts = [el.text for el in iter_named(root, "TitleInsuranceAmount")]
    assert amounts == ["500000", "400000"]
    assert [el.text for el in iter_named(root, "TitleEndorsementFormIdentifier")] == ["E81"]
    descriptions = [el.text for el in iter_named(root, "ServiceProductDescription")]
    assert descriptions == ["TitlePolicy", "ClosingCost", "Recording", "Recording"]


def test_force_questions_uses_no_auto_calc_action():
    catalog = parse_product_list(PRODUCT_LIST_XML)
    root = parse_xml(build_rate_calc_request(_params(force=True), NY, catalog))
    assert first_named(root, "LVISActionType").text == "RateCalcNoAutoCalc"


def test_recording_defaults_and_overrides():
    docs = recording_documents(_params(), ProductCatalog())
    assert [(d.doc_type, d.pages, d.consideration) for d in docs] == [
        ("DEED", 3, Decimal("500000")),
        ("MORTGAGE", 15, Decimal("400000")),
    ]

    docs = recording_documents(
        _params(),
        ProductCatalog(),
        RecordingOverrides(mortgage_pages=22, deed_consideration=Decimal("480000")),
    )
    assert [(d.doc_type, d.pages, d.consideration) for d in docs] == [
        ("DEED", 3, Decimal("480000")),
        ("MORTGAGE", 22, Decimal("400000")),
    ]


def test_catalog_recording_documents_are_classified():
    catalog = ProductCatalog(recording_documents=(("11", "Warranty Deed", 2), ("12", "Mortgage (Deed of Trust)", 12)))
    docs = recording_documents(_params(kind=TransactionKind.cash_purchase, loan="0"), catalog)
    assert [(d.doc_type, d.name, d.pages) for d in docs] == [("DEED", "Warranty Deed", 2)]


def test_settlement_service_lists_included_closing_fees():
    catalog = parse_product_list(PRODUCT_LIST_XML)
    assert settlement_fees(catalog) == [("9001", "Escrow Fee"), ("9002", "Courier Fee")]

    root = parse_xml(build_rate_calc_request(_params(), NY, catalog))

    settlement = next(
        s for s in iter_named(root, "SERVICE") if first_named(s, "ServiceProductDescription").text == "ClosingCost"
    )
    assert [el.text for el in iter_named(settlement, "ServiceProductNameIdentifier")] == ["9001", "9002"]
    assert [el.text for el in iter_named(settlement, "ServiceProductNameDescription")] == ["Escrow Fee", "Courier Fee"]
    labels = [el.get(f"{{{XLINK}}}label") for el in iter_named(settlement, "SERVICE_PRODUCT_NAME")]
    assert labels == ["CLOSING_9001", "CLOSING_9002"]


def test_closing_cost_without_included_fees_sends_no_settlement_service():
    catalog = parse_product_list(
        PRODUCT_LIST_XML.replace("<ClosingFee><Id>9001</Id><Name>Escrow Fee</Name></ClosingFee>", "").replace(
            "<ClosingFee><Id>9002</Id><Name>Courier Fee</Name></ClosingFee>", ""
        )
    )
    assert settlement_fees(catalog) == []

    root = parse_xml(build_rate_calc_request(_params(), NY, catalog))
    descriptions = [el.text for el in iter_named(root, "ServiceProductDescription")]
    assert descriptions == ["TitlePolicy", "Recording", "Recording"]


RECORDING_DOC_TYPES = """
        <RecordingDocTypes>
          <RecordingDocType><Id>D1</Id><Name>Warranty Deed</Name><DefaultPages>2</DefaultPages><IsDefault>true</IsDefault></RecordingDocType>
          <RecordingDocType><Id>D5</Id><Name>Assignment of Rents</Name><DefaultPages>4</DefaultPages><IsDefault>true</IsDefault></RecordingDocType>
          <RecordingDocType><Id>D9</Id><Name>Power of Attorney</Name><DefaultPages>1</DefaultPages><IsDefault>false</IsDefault></RecordingDocType>
        </RecordingDocTypes>
      </ProductsList>"""


def test_only_default_recording_documents_are_priced():
    catalog = parse_product_list(PRODUCT_LIST_XML.replace("</ProductsList>", RECORDING_DOC_TYPES))

    assert catalog.recording_documents == (("D1", "Warranty Deed", 2), ("D5", "Assignment of Rents", 4))

    docs = recording_documents(_params(), catalog)
    # anything that is not the deed is priced on the loan amount
    assert [(d.doc_type, d.consideration) for d in docs] == [
        ("DEED", Decimal("500000")),
        ("D5", Decimal("400000")),
    ]

    root = parse_xml(build_rate_calc_request(_params(), NY, catalog))
    identifiers = [el.text for el in iter_named(root, "ServiceProductNameIdentifier")]
    assert "D9" not in identifiers
