# titlequote/adapters/lvis_xml/parsers.py
from __future__ import annotations

import logging
from decimal import Decimal

from lxml import etree

from ...domain.errors import MalformedUpstreamResponse, UpstreamRejected
from ...domain.parsing import strip_html, to_decimal, to_int
from ...domain.types import (
    ClosingProduct,
    DiscoveryOutcome,
    Endorsement,
    FeeRow,
    PendingStructure,
    PolicyProduct,
    ProductCatalog,
    QuestionsPending,
    RatesReady,
    RawQuestion,
)
from .pending import is_prompt, param_code
from .tree import (
    child,
    children,
    find_path,
    has_text,
    local,
    parse_xml,
    require_path,
    text_of,
    to_xml,
    xlink_label,
)

log = logging.getLogger(__name__)

ACK_OK = "1000"

# The rates flag is spelled two ways across LVIS environments; either one counts.
RATES_FLAG_NAMES = ("HasCalculatedRates", "HasCalcualtedRates")

_LOAN_PATH = ("MESSAGE", "DEAL_SETS", "DEAL_SET", "DEALS", "DEAL", "LOANS", "LOAN")


def _root(raw: bytes | str, expected: str = "LVIS_XML") -> etree._Element:
    root = parse_xml(raw)
    if local(root) != expected:
        raise MalformedUpstreamResponse("unexpected_root", details=local(root))
    check_ack(root)
    return root


def check_ack(root: etree._Element) -> None:
    ack = child(root, "LVIS_ACK_NACK")
    if ack is None:
        return
    status = text_of(ack, "StatusCd")
    if status and status != ACK_OK:
        description = text_of(ack, "StatusDescription") or "rejected"
        detail = text_of(ack, "ExceptionMessage")
        log.warning("lvis nack status=%s description=%s exception=%s", status, description, detail)
        raise UpstreamRejected(description, details=f"{status}: {detail}" if detail else status)


# -----------------------------
# ProductList
# -----------------------------
def _is_default(el: etree._Element) -> bool:
    return text_of(el, "IsDefault").lower() == "true"


def _policy(el: etree._Element) -> PolicyProduct:
    default_rate = text_of(el, "DefaultRateTypeId")
    rate_type = "Basic"
    for kv in children(child(el, "ValidRateTypes"), "KeyValue"):
        if text_of(kv, "Key") == default_rate:
            rate_type = text_of(kv, "Value") or rate_type
            break
    return PolicyProduct(
        policy_id=text_of(el, "PolicyId"),
        name=text_of(el, "PolicyName") or text_of(el, "ProductName"),
        rate_type=rate_type,
    )


def parse_product_list(raw: bytes | str) -> ProductCatalog:
    root = _root(raw)
    products = require_path(root, "LVIS_CALCULATOR_TYPE_DATA_RESPONSE", "CalcTypeData", "ProductsList")

    title = tuple(
        _policy(p) for p in children(child(products, "PolicyProducts"), "PolicyProduct") if _is_default(p)
    )
    lender = tuple(
        _policy(p) for p in children(child(products, "SecondPolicyProducts"), "PolicyProduct") if _is_default(p)
    )

    endorsements = tuple(
        Endorsement(
            product_id=text_of(e, "ProductId"),
            name=text_of(e, "ProductName"),
            parent_policy_id=text_of(e, "ParentPolicyId"),
        )
        for e in children(child(products, "Endorsements"), "Endorsement")
        if _is_default(e)
    )

    closing = tuple(
        ClosingProduct(
            product_id=text_of(c, "ProductId") or text_of(c, "Id"),
            name=text_of(c, "ProductName") or text_of(c, "Name"),
            included_fees=tuple(
                (text_of(f, "Id"), text_of(f, "Name"))
                for f in children(child(c, "IncludedFees"), "ClosingFee")
            ),
        )
        for c in children(child(products, "ClosingCosts"), "ClosingCost")
        if _is_default(c)
    )

    recording = tuple(
        (
            text_of(d, "DocId") or text_of(d, "Id"),
            text_of(d, "DocName") or text_of(d, "Name"),
            to_int(text_of(d, "Pages") or text_of(d, "DefaultPages")) or 1,
        )
        for d in children(child(products, "RecordingDocTypes"), "RecordingDocType")
        if _is_default(d)
    )

    return ProductCatalog(
        title_policies=title,
        # no second-policy list means the lender policy comes from the same list
        lender_policies=lender or title,
        endorsements=endorsements,
        closing_products=closing,
        recording_documents=recording,
    )


# -----------------------------
# RateCalc responses
# -----------------------------
def rates_flag(calc: etree._Element) -> bool:
    return any(text_of(calc, name).lower() == "true" for name in RATES_FLAG_NAMES)


def _raw_question(qa: etree._Element) -> RawQuestion:
    param = child(qa, "Param")
    default = child(qa, "DefaultAnswer")
    return RawQuestion(
        link_key=text_of(qa, "LinkKey"),
        param_code=param_code(qa),
        question=text_of(qa, "Question"),
        is_prompt=is_prompt(qa),
        param_name=text_of(param, "Name"),
        description=text_of(qa, "Description"),
        value_type=text_of(param, "ValueType"),
        default_answer=None if default is None or default.text is None else default.text.strip(),
        options=tuple(
            (text_of(kv, "Key"), text_of(kv, "Value")) for kv in children(child(qa, "Options"), "KeyValue")
        ),
        min_value=text_of(param, "MinValue") or None,
        max_value=text_of(param, "MaxValue") or None,
    )


def parse_questions(level2: etree._Element) -> tuple[RawQuestion, ...]:
    """Prompt entries only; the rest stay inside the pending structure."""
    qandas = require_path(level2, "RateCalcRequest", "QandAs")
    out: list[RawQuestion] = []
    for qa in children(qandas, "RateCalcQandA"):
        rq = _raw_question(qa)
        if not rq.is_prompt:
            continue
        if not rq.param_code:
            raise MalformedUpstreamResponse("prompt_without_param_code", details=rq.link_key)
        out.append(rq)
    return tuple(out)


def _payment_amount(payment: etree._Element) -> Decimal:
    if has_text(payment, "FeeActualPaymentAmount"):
        raw = text_of(payment, "FeeActualPaymentAmount")
    elif has_text(payment, "FeeEstimatedPaymentAmount"):
        raw = text_of(payment, "FeeEstimatedPaymentAmount")
    else:
        raise MalformedUpstreamResponse("fee_payment_without_amount")
    amount = to_decimal(raw)
    if amount is None or amount < 0:
        raise MalformedUpstreamResponse("bad_fee_amount", details=raw)
    return amount


def _fee_row(fee: etree._Element) -> FeeRow:
    detail = child(fee, "FEE_DETAIL")
    payments = child(fee, "FEE_PAYMENTS")
    if detail is None or payments is None:
        raise MalformedUpstreamResponse("fee_missing_detail_or_payments", details=xlink_label(fee))

    buyer = Decimal("0")
    seller = Decimal("0")
    for payment in children(payments, "FEE_PAYMENT"):
        payer = text_of(payment, "FeePaymentPaidByType").lower()
        if payer == "buyer":
            buyer += _payment_amount(payment)
        elif payer == "seller":
            seller += _payment_amount(payment)

    return FeeRow(
        label=xlink_label(fee),
        description=text_of(detail, "FeeDescription") or "Unknown Fee",
        disclosure_name=text_of(detail, "DisclosureItemName"),
        buyer=buyer,
        seller=seller,
    )


def _loan(calc: etree._Element) -> etree._Element:
    mismo = require_path(calc, "MISMO_XML")
    return require_path(mismo, *_LOAN_PATH)


def _comments(loan: etree._Element) -> tuple[str, ...]:
    out: list[str] = []
    for comment in children(child(loan, "LOAN_COMMENTS"), "LOAN_COMMENT"):
        if xlink_label(comment).startswith("RESPONSE_NOTE"):
            text = strip_html(text_of(comment, "LoanCommentText"))
            if text:
                out.append(text)
    return tuple(out)


def _has_fees(calc: etree._Element) -> bool:
    mismo = child(calc, "MISMO_XML")
    loan = find_path(mismo, *_LOAN_PATH)
    return find_path(loan, "FEE_INFORMATION", "FEES") is not None


def _rates(calc: etree._Element) -> RatesReady:
    loan = _loan(calc)
    fees = require_path(loan, "FEE_INFORMATION", "FEES")
    rows = tuple(_fee_row(f) for f in children(fees, "FEE"))
    return RatesReady(fee_rows=rows, comments=_comments(loan))


def _pending(calc: etree._Element) -> QuestionsPending:
    level2 = require_path(calc, "CalcRateLevel2Data")
    questions = parse_questions(level2)
    mismo = child(calc, "MISMO_XML")
    return QuestionsPending(
        questions=questions,
        pending=PendingStructure(level2_xml=to_xml(level2), mismo_xml=to_xml(mismo) if mismo is not None else ""),
    )


def parse_discovery_response(raw: bytes | str) -> DiscoveryOutcome:
    calc = require_path(_root(raw), "LVIS_CALCULATOR_RESPONSE")
    if rates_flag(calc):
        return _rates(calc)
    return _pending(calc)


def parse_final_response(raw: bytes | str) -> RatesReady:
    calc = require_path(_root(raw), "LVIS_CALCULATOR_RESPONSE")
    return _rates(calc)


def parse_answer_round_response(raw: bytes | str) -> DiscoveryOutcome:
    """
    Final when flagged or when fees came back; another question round when
    only prompt entries came back.
    """
    calc = require_path(_root(raw), "LVIS_CALCULATOR_RESPONSE")
    if rates_flag(calc):
        return _rates(calc)

    level2 = child(calc, "CalcRateLevel2Data")
    if find_path(level2, "RateCalcRequest", "QandAs") is not None:
        pending = _pending(calc)
        if pending.questions:
            return pending

    if _has_fees(calc):
        return _rates(calc)
    raise MalformedUpstreamResponse("no_rates_or_questions")
