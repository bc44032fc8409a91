# titlequote/domain/types.py
from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Any

from .errors import InvalidInput
from .parsing import money, money_str, to_decimal, to_int

# Zero loan means "no loan"; the rate service still wants a non-zero note amount.
DEFAULT_NOTE_AMOUNT = Decimal("1000")


class TransactionKind(str, Enum):
    purchase = "Purchase"
    cash_purchase = "Cash Purchase"
    refinance = "Refinance"

    @classmethod
    def parse(cls, raw: Any) -> TransactionKind:
        if isinstance(raw, cls):
            return raw
        key = "".join(ch for ch in str(raw or "").lower() if ch.isalpha())
        for kind in cls:
            if key == "".join(ch for ch in kind.value.lower() if ch.isalpha()):
                return kind
        raise InvalidInput(
            "transactionKind must be one of: Purchase, Cash Purchase, Refinance",
            details={"transactionKind": raw},
        )

    @property
    def external_type(self) -> str:
        """Rate-service vocabulary: both purchase flavours are a sale."""
        if self is TransactionKind.refinance:
            return "Refinance"
        return "Sale w/ Mortgage"


class NegotiationState(str, Enum):
    created = "created"
    awaiting_answers = "pending_answers"
    completed = "completed"
    errored = "error"


class QuestionType(str, Enum):
    select = "select"
    boolean = "boolean"
    text = "text"
    currency = "currency"
    integer = "integer"
    date = "date"


class FeeCategory(str, Enum):
    title = "title"
    settlement = "settlement"
    recording = "recording"
    tax = "tax"
    other = "other"


@dataclass(frozen=True)
class QuoteRequestParams:
    postal_code: str
    sale_amount: Decimal
    loan_amount: Decimal
    kind: TransactionKind
    force_questions: bool = False

    @property
    def is_refinance(self) -> bool:
        return self.kind is TransactionKind.refinance

    @property
    def is_cash_purchase(self) -> bool:
        return self.kind is TransactionKind.cash_purchase

    @property
    def note_amount(self) -> Decimal:
        if self.loan_amount == 0:
            return DEFAULT_NOTE_AMOUNT
        return self.loan_amount

    @property
    def computation_sale_amount(self) -> Decimal:
        # Refinance has no sale; the rate service prices the loan instead.
        if self.is_refinance:
            return self.note_amount
        return self.sale_amount

    def to_dict(self) -> dict[str, Any]:
        return {
            "postalCode": self.postal_code,
            "saleAmount": str(self.sale_amount),
            "loanAmount": str(self.loan_amount),
            "transactionKind": self.kind.value,
            "forceQuestions": self.force_questions,
        }

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> QuoteRequestParams:
        return cls(
            postal_code=d["postalCode"],
            sale_amount=Decimal(d["saleAmount"]),
            loan_amount=Decimal(d["loanAmount"]),
            kind=TransactionKind.parse(d["transactionKind"]),
            force_questions=bool(d.get("forceQuestions", False)),
        )


@dataclass(frozen=True)
class LocationInfo:
    city: str
    county: str
    state_code: str

    def to_dict(self) -> dict[str, str]:
        return {"city": self.city, "county": self.county, "stateCode": self.state_code}

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> LocationInfo:
        return cls(city=d["city"], county=d["county"], state_code=d["stateCode"])


@dataclass(frozen=True)
class StateFeeSchedule:
    state_code: str
    fees: dict[str, Decimal | None] = field(default_factory=dict)

    def amount(self, key: str) -> Decimal:
        v = self.fees.get(key)
        return v if v is not None else Decimal("0")


@dataclass(frozen=True)
class RecordingOverrides:
    deed_pages: int | None = None
    mortgage_pages: int | None = None
    deed_consideration: Decimal | None = None
    mortgage_consideration: Decimal | None = None

    def merged(self, other: RecordingOverrides) -> RecordingOverrides:
        return RecordingOverrides(
            deed_pages=other.deed_pages if other.deed_pages is not None else self.deed_pages,
            mortgage_pages=other.mortgage_pages if other.mortgage_pages is not None else self.mortgage_pages,
            deed_consideration=(
                other.deed_consideration if other.deed_consideration is not None else self.deed_consideration
            ),
            mortgage_consideration=(
                other.mortgage_consideration
                if other.mortgage_consideration is not None
                else self.mortgage_consideration
            ),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "deedPages": self.deed_pages,
            "mortgagePages": self.mortgage_pages,
            "deedConsideration": None if self.deed_consideration is None else str(self.deed_consideration),
            "mortgageConsideration": (
                None if self.mortgage_consideration is None else str(self.mortgage_consideration)
            ),
        }

    @classmethod
    def from_dict(cls, d: dict[str, Any] | None) -> RecordingOverrides:
        d = d or {}
        return cls(
            deed_pages=to_int(d.get("deedPages")),
            mortgage_pages=to_int(d.get("mortgagePages")),
            deed_consideration=to_decimal(d.get("deedConsideration")),
            mortgage_consideration=to_decimal(d.get("mortgageConsideration")),
        )


# -----------------------------
# Product catalog (ProductList round)
# -----------------------------
@dataclass(frozen=True)
class PolicyProduct:
    policy_id: str
    name: str
    rate_type: str = "Basic"


@dataclass(frozen=True)
class Endorsement:
    product_id: str
    name: str
    parent_policy_id: str


@dataclass(frozen=True)
class ClosingProduct:
    product_id: str
    name: str
    included_fees: tuple[tuple[str, str], ...] = ()  # (fee id, fee name)


@dataclass(frozen=True)
class RecordingDocument:
    doc_type: str
    name: str
    pages: int
    consideration: Decimal


@dataclass(frozen=True)
class ProductCatalog:
    title_policies: tuple[PolicyProduct, ...] = ()
    lender_policies: tuple[PolicyProduct, ...] = ()
    endorsements: tuple[Endorsement, ...] = ()
    closing_products: tuple[ClosingProduct, ...] = ()
    recording_documents: tuple[tuple[str, str, int], ...] = ()  # (doc id, name, default pages)


# -----------------------------
# Questions
# -----------------------------
@dataclass(frozen=True)
class RawQuestion:
    """One RateCalcQandA entry as the rate service sent it."""

    link_key: str
    param_code: str
    question: str
    is_prompt: bool
    param_name: str = ""
    description: str = ""
    value_type: str = ""
    default_answer: str | None = None
    options: tuple[tuple[str, str], ...] = ()  # (label, value)
    min_value: str | None = None
    max_value: str | None = None


@dataclass(frozen=True)
class QuestionOption:
    label: str
    value: str


@dataclass(frozen=True)
class Question:
    id: str
    param_code: str
    prompt: str
    type: QuestionType
    help_text: str
    param_name: str = ""
    description: str = ""
    options: tuple[QuestionOption, ...] = ()
    min_value: Decimal | None = None
    max_value: Decimal | None = None
    default_answer: str | None = None
    required: bool = True

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {
            "id": self.id,
            "paramCode": self.param_code,
            "paramName": self.param_name,
            "prompt": self.prompt,
            "description": self.description,
            "helpText": self.help_text,
            "type": self.type.value,
            "required": self.required,
            "defaultAnswer": self.default_answer,
        }
        if self.options:
            d["options"] = [{"label": o.label, "value": o.value} for o in self.options]
        if self.min_value is not None:
            d["min"] = str(self.min_value)
        if self.max_value is not None:
            d["max"] = str(self.max_value)
        if self.type is QuestionType.integer:
            d["step"] = 1
        return d

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> Question:
        return cls(
            id=d["id"],
            param_code=d["paramCode"],
            prompt=d["prompt"],
            type=QuestionType(d["type"]),
            help_text=d.get("helpText", ""),
            param_name=d.get("paramName", ""),
            description=d.get("description", ""),
            options=tuple(QuestionOption(o["label"], o["value"]) for o in d.get("options", [])),
            min_value=to_decimal(d.get("min")),
            max_value=to_decimal(d.get("max")),
            default_answer=d.get("defaultAnswer"),
            required=bool(d.get("required", True)),
        )


@dataclass(frozen=True)
class ValidationIssue:
    question_id: str
    param_code: str
    message: str

    def to_dict(self) -> dict[str, str]:
        return {"questionId": self.question_id, "paramCode": self.param_code, "error": self.message}


# -----------------------------
# Fees
# -----------------------------
@dataclass(frozen=True)
class FeeRow:
    """A fee as parsed from the rate service, before business rules."""

    label: str
    description: str
    disclosure_name: str
    buyer: Decimal
    seller: Decimal


@dataclass(frozen=True)
class FeeLine:
    description: str
    buyer: Decimal
    seller: Decimal
    category: FeeCategory
    guaranteed: bool
    disclosure_name: str | None = None

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {
            "description": self.description,
            "buyerFee": money_str(self.buyer),
            "sellerFee": money_str(self.seller),
            "category": self.category.value,
            "guaranteed": self.guaranteed,
        }
        if self.disclosure_name:
            d["disclosureItemName"] = self.disclosure_name
        return d

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> FeeLine:
        return cls(
            description=d["description"],
            buyer=money(d["buyerFee"]),
            seller=money(d["sellerFee"]),
            category=FeeCategory(d["category"]),
            guaranteed=bool(d["guaranteed"]),
            disclosure_name=d.get("disclosureItemName"),
        )


@dataclass(frozen=True)
class QuoteResult:
    fees: tuple[FeeLine, ...]
    comments: tuple[str, ...] = ()

    @property
    def total_buyer(self) -> Decimal:
        return money(sum((f.buyer for f in self.fees), Decimal("0")))

    @property
    def total_seller(self) -> Decimal:
        return money(sum((f.seller for f in self.fees), Decimal("0")))

    def to_dict(self) -> dict[str, Any]:
        return {
            "fees": [f.to_dict() for f in self.fees],
            "comments": list(self.comments),
            "totalBuyerFee": money_str(self.total_buyer),
            "totalSellerFee": money_str(self.total_seller),
        }

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> QuoteResult:
        return cls(
            fees=tuple(FeeLine.from_dict(f) for f in d.get("fees", [])),
            comments=tuple(d.get("comments", [])),
        )


# -----------------------------
# Rate service round outcomes
# -----------------------------
@dataclass(frozen=True)
class PendingStructure:
    """
    Opaque echo material for the answer round: the serialized
    CalcRateLevel2Data element and the original MISMO message.
    """

    level2_xml: str
    mismo_xml: str

    def to_dict(self) -> dict[str, str]:
        return {"level2Xml": self.level2_xml, "mismoXml": self.mismo_xml}

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> PendingStructure:
        return cls(level2_xml=d["level2Xml"], mismo_xml=d["mismoXml"])


@dataclass(frozen=True)
class RatesReady:
    fee_rows: tuple[FeeRow, ...]
    comments: tuple[str, ...] = ()


@dataclass(frozen=True)
class QuestionsPending:
    questions: tuple[RawQuestion, ...]
    pending: PendingStructure


DiscoveryOutcome = RatesReady | QuestionsPending
