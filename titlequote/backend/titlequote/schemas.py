from __future__ import annotations

from decimal import Decimal
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .domain.errors import InvalidInput
from .domain.parsing import normalize_postal_code
from .domain.types import QuoteRequestParams, RecordingOverrides, TransactionKind


class _CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class RecordingIn(_CamelModel):
    deed_pages: int | None = Field(default=None, alias="deedPages", ge=1)
    mortgage_pages: int | None = Field(default=None, alias="mortgagePages", ge=1)
    deed_consideration: Decimal | None = Field(default=None, alias="deedConsideration", ge=0)
    mortgage_consideration: Decimal | None = Field(default=None, alias="mortgageConsideration", ge=0)

    def to_overrides(self) -> RecordingOverrides:
        return RecordingOverrides(
            deed_pages=self.deed_pages,
            mortgage_pages=self.mortgage_pages,
            deed_consideration=self.deed_consideration,
            mortgage_consideration=self.mortgage_consideration,
        )


class QuoteIn(_CamelModel):
    postal_code: str = Field(alias="postalCode")
    sale_amount: Decimal = Field(alias="saleAmount", ge=0)
    loan_amount: Decimal = Field(default=Decimal("0"), alias="loanAmount", ge=0)
    transaction_kind: TransactionKind = Field(default=TransactionKind.purchase, alias="transactionKind")
    recording: RecordingIn | None = None

    @field_validator("postal_code", mode="before")
    @classmethod
    def _postal_code(cls, v: Any) -> str:
        code = normalize_postal_code(v)
        if code is None:
            raise ValueError("postalCode must be a 5 digit US ZIP code")
        return code

    @field_validator("transaction_kind", mode="before")
    @classmethod
    def _kind(cls, v: Any) -> TransactionKind:
        try:
            return TransactionKind.parse(v)
        except InvalidInput as e:
            raise ValueError(e.message) from e

    def to_params(self, *, force_questions: bool = False) -> QuoteRequestParams:
        return QuoteRequestParams(
            postal_code=self.postal_code,
            sale_amount=self.sale_amount,
            loan_amount=self.loan_amount,
            kind=self.transaction_kind,
            force_questions=force_questions,
        )

    def to_overrides(self) -> RecordingOverrides | None:
        return self.recording.to_overrides() if self.recording else None


class StartRequest(QuoteIn):
    force_questions: bool = Field(default=False, alias="forceQuestions")
    session_id: str | None = Field(default=None, alias="sessionId")


class SessionRef(_CamelModel):
    session_id: str = Field(alias="sessionId", min_length=1)


class SubmitRequest(SessionRef):
    answers: dict[str, Any] = Field(default_factory=dict)


class StatusRequest(SessionRef):
    pass


class RecordingRequest(SessionRef):
    recording: RecordingIn


class ActionRequest(_CamelModel):
    """Single-endpoint form: the action picks which of the bodies above applies."""

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    action: Literal["start", "submit", "status", "updateRecording"] = "start"


class QuickQuoteRequest(QuoteIn):
    pass
