# titlequote/domain/questions.py
from __future__ import annotations

from decimal import Decimal
from typing import Any, Iterable, Mapping

from .parsing import money, parse_bool, parse_date, to_decimal, to_int
from .types import Question, QuestionOption, QuestionType, RawQuestion, ValidationIssue

GENERIC_HELP = "Please provide the requested information for accurate quote calculation"

# (where to look, keyword, help text); first match wins.
_HELP_RULES: tuple[tuple[str, str, str], ...] = (
    ("question", "vacant land", "Indicate if the property is currently vacant land without structures"),
    ("question", "home improvement", "Improvements may affect title insurance requirements"),
    ("question", "construction", "New construction may have different fee structures"),
    ("param", "escrow fee", "Additional escrow services may be required"),
    ("param", "lien waiver", "Required if recent improvements were made to the property"),
)

_VALUE_TYPES: dict[str, QuestionType] = {
    "CURRENCY": QuestionType.currency,
    "DECIMAL": QuestionType.currency,
    "INTEGER": QuestionType.integer,
    "INT": QuestionType.integer,
    "STRING": QuestionType.text,
    "BOOLEAN": QuestionType.boolean,
    "BOOL": QuestionType.boolean,
    "DATE": QuestionType.date,
    "DATETIME": QuestionType.date,
}

NOT_ANSWERED = "Not answered"


def help_text_for(raw: RawQuestion) -> str:
    question = raw.question.lower()
    param = raw.param_name.lower()
    for where, keyword, text in _HELP_RULES:
        haystack = question if where == "question" else param
        if keyword in haystack:
            return text
    return raw.description or GENERIC_HELP


def infer_type(raw: RawQuestion) -> QuestionType:
    if raw.options:
        return QuestionType.select
    return _VALUE_TYPES.get(raw.value_type.strip().upper(), QuestionType.text)


def normalize(raw: RawQuestion) -> Question:
    qtype = infer_type(raw)
    min_value = to_decimal(raw.min_value)
    if qtype is QuestionType.currency and min_value is None:
        min_value = Decimal("0")

    return Question(
        id=raw.link_key,
        param_code=raw.param_code,
        prompt=raw.question,
        type=qtype,
        help_text=help_text_for(raw),
        param_name=raw.param_name,
        description=raw.description,
        options=tuple(QuestionOption(label=label, value=value) for label, value in raw.options),
        min_value=min_value,
        max_value=to_decimal(raw.max_value),
        default_answer=raw.default_answer,
        required=True,
    )


def normalize_all(raws: Iterable[RawQuestion]) -> list[Question]:
    return [normalize(r) for r in raws if r.is_prompt]


def answer_for(question: Question, answers: Mapping[str, Any]) -> Any:
    """Answers may be keyed by parameter code (stable) or by question id."""
    if question.param_code and question.param_code in answers:
        return answers[question.param_code]
    return answers.get(question.id)


def _is_blank(v: Any) -> bool:
    return v is None or (isinstance(v, str) and not v.strip())


def _check(question: Question, value: Any) -> str | None:
    qt = question.type

    if qt is QuestionType.select:
        allowed = {o.value for o in question.options}
        if str(value) not in allowed:
            return f"must be one of: {', '.join(sorted(allowed))}"
        return None

    if qt in (QuestionType.currency, QuestionType.integer):
        num = to_decimal(value)
        if num is None:
            return "must be a number"
        if qt is QuestionType.integer and to_int(value) is None:
            return "must be a whole number"
        if question.min_value is not None and num < question.min_value:
            return f"must be at least {question.min_value}"
        if question.max_value is not None and num > question.max_value:
            return f"must be at most {question.max_value}"
        return None

    if qt is QuestionType.boolean:
        if parse_bool(value) is None:
            return "must be true or false"
        return None

    if qt is QuestionType.date:
        if parse_date(value) is None:
            return "must be a valid date"
        return None

    return None


def validate(questions: Iterable[Question], answers: Mapping[str, Any]) -> list[ValidationIssue]:
    """Every violation, not just the first one."""
    issues: list[ValidationIssue] = []
    for q in questions:
        value = answer_for(q, answers)
        if _is_blank(value):
            if q.required:
                issues.append(ValidationIssue(q.id, q.param_code, "required"))
            continue
        msg = _check(q, value)
        if msg:
            issues.append(ValidationIssue(q.id, q.param_code, msg))
    return issues


def wire_value(question: Question, value: Any) -> str:
    """String form the rate service expects in Answers/string."""
    if question.type is QuestionType.boolean:
        return "true" if parse_bool(value) else "false"
    if question.type is QuestionType.date:
        d = parse_date(value)
        return d.isoformat() if d else str(value)
    if question.type in (QuestionType.currency, QuestionType.integer):
        num = to_decimal(value)
        if num is not None:
            return str(to_int(num)) if question.type is QuestionType.integer else format(num, "f")
    return str(value)


def answers_by_param_code(questions: Iterable[Question], answers: Mapping[str, Any]) -> dict[str, str]:
    out: dict[str, str] = {}
    for q in questions:
        value = answer_for(q, answers)
        if _is_blank(value):
            continue
        out[q.param_code] = wire_value(q, value)
    return out


def summarize(questions: Iterable[Question]) -> dict[str, Any]:
    qs = list(questions)
    by_type: dict[str, int] = {}
    for q in qs:
        by_type[q.type.value] = by_type.get(q.type.value, 0) + 1
    required = sum(1 for q in qs if q.required)
    return {
        "total": len(qs),
        "required": required,
        "optional": len(qs) - required,
        "byType": by_type,
    }


def _category(q: Question) -> str:
    prompt = q.prompt.lower()
    param = q.param_name.lower()
    if q.id.lower().startswith("p") or "property" in prompt or "vacant" in prompt:
        return "property"
    if "construction" in prompt or "improvement" in prompt:
        return "construction"
    if "fee" in param or "escrow" in param:
        return "fees"
    return "other"


def group_by_category(questions: Iterable[Question]) -> dict[str, list[Question]]:
    groups: dict[str, list[Question]] = {"property": [], "construction": [], "fees": [], "other": []}
    for q in questions:
        groups[_category(q)].append(q)
    return groups


def display_answer(question: Question, value: Any) -> str:
    if question.type is QuestionType.select:
        for o in question.options:
            if o.value == str(value):
                return o.label
    if question.type is QuestionType.currency and to_decimal(value) is not None:
        return f"${money(value):,.2f}"
    return str(value)


def answer_summary(questions: Iterable[Question], answers: Mapping[str, Any]) -> list[dict[str, Any]]:
    """What was asked and what was answered, falling back to the default answer."""
    out: list[dict[str, Any]] = []
    for q in questions:
        value = answer_for(q, answers)
        answered = not _is_blank(value)
        out.append(
            {
                "id": q.id,
                "question": q.prompt,
                "answer": display_answer(q, value) if answered else (q.default_answer or NOT_ANSWERED),
                "wasDefaultUsed": not answered and bool(q.default_answer),
            }
        )
    return out
