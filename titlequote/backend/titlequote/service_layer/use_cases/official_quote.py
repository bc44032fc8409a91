# titlequote/service_layer/use_cases/official_quote.py
"""
Official quote negotiation.

    created --(rates ready)--> completed
    created --(questions)----> pending_answers --(answers, rates)--> completed
                               pending_answers --(answers, more questions)--> pending_answers
    created / pending_answers --(upstream failure)--> error

Timeouts leave the session where it was so the same round can be retried.
Two concurrent submits on one session are not serialized: the store has no
compare-and-swap, so the last writer wins. The state is re-read right before
the final write to narrow (not close) that window.
"""
from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Mapping

from ...adapters.clients.lvis import RateCalculator
from ...adapters.lvis_xml.builders import build_answer_round_request
from ...adapters.lvis_xml.parsers import parse_answer_round_response, parse_discovery_response
from ...adapters.repos.locations import LocationLookup
from ...adapters.repos.sessions import Record, SessionStore
from ...domain.errors import (
    RETRYABLE_ROUND_ERRORS,
    UPSTREAM_ERRORS,
    QuoteError,
    SessionConflict,
    StorageUnavailable,
    ValidationFailed,
)
from ...domain.fees import DEFECTIVE_SETTLEMENT_CATALOG_STATES, compose_fee_lines, summarize_fees
from ...domain.questions import (
    answer_summary,
    answers_by_param_code,
    group_by_category,
    normalize_all,
    summarize,
    validate,
)
from ...domain.types import (
    DiscoveryOutcome,
    LocationInfo,
    NegotiationState,
    PendingStructure,
    Question,
    QuestionsPending,
    QuoteRequestParams,
    QuoteResult,
    RatesReady,
    RecordingOverrides,
)
from ..rate_rounds import bounded, discovery_round, sanitize

log = logging.getLogger(__name__)


def _utcnow_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _state(rec: Record) -> NegotiationState:
    return NegotiationState(rec.get("state", NegotiationState.created.value))


def _retryable(e: QuoteError, *, stage: str, session_id: str) -> QuoteError:
    # The session is untouched; hand back its id so a new session is not needed.
    public, ref = sanitize(e, stage=stage, session_id=session_id)
    public.details = {"ref": ref, "sessionId": session_id}
    return public


class OfficialQuoteService:
    def __init__(
        self,
        *,
        store: SessionStore,
        locations: LocationLookup,
        rates: RateCalculator,
        round_timeout_s: float | None = None,
        client_customer_id: str | None = None,
    ) -> None:
        self.store = store
        self.locations = locations
        self.rates = rates
        self.round_timeout_s = round_timeout_s
        self.client_customer_id = client_customer_id

    # -----------------------------
    # Operations
    # -----------------------------
    async def start(
        self,
        params: QuoteRequestParams,
        *,
        overrides: RecordingOverrides | None = None,
        session_id: str | None = None,
    ) -> dict[str, Any]:
        """
        New negotiation, or a retry of one when `session_id` is given.

        Retrying a completed session returns the stored result without calling
        the rate service; a created session (its discovery timed out) re-runs
        discovery with its original parameters.
        """
        if session_id:
            rec = await self.store.get(session_id)
            state = _state(rec)
            if state is NegotiationState.completed:
                return self._view(rec, already_completed=True)
            if state is NegotiationState.awaiting_answers:
                return self._view(rec)
            if state is NegotiationState.errored:
                raise SessionConflict("This quote session failed; start a new quote", details=session_id)
            return await self._discover(
                session_id,
                QuoteRequestParams.from_dict(rec["params"]),
                LocationInfo.from_dict(rec["location"]),
                RecordingOverrides.from_dict(rec.get("recordingOverrides")),
                round_no=int(rec.get("round", 0)),
            )

        # Unknown ZIP is an input problem: fail before any session exists.
        location = await self.locations.lookup_location(params.postal_code)
        overrides = overrides or RecordingOverrides()
        session_id = await self.store.create(
            {
                "state": NegotiationState.created.value,
                "params": params.to_dict(),
                "location": location.to_dict(),
                "recordingOverrides": overrides.to_dict(),
                "round": 0,
            }
        )
        log.info(
            "official quote started session=%s zip=%s kind=%s state=%s",
            session_id,
            params.postal_code,
            params.kind.value,
            location.state_code,
        )
        return await self._discover(session_id, params, location, overrides, round_no=0)

    async def submit(self, session_id: str, answers: Mapping[str, Any]) -> dict[str, Any]:
        rec = await self.store.get(session_id)
        state = _state(rec)
        if state is NegotiationState.completed:
            return self._view(rec, already_completed=True)
        if state is NegotiationState.errored:
            raise SessionConflict("This quote session failed; start a new quote", details=session_id)
        if state is not NegotiationState.awaiting_answers:
            raise SessionConflict("This quote session is not waiting for answers", details=session_id)

        questions = [Question.from_dict(q) for q in rec.get("questions", [])]
        issues = validate(questions, answers)
        if issues:
            raise ValidationFailed("Some answers are missing or invalid", details=[i.to_dict() for i in issues])

        params = QuoteRequestParams.from_dict(rec["params"])
        location = LocationInfo.from_dict(rec["location"])
        pending = PendingStructure.from_dict(rec["pending"])
        round_no = int(rec.get("round", 1))

        payload = build_answer_round_request(
            pending,
            answers_by_param_code(questions, answers),
            client_customer_id=self.client_customer_id,
        )

        try:
            raw = await bounded(self.rates.rate_calc(payload), self.round_timeout_s)
            outcome = parse_answer_round_response(raw)
        except RETRYABLE_ROUND_ERRORS as e:
            raise _retryable(e, stage=f"answers:{round_no}", session_id=session_id) from e
        except UPSTREAM_ERRORS as e:
            raise await self._fail(session_id, e, stage=f"answers:{round_no}") from e

        # Someone else may have finished this session while we were upstream.
        current = await self.store.get(session_id)
        if _state(current) is NegotiationState.completed:
            log.warning("session %s completed concurrently; keeping the stored result", session_id)
            return self._view(current, already_completed=True)

        answered = list(current.get("answerSummary") or []) + answer_summary(questions, answers)
        return await self._record_outcome(
            session_id, outcome, params, location, round_no=round_no, answers=dict(answers), answered=answered
        )

    async def status(self, session_id: str) -> dict[str, Any]:
        return self._view(await self.store.get(session_id))

    async def update_recording(self, session_id: str, overrides: RecordingOverrides) -> dict[str, Any]:
        """New page counts / consideration amounts mean a fresh discovery round."""
        rec = await self.store.get(session_id)
        state = _state(rec)
        if state not in (NegotiationState.created, NegotiationState.awaiting_answers):
            raise SessionConflict(
                f"Recording details can't change once the session is {state.value}", details=session_id
            )
        merged = RecordingOverrides.from_dict(rec.get("recordingOverrides")).merged(overrides)
        await self.store.update(session_id, {"recordingOverrides": merged.to_dict()})
        return await self._discover(
            session_id,
            QuoteRequestParams.from_dict(rec["params"]),
            LocationInfo.from_dict(rec["location"]),
            merged,
            round_no=int(rec.get("round", 0)),
        )

    async def purge_expired(self) -> int:
        purged = await self.store.purge_expired()
        if purged:
            log.info("purged %s expired quote sessions", purged)
        return purged

    # -----------------------------
    # Internals
    # -----------------------------
    async def _discover(
        self,
        session_id: str,
        params: QuoteRequestParams,
        location: LocationInfo,
        overrides: RecordingOverrides,
        *,
        round_no: int,
    ) -> dict[str, Any]:
        try:
            raw = await bounded(
                discovery_round(
                    self.rates, params, location, overrides, client_customer_id=self.client_customer_id
                ),
                self.round_timeout_s,
            )
            outcome = parse_discovery_response(raw)
        except RETRYABLE_ROUND_ERRORS as e:
            raise _retryable(e, stage="discovery", session_id=session_id) from e
        except UPSTREAM_ERRORS as e:
            raise await self._fail(session_id, e, stage="discovery") from e

        return await self._record_outcome(session_id, outcome, params, location, round_no=round_no)

    async def _record_outcome(
        self,
        session_id: str,
        outcome: DiscoveryOutcome,
        params: QuoteRequestParams,
        location: LocationInfo,
        *,
        round_no: int,
        answers: dict[str, Any] | None = None,
        answered: list[dict[str, Any]] | None = None,
    ) -> dict[str, Any]:
        update: Record = {}
        if answers is not None:
            update["answers"] = answers
        if answered is not None:
            update["answerSummary"] = answered

        if isinstance(outcome, RatesReady):
            result = await self._compose(outcome, params, location)
            update.update(
                {
                    "state": NegotiationState.completed.value,
                    "result": result.to_dict(),
                    "pending": None,
                    "questions": [],
                    "completedAt": _utcnow_iso(),
                }
            )
            log.info(
                "session %s completed fees=%s buyer=%s seller=%s",
                session_id,
                len(result.fees),
                result.total_buyer,
                result.total_seller,
            )
        elif isinstance(outcome, QuestionsPending):
            questions = normalize_all(outcome.questions)
            update.update(
                {
                    "state": NegotiationState.awaiting_answers.value,
                    "pending": outcome.pending.to_dict(),
                    "questions": [q.to_dict() for q in questions],
                    "round": round_no + 1,
                }
            )
            log.info("session %s awaiting answers round=%s questions=%s", session_id, round_no + 1, len(questions))
        else:  # pragma: no cover
            raise TypeError(f"unexpected outcome {type(outcome).__name__}")

        await self.store.update(session_id, update)
        return self._view(await self.store.get(session_id))

    async def _compose(self, rates: RatesReady, params: QuoteRequestParams, location: LocationInfo) -> QuoteResult:
        schedule = await self.locations.lookup_state_fees(location.state_code)
        lines = compose_fee_lines(
            rates.fee_rows,
            params,
            schedule,
            guaranteed=True,
            synthesize_settlement=location.state_code in DEFECTIVE_SETTLEMENT_CATALOG_STATES,
        )
        return QuoteResult(fees=tuple(lines), comments=rates.comments)

    async def _fail(self, session_id: str, e: QuoteError, *, stage: str) -> QuoteError:
        public, ref = sanitize(e, stage=stage, session_id=session_id)
        try:
            await self.store.update(
                session_id,
                {
                    "state": NegotiationState.errored.value,
                    "error": {
                        "code": e.code,
                        "message": public.message,
                        "reference": ref,
                        "stage": stage,
                        "at": _utcnow_iso(),
                    },
                },
            )
        except StorageUnavailable as store_err:
            log.error("could not record failure for session=%s ref=%s err=%r", session_id, ref, store_err)
        return public

    def _view(self, rec: Record, *, already_completed: bool = False) -> dict[str, Any]:
        state = _state(rec)
        out: dict[str, Any] = {
            "sessionId": rec["sessionId"],
            "status": state.value,
            "locationInfo": rec.get("location"),
            "round": int(rec.get("round", 0)),
            "createdAt": rec.get("createdAt"),
            "expiresAt": rec.get("expiresAt"),
        }
        if state is NegotiationState.awaiting_answers:
            questions = [Question.from_dict(q) for q in rec.get("questions", [])]
            out["questions"] = rec.get("questions", [])
            out["questionSummary"] = summarize(questions)
            out["questionGroups"] = {name: [q.id for q in qs] for name, qs in group_by_category(questions).items()}
        elif state is NegotiationState.completed:
            result = QuoteResult.from_dict(rec.get("result") or {})
            out.update(result.to_dict())
            out["feeSummary"] = summarize_fees(result.fees)
            out["answerSummary"] = rec.get("answerSummary") or []
            out["alreadyCompleted"] = already_completed
        elif state is NegotiationState.errored:
            out["error"] = rec.get("error")
        return out
