# titlequote/service_layer/use_cases/quick_quote.py
from __future__ import annotations

import logging
from typing import Any

from ...adapters.clients.lvis import RateCalculator
from ...adapters.lvis_xml.parsers import parse_final_response
from ...adapters.repos.locations import LocationLookup
from ...domain.errors import RETRYABLE_ROUND_ERRORS, UPSTREAM_ERRORS
from ...domain.fees import compose_fee_lines, summarize_fees
from ...domain.types import QuoteRequestParams, QuoteResult, RecordingOverrides
from ..rate_rounds import bounded, discovery_round, sanitize

log = logging.getLogger(__name__)


class QuickQuoteService:
    """
    Stateless estimate: one discovery round, no questions, no session.

    Nothing here is guaranteed, so every line is marked that way and the
    state schedule fills in the fees the calculator doesn't price.
    """

    def __init__(
        self,
        *,
        locations: LocationLookup,
        rates: RateCalculator,
        round_timeout_s: float | None = None,
        client_customer_id: str | None = None,
    ) -> None:
        self.locations = locations
        self.rates = rates
        self.round_timeout_s = round_timeout_s
        self.client_customer_id = client_customer_id

    async def quote(self, params: QuoteRequestParams, overrides: RecordingOverrides | None = None) -> dict[str, Any]:
        location = await self.locations.lookup_location(params.postal_code)
        try:
            raw = await bounded(
                discovery_round(
                    self.rates, params, location, overrides, client_customer_id=self.client_customer_id
                ),
                self.round_timeout_s,
            )
            rates = parse_final_response(raw)
        except RETRYABLE_ROUND_ERRORS + UPSTREAM_ERRORS as e:
            raise sanitize(e, stage="quick_quote")[0] from e

        schedule = await self.locations.lookup_state_fees(location.state_code)
        lines = compose_fee_lines(
            rates.fee_rows,
            params,
            schedule,
            guaranteed=False,
            synthesize_settlement=True,
            include_schedule_extras=True,
        )
        result = QuoteResult(fees=tuple(lines), comments=rates.comments)
        log.info(
            "quick quote zip=%s kind=%s fees=%s buyer=%s",
            params.postal_code,
            params.kind.value,
            len(result.fees),
            result.total_buyer,
        )
        out = result.to_dict()
        out["locationInfo"] = location.to_dict()
        out["feeSummary"] = summarize_fees(result.fees)
        return out
