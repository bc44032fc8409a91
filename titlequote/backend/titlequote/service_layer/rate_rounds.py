# titlequote/service_layer/rate_rounds.py
from __future__ import annotations

import asyncio
import logging
import uuid
from typing import Awaitable, TypeVar

from ..adapters.clients.lvis import RateCalculator
from ..adapters.lvis_xml.builders import build_product_list_request, build_rate_calc_request
from ..adapters.lvis_xml.parsers import parse_product_list
from ..config import settings
from ..domain.errors import (
    MalformedUpstreamResponse,
    QuoteError,
    StorageUnavailable,
    UpstreamAuthFailure,
    UpstreamRejected,
    UpstreamTimeout,
    UpstreamUnavailable,
)
from ..domain.types import LocationInfo, QuoteRequestParams, RecordingOverrides

log = logging.getLogger(__name__)

T = TypeVar("T")

PUBLIC_MESSAGES: dict[type[QuoteError], str] = {
    UpstreamAuthFailure: "Could not authenticate with the rate service",
    MalformedUpstreamResponse: "The rate service returned an unexpected response",
    UpstreamRejected: "The rate service rejected the request",
    UpstreamUnavailable: "The rate service is unavailable",
    UpstreamTimeout: "The rate service timed out; the same request can be retried",
    StorageUnavailable: "Quote session storage is unavailable",
}


async def bounded(aw: Awaitable[T], timeout_s: float | None = None) -> T:
    """Whole-round deadline on top of the per-request HTTP timeouts."""
    try:
        return await asyncio.wait_for(aw, timeout=timeout_s if timeout_s is not None else settings.ROUND_TIMEOUT_S)
    except asyncio.TimeoutError as e:
        raise UpstreamTimeout("round_timeout") from e


def sanitize(e: QuoteError, *, stage: str, session_id: str | None = None) -> tuple[QuoteError, str]:
    """
    Log the full failure and return a caller-safe copy of it.

    The copy keeps the class (so HTTP status mapping still works) but carries
    only a public message and an opaque reference into the log.
    """
    ref = uuid.uuid4().hex[:12]
    log.error(
        "quote failure ref=%s stage=%s session=%s type=%s message=%s details=%s",
        ref,
        stage,
        session_id,
        type(e).__name__,
        e.message,
        e.details,
        exc_info=e.__cause__ or e,
    )
    public = type(e)(PUBLIC_MESSAGES.get(type(e), "Quote request failed"), details=f"ref:{ref}")
    return public, ref


async def discovery_round(
    rates: RateCalculator,
    params: QuoteRequestParams,
    location: LocationInfo,
    overrides: RecordingOverrides | None = None,
    *,
    client_customer_id: str | None = None,
) -> bytes:
    """ProductList, then RateCalc built from whatever the catalog enabled. Strictly sequential."""
    catalog_raw = await rates.product_list(
        build_product_list_request(params, location, client_customer_id=client_customer_id)
    )
    catalog = parse_product_list(catalog_raw)
    log.info(
        "catalog state=%s title=%s lender=%s endorsements=%s closing=%s recording=%s",
        location.state_code,
        len(catalog.title_policies),
        len(catalog.lender_policies),
        len(catalog.endorsements),
        len(catalog.closing_products),
        len(catalog.recording_documents),
    )
    payload = build_rate_calc_request(
        params, location, catalog, overrides=overrides, client_customer_id=client_customer_id
    )
    return await rates.rate_calc(payload)
