# titlequote/entrypoints/fastapi_app.py
from __future__ import annotations

import logging

from fastapi import FastAPI, Response
from fastapi.middleware.cors import CORSMiddleware

from ..adapters.clients.http_resilience import ResilientHttp
from ..adapters.clients.lvis import LvisRateCalculatorClient, RateCalculator
from ..adapters.clients.oauth import OAuthTokenProvider
from ..adapters.repos.locations import LocationLookup, SqlAlchemyLocationLookup
from ..adapters.repos.sessions import FallbackSessionStore, SqlAlchemySessionStore
from ..config import settings
from ..db import async_session_maker, engine
from ..jobs.scheduler import build_scheduler
from ..models import Base
from ..service_layer.use_cases.official_quote import OfficialQuoteService
from ..service_layer.use_cases.quick_quote import QuickQuoteService
from .api.errors import install_error_handlers
from .api.routers import health, official_quote, quick_quote

log = logging.getLogger(__name__)


def _default_rates() -> RateCalculator:
    # one pool and one breaker for the identity provider and the calculator
    http = ResilientHttp()
    return LvisRateCalculatorClient(tokens=OAuthTokenProvider.from_settings(http), http=http)


def create_app(
    *,
    store: FallbackSessionStore | None = None,
    locations: LocationLookup | None = None,
    rates: RateCalculator | None = None,
) -> FastAPI:
    app = FastAPI(title="TitleQuote - LVIS official quotes")

    store = store or FallbackSessionStore(SqlAlchemySessionStore(async_session_maker))
    locations = locations or SqlAlchemyLocationLookup(async_session_maker)
    rates = rates or _default_rates()

    app.state.session_store = store
    app.state.official_quote = OfficialQuoteService(
        store=store,
        locations=locations,
        rates=rates,
        client_customer_id=settings.LVIS_CLIENT_CUSTOMER_ID,
    )
    app.state.quick_quote = QuickQuoteService(
        locations=locations,
        rates=rates,
        client_customer_id=settings.LVIS_CLIENT_CUSTOMER_ID,
    )
    app.state.scheduler = None

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ALLOW_ORIGINS,
        allow_methods=["OPTIONS", "POST", "GET"],
        allow_headers=["Content-Type", "X-API-Key"],
    )
    install_error_handlers(app)

    @app.on_event("startup")
    async def _startup() -> None:
        # Single place where DB tables are created in dev.
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

        if settings.SESSION_SWEEP_ENABLED:
            app.state.scheduler = build_scheduler(store)
            app.state.scheduler.start()
            log.info("session sweep scheduled every %s min", settings.SESSION_SWEEP_INTERVAL_MINUTES)

    @app.on_event("shutdown")
    async def _shutdown() -> None:
        if app.state.scheduler is not None:
            app.state.scheduler.shutdown(wait=False)

    # Bare OPTIONS (no preflight headers) still gets an empty 200.
    @app.options("/{path:path}", include_in_schema=False)
    async def _options(path: str) -> Response:
        return Response(status_code=200)

    # Routers
    app.include_router(health.router)
    app.include_router(official_quote.router)
    app.include_router(quick_quote.router)

    return app
