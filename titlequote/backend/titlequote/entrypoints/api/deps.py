# titlequote/entrypoints/api/deps.py
from __future__ import annotations

from fastapi import Header, Request

from ...adapters.repos.sessions import FallbackSessionStore
from ...config import settings
from ...domain.errors import Unauthorized
from ...service_layer.use_cases.official_quote import OfficialQuoteService
from ...service_layer.use_cases.quick_quote import QuickQuoteService


def require_api_key(x_api_key: str | None = Header(default=None, alias="X-API-Key")) -> None:
    if settings.API_KEY:
        if not x_api_key or x_api_key != settings.API_KEY:
            raise Unauthorized("Invalid API key")


def official_quote_service(request: Request) -> OfficialQuoteService:
    return request.app.state.official_quote


def quick_quote_service(request: Request) -> QuickQuoteService:
    return request.app.state.quick_quote


def session_store(request: Request) -> FallbackSessionStore:
    return request.app.state.session_store
