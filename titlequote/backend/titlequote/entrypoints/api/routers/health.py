# titlequote/entrypoints/api/routers/health.py
from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, Request

from ....adapters.repos.sessions import FallbackSessionStore
from ....config import settings
from ..deps import require_api_key, session_store

router = APIRouter(tags=["health"])


@router.get("/health")
def health() -> dict[str, str]:
    return {"status": "ok"}


@router.get("/debug/sessions", dependencies=[Depends(require_api_key)])
async def debug_sessions(store: FallbackSessionStore = Depends(session_store)) -> dict[str, Any]:
    return {"sessions": await store.stats()}


@router.get("/debug/config", dependencies=[Depends(require_api_key)])
def debug_config() -> dict[str, Any]:
    def _redact(v: str | None) -> str | None:
        if not v:
            return v
        if len(v) <= 8:
            return "***"
        return v[:4] + "***" + v[-4:]

    return {
        "ENV": settings.ENV,
        "QUOTE_DB_URL": settings.QUOTE_DB_URL,
        "LVIS_BASE_URL": settings.LVIS_BASE_URL,
        "LVIS_TOKEN_URL": settings.lvis_token_url,
        "LVIS_CLIENT_ID": _redact(settings.LVIS_CLIENT_ID),
        "LVIS_CLIENT_SECRET_SET": bool(settings.LVIS_CLIENT_SECRET),
        "API_KEY_SET": bool(settings.API_KEY),
        "SESSION_TTL_HOURS": settings.SESSION_TTL_HOURS,
    }


@router.get("/debug/routes", dependencies=[Depends(require_api_key)])
def debug_routes(request: Request) -> dict[str, Any]:
    routes: list[str] = []
    for r in request.app.routes:
        methods = getattr(r, "methods", None)
        path = getattr(r, "path", None)
        if path:
            if methods:
                routes.append(f"{sorted(list(methods))} {path}")
            else:
                routes.append(path)
    return {"count": len(routes), "routes": sorted(routes)}
