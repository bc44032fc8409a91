# titlequote/entrypoints/api/errors.py
from __future__ import annotations

import logging
from typing import Any, Iterable

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from ...domain.errors import QuoteError, ValidationFailed

log = logging.getLogger(__name__)


def field_errors(errors: Iterable[dict[str, Any]]) -> list[dict[str, str]]:
    # pydantic ctx can hold exception objects; keep only what serializes
    out: list[dict[str, str]] = []
    for err in errors:
        loc = [str(p) for p in err.get("loc", ()) if p != "body"]
        out.append({"field": ".".join(loc), "error": str(err.get("msg", "invalid"))})
    return out


async def _quote_error(request: Request, exc: QuoteError) -> JSONResponse:
    body: dict[str, Any] = {"error": exc.message}
    if exc.details is not None:
        body["details"] = exc.details
    if isinstance(exc, ValidationFailed):
        body["validationErrors"] = exc.details
    if exc.status_code >= 500:
        log.warning("%s %s -> %s %s", request.method, request.url.path, exc.status_code, exc.code)
    return JSONResponse(status_code=exc.status_code, content=body)


async def _request_validation(request: Request, exc: RequestValidationError) -> JSONResponse:
    return JSONResponse(
        status_code=400,
        content={"error": "Invalid request body", "details": field_errors(exc.errors())},
    )


def install_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(QuoteError, _quote_error)
    app.add_exception_handler(RequestValidationError, _request_validation)
