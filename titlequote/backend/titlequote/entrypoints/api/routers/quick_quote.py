# titlequote/entrypoints/api/routers/quick_quote.py
from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends

from ....schemas import QuickQuoteRequest
from ....service_layer.use_cases.quick_quote import QuickQuoteService
from ..deps import quick_quote_service

router = APIRouter(tags=["quick-quote"])


@router.post("/quick-quote")
async def quick_quote(
    body: QuickQuoteRequest,
    svc: QuickQuoteService = Depends(quick_quote_service),
) -> dict[str, Any]:
    return await svc.quote(body.to_params(), body.to_overrides())
