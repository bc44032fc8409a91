# titlequote/entrypoints/api/routers/official_quote.py
from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Body, Depends
from pydantic import BaseModel, ValidationError

from ....domain.errors import InvalidInput
from ....schemas import ActionRequest, RecordingRequest, StartRequest, StatusRequest, SubmitRequest
from ....service_layer.use_cases.official_quote import OfficialQuoteService
from ..deps import official_quote_service
from ..errors import field_errors

router = APIRouter(tags=["official-quote"])


@router.post("/official-quote/start")
async def start(
    body: StartRequest,
    svc: OfficialQuoteService = Depends(official_quote_service),
) -> dict[str, Any]:
    return await svc.start(
        body.to_params(force_questions=body.force_questions),
        overrides=body.to_overrides(),
        session_id=body.session_id,
    )


@router.post("/official-quote/submit")
async def submit(
    body: SubmitRequest,
    svc: OfficialQuoteService = Depends(official_quote_service),
) -> dict[str, Any]:
    return await svc.submit(body.session_id, body.answers)


@router.post("/official-quote/status")
async def status(
    body: StatusRequest,
    svc: OfficialQuoteService = Depends(official_quote_service),
) -> dict[str, Any]:
    return await svc.status(body.session_id)


@router.post("/official-quote/recording")
async def update_recording(
    body: RecordingRequest,
    svc: OfficialQuoteService = Depends(official_quote_service),
) -> dict[str, Any]:
    return await svc.update_recording(body.session_id, body.recording.to_overrides())


_ACTION_BODIES: dict[str, type[BaseModel]] = {
    "start": StartRequest,
    "submit": SubmitRequest,
    "status": StatusRequest,
    "updateRecording": RecordingRequest,
}


def _parse(model: type[BaseModel], payload: dict[str, Any]) -> Any:
    try:
        return model.model_validate(payload)
    except ValidationError as e:
        raise InvalidInput("Invalid request body", details=field_errors(e.errors())) from e


@router.post("/official-quote")
async def dispatch(
    payload: dict[str, Any] = Body(...),
    svc: OfficialQuoteService = Depends(official_quote_service),
) -> dict[str, Any]:
    """One endpoint for clients that can only hit a single URL: `action` selects the operation."""
    action = _parse(ActionRequest, payload).action
    body = _parse(_ACTION_BODIES[action], payload)

    if action == "start":
        return await start(body, svc)
    if action == "submit":
        return await submit(body, svc)
    if action == "status":
        return await status(body, svc)
    return await update_recording(body, svc)
