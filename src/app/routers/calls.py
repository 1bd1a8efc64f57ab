"""Telephony provider endpoints: status webhook and call lookup."""

import logging
from typing import Any

from fastapi import APIRouter, Body, Depends, HTTPException

from src.outreach.errors import CollaboratorUnavailable
from src.outreach.pipeline import OutreachPipeline

from ..dependencies import get_pipeline
from ..schemas import CallDetails, WebhookAck

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Calls"])


@router.post("/webhooks/vapi", response_model=WebhookAck)
async def vapi_webhook(
    body: dict[str, Any] = Body(...),
    pipeline: OutreachPipeline = Depends(get_pipeline),
) -> WebhookAck:
    """Receive call lifecycle events from Vapi.

    Accepts both the bare ``{type, call}`` event and Vapi's
    ``{message: {type, call}}`` envelope. Always acknowledged.
    """
    event = body.get("message") if isinstance(body.get("message"), dict) else body
    event_type = str(event.get("type", ""))
    call = event.get("call") if isinstance(event.get("call"), dict) else {}

    tracked = pipeline.orchestrator.record_call_event(event_type, call)
    return WebhookAck(event_type=event_type, tracked=tracked is not None)


@router.get("/calls/{call_id}", response_model=CallDetails)
def get_call(
    call_id: str,
    pipeline: OutreachPipeline = Depends(get_pipeline),
) -> CallDetails:
    """Combine the webhook status with the provider's call details."""
    status = pipeline.orchestrator.call_event(call_id)
    try:
        call, error = pipeline.orchestrator.lookup_call(call_id), None
    except CollaboratorUnavailable as e:
        logger.warning(f"Call lookup failed for {call_id}: {e.detail}")
        call, error = None, e.detail

    if status is None and call is None:
        detail = "Call not found" if error is None else f"Call not found: {error}"
        raise HTTPException(status_code=404, detail=detail)
    return CallDetails(call_id=call_id, status=status, call=call, error=error)
