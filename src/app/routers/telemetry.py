"""Telemetry ingest endpoints. Authentication is handled by the host service."""

import logging
from typing import Any

from fastapi import APIRouter, Body, Depends, HTTPException, status

from src.outreach.errors import BacklogFull
from src.outreach.models import TelemetrySnapshot
from src.outreach.pipeline import IngestionLoop, OutreachPipeline

from ..dependencies import get_ingestion_loop, get_pipeline
from ..schemas import ProcessResponse, TelemetryAccepted

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/telemetry", tags=["Telemetry"])


@router.post("", response_model=TelemetryAccepted, status_code=status.HTTP_202_ACCEPTED)
async def ingest_telemetry(
    payload: dict[str, Any] = Body(...),
    pipeline: OutreachPipeline = Depends(get_pipeline),
    loop: IngestionLoop = Depends(get_ingestion_loop),
) -> TelemetryAccepted:
    """Accept one snapshot for asynchronous processing.

    Malformed payloads are rejected here with 422 rather than in the loop.
    """
    snapshot = TelemetrySnapshot.from_dict(payload)

    if loop.running:
        if not loop.enqueue(snapshot):
            raise HTTPException(status_code=503, detail="Ingestion queue is full")
        return TelemetryAccepted(user_id=snapshot.user_id, queued=True)

    try:
        pipeline.ingest(snapshot, timeout=0)
    except BacklogFull as e:
        raise HTTPException(status_code=503, detail=str(e)) from e
    return TelemetryAccepted(user_id=snapshot.user_id, queued=False)


@router.post("/process", response_model=ProcessResponse)
def process_telemetry(
    payload: dict[str, Any] = Body(...),
    pipeline: OutreachPipeline = Depends(get_pipeline),
) -> ProcessResponse:
    """Process one snapshot synchronously and return signals and decision."""
    result = pipeline.process(payload)
    return ProcessResponse(**result.to_dict())
