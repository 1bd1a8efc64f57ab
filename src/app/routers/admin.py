"""Admin endpoints: ingestion control, test resets and explicit retries."""

import logging

from fastapi import APIRouter, Depends, HTTPException

from src.outreach.pipeline import IngestionLoop, OutreachPipeline

from ..dependencies import get_ingestion_loop, get_pipeline
from ..schemas import ClearResponse, Dispatch, IngestionStatus

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/admin", tags=["Admin"])


@router.get("/ingestion", response_model=IngestionStatus)
async def get_ingestion_status(
    loop: IngestionLoop = Depends(get_ingestion_loop),
) -> IngestionStatus:
    """Get ingestion loop state and counters."""
    return IngestionStatus(**loop.stats())


@router.post("/ingestion/start", response_model=IngestionStatus)
async def start_ingestion(
    loop: IngestionLoop = Depends(get_ingestion_loop),
) -> IngestionStatus:
    """Start the background ingestion loop. No-op if already running."""
    if loop.start():
        logger.info("Ingestion started via admin endpoint")
    return IngestionStatus(**loop.stats())


@router.post("/ingestion/stop", response_model=IngestionStatus)
async def stop_ingestion(
    loop: IngestionLoop = Depends(get_ingestion_loop),
) -> IngestionStatus:
    """Stop the background ingestion loop. No-op if not running."""
    if loop.stop():
        logger.info("Ingestion stopped via admin endpoint")
    return IngestionStatus(**loop.stats())


@router.post("/users/{user_id}/clear", response_model=ClearResponse)
async def clear_user(
    user_id: str,
    pipeline: OutreachPipeline = Depends(get_pipeline),
) -> ClearResponse:
    """Forget everything about a user, including their call record. Testing only."""
    pipeline.clear_user(user_id)
    return ClearResponse(user_id=user_id)


@router.post("/outreach/{user_id}/retry", response_model=Dispatch)
def retry_outreach(
    user_id: str,
    pipeline: OutreachPipeline = Depends(get_pipeline),
) -> Dispatch:
    """Re-dispatch a failed call for a user."""
    result = pipeline.orchestrator.retry(user_id)
    if result.rejected:
        raise HTTPException(status_code=409, detail=result.error)
    return Dispatch(**result.to_dict())
