"""Per-user inspection endpoints."""

import logging

from fastapi import APIRouter, Depends, HTTPException

from src.outreach.pipeline import OutreachPipeline

from ..dependencies import get_pipeline
from ..schemas import (
    EngagementPointRequest,
    EngagementPointResponse,
    Trend,
    UserCalls,
    UserState,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/users", tags=["Users"])


@router.get("/{user_id}/state", response_model=UserState)
async def get_user_state(
    user_id: str,
    pipeline: OutreachPipeline = Depends(get_pipeline),
) -> UserState:
    """Get a user's decision state, removal count and call record."""
    data = pipeline.user_state(user_id)
    if data is None:
        raise HTTPException(status_code=404, detail="User not found")
    return UserState(**data)


@router.get("/{user_id}/trend", response_model=Trend)
async def get_user_trend(
    user_id: str,
    pipeline: OutreachPipeline = Depends(get_pipeline),
) -> Trend:
    """Analyze the user's engagement series."""
    return Trend(**pipeline.user_trend(user_id).to_dict())


@router.post("/{user_id}/engagement", response_model=EngagementPointResponse)
async def record_engagement(
    user_id: str,
    request: EngagementPointRequest,
    pipeline: OutreachPipeline = Depends(get_pipeline),
) -> EngagementPointResponse:
    """Append an engagement value to the user's series."""
    points = pipeline.record_engagement(user_id, request.value, request.timestamp)
    return EngagementPointResponse(user_id=user_id, points=points)


@router.get("/{user_id}/calls", response_model=UserCalls)
async def get_user_calls(
    user_id: str,
    pipeline: OutreachPipeline = Depends(get_pipeline),
) -> UserCalls:
    """Get the user's call record and any failed dispatch awaiting retry."""
    record = pipeline.orchestrator.call_history.get(user_id)
    failed = next(
        (f for f in pipeline.orchestrator.failed_dispatches() if f.snapshot.user_id == user_id),
        None,
    )
    return UserCalls(
        user_id=user_id,
        call_record=record.to_dict() if record else None,
        failed_dispatch=failed.to_dict() if failed else None,
    )
