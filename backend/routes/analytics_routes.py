from fastapi import APIRouter, Depends, HTTPException
from typing import Optional
from sqlalchemy.orm import Session

from auth import get_current_user
from database import get_db
from exceptions import NotFoundError
from services.analytics_service import AnalyticsService, ANALYTICS_TYPES

router = APIRouter(prefix="/api/v1/analytics", tags=["Analytics"])


@router.get("")
async def get_analytics(
    type: str = "overview",
    timeframe: str = "30d",
    track_id: Optional[int] = None,
    user_id: int = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    if type not in ANALYTICS_TYPES:
        raise HTTPException(status_code=400, detail="Invalid analytics type")
    if type == "track" and track_id is None:
        raise HTTPException(status_code=400, detail="Track ID required")

    try:
        return AnalyticsService.get(db, user_id, type, timeframe, track_id)
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=e.message)
