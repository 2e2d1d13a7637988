"""Dashboard panel routes backed by the profile store."""

import logging
from typing import List

from fastapi import APIRouter, Depends, Response
from fastapi.responses import JSONResponse

from ...models.schemas import ActivityItem, DashboardResponse
from ...services.engine import LivenessEngine
from ..deps import get_engine

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/activity", response_model=List[ActivityItem])
async def activity_feed(response: Response, engine: LivenessEngine = Depends(get_engine)):
    """Ten most recent history entries, newest first."""
    try:
        items = engine.profiles.activity_feed()
    except Exception as e:
        logger.error(f"Error getting activity feed: {e}", exc_info=True)
        return JSONResponse(status_code=500, content={"error": "Failed to get activity feed"})

    response.headers["Cache-Control"] = "no-cache"
    return items


@router.get("/dashboard", response_model=DashboardResponse)
async def dashboard(response: Response, engine: LivenessEngine = Depends(get_engine)):
    """Leaderboard, recent events and system health."""
    try:
        data = engine.dashboard()
    except Exception as e:
        logger.error(f"Error getting dashboard data: {e}", exc_info=True)
        return JSONResponse(status_code=500, content={"error": "Failed to get dashboard data"})

    response.headers["Cache-Control"] = "no-cache"
    return data
