"""Agent status API routes."""

import logging

from fastapi import APIRouter, Depends, Response
from fastapi.responses import JSONResponse

from ...models.schemas import EmployeeStatusResponse
from ...services.engine import LivenessEngine
from ..deps import get_engine

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/employee-status", response_model=EmployeeStatusResponse)
async def employee_status(response: Response, engine: LivenessEngine = Depends(get_engine)):
    """Working/idle status of every agent, joined with its profile."""
    try:
        agents = engine.employee_status()
    except Exception as e:
        logger.error(f"Error getting agent status: {e}", exc_info=True)
        return JSONResponse(status_code=500, content={"error": "Failed to get agent status"})

    response.headers["Cache-Control"] = "no-cache"
    return EmployeeStatusResponse(agents=agents)
