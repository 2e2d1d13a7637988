"""
Agent session registration routes.

The spawner calls POST /api/agent-sessions with action "start" once it
knows the session id of a newly spawned agent, and with "stop" when the
agent is done. Both answer with the complete registry.
"""

import logging

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from ...exceptions import RegistrationError
from ...models.schemas import AgentSessionRequest
from ...services.engine import LivenessEngine
from ..deps import get_engine

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/agent-sessions")
async def list_agent_sessions(engine: LivenessEngine = Depends(get_engine)):
    """Current registry map."""
    try:
        return engine.registry_map()
    except Exception as e:
        logger.error(f"Error reading agent sessions: {e}", exc_info=True)
        return JSONResponse(status_code=500, content={"error": str(e)})


@router.post("/agent-sessions")
async def update_agent_sessions(request: Request, engine: LivenessEngine = Depends(get_engine)):
    """Register ("start") or unregister ("stop") an agent's session."""
    try:
        body = await request.json()
    except ValueError as e:
        logger.warning(f"Malformed agent-sessions body: {e}")
        return JSONResponse(status_code=500, content={"error": f"Invalid JSON body: {e}"})

    try:
        payload = AgentSessionRequest.model_validate(body)
    except ValidationError as e:
        return JSONResponse(status_code=400, content={"error": f"Invalid request: {e.errors()[0]['msg']}"})

    try:
        if payload.action == "start":
            engine.register(
                payload.agent,
                payload.session_id,
                session_key=payload.session_key,
                task=payload.task,
                model=payload.model,
            )
        elif payload.action == "stop":
            engine.unregister(payload.agent)
        else:
            logger.debug(f"Ignoring agent-sessions action {payload.action!r}")

        return engine.registry_map()
    except RegistrationError as e:
        return JSONResponse(status_code=400, content={"error": str(e)})
    except Exception as e:
        logger.error(f"Error updating agent sessions: {e}", exc_info=True)
        return JSONResponse(status_code=500, content={"error": str(e)})
