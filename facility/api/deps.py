"""FastAPI dependencies."""

from fastapi import Request

from ..services.engine import LivenessEngine


def get_engine(request: Request) -> LivenessEngine:
    """The engine created by the app factory."""
    return request.app.state.engine
