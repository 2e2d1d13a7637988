"""FastAPI server for the facility status dashboard."""

import argparse
import logging
import time
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from . import __version__
from .api.routes import dashboard, sessions, status
from .config import Settings
from .models.schemas import HealthResponse
from .services.engine import LivenessEngine

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def create_app(settings: Optional[Settings] = None, engine: Optional[LivenessEngine] = None) -> FastAPI:
    """
    Build the application around one liveness engine.

    Args:
        settings: Settings to use (defaults to Settings.from_env())
        engine: Pre-built engine, mainly for tests

    Returns:
        Configured FastAPI app; the engine is available as app.state.engine
    """
    if engine is None:
        engine = LivenessEngine(settings or Settings.from_env())
    settings = engine.settings
    server_start_time = time.time()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Manage application lifecycle."""
        logger.info("Starting facility status server...")
        logger.info(f"Agents root: {settings.agents_root}")
        logger.info(f"Registry: {settings.registry_path}")
        engine.start()

        yield

        logger.info("Shutting down facility status server...")
        engine.stop()

    app = FastAPI(
        title="Facility Status API",
        description="Agent liveness and dashboard data for the facility",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.engine = engine

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(status.router, prefix="/api", tags=["status"])
    app.include_router(sessions.router, prefix="/api", tags=["sessions"])
    app.include_router(dashboard.router, prefix="/api", tags=["dashboard"])

    @app.get("/health", tags=["health"], response_model=HealthResponse)
    async def health_check():
        """Health check endpoint."""
        return HealthResponse(
            status="healthy",
            version=__version__,
            uptime=time.time() - server_start_time,
            timestamp=datetime.now(),
            watcher=engine.get_stats(),
        )

    @app.get("/", tags=["root"])
    async def root():
        """Root endpoint."""
        return {
            "message": "Facility Status API",
            "version": __version__,
            "docs": "/docs",
            "health": "/health",
            "status": "/api/employee-status",
            "sessions": "/api/agent-sessions",
        }

    @app.exception_handler(StarletteHTTPException)
    async def http_error_handler(request: Request, exc: StarletteHTTPException):
        """Report HTTP errors in the API's error shape."""
        message = "Resource not found" if exc.status_code == 404 else str(exc.detail)
        return JSONResponse(status_code=exc.status_code, content={"error": message})

    @app.exception_handler(Exception)
    async def internal_error_handler(request: Request, exc: Exception):
        """Last-resort handler; never sends a traceback to the client."""
        logger.error(f"Unhandled error on {request.method} {request.url.path}: {exc}", exc_info=exc)
        return JSONResponse(status_code=500, content={"error": "Internal server error"})

    return app


def main(argv=None):
    """Run the server with uvicorn."""
    import uvicorn

    settings = Settings.from_env()

    parser = argparse.ArgumentParser(description="Facility status server")
    parser.add_argument("--host", default=settings.host, help="Bind address")
    parser.add_argument("--port", type=int, default=settings.port, help="Bind port")
    parser.add_argument("--log-level", default=settings.log_level, help="Logging level")
    args = parser.parse_args(argv)

    logging.basicConfig(level=args.log_level.upper(), format=LOG_FORMAT)

    app = create_app(settings.with_overrides(host=args.host, port=args.port, log_level=args.log_level))
    uvicorn.run(app, host=args.host, port=args.port, log_level=args.log_level.lower())


if __name__ == "__main__":
    main()
