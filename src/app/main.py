"""
FastAPI application factory for Reengage.

Creates the app with lifespan, CORS, routers, and error handlers.

Usage:
    uvicorn src.app.main:app --reload --host 0.0.0.0 --port 8000
    AUTOSTART_INGESTION=false uvicorn src.app.main:app --reload
"""

import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from src.outreach.errors import ValidationError

from .config import get_app_config
from .dependencies import get_ingestion_loop, get_pipeline, release_pipeline
from .routers import admin, calls, dashboard, telemetry, users
from .schemas import ErrorResponse, HealthResponse

logger = logging.getLogger(__name__)


def _error_response(status_code: int, error: str, detail: str | None = None) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=ErrorResponse(error=error, detail=detail).model_dump(),
    )


def register_error_handlers(app: FastAPI, debug: bool = False) -> None:
    """Map project and HTTP errors onto ErrorResponse bodies.

    Malformed telemetry surfaces as 422; collaborator failures never reach
    this layer because the pipeline converts them into results.
    """

    @app.exception_handler(ValidationError)
    async def invalid_telemetry(request: Request, exc: ValidationError) -> JSONResponse:
        logger.warning(f"Rejected telemetry on {request.url.path}: {exc}")
        return _error_response(422, "Invalid Telemetry", str(exc))

    @app.exception_handler(404)
    async def not_found(request: Request, exc: Exception) -> JSONResponse:
        return _error_response(404, "Not Found", getattr(exc, "detail", None) or str(exc))

    @app.exception_handler(500)
    async def server_error(request: Request, exc: Exception) -> JSONResponse:
        logger.error(f"Internal server error on {request.url.path}: {exc}")
        return _error_response(500, "Internal Server Error", str(exc) if debug else None)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Build the pipeline and start ingestion on startup, release on shutdown."""
    config = get_app_config()

    pipeline = get_pipeline()
    loop = get_ingestion_loop()
    logger.info(f"Pipeline ready ({type(pipeline.orchestrator.call_history).__name__})")

    if config.autostart_ingestion:
        loop.start()
    else:
        logger.info("Ingestion loop not started; telemetry is processed inline")

    yield

    release_pipeline()
    logger.info("Pipeline released")


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    config = get_app_config()

    app = FastAPI(
        title="Reengage API",
        description="Storefront telemetry re-engagement and outreach platform",
        version="1.0.0",
        lifespan=lifespan,
    )

    # CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Routers
    prefix = config.api_prefix
    app.include_router(telemetry.router, prefix=prefix)
    app.include_router(dashboard.router, prefix=prefix)
    app.include_router(users.router, prefix=prefix)
    app.include_router(admin.router, prefix=prefix)
    app.include_router(calls.router, prefix=prefix)

    # Health check
    @app.get(f"{prefix}/health", response_model=HealthResponse, tags=["System"])
    def health_check(
        deep: bool = Query(False, description="Also ping the reasoning service"),
    ) -> HealthResponse:
        pipeline = get_pipeline()
        return HealthResponse(
            status="ok",
            ingestion_running=get_ingestion_loop().running,
            reasoning_configured=pipeline.engine.reasoning_client is not None,
            telephony_configured=pipeline.orchestrator.telephony is not None,
            call_history=type(pipeline.orchestrator.call_history).__name__,
            checks=pipeline.engine.health_check() if deep else None,
        )

    register_error_handlers(app, debug=config.debug)
    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    config = get_app_config()
    uvicorn.run("src.app.main:app", host=config.host, port=config.port, reload=config.debug)
