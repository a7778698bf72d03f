"""
Main FastAPI application.
Brings together all components and configurations.
"""

import logging
import time
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from starlette.exceptions import HTTPException as StarletteHTTPException

from comm_service.api import api_router
from comm_service.constants import SERVICE_NAME
from comm_service.core.config import Settings, settings as default_settings
from comm_service.core.exceptions import CommServiceError
from comm_service.core.logging import setup_logging
from comm_service.core.metrics import render_latest
from comm_service.core.tracing import start_tracing
from comm_service.services.container import ServiceContainer, build_container

logger = logging.getLogger(__name__)


def create_app(
    container: Optional[ServiceContainer] = None, settings: Optional[Settings] = None
) -> FastAPI:
    """
    Create the FastAPI application.

    Args:
        container: Pre-built service container (default: built on startup from settings)
        settings: Application settings (default: loaded from the environment)

    Returns:
        FastAPI: Configured application
    """
    settings = settings or (container.settings if container else default_settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if app.state.container is None:
            app.state.container = build_container(settings)
        if settings.otel_enabled:
            start_tracing(SERVICE_NAME)

        if await app.state.container.store.ping():
            logger.info("Redis connection verified successfully")
        else:
            logger.warning("Redis connection check failed")
        logger.info(f"{settings.app_name} started ({settings.environment})")

        yield

        await app.state.container.close()
        logger.info(f"{settings.app_name} stopped")

    app = FastAPI(
        title=settings.app_name,
        description="Dispatch gateway for notifications, cross-service commands and verification",
        version="1.0.0",
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )
    app.state.container = container

    # Add CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Request timing middleware
    @app.middleware("http")
    async def add_process_time_header(request: Request, call_next):
        """Add processing time to response headers and log the request."""
        start_time = time.time()
        response = await call_next(request)
        process_time = time.time() - start_time
        response.headers["X-Process-Time"] = str(process_time)

        idempotency_key = request.headers.get("Idempotency-Key")
        suffix = f" [idempotency-key={idempotency_key}]" if idempotency_key else ""
        logger.info(
            f"{request.method} {request.url.path} {response.status_code} "
            f"{process_time * 1000:.1f}ms{suffix}"
        )
        return response

    # Global exception handlers
    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        """Handle request validation errors."""
        return JSONResponse(
            status_code=422,
            content={
                "success": False,
                "message": "Validation error",
                "detail": jsonable_errors(exc),
                "error_type": "validation_error",
            },
        )

    @app.exception_handler(CommServiceError)
    async def comm_service_exception_handler(request: Request, exc: CommServiceError):
        """Handle service-specific exceptions."""
        return JSONResponse(
            status_code=exc.status_code,
            content={"success": False, "message": exc.detail, "error_type": exc.error_type},
        )

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException):
        """Handle HTTP exceptions."""
        return JSONResponse(
            status_code=exc.status_code,
            content={"success": False, "message": exc.detail, "error_type": "http_error"},
            headers=getattr(exc, "headers", None),
        )

    @app.exception_handler(Exception)
    async def general_exception_handler(request: Request, exc: Exception):
        """Handle general exceptions."""
        logger.error(f"Unhandled exception: {exc}", exc_info=True)
        return JSONResponse(
            status_code=500,
            content={
                "success": False,
                "message": "Internal server error",
                "error_type": "internal_error",
            },
        )

    # Include API routes
    app.include_router(api_router)

    @app.get("/metrics", tags=["health"], include_in_schema=False)
    async def metrics() -> Response:
        payload, content_type = render_latest()
        return Response(content=payload, media_type=content_type)

    @app.get("/api", tags=["root"])
    async def api_info():
        """
        API information endpoint.

        Returns:
            dict: Application information and available endpoints
        """
        return {
            "message": f"Welcome to {settings.app_name}",
            "version": "1.0.0",
            "status": "running",
            "docs": "/docs",
            "health": "/health",
            "metrics": "/metrics",
            "api": "/api/v1",
        }

    return app


def jsonable_errors(exc: RequestValidationError) -> list:
    # pydantic error contexts may hold exception instances
    return [
        {key: value for key, value in error.items() if key != "ctx"} for error in exc.errors()
    ]


setup_logging(default_settings.log_level)
app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "comm_service.main:app",
        host="0.0.0.0",
        port=8080,
        reload=default_settings.debug,
        log_level="info",
    )
