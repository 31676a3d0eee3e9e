"""FastAPI application for Hookrelay."""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from hookrelay import __version__
from hookrelay.config import Settings
from hookrelay.exceptions import (
    ConfigurationError,
    HookrelayError,
    NotFoundError,
    StorageError,
    ValidationError,
)
from hookrelay.logging import configure_from_settings, get_logger
from hookrelay.service import WebhookService

from .router import router, set_service

logger = get_logger(__name__)


def create_app(settings: Settings | None = None, service: WebhookService | None = None) -> FastAPI:
    """Create a FastAPI application.

    Args:
        settings: Optional settings. Uses environment if None.
        service: Optional pre-built service; created from settings if None.

    Returns:
        Configured FastAPI application.

    Example:
        ```python
        from hookrelay.api import create_app

        app = create_app()
        # Or: uvicorn --factory hookrelay.api:create_app
        ```
    """
    if settings is None:
        settings = Settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        configure_from_settings(settings)
        logger.info(
            "Starting Hookrelay API",
            storage_backend=settings.storage_backend,
            max_concurrent=settings.max_concurrent_deliveries,
        )
        relay = service or WebhookService.create(settings)
        await relay.initialize()
        set_service(relay)

        yield

        logger.info("Stopping Hookrelay API", in_flight=relay.dispatcher.in_flight)
        await relay.close()
        set_service(None)

    app = FastAPI(
        title="Hookrelay",
        description="Signed webhook delivery with retry and a dead-letter queue.",
        version=__version__,
        lifespan=lifespan,
        docs_url="/docs",
        redoc_url="/redoc",
    )

    if settings.cors_enabled:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=settings.cors_allow_origins,
            allow_methods=settings.cors_allow_methods,
            allow_headers=settings.cors_allow_headers,
        )

    @app.exception_handler(ValidationError)
    async def validation_error_handler(request: Request, exc: ValidationError) -> JSONResponse:
        """Handle validation errors with 400 status."""
        logger.warning(
            "Validation error", field=exc.field, error=exc.message, path=str(request.url)
        )
        return JSONResponse(status_code=400, content=exc.to_dict())

    @app.exception_handler(NotFoundError)
    async def not_found_error_handler(request: Request, exc: NotFoundError) -> JSONResponse:
        """Handle not found errors with 404 status."""
        logger.info(
            "Resource not found",
            resource_type=exc.resource_type,
            resource_id=exc.resource_id,
            path=str(request.url),
        )
        return JSONResponse(status_code=404, content=exc.to_dict())

    @app.exception_handler(ConfigurationError)
    async def configuration_error_handler(
        request: Request, exc: ConfigurationError
    ) -> JSONResponse:
        """Handle unusable signing configuration with 422 status."""
        logger.warning("Configuration error", error=exc.message, path=str(request.url))
        return JSONResponse(status_code=422, content=exc.to_dict())

    @app.exception_handler(StorageError)
    async def storage_error_handler(request: Request, exc: StorageError) -> JSONResponse:
        """Handle an unreachable store with 503 status."""
        logger.error("Storage unavailable", error=exc.message, path=str(request.url))
        return JSONResponse(status_code=503, content=exc.to_dict())

    @app.exception_handler(HookrelayError)
    async def hookrelay_error_handler(request: Request, exc: HookrelayError) -> JSONResponse:
        """Handle all other Hookrelay errors with 500 status."""
        logger.error("Hookrelay error", error=exc.message, code=exc.code, path=str(request.url))
        return JSONResponse(status_code=500, content=exc.to_dict())

    app.include_router(router, prefix="/api/v1")

    return app
