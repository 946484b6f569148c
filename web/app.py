from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from spacetime_link.api.router import api_router
from spacetime_link.config import get_settings
from spacetime_link.lifecycle import lifespan
from spacetime_link.exceptions import (
    SpacetimeLinkError,
    ConfigurationError,
    ConnectionTimeoutError,
    NotInitializedError,
    ServiceUnavailableError,
)
from spacetime_link.utils.logging import get_logger

settings = get_settings()
logger = get_logger(__name__)


def create_app() -> FastAPI:
    """Instantiate the FastAPI application with routing and middleware."""
    application = FastAPI(
        title="SpacetimeDB Link API",
        version="0.1.0",
        description="Connection status for the shared SpacetimeDB backend.",
        lifespan=lifespan,
    )

    application.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_allow_origins,
        allow_credentials=True,
        allow_methods=["GET", "OPTIONS"],
        allow_headers=["Content-Type", "Authorization"],
    )

    # Register exception handlers
    register_exception_handlers(application)

    application.include_router(api_router, prefix=settings.api_prefix)

    return application


def register_exception_handlers(app: FastAPI) -> None:
    """Register handlers translating connection errors to HTTP responses."""

    @app.exception_handler(NotInitializedError)
    async def not_initialized_handler(request: Request, exc: NotInitializedError) -> JSONResponse:
        """No current connection: 503."""
        logger.warning(f"Connection not initialized: {exc.message}")
        return JSONResponse(
            status_code=503,
            content=exc.to_dict()
        )

    @app.exception_handler(ServiceUnavailableError)
    async def service_unavailable_handler(request: Request, exc: ServiceUnavailableError) -> JSONResponse:
        """Handle service unavailable errors with 503 status."""
        logger.warning(f"Service unavailable: {exc.message}", extra=exc.details)
        return JSONResponse(
            status_code=503,
            content=exc.to_dict()
        )

    @app.exception_handler(ConnectionTimeoutError)
    async def connection_timeout_handler(request: Request, exc: ConnectionTimeoutError) -> JSONResponse:
        """Handle readiness timeouts with 504 status."""
        logger.error(f"Connection timeout: {exc.message}", extra=exc.details)
        return JSONResponse(
            status_code=504,
            content=exc.to_dict()
        )

    @app.exception_handler(ConfigurationError)
    async def configuration_error_handler(request: Request, exc: ConfigurationError) -> JSONResponse:
        """Handle configuration errors with 500 status."""
        logger.error(f"Configuration error: {exc.message}", extra=exc.details)
        return JSONResponse(
            status_code=500,
            content=exc.to_dict()
        )

    @app.exception_handler(SpacetimeLinkError)
    async def base_exception_handler(request: Request, exc: SpacetimeLinkError) -> JSONResponse:
        """Catch-all handler for any other package exception."""
        logger.error(f"Unhandled exception: {exc.message}", extra=exc.details, exc_info=True)
        return JSONResponse(
            status_code=500,
            content=exc.to_dict()
        )


app = create_app()
