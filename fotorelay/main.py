"""
FotoRelay - Main FastAPI Application
Camera FTP ingestion endpoint with live events and cloud relay
"""
from contextlib import asynccontextmanager
from typing import Optional
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
import logging
import time

from fotorelay.config import Settings, settings as default_settings
from fotorelay.core.logging_config import configure_logging
from fotorelay.dependencies import ServiceContainer, build_container
from fotorelay.exceptions import (
    ApplicationError,
    AuthError,
    DirectoryError,
    InputValidationError,
    NoPortAvailable,
    RemoteRequestError,
    ResourceError,
    TransientNetworkError,
    ValidationGateFailure,
)
from fotorelay.api.v1 import api_router

logger = logging.getLogger(__name__)

# Most specific first
ERROR_STATUS_CODES = (
    (InputValidationError, 400),
    (ValidationGateFailure, 422),
    (DirectoryError, 400),
    (NoPortAvailable, 503),
    (ResourceError, 500),
    (AuthError, 401),
    (TransientNetworkError, 503),
    (RemoteRequestError, 502),
)


def status_code_for(exc: ApplicationError) -> int:
    for error_type, status_code in ERROR_STATUS_CODES:
        if isinstance(exc, error_type):
            return status_code
    return 500


def create_app(app_settings: Optional[Settings] = None, container: Optional[ServiceContainer] = None) -> FastAPI:
    """
    Build the application.

    Args:
        app_settings: Settings to use (defaults to the environment)
        container: Pre-built services, mainly for tests
    """
    app_settings = app_settings or default_settings

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """
        Application lifespan manager.
        Handles startup and shutdown events.
        """
        # Startup
        logger.info(f"Starting {app_settings.APP_NAME} v{app_settings.APP_VERSION}")
        logger.info(f"Environment: {app_settings.APP_ENV}")
        for problem in app_settings.validate_required_settings():
            logger.warning(f"Configuration: {problem}")

        if app.state.container is None:
            app.state.container = build_container(app_settings)
        await app.state.container.startup()

        yield

        # Shutdown
        logger.info("Shutting down application")
        await app.state.container.shutdown()

    app = FastAPI(
        title=app_settings.APP_NAME,
        version=app_settings.APP_VERSION,
        description="Camera FTP ingestion with live events and cloud relay",
        docs_url="/api/docs" if app_settings.DEBUG else None,
        redoc_url="/api/redoc" if app_settings.DEBUG else None,
        lifespan=lifespan
    )
    app.state.container = container

    # Middleware Configuration
    # -----------------------

    app.add_middleware(CORSMiddleware, **app_settings.get_cors_config())

    @app.middleware("http")
    async def add_process_time_header(request: Request, call_next):
        """Add X-Process-Time header to all responses."""
        start_time = time.time()
        response = await call_next(request)
        process_time = time.time() - start_time
        response.headers["X-Process-Time"] = f"{process_time:.4f}"
        return response

    # Exception Handlers
    # ------------------

    @app.exception_handler(ApplicationError)
    async def application_error_handler(request: Request, exc: ApplicationError):
        status_code = status_code_for(exc)
        log = logger.error if status_code >= 500 else logger.warning
        log(f"{request.method} {request.url.path} failed: {exc.message}", extra={
            'error_type': type(exc).__name__,
            'details': exc.details
        })
        return JSONResponse(status_code=status_code, content={"error": exc.message})

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        """Global exception handler for unhandled exceptions."""
        logger.exception(f"Unhandled exception: {exc}")
        return JSONResponse(
            status_code=500,
            content={"error": str(exc) if app_settings.DEBUG else "An unexpected error occurred"}
        )

    # API Routes
    # ----------

    @app.get("/", tags=["root"])
    async def root():
        """Root endpoint with API information."""
        return {
            "app": app_settings.APP_NAME,
            "version": app_settings.APP_VERSION,
            "docs": "/api/docs" if app_settings.DEBUG else None,
            "health": f"{app_settings.API_V1_PREFIX}/health"
        }

    app.include_router(api_router, prefix=app_settings.API_V1_PREFIX)

    return app


def run():
    import uvicorn

    configure_logging()
    uvicorn.run(
        app,
        host=default_settings.API_HOST,
        port=default_settings.API_PORT,
        log_level=default_settings.LOG_LEVEL.lower()
    )


app = create_app()


if __name__ == "__main__":
    run()
