"""
FastAPI application factory.
"""

from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from residuals.api.router import api_router
from residuals.config import settings
from residuals.errors import (
    ConfigurationError,
    FileReadError,
    InvalidRequestError,
    ResidualsError,
    SchemaNotFoundError,
    UnknownProcessorError,
)
from residuals.models.database import close_db
from residuals.observability.logging import setup_logging

logger = structlog.get_logger(__name__)

# Most specific first
_ERROR_STATUS = [
    (SchemaNotFoundError, status.HTTP_404_NOT_FOUND),
    (InvalidRequestError, status.HTTP_422_UNPROCESSABLE_ENTITY),
    (UnknownProcessorError, status.HTTP_422_UNPROCESSABLE_ENTITY),
    (FileReadError, status.HTTP_400_BAD_REQUEST),
    (ConfigurationError, status.HTTP_500_INTERNAL_SERVER_ERROR),
]


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan: startup and shutdown."""
    # Startup
    setup_logging()
    logger.info("app_starting", app=settings.APP_NAME, version=settings.APP_VERSION)

    # Sentry init if configured
    if settings.SENTRY_DSN:
        import sentry_sdk
        from sentry_sdk.integrations.fastapi import FastApiIntegration
        sentry_sdk.init(
            dsn=settings.SENTRY_DSN,
            integrations=[FastApiIntegration()],
            traces_sample_rate=0.1,
        )

    yield

    # Shutdown
    await close_db()


async def residuals_error_handler(request: Request, exc: ResidualsError) -> JSONResponse:
    status_code = status.HTTP_400_BAD_REQUEST
    for error_type, code in _ERROR_STATUS:
        if isinstance(exc, error_type):
            status_code = code
            break
    logger.warning("request_failed", path=request.url.path, error_code=exc.error_code, error=exc.message)
    return JSONResponse(
        status_code=status_code,
        content={"detail": exc.message, "error_code": exc.error_code},
    )


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    app = FastAPI(
        title="Processor Residuals Engine",
        description="Ingestion, validation and commission split assignment for processor residual files.",
        version=settings.APP_VERSION,
        lifespan=lifespan,
    )

    # CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS.split(","),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_exception_handler(ResidualsError, residuals_error_handler)

    # Prometheus metrics endpoint
    if settings.PROMETHEUS_ENABLED:
        from prometheus_client import make_asgi_app
        metrics_app = make_asgi_app()
        app.mount("/metrics", metrics_app)

    # Include all API routes
    app.include_router(api_router)

    return app


# Application instance
app = create_app()
