"""
s3rpc Server

FastAPI application entry point exposing the S3 service over REST and
socket transports.
"""

import logging
import sys
from contextlib import asynccontextmanager
from typing import Any, Optional

import structlog
import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from s3rpc.api import install_error_handlers, register_service, socket_router
from s3rpc.config import Settings, get_settings
from s3rpc.storage import SERVICE_METHODS, S3Service

# Methods reachable from remote callers
S3_METHODS = list(SERVICE_METHODS)


# =============================================================================
# Structlog Configuration
# =============================================================================
def configure_logging(settings: Settings) -> None:
    """
    Configure structlog for JSON logging with ISO timestamps.

    All logs are output as JSON with consistent fields:
    - timestamp: ISO 8601 format
    - level: log level (info, warning, error, etc.)
    - event: log message
    - Additional context fields (key, upload_id, etc.)
    """
    shared_processors: list[Any] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.stdlib.ExtraAdder(),
    ]

    structlog.configure(
        processors=shared_processors + [
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    formatter = structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=shared_processors,
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            structlog.processors.JSONRenderer(),
        ],
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.handlers = [handler]
    root_logger.setLevel(settings.LOG_LEVEL.upper())

    # Reduce noise from third-party libraries
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("botocore").setLevel(logging.WARNING)
    logging.getLogger("boto3").setLevel(logging.WARNING)


# =============================================================================
# Sentry Configuration
# =============================================================================
def configure_sentry(settings: Settings) -> None:
    """
    Initialize Sentry error tracking if SENTRY_DSN is configured.
    """
    if settings.SENTRY_DSN:
        try:
            import sentry_sdk
            from sentry_sdk.integrations.fastapi import FastApiIntegration

            sentry_sdk.init(
                dsn=settings.SENTRY_DSN,
                integrations=[FastApiIntegration(transaction_style="endpoint")],
                traces_sample_rate=0.1,
                environment="development" if settings.DEBUG else "production",
            )

            logger = structlog.get_logger()
            logger.info("sentry_initialized", dsn_prefix=settings.SENTRY_DSN[:20] + "...")
        except Exception as e:
            logger = structlog.get_logger()
            logger.warning("sentry_init_failed", error=str(e))


# =============================================================================
# Application Factory
# =============================================================================
def create_app(
    settings: Optional[Settings] = None,
    service: Optional[S3Service] = None,
) -> FastAPI:
    """
    Build the server application with the S3 service registered.

    Args:
        settings: Settings to use; the cached environment settings by default
        service: Prebuilt gateway (tests inject one around a fake S3 client)

    Returns:
        FastAPI application
    """
    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        # Startup
        configure_logging(settings)
        configure_sentry(settings)

        logger = structlog.get_logger()
        logger.info(
            "application_startup",
            app_name="s3rpc",
            service_path=settings.S3_SERVICE_PATH,
            bucket=settings.S3_BUCKET,
            debug=settings.DEBUG,
        )

        yield

        # Shutdown
        logger.info("application_shutdown")

    app = FastAPI(
        title="s3rpc",
        description="S3 object storage exposed as a remote service",
        version="1.0.0",
        lifespan=lifespan,
        docs_url="/docs" if settings.DEBUG else None,
        redoc_url="/redoc" if settings.DEBUG else None,
    )
    app.state.settings = settings

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    install_error_handlers(app)

    @app.get("/health", tags=["Health"])
    async def health_check() -> JSONResponse:
        """
        Health check endpoint for load balancers and monitoring.
        """
        return JSONResponse(content={"status": "ok"}, status_code=200)

    register_service(
        app,
        settings.S3_SERVICE_PATH,
        service or S3Service(settings),
        methods=S3_METHODS,
        method_map=SERVICE_METHODS,
    )
    app.include_router(socket_router)

    return app


def run() -> None:
    """Run the server under uvicorn using HOST/PORT from settings."""
    settings = get_settings()
    uvicorn.run(
        "s3rpc.main:create_app",
        factory=True,
        host=settings.HOST,
        port=settings.PORT,
    )


if __name__ == "__main__":
    run()
