"""
Main FastAPI application.

Wedding invitation shop API with:
- CORS configuration
- Error handling
- Request ID tracking
- Structured logging
- Prometheus metrics
"""
import time
import uuid
from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator, Optional

import httpx
import structlog
from fastapi import FastAPI, Request, Response, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from weinvite import __version__
from weinvite.config import Settings, get_settings
from weinvite.core.exceptions import WeInviteError
from weinvite.database.connection import (
    close_db,
    create_engine,
    create_session_factory,
    init_db,
)
from weinvite.integrations.midtrans_client import MidtransClient
from weinvite.integrations.storage_client import StorageClient
from weinvite.monitoring.logging import setup_logging

from .routes import (
    auth_router,
    monitoring_router,
    order_router,
    payment_router,
    product_router,
    tag_router,
)

logger = structlog.get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, Any]:
    """
    Application lifespan manager.

    Builds the database engine and the outbound clients once and keeps them
    on ``app.state`` for the request dependencies.
    """
    settings: Settings = app.state.settings

    # Startup
    logger.info(
        "application_startup",
        app_name=settings.app_name,
        env=settings.app_env,
        midtrans_production=settings.midtrans_is_production,
    )

    engine = create_engine(settings)
    try:
        await init_db(engine)
        logger.info("database_initialized")
    except Exception as e:
        logger.error("database_initialization_failed", error=str(e))
        raise

    http = httpx.AsyncClient(timeout=settings.http_timeout_seconds)
    app.state.engine = engine
    app.state.session_factory = create_session_factory(engine)
    app.state.http = http
    app.state.storage = StorageClient.from_settings(settings, http)
    app.state.gateway = MidtransClient.from_settings(settings, http)

    yield

    # Shutdown
    logger.info("application_shutdown")
    await http.aclose()
    try:
        await close_db(engine)
        logger.info("database_connections_closed")
    except Exception as e:
        logger.error("database_shutdown_error", error=str(e))


async def add_request_id_middleware(request: Request, call_next: Any) -> Response:
    """
    Add request ID to all requests for tracing.

    Also adds timing information and structured logging context.
    """
    request_id = str(uuid.uuid4())
    start_time = time.time()

    structlog.contextvars.bind_contextvars(
        request_id=request_id,
        method=request.method,
        path=request.url.path,
    )

    logger.info(
        "request_started",
        client_host=request.client.host if request.client else None,
    )

    try:
        response = await call_next(request)
        response.headers["X-Request-ID"] = request_id

        logger.info(
            "request_completed",
            status_code=response.status_code,
            duration_seconds=time.time() - start_time,
        )
        return response

    except Exception as e:
        logger.error(
            "request_failed",
            error=str(e),
            duration_seconds=time.time() - start_time,
        )
        raise

    finally:
        structlog.contextvars.clear_contextvars()


async def domain_exception_handler(request: Request, exc: WeInviteError) -> JSONResponse:
    """Render workflow errors as ``{"error", "message", "details"}``."""
    log = logger.warning if exc.http_status < 500 else logger.error
    log(
        "request_error",
        error_kind=exc.kind,
        error=exc.message,
        details=exc.detail,
        path=request.url.path,
        compensation_failed=exc.compensation.failed if exc.compensation else None,
    )
    return JSONResponse(status_code=exc.http_status, content=exc.to_dict())


async def validation_exception_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    """Malformed bodies are client errors like any other invalid input."""
    details = "; ".join(
        f"{'.'.join(str(part) for part in error.get('loc', ()))}: {error.get('msg')}"
        for error in exc.errors()
    )
    logger.warning("request_validation_failed", path=request.url.path, details=details)
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={
            "error": "invalid_request",
            "message": "Invalid request",
            "details": details,
        },
    )


async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """
    Global exception handler for unhandled exceptions.
    """
    logger.error(
        "unhandled_exception",
        error=str(exc),
        error_type=type(exc).__name__,
        path=request.url.path,
    )

    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "error": "internal_error",
            "message": "An unexpected error occurred. Please try again later.",
        },
    )


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    """
    Build the FastAPI application.

    Args:
        settings: Settings to use; defaults to the cached environment settings
    """
    settings = settings or get_settings()
    setup_logging(settings)

    app = FastAPI(
        title="WeInvite API",
        description=(
            "Backend for a wedding invitation shop: products and tags, orders "
            "with uploaded customization images, and Midtrans payments."
        ),
        version=__version__,
        lifespan=lifespan,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
    )
    app.state.settings = settings

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.get_allowed_origins_list(),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.middleware("http")(add_request_id_middleware)

    app.add_exception_handler(WeInviteError, domain_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(Exception, global_exception_handler)

    app.include_router(order_router)
    app.include_router(payment_router)
    app.include_router(auth_router)
    app.include_router(tag_router)
    app.include_router(product_router)
    app.include_router(monitoring_router)

    @app.get("/", tags=["root"])
    async def root() -> dict[str, Any]:
        """Root endpoint with API information."""
        return {
            "message": "Welcome to we-invite API!",
            "service": settings.app_name,
            "version": __version__,
            "environment": settings.app_env,
            "docs": "/docs",
            "health": "/health",
            "metrics": "/metrics",
        }

    return app


def run() -> None:
    """Serve the API with uvicorn using the environment settings."""
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        "weinvite.api.main:create_app",
        factory=True,
        host=settings.api_host,
        port=settings.api_port,
        # Auto-reload is a development aid only
        reload=settings.debug and not settings.is_production,
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":
    run()
