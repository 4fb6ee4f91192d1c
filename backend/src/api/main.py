"""
FastAPI application factory with header policies, error handlers, and middleware.
"""

import time
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any, Dict, Optional

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles
from starlette.exceptions import HTTPException as StarletteHTTPException

from backend.src.api.health import APP_VERSION
from backend.src.api.health import router as health_router
from backend.src.api.routes.account import router as account_router
from backend.src.api.routes.widget import router as widget_router
from backend.src.core.config import settings
from backend.src.core.database import close_db, get_session_factory
from backend.src.core.exceptions import ERROR_CATALOG, APIException
from backend.src.core.logging import (
    clear_request_id,
    get_logger,
    set_request_id,
    setup_logging,
)
from backend.src.core.rate_limit import RateLimiter
from backend.src.core.security import (
    api_cors,
    api_no_cache,
    security_headers_middleware,
    widget_cors,
    widget_page_headers,
)
from backend.src.models.base import ErrorBody, ErrorResponse
from backend.src.services.account_store import SQLAlchemyAccountStore
from backend.src.services.image_fetcher import ImageFetcher
from backend.src.services.tryon_provider import HttpTryOnGenerator
from backend.src.services.webhook_service import WebhookDispatcher

# Initialize logging
setup_logging()
logger = get_logger(__name__)

HTTP_STATUS_CODES = {
    status.HTTP_400_BAD_REQUEST: "VALIDATION_ERROR",
    status.HTTP_401_UNAUTHORIZED: "UNAUTHORIZED",
    status.HTTP_403_FORBIDDEN: "ACCESS_DENIED",
    status.HTTP_404_NOT_FOUND: "NOT_FOUND",
    status.HTTP_405_METHOD_NOT_ALLOWED: "METHOD_NOT_ALLOWED",
    status.HTTP_429_TOO_MANY_REQUESTS: "RATE_LIMIT_EXCEEDED",
    status.HTTP_503_SERVICE_UNAVAILABLE: "SERVICE_UNAVAILABLE",
}


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan manager for startup and shutdown events.

    Args:
        app: FastAPI application instance
    """
    # Startup
    logger.info(
        "Starting widget API",
        extra={
            "environment": settings.ENVIRONMENT,
            "debug": settings.DEBUG,
        },
    )
    app.state.rate_limiter.start()

    logger.info("Application started successfully")

    yield

    # Shutdown
    logger.info("Shutting down application")
    await app.state.rate_limiter.stop()
    await app.state.webhook_dispatcher.close(timeout=settings.WEBHOOK_TIMEOUT)
    await app.state.image_fetcher.close()
    close_generator = getattr(app.state.tryon_generator, "close", None)
    if close_generator is not None:
        await close_generator()
    if app.state.owns_database:
        await close_db()
    logger.info("Application shutdown complete")


def create_application(
    account_store=None,
    rate_limiter: Optional[RateLimiter] = None,
    webhook_dispatcher: Optional[WebhookDispatcher] = None,
    tryon_generator=None,
    image_fetcher: Optional[ImageFetcher] = None,
    widget_dist_dir: Optional[str] = None,
    media_root: Optional[str] = None,
) -> FastAPI:
    """
    Create and configure FastAPI application.

    Collaborators default to the production implementations; tests inject
    fakes. They are stored on ``app.state`` where dependencies and
    middleware look them up per request.

    Returns:
        Configured FastAPI application
    """
    app = FastAPI(
        title="MirrorMe Widget API",
        description="Embeddable virtual try-on widget: sessions, try-ons, webhooks and account management",
        version=APP_VERSION,
        docs_url="/docs" if settings.DEBUG else None,
        redoc_url="/redoc" if settings.DEBUG else None,
        openapi_url="/openapi.json" if settings.DEBUG else None,
        lifespan=lifespan,
    )

    owns_database = account_store is None
    if owns_database:
        account_store = SQLAlchemyAccountStore(get_session_factory)
    if rate_limiter is None:
        rate_limiter = RateLimiter()
    if webhook_dispatcher is None:
        webhook_dispatcher = WebhookDispatcher(account_store)
    if tryon_generator is None:
        tryon_generator = HttpTryOnGenerator()
    if image_fetcher is None:
        image_fetcher = ImageFetcher()

    app.state.owns_database = owns_database
    app.state.account_store = account_store
    app.state.rate_limiter = rate_limiter
    app.state.webhook_dispatcher = webhook_dispatcher
    app.state.tryon_generator = tryon_generator
    app.state.image_fetcher = image_fetcher
    app.state.media_root = media_root or settings.MEDIA_ROOT

    # Register middleware
    register_middleware(app)

    # Register exception handlers
    register_exception_handlers(app)

    # Register routes
    register_routes(app, widget_dist_dir or settings.WIDGET_DIST_DIR)

    return app


def register_middleware(app: FastAPI) -> None:
    """
    Register application middleware.

    The last registered middleware runs first, so the list below reads from
    innermost to outermost.

    Args:
        app: FastAPI application
    """
    app.middleware("http")(api_no_cache)
    app.middleware("http")(widget_page_headers)
    app.middleware("http")(security_headers_middleware)
    app.middleware("http")(api_cors)
    app.middleware("http")(widget_cors)

    @app.middleware("http")
    async def logging_middleware(request: Request, call_next):
        """Log all requests with timing information."""
        start_time = time.time()

        logger.info(
            "Request started",
            extra={
                "method": request.method,
                "path": request.url.path,
                "client_ip": request.client.host if request.client else None,
            },
        )

        response = await call_next(request)

        duration_ms = round((time.time() - start_time) * 1000, 2)

        logger.info(
            "Request completed",
            extra={
                "method": request.method,
                "path": request.url.path,
                "status_code": response.status_code,
                "duration_ms": duration_ms,
            },
        )

        response.headers["X-Response-Time"] = f"{duration_ms}ms"

        return response

    @app.middleware("http")
    async def request_id_middleware(request: Request, call_next):
        """Add request ID to all requests for tracing."""
        request_id = set_request_id(request.headers.get("X-Request-ID"))
        request.state.request_id = request_id

        try:
            response = await call_next(request)
        finally:
            clear_request_id()

        response.headers["X-Request-ID"] = request_id
        return response

    logger.info("Middleware registered")


def error_response(
    request: Request,
    status_code: int,
    code: str,
    message: str,
    user_message: Optional[str] = None,
    details: Optional[Dict[str, Any]] = None,
    headers: Optional[Dict[str, str]] = None,
) -> JSONResponse:
    """
    Render a failure in the standard error envelope.

    Requests that passed key authentication keep their ``X-RateLimit-*``
    headers when a later check or the handler fails.
    """
    auth = getattr(request.state, "auth", None)
    rate_limit = getattr(auth, "rate_limit", None)
    if rate_limit is not None:
        headers = {**rate_limit.headers(), **(headers or {})}

    if user_message is None and code in ERROR_CATALOG:
        user_message = ERROR_CATALOG[code].user_message
    body = ErrorResponse(
        error=ErrorBody(
            code=code,
            message=message,
            user_message=user_message,
            details=details or None,
            request_id=getattr(request.state, "request_id", None),
        )
    )
    return JSONResponse(
        status_code=status_code,
        content=body.model_dump(by_alias=True, exclude_none=True, mode="json"),
        headers=headers,
    )


def register_exception_handlers(app: FastAPI) -> None:
    """
    Register custom exception handlers.

    Args:
        app: FastAPI application
    """

    @app.exception_handler(APIException)
    async def api_exception_handler(request: Request, exc: APIException):
        """Handle custom API exceptions."""
        log = logger.error if exc.status_code >= 500 else logger.warning
        log(
            "API exception occurred",
            extra={
                "error_code": exc.error_code,
                "status_code": exc.status_code,
                "error_message": exc.message,
                "path": request.url.path,
            },
        )

        return error_response(
            request,
            exc.status_code,
            exc.error_code,
            exc.message,
            user_message=exc.user_message,
            details=exc.details,
            headers=exc.headers,
        )

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException):
        """Handle HTTP exceptions."""
        logger.warning(
            "HTTP exception occurred",
            extra={
                "status_code": exc.status_code,
                "detail": exc.detail,
                "path": request.url.path,
            },
        )

        return error_response(
            request,
            exc.status_code,
            HTTP_STATUS_CODES.get(exc.status_code, "HTTP_ERROR"),
            str(exc.detail),
            headers=getattr(exc, "headers", None),
        )

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        """Handle request validation errors."""
        errors = [
            {
                "field": ".".join(str(part) for part in error.get("loc", ()) if part != "body"),
                "message": error.get("msg"),
                "type": error.get("type"),
            }
            for error in exc.errors()
        ]
        logger.warning(
            "Validation error occurred",
            extra={
                "errors": errors,
                "path": request.url.path,
            },
        )

        return error_response(
            request,
            status.HTTP_400_BAD_REQUEST,
            "VALIDATION_ERROR",
            "Invalid request body",
            details={"errors": errors},
        )

    @app.exception_handler(Exception)
    async def generic_exception_handler(request: Request, exc: Exception):
        """Handle unexpected exceptions."""
        logger.error(
            "Unexpected exception occurred",
            extra={
                "error": str(exc),
                "path": request.url.path,
            },
            exc_info=True,
        )

        # Don't expose internal errors in production
        definition = ERROR_CATALOG["INTERNAL_ERROR"]
        return error_response(
            request,
            status.HTTP_500_INTERNAL_SERVER_ERROR,
            definition.code,
            str(exc) if settings.DEBUG else definition.message,
        )

    logger.info("Exception handlers registered")


def register_routes(app: FastAPI, widget_dist_dir: Optional[str] = None) -> None:
    """
    Register API routes and, when built, the widget bundle.

    Args:
        app: FastAPI application
        widget_dist_dir: Directory with the built widget pages and assets
    """
    app.include_router(health_router)
    app.include_router(widget_router)
    app.include_router(account_router)

    if widget_dist_dir and Path(widget_dist_dir).is_dir():
        app.mount("/widget", StaticFiles(directory=widget_dist_dir, html=True), name="widget")
        logger.info("Widget bundle mounted", extra={"directory": widget_dist_dir})

    @app.get("/", tags=["Root"])
    async def root() -> Dict[str, Any]:
        """API information."""
        return {
            "name": "MirrorMe Widget API",
            "version": APP_VERSION,
            "environment": settings.ENVIRONMENT,
            "docs": "/docs" if settings.DEBUG else None,
            "health": "/health",
        }

    logger.info("Routes registered")


# Create application instance
app = create_application()


def run() -> None:
    """Serve the application with uvicorn using the configured host and port."""
    import uvicorn

    uvicorn.run(app, host=settings.HOST, port=settings.PORT, log_config=None)


# Export app
__all__ = ["app", "create_application", "run"]


if __name__ == "__main__":
    run()
