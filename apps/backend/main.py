"""
Catalog API - Application Entry Point
=====================================
REST API for companies, users and products with paginated listings,
response caching, rate limiting and streaming product exports.
"""

import time
import uuid
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, Dict, Optional

import structlog
from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from sqlalchemy.exc import IntegrityError
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.middleware.base import BaseHTTPMiddleware

from cache import ResponseCacheMiddleware, default_cache_rules
from config import Settings, get_settings
from dependencies import AppContext
from exceptions import CatalogBaseException, RateLimitExceeded
from logging_config import configure_logging, get_logger
from rate_limiter import RateLimitMiddleware, rate_limited_response
from routers import companies_router, products_router, users_router
from timeout_utils import run_with_timeout
import metrics as app_metrics

logger = get_logger(__name__)

API_PREFIX = "/api/v1"
API_VERSION = "1.0.0"
HEALTH_CHECK_TIMEOUT_SECONDS = 5.0


# =============================================================================
# Middleware
# =============================================================================

class RequestIDMiddleware(BaseHTTPMiddleware):
    """Inject request ID into all logs for request tracing."""

    async def dispatch(self, request: Request, call_next):
        request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())

        # Bind request_id to structlog context for this request
        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(
            request_id=request_id,
            method=request.method,
            path=request.url.path,
        )

        request.state.request_id = request_id

        response = await call_next(request)
        response.headers["X-Request-ID"] = request_id

        return response


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Log one line per request with status and duration."""

    async def dispatch(self, request: Request, call_next):
        start_time = time.perf_counter()
        response = await call_next(request)
        duration_ms = round((time.perf_counter() - start_time) * 1000, 2)

        log = logger.error if response.status_code >= 400 else logger.info
        log(
            "Request handled",
            status=response.status_code,
            duration_ms=duration_ms,
            client=request.client.host if request.client else None,
        )
        return response


def endpoint_label(request: Request) -> str:
    """
    Metrics label for a request: the matched route template when it is a full
    path, the request path when the route only knows its router-relative part,
    and "unmatched" when no route handled it.
    """
    route = request.scope.get("route")
    if route is None:
        return "unmatched"

    template = getattr(route, "path", "")
    path_regex = getattr(route, "path_regex", None)
    if template and path_regex is not None and path_regex.match(request.url.path):
        return template
    return request.url.path


class MetricsMiddleware(BaseHTTPMiddleware):
    """Record request metrics for observability."""

    async def dispatch(self, request: Request, call_next):
        # Skip metrics endpoint itself to avoid recursion
        if request.url.path == "/metrics":
            return await call_next(request)

        start_time = time.perf_counter()

        response = await call_next(request)

        duration = time.perf_counter() - start_time

        endpoint = endpoint_label(request)

        app_metrics.http_requests_total.labels(
            method=request.method,
            endpoint=endpoint,
            status=response.status_code,
        ).inc()

        app_metrics.http_request_duration_seconds.labels(
            method=request.method,
            endpoint=endpoint,
        ).observe(duration)

        return response


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """Attach browser hardening headers to every response."""

    HEADERS = {
        "X-Content-Type-Options": "nosniff",
        "X-Frame-Options": "DENY",
        "X-XSS-Protection": "1; mode=block",
        "Referrer-Policy": "strict-origin-when-cross-origin",
    }

    async def dispatch(self, request: Request, call_next):
        response = await call_next(request)
        for name, value in self.HEADERS.items():
            response.headers.setdefault(name, value)
        return response


# =============================================================================
# Error envelopes
# =============================================================================

def error_body(
    request: Request,
    message: str,
    error: str,
    detail: Optional[str] = None,
    **extra: Any,
) -> Dict[str, Any]:
    body = {
        "success": False,
        "message": message,
        "error": error,
        "path": request.url.path,
        "method": request.method,
        "timestamp": datetime.now(timezone.utc).isoformat(),
        **extra,
    }
    if detail and request.app.state.context.settings.debug:
        body["detail"] = detail
    return body


def register_exception_handlers(app: FastAPI) -> None:

    @app.exception_handler(RateLimitExceeded)
    async def rate_limit_handler(request: Request, exc: RateLimitExceeded):
        response = rate_limited_response(exc.retry_after)
        logger.warning("Rate limit exceeded", scope=exc.context.get("scope"))
        return response

    @app.exception_handler(CatalogBaseException)
    async def catalog_exception_handler(request: Request, exc: CatalogBaseException):
        """Handle all Catalog API exceptions with structured responses."""
        log = logger.error if exc.status_code >= 500 else logger.warning
        log(
            "Catalog exception",
            error_type=exc.__class__.__name__,
            message=exc.message,
            context=exc.context,
        )

        detail = str(exc.original_error) if exc.original_error else None
        extra = {"context": exc.context} if exc.status_code < 500 and exc.context else {}
        return JSONResponse(
            status_code=exc.status_code,
            content=jsonable_encoder(error_body(request, exc.message, exc.__class__.__name__, detail, **extra)),
        )

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        errors = [
            {
                "field": ".".join(str(part) for part in err.get("loc", ())[1:]) or None,
                "message": err.get("msg"),
                "type": err.get("type"),
            }
            for err in exc.errors()
        ]
        logger.warning("Request validation failed", errors=len(errors))
        return JSONResponse(
            status_code=400,
            content=error_body(request, "Invalid request parameters", "ValidationError", errors=errors),
        )

    @app.exception_handler(IntegrityError)
    async def integrity_error_handler(request: Request, exc: IntegrityError):
        logger.warning("Integrity violation", error=str(exc.orig))
        return JSONResponse(
            status_code=409,
            content=error_body(request, "Record conflicts with an existing one", "ConflictError", str(exc.orig)),
        )

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException):
        if exc.status_code == 404:
            message = "Route not found"
        elif exc.status_code == 405:
            message = "Method not allowed"
        else:
            message = str(exc.detail)
        return JSONResponse(
            status_code=exc.status_code,
            content=error_body(request, message, "HTTPException"),
            headers=getattr(exc, "headers", None),
        )

    @app.exception_handler(Exception)
    async def general_exception_handler(request: Request, exc: Exception):
        """Catch-all handler for unexpected exceptions."""
        logger.exception("Unexpected error", error=str(exc))
        return JSONResponse(
            status_code=500,
            content=error_body(request, "Internal server error", "InternalServerError", str(exc)),
        )


# =============================================================================
# System endpoints
# =============================================================================

def register_system_routes(app: FastAPI) -> None:

    @app.get("/")
    async def root():
        """Root endpoint with API information."""
        return {
            "success": True,
            "name": "Catalog API",
            "version": API_VERSION,
            "status": "operational",
            "docs": "/docs",
            "endpoints": {
                "companies": f"{API_PREFIX}/companies",
                "users": f"{API_PREFIX}/users",
                "products": f"{API_PREFIX}/products",
                "products_stream": f"{API_PREFIX}/products/stream",
                "health": "/health",
                "metrics": "/metrics",
            },
        }

    @app.get("/health")
    async def health_check(request: Request):
        """
        Health check endpoint for container orchestration.

        Returns 200 when the database answers, 503 otherwise.
        """
        context: AppContext = request.app.state.context
        services = {}
        healthy = True

        try:
            await run_with_timeout(
                context.database.ping(),
                timeout=HEALTH_CHECK_TIMEOUT_SECONDS,
                operation_name="database_ping",
            )
            services["database"] = "healthy"
            app_metrics.database_is_healthy.set(1)
        except Exception as e:
            logger.warning("Database health check failed", error=str(e))
            services["database"] = "unhealthy"
            app_metrics.database_is_healthy.set(0)
            healthy = False

        services["cache"] = context.cache.stats()

        return JSONResponse(
            status_code=200 if healthy else 503,
            content={
                "success": healthy,
                "status": "healthy" if healthy else "unhealthy",
                "version": API_VERSION,
                "environment": context.settings.environment,
                "timestamp": datetime.now(timezone.utc).isoformat(),
                "services": services,
            },
        )

    @app.get("/metrics")
    async def metrics():
        """Prometheus metrics endpoint."""
        return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)


# =============================================================================
# Application factory
# =============================================================================

@asynccontextmanager
async def lifespan(app: FastAPI):
    """Initialize resources on startup, release them on shutdown."""
    context: AppContext = app.state.context
    settings = context.settings

    logger.info(
        "Starting backend",
        environment=settings.environment,
        database=context.database.engine.dialect.name,
    )

    try:
        await context.startup()
        app_metrics.database_is_healthy.set(1)
    except Exception as e:
        # Keep serving: /health reports the outage
        logger.error("Database initialization failed", error=str(e), exc_info=True)
        app_metrics.database_is_healthy.set(0)

    yield

    logger.info("Shutting down backend")
    await context.shutdown()


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    """
    Build a fully wired application.

    Args:
        settings: Explicit settings; defaults to the cached environment settings
    """
    settings = settings or get_settings()
    configure_logging(environment=settings.environment, log_level=settings.log_level)

    context = AppContext.from_settings(settings)

    app = FastAPI(
        title="Catalog API",
        description="Companies, users and products with streaming exports",
        version=API_VERSION,
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )
    app.state.context = context

    # Added innermost first
    if settings.cache_enabled:
        app.add_middleware(
            ResponseCacheMiddleware,
            cache=context.cache,
            rules=default_cache_rules(settings, prefix=API_PREFIX),
            prefix=API_PREFIX,
        )
    app.add_middleware(
        RateLimitMiddleware,
        max_requests=settings.rate_limit_max_requests,
        window_seconds=settings.rate_limit_window_seconds,
        path_prefix=f"{API_PREFIX}/",
    )
    app.add_middleware(SecurityHeadersMiddleware)
    app.add_middleware(MetricsMiddleware)
    app.add_middleware(RequestLoggingMiddleware)
    app.add_middleware(RequestIDMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "DELETE", "PATCH", "OPTIONS"],
        allow_headers=["*"],
    )

    app.include_router(companies_router, prefix=f"{API_PREFIX}/companies", tags=["companies"])
    app.include_router(users_router, prefix=f"{API_PREFIX}/users", tags=["users"])
    app.include_router(products_router, prefix=f"{API_PREFIX}/products", tags=["products"])

    register_exception_handlers(app)
    register_system_routes(app)

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("main:app", host="0.0.0.0", port=8000, reload=False)
