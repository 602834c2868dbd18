"""
Main Application - FastAPI application setup.

Wires the routers, the request middleware (proxy scheme, CORS, request
logging/metrics) and the lifespan that owns the shared provider HTTP client
and the database engines.
"""

import asyncio
import time
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager
from typing import Any

from fastapi import FastAPI, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse
from prometheus_client import generate_latest
from starlette.middleware.base import BaseHTTPMiddleware

from app.api.admin_routes import router as admin_router
from app.api.agent_routes import router as agent_router
from app.api.auth_routes import router as auth_router
from app.api.discount_routes import router as discount_router
from app.api.member_routes import router as member_router
from app.api.payment_routes import router as payment_router
from app.api.secours_routes import router as secours_router
from app.api.status_routes import router as status_router
from app.config import settings
from app.db.migration_runner import run_migrations
from app.db.session import close_engines
from app.observability import get_logger, metrics, setup_logging, setup_tracing
from app.observability.logging import log_context
from app.observability.tracing import instrument_fastapi
from app.services.payment_provider import close_provider_http_client

setup_logging()
logger = get_logger(__name__)

ROUTERS = (
    status_router,
    auth_router,
    member_router,
    payment_router,
    secours_router,
    agent_router,
    discount_router,
    admin_router,
)

# Never echoed back or logged from a failed validation
_SECRET_FIELDS = frozenset({"password", "confirm_password"})


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Migrate (when enabled) on startup; release shared clients on shutdown."""
    logger.info(
        "application_starting",
        service=settings.api_title,
        version=settings.api_version,
        tracing_enabled=settings.tracing_enabled,
        metrics_enabled=settings.metrics_enabled,
        payments_sandbox=settings.payments_sandbox,
    )
    if settings.run_migrations_on_startup:
        await asyncio.to_thread(run_migrations)

    yield

    logger.info("application_shutting_down")
    await close_provider_http_client()
    await close_engines()
    logger.info("database_engines_closed")


def sanitize_validation_error(error: dict[str, Any]) -> dict[str, Any]:
    """A validation error without password values and with a JSON-safe ctx."""
    loc = error.get("loc") or ()
    sanitized: dict[str, Any] = {"type": error.get("type"), "loc": loc, "msg": error.get("msg")}

    if not _SECRET_FIELDS.intersection(str(part) for part in loc):
        input_value = error.get("input")
        if isinstance(input_value, dict):
            input_value = {k: v for k, v in input_value.items() if k not in _SECRET_FIELDS}
        sanitized["input"] = input_value

    if "ctx" in error:
        sanitized["ctx"] = {k: str(v) for k, v in error["ctx"].items()}
    return sanitized


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Log the sanitized errors and return them as a 422."""
    errors = [sanitize_validation_error(error) for error in exc.errors()]
    logger.warning("validation_error", path=request.url.path, method=request.method, errors=errors)
    return JSONResponse(status_code=422, content={"detail": errors})


class ProxyHeadersMiddleware(BaseHTTPMiddleware):
    """Honor X-Forwarded-Proto from the reverse proxy."""

    async def dispatch(
        self, request: Request, call_next: Callable[[Request], Awaitable[Response]]
    ) -> Response:
        forwarded_proto = request.headers.get("X-Forwarded-Proto")
        if forwarded_proto:
            request.scope["scheme"] = forwarded_proto
        return await call_next(request)


async def request_logging_middleware(
    request: Request, call_next: Callable[[Request], Awaitable[Response]]
) -> Response:
    """Time each request, record it in metrics and log its outcome."""
    endpoint = request.url.path
    method = request.method
    request_id = request.headers.get("X-Request-ID", "unknown")
    in_progress = metrics.http_requests_in_progress.labels(endpoint=endpoint, method=method)

    start_time = time.time()
    in_progress.inc()
    try:
        with log_context(request_id=request_id):
            response = await call_next(request)
    except Exception as exc:
        duration = time.time() - start_time
        metrics.record_http_request(endpoint, method, 500, duration)
        metrics.record_error(type(exc).__name__, "http_request")
        logger.error(
            "request_failed",
            method=method,
            path=endpoint,
            error=str(exc),
            duration_seconds=duration,
            request_id=request_id,
            exc_info=True,
        )
        raise
    finally:
        in_progress.dec()

    duration = time.time() - start_time
    metrics.record_http_request(endpoint, method, response.status_code, duration)
    logger.info(
        "request_completed",
        method=method,
        path=endpoint,
        status_code=response.status_code,
        duration_seconds=duration,
        request_id=request_id,
    )
    return response


app = FastAPI(
    title=settings.api_title,
    version=settings.api_version,
    description=settings.api_description,
    lifespan=lifespan,
)
app.add_exception_handler(RequestValidationError, validation_exception_handler)  # type: ignore[arg-type]

setup_tracing()
instrument_fastapi(app)

app.add_middleware(ProxyHeadersMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=[settings.public_base_url],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.middleware("http")(request_logging_middleware)

for router in ROUTERS:
    app.include_router(router)


@app.get("/")
async def root() -> dict[str, str]:
    """Service name, version and liveness."""
    return {
        "service": settings.api_title,
        "version": settings.api_version,
        "status": "running",
    }


@app.get("/metrics")
async def metrics_endpoint() -> Response:
    """Prometheus text exposition; 404 when metrics are disabled."""
    if not settings.metrics_enabled:
        return PlainTextResponse("metrics disabled\n", status_code=404)
    return PlainTextResponse(generate_latest())


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "app.main:app",
        host=settings.api_host,
        port=settings.api_port,
        reload=True,
        log_level=settings.log_level.lower(),
    )
