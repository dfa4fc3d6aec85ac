"""
Stellr Matching — FastAPI Application Entry Point

Serves the matching API under ``/api/v1``:
- Lifespan: warms the Postgres pool; connects Redis when it backs the
  compatibility cache; drains in-flight requests on shutdown
- Middleware: per-request structlog context (request id, method, path),
  wall-clock timeout, CORS
- Health: ``/health`` (liveness) and ``/health/deep`` (readiness)
"""

from __future__ import annotations

import asyncio
import logging
import time
import uuid
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator

import structlog
from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint

from stellr.config import get_settings
from stellr.database import get_engine, get_session_factory

settings = get_settings()

# ---------------------------------------------------------------------------
# Structured logging
# ---------------------------------------------------------------------------

structlog.configure(
    processors=[
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.JSONRenderer(),
    ],
    wrapper_class=structlog.make_filtering_bound_logger(
        logging.getLevelName(settings.LOG_LEVEL.upper())
    ),
    context_class=dict,
    logger_factory=structlog.PrintLoggerFactory(),
    cache_logger_on_first_use=True,
)

logger: structlog.stdlib.BoundLogger = structlog.get_logger("stellr")

SHUTDOWN_DRAIN_SECONDS = 15
REQUEST_ID_HEADER = "X-Request-ID"


# ---------------------------------------------------------------------------
# In-flight request tracking
# ---------------------------------------------------------------------------

class InFlightRequests:
    """Counts requests being served so shutdown can wait for them."""

    def __init__(self) -> None:
        self.count = 0
        self._idle = asyncio.Event()
        self._idle.set()

    def enter(self) -> None:
        self.count += 1
        self._idle.clear()

    def leave(self) -> None:
        self.count -= 1
        if self.count <= 0:
            self.count = 0
            self._idle.set()

    async def drain(self, timeout: float) -> bool:
        """Wait for the count to reach zero; False if ``timeout`` ran out."""
        try:
            await asyncio.wait_for(self._idle.wait(), timeout=timeout)
        except asyncio.TimeoutError:
            return False
        return True


in_flight = InFlightRequests()


# ---------------------------------------------------------------------------
# Redis (compatibility cache backend)
# ---------------------------------------------------------------------------

_redis_client: Any = None


async def _connect_redis() -> None:
    global _redis_client
    import redis.asyncio as aioredis

    _redis_client = aioredis.from_url(
        settings.REDIS_URL,
        decode_responses=True,
        socket_connect_timeout=5,
    )
    await _redis_client.ping()
    logger.info("redis_connected", url=settings.REDIS_URL)


async def _close_redis() -> None:
    global _redis_client
    if _redis_client is None:
        return
    await _redis_client.aclose()
    _redis_client = None
    logger.info("redis_closed")


def get_redis() -> Any:
    """Return the shared Redis client, or None when Redis is not in use."""
    return _redis_client


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------

@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    logger.info(
        "startup_begin",
        environment=settings.ENVIRONMENT,
        cache_backend=settings.CACHE_BACKEND,
        weights={
            "questionnaire": settings.QUESTIONNAIRE_WEIGHT,
            "attribute": settings.ATTRIBUTE_WEIGHT,
        },
    )

    async with get_engine().connect() as conn:
        await conn.execute(text("SELECT 1"))
    logger.info("database_pool_ready")

    if settings.CACHE_BACKEND == "redis":
        await _connect_redis()

    logger.info("startup_complete")
    yield

    logger.info("shutdown_begin", in_flight=in_flight.count)
    if not await in_flight.drain(SHUTDOWN_DRAIN_SECONDS):
        logger.warning("shutdown_drain_timeout", remaining_requests=in_flight.count)

    await _close_redis()
    await get_engine().dispose()
    logger.info("shutdown_complete")


# ---------------------------------------------------------------------------
# Middleware
# ---------------------------------------------------------------------------

class RequestContextMiddleware(BaseHTTPMiddleware):
    """Bind a request id into the structlog context and log the outcome.

    Every log line emitted while the request is handled (services included)
    carries ``request_id``, ``method`` and ``path``.
    """

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        request_id = request.headers.get(REQUEST_ID_HEADER) or uuid.uuid4().hex
        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(
            request_id=request_id,
            method=request.method,
            path=request.url.path,
        )

        start = time.perf_counter()
        in_flight.enter()
        try:
            response = await call_next(request)
        except Exception:
            logger.exception(
                "request_error",
                duration_ms=round((time.perf_counter() - start) * 1000, 2),
            )
            raise
        finally:
            in_flight.leave()

        response.headers[REQUEST_ID_HEADER] = request_id
        logger.info(
            "request_handled",
            status=response.status_code,
            duration_ms=round((time.perf_counter() - start) * 1000, 2),
        )
        return response


class TimeoutMiddleware(BaseHTTPMiddleware):
    """Answer 504 when a request runs past ``timeout_seconds``."""

    def __init__(self, app, timeout_seconds: float) -> None:
        super().__init__(app)
        self.timeout_seconds = timeout_seconds

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        try:
            return await asyncio.wait_for(call_next(request), timeout=self.timeout_seconds)
        except asyncio.TimeoutError:
            logger.warning("request_timeout", timeout=self.timeout_seconds)
            return JSONResponse(status_code=504, content={"detail": "Request timed out"})


# ---------------------------------------------------------------------------
# Application
# ---------------------------------------------------------------------------

app = FastAPI(
    title="Stellr Matching",
    description="Compatibility scoring and candidate ranking",
    version="1.0.0",
    lifespan=lifespan,
    docs_url=None if settings.is_production else "/docs",
    redoc_url=None if settings.is_production else "/redoc",
)

# Last added runs first: CORS, then the timeout, then the request context.
app.add_middleware(RequestContextMiddleware)
app.add_middleware(TimeoutMiddleware, timeout_seconds=settings.REQUEST_TIMEOUT_SECONDS)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.allowed_origins_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.get("/health", tags=["health"])
async def health_liveness() -> dict:
    return {"status": "healthy"}


async def _check_database() -> str:
    async with get_session_factory()() as session:
        await session.execute(text("SELECT 1"))
    return "connected"


async def _check_redis() -> str:
    if settings.CACHE_BACKEND != "redis":
        return "not_configured"
    redis = get_redis()
    if redis is None:
        raise RuntimeError("Redis client not initialised")
    await redis.ping()
    return "connected"


@app.get("/health/deep", tags=["health"])
async def health_deep() -> dict:
    """Readiness: the database always, Redis only when it backs the cache."""
    result: dict = {"status": "healthy", "cache_backend": settings.CACHE_BACKEND}
    for name, check in (("database", _check_database), ("redis", _check_redis)):
        try:
            result[name] = await check()
        except Exception as exc:
            logger.error("health_check_failed", dependency=name, error=str(exc))
            result[name] = f"error: {exc}"
            result["status"] = "degraded"
    return result


from stellr.api.router import router as api_router  # noqa: E402

app.include_router(api_router, prefix="/api/v1")
