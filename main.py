"""
main.py
FastAPI application entry point.
Mounts the GraphQL endpoint, middleware, health and metrics routes, and
the startup/shutdown lifecycle.
"""

import asyncio
import logging
import time
import uuid
from contextlib import asynccontextmanager, suppress
from datetime import datetime, timezone

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import JSONResponse
from prometheus_fastapi_instrumentator import Instrumentator
from pybreaker import CircuitBreakerError
from redis.exceptions import RedisError

from config.database import close_db, init_db
from config.logging_config import configure_logging
from config.redis_client import close_redis, init_redis
from config.settings import settings
from services.graphql.router import router as graphql_router
from shared.middleware.rate_limit import (
    build_rate_limiter,
    client_key,
    rate_limit_response_body,
    run_sweeper,
)
from shared.utils.payment_gateway import build_payment_gateway
from shared.utils.security import build_identity_provider

logger = logging.getLogger(__name__)

RATE_LIMIT_EXEMPT = {"/health", "/metrics", "/docs", "/redoc", "/openapi.json"}


# ── Lifespan (startup/shutdown) ───────────────────────────────

@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown lifecycle handler."""
    configure_logging()
    logger.info("Starting %s v%s (%s)", settings.APP_NAME, settings.APP_VERSION, settings.APP_ENV)

    await init_db()
    if settings.RATE_LIMIT_BACKEND == "redis":
        await init_redis()

    sweeper = asyncio.create_task(
        run_sweeper(app.state.rate_limiter, settings.RATE_LIMIT_SWEEP_INTERVAL_SECONDS)
    )
    logger.info("%s is ready on port %s", settings.APP_NAME, settings.PORT)
    yield

    sweeper.cancel()
    with suppress(asyncio.CancelledError):
        await sweeper
    await app.state.payment_gateway.close()
    await close_redis()
    await close_db()
    logger.info("Server shutdown complete")


# ── App Factory ───────────────────────────────────────────────

def create_app() -> FastAPI:
    app = FastAPI(
        title=settings.APP_NAME,
        version=settings.APP_VERSION,
        description="""
## Yenko Ride API

GraphQL API for the intercity ride-sharing marketplace.
Send operations to `POST /graphql`.

### Authentication
Protected operations require `Authorization: Bearer <id_token>`.
Missing or invalid tokens are treated as anonymous requests.
        """,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )

    # Collaborators, replaceable per instance (tests swap these)
    app.state.started_at = time.time()
    app.state.identity_provider = build_identity_provider()
    app.state.payment_gateway = build_payment_gateway()
    app.state.rate_limiter = build_rate_limiter(
        settings.RATE_LIMIT_BACKEND,
        settings.RATE_LIMIT_WINDOW_SECONDS,
        settings.RATE_LIMIT_MAX_REQUESTS,
    )

    # ── Middleware ─────────────────────────────────────────────────
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=[
            "X-Request-ID",
            "X-Process-Time",
            "X-RateLimit-Limit",
            "X-RateLimit-Remaining",
            "X-RateLimit-Reset",
        ],
    )
    app.add_middleware(GZipMiddleware, minimum_size=500)

    # ── Custom Middleware (last registered runs first) ─────────────

    @app.middleware("http")
    async def rate_limit_middleware(request: Request, call_next):
        """Fixed-window limit per client address. Health and metrics are exempt."""
        if request.url.path in RATE_LIMIT_EXEMPT:
            return await call_next(request)

        key = client_key(request)
        try:
            decision = await request.app.state.rate_limiter.is_allowed(key)
        except RedisError as exc:
            # Shared store unavailable: fail open
            logger.error("Rate limit check failed for %s: %s", key, exc)
            return await call_next(request)

        if not decision.allowed:
            logger.warning(
                "[%s] Rate limit exceeded for %s",
                getattr(request.state, "request_id", None),
                key,
            )
            headers = decision.headers()
            headers["Retry-After"] = str(decision.retry_after)
            return JSONResponse(
                status_code=429,
                content=rate_limit_response_body(decision),
                headers=headers,
            )

        response = await call_next(request)
        response.headers.update(decision.headers())
        return response

    @app.middleware("http")
    async def process_time_middleware(request: Request, call_next):
        """Track and expose request processing time."""
        start = time.perf_counter()
        response = await call_next(request)
        process_time = round((time.perf_counter() - start) * 1000, 2)
        response.headers["X-Process-Time"] = f"{process_time}ms"
        return response

    @app.middleware("http")
    async def request_id_middleware(request: Request, call_next):
        """Add unique X-Request-ID to every request for tracing."""
        request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
        request.state.request_id = request_id
        response = await call_next(request)
        response.headers["X-Request-ID"] = request_id
        return response

    # ── Exception Handlers ─────────────────────────────────────────

    @app.exception_handler(CircuitBreakerError)
    async def circuit_open_handler(request: Request, exc: CircuitBreakerError):
        request_id = getattr(request.state, "request_id", None)
        logger.error("[%s] Service degraded, circuit breaker open: %s", request_id, exc)
        return JSONResponse(
            status_code=503,
            content={
                "detail": "Service temporarily unavailable. Please try again later.",
                "request_id": request_id,
                "status": "degraded",
            },
        )

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        """Catch-all outside GraphQL execution. Never expose internals in production."""
        request_id = getattr(request.state, "request_id", None)
        logger.error("[%s] Unhandled exception: %s", request_id, exc, exc_info=exc)
        detail = "An internal server error occurred" if settings.is_production else str(exc)
        return JSONResponse(
            status_code=500,
            content={"detail": detail, "request_id": request_id},
        )

    # ── Routes ────────────────────────────────────────────────────

    @app.get("/health", tags=["Health"], include_in_schema=False)
    async def health_check(request: Request):
        return {
            "status": "ok",
            "timestamp": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
            "uptimeSeconds": round(time.time() - request.app.state.started_at, 3),
        }

    @app.get("/", include_in_schema=False)
    async def root():
        return {
            "name": settings.APP_NAME,
            "version": settings.APP_VERSION,
            "graphql": "/graphql",
            "health": "/health",
        }

    app.include_router(graphql_router)

    # ── Prometheus Metrics ─────────────────────────────────────────
    if settings.METRICS_ENABLED:
        Instrumentator().instrument(app).expose(app, endpoint="/metrics", tags=["Monitoring"])

    return app


# ── Entry Point ───────────────────────────────────────────────

app = create_app()

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "main:app",
        host=settings.HOST,
        port=settings.PORT,
        reload=settings.DEBUG,
        workers=1 if settings.DEBUG else settings.WORKERS,
        log_level="debug" if settings.DEBUG else "info",
        access_log=True,
    )
