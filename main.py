"""
main.py
FastAPI application entry point.
Registers all routers, middleware, startup/shutdown events.

Production-ready features:
- Multiple instances behind a load balancer (state lives in Postgres + Redis)
- Circuit breaker around email delivery (Celery worker)
- Per-IP rate limiting for unauthenticated traffic
- Structured JSON logging with request ids
- Prometheus metrics
"""

import json
import logging
import os
import time
import uuid
from contextlib import asynccontextmanager
from logging import LogRecord

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.middleware.trustedhost import TrustedHostMiddleware
from fastapi.responses import JSONResponse
from prometheus_fastapi_instrumentator import Instrumentator

from config.database import close_db, init_db
from config.redis_client import close_redis, init_redis
from config.settings import settings

# Service routers
from services.auth.router import router as auth_router
from services.booking.router import router as booking_router
from services.chat.router import router as chat_router
from services.gig.router import router as gig_router
from services.invoice.router import router as invoice_router
from services.maintenance.router import router as maintenance_router
from services.notification.router import router as notification_router
from services.payment.router import router as payment_router
from services.subscription.router import router as subscription_router
from services.workflow.router import router as workflow_router


# ── Logging ──────────────────────────────────────────────────

class JSONFormatter(logging.Formatter):
    """JSON log formatter for structured logging."""

    def format(self, record: LogRecord) -> str:
        log_data = {
            "timestamp": self.formatTime(record),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "instance": os.getenv("INSTANCE_NAME", "unknown"),
        }
        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)
        return json.dumps(log_data)


# Configure structured logging for every module logger
handler = logging.StreamHandler()
handler.setFormatter(JSONFormatter())
logging.basicConfig(
    level=logging.DEBUG if settings.DEBUG else logging.INFO,
    handlers=[handler],
)
logger = logging.getLogger(__name__)


# ── Lifespan (startup/shutdown) ───────────────────────────────

@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown lifecycle handler."""
    logger.info(f"Starting {settings.APP_NAME} ({settings.APP_ENV})...")

    await init_db()
    logger.info("Database connected")

    await init_redis()
    logger.info("Redis connected")

    logger.info(f"{settings.APP_NAME} v{settings.APP_VERSION} is ready")
    yield

    await close_redis()
    await close_db()
    logger.info("Server shutdown complete")


# ── App Factory ───────────────────────────────────────────────

def create_app() -> FastAPI:
    app = FastAPI(
        title=settings.APP_NAME,
        version=settings.APP_VERSION,
        description="""
## Talent Booking Platform API

Workflow core of the talent-booking marketplace:
- **Bookings & Gigs**: booking requests, open gig opportunities, applications
- **Invoices**: talent invoices with platform commission (15% Pro / 20% standard)
- **Payments**: invoice settlement, booking confirmation
- **Notifications**: persisted in-app notifications, optional email
- **Realtime**: `/ws/workflow` change-feed inbox, `/ws/chat/{channel_id}` chat
- **Maintenance**: stale past-event cleanup

### Authentication
All protected endpoints require `Authorization: Bearer <access_token>` header.
WebSockets take the token as a `token` query parameter.

### Roles
- `booker`: Book talent, post gigs, pay or decline invoices
- `talent`: Apply to gigs, send invoices
- `admin`: Subscriptions, maintenance, full access
        """,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )

    # ── Middleware (order matters: outermost first) ───────────────
    app.add_middleware(
        TrustedHostMiddleware,
        allowed_hosts=["*"]
    )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["X-Request-ID", "X-Process-Time"],
    )
    app.add_middleware(GZipMiddleware, minimum_size=500)

    # ── Custom Middleware ──────────────────────────────────────────

    @app.middleware("http")
    async def request_id_middleware(request: Request, call_next):
        """Add unique X-Request-ID to every request for distributed tracing."""
        request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
        request.state.request_id = request_id
        response = await call_next(request)
        response.headers["X-Request-ID"] = request_id
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
    async def rate_limit_middleware(request: Request, call_next):
        """
        Per-IP limit for unauthenticated requests.
        Authenticated traffic is limited upstream; health and docs are exempt.
        """
        skip_paths = {"/health", "/docs", "/redoc", "/openapi.json", "/metrics"}
        if request.url.path in skip_paths:
            return await call_next(request)

        if request.headers.get("Authorization", "").startswith("Bearer "):
            return await call_next(request)

        try:
            from config.redis_client import RedisCache, redis_client
            if redis_client:
                client_ip = request.client.host if request.client else "unknown"
                allowed = await RedisCache(redis_client).check_rate_limit(
                    f"rate:unauth:{client_ip}", settings.RATE_LIMIT_UNAUTH_PER_MINUTE
                )
                if not allowed:
                    logger.warning(f"Rate limit exceeded for IP {client_ip}")
                    return JSONResponse(
                        status_code=429,
                        content={"detail": "Rate limit exceeded. Please slow down."},
                        headers={"Retry-After": "60"},
                    )
        except Exception as e:
            # Fail open when Redis is unavailable
            logger.error(f"Rate limit check failed: {str(e)}")

        return await call_next(request)

    # ── Exception Handlers ─────────────────────────────────────────

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        """Catch-all exception handler. Never expose stack traces in production."""
        request_id = getattr(request.state, "request_id", None)
        logger.error(f"[{request_id}] Exception: {str(exc)}", exc_info=True)
        return JSONResponse(
            status_code=500,
            content={
                "detail": str(exc) if settings.DEBUG and not settings.is_production else "An internal server error occurred",
                "request_id": request_id,
            },
        )

    # ── Routes ────────────────────────────────────────────────────

    @app.get("/health", tags=["Health"], include_in_schema=False)
    async def health_check():
        from sqlalchemy import text

        from config.database import AsyncSessionLocal
        from config.redis_client import redis_client

        checks = {"status": "ok", "version": settings.APP_VERSION}

        try:
            async with AsyncSessionLocal() as session:
                await session.execute(text("SELECT 1"))
            checks["database"] = "ok"
        except Exception:
            checks["database"] = "error"
            checks["status"] = "degraded"

        try:
            if redis_client:
                await redis_client.ping()
            checks["redis"] = "ok"
        except Exception:
            checks["redis"] = "error"
            checks["status"] = "degraded"

        status_code = 200 if checks["status"] == "ok" else 503
        return JSONResponse(content=checks, status_code=status_code)

    @app.get("/", include_in_schema=False)
    async def root():
        return {
            "name": settings.APP_NAME,
            "version": settings.APP_VERSION,
            "docs": "/docs",
            "health": "/health",
        }

    # Register all service routers
    app.include_router(auth_router)
    app.include_router(booking_router)
    app.include_router(gig_router)
    app.include_router(invoice_router)
    app.include_router(payment_router)
    app.include_router(notification_router)
    app.include_router(subscription_router)
    app.include_router(maintenance_router)
    app.include_router(chat_router)
    app.include_router(workflow_router)

    # ── Prometheus Metrics ─────────────────────────────────────────
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
