"""
FraudDesk — Main Application Entry Point
Fraud-detection management backend with rule-based transaction scoring.
"""

import time
import uuid
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.trustedhost import TrustedHostMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.openapi.utils import get_openapi
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from prometheus_client import make_asgi_app

from frauddesk.api.routes import (
    alerts, auth, cases, dashboard, health, rules, transactions, users,
)
from frauddesk.config import settings
from frauddesk.services.db import AsyncSessionLocal, init_db
from frauddesk.services.errors import exception_to_response, FraudDeskException
from frauddesk.services.kafka_producer import KafkaProducer
from frauddesk.services.observability import (
    setup_logging,
    metrics_middleware,
    set_request_id,
)
from frauddesk.services.security import limiter

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------
setup_logging()
logger = logging.getLogger("frauddesk")


# ---------------------------------------------------------------------------
# Lifespan (startup / shutdown)
# ---------------------------------------------------------------------------
@asynccontextmanager
async def lifespan(app: FastAPI):
    """Bootstrap heavy resources once; tear down on shutdown."""
    logger.info("FraudDesk — initialising …")

    # 1. Create all DB tables (idempotent)
    await init_db()

    # 2. Default rules + bootstrap admin on an empty database
    if settings.SEED_ON_STARTUP:
        from frauddesk.seed import seed_admin, seed_rules

        async with AsyncSessionLocal() as db:
            await seed_rules(db)
            await seed_admin(db)
            await db.commit()

    # 3. Warm Kafka producer connection
    if settings.KAFKA_BOOTSTRAP_SERVERS:
        app.state.kafka_producer = KafkaProducer()
        await app.state.kafka_producer.start()
        logger.info("Kafka producer connected.")
    else:
        logger.warning("Kafka disabled — no bootstrap servers configured.")

    yield  # ← application runs here

    # --- shutdown ---
    if hasattr(app.state, "kafka_producer"):
        await app.state.kafka_producer.stop()
    logger.info("FraudDesk — shut down complete.")


# ---------------------------------------------------------------------------
# FastAPI instance
# ---------------------------------------------------------------------------
app = FastAPI(
    title=settings.APP_NAME,
    description=(
        "Fraud-detection management API: transaction ingestion with rule-based "
        "risk scoring, alerts, investigation cases, rule administration and users."
    ),
    version=settings.APP_VERSION,
    lifespan=lifespan,
    docs_url="/docs" if not settings.is_production() else None,
    redoc_url="/redoc" if not settings.is_production() else None,
    openapi_url="/openapi.json" if not settings.is_production() else None,
)

# ---------------------------------------------------------------------------
# Middleware Stack (order matters)
# ---------------------------------------------------------------------------

# 1. GZip compression
app.add_middleware(GZipMiddleware, minimum_size=1000)

# 2. CORS
if settings.CORS_ORIGINS:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
        allow_headers=["*"],
        allow_credentials=True,
    )

# 3. Trusted hosts
if settings.ALLOWED_HOSTS != ["*"]:
    app.add_middleware(
        TrustedHostMiddleware,
        allowed_hosts=settings.ALLOWED_HOSTS,
    )


# 4. Rate limiting
def _rate_limit_exceeded_handler(request: Request, exc: RateLimitExceeded):
    """Handle rate limit exceeded."""
    return JSONResponse(
        status_code=429,
        content={
            "error": {
                "code": "RATE_LIMIT_EXCEEDED",
                "message": f"Too many requests. {exc.detail}",
                "request_id": getattr(request.state, "request_id", None),
            }
        },
    )


app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)


@app.middleware("http")
async def metrics_collection_middleware(request: Request, call_next) -> Response:
    """Record metrics for requests."""
    if settings.METRICS_ENABLED:
        return await metrics_middleware(request, call_next)
    return await call_next(request)


@app.middleware("http")
async def request_context_middleware(request: Request, call_next) -> Response:
    """
    Attach a unique request-id, set context variables, measure latency,
    and turn escaped exceptions into the JSON error envelope.
    """
    request_id = request.headers.get("X-Request-Id") or str(uuid.uuid4())
    set_request_id(request_id)
    request.state.request_id = request_id
    start_time = time.perf_counter()

    try:
        response: Response = await call_next(request)
    except Exception as exc:
        response, log_level = exception_to_response(exc, request_id=request_id)
        getattr(logger, log_level)("Unhandled exception: %s", exc, exc_info=log_level == "error")

    elapsed_ms = (time.perf_counter() - start_time) * 1_000
    response.headers["X-Request-Id"] = request_id
    response.headers["X-Response-Time-Ms"] = f"{elapsed_ms:.2f}"

    logger.info(
        "HTTP request completed",
        extra={
            "method": request.method,
            "path": request.url.path,
            "status": response.status_code,
            "duration_ms": round(elapsed_ms, 2),
        },
    )
    return response


# ---------------------------------------------------------------------------
# Exception Handlers
# ---------------------------------------------------------------------------
@app.exception_handler(FraudDeskException)
async def frauddesk_exception_handler(
    request: Request,
    exc: FraudDeskException,
):
    """Handle FraudDesk domain exceptions."""
    request_id = getattr(request.state, "request_id", None)
    resp, log_level = exception_to_response(exc, request_id=request_id)
    getattr(logger, log_level)("FraudDeskException: %s", exc)
    return resp


# ---------------------------------------------------------------------------
# Routers
# ---------------------------------------------------------------------------
app.include_router(health.router,       prefix="/api/v1/health",       tags=["Health"])
app.include_router(auth.router,         prefix="/api/v1/auth",         tags=["Authentication"])
app.include_router(users.router,        prefix="/api/v1/users",        tags=["Users"])
app.include_router(transactions.router, prefix="/api/v1/transactions", tags=["Transactions"])
app.include_router(rules.router,        prefix="/api/v1/rules",        tags=["Rules"])
app.include_router(alerts.router,       prefix="/api/v1/alerts",       tags=["Alerts"])
app.include_router(cases.router,        prefix="/api/v1/cases",        tags=["Cases"])
app.include_router(dashboard.router,    prefix="/api/v1/dashboard",    tags=["Dashboard"])


# ---------------------------------------------------------------------------
# Prometheus Metrics Endpoint
# ---------------------------------------------------------------------------
if settings.METRICS_ENABLED:
    app.mount("/metrics", make_asgi_app())


# ---------------------------------------------------------------------------
# Custom OpenAPI schema
# ---------------------------------------------------------------------------
def custom_openapi():
    if app.openapi_schema:
        return app.openapi_schema

    openapi_schema = get_openapi(
        title=app.title,
        version=app.version,
        description=app.description,
        routes=app.routes,
    )
    openapi_schema.setdefault("components", {})["securitySchemes"] = {
        "bearerAuth": {
            "type": "http",
            "scheme": "bearer",
            "bearerFormat": "JWT",
            "description": "JWT Bearer token from POST /api/v1/auth/token",
        },
    }
    openapi_schema["servers"] = [
        {"url": "/", "description": "Current environment"},
    ]

    app.openapi_schema = openapi_schema
    return app.openapi_schema


app.openapi = custom_openapi


# ---------------------------------------------------------------------------
# Root endpoint
# ---------------------------------------------------------------------------
@app.get("/", tags=["Info"])
async def root():
    """API root."""
    return {
        "name": settings.APP_NAME,
        "version": settings.APP_VERSION,
        "environment": settings.APP_ENV,
        "docs": "/docs" if not settings.is_production() else None,
    }
