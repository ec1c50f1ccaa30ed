from contextlib import asynccontextmanager

import structlog
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from fastapi import FastAPI
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from shiplog.api import webhooks
from shiplog.config import get_settings
from shiplog.database import dispose_engine, get_engine, init_db
from shiplog.jobs.retry_webhooks import retry_webhooks_job
from shiplog.logging_config import configure_logging
from shiplog.middleware import RequestIdMiddleware
from shiplog.tracing import setup_tracing

# Configure structured logging
configure_logging()
logger = structlog.get_logger(__name__)

settings = get_settings()
scheduler = AsyncIOScheduler()


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Initialize Sentry (before other startup)
    if settings.sentry_dsn:
        import sentry_sdk
        from sentry_sdk.integrations.fastapi import FastApiIntegration

        sentry_sdk.init(
            dsn=settings.sentry_dsn,
            integrations=[FastApiIntegration()],
            traces_sample_rate=settings.sentry_traces_sample_rate,
        )
        logger.info("Sentry initialized")

    await init_db()
    logger.info("Database initialized")

    scheduler_started = False
    if settings.scheduler_enabled:
        # Overlapping drains are safe: queue items are claimed atomically
        scheduler.add_job(
            retry_webhooks_job,
            "interval",
            minutes=settings.webhook_retry_interval_minutes,
            id="retry_webhooks",
            max_instances=1,
            coalesce=True,
        )
        scheduler.start()
        scheduler_started = True
        logger.info(
            "Webhook retry job scheduled",
            interval_minutes=settings.webhook_retry_interval_minutes,
        )

    yield

    if scheduler_started:
        scheduler.shutdown()
        logger.info("Scheduler shut down")

    await dispose_engine()
    logger.info("Shutting down...")


app = FastAPI(
    title="ShipLog API",
    description="Changelogs from merged GitHub pull requests",
    version="0.1.0",
    lifespan=lifespan,
    docs_url=None if settings.app_env == "production" else "/docs",
    redoc_url=None if settings.app_env == "production" else "/redoc",
    openapi_url=None if settings.app_env == "production" else "/openapi.json",
)

# Prometheus metrics
if settings.prometheus_enabled:
    from prometheus_fastapi_instrumentator import Instrumentator

    Instrumentator(
        should_group_status_codes=True,
        should_ignore_untemplated=True,
        excluded_handlers=["/health", "/metrics"],
    ).instrument(app).expose(app, endpoint="/metrics", include_in_schema=False)

# OpenTelemetry tracing
setup_tracing(app)

app.add_middleware(RequestIdMiddleware)

app.include_router(webhooks.router, prefix="/api", tags=["webhooks"])


@app.get("/")
async def root():
    if settings.app_env == "production":
        return {"status": "ok"}
    return {"message": "ShipLog API", "version": "0.1.0", "docs": "/docs"}


@app.get("/health")
async def health():
    """Health check endpoint that verifies database connectivity."""
    try:
        async with get_engine().connect() as conn:
            await conn.execute(text("SELECT 1"))
        return {"status": "healthy", "database": "connected"}
    except (SQLAlchemyError, OSError, ConnectionError, TimeoutError) as e:
        logger.warning(f"Health check failed: {type(e).__name__}: {e}")
    except Exception as e:
        logger.warning(f"Health check failed with unexpected error: {type(e).__name__}: {e}")
    return JSONResponse(status_code=503, content={"status": "unhealthy", "database": "disconnected"})
