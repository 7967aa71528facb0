"""FastAPI application entry point for the carbon reporting service.

Owns the single dashboard cache: it is created with the app and its
background sweep runs for the lifetime of the process.
"""

import logging
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy import text

from src.api.benchmarks import router as benchmarks_router
from src.api.dashboard import router as dashboard_router
from src.api.reports import router as reports_router
from src.config.settings import get_settings
from src.dashboard.cache import CacheConfig, TTLCache

APP_VERSION = "0.1.0"

settings = get_settings()

_LOG_NAME_TO_LEVEL: dict[str, int] = {
    "DEBUG": logging.DEBUG,
    "INFO": logging.INFO,
    "WARNING": logging.WARNING,
    "ERROR": logging.ERROR,
    "CRITICAL": logging.CRITICAL,
}

# --- Structured logging ---
structlog.configure(
    processors=[
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.dev.ConsoleRenderer() if settings.ENVIRONMENT == "dev"
        else structlog.processors.JSONRenderer(),
    ],
    wrapper_class=structlog.make_filtering_bound_logger(
        _LOG_NAME_TO_LEVEL[settings.LOG_LEVEL.value],
    ),
    context_class=dict,
    logger_factory=structlog.PrintLoggerFactory(),
    cache_logger_on_first_use=True,
)
logging.basicConfig(level=_LOG_NAME_TO_LEVEL[settings.LOG_LEVEL.value])

logger: structlog.stdlib.BoundLogger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI):
    cache: TTLCache = app.state.dashboard_cache
    await cache.start()
    logger.info("dashboard_cache_started", max_items=settings.DASHBOARD_CACHE_MAX_ITEMS)
    try:
        yield
    finally:
        await cache.stop()
        logger.info("dashboard_cache_stopped")


# --- FastAPI app ---
app = FastAPI(
    title="Carbon Reporting API",
    description="Reports, exports, benchmarks and dashboards for carbon credit projects.",
    version=APP_VERSION,
    lifespan=lifespan,
)
app.state.dashboard_cache = TTLCache(
    CacheConfig(
        default_ttl=settings.DASHBOARD_CACHE_TTL_SECONDS,
        cleanup_interval=settings.DASHBOARD_CACHE_CLEANUP_SECONDS,
        max_items=settings.DASHBOARD_CACHE_MAX_ITEMS,
    ),
)

# --- CORS middleware ---
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"] if settings.ENVIRONMENT == "dev" else [],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# --- Routers ---
app.include_router(reports_router)
app.include_router(benchmarks_router)
app.include_router(dashboard_router)


# --- Infrastructure Endpoints ---


@app.get("/health")
async def health_check() -> dict:
    """Liveness probe. Returns 200 always (degraded if a component is down)."""
    checks: dict[str, bool] = {"api": True}

    try:
        from src.db.session import async_session_factory
        async with async_session_factory() as session:
            await session.execute(text("SELECT 1"))
        checks["database"] = True
    except Exception:
        logger.warning("health_database_unreachable", exc_info=True)
        checks["database"] = False

    checks["dashboard_cache"] = app.state.dashboard_cache.running

    all_ok = all(checks.values())
    return {
        "status": "ok" if all_ok else "degraded",
        "version": APP_VERSION,
        "environment": settings.ENVIRONMENT.value,
        "checks": checks,
    }


@app.get("/api/version")
async def get_version() -> dict[str, str]:
    """Return application name, version, and environment."""
    return {
        "name": "carbon-reporting",
        "version": APP_VERSION,
        "environment": settings.ENVIRONMENT.value,
    }
