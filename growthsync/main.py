"""GrowthSync — FastAPI Application Entry Point.

Multi-source metrics sync: sheets, ads and CRM into per-project daily metrics.
"""

import os
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from growthsync.api.migration_routes import router as migration_router
from growthsync.api.sync_routes import router as sync_router
from growthsync.config import CacheConfig, settings
from growthsync.connectors.registry import default_adapter_factory
from growthsync.core.cache import TTLCache
from growthsync.core.errors import (
    AuthError,
    ConfigError,
    RateLimitError,
    SyncError,
    TransientNetworkError,
    ValidationError,
)
from growthsync.core.logging import get_logger
from growthsync.database import init_db, test_connection
from growthsync.scheduler.jobs import start_scheduler, stop_scheduler

logger = get_logger("main")

IS_SERVERLESS = bool(
    os.environ.get("VERCEL") or os.environ.get("AWS_LAMBDA_FUNCTION_NAME")
)

# One cache per process, handed to every request through app.state
cache = TTLCache(CacheConfig.from_settings(settings))


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown lifecycle."""
    logger.info("🚀 GrowthSync starting up...")
    logger.info(f"🌍 Environment: {'SERVERLESS' if IS_SERVERLESS else 'LOCAL'}")
    db_ok = test_connection()
    if db_ok:
        try:
            init_db()
        except Exception as e:
            logger.error(f"❌ Table creation failed ({type(e).__name__})")
    else:
        logger.error("❌ Database NOT connected, endpoints will fail")
    if not IS_SERVERLESS:
        start_scheduler(app.state.cache)
    yield
    if not IS_SERVERLESS:
        stop_scheduler()
    logger.info("GrowthSync shut down")


app = FastAPI(
    title="GrowthSync",
    description="Fetch, normalize, aggregate and store marketing metrics from sheets, ads and CRM sources.",
    version="1.0.0",
    lifespan=lifespan,
)
app.state.cache = cache
app.state.adapter_factory = default_adapter_factory

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Routers
app.include_router(sync_router)
app.include_router(migration_router)


_ERROR_STATUS = {
    ConfigError: 400,
    ValidationError: 422,
    AuthError: 401,
    RateLimitError: 429,
    TransientNetworkError: 502,
}


@app.exception_handler(SyncError)
async def sync_error_handler(request: Request, exc: SyncError):
    status_code = next(
        (code for cls, code in _ERROR_STATUS.items() if isinstance(exc, cls)), 500
    )
    return JSONResponse(
        status_code=status_code,
        content={"status": "error", "code": exc.code, "detail": exc.public_message},
    )


@app.get("/health", tags=["System"])
async def health_check():
    """Health check endpoint."""
    return {
        "status": "healthy",
        "service": "growthsync",
        "version": "1.0.0",
    }
