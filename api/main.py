#!/usr/bin/env python3
"""
Tariff Engine API - classification, duty-rate resolution and TARIC sync.
"""

import asyncio
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from core.config import settings
from api.middleware.auth import AuthMiddleware
from api.middleware.logging import LoggingMiddleware
from api.routers import health, sync, taric
from db.session import init_db
from etl.sync_pipeline import get_sync_pipeline, run_daily_scheduler
from services.taric_engine import close_clients

# Configure logging
logging.basicConfig(level=getattr(logging, settings.log_level))
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    init_db()
    scheduler = None
    if settings.sync_scheduler_enabled:
        scheduler = asyncio.create_task(run_daily_scheduler(get_sync_pipeline()))
    logger.info(f"{settings.project_name} {settings.version} started ({settings.environment})")
    try:
        yield
    finally:
        if scheduler is not None:
            scheduler.cancel()
        await close_clients()


# Create FastAPI app
app = FastAPI(
    title=settings.project_name,
    version=settings.version,
    description="HS/TARIC classification, duty-rate resolution and local tariff mirror sync",
    lifespan=lifespan,
)

# Middleware added last runs first: CORS -> logging -> auth
app.add_middleware(AuthMiddleware)
app.add_middleware(LoggingMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.allowed_origins,
    allow_credentials=True,
    allow_methods=settings.allowed_methods,
    allow_headers=settings.allowed_headers,
)

# Expose health checks both at root and versioned paths
app.include_router(health.router, prefix=settings.api_v1_prefix)
app.include_router(taric.router, prefix=settings.api_v1_prefix)
app.include_router(sync.router, prefix=settings.api_v1_prefix)


@app.get("/healthz")
async def root_health_check():
    """Root-level health endpoint for external monitors."""
    return await health.health_check()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host=settings.api_host, port=settings.api_port)
