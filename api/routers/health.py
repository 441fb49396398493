# WORKFLOW: Health check endpoints for monitoring and operational status.
# Used by: Load balancers, monitoring systems, operational dashboards
# Endpoints:
# 1. /healthz - Basic health check (always returns healthy)
# 2. /readyz - Readiness check with service dependencies
# 3. /livez - Liveness check for Kubernetes probes
#
# Health flow: Health check request -> Service status check -> Health response
# Readiness flow: Readiness check -> Database / remote tariff API connectivity -> Ready/Not ready

from fastapi import APIRouter, Depends
import logging
from datetime import datetime

from api.routers.taric import get_taric_engine
from core.config import settings
from db.session import check_db_connection
from services.taric_engine import TaricEngine

logger = logging.getLogger(__name__)

router = APIRouter(tags=["health"])


@router.get("/healthz")
async def health_check():
    """
    Basic health check endpoint.

    Returns:
        Health status of the API
    """
    return {
        "status": "healthy",
        "timestamp": datetime.utcnow().isoformat(),
        "version": settings.version,
        "environment": settings.environment
    }


@router.get("/readyz")
async def readiness_check(engine: TaricEngine = Depends(get_taric_engine)):
    """
    Readiness check endpoint.

    Checks if the service is ready to handle requests by verifying:
    - Database connection
    - Remote tariff API availability

    Returns:
        Readiness status with detailed checks
    """
    checks = {
        "database": False,
        "taric_api": False,
    }

    try:
        checks["database"] = check_db_connection()
    except Exception as e:
        logger.error(f"Database health check failed: {e}")

    try:
        api_health = await engine.check_api_health()
        checks["taric_api"] = api_health.available
    except Exception as e:
        logger.error(f"Tariff API health check failed: {e}")

    is_ready = all(checks.values())

    return {
        "status": "ready" if is_ready else "not_ready",
        "timestamp": datetime.utcnow().isoformat(),
        "checks": checks,
        "version": settings.version
    }


@router.get("/livez")
async def liveness_check():
    """Liveness check for Kubernetes probes."""
    return {
        "status": "alive",
        "timestamp": datetime.utcnow().isoformat()
    }
