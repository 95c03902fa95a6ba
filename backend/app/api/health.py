############################################################
#
# toolgate - AI Tool Usage Metering and Provider Failover
#
# health.py: Liveness and readiness endpoints
#
# Luke Sheneman
# Research Computing and Data Services (RCDS)
# Institute for Interdisciplinary Data Sciences (IIDS)
# University of Idaho
# sheneman@uidaho.edu
#
############################################################

"""Health check endpoints."""

from datetime import datetime, timezone
from typing import Any, Dict

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.db.session import get_async_db
from backend.app.logging_config import get_logger
from backend.app.settings import get_settings

logger = get_logger(__name__)
router = APIRouter(tags=["health"])


@router.get("/healthz")
async def liveness_check() -> Dict[str, str]:
    """
    Liveness check - checks if the application is running.

    Returns 200 if the application is alive.
    """
    return {"status": "alive", "timestamp": datetime.now(timezone.utc).isoformat()}


@router.get("/readyz")
async def readiness_check(db: AsyncSession = Depends(get_async_db)) -> Any:
    """
    Readiness check - checks that the usage ledger is reachable.

    Returns 503 when the database cannot be queried, since every metered
    tool request would fail closed in that state.
    """
    settings = get_settings()
    checks: Dict[str, bool] = {"database": False}

    try:
        await db.execute(text("SELECT 1"))
        checks["database"] = True
    except SQLAlchemyError as e:
        logger.warning("readiness_database_failed", error=str(e))

    ready = all(checks.values())
    body = {
        "status": "ready" if ready else "not_ready",
        "service": settings.app_name,
        "version": settings.app_version,
        "checks": checks,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }
    return JSONResponse(body, status_code=200 if ready else 503)
