############################################################
#
# toolgate - AI Tool Usage Metering and Provider Failover
#
# __init__.py: API endpoints package and router configuration
#
# Luke Sheneman
# Research Computing and Data Services (RCDS)
# Institute for Interdisciplinary Data Sciences (IIDS)
# University of Idaho
# sheneman@uidaho.edu
#
############################################################

"""API endpoints for toolgate."""

from fastapi import APIRouter

from backend.app.api.admin_api import router as admin_router
from backend.app.api.health import router as health_router
from backend.app.api.usage_api import router as usage_router
from backend.app.tools import build_default_registry

# Create main API router
api_router = APIRouter()

# Include all sub-routers
api_router.include_router(health_router)
api_router.include_router(usage_router)
api_router.include_router(admin_router, prefix="/api/admin", tags=["admin"])
api_router.include_router(build_default_registry().build_router())

__all__ = ["api_router"]
