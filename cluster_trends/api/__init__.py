"""
Cluster Trends API package.

Router modules:
- trends: Filter selection, refresh, snapshot and status endpoints
"""

from fastapi import APIRouter

from cluster_trends.api.trends import router as trends_router

# Create main API router
api_router = APIRouter()

api_router.include_router(trends_router, prefix="/trends", tags=["trends"])

__all__ = [
    "api_router",
    "trends_router",
]
