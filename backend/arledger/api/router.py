"""Main API router that aggregates all endpoint routers."""

from fastapi import APIRouter

from arledger.api.endpoints import analytics, filters, health, reconciliation

# Create main API router
api_router = APIRouter(prefix="/api/v1")

api_router.include_router(reconciliation.router, prefix="/reconciliation", tags=["Reconciliation"])
api_router.include_router(analytics.router, prefix="/analytics", tags=["Analytics"])
api_router.include_router(filters.router, prefix="/filters", tags=["Saved Filters"])
api_router.include_router(health.router, tags=["Health"])


@api_router.get("/")
async def api_root():
    """API root endpoint."""
    return {
        "message": "AR Reconciliation & Analytics API v1",
        "endpoints": {
            "reconciliation": "/api/v1/reconciliation",
            "analytics": "/api/v1/analytics",
            "filters": "/api/v1/filters",
            "health": "/api/v1/health",
        },
    }
