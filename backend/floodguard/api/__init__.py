"""
API Routes for the flood monitoring service
"""

from fastapi import APIRouter

from .forecast import router as forecast_router
from .incidents import router as incidents_router
from .social import router as social_router
from .alerts import router as alerts_router
from flood_cycle import flood_cycle_router, risk_router

# Main API router
api_router = APIRouter()

# Include all sub-routers
api_router.include_router(
    forecast_router,
    prefix="/forecast",
    tags=["Forecasts"]
)

api_router.include_router(
    incidents_router,
    prefix="/incidents",
    tags=["Incidents"]
)

api_router.include_router(
    social_router,
    prefix="/social",
    tags=["Social Signals"]
)

api_router.include_router(
    alerts_router,
    prefix="/alerts",
    tags=["Flood Alerts"]
)

api_router.include_router(
    risk_router,
    prefix="/risk",
    tags=["Risk Map"]
)

api_router.include_router(
    flood_cycle_router,
    prefix="/ops",
    tags=["Monitoring Cycle"]
)

__all__ = ["api_router"]
