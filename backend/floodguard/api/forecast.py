"""
Forecast API Routes
"""

from typing import Optional
from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from models.base import get_db
from services.weather_ingest_service import WeatherIngestService
from schemas.flood import ForecastResponse
from schemas.common import ListResponse

router = APIRouter()


@router.get("/", response_model=ListResponse[ForecastResponse])
async def list_forecasts(
    zone: Optional[str] = None,
    limit: int = Query(50, ge=1, le=500),
    db: AsyncSession = Depends(get_db)
):
    """List stored forecast samples, most recent first."""
    service = WeatherIngestService(db)
    forecasts = await service.list_forecasts(zone=zone, limit=limit)
    return ListResponse(items=forecasts, count=len(forecasts), limit=limit)
