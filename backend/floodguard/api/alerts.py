"""
Flood Alert API Routes
"""

from typing import Optional
from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from models.base import get_db
from models.flood import Audience
from services.risk_fusion_service import RiskFusionService
from schemas.flood import AlertResponse
from schemas.common import ListResponse

router = APIRouter()


@router.get("/", response_model=ListResponse[AlertResponse])
async def list_alerts(
    zone: Optional[str] = None,
    audience: Optional[Audience] = None,
    limit: int = Query(50, ge=1, le=500),
    db: AsyncSession = Depends(get_db)
):
    """List ops and public alerts, most recent first."""
    service = RiskFusionService(db)
    alerts = await service.list_alerts(zone=zone, audience=audience, limit=limit)
    return ListResponse(items=alerts, count=len(alerts), limit=limit)
