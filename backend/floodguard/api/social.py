"""
Social Signal API Routes
"""

from typing import Optional
from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from models.base import get_db
from services.social_service import SocialIngestService
from schemas.flood import SocialSignalResponse
from schemas.common import ListResponse

router = APIRouter()


@router.get("/", response_model=ListResponse[SocialSignalResponse])
async def list_social_signals(
    zone: Optional[str] = None,
    limit: int = Query(50, ge=1, le=500),
    db: AsyncSession = Depends(get_db)
):
    """List classified social signals, most recent first."""
    service = SocialIngestService(db)
    signals = await service.list_signals(zone=zone, limit=limit)
    return ListResponse(items=signals, count=len(signals), limit=limit)
