"""
Incident API Routes
"""

from datetime import datetime, timedelta
from typing import Optional
from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.ext.asyncio import AsyncSession

from models.base import get_db
from services.incident_service import IncidentService, IncidentValidationError
from schemas.flood import IncidentCreate, IncidentSimulateRequest, IncidentResponse
from schemas.common import ListResponse, StatusResponse

router = APIRouter()


@router.get("/", response_model=ListResponse[IncidentResponse])
async def list_incidents(
    zone: Optional[str] = None,
    window_minutes: Optional[int] = Query(None, ge=1),
    limit: int = Query(50, ge=1, le=500),
    db: AsyncSession = Depends(get_db)
):
    """List incidents, most recent first."""
    since = datetime.utcnow() - timedelta(minutes=window_minutes) if window_minutes else None
    service = IncidentService(db)
    incidents = await service.list_incidents(zone=zone, since=since, limit=limit)
    return ListResponse(items=incidents, count=len(incidents), limit=limit)


@router.post("/report", response_model=IncidentResponse)
async def report_incident(
    data: IncidentCreate,
    db: AsyncSession = Depends(get_db)
):
    """File a drain or citizen incident report."""
    service = IncidentService(db)
    try:
        incident = await service.create(data)
    except IncidentValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))
    await db.commit()
    return incident


@router.post("/simulate", response_model=ListResponse[IncidentResponse])
async def simulate_incidents(
    data: IncidentSimulateRequest,
    db: AsyncSession = Depends(get_db)
):
    """Synthesize a batch of incidents for a zone."""
    service = IncidentService(db)
    try:
        incidents = await service.simulate_batch(data.zone, data.count)
    except IncidentValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))
    await db.commit()
    return ListResponse(items=incidents, count=len(incidents), limit=data.count)


@router.delete("/simulated", response_model=StatusResponse)
async def purge_simulated_incidents(
    zone: Optional[str] = None,
    db: AsyncSession = Depends(get_db)
):
    """Delete simulated incidents, optionally for one zone."""
    service = IncidentService(db)
    removed = await service.purge_simulated(zone=zone)
    await db.commit()
    return StatusResponse(
        success=True,
        message=f"Removed {removed} simulated incidents",
        data={"removed": removed}
    )
