"""
Flood Cycle API Router

Manual cycle runs, the continuous loop, ops logs, the live risk map and the
realtime event stream.
"""

import logging
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request, WebSocket, WebSocketDisconnect
from sqlalchemy.ext.asyncio import AsyncSession

from models.base import get_db
from schemas.flood import GeoJSONFeatureCollection, OpsLogResponse
from services.zone_resolver import ZoneResolutionError
from .schemas import CycleReport, CycleRequest, LoopStatus
from .service import CycleOrchestrator, list_ops_logs

logger = logging.getLogger(__name__)

router = APIRouter()


def get_orchestrator(request: Request) -> CycleOrchestrator:
    return request.app.state.orchestrator


def cycle_params(
    inc: Optional[int] = Query(None, description="Incidents to simulate"),
    soc: Optional[int] = Query(None, description="Social posts to simulate per zone"),
    window_minutes: Optional[int] = Query(None, ge=1, description="Fusion lookback window"),
    lat: Optional[str] = None,
    lon: Optional[str] = None,
    zone: Optional[str] = None,
    postal: Optional[str] = None,
    location: Optional[str] = None,
) -> Dict[str, Any]:
    """Query parameters shared by cycle runs and loop starts."""
    return {
        "inc": inc,
        "soc": soc,
        "window_minutes": window_minutes,
        "lat": lat,
        "lon": lon,
        "zone": zone,
        "postal": postal,
        "location": location,
    }


@router.post(
    "/run",
    response_model=CycleReport,
    summary="Run one monitoring cycle",
    description=(
        "Runs weather ingest, incident simulation, social ingest and risk "
        "fusion in order and returns the per-stage report with the risk map."
    ),
)
async def run_cycle(
    params: Dict[str, Any] = Depends(cycle_params),
    orchestrator: CycleOrchestrator = Depends(get_orchestrator),
):
    try:
        return await orchestrator.run_once(CycleRequest.from_params(params))
    except (ZoneResolutionError, ValueError) as e:
        raise HTTPException(status_code=400, detail=str(e))
    except Exception as e:
        logger.exception("Cycle failed")
        raise HTTPException(status_code=500, detail=f"Cycle error: {e}")


# ==================== Continuous loop ====================

@router.post("/loop/start", response_model=LoopStatus)
async def start_loop(
    interval_ms: Optional[int] = Query(None, ge=1, description="Tick interval in milliseconds"),
    params: Dict[str, Any] = Depends(cycle_params),
    orchestrator: CycleOrchestrator = Depends(get_orchestrator),
):
    """Start the continuous loop. Returns the running loop when already started."""
    try:
        return await orchestrator.start(interval_ms, CycleRequest.from_params(params))
    except (ZoneResolutionError, ValueError) as e:
        raise HTTPException(status_code=400, detail=str(e))


@router.post("/loop/stop", response_model=LoopStatus)
async def stop_loop(orchestrator: CycleOrchestrator = Depends(get_orchestrator)):
    """Stop the continuous loop. No-op when idle."""
    return await orchestrator.stop()


@router.get("/loop", response_model=LoopStatus)
async def get_loop_status(orchestrator: CycleOrchestrator = Depends(get_orchestrator)):
    return orchestrator.status()


# ==================== Ops logs ====================

@router.get("/logs", response_model=List[OpsLogResponse])
async def get_ops_logs(
    cycle_id: Optional[str] = None,
    limit: int = Query(50, ge=1, le=500),
    db: AsyncSession = Depends(get_db),
):
    """Per-stage cycle outcomes, most recent first."""
    return await list_ops_logs(db, cycle_id=cycle_id, limit=limit)


# ==================== Realtime events ====================

@router.websocket("/events")
async def stream_events(websocket: WebSocket):
    """Push cycle.completed and alert.created events to the client."""
    broadcaster = websocket.app.state.orchestrator.broadcaster
    await websocket.accept()
    queue = broadcaster.subscribe()
    try:
        while True:
            message = await queue.get()
            await websocket.send_json(message)
    except WebSocketDisconnect:
        logger.info("Event subscriber disconnected")
    finally:
        broadcaster.unsubscribe(queue)


# ==================== Risk map ====================

risk_router = APIRouter()


@risk_router.get(
    "/map",
    response_model=GeoJSONFeatureCollection,
    summary="Current risk map",
    description="Scores every resolved zone over the lookback window without emitting alerts.",
)
async def get_risk_map(
    window_minutes: Optional[int] = Query(None, ge=1),
    lat: Optional[str] = None,
    lon: Optional[str] = None,
    zone: Optional[str] = None,
    postal: Optional[str] = None,
    location: Optional[str] = None,
    orchestrator: CycleOrchestrator = Depends(get_orchestrator),
):
    params = {"lat": lat, "lon": lon, "zone": zone, "postal": postal, "location": location}
    try:
        return await orchestrator.snapshot(params, window_minutes=window_minutes)
    except ZoneResolutionError as e:
        raise HTTPException(status_code=400, detail=str(e))
