"""
Flood Cycle Orchestrator

Runs the monitoring pipeline as a fixed sequence of stages:
  1. weather    - fetch and store a rain outlook per zone
  2. incidents  - synthesize requested incident reports
  3. social     - ingest and classify social posts
  4. fusion     - score zones, emit tiered alerts, render the risk map

Each stage is individually guarded: a failure is recorded in the cycle
report and the next stage runs on the best data available. The
orchestrator also owns the continuous polling loop (Idle / Running) with an
overlap guard that skips ticks while a cycle is in flight.
"""

import asyncio
import random
import time
import uuid
from contextlib import suppress
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional, Tuple, Union

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from config import get_settings, Settings
from models.base import AsyncSessionLocal
from models.flood import Incident, OpsLog, StageStatus
from schemas.flood import Zone
from services.broadcast import EventBroadcaster
from services.classifier_service import TextClassifierService
from services.incident_service import IncidentService
from services.risk_fusion_service import FusionResult, RiskFusionService, as_geojson
from services.risk_scoring import ScoringConfig
from services.social_service import SocialIngestResult, SocialIngestService
from services.weather_api_service import build_weather_provider
from services.weather_ingest_service import WeatherIngestResult, WeatherIngestService
from services.zone_resolver import resolve_zones

from .schemas import CycleReport, CycleRequest, LoopState, LoopStatus, StageResult

logger = structlog.get_logger(__name__)

@dataclass
class CycleContext:
    """Records passed forward from stage to stage within one cycle."""
    cycle_id: str
    request: CycleRequest
    zones: List[Zone]
    weather: WeatherIngestResult = field(default_factory=WeatherIngestResult)
    incidents: List[Incident] = field(default_factory=list)
    social: SocialIngestResult = field(default_factory=SocialIngestResult)
    fusion: FusionResult = field(default_factory=FusionResult)


StageFn = Callable[[CycleContext, AsyncSession], Awaitable[Dict[str, Any]]]


class CycleOrchestrator:
    """Orchestrates monitoring cycles and the continuous loop."""

    def __init__(
        self,
        session_factory: async_sessionmaker = AsyncSessionLocal,
        weather_provider=None,
        classifier: Optional[TextClassifierService] = None,
        broadcaster: Optional[EventBroadcaster] = None,
        scoring: Optional[ScoringConfig] = None,
        config: Optional[Settings] = None,
        rng: Optional[random.Random] = None,
    ):
        self.settings = config or get_settings()
        self.session_factory = session_factory
        self.weather_provider = weather_provider or build_weather_provider(self.settings)
        self.classifier = classifier or TextClassifierService(self.settings)
        self.broadcaster = broadcaster or EventBroadcaster()
        self.scoring = scoring or ScoringConfig.from_settings(self.settings)
        self.rng = rng or random.Random()

        self._stages: Tuple[Tuple[str, StageFn], ...] = (
            ("weather", self._weather_stage),
            ("incidents", self._incident_stage),
            ("social", self._social_stage),
            ("fusion", self._fusion_stage),
        )

        # Loop state
        self._cycle_lock = asyncio.Lock()
        self._state = LoopState.IDLE
        self._loop_id: Optional[str] = None
        self._interval_ms: Optional[int] = None
        self._loop_started_at: Optional[datetime] = None
        self._ticker: Optional[asyncio.Task] = None
        self._cycle_task: Optional[asyncio.Task] = None
        self._completed_cycles = 0
        self._failed_cycles = 0
        self._skipped_ticks = 0
        self._last_cycle_id: Optional[str] = None
        self._loop_generation = 0

    # ── public entry points ──────────────────────────────────────────

    async def run_once(
        self, request: Union[CycleRequest, Mapping[str, Any], None] = None
    ) -> CycleReport:
        """Run one cycle. Concurrent callers are serialized."""
        if not isinstance(request, CycleRequest):
            request = CycleRequest.from_params(request)
        async with self._cycle_lock:
            return await self._run_cycle(request)

    @property
    def stage_names(self) -> Tuple[str, ...]:
        return tuple(name for name, _ in self._stages)

    async def snapshot(self, location=None, window_minutes: Optional[int] = None) -> Dict[str, Any]:
        """Current risk map without emitting alerts. Bounded by the stage timeout."""
        zones = resolve_zones(location)
        async with self.session_factory() as db:
            fusion = await asyncio.wait_for(
                RiskFusionService(db, self.scoring).fuse(
                    zones, window_minutes=window_minutes, persist_alerts=False
                ),
                timeout=self.settings.cycle_stage_timeout_seconds,
            )
        return fusion.geojson

    # ── cycle ────────────────────────────────────────────────────────

    async def _run_cycle(self, request: CycleRequest) -> CycleReport:
        zones = resolve_zones(request.location)
        ctx = CycleContext(
            cycle_id=f"cycle-{uuid.uuid4().hex[:12]}",
            request=request,
            zones=zones,
        )
        started = datetime.utcnow()
        clock = time.perf_counter()
        logger.info("cycle_started", cycle_id=ctx.cycle_id, zones=[z.id for z in zones])

        per_stage: List[StageResult] = []
        for name, stage in self._stages:
            result = await self._run_stage(name, stage, ctx)
            await self._record_stage(ctx.cycle_id, result)
            per_stage.append(result)

        report = CycleReport(
            cycle_id=ctx.cycle_id,
            started_at=started,
            completed_at=datetime.utcnow(),
            duration_ms=int((time.perf_counter() - clock) * 1000),
            location=request.location,
            zones=zones,
            per_stage=per_stage,
            risk_by_zone=ctx.fusion.risk_by_zone,
            alerts_emitted=len(ctx.fusion.alerts),
            geojson=ctx.fusion.geojson or as_geojson(zones, ctx.fusion.risk_by_zone),
        )
        self._last_cycle_id = ctx.cycle_id

        logger.info(
            "cycle_completed",
            cycle_id=ctx.cycle_id,
            duration_ms=report.duration_ms,
            stages={s.name: s.status.value for s in per_stage},
            alerts=report.alerts_emitted,
        )
        await self._broadcast(report, ctx)
        return report

    async def _run_stage(self, name: str, stage: StageFn, ctx: CycleContext) -> StageResult:
        clock = time.perf_counter()
        status, error, summary = StageStatus.OK, None, {}
        try:
            async with self.session_factory() as db:
                summary = await asyncio.wait_for(
                    self._stage_and_commit(stage, ctx, db),
                    timeout=self.settings.cycle_stage_timeout_seconds,
                )
        except asyncio.TimeoutError:
            status = StageStatus.ERROR
            error = f"stage timed out after {self.settings.cycle_stage_timeout_seconds}s"
            logger.warning("stage_timeout", cycle_id=ctx.cycle_id, stage=name)
        except Exception as e:
            status = StageStatus.ERROR
            error = f"{type(e).__name__}: {e}"
            logger.warning("stage_failed", cycle_id=ctx.cycle_id, stage=name, error=error)

        zone_errors = dict(ctx.weather.errors) if name == "weather" else {}
        if zone_errors and status is StageStatus.OK:
            status = StageStatus.ERROR
            error = f"{len(zone_errors)} zone(s) failed: {', '.join(sorted(zone_errors))}"

        return StageResult(
            name=name,
            status=status,
            duration_ms=int((time.perf_counter() - clock) * 1000),
            error=error,
            zone_errors=zone_errors,
            summary=summary or {},
        )

    @staticmethod
    async def _stage_and_commit(stage: StageFn, ctx: CycleContext, db: AsyncSession) -> Dict[str, Any]:
        summary = await stage(ctx, db)
        await db.commit()
        return summary

    async def _record_stage(self, cycle_id: str, result: StageResult) -> None:
        """Persist the ops-log row. Store failures and timeouts propagate to the caller."""
        async with self.session_factory() as db:
            db.add(OpsLog(
                cycle_id=cycle_id,
                step=result.name,
                status=result.status,
                duration_ms=result.duration_ms,
                detail=result.error,
                timestamp=datetime.utcnow(),
            ))
            await asyncio.wait_for(db.commit(), timeout=self.settings.cycle_stage_timeout_seconds)

    async def _broadcast(self, report: CycleReport, ctx: CycleContext) -> None:
        try:
            await self.broadcaster.publish("cycle.completed", report.model_dump(mode="json"))
            for alert in ctx.fusion.alerts:
                await self.broadcaster.publish("alert.created", {
                    "cycle_id": ctx.cycle_id,
                    "zone": alert.zone,
                    "audience": alert.audience.value,
                    "risk_tier": alert.risk_tier.value,
                    "message": alert.message,
                })
        except Exception as e:
            logger.warning("broadcast_failed", cycle_id=ctx.cycle_id, error=str(e))

    # ── stages ───────────────────────────────────────────────────────

    async def _weather_stage(self, ctx: CycleContext, db: AsyncSession) -> Dict[str, Any]:
        service = WeatherIngestService(
            db, self.weather_provider, self.settings.external_api_timeout_seconds
        )
        ctx.weather = await service.ingest(ctx.zones)
        return {
            "samples": len(ctx.weather.samples),
            "provider": getattr(self.weather_provider, "name", type(self.weather_provider).__name__),
        }

    async def _incident_stage(self, ctx: CycleContext, db: AsyncSession) -> Dict[str, Any]:
        count = ctx.request.simulate_incidents
        requested = ctx.request.location.zone_id
        targets = [z for z in ctx.zones if z.id == requested] or ctx.zones

        service = IncidentService(db, rng=self.rng)
        created: List[Incident] = []
        if count > 0:
            for zone in targets:
                created.extend(await service.simulate_batch(zone.id, count))
        ctx.incidents = created

        return {"simulated": len(created), "zones": [z.id for z in targets] if count > 0 else []}

    async def _social_stage(self, ctx: CycleContext, db: AsyncSession) -> Dict[str, Any]:
        service = SocialIngestService(db, classifier=self.classifier, rng=self.rng)
        ctx.social = await service.ingest(ctx.zones, ctx.request.simulate_social)
        return {
            "posts": len(ctx.social.signals),
            "flagged": ctx.social.flagged,
            "classified_by": ctx.social.classified_by,
            "live_posts": ctx.social.live_posts,
        }

    async def _fusion_stage(self, ctx: CycleContext, db: AsyncSession) -> Dict[str, Any]:
        service = RiskFusionService(db, self.scoring, classifier=self.classifier)
        ctx.fusion = await service.fuse(
            ctx.zones,
            window_minutes=ctx.request.window_minutes,
            fresh_forecasts=ctx.weather.samples,
            cycle_id=ctx.cycle_id,
        )
        return {
            "tiers": {zid: s.risk_tier.value for zid, s in ctx.fusion.risk_by_zone.items()},
            "alerts": len(ctx.fusion.alerts),
        }

    # ── continuous loop ──────────────────────────────────────────────

    @property
    def state(self) -> LoopState:
        return self._state

    def status(self) -> LoopStatus:
        return LoopStatus(
            loop_id=self._loop_id,
            state=self._state,
            interval_ms=self._interval_ms,
            started_at=self._loop_started_at,
            completed_cycles=self._completed_cycles,
            failed_cycles=self._failed_cycles,
            skipped_ticks=self._skipped_ticks,
            in_flight=self._in_flight(),
            last_cycle_id=self._last_cycle_id,
        )

    async def start(
        self,
        interval_ms: Optional[int] = None,
        request: Union[CycleRequest, Mapping[str, Any], None] = None,
    ) -> LoopStatus:
        """Start the loop. Idempotent: a running loop is returned as-is."""
        if self._state is LoopState.RUNNING:
            logger.info("loop_already_running", loop_id=self._loop_id)
            return self.status()

        if not isinstance(request, CycleRequest):
            request = CycleRequest.from_params(request)
        resolve_zones(request.location)

        interval_ms = max(
            int(interval_ms or self.settings.default_loop_interval_ms),
            self.settings.min_loop_interval_ms,
        )
        self._loop_id = f"loop-{uuid.uuid4().hex[:12]}"
        self._interval_ms = interval_ms
        self._loop_started_at = datetime.utcnow()
        self._loop_generation += 1
        self._completed_cycles = self._failed_cycles = self._skipped_ticks = 0
        self._state = LoopState.RUNNING
        self._ticker = asyncio.create_task(
            self._tick_loop(interval_ms / 1000.0, request, self._loop_generation)
        )

        logger.info("loop_started", loop_id=self._loop_id, interval_ms=interval_ms)
        return self.status()

    async def stop(self) -> LoopStatus:
        """Stop scheduling further ticks. An in-flight cycle finishes on its own."""
        if self._state is LoopState.IDLE:
            return self.status()

        loop_id = self._loop_id
        self._state = LoopState.IDLE
        self._loop_id = None
        ticker, self._ticker = self._ticker, None
        if ticker and not ticker.done():
            ticker.cancel()
            with suppress(asyncio.CancelledError):
                await ticker

        logger.info("loop_stopped", loop_id=loop_id, in_flight=self._in_flight())
        return self.status()

    async def dispose(self) -> None:
        """Stop the loop and wait for any in-flight cycle."""
        await self.stop()
        if self._cycle_task and not self._cycle_task.done():
            await asyncio.gather(self._cycle_task, return_exceptions=True)

    def _in_flight(self) -> bool:
        return self._cycle_lock.locked() or bool(self._cycle_task and not self._cycle_task.done())

    async def _tick_loop(self, interval_s: float, request: CycleRequest, generation: int) -> None:
        while self._state is LoopState.RUNNING:
            if self._in_flight():
                self._skipped_ticks += 1
                logger.info("loop_tick_skipped", loop_id=self._loop_id, skipped=self._skipped_ticks)
            else:
                self._cycle_task = asyncio.create_task(self._run_tick(request, generation))
            await asyncio.sleep(interval_s)

    async def _run_tick(self, request: CycleRequest, generation: int) -> None:
        """Run one loop cycle. Results from a loop that has since been restarted are not counted."""
        try:
            await self.run_once(request)
            failed = False
        except Exception:
            failed = True
            logger.exception("loop_cycle_failed", loop_id=self._loop_id)

        if generation != self._loop_generation:
            logger.info("loop_stale_cycle_ignored", loop_id=self._loop_id, failed=failed)
            return
        if failed:
            self._failed_cycles += 1
        else:
            self._completed_cycles += 1


async def list_ops_logs(
    db: AsyncSession,
    cycle_id: Optional[str] = None,
    since: Optional[datetime] = None,
    limit: int = 50,
) -> List[OpsLog]:
    """Ops-log rows, most recent first."""
    query = select(OpsLog)
    if cycle_id:
        query = query.where(OpsLog.cycle_id == cycle_id)
    if since:
        query = query.where(OpsLog.timestamp >= since)
    query = query.order_by(OpsLog.timestamp.desc(), OpsLog.id.desc()).limit(limit)
    result = await db.execute(query)
    return list(result.scalars().all())


def build_orchestrator(
    session_factory: Optional[async_sessionmaker] = None,
    config: Optional[Settings] = None,
) -> CycleOrchestrator:
    """Wire an orchestrator from settings. The caller owns its lifecycle."""
    config = config or get_settings()
    return CycleOrchestrator(
        session_factory=session_factory or AsyncSessionLocal,
        weather_provider=build_weather_provider(config),
        classifier=TextClassifierService(config),
        broadcaster=EventBroadcaster(),
        config=config,
    )
