"""
Tests for the cycle orchestrator.

Tests cover:
- End-to-end cycles and ops logging
- Per-stage fault isolation
- Loop start / stop state machine and overlap skipping
"""

import asyncio
from contextlib import asynccontextmanager
from types import SimpleNamespace

import pytest
from sqlalchemy import select
from sqlalchemy.exc import OperationalError

from flood_cycle.schemas import CycleRequest, LoopState
from flood_cycle import service as cycle_service
from flood_cycle.service import CycleOrchestrator, list_ops_logs
from models.flood import Incident, OpsLog, RiskTier, StageStatus
from services.broadcast import EventBroadcaster
from services.zone_resolver import ZoneResolutionError

from conftest import FakeWeatherProvider


def hanging_commits(session_factory):
    """Session factory whose commits never complete."""
    @asynccontextmanager
    async def factory():
        async with session_factory() as session:
            async def hang():
                await asyncio.sleep(10)
            session.commit = hang
            yield session
    return factory


# ============================================================================
# CYCLE REQUEST
# ============================================================================


class TestCycleRequest:

    def test_defaults(self):
        request = CycleRequest.from_params(None)
        assert request.simulate_incidents == 1
        assert request.simulate_social == 2
        assert request.location.zone_id is None

    def test_aliases(self):
        request = CycleRequest.from_params({"inc": "3", "soc": 0, "zone": "z2", "windowMinutes": 30})
        assert request.simulate_incidents == 3
        assert request.simulate_social == 0
        assert request.window_minutes == 30
        assert request.location.zone_id == "Z2"

    def test_nested_location(self):
        request = CycleRequest.from_params({"location": {"lat": 1.5, "lon": 2.5}})
        assert request.location.latitude == 1.5

    def test_negative_counts_rejected(self):
        with pytest.raises(ValueError):
            CycleRequest.from_params({"inc": -1})


# ============================================================================
# END-TO-END CYCLE
# ============================================================================


class TestRunOnce:

    def test_stage_order(self, orchestrator):
        assert orchestrator.stage_names == ("weather", "incidents", "social", "fusion")

    @pytest.mark.asyncio
    async def test_full_cycle_for_zone(self, orchestrator, session_factory):
        report = await orchestrator.run_once({"zone": "Z2", "inc": 2, "soc": 2})

        assert [s.name for s in report.per_stage] == list(orchestrator.stage_names)
        assert all(s.status == StageStatus.OK for s in report.per_stage)
        assert [z.id for z in report.zones] == ["Z1", "Z2", "Z3"]
        assert set(report.risk_by_zone) == {"Z1", "Z2", "Z3"}
        assert len(report.geojson["features"]) == 3
        assert report.stage("incidents").summary["simulated"] == 2
        assert report.stage("social").summary["classified_by"] == {"heuristic": 6}

        async with session_factory() as db:
            incidents = (await db.execute(select(Incident))).scalars().all()
            logs = await list_ops_logs(db, cycle_id=report.cycle_id)

        assert {i.zone for i in incidents} == {"Z2"}
        assert len(logs) == 4
        assert {log.step for log in logs} == set(orchestrator.stage_names)

    @pytest.mark.asyncio
    async def test_unknown_zone_simulates_everywhere(self, orchestrator):
        report = await orchestrator.run_once({"zone": "Z9", "inc": 1, "soc": 0})
        assert report.stage("incidents").summary["zones"] == ["Z1", "Z2", "Z3"]

    @pytest.mark.asyncio
    async def test_coordinates_synthesize_single_zone(self, orchestrator):
        report = await orchestrator.run_once({"lat": 29.5, "lon": -98.4, "postal": "78205"})

        assert [z.id for z in report.zones] == ["78205"]
        assert len(report.geojson["features"]) == 1
        assert report.geojson["features"][0]["geometry"]["coordinates"] == [-98.4, 29.5]

    @pytest.mark.asyncio
    async def test_malformed_location_raises(self, orchestrator):
        with pytest.raises(ZoneResolutionError):
            await orchestrator.run_once({"location": ["Z1"], "lat": [1]})

    @pytest.mark.asyncio
    async def test_zero_simulation(self, orchestrator):
        report = await orchestrator.run_once(CycleRequest(simulate_incidents=0, simulate_social=0))

        assert report.stage("incidents").summary["simulated"] == 0
        assert report.stage("social").summary["posts"] == 0
        assert report.stage("fusion").status == StageStatus.OK

    @pytest.mark.asyncio
    async def test_wet_zone_reaches_alert_tier(self, orchestrator):
        report = await orchestrator.run_once({"zone": "Z1", "inc": 12, "soc": 0})

        assert report.risk_by_zone["Z1"].risk_tier in (RiskTier.MEDIUM, RiskTier.HIGH)
        assert report.alerts_emitted >= 1

    @pytest.mark.asyncio
    async def test_events_are_broadcast(self, orchestrator):
        queue = orchestrator.broadcaster.subscribe()
        report = await orchestrator.run_once({"zone": "Z1", "inc": 12, "soc": 0})

        first = queue.get_nowait()
        assert first["event"] == "cycle.completed"
        assert first["payload"]["cycle_id"] == report.cycle_id
        assert queue.qsize() == report.alerts_emitted


# ============================================================================
# FAULT ISOLATION
# ============================================================================


class TestStageFailures:

    @pytest.mark.asyncio
    async def test_weather_failure_for_one_zone(self, session_factory, classifier, test_settings):
        provider = FakeWeatherProvider(readings={"Z2": (0.5, 5.0), "Z3": (0.5, 5.0)}, failing={"Z1"})
        orchestrator = CycleOrchestrator(
            session_factory=session_factory,
            weather_provider=provider,
            classifier=classifier,
            config=test_settings,
        )

        report = await orchestrator.run_once({"soc": 0, "inc": 0})
        weather = report.stage("weather")

        assert weather.status == StageStatus.ERROR
        assert list(weather.zone_errors) == ["Z1"]
        assert "provider unreachable" in weather.zone_errors["Z1"]
        assert report.stage("fusion").status == StageStatus.OK
        assert report.risk_by_zone["Z1"].risk_tier == RiskTier.SAFE
        assert report.risk_by_zone["Z2"].rain_probability == 0.5

        async with session_factory() as db:
            logs = await list_ops_logs(db, cycle_id=report.cycle_id)
        weather_log = next(log for log in logs if log.step == "weather")
        assert weather_log.status == StageStatus.ERROR
        assert "Z1" in weather_log.detail

    @pytest.mark.asyncio
    async def test_stage_exception_does_not_stop_later_stages(self, orchestrator, monkeypatch):
        async def broken(ctx, db):
            raise RuntimeError("social feed exploded")

        monkeypatch.setattr(orchestrator, "_stages", tuple(
            (name, broken if name == "social" else fn) for name, fn in orchestrator._stages
        ))

        report = await orchestrator.run_once()

        social = report.stage("social")
        assert social.status == StageStatus.ERROR
        assert "social feed exploded" in social.error
        assert report.stage("fusion").status == StageStatus.OK

    @pytest.mark.asyncio
    async def test_slow_stage_times_out(self, session_factory, classifier, test_settings):
        config = test_settings.model_copy(update={
            "cycle_stage_timeout_seconds": 0.05,
            "external_api_timeout_seconds": 1,
        })
        orchestrator = CycleOrchestrator(
            session_factory=session_factory,
            weather_provider=FakeWeatherProvider(delay=0.2),
            classifier=classifier,
            config=config,
        )

        report = await orchestrator.run_once({"soc": 0})

        assert report.stage("weather").status == StageStatus.ERROR
        assert "timed out" in report.stage("weather").error
        assert report.stage("fusion").status == StageStatus.OK

    @pytest.mark.asyncio
    async def test_ops_log_failure_escalates(self, orchestrator, test_engine):
        async with test_engine.begin() as conn:
            await conn.run_sync(lambda sync_conn: OpsLog.__table__.drop(sync_conn))

        with pytest.raises(OperationalError):
            await orchestrator.run_once()

    @pytest.mark.asyncio
    async def test_malformed_reading_keeps_other_zones(self, session_factory, classifier, test_settings):
        provider = FakeWeatherProvider(readings={
            "Z1": SimpleNamespace(rain_probability="n/a", rain_amount_mm=5.0),
            "Z2": {"rainProbability": 0.9, "rainAmountMm": 40.0, "provider": "fake"},
            "Z3": {"rain_probability": {"value": 0.4}, "rain_amount_mm": 3.0},
        })
        orchestrator = CycleOrchestrator(
            session_factory=session_factory,
            weather_provider=provider,
            classifier=classifier,
            config=test_settings,
        )

        report = await orchestrator.run_once({"inc": 0, "soc": 0})
        weather = report.stage("weather")

        assert weather.status == StageStatus.ERROR
        assert sorted(weather.zone_errors) == ["Z1", "Z3"]
        assert "malformed reading" in weather.zone_errors["Z1"]
        assert weather.summary["samples"] == 1
        assert report.risk_by_zone["Z2"].rain_probability == 0.9
        assert report.risk_by_zone["Z2"].rain_amount_mm == 40.0
        assert report.stage("fusion").status == StageStatus.OK

    @pytest.mark.asyncio
    async def test_non_finite_reading_is_a_zone_error(self, session_factory, classifier, test_settings):
        provider = FakeWeatherProvider(readings={"Z1": (float("nan"), 1.0), "Z2": (0.5, float("inf"))})
        orchestrator = CycleOrchestrator(
            session_factory=session_factory,
            weather_provider=provider,
            classifier=classifier,
            config=test_settings,
        )

        report = await orchestrator.run_once({"inc": 0, "soc": 0})

        assert sorted(report.stage("weather").zone_errors) == ["Z1", "Z2"]
        assert report.risk_by_zone["Z3"].rain_probability == 0.0

    @pytest.mark.asyncio
    async def test_hanging_ops_log_write_times_out(
        self, session_factory, weather_provider, classifier, test_settings
    ):
        orchestrator = CycleOrchestrator(
            session_factory=hanging_commits(session_factory),
            weather_provider=weather_provider,
            classifier=classifier,
            config=test_settings.model_copy(update={"cycle_stage_timeout_seconds": 0.05}),
        )

        with pytest.raises(asyncio.TimeoutError):
            await orchestrator.run_once({"inc": 0, "soc": 0})

        assert orchestrator.status().in_flight is False

    @pytest.mark.asyncio
    async def test_slow_snapshot_times_out(self, orchestrator, test_settings, monkeypatch):
        async def slow_fuse(self, *args, **kwargs):
            await asyncio.sleep(10)

        monkeypatch.setattr(cycle_service.RiskFusionService, "fuse", slow_fuse)
        orchestrator.settings = test_settings.model_copy(update={"cycle_stage_timeout_seconds": 0.05})

        with pytest.raises(asyncio.TimeoutError):
            await orchestrator.snapshot()


# ============================================================================
# CONTINUOUS LOOP
# ============================================================================


class TestLoop:

    @pytest.mark.asyncio
    async def test_stop_when_idle_is_noop(self, orchestrator):
        status = await orchestrator.stop()
        assert status.state == LoopState.IDLE
        assert status.loop_id is None

    @pytest.mark.asyncio
    async def test_start_is_idempotent(self, orchestrator):
        first = await orchestrator.start(interval_ms=1000)
        second = await orchestrator.start(interval_ms=50)

        assert first.state == LoopState.RUNNING
        assert first.loop_id.startswith("loop-")
        assert second.loop_id == first.loop_id
        assert second.interval_ms == 1000

        stopped = await orchestrator.stop()
        assert stopped.state == LoopState.IDLE
        assert stopped.loop_id is None

    @pytest.mark.asyncio
    async def test_interval_is_clamped(self, orchestrator, test_settings):
        status = await orchestrator.start(interval_ms=1)
        assert status.interval_ms == test_settings.min_loop_interval_ms
        await orchestrator.stop()

    @pytest.mark.asyncio
    async def test_loop_runs_cycles(self, orchestrator):
        await orchestrator.start(interval_ms=20, request={"inc": 0, "soc": 0})
        for _ in range(100):
            if orchestrator.status().completed_cycles >= 2:
                break
            await asyncio.sleep(0.02)
        await orchestrator.stop()
        await orchestrator.dispose()

        status = orchestrator.status()
        assert status.completed_cycles >= 2
        assert status.failed_cycles == 0
        assert status.last_cycle_id is not None

    @pytest.mark.asyncio
    async def test_overlapping_ticks_are_skipped(self, session_factory, classifier, test_settings):
        orchestrator = CycleOrchestrator(
            session_factory=session_factory,
            weather_provider=FakeWeatherProvider(delay=0.1),
            classifier=classifier,
            broadcaster=EventBroadcaster(),
            config=test_settings,
        )

        await orchestrator.start(interval_ms=20, request={"inc": 0, "soc": 0})
        await asyncio.sleep(0.2)
        running = orchestrator.status()
        await orchestrator.stop()
        await orchestrator.dispose()

        assert running.in_flight is True
        assert orchestrator.status().skipped_ticks >= 1
        assert orchestrator.status().completed_cycles == 1

    @pytest.mark.asyncio
    async def test_stop_lets_in_flight_cycle_finish(self, session_factory, classifier, test_settings):
        orchestrator = CycleOrchestrator(
            session_factory=session_factory,
            weather_provider=FakeWeatherProvider(delay=0.05),
            classifier=classifier,
            config=test_settings,
        )

        await orchestrator.start(interval_ms=1000, request={"inc": 0, "soc": 0})
        await asyncio.sleep(0.01)
        stopped = await orchestrator.stop()
        assert stopped.state == LoopState.IDLE
        assert stopped.in_flight is True

        await orchestrator.dispose()
        assert orchestrator.status().completed_cycles == 1
        assert orchestrator.status().in_flight is False

    @pytest.mark.asyncio
    async def test_manual_runs_serialize_with_loop(self, orchestrator):
        await orchestrator.start(interval_ms=1000, request={"inc": 0, "soc": 0})
        report = await orchestrator.run_once({"inc": 0, "soc": 0})
        await orchestrator.stop()

        assert report.cycle_id
        assert len(report.per_stage) == 4

    @pytest.mark.asyncio
    async def test_restart_ignores_previous_loop_cycle(self, session_factory, classifier, test_settings):
        orchestrator = CycleOrchestrator(
            session_factory=session_factory,
            weather_provider=FakeWeatherProvider(delay=0.1),
            classifier=classifier,
            config=test_settings,
        )

        await orchestrator.start(interval_ms=20, request={"inc": 0, "soc": 0})
        await asyncio.sleep(0.01)
        await orchestrator.stop()
        previous = orchestrator._cycle_task
        assert previous is not None and not previous.done()

        restarted = await orchestrator.start(interval_ms=1000, request={"inc": 0, "soc": 0})
        await previous

        status = orchestrator.status()
        assert status.loop_id == restarted.loop_id
        assert status.completed_cycles == 0
        assert status.failed_cycles == 0

        await orchestrator.dispose()
