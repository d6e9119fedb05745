"""
Pydantic schemas for the flood monitoring cycle.
"""

from datetime import datetime
from typing import Optional, List, Dict, Any, Mapping
import enum

from pydantic import BaseModel, Field

from config import get_settings
from models.flood import StageStatus
from schemas.common import BaseSchema
from schemas.flood import LocationParams, Zone, ZoneRiskState
from services.zone_resolver import normalize_location


class LoopState(enum.Enum):
    """Continuous loop states."""
    IDLE = "idle"
    RUNNING = "running"


# ── Request ──────────────────────────────────────────────────────────────

class CycleRequest(BaseModel):
    """Input for one monitoring cycle."""
    simulate_incidents: int = Field(
        default=1, ge=0, le=500,
        description="Synthetic incidents to create per target zone"
    )
    simulate_social: int = Field(
        default=2, ge=0, le=500,
        description="Synthetic social posts to create per zone"
    )
    window_minutes: Optional[int] = Field(
        default=None, ge=1, le=7 * 24 * 60,
        description="Lookback window for risk fusion (defaults to settings)"
    )
    location: LocationParams = Field(default_factory=LocationParams)

    @classmethod
    def from_params(cls, params: Optional[Mapping[str, Any]] = None) -> "CycleRequest":
        """Build a request from loosely-named parameters (simulateIncidents / inc, lat / latitude, ...)."""
        params = dict(params or {})
        settings = get_settings()

        def pick(*keys, default=None):
            for key in keys:
                if params.get(key) is not None:
                    return params[key]
            return default

        location = params.get("location")
        return cls(
            simulate_incidents=int(pick(
                "simulate_incidents", "simulateIncidents", "inc",
                default=settings.default_simulate_incidents,
            )),
            simulate_social=int(pick(
                "simulate_social", "simulateSocial", "soc",
                default=settings.default_simulate_social,
            )),
            window_minutes=pick("window_minutes", "windowMinutes", "incidentWindowMin"),
            location=normalize_location(location if isinstance(location, Mapping) else params),
        )


# ── Stage results ────────────────────────────────────────────────────────

class StageResult(BaseSchema):
    """Outcome of one stage attempt."""
    name: str
    status: StageStatus
    duration_ms: int
    error: Optional[str] = None
    zone_errors: Dict[str, str] = Field(default_factory=dict)
    summary: Dict[str, Any] = Field(default_factory=dict)


# ── Full cycle report ────────────────────────────────────────────────────

class CycleReport(BaseSchema):
    """Complete cycle output."""
    cycle_id: str
    started_at: datetime
    completed_at: datetime
    duration_ms: int
    location: LocationParams
    zones: List[Zone]
    per_stage: List[StageResult]
    risk_by_zone: Dict[str, ZoneRiskState]
    alerts_emitted: int
    geojson: Dict[str, Any]

    def stage(self, name: str) -> Optional[StageResult]:
        return next((s for s in self.per_stage if s.name == name), None)


class LoopStatus(BaseSchema):
    """Continuous loop state."""
    loop_id: Optional[str] = None
    state: LoopState
    interval_ms: Optional[int] = None
    started_at: Optional[datetime] = None
    completed_cycles: int = 0
    failed_cycles: int = 0
    skipped_ticks: int = 0
    in_flight: bool = False
    last_cycle_id: Optional[str] = None
