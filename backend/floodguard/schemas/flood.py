"""
Flood signal, zone and alert schemas.
"""

from datetime import datetime
from typing import Optional, List, Tuple
from pydantic import AliasChoices, BaseModel, Field

from models.flood import IncidentKind, Audience, RiskTier, StageStatus
from .common import BaseSchema


# ==================== Zones ====================

class Zone(BaseModel):
    """A named area with a representative coordinate."""
    id: str
    name: str
    center: Tuple[float, float]  # (lon, lat)

    @property
    def longitude(self) -> float:
        return self.center[0]

    @property
    def latitude(self) -> float:
        return self.center[1]


class LocationParams(BaseModel):
    """Optional caller location used to pick the zones of a cycle."""
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    zone_id: Optional[str] = None
    postal_code: Optional[str] = None
    location_name: Optional[str] = None


# ==================== Forecast ====================

class ForecastSample(BaseModel):
    """Normalised rain outlook for a zone."""
    zone: str
    rain_probability: float = Field(..., ge=0, le=1)
    rain_amount_mm: float = Field(..., ge=0)
    observed_at: datetime
    provider: Optional[str] = None


class ForecastResponse(BaseSchema):
    """Stored forecast record."""
    id: int
    zone: str
    rain_probability: float
    rain_amount_mm: float
    provider: Optional[str] = None
    observed_at: datetime


# ==================== Incidents ====================

class IncidentCreate(BaseModel):
    """Incident report. Validated by the incident service."""
    kind: str = Field(..., validation_alias=AliasChoices("kind", "type"), description="drain | citizen")
    description: str = ""
    zone: str = ""
    photo_url: Optional[str] = Field(None, validation_alias=AliasChoices("photo_url", "photoUrl"))
    latitude: Optional[float] = None
    longitude: Optional[float] = None


class IncidentSimulateRequest(BaseModel):
    """Request to synthesize incidents for a zone."""
    zone: str = "Z2"
    count: int = Field(default=2, ge=1, le=500)


class IncidentResponse(BaseSchema):
    """Stored incident record."""
    id: int
    kind: IncidentKind
    description: str
    zone: str
    photo_url: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    is_simulated: bool = False
    reported_at: datetime


# ==================== Social ====================

class SocialPost(BaseModel):
    """Unclassified social post."""
    text: str
    author: str
    zone: str
    source: str = "simulated"


class SocialSignalResponse(BaseSchema):
    """Stored, classified social signal."""
    id: int
    text: str
    author: str
    zone: str
    risk_flag: bool
    classified_by: Optional[str] = None
    is_simulated: bool = False
    observed_at: datetime


# ==================== Risk & Alerts ====================

class ZoneRiskState(BaseModel):
    """Derived risk for one zone within a lookback window."""
    zone: str
    name: str
    risk_score: float = Field(..., ge=0, le=1)
    risk_tier: RiskTier
    forecast_score: float = 0.0
    incident_score: float = 0.0
    social_score: float = 0.0
    incident_count: int = 0
    social_count: int = 0
    flagged_social_count: int = 0
    rain_probability: float = 0.0
    rain_amount_mm: float = 0.0
    dominant_signal: Optional[str] = None


class AlertResponse(BaseSchema):
    """Stored alert record."""
    id: int
    audience: Audience
    zone: str
    message: str
    risk_tier: RiskTier
    cycle_id: Optional[str] = None
    created_at: Optional[datetime] = None


class OpsLogResponse(BaseSchema):
    """Stored per-stage cycle outcome."""
    id: int
    cycle_id: str
    step: str
    status: StageStatus
    duration_ms: int
    detail: Optional[str] = None
    timestamp: datetime


class GeoJSONFeatureCollection(BaseModel):
    """Map-facing risk snapshot."""
    type: str = "FeatureCollection"
    features: List[dict]
