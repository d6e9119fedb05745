"""
Flood signal, alert and operations log models.
"""

from datetime import datetime

from sqlalchemy import (
    Column, String, Float, Integer, DateTime, Text, Boolean,
    Enum as SQLEnum, Index
)
import enum

from .base import Base


class IncidentKind(enum.Enum):
    """Incident report kinds."""
    DRAIN = "drain"        # Blocked or overflowing drain
    CITIZEN = "citizen"    # Citizen flooding report


class Audience(enum.Enum):
    """Alert audiences."""
    OPS = "ops"
    PUBLIC = "public"


class RiskTier(enum.Enum):
    """Zone risk tiers, ascending."""
    SAFE = "SAFE"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"


class StageStatus(enum.Enum):
    """Outcome of one pipeline stage."""
    OK = "ok"
    ERROR = "error"


class Forecast(Base):
    """Rain forecast sample for a zone. Append-only; latest per zone wins."""

    __tablename__ = "forecasts"

    zone = Column(String(64), nullable=False)
    rain_probability = Column(Float, nullable=False)  # 0..1
    rain_amount_mm = Column(Float, nullable=False)
    provider = Column(String(50))
    observed_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    __table_args__ = (
        Index("idx_forecast_zone_observed", "zone", "observed_at"),
    )


class Incident(Base):
    """Drain or citizen incident report."""

    __tablename__ = "incidents"

    kind = Column(SQLEnum(IncidentKind), nullable=False)
    description = Column(Text, nullable=False)
    zone = Column(String(64), nullable=False)
    photo_url = Column(String(500))
    latitude = Column(Float)
    longitude = Column(Float)

    # Synthesized for load simulation, purged independently
    is_simulated = Column(Boolean, default=False, nullable=False)
    reported_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    __table_args__ = (
        Index("idx_incident_zone_reported", "zone", "reported_at"),
    )


class SocialSignal(Base):
    """Social media post classified for flood risk."""

    __tablename__ = "social_signals"

    text = Column(Text, nullable=False)
    author = Column(String(100), nullable=False)
    zone = Column(String(64), nullable=False)
    risk_flag = Column(Boolean, default=False, nullable=False)
    classified_by = Column(String(20))  # classifier / heuristic / source
    is_simulated = Column(Boolean, default=False, nullable=False)
    observed_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    __table_args__ = (
        Index("idx_social_zone_observed", "zone", "observed_at"),
    )


class Alert(Base):
    """Alert dispatched by risk fusion."""

    __tablename__ = "alerts"

    audience = Column(SQLEnum(Audience), nullable=False)
    zone = Column(String(64), nullable=False)
    message = Column(Text, nullable=False)
    risk_tier = Column(SQLEnum(RiskTier), nullable=False)
    cycle_id = Column(String(64))

    __table_args__ = (
        Index("idx_alert_zone_created", "zone", "created_at"),
    )


class OpsLog(Base):
    """One row per stage attempt per cycle."""

    __tablename__ = "ops_logs"

    cycle_id = Column(String(64), nullable=False)
    step = Column(String(50), nullable=False)
    status = Column(SQLEnum(StageStatus), nullable=False)
    duration_ms = Column(Integer, nullable=False)
    detail = Column(Text)
    timestamp = Column(DateTime, default=datetime.utcnow, nullable=False)

    __table_args__ = (
        Index("idx_opslog_cycle", "cycle_id"),
    )
