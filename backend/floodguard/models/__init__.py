"""
Database Models for FloodGuard: Flood Risk Monitoring
"""

from .base import Base, get_db, engine, AsyncSessionLocal, init_db, drop_db
from .flood import (
    IncidentKind,
    Audience,
    RiskTier,
    StageStatus,
    Forecast,
    Incident,
    SocialSignal,
    Alert,
    OpsLog,
)

__all__ = [
    # Base
    "Base",
    "get_db",
    "engine",
    "AsyncSessionLocal",
    "init_db",
    "drop_db",
    # Enums
    "IncidentKind",
    "Audience",
    "RiskTier",
    "StageStatus",
    # Records
    "Forecast",
    "Incident",
    "SocialSignal",
    "Alert",
    "OpsLog",
]
