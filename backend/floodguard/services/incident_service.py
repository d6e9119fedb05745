"""
Incident Service

Handles:
- Validated drain / citizen incident reports
- Synthesized incident batches for load simulation
- Recency-ordered listing and purge of simulated incidents
"""

import logging
import random
from datetime import datetime
from typing import List, Optional, Union

from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, delete

from models.flood import Incident, IncidentKind
from schemas.flood import IncidentCreate
from config import get_settings

logger = logging.getLogger(__name__)
settings = get_settings()

_SIMULATED_DESCRIPTIONS = {
    IncidentKind.DRAIN: [
        "Blocked drain detected in {zone}",
        "Storm drain overflowing in {zone}",
        "Debris clogging culvert in {zone}",
        "Drain grate submerged in {zone}",
    ],
    IncidentKind.CITIZEN: [
        "Citizen report: standing water in {zone}",
        "Citizen report: water pooling at intersection in {zone}",
        "Citizen report: underpass flooded in {zone}",
        "Citizen report: car stalled in water in {zone}",
    ],
}


class IncidentValidationError(ValueError):
    """Raised for malformed incident reports."""


class IncidentService:
    """Service for drain and citizen incident reports."""

    def __init__(self, db: AsyncSession, rng: Optional[random.Random] = None):
        self.db = db
        self.rng = rng or random.Random()

    # ==================== Reports ====================

    @staticmethod
    def validate(report: Union[IncidentCreate, dict]) -> IncidentCreate:
        """Check kind, description and zone. Raises IncidentValidationError."""
        if isinstance(report, dict):
            report = IncidentCreate(
                kind=str(report.get("kind") or report.get("type") or ""),
                description=report.get("description") or "",
                zone=report.get("zone") or "",
                photo_url=report.get("photo_url") or report.get("photoUrl"),
                latitude=report.get("latitude"),
                longitude=report.get("longitude"),
            )

        kind = (report.kind or "").strip().lower()
        if kind not in {k.value for k in IncidentKind}:
            raise IncidentValidationError("kind must be drain|citizen")
        description = (report.description or "").strip()
        zone = (report.zone or "").strip()
        if not description or not zone:
            raise IncidentValidationError("kind, description, zone are required")

        return report.model_copy(update={
            "kind": kind,
            "description": description,
            "zone": zone.upper(),
        })

    async def create(self, report: Union[IncidentCreate, dict]) -> Incident:
        """Create one incident report."""
        data = self.validate(report)
        incident = self._to_model(data, is_simulated=False)
        self.db.add(incident)
        await self.db.flush()
        await self.db.refresh(incident)

        logger.info(f"Incident reported: {incident.kind.value} in {incident.zone}")
        return incident

    # ==================== Simulation ====================

    def generate_batch(self, zone: str, count: int) -> List[IncidentCreate]:
        """Synthesize `count` plausible reports for a zone without touching the store."""
        zone = zone.strip().upper()
        batch = []
        for _ in range(max(0, count)):
            kind = self.rng.choice(list(IncidentKind))
            template = self.rng.choice(_SIMULATED_DESCRIPTIONS[kind])
            batch.append(IncidentCreate(
                kind=kind.value,
                description=template.format(zone=zone),
                zone=zone,
            ))
        return batch

    async def simulate_batch(self, zone: str, count: int) -> List[Incident]:
        """Generate and persist a simulated batch, flagged as simulated."""
        reports = [self.validate(r) for r in self.generate_batch(zone, count)]
        incidents = [self._to_model(r, is_simulated=True) for r in reports]
        self.db.add_all(incidents)
        await self.db.flush()

        logger.info(f"Simulated {len(incidents)} incidents in {zone}")
        return incidents

    async def purge_simulated(self, zone: Optional[str] = None) -> int:
        """Delete simulated incidents only; organic reports are kept."""
        stmt = delete(Incident).where(Incident.is_simulated == True)
        if zone:
            stmt = stmt.where(Incident.zone == zone.upper())
        result = await self.db.execute(stmt)
        await self.db.flush()
        logger.info(f"Purged {result.rowcount} simulated incidents")
        return result.rowcount or 0

    # ==================== Queries ====================

    async def list_incidents(
        self,
        zone: Optional[str] = None,
        since: Optional[datetime] = None,
        limit: Optional[int] = None,
    ) -> List[Incident]:
        """List incidents, most recent first."""
        query = select(Incident)
        if zone:
            query = query.where(Incident.zone == zone.upper())
        if since:
            query = query.where(Incident.reported_at >= since)

        query = query.order_by(Incident.reported_at.desc(), Incident.id.desc())
        query = query.limit(limit or settings.store_page_size)

        result = await self.db.execute(query)
        return list(result.scalars().all())

    @staticmethod
    def _to_model(data: IncidentCreate, is_simulated: bool) -> Incident:
        return Incident(
            kind=IncidentKind(data.kind),
            description=data.description,
            zone=data.zone,
            photo_url=data.photo_url,
            latitude=data.latitude,
            longitude=data.longitude,
            is_simulated=is_simulated,
            reported_at=datetime.utcnow(),
        )
