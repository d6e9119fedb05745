"""
Risk Fusion Service

Combines forecast, incident and social signals per zone into a risk score
and tier, emits tiered alerts and renders the map-facing GeoJSON snapshot.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Dict, List, Optional

from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, func, case

from models.flood import Forecast, Incident, SocialSignal, Alert, Audience, RiskTier
from schemas.flood import ForecastSample, Zone, ZoneRiskState
from services.classifier_service import ClassifierParsed, TextClassifierService
from services.risk_scoring import ScoringConfig, score_zone
from config import get_settings

logger = logging.getLogger(__name__)
settings = get_settings()

_SIGNAL_PHRASES = {
    "forecast": "heavy rain forecast",
    "incidents": "multiple drain and citizen reports",
    "social": "flood reports on social media",
    None: "combined flood signals",
}

_DRAFT_LIMITS = {Audience.OPS: 900, Audience.PUBLIC: 600}

ALERT_DRAFT_INSTRUCTIONS = (
    "You write flood alerts for a city flood-monitoring service. "
    'Return JSON {"message": "..."}. '
    "For audience ops: under 900 characters, name the zone, risk tier, score and the "
    "signals driving it, and list concrete field actions. "
    "For audience public: under 600 characters, plain language, tell residents to avoid "
    "driving through standing water and to report blocked drains via 311."
)


@dataclass
class FusionResult:
    risk_by_zone: Dict[str, ZoneRiskState] = field(default_factory=dict)
    geojson: Dict[str, object] = field(default_factory=dict)
    alerts: List[Alert] = field(default_factory=list)


def as_geojson(zones: List[Zone], risk_by_zone: Dict[str, ZoneRiskState]) -> Dict[str, object]:
    """One Point feature per zone; zones without a state default to 0 / SAFE."""
    features = []
    for zone in zones:
        state = risk_by_zone.get(zone.id)
        features.append({
            "type": "Feature",
            "properties": {
                "zone": zone.id,
                "name": zone.name,
                "riskScore": state.risk_score if state else 0.0,
                "riskTier": state.risk_tier.value if state else RiskTier.SAFE.value,
                "incidentCount": state.incident_count if state else 0,
                "socialCount": state.social_count if state else 0,
                "rainProbability": state.rain_probability if state else 0.0,
            },
            "geometry": {"type": "Point", "coordinates": list(zone.center)},
        })
    return {"type": "FeatureCollection", "features": features}


def alert_message(audience: Audience, state: ZoneRiskState) -> str:
    """Template an alert from the zone and its dominant contributing signal."""
    cause = _SIGNAL_PHRASES.get(state.dominant_signal, _SIGNAL_PHRASES[None])
    if audience is Audience.OPS:
        return (
            f"Ops Alert: {state.name} ({state.zone}) at {state.risk_tier.value} risk "
            f"(score {state.risk_score:.2f}), driven by {cause}. "
            f"Incidents={state.incident_count}, flagged social={state.flagged_social_count}, "
            f"rain={state.rain_probability:.0%}/{state.rain_amount_mm:.1f}mm. "
            f"Inspect drains, stage pumps and barricade low-lying streets."
        )
    return (
        f"Public Safety Alert: high flood risk in {state.name} due to {cause}. "
        f"Avoid driving through standing water, move vehicles away from underpasses "
        f"and report blocked drains to 311 with photos."
    )


def draft_prompt(audience: Audience, state: ZoneRiskState) -> str:
    return (
        f"audience: {audience.value}\n"
        f"zone: {state.name} ({state.zone})\n"
        f"risk tier: {state.risk_tier.value}, score {state.risk_score:.2f}\n"
        f"dominant signal: {state.dominant_signal or 'none'}\n"
        f"incidents: {state.incident_count}, flagged social: {state.flagged_social_count}"
        f" of {state.social_count}\n"
        f"rain: {state.rain_probability:.0%} chance, {state.rain_amount_mm:.1f}mm"
    )


class RiskFusionService:
    """Risk fusion stage.

    With a classifier, alert text is drafted by the LLM; the templates in
    alert_message are used whenever no usable draft comes back.
    """

    def __init__(
        self,
        db: AsyncSession,
        scoring: Optional[ScoringConfig] = None,
        classifier: Optional[TextClassifierService] = None,
    ):
        self.db = db
        self.scoring = scoring or ScoringConfig.from_settings()
        self.classifier = classifier

    async def fuse(
        self,
        zones: List[Zone],
        window_minutes: Optional[int] = None,
        fresh_forecasts: Optional[Dict[str, ForecastSample]] = None,
        cycle_id: Optional[str] = None,
        persist_alerts: bool = True,
    ) -> FusionResult:
        window_minutes = window_minutes or settings.default_window_minutes
        since = datetime.utcnow() - timedelta(minutes=window_minutes)
        zone_ids = [z.id for z in zones]
        fresh_forecasts = fresh_forecasts or {}

        forecasts = await self._latest_forecasts(
            [zid for zid in zone_ids if zid not in fresh_forecasts]
        )
        forecasts.update({zid: fresh_forecasts[zid] for zid in zone_ids if zid in fresh_forecasts})
        incident_counts = await self._incident_counts(zone_ids, since)
        social_counts = await self._social_counts(zone_ids, since)

        result = FusionResult()
        for zone in zones:
            forecast = forecasts.get(zone.id)
            rain_probability = forecast.rain_probability if forecast else 0.0
            rain_amount_mm = forecast.rain_amount_mm if forecast else 0.0
            incidents = incident_counts.get(zone.id, 0)
            social_total, social_flagged = social_counts.get(zone.id, (0, 0))

            scored = score_zone(
                rain_probability, rain_amount_mm,
                incidents, social_flagged, social_total,
                self.scoring,
            )
            result.risk_by_zone[zone.id] = ZoneRiskState(
                zone=zone.id,
                name=zone.name,
                incident_count=incidents,
                social_count=social_total,
                flagged_social_count=social_flagged,
                rain_probability=rain_probability,
                rain_amount_mm=rain_amount_mm,
                **scored,
            )

        result.alerts = await self._build_alerts(result.risk_by_zone.values(), cycle_id)
        if persist_alerts and result.alerts:
            self.db.add_all(result.alerts)
            await self.db.flush()

        result.geojson = as_geojson(zones, result.risk_by_zone)

        tiers = {zid: s.risk_tier.value for zid, s in result.risk_by_zone.items()}
        logger.info(f"Risk fusion over {window_minutes}m: tiers={tiers}, alerts={len(result.alerts)}")
        return result

    async def _build_alerts(self, states, cycle_id: Optional[str]) -> List[Alert]:
        alerts = []
        for state in states:
            if state.risk_tier is RiskTier.SAFE:
                continue
            audiences = [Audience.OPS]
            if state.risk_tier is RiskTier.HIGH:
                audiences.append(Audience.PUBLIC)
            for audience in audiences:
                alerts.append(Alert(
                    audience=audience,
                    zone=state.zone,
                    message=await self.draft_message(audience, state),
                    risk_tier=state.risk_tier,
                    cycle_id=cycle_id,
                    created_at=datetime.utcnow(),
                ))
        return alerts

    async def draft_message(self, audience: Audience, state: ZoneRiskState) -> str:
        """LLM-drafted alert text, or the template when drafting is off or unusable."""
        if self.classifier is None:
            return alert_message(audience, state)

        try:
            outcome = await asyncio.wait_for(
                self.classifier.classify(draft_prompt(audience, state), ALERT_DRAFT_INSTRUCTIONS),
                timeout=settings.classifier_timeout_seconds,
            )
        except asyncio.TimeoutError:
            logger.warning(f"Alert drafting timed out for {state.zone}; using template")
            return alert_message(audience, state)

        if isinstance(outcome, ClassifierParsed):
            message = outcome.payload.get("message")
            if isinstance(message, str) and message.strip():
                return message.strip()[:_DRAFT_LIMITS[audience]]
            logger.debug(f"Alert draft lacked a message: {outcome.payload}")
        return alert_message(audience, state)

    # ==================== Signal queries ====================

    async def _latest_forecasts(self, zone_ids: List[str]) -> Dict[str, ForecastSample]:
        """Latest stored forecast per zone (fallback for zones without a fresh sample)."""
        latest: Dict[str, ForecastSample] = {}
        for zone_id in zone_ids:
            result = await self.db.execute(
                select(Forecast)
                .where(Forecast.zone == zone_id)
                .order_by(Forecast.observed_at.desc(), Forecast.id.desc())
                .limit(1)
            )
            row: Optional[Forecast] = result.scalar_one_or_none()
            if row:
                latest[zone_id] = ForecastSample(
                    zone=row.zone,
                    rain_probability=min(1.0, max(0.0, row.rain_probability)),
                    rain_amount_mm=max(0.0, row.rain_amount_mm),
                    observed_at=row.observed_at,
                    provider=row.provider,
                )
        return latest

    async def _incident_counts(self, zone_ids: List[str], since: datetime) -> Dict[str, int]:
        if not zone_ids:
            return {}
        result = await self.db.execute(
            select(Incident.zone, func.count(Incident.id))
            .where(Incident.zone.in_(zone_ids), Incident.reported_at >= since)
            .group_by(Incident.zone)
        )
        return {zone: count for zone, count in result.all()}

    async def _social_counts(self, zone_ids: List[str], since: datetime) -> Dict[str, tuple]:
        """(total, flagged) per zone."""
        if not zone_ids:
            return {}
        flagged = func.sum(case((SocialSignal.risk_flag == True, 1), else_=0))
        result = await self.db.execute(
            select(SocialSignal.zone, func.count(SocialSignal.id), flagged)
            .where(SocialSignal.zone.in_(zone_ids), SocialSignal.observed_at >= since)
            .group_by(SocialSignal.zone)
        )
        return {zone: (total, int(flag or 0)) for zone, total, flag in result.all()}

    # ==================== Alert queries ====================

    async def list_alerts(
        self,
        zone: Optional[str] = None,
        audience: Optional[Audience] = None,
        limit: Optional[int] = None,
    ) -> List[Alert]:
        """List alerts, most recent first."""
        query = select(Alert)
        if zone:
            query = query.where(Alert.zone == zone.upper())
        if audience:
            query = query.where(Alert.audience == audience)
        query = query.order_by(Alert.created_at.desc(), Alert.id.desc())
        query = query.limit(limit or settings.store_page_size)

        result = await self.db.execute(query)
        return list(result.scalars().all())

