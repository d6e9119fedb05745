"""
Weather Ingest Service

Fetches a rain outlook per zone, normalises it and persists a forecast
sample. A provider failure for one zone is recorded and does not stop the
remaining zones.
"""

import asyncio
import logging
import math
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Mapping, Optional

from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select

from models.flood import Forecast
from schemas.flood import ForecastSample, Zone
from config import get_settings

logger = logging.getLogger(__name__)
settings = get_settings()


@dataclass
class WeatherIngestResult:
    """Fresh samples by zone id, plus per-zone provider errors."""
    samples: Dict[str, ForecastSample] = field(default_factory=dict)
    errors: Dict[str, str] = field(default_factory=dict)


def _reading_value(outlook, name: str, camel: str):
    """Read a field from an object or a snake/camel-keyed mapping."""
    if isinstance(outlook, Mapping):
        value = outlook.get(name)
        return outlook.get(camel) if value is None else value
    return getattr(outlook, name)


def _finite(value) -> float:
    number = float(value or 0)
    if not math.isfinite(number):
        raise ValueError(f"non-finite reading: {value!r}")
    return number


def normalize_probability(value) -> float:
    """Clamp to [0, 1]; values above 1 are read as percentages."""
    probability = _finite(value)
    if probability > 1:
        probability /= 100.0
    return min(1.0, max(0.0, probability))


def normalize_amount(value) -> float:
    return max(0.0, _finite(value))


class WeatherIngestService:
    """Weather ingest stage."""

    def __init__(self, db: AsyncSession, provider=None, timeout_seconds: Optional[float] = None):
        self.db = db
        self.provider = provider
        self.timeout = timeout_seconds or settings.external_api_timeout_seconds

    async def ingest(self, zones: List[Zone]) -> WeatherIngestResult:
        result = WeatherIngestResult()

        for zone in zones:
            try:
                outlook = await asyncio.wait_for(self.provider.fetch(zone), timeout=self.timeout)
            except asyncio.TimeoutError:
                result.errors[zone.id] = f"weather provider timed out after {self.timeout}s"
                logger.warning(f"Weather fetch timed out for {zone.id}")
                continue
            except Exception as e:
                result.errors[zone.id] = f"{type(e).__name__}: {e}"
                logger.warning(f"Weather fetch failed for {zone.id}: {e}")
                continue

            try:
                sample = self.to_sample(zone, outlook)
            except (ValueError, TypeError, AttributeError) as e:
                result.errors[zone.id] = f"malformed reading: {e}"
                logger.warning(f"Malformed weather reading for {zone.id}: {e}")
                continue

            self.db.add(Forecast(**sample.model_dump()))
            result.samples[zone.id] = sample

        await self.db.flush()
        logger.info(
            f"Weather ingest: {len(result.samples)} samples, {len(result.errors)} zone errors"
        )
        return result

    @staticmethod
    def to_sample(zone: Zone, outlook) -> ForecastSample:
        """Normalise a provider reading into a forecast sample."""
        provider = (
            outlook.get("provider") if isinstance(outlook, Mapping)
            else getattr(outlook, "provider", None)
        )
        return ForecastSample(
            zone=zone.id,
            rain_probability=normalize_probability(
                _reading_value(outlook, "rain_probability", "rainProbability")
            ),
            rain_amount_mm=normalize_amount(
                _reading_value(outlook, "rain_amount_mm", "rainAmountMm")
            ),
            observed_at=datetime.utcnow(),
            provider=provider,
        )

    async def list_forecasts(self, zone: Optional[str] = None, limit: Optional[int] = None) -> List[Forecast]:
        """List forecasts, most recent first."""
        query = select(Forecast)
        if zone:
            query = query.where(Forecast.zone == zone.upper())
        query = query.order_by(Forecast.observed_at.desc(), Forecast.id.desc())
        query = query.limit(limit or settings.store_page_size)

        result = await self.db.execute(query)
        return list(result.scalars().all())
