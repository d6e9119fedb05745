"""
Social Ingest Service

Produces social posts per zone (live search results when enabled, topped
up with synthetic posts), classifies each for flood risk and persists them.
Classification asks the structured-text classifier first and falls back to
a keyword heuristic when the classifier is disabled, times out or returns
something unusable.
"""

import asyncio
import logging
import random
import re
from collections import Counter
from dataclasses import dataclass, field
from typing import Dict, List, Optional

import httpx
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select

from models.flood import SocialSignal
from schemas.flood import SocialPost, Zone
from services.classifier_service import (
    TextClassifierService, ClassifierParsed, ClassifierDisabled,
)
from config import get_settings

logger = logging.getLogger(__name__)
settings = get_settings()

FLOOD_KEYWORDS = re.compile(
    r"flood|water|overflow|blocked|pooling|pumping|evac|storm|submerged",
    re.IGNORECASE,
)

SIMULATED_POSTS = [
    "#flood near central",
    "road blocked, heavy water",
    "waterlogging in my street",
    "cannot pass due to flooding",
    "city crews spotted pumping at 4th ave",
    "light drizzle, streets look fine",
    "traffic moving normally downtown",
    "drains overflowing by the school",
]


def heuristic_risk_flag(text: str) -> bool:
    """Keyword match against flood-indicative terms."""
    return bool(FLOOD_KEYWORDS.search(text or ""))


def normalize_author(handle: Optional[str]) -> str:
    if not isinstance(handle, str) or not handle.strip():
        return "@observer"
    handle = handle.strip()
    return handle if handle.startswith("@") else "@" + re.sub(r"\s+", "", handle).lower()


@dataclass
class SocialIngestResult:
    """Persisted signals and how each was classified."""
    signals: List[SocialSignal] = field(default_factory=list)
    classified_by: Dict[str, int] = field(default_factory=dict)
    live_posts: int = 0

    @property
    def flagged(self) -> int:
        return sum(1 for s in self.signals if s.risk_flag)


class SocialIngestService:
    """Social ingest stage."""

    def __init__(
        self,
        db: AsyncSession,
        classifier: Optional[TextClassifierService] = None,
        rng: Optional[random.Random] = None,
        live_search_enabled: Optional[bool] = None,
    ):
        self.db = db
        self.classifier = classifier or TextClassifierService()
        self.rng = rng or random.Random()
        self.live_search_enabled = (
            settings.social_live_search_enabled if live_search_enabled is None else live_search_enabled
        )

    async def ingest(self, zones: List[Zone], simulate_count: int) -> SocialIngestResult:
        result = SocialIngestResult()
        modes: Counter = Counter()

        for zone in zones:
            posts: List[SocialPost] = []
            if self.live_search_enabled:
                posts.extend(await self.fetch_live_posts(zone, simulate_count))
                result.live_posts += len(posts)
            posts.extend(self.generate_posts(zone, simulate_count - len(posts)))

            for post in posts:
                risk_flag, mode = await self.classify(post.text)
                signal = SocialSignal(
                    text=post.text,
                    author=post.author,
                    zone=zone.id,
                    risk_flag=risk_flag,
                    classified_by=mode,
                    is_simulated=post.source == "simulated",
                )
                self.db.add(signal)
                result.signals.append(signal)
                modes[mode] += 1

        await self.db.flush()
        result.classified_by = dict(modes)
        logger.info(
            f"Social ingest: {len(result.signals)} posts, {result.flagged} flagged, modes={result.classified_by}"
        )
        return result

    def generate_posts(self, zone: Zone, count: int) -> List[SocialPost]:
        """Synthesize `count` short posts about a zone."""
        posts = []
        for _ in range(max(0, count)):
            text = f"{zone.name}: {self.rng.choice(SIMULATED_POSTS)}"
            posts.append(SocialPost(
                text=text,
                author=f"@user{self.rng.randint(10, 999)}",
                zone=zone.id,
            ))
        return posts

    async def classify(self, text: str):
        """Return (risk_flag, mode) where mode is "classifier" or "heuristic"."""
        try:
            outcome = await asyncio.wait_for(
                self.classifier.classify(text),
                timeout=settings.classifier_timeout_seconds,
            )
        except asyncio.TimeoutError:
            logger.warning("Classifier timed out; using keyword heuristic")
            outcome = None

        if isinstance(outcome, ClassifierParsed):
            flag = outcome.payload.get("riskFlag", outcome.payload.get("risk_flag"))
            if isinstance(flag, bool):
                return flag, "classifier"
            logger.debug(f"Classifier payload lacked a boolean riskFlag: {outcome.payload}")
        elif outcome is not None and not isinstance(outcome, ClassifierDisabled):
            logger.debug(f"Classifier unusable: {outcome.reason}")

        return heuristic_risk_flag(text), "heuristic"

    async def fetch_live_posts(self, zone: Zone, limit: int) -> List[SocialPost]:
        """Best-effort live search; returns [] on any failure."""
        if limit <= 0:
            return []
        params = {"q": f"{zone.name} flood", "limit": "30", "sort": "new"}
        try:
            async with httpx.AsyncClient(timeout=settings.external_api_timeout_seconds) as client:
                response = await client.get(
                    settings.social_search_url,
                    params=params,
                    headers={"User-Agent": settings.social_user_agent},
                )
                response.raise_for_status()
                children = response.json().get("data", {}).get("children", [])
        except (httpx.HTTPError, ValueError, AttributeError) as e:
            logger.warning(f"Live social search failed for {zone.id}: {e}")
            return []

        posts = []
        for child in children:
            data = child.get("data", {}) if isinstance(child, dict) else {}
            text = f"{data.get('title') or ''} {data.get('selftext') or ''}".strip()
            if not text:
                continue
            posts.append(SocialPost(
                text=text[:240],
                author=normalize_author(data.get("author")),
                zone=zone.id,
                source="live",
            ))
            if len(posts) >= limit:
                break
        return posts

    async def list_signals(self, zone: Optional[str] = None, limit: Optional[int] = None) -> List[SocialSignal]:
        """List social signals, most recent first."""
        query = select(SocialSignal)
        if zone:
            query = query.where(SocialSignal.zone == zone.upper())
        query = query.order_by(SocialSignal.observed_at.desc(), SocialSignal.id.desc())
        query = query.limit(limit or settings.store_page_size)

        result = await self.db.execute(query)
        return list(result.scalars().all())
