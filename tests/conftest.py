"""
Pytest Configuration and Fixtures.

Provides an in-memory database, fake signal providers and a wired
orchestrator for testing the flood monitoring pipeline.
"""

import asyncio
import os
import random
from typing import Any, AsyncGenerator, Dict, Iterable, Optional

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker
from sqlalchemy.pool import StaticPool

# Set testing mode before importing app modules
os.environ["ENVIRONMENT"] = "testing"
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["WEATHER_PROVIDER"] = "simulated"
os.environ["WEATHER_API_KEY"] = ""
os.environ["CLASSIFIER_API_KEY"] = ""
os.environ["SOCIAL_LIVE_SEARCH_ENABLED"] = "false"

from config import Settings  # noqa: E402
from models.base import init_db  # noqa: E402
from services.broadcast import EventBroadcaster  # noqa: E402
from services.classifier_service import ClassifierDisabled  # noqa: E402
from services.weather_api_service import RainOutlook  # noqa: E402
from flood_cycle.service import CycleOrchestrator  # noqa: E402


# ============================================================================
# FAKES
# ============================================================================


class FakeWeatherProvider:
    """Returns fixed readings per zone; zones in `failing` raise.

    A reading is a (probability, mm) tuple, or any other object returned as-is.
    """

    name = "fake"

    def __init__(
        self,
        readings: Optional[Dict[str, Any]] = None,
        failing: Iterable[str] = (),
        delay: float = 0.0,
    ):
        self.readings = readings or {}
        self.failing = set(failing)
        self.delay = delay
        self.calls = []

    async def fetch(self, zone):
        self.calls.append(zone.id)
        if self.delay:
            await asyncio.sleep(self.delay)
        if zone.id in self.failing:
            raise ConnectionError(f"provider unreachable for {zone.id}")
        reading = self.readings.get(zone.id, (0.0, 0.0))
        if not isinstance(reading, tuple):
            return reading
        probability, amount = reading
        return RainOutlook(rain_probability=probability, rain_amount_mm=amount, provider=self.name)


class FakeClassifier:
    """Returns a fixed outcome for every text."""

    def __init__(self, outcome=None):
        self.outcome = outcome or ClassifierDisabled()
        self.texts = []

    async def classify(self, text, instructions=None):
        self.texts.append(text)
        return self.outcome


# ============================================================================
# DATABASE FIXTURES
# ============================================================================


@pytest.fixture
async def test_engine():
    """Fresh in-memory database per test."""
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    await init_db(bind=engine)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_factory(test_engine):
    return async_sessionmaker(
        test_engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


@pytest.fixture
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session
        await session.rollback()


# ============================================================================
# ORCHESTRATOR FIXTURES
# ============================================================================


@pytest.fixture
def test_settings():
    return Settings(
        database_url="sqlite+aiosqlite:///:memory:",
        min_loop_interval_ms=10,
        cycle_stage_timeout_seconds=5,
        external_api_timeout_seconds=2,
    )


@pytest.fixture
def weather_provider():
    return FakeWeatherProvider(readings={
        "Z1": (0.85, 42.3),
        "Z2": (0.35, 10.2),
        "Z3": (0.62, 25.0),
    })


@pytest.fixture
def classifier():
    return FakeClassifier()


@pytest.fixture
async def orchestrator(session_factory, weather_provider, classifier, test_settings):
    orchestrator = CycleOrchestrator(
        session_factory=session_factory,
        weather_provider=weather_provider,
        classifier=classifier,
        broadcaster=EventBroadcaster(),
        config=test_settings,
        rng=random.Random(7),
    )

    yield orchestrator

    await orchestrator.dispose()
