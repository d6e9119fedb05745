"""
Weather Provider Clients

Provides near-term rain outlooks per zone:
- OpenWeatherMap 5-day / 3-hour forecast API
- A simulated provider for demos and load testing without an API key
"""

import logging
import random
from dataclasses import dataclass
from typing import Dict, Any, List, Optional

import httpx
from tenacity import retry, stop_after_attempt, wait_exponential, retry_if_exception_type

from config import get_settings, Settings
from schemas.flood import Zone

logger = logging.getLogger(__name__)
settings = get_settings()

# Number of 3-hour forecast steps that make up the outlook
OUTLOOK_STEPS = 2


@dataclass
class RainOutlook:
    """Raw provider reading; normalised by the weather ingest stage."""
    rain_probability: float
    rain_amount_mm: float
    provider: str


class WeatherAPIService:
    """Stateless client for OpenWeatherMap API calls."""

    name = "openweathermap"

    def __init__(self, api_key: Optional[str] = None, base_url: Optional[str] = None):
        self.api_key = api_key or settings.weather_api_key
        self.base_url = base_url or settings.weather_api_url
        self.timeout = settings.external_api_timeout_seconds

    async def fetch(self, zone: Zone) -> RainOutlook:
        """
        Get the rain outlook at a zone's center.

        Probability is the highest `pop` over the next OUTLOOK_STEPS forecast
        steps; amount is the summed `rain.3h` over the same steps.
        """
        entries = await self.get_forecast(zone.latitude, zone.longitude)
        window = entries[:OUTLOOK_STEPS]
        if not window:
            raise ValueError(f"OpenWeatherMap returned no forecast steps for {zone.id}")

        return RainOutlook(
            rain_probability=max(e["rain_probability"] for e in window),
            rain_amount_mm=sum(e["rainfall_mm"] for e in window),
            provider=self.name,
        )

    async def get_forecast(self, lat: float, lon: float) -> List[Dict[str, Any]]:
        """
        Get 5-day / 3-hour forecast for a location.

        Returns list of forecast entries, each with:
          - datetime_utc, rain_probability, rainfall_mm, humidity_percentage
          - description
        """
        params = {
            "lat": str(lat),
            "lon": str(lon),
            "units": "metric",
        }

        data = await self._make_request("forecast", params)

        entries = []
        for item in data.get("list", []):
            main = item.get("main", {})
            rain = item.get("rain", {})
            weather_info = item.get("weather", [{}])[0]

            entries.append({
                "datetime_utc": item.get("dt_txt", ""),
                "rain_probability": item.get("pop", 0) or 0,
                "rainfall_mm": rain.get("3h", 0) or 0,
                "humidity_percentage": main.get("humidity"),
                "description": weather_info.get("description", ""),
            })

        return entries

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=1, max=10),
        retry=retry_if_exception_type((httpx.TimeoutException, httpx.ConnectError)),
    )
    async def _make_request(self, endpoint: str, params: Dict[str, str]) -> Dict[str, Any]:
        """Make an authenticated GET request to the OpenWeatherMap API."""
        if not self.api_key:
            raise ValueError("OpenWeatherMap API key is not configured")

        params["appid"] = self.api_key
        url = f"{self.base_url}/{endpoint}"

        async with httpx.AsyncClient(timeout=self.timeout) as client:
            response = await client.get(url, params=params)
            response.raise_for_status()
            data = response.json()

        if data.get("cod") and str(data["cod"]) not in ("200",):
            error_msg = data.get("message", "Unknown error")
            logger.error(f"OpenWeatherMap API error: {error_msg}")
            raise ValueError(f"OpenWeatherMap API error: {error_msg}")

        return data


class SimulatedWeatherProvider:
    """Random but plausible rain readings, optionally seeded."""

    name = "simulated"

    def __init__(self, seed: Optional[int] = None):
        self._rng = random.Random(seed)

    async def fetch(self, zone: Zone) -> RainOutlook:
        probability = round(self._rng.uniform(0.05, 0.95), 2)
        # Heavier totals are more likely when rain is likely
        amount = round(self._rng.uniform(0, 45) * probability, 1)
        return RainOutlook(rain_probability=probability, rain_amount_mm=amount, provider=self.name)


def build_weather_provider(config: Optional[Settings] = None):
    """Pick the weather provider named by settings ("auto" prefers the live API when keyed)."""
    config = config or settings
    choice = (config.weather_provider or "auto").lower()

    if choice == "openweathermap" or (choice == "auto" and config.weather_api_key):
        return WeatherAPIService(api_key=config.weather_api_key, base_url=config.weather_api_url)
    if choice in ("auto", "simulated"):
        logger.info("Using simulated weather provider")
        return SimulatedWeatherProvider()
    raise ValueError(f"Unknown weather provider: {config.weather_provider}")
