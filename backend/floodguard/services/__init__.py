"""
Services for the flood monitoring pipeline
"""

from .zone_resolver import resolve_zones, normalize_location, ZoneResolutionError
from .weather_api_service import WeatherAPIService, SimulatedWeatherProvider, build_weather_provider
from .weather_ingest_service import WeatherIngestService
from .incident_service import IncidentService, IncidentValidationError
from .classifier_service import TextClassifierService
from .social_service import SocialIngestService
from .risk_fusion_service import RiskFusionService
from .broadcast import EventBroadcaster

__all__ = [
    "resolve_zones",
    "normalize_location",
    "ZoneResolutionError",
    "WeatherAPIService",
    "SimulatedWeatherProvider",
    "build_weather_provider",
    "WeatherIngestService",
    "IncidentService",
    "IncidentValidationError",
    "TextClassifierService",
    "SocialIngestService",
    "RiskFusionService",
    "EventBroadcaster",
]
