"""
Risk scoring functions.

Three normalised sub-scores, each in [0, 1] and non-decreasing in its
inputs, are combined with non-negative weights into a composite score:

  forecast severity  = p * (b + (1 - b) * (1 - exp(-mm / RAIN_SATURATION_MM)))
  incident pressure  = 1 - exp(-n / INCIDENT_SATURATION)
  social pressure    = (flagged / total) * (1 - exp(-total / SOCIAL_VOLUME_SCALE))

Tiers are a fixed step function of the composite score.
"""

from dataclasses import dataclass
from typing import Dict, Optional

import numpy as np

from config import get_settings, Settings
from models.flood import RiskTier

# Share of forecast severity carried by probability alone
RAIN_PROBABILITY_BASE = 0.4
RAIN_SATURATION_MM = 25.0
INCIDENT_SATURATION = 3.0
SOCIAL_VOLUME_SCALE = 4.0

SIGNALS = ("forecast", "incidents", "social")


@dataclass(frozen=True)
class ScoringConfig:
    """Fusion weights and tier cutpoints."""
    weight_forecast: float = 0.5
    weight_incidents: float = 0.3
    weight_social: float = 0.2
    medium_threshold: float = 0.4
    high_threshold: float = 0.7

    def __post_init__(self):
        weights = (self.weight_forecast, self.weight_incidents, self.weight_social)
        if any(w < 0 for w in weights) or sum(weights) <= 0:
            raise ValueError("Fusion weights must be non-negative with a positive sum")
        if not 0 < self.medium_threshold < self.high_threshold <= 1:
            raise ValueError("Tier thresholds must satisfy 0 < medium < high <= 1")

    @property
    def weights(self) -> np.ndarray:
        raw = np.array([self.weight_forecast, self.weight_incidents, self.weight_social], dtype=float)
        return raw / raw.sum()

    @classmethod
    def from_settings(cls, config: Optional[Settings] = None) -> "ScoringConfig":
        config = config or get_settings()
        return cls(
            weight_forecast=config.risk_weight_forecast,
            weight_incidents=config.risk_weight_incidents,
            weight_social=config.risk_weight_social,
            medium_threshold=config.risk_tier_medium_threshold,
            high_threshold=config.risk_tier_high_threshold,
        )


def forecast_severity(rain_probability: float, rain_amount_mm: float) -> float:
    p = float(np.clip(rain_probability, 0.0, 1.0))
    amount = max(0.0, float(rain_amount_mm))
    saturation = 1.0 - np.exp(-amount / RAIN_SATURATION_MM)
    return float(p * (RAIN_PROBABILITY_BASE + (1.0 - RAIN_PROBABILITY_BASE) * saturation))


def incident_pressure(incident_count: int) -> float:
    return float(1.0 - np.exp(-max(0, incident_count) / INCIDENT_SATURATION))


def social_pressure(flagged_count: int, total_count: int) -> float:
    """Flagged share weighted by volume so one post in a quiet zone stays small."""
    total = max(0, total_count)
    if total == 0:
        return 0.0
    proportion = min(max(0, flagged_count), total) / total
    volume = 1.0 - np.exp(-total / SOCIAL_VOLUME_SCALE)
    return float(proportion * volume)


def composite_score(
    forecast: float,
    incidents: float,
    social: float,
    config: ScoringConfig = ScoringConfig(),
) -> float:
    contributions = config.weights * np.array([forecast, incidents, social], dtype=float)
    return round(float(np.clip(contributions.sum(), 0.0, 1.0)), 4)


def score_to_tier(score: float, config: ScoringConfig = ScoringConfig()) -> RiskTier:
    if score >= config.high_threshold:
        return RiskTier.HIGH
    if score >= config.medium_threshold:
        return RiskTier.MEDIUM
    return RiskTier.SAFE


def dominant_signal(
    forecast: float,
    incidents: float,
    social: float,
    config: ScoringConfig = ScoringConfig(),
) -> Optional[str]:
    """Name of the largest weighted contribution, or None when all are zero."""
    contributions = config.weights * np.array([forecast, incidents, social], dtype=float)
    if not contributions.any():
        return None
    return SIGNALS[int(np.argmax(contributions))]


def score_zone(
    rain_probability: float,
    rain_amount_mm: float,
    incident_count: int,
    flagged_social_count: int,
    social_count: int,
    config: ScoringConfig = ScoringConfig(),
) -> Dict[str, object]:
    """Score one zone's signals. Returns sub-scores, composite, tier and dominant signal."""
    f = forecast_severity(rain_probability, rain_amount_mm)
    i = incident_pressure(incident_count)
    s = social_pressure(flagged_social_count, social_count)
    score = composite_score(f, i, s, config)
    return {
        "forecast_score": round(f, 4),
        "incident_score": round(i, 4),
        "social_score": round(s, 4),
        "risk_score": score,
        "risk_tier": score_to_tier(score, config),
        "dominant_signal": dominant_signal(f, i, s, config),
    }
