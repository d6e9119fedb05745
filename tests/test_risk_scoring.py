"""
Tests for risk scoring functions.

Covers sub-score bounds and monotonicity, composite weighting, tier
cutpoints and scoring configuration validation.
"""

import pytest

from models.flood import RiskTier
from services.risk_scoring import (
    ScoringConfig,
    composite_score,
    dominant_signal,
    forecast_severity,
    incident_pressure,
    score_to_tier,
    score_zone,
    social_pressure,
)


# ============================================================================
# SUB-SCORES
# ============================================================================


class TestForecastSeverity:

    def test_no_rain_is_zero(self):
        assert forecast_severity(0.0, 0.0) == 0.0
        assert forecast_severity(0.0, 50.0) == 0.0

    def test_certain_rain_without_amount_is_probability_base(self):
        assert forecast_severity(1.0, 0.0) == pytest.approx(0.4)

    def test_bounded(self):
        assert 0.0 <= forecast_severity(1.0, 10_000.0) <= 1.0

    def test_out_of_range_inputs_are_clamped(self):
        assert forecast_severity(1.7, -3.0) == forecast_severity(1.0, 0.0)

    def test_monotonic_in_probability_and_amount(self):
        assert forecast_severity(0.3, 10) < forecast_severity(0.6, 10)
        assert forecast_severity(0.6, 10) < forecast_severity(0.6, 30)


class TestIncidentPressure:

    def test_zero_incidents(self):
        assert incident_pressure(0) == 0.0

    def test_monotonic_and_bounded(self):
        values = [incident_pressure(n) for n in range(0, 30)]
        assert values == sorted(values)
        assert all(0.0 <= v < 1.0 for v in values)


class TestSocialPressure:

    def test_no_posts(self):
        assert social_pressure(0, 0) == 0.0

    def test_no_flagged_posts(self):
        assert social_pressure(0, 10) == 0.0

    def test_single_flagged_post_stays_small(self):
        assert social_pressure(1, 1) < social_pressure(8, 8)

    def test_flagged_cannot_exceed_total(self):
        assert social_pressure(20, 4) == social_pressure(4, 4)


# ============================================================================
# COMPOSITE & TIERS
# ============================================================================


class TestComposite:

    def test_all_zero_is_safe(self):
        result = score_zone(0.0, 0.0, 0, 0, 0)
        assert result["risk_score"] == 0.0
        assert result["risk_tier"] == RiskTier.SAFE
        assert result["dominant_signal"] is None

    def test_score_bounded(self):
        assert composite_score(1.0, 1.0, 1.0) == pytest.approx(1.0)

    def test_strong_signals_are_high(self):
        result = score_zone(1.0, 100.0, 10, 10, 10)
        assert result["risk_tier"] == RiskTier.HIGH

    def test_moderate_signals_are_medium(self):
        result = score_zone(1.0, 25.0, 1, 0, 0)
        assert result["risk_tier"] == RiskTier.MEDIUM
        assert result["dominant_signal"] == "forecast"

    def test_more_incidents_never_lower_score(self):
        low = score_zone(0.5, 10, 1, 1, 2)["risk_score"]
        high = score_zone(0.5, 10, 5, 1, 2)["risk_score"]
        assert high >= low

    def test_dominant_signal_follows_weights(self):
        config = ScoringConfig(weight_forecast=0.1, weight_incidents=0.1, weight_social=0.8)
        assert dominant_signal(0.5, 0.5, 0.5, config) == "social"

    def test_weights_are_normalised(self):
        config = ScoringConfig(weight_forecast=5, weight_incidents=3, weight_social=2)
        assert config.weights.sum() == pytest.approx(1.0)
        assert composite_score(1.0, 0.0, 0.0, config) == pytest.approx(0.5)


class TestTiers:

    @pytest.mark.parametrize("score,tier", [
        (0.0, RiskTier.SAFE),
        (0.3999, RiskTier.SAFE),
        (0.4, RiskTier.MEDIUM),
        (0.6999, RiskTier.MEDIUM),
        (0.7, RiskTier.HIGH),
        (1.0, RiskTier.HIGH),
    ])
    def test_cutpoints(self, score, tier):
        assert score_to_tier(score) == tier

    def test_custom_thresholds(self):
        config = ScoringConfig(medium_threshold=0.2, high_threshold=0.5)
        assert score_to_tier(0.3, config) == RiskTier.MEDIUM


class TestScoringConfig:

    def test_negative_weight_rejected(self):
        with pytest.raises(ValueError):
            ScoringConfig(weight_forecast=-0.1)

    def test_zero_weights_rejected(self):
        with pytest.raises(ValueError):
            ScoringConfig(weight_forecast=0, weight_incidents=0, weight_social=0)

    def test_inverted_thresholds_rejected(self):
        with pytest.raises(ValueError):
            ScoringConfig(medium_threshold=0.8, high_threshold=0.7)

    def test_from_settings(self, test_settings):
        config = ScoringConfig.from_settings(test_settings)
        assert config.high_threshold == test_settings.risk_tier_high_threshold
