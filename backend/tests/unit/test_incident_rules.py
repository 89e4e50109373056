"""Unit tests for pure detection rules and config objects."""
from datetime import timedelta

from pmta_insights.schemas.config import DetectionThresholds, DetectionWindows, PipelineConfig
from pmta_insights.services.analytics.incident_detector import is_throttling
from pmta_insights.services.config_loader import load_pipeline_config


class TestIsThrottling:
    """Tests for the throttling predicate."""

    def test_doubled_latency_without_deferrals_is_not_throttling(self):
        """1000ms vs 500ms baseline passes the ratio but has no corroboration."""
        assert is_throttling(1000, 500, 0, DetectionThresholds()) is False

    def test_deferrals_corroborate(self):
        """Any deferral confirms a latency jump."""
        assert is_throttling(1000, 500, 3, DetectionThresholds()) is True

    def test_extreme_latency_corroborates(self):
        """Latency above the high-latency threshold needs no deferrals."""
        assert is_throttling(6000, 500, 0, DetectionThresholds()) is True

    def test_ratio_is_strict(self):
        """Exactly baseline x multiplier does not trigger."""
        assert is_throttling(750, 500, 10, DetectionThresholds()) is False

    def test_small_increase_ignored(self):
        """Latency below the multiplier never triggers."""
        assert is_throttling(700, 500, 5, DetectionThresholds()) is False


class TestConfig:
    """Tests for pipeline configuration defaults."""

    def test_window_durations(self):
        """Windows are exposed as timedeltas."""
        windows = DetectionWindows()
        assert windows.short == timedelta(minutes=15)
        assert windows.long == timedelta(hours=24)
        assert windows.complaint == timedelta(minutes=30)
        assert windows.weekly == timedelta(days=7)
        assert windows.cooldown == timedelta(minutes=30)
        assert windows.incident_auto_resolve == timedelta(minutes=120)

    def test_defaults_without_database(self):
        """Without a session the environment defaults apply."""
        config = load_pipeline_config(None)
        assert isinstance(config, PipelineConfig)
        assert config.batch_size == 1000
        assert config.file_type_match_threshold == 0.6
        assert config.thresholds.throttling_multiplier == 1.5
        assert config.thresholds.min_messages_for_bounce == 10
        assert config.risk.upsert_batch_size == 50
        assert config.risk.scope == "file"
