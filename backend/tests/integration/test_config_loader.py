"""Integration tests for runtime configuration overrides."""
from pmta_insights.db.models import Settings
from pmta_insights.services.config_loader import load_pipeline_config


def _set(db, key, value_json):
    db.add(Settings(key=key, value_json=value_json))
    db.commit()


class TestLoadPipelineConfig:
    """Tests for Settings-table overrides over environment defaults."""

    def test_defaults_without_session(self):
        """Without a database session the environment defaults apply."""
        config = load_pipeline_config()

        assert config.windows.short_minutes == 15
        assert config.windows.cooldown_minutes == 30
        assert config.thresholds.complaint_rate == 0.01
        assert config.risk.scope == "file"
        assert config.use_file_time_for_detection is False

    def test_overrides(self, db_session):
        """Stored JSON values replace the defaults."""
        _set(db_session, "detection_short_window_minutes", "60")
        _set(db_session, "bounce_rate_threshold", "0.05")
        _set(db_session, "risk_scoring_scope", '"history"')
        _set(db_session, "detection_use_file_time", "true")

        config = load_pipeline_config(db_session)

        assert config.windows.short_minutes == 60
        assert config.thresholds.bounce_rate == 0.05
        assert config.risk.scope == "history"
        assert config.use_file_time_for_detection is True

    def test_malformed_value_is_ignored(self, db_session):
        """A value that is not JSON falls back to the default."""
        _set(db_session, "alert_cooldown_minutes", "thirty")

        assert load_pipeline_config(db_session).windows.cooldown_minutes == 30
