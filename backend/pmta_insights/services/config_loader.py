"""Pipeline configuration: Settings-table overrides over environment defaults."""
import json
from typing import Optional

import structlog
from sqlalchemy.orm import Session

from pmta_insights.core.config import settings
from pmta_insights.db.models.settings import Settings
from pmta_insights.schemas.config import (
    DetectionThresholds,
    DetectionWindows,
    PipelineConfig,
    RiskScoringConfig,
)

logger = structlog.get_logger()


def _get_setting(db: Optional[Session], key: str, default=None):
    """Get a setting value from the database."""
    if db is None:
        return default
    setting = db.query(Settings).filter(Settings.key == key).first()
    if setting and setting.value_json:
        try:
            return json.loads(setting.value_json)
        except ValueError:
            logger.warning("Ignoring malformed setting", key=key)
    return default


def load_pipeline_config(db: Optional[Session] = None) -> PipelineConfig:
    """Load all pipeline settings into a config object."""
    windows = DetectionWindows(
        short_minutes=int(_get_setting(db, "detection_short_window_minutes", settings.DETECTION_SHORT_WINDOW_MINUTES)),
        long_minutes=int(_get_setting(db, "detection_long_window_minutes", settings.DETECTION_LONG_WINDOW_MINUTES)),
        complaint_minutes=int(_get_setting(db, "detection_complaint_window_minutes", settings.DETECTION_COMPLAINT_WINDOW_MINUTES)),
        weekly_minutes=int(_get_setting(db, "detection_weekly_window_minutes", settings.DETECTION_WEEKLY_WINDOW_MINUTES)),
        cooldown_minutes=int(_get_setting(db, "alert_cooldown_minutes", settings.ALERT_COOLDOWN_MINUTES)),
        incident_auto_resolve_minutes=int(_get_setting(db, "incident_auto_resolve_minutes", settings.INCIDENT_AUTO_RESOLVE_MINUTES)),
    )
    thresholds = DetectionThresholds(
        baseline_latency_ms=float(_get_setting(db, "baseline_latency_ms", settings.BASELINE_LATENCY_MS)),
        throttling_multiplier=float(_get_setting(db, "throttling_multiplier", settings.THROTTLING_MULTIPLIER)),
        high_latency_ms=float(_get_setting(db, "high_latency_ms", settings.HIGH_LATENCY_MS)),
        complaint_rate=float(_get_setting(db, "complaint_rate_threshold", settings.COMPLAINT_RATE_THRESHOLD)),
        bounce_rate=float(_get_setting(db, "bounce_rate_threshold", settings.BOUNCE_RATE_THRESHOLD)),
        min_messages_for_bounce=int(_get_setting(db, "min_messages_for_bounce", settings.MIN_MESSAGES_FOR_BOUNCE)),
    )
    risk = RiskScoringConfig(
        complaint_weight=float(_get_setting(db, "risk_complaint_weight", settings.RISK_COMPLAINT_WEIGHT)),
        bounce_weight=float(_get_setting(db, "risk_bounce_weight", settings.RISK_BOUNCE_WEIGHT)),
        max_score=int(_get_setting(db, "risk_max_score", settings.RISK_MAX_SCORE)),
        critical_threshold=int(_get_setting(db, "risk_critical_threshold", settings.RISK_CRITICAL_THRESHOLD)),
        high_threshold=int(_get_setting(db, "risk_high_threshold", settings.RISK_HIGH_THRESHOLD)),
        medium_threshold=int(_get_setting(db, "risk_medium_threshold", settings.RISK_MEDIUM_THRESHOLD)),
        upsert_batch_size=int(_get_setting(db, "risk_upsert_batch_size", settings.RISK_UPSERT_BATCH_SIZE)),
        scope=_get_setting(db, "risk_scoring_scope", settings.RISK_SCORING_SCOPE),
    )
    return PipelineConfig(
        batch_size=int(_get_setting(db, "ingestion_batch_size", settings.INGESTION_BATCH_SIZE)),
        file_type_match_threshold=float(_get_setting(db, "file_type_match_threshold", settings.FILE_TYPE_MATCH_THRESHOLD)),
        use_file_time_for_detection=bool(_get_setting(db, "detection_use_file_time", settings.DETECTION_USE_FILE_TIME)),
        windows=windows,
        thresholds=thresholds,
        risk=risk,
    )
