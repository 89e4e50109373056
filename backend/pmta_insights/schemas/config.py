"""Pydantic schemas for pipeline configuration."""
from datetime import timedelta
from typing import Literal
from pydantic import BaseModel


class DetectionWindows(BaseModel):
    """Rule windows in minutes."""
    short_minutes: int = 15
    long_minutes: int = 24 * 60
    complaint_minutes: int = 30
    weekly_minutes: int = 7 * 24 * 60
    cooldown_minutes: int = 30
    incident_auto_resolve_minutes: int = 120

    @property
    def short(self) -> timedelta:
        return timedelta(minutes=self.short_minutes)

    @property
    def long(self) -> timedelta:
        return timedelta(minutes=self.long_minutes)

    @property
    def complaint(self) -> timedelta:
        return timedelta(minutes=self.complaint_minutes)

    @property
    def weekly(self) -> timedelta:
        return timedelta(minutes=self.weekly_minutes)

    @property
    def cooldown(self) -> timedelta:
        return timedelta(minutes=self.cooldown_minutes)

    @property
    def incident_auto_resolve(self) -> timedelta:
        return timedelta(minutes=self.incident_auto_resolve_minutes)


class DetectionThresholds(BaseModel):
    baseline_latency_ms: float = 500
    throttling_multiplier: float = 1.5
    high_latency_ms: float = 5000
    complaint_rate: float = 0.01
    bounce_rate: float = 0.2
    min_messages_for_bounce: int = 10


class RiskScoringConfig(BaseModel):
    complaint_weight: float = 40
    bounce_weight: float = 20
    max_score: int = 100
    critical_threshold: int = 80
    high_threshold: int = 60
    medium_threshold: int = 30
    upsert_batch_size: int = 50
    scope: Literal["file", "history"] = "file"


class PipelineConfig(BaseModel):
    """Full ingestion/detection configuration."""
    batch_size: int = 1000
    file_type_match_threshold: float = 0.6
    use_file_time_for_detection: bool = False
    windows: DetectionWindows = DetectionWindows()
    thresholds: DetectionThresholds = DetectionThresholds()
    risk: RiskScoringConfig = RiskScoringConfig()
