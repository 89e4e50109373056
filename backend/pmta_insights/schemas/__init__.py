"""Pydantic schemas package."""
from pmta_insights.schemas.events import NormalizedEvent
from pmta_insights.schemas.config import DetectionWindows, DetectionThresholds, RiskScoringConfig, PipelineConfig

__all__ = ["NormalizedEvent", "DetectionWindows", "DetectionThresholds", "RiskScoringConfig", "PipelineConfig"]
