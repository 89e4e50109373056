"""Risk scoring, incident detection and latency reads."""
from pmta_insights.services.analytics.risk_scoring import update_risk_scores, calculate_risk_score, risk_level
from pmta_insights.services.analytics.incident_detector import (
    detect_incidents,
    create_alert,
    resolve_incident,
    resolve_alert,
    expire_stale_incidents,
)
from pmta_insights.services.analytics.latency import exact_latency_percentile, windowed_average_latency

__all__ = [
    "update_risk_scores",
    "calculate_risk_score",
    "risk_level",
    "detect_incidents",
    "create_alert",
    "resolve_incident",
    "resolve_alert",
    "expire_stale_incidents",
    "exact_latency_percentile",
    "windowed_average_latency",
]
