"""Database models package."""
from pmta_insights.db.models.uploaded_file import UploadedFile, ProcessingStatus
from pmta_insights.db.models.event import Event
from pmta_insights.db.models.aggregate_bucket import AggregateBucket, BUCKET_KEY_COLUMNS, ADDITIVE_COLUMNS
from pmta_insights.db.models.risk_score import RiskScore, RiskLevel
from pmta_insights.db.models.alert import Alert, AlertCooldown, AlertType, AlertSeverity, AlertStatus
from pmta_insights.db.models.incident import Incident, IncidentStatus
from pmta_insights.db.models.job_run import JobRun, JobStatus
from pmta_insights.db.models.settings import Settings

__all__ = [
    "UploadedFile",
    "ProcessingStatus",
    "Event",
    "AggregateBucket",
    "BUCKET_KEY_COLUMNS",
    "ADDITIVE_COLUMNS",
    "RiskScore",
    "RiskLevel",
    "Alert",
    "AlertCooldown",
    "AlertType",
    "AlertSeverity",
    "AlertStatus",
    "Incident",
    "IncidentStatus",
    "JobRun",
    "JobStatus",
    "Settings",
]
