"""Job runs model for pipeline execution history."""
from datetime import datetime
from enum import Enum as PyEnum
from sqlalchemy import Column, Integer, String, DateTime, Enum, Text, Index
from pmta_insights.db.base import Base, TimestampMixin


class JobStatus(str, PyEnum):
    """Job run status."""
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


class JobRun(TimestampMixin, Base):
    """Job runs model - Pipeline job execution history."""

    __tablename__ = "job_runs"

    run_id = Column(Integer, primary_key=True, autoincrement=True)
    pipeline_name = Column(String(100), nullable=False)  # post_ingestion_analytics, reaggregation_sweep, incident_detection
    file_id = Column(Integer, nullable=True)  # set for per-file runs
    started_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    ended_at = Column(DateTime, nullable=True)
    status = Column(Enum(JobStatus), default=JobStatus.PENDING, nullable=False)
    counters_json = Column(Text, nullable=True)  # JSON with per-stage counts
    error_message = Column(Text, nullable=True)
    triggered_by = Column(String(100), nullable=True)  # "ingestion", "scheduler", "cli"

    __table_args__ = (
        Index('idx_job_pipeline', 'pipeline_name'),
        Index('idx_job_status', 'status'),
        Index('idx_job_file', 'file_id'),
    )

    def __repr__(self) -> str:
        return f"<JobRun(run_id={self.run_id}, pipeline='{self.pipeline_name}', status='{self.status}')>"
