"""AggregateBucket model - per-minute rollup of delivery events."""
from sqlalchemy import Column, Integer, String, DateTime, Float, ForeignKey, Index, UniqueConstraint

from pmta_insights.db.base import Base, TimestampMixin


# Unique merge key. Missing dimensions are stored as "" so NULLs never split a key.
BUCKET_KEY_COLUMNS = ("time_bucket", "event_type", "job_id", "sender", "recipient_domain", "vmta", "file_id")

# Fields that are summed on every merge
ADDITIVE_COLUMNS = (
    "total_count",
    "delivered",
    "bounced",
    "deferred",
    "complaints",
    "message_attempts",
    "delivered_messages",
    "bounced_messages",
    "complaint_messages",
    "latency_sum_ms",
    "latency_count",
)


class AggregateBucket(TimestampMixin, Base):
    """Per-minute aggregate row, only ever written through a merge-upsert."""

    __tablename__ = "aggregate_buckets"

    id = Column(Integer, primary_key=True, autoincrement=True)

    time_bucket = Column(DateTime, nullable=False)
    event_type = Column(String(20), nullable=False)
    job_id = Column(String(255), nullable=False, default="")
    sender = Column(String(255), nullable=False, default="")
    recipient_domain = Column(String(255), nullable=False, default="")
    vmta = Column(String(255), nullable=False, default="")
    file_id = Column(Integer, ForeignKey("uploaded_files.id", ondelete="CASCADE"), nullable=False)

    # Event-based counts
    total_count = Column(Integer, default=0, nullable=False)
    delivered = Column(Integer, default=0, nullable=False)
    bounced = Column(Integer, default=0, nullable=False)
    deferred = Column(Integer, default=0, nullable=False)
    complaints = Column(Integer, default=0, nullable=False)

    # Message-based counts (distinct message_key)
    message_attempts = Column(Integer, default=0, nullable=False)
    delivered_messages = Column(Integer, default=0, nullable=False)
    bounced_messages = Column(Integer, default=0, nullable=False)
    complaint_messages = Column(Integer, default=0, nullable=False)

    # Latency
    latency_sum_ms = Column(Float, default=0.0, nullable=False)
    latency_count = Column(Integer, default=0, nullable=False)
    avg_latency_ms = Column(Float, nullable=True)
    p95_latency_ms = Column(Float, nullable=True)  # batch-local, nulled on merge

    __table_args__ = (
        UniqueConstraint(*BUCKET_KEY_COLUMNS, name="uq_aggregate_bucket_key"),
        Index('idx_bucket_time', 'time_bucket'),
        Index('idx_bucket_domain_time', 'recipient_domain', 'time_bucket'),
        Index('idx_bucket_job_time', 'job_id', 'time_bucket'),
    )

    def __repr__(self) -> str:
        return f"<AggregateBucket(time={self.time_bucket}, type='{self.event_type}', total={self.total_count})>"
