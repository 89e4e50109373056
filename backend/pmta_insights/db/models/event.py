"""Delivery event model - one normalized PMTA log record."""
from sqlalchemy import Column, Integer, String, DateTime, Float, Text, ForeignKey, Index
from sqlalchemy.orm import relationship

from pmta_insights.db.base import Base, TimestampMixin


class Event(TimestampMixin, Base):
    """Canonical delivery event. Immutable once written."""

    __tablename__ = "delivery_events"

    id = Column(Integer, primary_key=True, autoincrement=True)
    file_id = Column(Integer, ForeignKey("uploaded_files.id", ondelete="CASCADE"), nullable=False)

    event_type = Column(String(20), nullable=False)
    event_timestamp = Column(DateTime, nullable=True)

    # Sending path
    job_id = Column(String(255), nullable=True)
    sender = Column(String(255), nullable=True)
    recipient = Column(String(255), nullable=True)
    recipient_domain = Column(String(255), nullable=True)
    vmta = Column(String(255), nullable=True)
    vmta_pool = Column(String(255), nullable=True)
    source_ip = Column(String(64), nullable=True)
    destination_ip = Column(String(64), nullable=True)

    # Message identity
    envelope_id = Column(String(255), nullable=True)
    message_id = Column(String(500), nullable=True)
    message_key = Column(String(500), nullable=True)  # message_id, else "job_id:recipient"

    # DSN outcome
    smtp_status = Column(String(50), nullable=True)
    bounce_category = Column(String(100), nullable=True)
    dsn_action = Column(String(50), nullable=True)
    dsn_diagnostic = Column(Text, nullable=True)

    delivery_latency_seconds = Column(Float, nullable=True)
    raw_fields_json = Column(Text, nullable=True)

    file = relationship("UploadedFile", back_populates="events")

    __table_args__ = (
        Index('idx_event_file', 'file_id'),
        Index('idx_event_timestamp', 'event_timestamp'),
        Index('idx_event_message_key', 'message_key'),
        Index('idx_event_sender', 'sender'),
    )

    def __repr__(self) -> str:
        return f"<Event(id={self.id}, type='{self.event_type}', key='{self.message_key}')>"
