"""Uploaded file model - one submitted PMTA log batch."""
from enum import Enum as PyEnum
from sqlalchemy import Column, Integer, String, BigInteger, Enum, Text, Index
from sqlalchemy.orm import relationship

from pmta_insights.db.base import Base, TimestampMixin


class ProcessingStatus(str, PyEnum):
    """File ingestion status."""
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    ERROR = "error"


class UploadedFile(TimestampMixin, Base):
    """Uploaded file model - pending -> processing -> completed | error."""

    __tablename__ = "uploaded_files"

    id = Column(Integer, primary_key=True, autoincrement=True)
    file_name = Column(String(500), nullable=False)
    content_hash = Column(String(64), nullable=False, unique=True, index=True)
    file_size = Column(BigInteger, default=0)
    detected_type = Column(String(20), default="unknown", nullable=False)  # acct, tran, bounce, fbl, rb, unknown
    status = Column(Enum(ProcessingStatus), default=ProcessingStatus.PENDING, nullable=False)
    row_count = Column(Integer, default=0, nullable=False)
    error_detail = Column(Text, nullable=True)

    events = relationship("Event", back_populates="file", passive_deletes=True)

    __table_args__ = (
        Index('idx_uploaded_file_status', 'status'),
    )

    def __repr__(self) -> str:
        return f"<UploadedFile(id={self.id}, name='{self.file_name}', status='{self.status}')>"
