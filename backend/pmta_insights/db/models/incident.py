"""Incident model - groups alerts for one entity while open."""
from enum import Enum as PyEnum
from sqlalchemy import Column, Integer, String, DateTime, Enum, Text, Index
from sqlalchemy.orm import relationship

from pmta_insights.db.base import Base, TimestampMixin


class IncidentStatus(str, PyEnum):
    OPEN = "open"
    RESOLVED = "resolved"


class Incident(TimestampMixin, Base):
    """Incident model - at most one open incident per (entity_type, entity_value)."""

    __tablename__ = "incidents"

    id = Column(Integer, primary_key=True, autoincrement=True)
    title = Column(String(255), nullable=False)
    severity = Column(String(20), nullable=False)
    entity_type = Column(String(50), nullable=False)
    entity_value = Column(String(255), nullable=False)
    start_time = Column(DateTime, nullable=False)
    end_time = Column(DateTime, nullable=True)
    summary = Column(Text, nullable=True)
    status = Column(Enum(IncidentStatus), default=IncidentStatus.OPEN, nullable=False)
    # "entity_type:entity_value" while open, NULL once resolved
    open_key = Column(String(320), nullable=True, unique=True)

    alerts = relationship("Alert", back_populates="incident", order_by="Alert.created_at")

    __table_args__ = (
        Index('idx_incident_entity', 'entity_type', 'entity_value'),
        Index('idx_incident_status', 'status'),
    )

    @staticmethod
    def build_open_key(entity_type: str, entity_value: str) -> str:
        return f"{entity_type}:{entity_value}"

    def __repr__(self) -> str:
        return f"<Incident(id={self.id}, title='{self.title}', status='{self.status}')>"
