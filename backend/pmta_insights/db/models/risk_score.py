"""RiskScore model - per-entity deliverability risk."""
from datetime import datetime
from enum import Enum as PyEnum
from sqlalchemy import Column, Integer, String, DateTime, Enum, Text, UniqueConstraint

from pmta_insights.db.base import Base, TimestampMixin


class RiskLevel(str, PyEnum):
    """Risk level buckets."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class RiskScore(TimestampMixin, Base):
    """Risk score per (entity_type, entity_value), overwritten on each scoring run."""

    __tablename__ = "risk_scores"

    id = Column(Integer, primary_key=True, autoincrement=True)
    entity_type = Column(String(50), nullable=False, default="sender")
    entity_value = Column(String(255), nullable=False)
    score = Column(Integer, nullable=False, default=0)
    level = Column(Enum(RiskLevel), nullable=False, default=RiskLevel.LOW)
    contributing_factors_json = Column(Text, nullable=True)
    calculated_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    __table_args__ = (
        UniqueConstraint('entity_type', 'entity_value', name='uq_risk_entity'),
    )

    def __repr__(self) -> str:
        return f"<RiskScore({self.entity_type}={self.entity_value}, score={self.score}, level='{self.level}')>"
