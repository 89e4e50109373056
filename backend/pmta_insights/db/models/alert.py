"""Alert model - one detection event, plus its cooldown slot."""
from datetime import datetime
from sqlalchemy import Column, Integer, String, DateTime, Text, ForeignKey, Enum, Index
from sqlalchemy.orm import relationship
import enum

from pmta_insights.db.base import Base, TimestampMixin


class AlertType(str, enum.Enum):
    THROTTLING = 'THROTTLING'
    COMPLAINT_SPIKE = 'COMPLAINT_SPIKE'
    HIGH_BOUNCE = 'HIGH_BOUNCE'


class AlertSeverity(str, enum.Enum):
    INFO = 'info'
    WARNING = 'warning'
    HIGH = 'high'
    CRITICAL = 'critical'

    @property
    def rank(self) -> int:
        return list(AlertSeverity).index(self)


class AlertStatus(str, enum.Enum):
    OPEN = 'open'
    RESOLVED = 'resolved'


class Alert(TimestampMixin, Base):
    """Detection alert, attached to the open incident for its entity."""

    __tablename__ = 'alerts'

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    alert_type = Column(Enum(AlertType), nullable=False)
    severity = Column(Enum(AlertSeverity), default=AlertSeverity.INFO, nullable=False)
    entity_type = Column(String(50), nullable=False)  # domain, job
    entity_value = Column(String(255), nullable=False)
    summary = Column(Text, nullable=True)
    metrics_json = Column(Text, nullable=True)
    status = Column(Enum(AlertStatus), default=AlertStatus.OPEN, nullable=False)
    time_window_start = Column(DateTime, nullable=True)
    time_window_end = Column(DateTime, nullable=True)
    resolved_at = Column(DateTime, nullable=True)
    incident_id = Column(Integer, ForeignKey('incidents.id'), nullable=True, index=True)

    incident = relationship("Incident", back_populates="alerts")

    __table_args__ = (
        Index('idx_alert_type_entity_status', 'alert_type', 'entity_value', 'status'),
    )

    def __repr__(self) -> str:
        return f"<Alert(id={self.id}, type='{self.alert_type}', entity='{self.entity_value}', status='{self.status}')>"


class AlertCooldown(Base):
    """Cooldown slot per (alert_type, entity_value).

    An alert may only be created by the caller that moves ``expires_at`` forward
    with a conditional UPDATE, which makes check-and-insert atomic.
    """

    __tablename__ = 'alert_cooldowns'

    alert_type = Column(String(50), primary_key=True)
    entity_value = Column(String(255), primary_key=True)
    expires_at = Column(DateTime, nullable=False, default=datetime(1970, 1, 1))
    alert_id = Column(Integer, nullable=True)
