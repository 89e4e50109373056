"""Settings model for runtime configuration overrides."""
from datetime import datetime
from sqlalchemy import Column, String, DateTime, Text
from pmta_insights.db.base import Base


class Settings(Base):
    """Settings model - Key-value overrides for pipeline thresholds and windows."""

    __tablename__ = "settings"

    key = Column(String(100), primary_key=True)
    value_json = Column(Text, nullable=True)  # JSON-serialized value
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    def __repr__(self) -> str:
        return f"<Settings(key='{self.key}')>"
