"""Pydantic schemas for canonical delivery events."""
from datetime import datetime
from typing import Optional, Dict, Any
from pydantic import BaseModel, ConfigDict


class NormalizedEvent(BaseModel):
    """Canonical event produced by the normalizer, ready for bulk insert."""
    model_config = ConfigDict(frozen=True)

    file_id: int
    event_type: str
    event_timestamp: Optional[datetime] = None
    job_id: Optional[str] = None
    sender: Optional[str] = None
    recipient: Optional[str] = None
    recipient_domain: Optional[str] = None
    vmta: Optional[str] = None
    vmta_pool: Optional[str] = None
    source_ip: Optional[str] = None
    destination_ip: Optional[str] = None
    envelope_id: Optional[str] = None
    message_id: Optional[str] = None
    message_key: Optional[str] = None
    smtp_status: Optional[str] = None
    bounce_category: Optional[str] = None
    dsn_action: Optional[str] = None
    dsn_diagnostic: Optional[str] = None
    delivery_latency_seconds: Optional[float] = None
    raw_fields: Dict[str, Any] = {}
