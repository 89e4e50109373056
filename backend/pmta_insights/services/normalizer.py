"""PMTA file type detection and row normalization."""
from datetime import datetime
from typing import Any, Dict, Iterable, Optional

import pandas as pd

from pmta_insights.core.config import settings
from pmta_insights.core.constants import ACCT_TYPE_MAPPINGS, FILE_TYPE_HEADERS, EventType
from pmta_insights.schemas.events import NormalizedEvent


def detect_type(headers: Optional[Iterable[str]], min_match_ratio: Optional[float] = None) -> str:
    """Classify a header list as one of the PMTA log types.

    Each type scores the fraction of its expected headers that are present
    (case-insensitive). The best score wins if it reaches ``min_match_ratio``;
    on a tie the type declared first wins.

    Examples:
        ["type", "timeLogged", "orig", "rcpt", "vmta", "jobId"] -> "fbl"
        ["foo", "bar"] -> "unknown"
    """
    if not headers:
        return EventType.UNKNOWN.value
    threshold = settings.FILE_TYPE_MATCH_THRESHOLD if min_match_ratio is None else min_match_ratio

    present = {str(h).strip().lower() for h in headers if h is not None}

    best_type, best_ratio = EventType.UNKNOWN, 0.0
    for file_type, expected in FILE_TYPE_HEADERS.items():
        matched = sum(1 for header in expected if header.lower() in present)
        ratio = matched / len(expected)
        if ratio > best_ratio:
            best_type, best_ratio = file_type, ratio

    if best_ratio >= threshold:
        return best_type.value
    return EventType.UNKNOWN.value


def _lower_keys(row: Dict[str, Any]) -> Dict[str, Any]:
    return {str(key).strip().lower(): value for key, value in row.items() if key is not None}


def _value(fields: Dict[str, Any], *keys: str) -> Optional[str]:
    """Return the first non-empty value among ``keys`` (header names, any case)."""
    for key in keys:
        value = fields.get(key.lower())
        if value is None:
            continue
        value = str(value).strip()
        if value:
            return value
    return None


def extract_domain(address: Optional[str]) -> Optional[str]:
    if not address or "@" not in address:
        return None
    domain = address.rpartition("@")[2].strip().lower()
    return domain or None


def parse_timestamp(value: Any) -> Optional[datetime]:
    """Parse a PMTA timestamp to naive UTC. Unparsable values become None."""
    if value is None:
        return None
    if isinstance(value, str) and not value.strip():
        return None
    try:
        ts = pd.to_datetime(value, errors="coerce", utc=True)
    except (ValueError, TypeError, OverflowError):
        return None
    if pd.isna(ts):
        return None
    return ts.tz_convert(None).to_pydatetime()


def calculate_latency(logged: Optional[datetime], queued: Optional[datetime]) -> Optional[float]:
    if logged is None or queued is None:
        return None
    return (logged - queued).total_seconds()


def build_message_key(message_id: Optional[str], job_id: Optional[str], recipient: Optional[str]) -> Optional[str]:
    if message_id:
        return message_id
    if job_id and recipient:
        return f"{job_id}:{recipient}"
    return None


def resolve_event_type(detected_type: str, row: Dict[str, Any]) -> str:
    """Map accounting records to their canonical type via the record code."""
    if detected_type != EventType.ACCT.value:
        return detected_type
    code = (_value(_lower_keys(row), "type") or "")[:1].lower()
    return ACCT_TYPE_MAPPINGS.get(code, EventType.ACCT).value


def normalize_event(raw_row: Optional[Dict[str, Any]], detected_type: Optional[str], file_id: int) -> Optional[NormalizedEvent]:
    """Convert one raw PMTA row into a canonical event."""
    if not raw_row or not detected_type:
        return None

    fields = _lower_keys(raw_row)
    logged = parse_timestamp(_value(fields, "timeLogged"))
    queued = parse_timestamp(_value(fields, "timeQueued"))

    job_id = _value(fields, "jobId")
    recipient = _value(fields, "rcpt")
    message_id = _value(fields, "messageId")
    explicit_domain = _value(fields, "domain")

    return NormalizedEvent(
        file_id=file_id,
        event_type=resolve_event_type(detected_type, raw_row),
        event_timestamp=logged,
        job_id=job_id,
        sender=_value(fields, "orig"),
        recipient=recipient,
        recipient_domain=explicit_domain.lower() if explicit_domain else extract_domain(recipient),
        vmta=_value(fields, "vmta"),
        vmta_pool=_value(fields, "vmtaPool", "vmtaPool2"),
        source_ip=_value(fields, "dlvSourceIp"),
        destination_ip=_value(fields, "dlvDestinationIp"),
        envelope_id=_value(fields, "envId"),
        message_id=message_id,
        message_key=build_message_key(message_id, job_id, recipient),
        smtp_status=_value(fields, "dsnStatus"),
        bounce_category=_value(fields, "bounceCat"),
        dsn_action=_value(fields, "dsnAction"),
        dsn_diagnostic=_value(fields, "dsnDiag"),
        delivery_latency_seconds=calculate_latency(logged, queued),
        raw_fields=dict(raw_row),
    )
