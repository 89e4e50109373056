"""Incident detection - threshold rules over aggregate buckets.

Three rules read only AggregateBucket rows inside ``now - window <= time_bucket <= now``:

- THROTTLING per recipient domain: delivery latency well above its baseline,
  with deferrals or extreme latency
- COMPLAINT_SPIKE per job: complaint rate over the complaint window
- HIGH_BOUNCE per job: bounce rate over the short window

Alerts are deduplicated by a cooldown slot per (alert_type, entity_value) that
is claimed with one conditional UPDATE. Alerts for the same entity share one
open incident until it is resolved or goes quiet.
"""
import json
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

import structlog
from sqlalchemy import func, update
from sqlalchemy.orm import Session

from pmta_insights.core.constants import EventType
from pmta_insights.db.models.aggregate_bucket import AggregateBucket
from pmta_insights.db.models.alert import Alert, AlertCooldown, AlertSeverity, AlertStatus, AlertType
from pmta_insights.db.models.incident import Incident, IncidentStatus
from pmta_insights.db.models.job_run import JobRun, JobStatus
from pmta_insights.db.upsert import insert_ignore
from pmta_insights.schemas.config import DetectionThresholds, PipelineConfig
from pmta_insights.services.config_loader import load_pipeline_config

logger = structlog.get_logger()

# expires_at of a free cooldown slot
COOLDOWN_RELEASED_AT = datetime(1970, 1, 1)

DOMAIN_ENTITY = "domain"
JOB_ENTITY = "job"
UNKNOWN_JOB = "unknown"
DETECTION_PIPELINE = "incident_detection"


@dataclass
class AlertCandidate:
    """A rule hit, before cooldown and incident handling."""
    alert_type: AlertType
    severity: AlertSeverity
    entity_type: str
    entity_value: str
    summary: str
    window_start: datetime
    window_end: datetime
    metrics: Dict[str, Any] = field(default_factory=dict)


def _in_window(start: datetime, end: datetime):
    return (AggregateBucket.time_bucket >= start, AggregateBucket.time_bucket <= end)


def is_throttling(current_ms: float, baseline_ms: float, deferred_count: int, thresholds: DetectionThresholds) -> bool:
    """Latency above baseline x multiplier, backed by deferrals or extreme latency.

    Example: current 1000 vs baseline 500 x 1.5, no deferrals, 1000 < 5000 -> False
    """
    if current_ms <= baseline_ms * thresholds.throttling_multiplier:
        return False
    return deferred_count > 0 or current_ms > thresholds.high_latency_ms


def detect_domain_throttling(db: Session, now: datetime, config: PipelineConfig) -> List[AlertCandidate]:
    thresholds = config.thresholds
    short_start = now - config.windows.short
    long_start = now - config.windows.long

    current_rows = db.query(
        AggregateBucket.recipient_domain,
        func.sum(AggregateBucket.latency_sum_ms),
        func.sum(AggregateBucket.latency_count),
    ).filter(
        *_in_window(short_start, now),
        AggregateBucket.event_type == EventType.TRAN.value,
        AggregateBucket.recipient_domain != ""
    ).group_by(AggregateBucket.recipient_domain).all()

    current = {
        domain: float(latency_sum or 0) / int(latency_count)
        for domain, latency_sum, latency_count in current_rows
        if latency_count
    }
    if not current:
        return []
    domains = list(current)

    # Deferrals are tallied on accounting buckets, so sum across every event type
    deferred = dict(db.query(
        AggregateBucket.recipient_domain,
        func.sum(AggregateBucket.deferred),
    ).filter(
        *_in_window(short_start, now),
        AggregateBucket.recipient_domain.in_(domains)
    ).group_by(AggregateBucket.recipient_domain).all())

    baselines = {}
    for domain, latency_sum, latency_count in db.query(
        AggregateBucket.recipient_domain,
        func.sum(AggregateBucket.latency_sum_ms),
        func.sum(AggregateBucket.latency_count),
    ).filter(
        *_in_window(long_start, now),
        AggregateBucket.event_type == EventType.TRAN.value,
        AggregateBucket.recipient_domain.in_(domains)
    ).group_by(AggregateBucket.recipient_domain).all():
        if latency_count:
            baselines[domain] = float(latency_sum or 0) / int(latency_count)

    candidates = []
    for domain, current_ms in current.items():
        baseline_ms = baselines.get(domain, thresholds.baseline_latency_ms)
        deferred_count = int(deferred.get(domain) or 0)
        if not is_throttling(current_ms, baseline_ms, deferred_count, thresholds):
            continue
        candidates.append(AlertCandidate(
            alert_type=AlertType.THROTTLING,
            severity=AlertSeverity.HIGH,
            entity_type=DOMAIN_ENTITY,
            entity_value=domain,
            summary=f"ISP throttling detected on {domain}: latency is {current_ms / 1000:.1f}s",
            window_start=short_start,
            window_end=now,
            metrics={
                "current_latency_ms": current_ms,
                "baseline_latency_ms": baseline_ms,
                "deferred": deferred_count,
            },
        ))
    return candidates


def _job_tallies(db: Session, start: datetime, end: datetime, column) -> Dict[str, tuple]:
    rows = db.query(
        AggregateBucket.job_id,
        func.sum(column),
        func.sum(AggregateBucket.message_attempts),
    ).filter(*_in_window(start, end)).group_by(AggregateBucket.job_id).all()
    return {job_id: (int(part or 0), int(attempts or 0)) for job_id, part, attempts in rows}


def detect_complaint_spikes(db: Session, now: datetime, config: PipelineConfig) -> List[AlertCandidate]:
    start = now - config.windows.complaint
    current = _job_tallies(db, start, now, AggregateBucket.complaint_messages)
    weekly = None

    candidates = []
    for job_id, (complaints, attempts) in current.items():
        if complaints < 1 or attempts == 0:
            continue
        rate = complaints / attempts
        if rate <= config.thresholds.complaint_rate:
            continue

        if weekly is None:
            weekly = _job_tallies(db, now - config.windows.weekly, now, AggregateBucket.complaint_messages)
        weekly_complaints, weekly_attempts = weekly.get(job_id, (0, 0))
        job = job_id or UNKNOWN_JOB
        candidates.append(AlertCandidate(
            alert_type=AlertType.COMPLAINT_SPIKE,
            severity=AlertSeverity.CRITICAL,
            entity_type=JOB_ENTITY,
            entity_value=job,
            summary=f"Complaint spike for job {job}: rate is {rate * 100:.2f}%",
            window_start=start,
            window_end=now,
            metrics={
                "complaint_rate": rate,
                "total_complaints": complaints,
                "message_attempts": attempts,
                "weekly_complaint_rate": weekly_complaints / weekly_attempts if weekly_attempts else 0.0,
            },
        ))
    return candidates


def detect_high_bounce_rate(db: Session, now: datetime, config: PipelineConfig) -> List[AlertCandidate]:
    thresholds = config.thresholds
    start = now - config.windows.short

    candidates = []
    for job_id, (bounced, attempts) in _job_tallies(db, start, now, AggregateBucket.bounced_messages).items():
        if not bounced or attempts < thresholds.min_messages_for_bounce:
            continue
        rate = bounced / attempts
        if rate <= thresholds.bounce_rate:
            continue
        job = job_id or UNKNOWN_JOB
        candidates.append(AlertCandidate(
            alert_type=AlertType.HIGH_BOUNCE,
            severity=AlertSeverity.HIGH,
            entity_type=JOB_ENTITY,
            entity_value=job,
            summary=f"High bounce rate for job {job}: {rate * 100:.1f}%",
            window_start=start,
            window_end=now,
            metrics={"bounce_rate": rate, "total_bounced": bounced, "message_attempts": attempts},
        ))
    return candidates


def claim_cooldown(db: Session, alert_type: AlertType, entity_value: str, now: datetime, cooldown: timedelta) -> bool:
    """Take the cooldown slot if it has expired. Exactly one concurrent caller wins."""
    insert_ignore(
        db,
        AlertCooldown,
        {"alert_type": alert_type.value, "entity_value": entity_value, "expires_at": COOLDOWN_RELEASED_AT},
        conflict_columns=("alert_type", "entity_value"),
    )
    result = db.execute(
        update(AlertCooldown)
        .where(
            AlertCooldown.alert_type == alert_type.value,
            AlertCooldown.entity_value == entity_value,
            AlertCooldown.expires_at <= now
        )
        .values(expires_at=now + cooldown)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


def _open_incident(db: Session, candidate: AlertCandidate, now: datetime) -> Incident:
    """Find or create the single open incident for the candidate's entity."""
    open_key = Incident.build_open_key(candidate.entity_type, candidate.entity_value)
    insert_ignore(
        db,
        Incident,
        {
            "title": f"{candidate.alert_type.value.replace('_', ' ')}: {candidate.entity_value}",
            "severity": candidate.severity.value,
            "entity_type": candidate.entity_type,
            "entity_value": candidate.entity_value,
            "start_time": now,
            "summary": candidate.summary,
            "status": IncidentStatus.OPEN,
            "open_key": open_key,
            "created_at": now,
            "updated_at": now,
        },
        conflict_columns=("open_key",),
    )
    return db.query(Incident).filter(Incident.open_key == open_key).one()


def create_alert(db: Session, candidate: AlertCandidate, now: datetime, config: PipelineConfig) -> Optional[Alert]:
    """Persist an alert unless its cooldown slot is taken. Returns None when suppressed."""
    if not claim_cooldown(db, candidate.alert_type, candidate.entity_value, now, config.windows.cooldown):
        db.commit()
        logger.debug("Alert suppressed by cooldown",
                     alert_type=candidate.alert_type.value, entity=candidate.entity_value)
        return None

    incident = _open_incident(db, candidate, now)
    if AlertSeverity(incident.severity).rank < candidate.severity.rank:
        incident.severity = candidate.severity.value

    alert = Alert(
        alert_type=candidate.alert_type,
        severity=candidate.severity,
        entity_type=candidate.entity_type,
        entity_value=candidate.entity_value,
        summary=candidate.summary,
        metrics_json=json.dumps(candidate.metrics),
        status=AlertStatus.OPEN,
        time_window_start=candidate.window_start,
        time_window_end=candidate.window_end,
        incident_id=incident.id,
    )
    db.add(alert)
    db.flush()

    db.query(AlertCooldown).filter(
        AlertCooldown.alert_type == candidate.alert_type.value,
        AlertCooldown.entity_value == candidate.entity_value
    ).update({"alert_id": alert.id}, synchronize_session=False)
    db.commit()

    logger.warning("Alert generated", alert_id=alert.id, incident_id=incident.id,
                   alert_type=candidate.alert_type.value, summary=candidate.summary)
    return alert


def _close_alert(db: Session, alert: Alert, now: datetime) -> None:
    alert.status = AlertStatus.RESOLVED
    alert.resolved_at = now
    # Free the slot only if this alert still holds it
    db.query(AlertCooldown).filter(
        AlertCooldown.alert_type == alert.alert_type.value,
        AlertCooldown.entity_value == alert.entity_value,
        AlertCooldown.alert_id == alert.id
    ).update({"expires_at": COOLDOWN_RELEASED_AT}, synchronize_session=False)


def _close_incident(db: Session, incident: Incident, now: datetime) -> None:
    incident.status = IncidentStatus.RESOLVED
    incident.end_time = now
    incident.open_key = None
    for alert in incident.alerts:
        if alert.status == AlertStatus.OPEN:
            _close_alert(db, alert, now)


def resolve_incident(db: Session, incident_id: int, now: Optional[datetime] = None) -> Optional[Incident]:
    """Resolve an incident and its open alerts. Returns None if it does not exist."""
    incident = db.get(Incident, incident_id)
    if incident is None:
        return None
    if incident.status == IncidentStatus.RESOLVED:
        return incident

    _close_incident(db, incident, now or datetime.utcnow())
    db.commit()
    logger.info("Incident resolved", incident_id=incident_id)
    return incident


def resolve_alert(db: Session, alert_id: int, now: Optional[datetime] = None) -> Optional[Alert]:
    alert = db.get(Alert, alert_id)
    if alert is None:
        return None
    if alert.status == AlertStatus.OPEN:
        _close_alert(db, alert, now or datetime.utcnow())
        db.commit()
        logger.info("Alert resolved", alert_id=alert_id)
    return alert


def expire_stale_incidents(db: Session, now: datetime, config: PipelineConfig) -> int:
    """Resolve open incidents whose latest alert window ended before the auto-resolve cutoff."""
    cutoff = now - config.windows.incident_auto_resolve

    last_alert = db.query(
        Alert.incident_id.label("incident_id"),
        func.max(Alert.time_window_end).label("last_seen"),
    ).group_by(Alert.incident_id).subquery()

    stale = db.query(Incident).outerjoin(
        last_alert, last_alert.c.incident_id == Incident.id
    ).filter(
        Incident.status == IncidentStatus.OPEN,
        func.coalesce(last_alert.c.last_seen, Incident.start_time) < cutoff
    ).all()

    for incident in stale:
        _close_incident(db, incident, now)
    db.commit()

    if stale:
        logger.info(f"Auto-resolved {len(stale)} quiet incidents", incident_ids=[i.id for i in stale])
    return len(stale)


def detect_incidents(
    db: Session,
    now: Optional[datetime] = None,
    config: Optional[PipelineConfig] = None,
) -> Dict[str, int]:
    """Run every rule against the aggregates as of ``now`` (wall-clock UTC by default)."""
    now = now or datetime.utcnow()
    config = config or load_pipeline_config(db)
    logger.info("Running incident detection", reference=now.isoformat())

    expired = expire_stale_incidents(db, now, config)

    candidates = []
    candidates.extend(detect_domain_throttling(db, now, config))
    candidates.extend(detect_complaint_spikes(db, now, config))
    candidates.extend(detect_high_bounce_rate(db, now, config))

    created = 0
    for candidate in candidates:
        if create_alert(db, candidate, now, config) is not None:
            created += 1

    result = {
        "candidates": len(candidates),
        "alerts_created": created,
        "suppressed": len(candidates) - created,
        "incidents_expired": expired,
    }
    logger.info("Incident detection completed", **result)
    return result


def run_incident_detection(
    db: Session,
    now: Optional[datetime] = None,
    triggered_by: str = "system",
) -> Dict[str, Any]:
    """Run detection as a recorded pipeline job. Failures are logged, not raised."""
    job_run = JobRun(
        pipeline_name=DETECTION_PIPELINE,
        status=JobStatus.RUNNING,
        triggered_by=triggered_by
    )
    db.add(job_run)
    db.commit()

    try:
        counters = detect_incidents(db, now=now)
        job_run.status = JobStatus.COMPLETED
        job_run.counters_json = json.dumps(counters)
    except Exception as e:
        db.rollback()
        logger.error("Incident detection failed", error=str(e))
        counters = {"error": str(e)}
        job_run.status = JobStatus.FAILED
        job_run.error_message = str(e)

    job_run.ended_at = datetime.utcnow()
    db.commit()
    return counters
