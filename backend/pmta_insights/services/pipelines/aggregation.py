"""Aggregation pipeline - per-minute rollups and post-ingestion analytics."""
import json
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

import pandas as pd
import structlog
from sqlalchemy import func
from sqlalchemy.orm import Session

from pmta_insights.core.constants import BOUNCE_EVENT_TYPES, DEFERRED_DSN_ACTION, EventType
from pmta_insights.db.aggregates import AggregateRepository, BucketDelta, BucketKey
from pmta_insights.db.models.event import Event
from pmta_insights.db.models.job_run import JobRun, JobStatus
from pmta_insights.db.models.uploaded_file import UploadedFile, ProcessingStatus
from pmta_insights.schemas.config import PipelineConfig
from pmta_insights.services.analytics.incident_detector import detect_incidents
from pmta_insights.services.analytics.risk_scoring import update_risk_scores
from pmta_insights.services.config_loader import load_pipeline_config

logger = structlog.get_logger()

ANALYTICS_PIPELINE = "post_ingestion_analytics"

EVENT_COLUMNS = [
    "event_timestamp",
    "event_type",
    "job_id",
    "sender",
    "recipient_domain",
    "vmta",
    "message_key",
    "dsn_action",
    "delivery_latency_seconds",
]
DIMENSION_COLUMNS = ["job_id", "sender", "recipient_domain", "vmta"]
GROUP_COLUMNS = ["time_bucket", "event_type"] + DIMENSION_COLUMNS
COUNT_COLUMNS = [
    "total_count",
    "delivered",
    "bounced",
    "deferred",
    "complaints",
    "message_attempts",
    "delivered_messages",
    "bounced_messages",
    "complaint_messages",
    "latency_count",
]


def load_file_events(db: Session, file_id: int) -> pd.DataFrame:
    """Load the aggregation columns of a file's timestamped events."""
    rows = db.query(*[getattr(Event, column) for column in EVENT_COLUMNS]).filter(
        Event.file_id == file_id,
        Event.event_timestamp.isnot(None)
    ).all()
    return pd.DataFrame([tuple(row) for row in rows], columns=EVENT_COLUMNS)


def _p95(values: pd.Series) -> Optional[float]:
    values = values.dropna()
    if values.empty:
        return None
    return float(values.quantile(0.95))


def build_bucket_deltas(events: pd.DataFrame, file_id: int) -> List[Tuple[BucketKey, BucketDelta]]:
    """Group one batch of events into per-minute bucket deltas.

    Event tallies count rows; message tallies count distinct message keys, so
    events without a key only drop out of the latter. Latency covers delivered
    events only, and p95 is local to this batch.
    """
    if events.empty:
        return []

    df = events.copy()
    df["time_bucket"] = pd.to_datetime(df["event_timestamp"]).dt.floor("min")
    for column in DIMENSION_COLUMNS:
        df[column] = df[column].fillna("")

    event_type = df["event_type"]
    dsn_action = df["dsn_action"].fillna("").astype(str).str.strip().str.lower()
    is_delivered = event_type == EventType.TRAN.value
    is_bounced = event_type.isin(BOUNCE_EVENT_TYPES)
    is_deferred = (event_type == EventType.ACCT.value) & (dsn_action == DEFERRED_DSN_ACTION)
    is_complaint = event_type == EventType.FBL.value

    df["delivered"] = is_delivered.astype(int)
    df["bounced"] = is_bounced.astype(int)
    df["deferred"] = is_deferred.astype(int)
    df["complaints"] = is_complaint.astype(int)

    df["delivered_key"] = df["message_key"].where(is_delivered)
    df["bounced_key"] = df["message_key"].where(is_bounced)
    df["complaint_key"] = df["message_key"].where(is_complaint)

    latency_ms = pd.to_numeric(df["delivery_latency_seconds"], errors="coerce") * 1000
    df["latency_ms"] = latency_ms.where(is_delivered)

    grouped = df.groupby(GROUP_COLUMNS, sort=False).agg(
        total_count=("event_type", "size"),
        delivered=("delivered", "sum"),
        bounced=("bounced", "sum"),
        deferred=("deferred", "sum"),
        complaints=("complaints", "sum"),
        message_attempts=("message_key", "nunique"),
        delivered_messages=("delivered_key", "nunique"),
        bounced_messages=("bounced_key", "nunique"),
        complaint_messages=("complaint_key", "nunique"),
        latency_sum_ms=("latency_ms", "sum"),
        latency_count=("latency_ms", "count"),
        p95_latency_ms=("latency_ms", _p95),
    ).reset_index()

    deltas = []
    for record in grouped.to_dict("records"):
        key = {column: record[column] for column in DIMENSION_COLUMNS}
        key["time_bucket"] = pd.Timestamp(record["time_bucket"]).to_pydatetime()
        key["event_type"] = record["event_type"]
        key["file_id"] = file_id

        delta = {column: int(record[column]) for column in COUNT_COLUMNS}
        delta["latency_sum_ms"] = float(record["latency_sum_ms"] or 0.0)
        p95 = record["p95_latency_ms"]
        delta["p95_latency_ms"] = None if p95 is None or pd.isna(p95) else float(p95)
        deltas.append((key, delta))
    return deltas


def aggregate_file_data(file_id: int, db: Session) -> Dict[str, int]:
    """Merge one file's events into the shared aggregate buckets."""
    logger.info("Starting aggregation", file_id=file_id)

    events = load_file_events(db, file_id)
    deltas = build_bucket_deltas(events, file_id)
    AggregateRepository(db).merge_many(deltas)
    db.commit()

    logger.info("Aggregation completed", file_id=file_id, events=len(events), buckets=len(deltas))
    return {"events_aggregated": len(events), "buckets_merged": len(deltas)}


def reaggregate_file(file_id: int, db: Session) -> Dict[str, int]:
    """Rebuild a file's buckets from its events. Safe to repeat."""
    removed = AggregateRepository(db).delete_for_file(file_id)
    counters = aggregate_file_data(file_id, db)
    counters["buckets_removed"] = removed
    return counters


def latest_event_time(db: Session, file_id: int) -> Optional[datetime]:
    return db.query(func.max(Event.event_timestamp)).filter(Event.file_id == file_id).scalar()


def run_post_ingestion_analytics(
    file_id: int,
    db: Session,
    now: Optional[datetime] = None,
    config: Optional[PipelineConfig] = None,
    reaggregate: bool = False,
    run_detection: bool = True,
    triggered_by: str = "ingestion",
) -> Dict[str, Any]:
    """Aggregate, score and detect for one completed file.

    Every stage isolates its own failure: errors are logged and recorded on the
    JobRun, never raised, and the file keeps its completed status. A failed
    aggregation skips the later stages; the reaggregation sweep repairs it.
    """
    job_run = JobRun(
        pipeline_name=ANALYTICS_PIPELINE,
        file_id=file_id,
        status=JobStatus.RUNNING,
        triggered_by=triggered_by
    )
    db.add(job_run)
    db.commit()

    counters: Dict[str, Any] = {}
    errors = []

    try:
        config = config or load_pipeline_config(db)
        if reaggregate:
            counters.update(reaggregate_file(file_id, db))
        else:
            counters.update(aggregate_file_data(file_id, db))
    except Exception as e:
        db.rollback()
        logger.error("Aggregation failed", file_id=file_id, error=str(e))
        errors.append(f"aggregation: {e}")

    if not errors:
        try:
            counters["senders_scored"] = update_risk_scores(file_id, db, config.risk)
        except Exception as e:
            db.rollback()
            logger.error("Risk score update failed", file_id=file_id, error=str(e))
            errors.append(f"risk_scoring: {e}")

        if run_detection:
            try:
                if now is None and config.use_file_time_for_detection:
                    now = latest_event_time(db, file_id)
                result = detect_incidents(db, now=now, config=config)
                counters["alerts_created"] = result["alerts_created"]
            except Exception as e:
                db.rollback()
                logger.error("Incident detection failed", file_id=file_id, error=str(e))
                errors.append(f"detection: {e}")

    job_run.status = JobStatus.FAILED if errors else JobStatus.COMPLETED
    job_run.error_message = "; ".join(errors) or None
    job_run.ended_at = datetime.utcnow()
    job_run.counters_json = json.dumps(counters)
    db.commit()

    return {"file_id": file_id, "status": job_run.status.value, "errors": errors, **counters}


def find_stale_files(db: Session) -> List[int]:
    """Completed files whose latest analytics run is missing or failed."""
    completed = [
        file_id for (file_id,) in db.query(UploadedFile.id).filter(
            UploadedFile.status == ProcessingStatus.COMPLETED
        ).order_by(UploadedFile.id).all()
    ]
    latest_status = {}
    runs = db.query(JobRun.file_id, JobRun.status).filter(
        JobRun.pipeline_name == ANALYTICS_PIPELINE,
        JobRun.file_id.isnot(None)
    ).order_by(JobRun.run_id).all()
    for file_id, status in runs:
        latest_status[file_id] = status

    return [file_id for file_id in completed if latest_status.get(file_id) != JobStatus.COMPLETED]


def run_reaggregation_sweep(
    db: Session,
    file_ids: Optional[List[int]] = None,
    now: Optional[datetime] = None,
    triggered_by: str = "scheduler",
) -> Dict[str, Any]:
    """Rebuild aggregates and risk for stale (or given) files, then detect once."""
    config = load_pipeline_config(db)
    targets = file_ids if file_ids is not None else find_stale_files(db)
    counters = {"files": len(targets), "repaired": 0, "failed": 0, "alerts_created": 0}

    if not targets:
        logger.info("Reaggregation sweep found nothing to repair")
        return counters

    logger.info(f"Reaggregating {len(targets)} files", file_ids=targets)
    for file_id in targets:
        result = run_post_ingestion_analytics(
            file_id,
            db,
            config=config,
            reaggregate=True,
            run_detection=False,
            triggered_by=triggered_by,
        )
        if result["errors"]:
            counters["failed"] += 1
        else:
            counters["repaired"] += 1

    try:
        counters["alerts_created"] = detect_incidents(db, now=now, config=config)["alerts_created"]
    except Exception as e:
        db.rollback()
        logger.error("Incident detection after sweep failed", error=str(e))

    logger.info("Reaggregation sweep completed", **counters)
    return counters
