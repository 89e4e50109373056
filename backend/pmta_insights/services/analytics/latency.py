"""Latency reads.

Averages merge exactly through the stored sum/count pair. Percentiles do not
merge, so p95 is always recomputed from raw delivered events.
"""
from datetime import datetime
from typing import Optional

import pandas as pd
from sqlalchemy import func
from sqlalchemy.orm import Session

from pmta_insights.core.constants import EventType
from pmta_insights.db.models.aggregate_bucket import AggregateBucket
from pmta_insights.db.models.event import Event


def delivered_latencies_ms(
    db: Session,
    start: datetime,
    end: datetime,
    recipient_domain: Optional[str] = None,
    job_id: Optional[str] = None,
) -> pd.DataFrame:
    """Raw delivered events with a latency, as (event_timestamp, latency_ms)."""
    query = db.query(Event.event_timestamp, Event.delivery_latency_seconds).filter(
        Event.event_type == EventType.TRAN.value,
        Event.delivery_latency_seconds.isnot(None),
        Event.event_timestamp >= start,
        Event.event_timestamp <= end
    )
    if recipient_domain:
        query = query.filter(Event.recipient_domain == recipient_domain)
    if job_id:
        query = query.filter(Event.job_id == job_id)

    df = pd.DataFrame([tuple(row) for row in query.all()],
                      columns=["event_timestamp", "latency_seconds"])
    df["latency_ms"] = df["latency_seconds"].astype(float) * 1000
    return df.drop(columns=["latency_seconds"])


def exact_latency_percentile(
    db: Session,
    start: datetime,
    end: datetime,
    percentile: float = 0.95,
    recipient_domain: Optional[str] = None,
    job_id: Optional[str] = None,
) -> Optional[float]:
    """Linear-interpolated latency percentile in ms, or None without samples."""
    df = delivered_latencies_ms(db, start, end, recipient_domain, job_id)
    if df.empty:
        return None
    return float(df["latency_ms"].quantile(percentile))


def windowed_average_latency(
    db: Session,
    start: datetime,
    end: datetime,
    recipient_domain: Optional[str] = None,
) -> Optional[float]:
    """Mean delivery latency in ms merged from tran buckets."""
    query = db.query(
        func.sum(AggregateBucket.latency_sum_ms),
        func.sum(AggregateBucket.latency_count),
    ).filter(
        AggregateBucket.event_type == EventType.TRAN.value,
        AggregateBucket.time_bucket >= start,
        AggregateBucket.time_bucket <= end
    )
    if recipient_domain:
        query = query.filter(AggregateBucket.recipient_domain == recipient_domain)

    latency_sum, latency_count = query.one()
    if not latency_count:
        return None
    return float(latency_sum or 0) / int(latency_count)


def latency_trend(db: Session, start: datetime, end: datetime, freq: str = "h") -> pd.DataFrame:
    """Per-period average (from buckets) and exact p95 (from events), in ms.

    Columns: time, avg_latency_ms, p95_latency_ms, delivered_messages.
    """
    rows = db.query(
        AggregateBucket.time_bucket,
        AggregateBucket.latency_sum_ms,
        AggregateBucket.latency_count,
        AggregateBucket.delivered_messages,
    ).filter(
        AggregateBucket.event_type == EventType.TRAN.value,
        AggregateBucket.time_bucket >= start,
        AggregateBucket.time_bucket <= end
    ).all()
    columns = ["time", "avg_latency_ms", "p95_latency_ms", "delivered_messages"]
    if not rows:
        return pd.DataFrame(columns=columns)

    buckets = pd.DataFrame([tuple(row) for row in rows],
                           columns=["time", "latency_sum_ms", "latency_count", "delivered_messages"])
    buckets["time"] = pd.to_datetime(buckets["time"]).dt.floor(freq)
    trend = buckets.groupby("time").sum(numeric_only=True)
    trend["avg_latency_ms"] = (trend["latency_sum_ms"] / trend["latency_count"]).where(trend["latency_count"] > 0)

    events = delivered_latencies_ms(db, start, end)
    if events.empty:
        trend["p95_latency_ms"] = None
    else:
        events["time"] = pd.to_datetime(events["event_timestamp"]).dt.floor(freq)
        trend["p95_latency_ms"] = events.groupby("time")["latency_ms"].quantile(0.95)

    return trend.reset_index()[columns].sort_values("time").reset_index(drop=True)
