"""Aggregate bucket repository."""
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Tuple

from sqlalchemy import Float, case, cast, func, null
from sqlalchemy.orm import Session

from pmta_insights.db.models.aggregate_bucket import AggregateBucket, ADDITIVE_COLUMNS, BUCKET_KEY_COLUMNS
from pmta_insights.db.upsert import upsert

BucketKey = Dict[str, Any]
BucketDelta = Dict[str, Any]


def normalize_key(key: BucketKey) -> BucketKey:
    """Fill missing string dimensions with "" so the unique key always matches."""
    normalized = {}
    for column in BUCKET_KEY_COLUMNS:
        value = key.get(column)
        if column in ("time_bucket", "file_id"):
            if value is None:
                raise ValueError(f"Aggregate key requires '{column}'")
            normalized[column] = value
        else:
            normalized[column] = "" if value is None else str(value)
    return normalized


def _merge_updates(table, incoming) -> List[Tuple[str, Any]]:
    merged_sum = func.coalesce(table.c.latency_sum_ms, 0) + func.coalesce(incoming.latency_sum_ms, 0)
    merged_count = func.coalesce(table.c.latency_count, 0) + func.coalesce(incoming.latency_count, 0)

    # Derived columns first: MySQL applies assignments in order
    updates = [
        ("avg_latency_ms", case((merged_count > 0, cast(merged_sum, Float) / merged_count), else_=null())),
        # Percentiles do not compose; exact values are recomputed from raw events on read
        ("p95_latency_ms", null()),
    ]
    updates.extend((column, table.c[column] + incoming[column]) for column in ADDITIVE_COLUMNS)
    updates.append(("updated_at", incoming.updated_at))
    return updates


class AggregateRepository:
    """Writes AggregateBucket rows through an atomic additive merge."""

    def __init__(self, db: Session, batch_size: int = 200):
        self.db = db
        self.batch_size = batch_size

    @staticmethod
    def _build_row(key: BucketKey, delta: BucketDelta, now: datetime) -> Dict[str, Any]:
        row = normalize_key(key)
        for column in ADDITIVE_COLUMNS:
            row[column] = delta.get(column) or 0
        row["latency_sum_ms"] = float(row["latency_sum_ms"])
        row["avg_latency_ms"] = (
            row["latency_sum_ms"] / row["latency_count"] if row["latency_count"] > 0 else None
        )
        row["p95_latency_ms"] = delta.get("p95_latency_ms")
        row["created_at"] = now
        row["updated_at"] = now
        return row

    def merge_aggregate(self, key: BucketKey, delta: BucketDelta) -> None:
        """Add ``delta`` to the bucket at ``key`` in a single statement."""
        self.merge_many([(key, delta)])

    def merge_many(self, deltas: Iterable[Tuple[BucketKey, BucketDelta]]) -> int:
        """Merge many (key, delta) pairs. Keys within one call must be distinct."""
        now = datetime.utcnow()
        rows = [self._build_row(key, delta, now) for key, delta in deltas]
        for start in range(0, len(rows), self.batch_size):
            upsert(
                self.db,
                AggregateBucket,
                rows[start:start + self.batch_size],
                conflict_columns=BUCKET_KEY_COLUMNS,
                build_updates=_merge_updates,
            )
        return len(rows)

    def get(self, key: BucketKey) -> Optional[AggregateBucket]:
        normalized = normalize_key(key)
        query = self.db.query(AggregateBucket)
        for column, value in normalized.items():
            query = query.filter(getattr(AggregateBucket, column) == value)
        return query.first()

    def delete_for_file(self, file_id: int) -> int:
        return self.db.query(AggregateBucket).filter(
            AggregateBucket.file_id == file_id
        ).delete(synchronize_session=False)
