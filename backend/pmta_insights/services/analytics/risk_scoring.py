"""Per-sender risk scoring from complaint and bounce rates."""
import json
import math
from datetime import datetime
from typing import Any, Dict, List, Optional

import structlog
from sqlalchemy import case, distinct, func, select
from sqlalchemy.orm import Session

from pmta_insights.core.constants import BOUNCE_EVENT_TYPES, EventType
from pmta_insights.db.models.event import Event
from pmta_insights.db.models.risk_score import RiskScore, RiskLevel
from pmta_insights.db.upsert import upsert
from pmta_insights.schemas.config import RiskScoringConfig

logger = structlog.get_logger()

SENDER_ENTITY = "sender"

OVERWRITTEN_COLUMNS = ("score", "level", "contributing_factors_json", "calculated_at", "updated_at")


def calculate_risk_score(complaint_rate: float, bounce_rate: float, config: Optional[RiskScoringConfig] = None) -> int:
    """Weighted score from percentage rates, capped at ``max_score``.

    Example: complaint 2.0%, bounce 10.0% -> 2*40 + 10*20 = 280 -> 100
    """
    config = config or RiskScoringConfig()
    raw = complaint_rate * config.complaint_weight + bounce_rate * config.bounce_weight
    # Half-up rounding
    return min(config.max_score, int(math.floor(raw + 0.5)))


def risk_level(score: int, config: Optional[RiskScoringConfig] = None) -> RiskLevel:
    config = config or RiskScoringConfig()
    if score > config.critical_threshold:
        return RiskLevel.CRITICAL
    if score > config.high_threshold:
        return RiskLevel.HIGH
    if score > config.medium_threshold:
        return RiskLevel.MEDIUM
    return RiskLevel.LOW


def _rate(part: int, attempts: int) -> float:
    return (part / attempts) * 100 if attempts > 0 else 0.0


def sender_tallies(db: Session, file_id: int, scope: str = "file") -> List[Any]:
    """Distinct-message tallies per sender.

    ``file`` scope counts only this file's events; ``history`` counts every
    event of the senders that appear in this file.
    """
    is_complaint = Event.event_type == EventType.FBL.value
    is_bounce = Event.event_type.in_(BOUNCE_EVENT_TYPES)

    query = db.query(
        Event.sender,
        func.count(distinct(Event.message_key)).label("message_attempts"),
        func.count(distinct(case((is_complaint, Event.message_key)))).label("complaint_messages"),
        func.count(distinct(case((is_bounce, Event.message_key)))).label("bounced_messages"),
    ).filter(
        Event.sender.isnot(None),
        Event.message_key.isnot(None)
    )

    if scope == "history":
        file_senders = select(Event.sender).where(
            Event.file_id == file_id,
            Event.sender.isnot(None)
        ).distinct()
        query = query.filter(Event.sender.in_(file_senders))
    else:
        query = query.filter(Event.file_id == file_id)

    return query.group_by(Event.sender).all()


def build_risk_row(tally, config: RiskScoringConfig, now: datetime) -> Dict[str, Any]:
    attempts = int(tally.message_attempts or 0)
    complaint_messages = int(tally.complaint_messages or 0)
    bounced_messages = int(tally.bounced_messages or 0)

    complaint_rate = _rate(complaint_messages, attempts)
    bounce_rate = _rate(bounced_messages, attempts)
    score = calculate_risk_score(complaint_rate, bounce_rate, config)

    factors = {
        "message_attempts": attempts,
        "complaint_messages": complaint_messages,
        "bounced_messages": bounced_messages,
        "complaint_rate": complaint_rate,
        "bounce_rate": bounce_rate,
        "scope": config.scope,
    }
    return {
        "entity_type": SENDER_ENTITY,
        "entity_value": tally.sender,
        "score": score,
        "level": risk_level(score, config),
        "contributing_factors_json": json.dumps(factors),
        "calculated_at": now,
        "created_at": now,
        "updated_at": now,
    }


def _overwrite(table, incoming):
    return [(column, incoming[column]) for column in OVERWRITTEN_COLUMNS]


def update_risk_scores(file_id: int, db: Session, config: Optional[RiskScoringConfig] = None) -> int:
    """Recompute and overwrite the risk score of every sender in a file.

    Returns the number of senders scored.
    """
    config = config or RiskScoringConfig()
    now = datetime.utcnow()

    tallies = sender_tallies(db, file_id, config.scope)
    rows = [build_risk_row(tally, config, now) for tally in tallies]

    for start in range(0, len(rows), config.upsert_batch_size):
        upsert(
            db,
            RiskScore,
            rows[start:start + config.upsert_batch_size],
            conflict_columns=("entity_type", "entity_value"),
            build_updates=_overwrite,
        )
    db.commit()

    logger.info("Risk scores updated", file_id=file_id, senders=len(rows), scope=config.scope)
    return len(rows)
