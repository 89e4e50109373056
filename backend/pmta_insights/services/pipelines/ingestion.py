"""Ingestion pipeline - stream PMTA log files into canonical events."""
import json
import os
import threading
import concurrent.futures
from datetime import datetime
from typing import Any, Dict, List, Optional

import pandas as pd
import structlog
from sqlalchemy import insert
from sqlalchemy.orm import Session

from pmta_insights.core.config import settings
from pmta_insights.core.constants import EventType
from pmta_insights.db.base import SessionLocal
from pmta_insights.db.models.event import Event
from pmta_insights.db.models.uploaded_file import UploadedFile, ProcessingStatus
from pmta_insights.schemas.config import PipelineConfig
from pmta_insights.schemas.events import NormalizedEvent
from pmta_insights.services.cache import PIPELINE_INVALIDATED_KEYS, TTLCache
from pmta_insights.services.config_loader import load_pipeline_config
from pmta_insights.services.normalizer import detect_type, normalize_event
from pmta_insights.services.pipelines.aggregation import run_post_ingestion_analytics

logger = structlog.get_logger()

# Errors that make a source unusable; the file ends in the error state
SOURCE_ERRORS = (pd.errors.ParserError, UnicodeDecodeError, OSError)

_executor: Optional[concurrent.futures.ThreadPoolExecutor] = None
_executor_lock = threading.Lock()


class IngestionError(Exception):
    """Raised when a file cannot be ingested at all."""


def get_executor() -> concurrent.futures.ThreadPoolExecutor:
    """Shared worker pool for concurrent file ingestion."""
    global _executor
    with _executor_lock:
        if _executor is None:
            _executor = concurrent.futures.ThreadPoolExecutor(
                max_workers=settings.INGESTION_MAX_WORKERS,
                thread_name_prefix="ingestion"
            )
        return _executor


def shutdown_executor(wait: bool = True) -> None:
    global _executor
    with _executor_lock:
        if _executor is not None:
            _executor.shutdown(wait=wait)
            _executor = None


def _event_row(event: NormalizedEvent, now: datetime) -> Dict[str, Any]:
    row = event.model_dump(exclude={"raw_fields"})
    row["raw_fields_json"] = json.dumps(event.raw_fields, default=str)
    row["created_at"] = now
    row["updated_at"] = now
    return row


def _insert_events(db: Session, events: List[NormalizedEvent]) -> int:
    if not events:
        return 0
    now = datetime.utcnow()
    db.execute(insert(Event), [_event_row(event, now) for event in events])
    return len(events)


def _stream_events(db: Session, uploaded: UploadedFile, source, config: PipelineConfig) -> Dict[str, Any]:
    """Parse ``source`` chunk by chunk, committing each chunk's events."""
    counters = {"rows": 0, "events": 0, "skipped": 0, "detected_type": EventType.UNKNOWN.value}
    detected_type = None

    try:
        reader = pd.read_csv(
            source,
            chunksize=config.batch_size,
            dtype=str,
            keep_default_na=False,
            skipinitialspace=True,
        )
    except pd.errors.EmptyDataError:
        logger.info("Empty source, nothing to ingest", file_id=uploaded.id)
        return counters

    with reader:
        for chunk in reader:
            if detected_type is None:
                detected_type = detect_type(list(chunk.columns), config.file_type_match_threshold)
                uploaded.detected_type = detected_type
                counters["detected_type"] = detected_type
                if detected_type == EventType.UNKNOWN.value:
                    logger.warning("Could not detect file type, continuing as unknown",
                                   file_id=uploaded.id, headers=list(chunk.columns))
                else:
                    logger.info("Detected file type", file_id=uploaded.id, detected_type=detected_type)

            events = []
            for raw_row in chunk.to_dict("records"):
                event = normalize_event(raw_row, detected_type, uploaded.id)
                if event is None:
                    counters["skipped"] += 1
                else:
                    events.append(event)

            counters["rows"] += len(chunk)
            counters["events"] += _insert_events(db, events)
            db.commit()

    return counters


def _cleanup(source, delete_source: bool) -> None:
    """Remove the temporary source file once the file reaches a terminal state."""
    if not delete_source or not isinstance(source, (str, os.PathLike)):
        return
    try:
        os.remove(source)
    except FileNotFoundError:
        pass
    except OSError as e:
        logger.warning("Could not remove source file", source=str(source), error=str(e))


def process_file(
    file_id: int,
    source,
    db: Optional[Session] = None,
    delete_source: bool = False,
    cache: Optional[TTLCache] = None,
    now: Optional[datetime] = None,
) -> Dict[str, Any]:
    """
    Ingest one uploaded file.

    Steps:
    1. Mark the file processing
    2. Stream-parse the CSV in chunks, detecting the log type on the first chunk
    3. Normalize and bulk-insert events per chunk
    4. Mark the file completed (or error on an unreadable source)
    5. Run post-ingestion analytics and invalidate cached read queries

    Args:
        file_id: UploadedFile id, already registered
        source: path or binary/text file-like object
        db: session to use; a private one is opened when omitted
        delete_source: remove the source path once done
        cache: read cache to invalidate after new data lands
        now: reference instant for incident detection

    Returns:
        Counter dict with rows, events, skipped, detected_type and status
    """
    own_session = db is None
    if own_session:
        db = SessionLocal()

    try:
        uploaded = db.get(UploadedFile, file_id)
        if uploaded is None:
            raise IngestionError(f"Uploaded file {file_id} not found")

        config = load_pipeline_config(db)
        uploaded.status = ProcessingStatus.PROCESSING
        uploaded.error_detail = None
        db.commit()
        logger.info("Starting ingestion", file_id=file_id, file_name=uploaded.file_name)

        try:
            counters = _stream_events(db, uploaded, source, config)
        except SOURCE_ERRORS as e:
            db.rollback()
            uploaded.status = ProcessingStatus.ERROR
            uploaded.error_detail = str(e)
            db.commit()
            logger.error("Ingestion failed", file_id=file_id, error=str(e))
            return {"file_id": file_id, "status": ProcessingStatus.ERROR.value, "error": str(e)}
        except Exception as e:
            # Storage failures also leave the file terminal, then propagate
            db.rollback()
            uploaded.status = ProcessingStatus.ERROR
            uploaded.error_detail = str(e)
            db.commit()
            logger.error("Ingestion aborted", file_id=file_id, error=str(e))
            raise

        uploaded.row_count = counters["rows"]
        uploaded.status = ProcessingStatus.COMPLETED
        db.commit()
        logger.info("Ingestion completed", file_id=file_id, **counters)

        counters["analytics"] = run_post_ingestion_analytics(file_id, db, now=now)

        if cache is not None:
            for key in PIPELINE_INVALIDATED_KEYS:
                cache.invalidate(key)

        return {"file_id": file_id, "status": ProcessingStatus.COMPLETED.value, **counters}

    finally:
        _cleanup(source, delete_source)
        if own_session:
            db.close()


def _log_failure(future: concurrent.futures.Future) -> None:
    error = future.exception()
    if error is not None:
        logger.error("Background ingestion crashed", error=str(error))


def submit_file(
    file_id: int,
    source,
    delete_source: bool = False,
    cache: Optional[TTLCache] = None,
) -> concurrent.futures.Future:
    """Queue a file for ingestion on the shared pool. Each worker opens its own session."""
    future = get_executor().submit(
        process_file,
        file_id,
        source,
        delete_source=delete_source,
        cache=cache,
    )
    future.add_done_callback(_log_failure)
    return future
