"""Upload registry - content hashing, duplicate detection and file removal."""
import hashlib
import os
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Union, BinaryIO

import structlog
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from pmta_insights.db.models.aggregate_bucket import AggregateBucket
from pmta_insights.db.models.event import Event
from pmta_insights.db.models.job_run import JobRun
from pmta_insights.db.models.uploaded_file import UploadedFile, ProcessingStatus

logger = structlog.get_logger()

HASH_CHUNK_SIZE = 1024 * 1024

Source = Union[str, os.PathLike, bytes, BinaryIO]


@dataclass
class UploadResult:
    """Outcome of registering an upload. Duplicates are not errors."""
    file_name: str
    content_hash: str
    file_id: Optional[int] = None
    duplicate: bool = False
    existing_id: Optional[int] = None
    existing_file_name: Optional[str] = None


def calculate_file_hash(source: Source) -> str:
    """Calculate the MD5 hash of a path, bytes or binary stream."""
    digest = hashlib.md5()
    if isinstance(source, (bytes, bytearray)):
        digest.update(source)
    elif hasattr(source, "read"):
        start = source.tell()
        for chunk in iter(lambda: source.read(HASH_CHUNK_SIZE), b""):
            digest.update(chunk)
        source.seek(start)
    else:
        with open(source, "rb") as fh:
            for chunk in iter(lambda: fh.read(HASH_CHUNK_SIZE), b""):
                digest.update(chunk)
    return digest.hexdigest()


def _source_size(source: Source) -> int:
    if isinstance(source, (bytes, bytearray)):
        return len(source)
    if hasattr(source, "read"):
        return 0
    return os.path.getsize(source)


def check_duplicate(db: Session, content_hash: str) -> Optional[UploadedFile]:
    """Return the already-registered file with this content hash, if any."""
    return db.query(UploadedFile).filter(UploadedFile.content_hash == content_hash).first()


def register_upload(
    db: Session,
    file_name: str,
    source: Source,
    file_size: Optional[int] = None,
    content_hash: Optional[str] = None,
) -> UploadResult:
    """Create a pending UploadedFile unless identical content was uploaded before."""
    content_hash = content_hash or calculate_file_hash(source)

    existing = check_duplicate(db, content_hash)
    if existing:
        logger.info("Duplicate upload skipped", file_name=file_name, existing_id=existing.id)
        return UploadResult(
            file_name=file_name,
            content_hash=content_hash,
            duplicate=True,
            existing_id=existing.id,
            existing_file_name=existing.file_name,
        )

    uploaded = UploadedFile(
        file_name=file_name,
        content_hash=content_hash,
        file_size=file_size if file_size is not None else _source_size(source),
        detected_type="unknown",
        status=ProcessingStatus.PENDING,
    )
    db.add(uploaded)
    try:
        db.commit()
    except IntegrityError:
        # Same content registered concurrently; the unique hash decides the winner
        db.rollback()
        existing = check_duplicate(db, content_hash)
        return UploadResult(
            file_name=file_name,
            content_hash=content_hash,
            duplicate=True,
            existing_id=existing.id if existing else None,
            existing_file_name=existing.file_name if existing else None,
        )
    db.refresh(uploaded)

    logger.info("Upload registered", file_id=uploaded.id, file_name=file_name)
    return UploadResult(file_name=file_name, content_hash=content_hash, file_id=uploaded.id)


def delete_files(db: Session, file_ids: List[int]) -> Dict[str, Any]:
    """Remove files together with their events, aggregates and analytics runs."""
    if not file_ids:
        return {"files": 0, "events": 0, "buckets": 0}

    buckets = db.query(AggregateBucket).filter(
        AggregateBucket.file_id.in_(file_ids)
    ).delete(synchronize_session=False)
    events = db.query(Event).filter(Event.file_id.in_(file_ids)).delete(synchronize_session=False)
    db.query(JobRun).filter(JobRun.file_id.in_(file_ids)).delete(synchronize_session=False)
    files = db.query(UploadedFile).filter(UploadedFile.id.in_(file_ids)).delete(synchronize_session=False)
    db.commit()

    logger.info("Deleted files", files=files, events=events, buckets=buckets)
    return {"files": files, "events": events, "buckets": buckets}
