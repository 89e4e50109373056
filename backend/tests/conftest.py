"""Pytest configuration and fixtures."""
import os
from datetime import datetime

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

# Set test database URL BEFORE importing the package so the default engine stays in memory
os.environ["DATABASE_URL"] = "sqlite:///:memory:"
os.environ["LOG_JSON"] = "False"

from pmta_insights.db.base import Base, build_engine, init_db
from pmta_insights.db.aggregates import AggregateRepository
from pmta_insights.db.models import Event, UploadedFile, ProcessingStatus

# Use SQLite for testing
SQLALCHEMY_DATABASE_URL = "sqlite:///:memory:"

engine = create_engine(
    SQLALCHEMY_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture(scope="function")
def db_session():
    """Create a fresh database session for each test."""
    init_db(bind=engine)
    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture(scope="function")
def file_session_factory(tmp_path):
    """Session factory over a file-backed SQLite database, for multi-threaded tests."""
    file_engine = build_engine(f"sqlite:///{tmp_path / 'pmta_test.db'}")
    init_db(bind=file_engine)
    factory = sessionmaker(autocommit=False, autoflush=False, bind=file_engine)
    yield factory
    file_engine.dispose()


@pytest.fixture
def make_file(db_session):
    """Create UploadedFile rows; completed by default."""
    counter = {"n": 0}

    def _make(name=None, status=ProcessingStatus.COMPLETED, detected_type="tran"):
        counter["n"] += 1
        uploaded = UploadedFile(
            file_name=name or f"log_{counter['n']}.csv",
            content_hash=f"hash-{counter['n']}",
            file_size=100,
            detected_type=detected_type,
            status=status,
        )
        db_session.add(uploaded)
        db_session.commit()
        db_session.refresh(uploaded)
        return uploaded

    return _make


@pytest.fixture
def add_events(db_session):
    """Insert Event rows for a file. Each row is a dict of Event fields."""

    def _add(file_id, rows):
        for fields in rows:
            db_session.add(Event(file_id=file_id, **fields))
        db_session.commit()

    return _add


@pytest.fixture
def seed_bucket(db_session):
    """Merge one aggregate bucket directly."""

    def _seed(file_id, time_bucket: datetime, event_type="tran", job_id=None, sender=None,
              recipient_domain=None, vmta=None, **delta):
        key = {
            "time_bucket": time_bucket,
            "event_type": event_type,
            "job_id": job_id,
            "sender": sender,
            "recipient_domain": recipient_domain,
            "vmta": vmta,
            "file_id": file_id,
        }
        AggregateRepository(db_session).merge_aggregate(key, delta)
        db_session.commit()
        return key

    return _seed
