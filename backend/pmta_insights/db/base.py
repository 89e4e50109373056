"""Database base configuration."""
from datetime import datetime
from pathlib import Path
from sqlalchemy import create_engine, Column, DateTime
from sqlalchemy.orm import DeclarativeBase, sessionmaker

from pmta_insights.core.config import settings


class Base(DeclarativeBase):
    """Base class for all database models."""


class TimestampMixin:
    """Common columns for all tables."""

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)


def build_engine(url: str):
    """Create an engine with the pool settings appropriate for the backend."""
    if url.startswith("sqlite"):
        if ":memory:" not in url:
            Path(url.split("///", 1)[-1]).parent.mkdir(parents=True, exist_ok=True)
        # Concurrent ingestion threads wait on the SQLite write lock instead of failing
        return create_engine(
            url,
            connect_args={"check_same_thread": False, "timeout": 30},
            echo=False
        )
    return create_engine(
        url,
        pool_pre_ping=True,
        pool_recycle=300,
        echo=False
    )


engine = build_engine(settings.SQLALCHEMY_DATABASE_URI)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def init_db(bind=None):
    """Create all tables that do not exist yet."""
    import pmta_insights.db.models  # noqa: F401  registers models on the metadata
    Base.metadata.create_all(bind=bind or engine)
