"""Core configuration settings loaded from environment variables."""
from functools import lru_cache
from typing import Literal
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    # Core
    APP_ENV: Literal["development", "staging", "production"] = "development"
    APP_NAME: str = "PMTA Insights"
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"
    LOG_JSON: bool = True

    # Database
    DB_TYPE: Literal["mysql", "postgresql", "sqlite"] = "sqlite"
    DB_HOST: str = "localhost"
    DB_PORT: int = 3306
    DB_NAME: str = "pmta_insights"
    DB_USER: str = "pmta_user"
    DB_PASSWORD: str = "change_me"
    SQLITE_PATH: str = "./data/pmta_insights.db"
    DATABASE_URL: str = ""  # Full URL override, takes precedence over DB_* fields

    @property
    def SQLALCHEMY_DATABASE_URI(self) -> str:
        if self.DATABASE_URL:
            return self.DATABASE_URL
        if self.DB_TYPE == "sqlite":
            return f"sqlite:///{self.SQLITE_PATH}"
        if self.DB_TYPE == "postgresql":
            return f"postgresql+psycopg://{self.DB_USER}:{self.DB_PASSWORD}@{self.DB_HOST}:{self.DB_PORT}/{self.DB_NAME}"
        return f"mysql+pymysql://{self.DB_USER}:{self.DB_PASSWORD}@{self.DB_HOST}:{self.DB_PORT}/{self.DB_NAME}"

    # Ingestion
    INGESTION_BATCH_SIZE: int = 1000
    INGESTION_MAX_WORKERS: int = 4
    FILE_TYPE_MATCH_THRESHOLD: float = 0.6  # 60% of a type's headers must be present

    # Incident detection windows (minutes)
    DETECTION_SHORT_WINDOW_MINUTES: int = 15
    DETECTION_LONG_WINDOW_MINUTES: int = 24 * 60
    DETECTION_COMPLAINT_WINDOW_MINUTES: int = 30
    DETECTION_WEEKLY_WINDOW_MINUTES: int = 7 * 24 * 60
    ALERT_COOLDOWN_MINUTES: int = 30
    INCIDENT_AUTO_RESOLVE_MINUTES: int = 120
    DETECTION_USE_FILE_TIME: bool = False  # Use the file's latest event as "now" (backfills)

    # Alert thresholds
    BASELINE_LATENCY_MS: float = 500
    THROTTLING_MULTIPLIER: float = 1.5
    HIGH_LATENCY_MS: float = 5000
    COMPLAINT_RATE_THRESHOLD: float = 0.01  # 1%
    BOUNCE_RATE_THRESHOLD: float = 0.2  # 20%
    MIN_MESSAGES_FOR_BOUNCE: int = 10

    # Risk scoring
    RISK_COMPLAINT_WEIGHT: float = 40
    RISK_BOUNCE_WEIGHT: float = 20
    RISK_MAX_SCORE: int = 100
    RISK_CRITICAL_THRESHOLD: int = 80
    RISK_HIGH_THRESHOLD: int = 60
    RISK_MEDIUM_THRESHOLD: int = 30
    RISK_UPSERT_BATCH_SIZE: int = 50
    RISK_SCORING_SCOPE: Literal["file", "history"] = "file"

    # Scheduler
    SCHEDULER_DETECTION_INTERVAL_MINUTES: int = 5
    SCHEDULER_SWEEP_INTERVAL_MINUTES: int = 30

    # Read cache TTLs (seconds)
    CACHE_INSIGHTS_TTL: int = 60
    CACHE_INCIDENTS_TTL: int = 60
    CACHE_STATS_TTL: int = 30


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


settings = get_settings()
