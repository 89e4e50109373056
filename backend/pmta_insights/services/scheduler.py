"""APScheduler Integration - background jobs for detection and aggregate repair."""
from typing import Optional

import structlog
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger

from pmta_insights.core.config import settings

logger = structlog.get_logger()
_scheduler: Optional[BackgroundScheduler] = None


def get_scheduler():
    global _scheduler
    return _scheduler


def init_scheduler(start: bool = True):
    global _scheduler
    try:
        _scheduler = BackgroundScheduler(timezone="UTC")

        _scheduler.add_job(
            job_incident_detection,
            IntervalTrigger(minutes=settings.SCHEDULER_DETECTION_INTERVAL_MINUTES),
            id="incident_detection", name="Incident Detection",
            replace_existing=True, max_instances=1, coalesce=True,
        )
        _scheduler.add_job(
            job_reaggregation_sweep,
            IntervalTrigger(minutes=settings.SCHEDULER_SWEEP_INTERVAL_MINUTES),
            id="reaggregation_sweep", name="Reaggregation Sweep",
            replace_existing=True, max_instances=1, coalesce=True,
        )

        if start:
            _scheduler.start()
            logger.info("Pipeline scheduler started", jobs=len(_scheduler.get_jobs()))
        return _scheduler
    except Exception as e:
        logger.error("Failed to start scheduler", error=str(e))
        _scheduler = None
        return None


def shutdown_scheduler():
    global _scheduler
    if _scheduler:
        if _scheduler.running:
            _scheduler.shutdown(wait=False)
        logger.info("Pipeline scheduler stopped")
        _scheduler = None


def _get_db():
    from pmta_insights.db.base import SessionLocal
    return SessionLocal()


def job_incident_detection():
    logger.info("Running scheduled incident detection")
    db = _get_db()
    try:
        from pmta_insights.services.analytics.incident_detector import run_incident_detection
        result = run_incident_detection(db, triggered_by="scheduler")
        logger.info("Scheduled incident detection complete", result=result)
    except Exception as e:
        logger.error("Scheduled incident detection failed", error=str(e))
    finally:
        db.close()


def job_reaggregation_sweep():
    logger.info("Running reaggregation sweep")
    db = _get_db()
    try:
        from pmta_insights.services.pipelines.aggregation import run_reaggregation_sweep
        result = run_reaggregation_sweep(db, triggered_by="scheduler")
        logger.info("Reaggregation sweep complete", result=result)
    except Exception as e:
        logger.error("Reaggregation sweep failed", error=str(e))
    finally:
        db.close()


def get_scheduler_status() -> dict:
    if not _scheduler:
        return {"running": False, "jobs": []}
    jobs = []
    for job in _scheduler.get_jobs():
        next_run = getattr(job, "next_run_time", None)
        jobs.append({"id": job.id, "name": job.name, "next_run": str(next_run) if next_run else None})
    return {"running": _scheduler.running, "jobs": jobs}
