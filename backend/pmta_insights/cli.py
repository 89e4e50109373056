"""
Operator command line for the PMTA Insights pipeline.

Usage:
    pmta-insights init-db
    pmta-insights ingest PATH [PATH ...]
    pmta-insights reaggregate [--file-id N ...]
    pmta-insights detect [--now ISO_TIMESTAMP]
    pmta-insights resolve-incident ID
    pmta-insights scheduler
"""
import argparse
import concurrent.futures
import json
import os
import signal
import sys
import threading

import structlog

from pmta_insights.core.config import settings
from pmta_insights.core.logging import configure_logging
from pmta_insights.db.base import SessionLocal, init_db

logger = structlog.get_logger()


def _print_json(payload) -> None:
    print(json.dumps(payload, indent=2, default=str))


def cmd_init_db(args) -> int:
    init_db()
    print(f"Database ready: {settings.SQLALCHEMY_DATABASE_URI}")
    return 0


def cmd_ingest(args) -> int:
    from pmta_insights.services.files import register_upload
    from pmta_insights.services.pipelines.ingestion import shutdown_executor, submit_file

    futures = {}
    results = []
    db = SessionLocal()
    try:
        for path in args.paths:
            if not os.path.isfile(path):
                results.append({"file": path, "status": "error", "error": "not a file"})
                continue
            upload = register_upload(db, os.path.basename(path), path)
            if upload.duplicate:
                results.append({
                    "file": path,
                    "status": "duplicate",
                    "existing_id": upload.existing_id,
                    "existing_file_name": upload.existing_file_name,
                })
                continue
            futures[submit_file(upload.file_id, path)] = path
    finally:
        db.close()

    for future in concurrent.futures.as_completed(futures):
        path = futures[future]
        try:
            results.append({"file": path, **future.result()})
        except Exception as e:
            results.append({"file": path, "status": "error", "error": str(e)})

    shutdown_executor()
    _print_json(results)
    return 1 if any(r.get("status") == "error" for r in results) else 0


def cmd_reaggregate(args) -> int:
    from pmta_insights.services.pipelines.aggregation import run_reaggregation_sweep

    db = SessionLocal()
    try:
        result = run_reaggregation_sweep(db, file_ids=args.file_ids, triggered_by="cli")
    finally:
        db.close()
    _print_json(result)
    return 1 if result["failed"] else 0


def cmd_detect(args) -> int:
    from pmta_insights.services.analytics.incident_detector import run_incident_detection
    from pmta_insights.services.normalizer import parse_timestamp

    now = None
    if args.now:
        now = parse_timestamp(args.now)
        if now is None:
            print(f"Invalid --now timestamp: {args.now}", file=sys.stderr)
            return 2

    db = SessionLocal()
    try:
        result = run_incident_detection(db, now=now, triggered_by="cli")
    finally:
        db.close()
    _print_json(result)
    return 1 if "error" in result else 0


def cmd_resolve_incident(args) -> int:
    from pmta_insights.services.analytics.incident_detector import resolve_incident

    db = SessionLocal()
    try:
        incident = resolve_incident(db, args.incident_id)
        if incident is None:
            print(f"Incident {args.incident_id} not found", file=sys.stderr)
            return 1
        _print_json({"id": incident.id, "status": incident.status.value, "end_time": incident.end_time})
    finally:
        db.close()
    return 0


def cmd_scheduler(args) -> int:
    from pmta_insights.services.scheduler import init_scheduler, shutdown_scheduler

    if init_scheduler() is None:
        return 1

    stop = threading.Event()
    signal.signal(signal.SIGINT, lambda *_: stop.set())
    signal.signal(signal.SIGTERM, lambda *_: stop.set())
    stop.wait()

    shutdown_scheduler()
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="pmta-insights", description="PMTA log insights pipeline")
    parser.add_argument("--log-level", default=None, help="Override LOG_LEVEL")
    sub = parser.add_subparsers(dest="command", required=True)

    init = sub.add_parser("init-db", help="Create database tables")
    init.set_defaults(func=cmd_init_db)

    ingest = sub.add_parser("ingest", help="Register and ingest PMTA log files")
    ingest.add_argument("paths", nargs="+", help="CSV log files")
    ingest.set_defaults(func=cmd_ingest)

    reaggregate = sub.add_parser("reaggregate", help="Rebuild aggregates for stale or given files")
    reaggregate.add_argument("--file-id", dest="file_ids", type=int, action="append",
                             help="File id to rebuild (repeatable); defaults to stale files")
    reaggregate.set_defaults(func=cmd_reaggregate)

    detect = sub.add_parser("detect", help="Run incident detection once")
    detect.add_argument("--now", default=None, help="Reference time (ISO 8601) for replays")
    detect.set_defaults(func=cmd_detect)

    resolve = sub.add_parser("resolve-incident", help="Resolve an open incident")
    resolve.add_argument("incident_id", type=int)
    resolve.set_defaults(func=cmd_resolve_incident)

    scheduler = sub.add_parser("scheduler", help="Run background detection and sweep jobs")
    scheduler.set_defaults(func=cmd_scheduler)

    return parser


def main(argv=None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    configure_logging(level=args.log_level)
    logger.debug("Running command", command=args.command)
    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
