"""Trigger endpoints for the pipeline stages plus the optional background scheduler.

Each endpoint runs one stage synchronously and returns its summary as JSON:
"/api/scan", "/api/assign-links", "/api/check-links", "/api/sync-status".
"""

from __future__ import annotations

import atexit
import hmac
import os
import threading
from typing import Any, Callable

from apscheduler.schedulers.background import BackgroundScheduler
from flask import Blueprint, abort, current_app, g, jsonify, request
from werkzeug.exceptions import HTTPException

import link_assigner
import link_health
import scrape_sources
import settings
from cleanup_expired import sync_event_status
from db_models import SessionLocal

pipeline_bp = Blueprint("pipeline", __name__)


def get_db():
    if "db" not in g:
        factory = current_app.config.get("SESSION_FACTORY") or SessionLocal
        g.db = factory()
    return g.db


@pipeline_bp.teardown_app_request
def shutdown_session(exception=None):
    db = g.pop("db", None)
    if db is not None:
        if exception:
            db.rollback()
        db.close()


def require_admin() -> bool:
    required = os.environ.get("ADMIN_API_KEY", settings.ADMIN_API_KEY).strip()
    if not required:
        return True
    got = request.headers.get("X-API-Key", "").strip()
    auth = request.headers.get("Authorization", "")
    if auth.lower().startswith("bearer "):
        got = got or auth[7:].strip()
    return bool(got) and hmac.compare_digest(got, required)


def _run_stage(tag: str, fn: Callable[[], dict[str, Any]]):
    if not require_admin():
        abort(401)
    try:
        return jsonify(fn())
    except HTTPException:
        raise
    except Exception as exc:
        print(f"[{tag}][ERROR] {exc}")
        return jsonify({"success": False, "error": str(exc)}), 500


@pipeline_bp.route("/api/scan", methods=["GET", "POST"])
def api_scan():
    def _scan():
        summary = scrape_sources.run_scan(get_db())
        summary.pop("candidates", None)
        return summary

    return _run_stage("scan", _scan)


@pipeline_bp.route("/api/assign-links", methods=["GET", "POST"])
def api_assign_links():
    def _assign():
        db = get_db()
        pool = None
        if request.args.get("scan") in ("1", "true", "yes"):
            pool = scrape_sources.run_scan(db)["candidates"]
        return link_assigner.assign_links(db, pool=pool)

    return _run_stage("assign", _assign)


@pipeline_bp.route("/api/check-links", methods=["GET", "POST"])
def api_check_links():
    return _run_stage("health", lambda: link_health.check_links(get_db()))


@pipeline_bp.route("/api/sync-status", methods=["GET", "POST"])
def api_sync_status():
    return _run_stage("status", lambda: sync_event_status(get_db()))


# ====================== SCHEDULER (OFF BY DEFAULT) ======================

def run_scan_job():
    try:
        summary = scrape_sources.run_scan()
        assigned = link_assigner.assign_links(pool=summary["candidates"])
        print(
            f"[scheduler] Scan stored {summary['count']} candidates; "
            f"assigned {assigned['totalAssigned']} events"
        )
    except Exception as exc:  # pragma: no cover - logging only
        print(f"[scheduler][ERROR] Scan/assign error: {exc}")


def run_health_job():
    try:
        link_health.check_links()
    except Exception as exc:  # pragma: no cover - logging only
        print(f"[scheduler][ERROR] Link check error: {exc}")


def run_status_job():
    try:
        result = sync_event_status()
        print(f"[scheduler] Status sync updated {result['updated']}, deactivated {result['deactivated']}")
    except Exception as exc:  # pragma: no cover - logging only
        print(f"[scheduler][ERROR] Status sync error: {exc}")


def start_scheduler() -> BackgroundScheduler:
    scheduler = BackgroundScheduler()
    jobs = (
        (run_scan_job, settings.SCAN_INTERVAL_MINUTES, "scan_job"),
        (run_health_job, settings.HEALTH_INTERVAL_MINUTES, "health_job"),
        (run_status_job, settings.STATUS_INTERVAL_MINUTES, "status_job"),
    )
    for func, minutes, job_id in jobs:
        scheduler.add_job(
            func,
            "interval",
            minutes=minutes,
            id=job_id,
            replace_existing=True,
            max_instances=1,
            coalesce=True,
        )
    scheduler.start()
    print("[scheduler] Background scheduler started.")
    atexit.register(lambda: scheduler.shutdown(wait=False))
    return scheduler


def trigger_startup_scan():
    def _run():
        print("[scheduler] Running initial scan on startup...")
        run_scan_job()

    t = threading.Thread(target=_run, daemon=True)
    t.start()


_SCHEDULER_STARTED = False


def maybe_start_scheduler() -> bool:
    global _SCHEDULER_STARTED
    if _SCHEDULER_STARTED:
        return False
    # Avoid double-starting under Flask reloader: only start on the main process when the flag exists.
    reload_flag = os.environ.get("WERKZEUG_RUN_MAIN")
    if reload_flag is not None and reload_flag != "true":
        return False

    trigger_startup_scan()
    start_scheduler()
    _SCHEDULER_STARTED = True
    return True
