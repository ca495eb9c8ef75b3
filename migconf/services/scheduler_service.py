"""
Migration Conference Platform
Scheduler Service.

Lightweight background job scheduler: registered job functions run on a
fixed interval from a daemon thread inside the Flask app context. Jobs can
also be triggered manually through the API.

Architecture:
    - SchedulerService: manages job registration, the interval loop and execution
    - Jobs are stored in the ScheduledJob model for run history
    - Pluggable job functions registered via decorator
"""

from __future__ import annotations

import logging
import threading
import time
from typing import Callable

from flask import Flask

from migconf.models import db
from migconf.models.scheduling import ScheduledJob

logger = logging.getLogger(__name__)


# ═══════════════════════════════════════════════════════════════════════════
#  Job Registry
# ═══════════════════════════════════════════════════════════════════════════

_job_registry: dict[str, Callable] = {}


def register_job(name: str):
    """Decorator to register a job function.

    Usage:
        @register_job("conference_notification_sweep")
        def notification_sweep(app):
            ...
    """
    def decorator(fn: Callable) -> Callable:
        _job_registry[name] = fn
        return fn
    return decorator


def get_registered_jobs() -> dict[str, Callable]:
    """Return all registered job functions."""
    return dict(_job_registry)


class SchedulerService:
    """
    Lightweight scheduler service.

    Manages job registration, persistence, and execution.
    Jobs are executed within Flask app context.
    """

    _app: Flask | None = None
    _thread: threading.Thread | None = None
    _stop: threading.Event | None = None

    @classmethod
    def init_app(cls, app: Flask) -> None:
        """Initialize scheduler with Flask app context."""
        cls._app = app
        app.extensions["scheduler"] = cls
        logger.info("SchedulerService initialized with %d registered jobs",
                    len(_job_registry))

    @classmethod
    def ensure_jobs_registered(cls) -> list[ScheduledJob]:
        """
        Ensure all registered jobs have a corresponding DB record.
        Creates missing records with default config.
        """
        if not cls._app:
            return []

        created = []
        with cls._app.app_context():
            for name, fn in _job_registry.items():
                existing = ScheduledJob.query.filter_by(job_name=name).first()
                if not existing:
                    job = ScheduledJob(
                        job_name=name,
                        description=(fn.__doc__ or f"Scheduled job: {name}").strip(),
                        schedule_type="interval",
                        schedule_config={"minutes": _default_interval(cls._app, name)},
                        status="active",
                        is_enabled=True,
                    )
                    db.session.add(job)
                    created.append(job)
            if created:
                db.session.commit()
                logger.info("Created %d scheduled job records", len(created))
        return created

    # ── Interval loop ────────────────────────────────────────────────────

    @classmethod
    def start(cls) -> bool:
        """Start the daemon loop; no-op when already running."""
        if not cls._app or (cls._thread and cls._thread.is_alive()):
            return False
        cls.ensure_jobs_registered()
        cls._stop = threading.Event()
        cls._thread = threading.Thread(target=cls._loop, name="migconf-scheduler", daemon=True)
        cls._thread.start()
        logger.info("Scheduler loop started")
        return True

    @classmethod
    def stop(cls, timeout: float = 5.0) -> None:
        if cls._stop:
            cls._stop.set()
        if cls._thread:
            cls._thread.join(timeout)
        cls._thread = None

    @classmethod
    def _loop(cls) -> None:
        last_run: dict[str, float] = {}
        while not cls._stop.is_set():
            for name in list(_job_registry):
                with cls._app.app_context():
                    record = ScheduledJob.query.filter_by(job_name=name).first()
                    enabled = record.is_enabled if record else True
                    minutes = (record.schedule_config or {}).get("minutes") if record else None
                    db.session.remove()
                interval = 60 * (minutes or _default_interval(cls._app, name))
                if enabled and time.monotonic() - last_run.get(name, float("-inf")) >= interval:
                    last_run[name] = time.monotonic()
                    cls.run_job(name)
            cls._stop.wait(30)

    # ── Execution ────────────────────────────────────────────────────────

    @classmethod
    def run_job(cls, job_name: str) -> dict:
        """
        Execute a single job by name.

        Returns:
            Dict with status, duration_ms, result or error.
        """
        fn = _job_registry.get(job_name)
        if not fn:
            return {"status": "error", "error": f"Unknown job: {job_name}"}

        if not cls._app:
            return {"status": "error", "error": "Scheduler not initialized"}

        start = time.monotonic()
        result = None
        error = None
        status = "success"

        try:
            with cls._app.app_context():
                result = fn(cls._app)
        except Exception as exc:
            status = "failed"
            error = str(exc)
            logger.exception("Job %s failed: %s", job_name, exc, extra={"job_name": job_name})

        duration_ms = int((time.monotonic() - start) * 1000)
        if status == "success":
            logger.info("Job %s finished in %dms", job_name, duration_ms,
                        extra={"job_name": job_name, "duration_ms": duration_ms})

        try:
            with cls._app.app_context():
                job_record = ScheduledJob.query.filter_by(job_name=job_name).first()
                if job_record:
                    job_record.record_run(
                        status=status,
                        duration_ms=duration_ms,
                        result=result if isinstance(result, dict) else {"output": str(result)},
                        error=error,
                    )
                    db.session.commit()
        except Exception:
            logger.exception("Failed to update job record for %s", job_name)

        return {
            "job_name": job_name,
            "status": status,
            "duration_ms": duration_ms,
            "result": result,
            "error": error,
        }

    @classmethod
    def list_jobs(cls) -> list[dict]:
        """List all registered jobs with their DB status."""
        jobs = []
        for name in _job_registry:
            job_record = ScheduledJob.query.filter_by(job_name=name).first()
            jobs.append({
                "job_name": name,
                "registered": True,
                "db_record": job_record.to_dict() if job_record else None,
            })
        return jobs

    @classmethod
    def toggle_job(cls, job_name: str, enabled: bool) -> dict | None:
        """Enable or disable a scheduled job."""
        job_record = ScheduledJob.query.filter_by(job_name=job_name).first()
        if not job_record:
            return None
        job_record.is_enabled = enabled
        job_record.status = "active" if enabled else "paused"
        db.session.commit()
        return job_record.to_dict()


def _default_interval(app: Flask, job_name: str) -> int:
    """Default run interval in minutes for known jobs."""
    check = int(app.config.get("NOTIFICATION_CHECK_INTERVAL_MINUTES", 5))
    defaults = {
        "conference_notification_sweep": check,
        "reminder_dispatch": 60,
    }
    return defaults.get(job_name, check)
