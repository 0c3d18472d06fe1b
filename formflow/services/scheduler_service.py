"""
Scheduler Service.

Registry and runner for the maintenance jobs. The service does not keep a
clock of its own: cron (or any worker) calls ``flask run-job <name>`` on the
schedule stored in ``ScheduledJob.schedule_config``, and admins can trigger
a run through the API. Every run is recorded on the job's row.

Architecture:
    - Jobs register themselves with ``@register_job(name)``
    - ``SchedulerService.ensure_jobs_registered`` mirrors the registry into
      the ``scheduled_jobs`` table
    - ``SchedulerService.run_job`` executes inside an application context
"""

from __future__ import annotations

import logging
import time
from typing import Callable

from flask import Flask, current_app, has_app_context

from formflow.models import db
from formflow.models.scheduling import ScheduledJob

logger = logging.getLogger(__name__)


# ═══════════════════════════════════════════════════════════════════════════
#  Job Registry
# ═══════════════════════════════════════════════════════════════════════════

_job_registry: dict[str, Callable] = {}

DEFAULT_SCHEDULES = {
    "audit_log_retention": {"hour": "0", "minute": "0", "description": "Daily at midnight"},
    "stale_notification_cleanup": {"hour": "2", "minute": "0", "description": "Daily at 02:00"},
    "overdue_form_scanner": {"hour": "8", "minute": "0", "description": "Daily at 08:00"},
    "user_snapshot_resync": {"day_of_week": "mon", "hour": "3", "minute": "0",
                             "description": "Mondays at 03:00"},
}


def register_job(name: str):
    """Decorator to register a job function.

    Usage:
        @register_job("overdue_form_scanner")
        def scan_overdue_forms(app):
            ...
    """
    def decorator(fn: Callable) -> Callable:
        _job_registry[name] = fn
        return fn
    return decorator


def get_registered_jobs() -> dict[str, Callable]:
    return dict(_job_registry)


def _get_default_schedule(job_name: str) -> dict:
    return dict(DEFAULT_SCHEDULES.get(job_name, {"hour": "0", "minute": "0",
                                                 "description": "Daily at midnight"}))


class SchedulerService:
    """
    Job registry front-end.

    Runs reuse the caller's application context when there is one, so a run
    triggered from a request or a test shares its database session.
    """

    _app: Flask | None = None

    @classmethod
    def init_app(cls, app: Flask) -> None:
        # Importing the module registers the jobs.
        from formflow.services import scheduled_jobs  # noqa: F401

        cls._app = app
        app.extensions["scheduler"] = cls
        logger.info("SchedulerService initialized with %d registered jobs", len(_job_registry))

    @classmethod
    def _run_in_context(cls, fn, *args):
        if has_app_context():
            return fn(current_app._get_current_object(), *args)
        if cls._app is None:
            raise RuntimeError("SchedulerService is not initialised")
        with cls._app.app_context():
            return fn(cls._app, *args)

    @classmethod
    def ensure_jobs_registered(cls) -> list[ScheduledJob]:
        """Create a ScheduledJob row for every registered job that lacks one."""
        return cls._run_in_context(_ensure_rows)

    @classmethod
    def run_job(cls, job_name: str, force: bool = False) -> dict:
        """
        Execute a single job by name.

        Disabled jobs are skipped unless ``force`` is set. A failing job is
        logged and recorded as ``failed``; the error is returned, not raised.
        """
        if job_name not in _job_registry:
            return {"job_name": job_name, "status": "error", "error": f"Unknown job: {job_name}"}
        return cls._run_in_context(_execute, job_name, force)

    @classmethod
    def list_jobs(cls) -> list[dict]:
        jobs = []
        for name in sorted(_job_registry):
            job_record = ScheduledJob.query.filter_by(job_name=name).first()
            jobs.append({
                "job_name": name,
                "registered": True,
                "db_record": job_record.to_dict() if job_record else None,
            })
        return jobs

    @classmethod
    def toggle_job(cls, job_name: str, enabled: bool) -> dict | None:
        job_record = ScheduledJob.query.filter_by(job_name=job_name).first()
        if not job_record:
            return None
        job_record.is_enabled = enabled
        db.session.commit()
        return job_record.to_dict()


def _ensure_rows(app) -> list[ScheduledJob]:
    created = []
    for name, fn in _job_registry.items():
        if ScheduledJob.query.filter_by(job_name=name).first():
            continue
        job = ScheduledJob(
            job_name=name,
            description=(fn.__doc__ or f"Scheduled job: {name}").strip().splitlines()[0],
            schedule_config=_get_default_schedule(name),
            is_enabled=True,
        )
        db.session.add(job)
        created.append(job)
    if created:
        db.session.commit()
        logger.info("Created %d scheduled job records", len(created))
    return created


def _execute(app, job_name: str, force: bool) -> dict:
    _ensure_rows(app)
    job_record = ScheduledJob.query.filter_by(job_name=job_name).first()
    if job_record is not None and not job_record.is_enabled and not force:
        logger.info("Job %s is disabled; skipping", job_name)
        job_record.record_run(status="skipped", duration_ms=0, result={"reason": "disabled"})
        db.session.commit()
        return {"job_name": job_name, "status": "skipped", "duration_ms": 0, "result": None, "error": None}

    start = time.monotonic()
    result = None
    error = None
    status = "success"
    try:
        result = _job_registry[job_name](app)
    except Exception as exc:
        db.session.rollback()
        status = "failed"
        error = str(exc)
        logger.exception("Job %s failed: %s", job_name, exc)

    duration_ms = int((time.monotonic() - start) * 1000)

    job_record = ScheduledJob.query.filter_by(job_name=job_name).first()
    if job_record is not None:
        job_record.record_run(
            status=status,
            duration_ms=duration_ms,
            result=result if isinstance(result, dict) else {"output": str(result)},
            error=error,
        )
        db.session.commit()

    logger.info(
        "Job finished",
        extra={"job_name": job_name, "status": status, "duration_ms": duration_ms},
    )
    return {
        "job_name": job_name,
        "status": status,
        "duration_ms": duration_ms,
        "result": result,
        "error": error,
    }
