"""
Form Workflow Service
Scheduling model.

Models:
    - ScheduledJob: persisted schedule registry (run history + config)
"""

from datetime import datetime, timezone

from formflow.models import db
from formflow.utils.helpers import iso

JOB_RUN_STATUSES = {"success", "failed", "skipped"}


class ScheduledJob(db.Model):
    """
    Registry row for one maintenance job.

    Rows are created at startup from the in-process job registry; the
    schedule itself is advisory and consumed by whatever cron/worker runs
    ``flask run-job``.
    """

    __tablename__ = "scheduled_jobs"

    id = db.Column(db.Integer, primary_key=True)
    job_name = db.Column(db.String(100), unique=True, nullable=False,
                         comment="audit_log_retention, overdue_form_scanner, ...")
    description = db.Column(db.String(500), default="")
    schedule_config = db.Column(db.JSON, default=dict,
                                comment='{"hour": 2, "minute": 0} or {"day_of_week": "mon", ...}')
    is_enabled = db.Column(db.Boolean, nullable=False, default=True)

    last_run_at = db.Column(db.DateTime(timezone=True), nullable=True)
    last_run_status = db.Column(db.String(20), nullable=True, comment="success, failed, skipped")
    last_run_duration_ms = db.Column(db.Integer, nullable=True)
    last_run_result = db.Column(db.JSON, nullable=True)
    run_count = db.Column(db.Integer, nullable=False, default=0)
    error_count = db.Column(db.Integer, nullable=False, default=0)
    last_error = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(db.DateTime(timezone=True),
                           default=lambda: datetime.now(timezone.utc),
                           onupdate=lambda: datetime.now(timezone.utc))

    def record_run(self, *, status="success", duration_ms=0, result=None, error=None):
        """Record a job execution."""
        self.last_run_at = datetime.now(timezone.utc)
        self.last_run_status = status
        self.last_run_duration_ms = duration_ms
        self.last_run_result = result
        self.run_count = (self.run_count or 0) + 1
        if status == "failed":
            self.error_count = (self.error_count or 0) + 1
            self.last_error = str(error) if error else None

    def to_dict(self):
        return {
            "id": self.id,
            "job_name": self.job_name,
            "description": self.description,
            "schedule_config": self.schedule_config,
            "is_enabled": self.is_enabled,
            "last_run_at": iso(self.last_run_at),
            "last_run_status": self.last_run_status,
            "last_run_duration_ms": self.last_run_duration_ms,
            "last_run_result": self.last_run_result,
            "run_count": self.run_count,
            "error_count": self.error_count,
            "last_error": self.last_error,
        }

    def __repr__(self):
        return f"<ScheduledJob {self.job_name} enabled={self.is_enabled}>"
