"""
Admin blueprint: maintenance job management.

Routes:
  GET    /admin/jobs                                 – registered jobs + last run
  POST   /admin/jobs/<name>/run                      – run a job now
  POST   /admin/jobs/<name>/toggle                   – enable / disable
"""

from flask import Blueprint, request

from formflow.auth import require_admin
from formflow.core.exceptions import NotFoundError
from formflow.services.scheduler_service import SchedulerService, get_registered_jobs
from formflow.utils.errors import E, api_error, api_ok

admin_bp = Blueprint("admin", __name__, url_prefix="/api/v1/admin")


@admin_bp.route("/jobs", methods=["GET"])
@require_admin
def list_jobs():
    SchedulerService.ensure_jobs_registered()
    return api_ok("Jobs fetched", {"items": SchedulerService.list_jobs()})


@admin_bp.route("/jobs/<name>/run", methods=["POST"])
@require_admin
def run_job(name):
    if name not in get_registered_jobs():
        raise NotFoundError(resource="Job", resource_id=name)
    result = SchedulerService.run_job(name, force=True)
    if result["status"] == "failed":
        return api_error(E.INTERNAL, f"Job {name} failed", errors={"error": result["error"]})
    return api_ok(f"Job {name} finished", result)


@admin_bp.route("/jobs/<name>/toggle", methods=["POST"])
@require_admin
def toggle_job(name):
    """Body: { enabled: bool }"""
    body = request.get_json(silent=True) or {}
    if "enabled" not in body:
        return api_error(E.VALIDATION_REQUIRED, "enabled is required")
    SchedulerService.ensure_jobs_registered()
    job = SchedulerService.toggle_job(name, bool(body["enabled"]))
    if job is None:
        raise NotFoundError(resource="Job", resource_id=name)
    return api_ok("Job updated", job)
