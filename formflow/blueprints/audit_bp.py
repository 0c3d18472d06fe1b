"""
Audit blueprint.

Endpoints:
    GET  /api/v1/audit-logs               list / filter audit logs (admin)
    GET  /api/v1/audit-logs/<int:log_id>  single audit entry (admin)
"""

from flask import Blueprint, request

from formflow.auth import require_admin
from formflow.core.exceptions import NotFoundError
from formflow.models import db
from formflow.models.audit import AuditLog
from formflow.utils.errors import api_ok

audit_bp = Blueprint("audit", __name__, url_prefix="/api/v1/audit-logs")


@audit_bp.route("", methods=["GET"])
@require_admin
def list_audit_logs():
    """
    Return paginated audit logs with optional filters.

    Query params:
        resource     form_assignment | form_template | submission | ...
        resource_id  filter by resource PK
        actor_id     filter by acting user
        action       filter by action string (prefix match)
        page         page number (default 1)
        per_page     items per page (default 50, max 200)
    """
    q = AuditLog.query

    resource = request.args.get("resource")
    if resource:
        q = q.filter(AuditLog.resource == resource)

    resource_id = request.args.get("resource_id")
    if resource_id:
        q = q.filter(AuditLog.resource_id == str(resource_id))

    actor_id = request.args.get("actor_id", type=int)
    if actor_id is not None:
        q = q.filter(AuditLog.actor_user_id == actor_id)

    action = request.args.get("action")
    if action:
        q = q.filter(AuditLog.action.startswith(action))

    q = q.order_by(AuditLog.timestamp.desc(), AuditLog.id.desc())

    page = max(1, request.args.get("page", 1, type=int))
    per_page = min(200, max(1, request.args.get("per_page", 50, type=int)))
    paginated = q.paginate(page=page, per_page=per_page, error_out=False)

    return api_ok("Audit logs fetched", {
        "items": [log.to_dict() for log in paginated.items],
        "total": paginated.total,
        "page": paginated.page,
        "per_page": paginated.per_page,
        "pages": paginated.pages,
    })


@audit_bp.route("/<int:log_id>", methods=["GET"])
@require_admin
def get_audit_log(log_id):
    log = db.session.get(AuditLog, log_id)
    if log is None:
        raise NotFoundError(resource="AuditLog", resource_id=log_id)
    return api_ok("Audit log fetched", log.to_dict())
