"""
Form Workflow Service
Audit domain model.

Models:
    - AuditLog: append-only trail of workflow and administrative events.
"""

import logging
from datetime import datetime, timezone

from flask import has_request_context, request
from sqlalchemy.exc import SQLAlchemyError

from formflow.models import db
from formflow.utils.helpers import get_client_ip, iso

logger = logging.getLogger(__name__)

# ── Constants ────────────────────────────────────────────────────────────────

AUDIT_RESOURCES = {"form_assignment", "form_template", "submission", "system_config", "user"}

AUDIT_ACTIONS = {
    # Workflow
    "workflow.save_draft",
    "workflow.delegate",
    "workflow.mark_back",
    "workflow.approve",
    "workflow.mark_final",
    "workflow.submit_to_distributor",
    # Template
    "template.create",
    "template.update",
    "template.delete",
    "template.clone",
    "template.share",
    "template.unshare",
    # Generic
    "create",
    "update",
    "delete",
}


class AuditLog(db.Model):
    """
    Immutable audit trail.

    One row per action. ``diff`` carries ``{"before": {...}, "after": {...}}``
    for state transitions and ``{field: {old, new}}`` for edits.
    """

    __tablename__ = "audit_logs"
    __table_args__ = (
        db.Index("idx_audit_resource", "resource", "resource_id"),
        db.Index("idx_audit_actor", "actor_user_id"),
        db.Index("idx_audit_action", "action"),
        db.Index("idx_audit_ts", "timestamp"),
    )

    id = db.Column(db.Integer, primary_key=True)
    actor_user_id = db.Column(
        db.Integer,
        db.ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
        comment="Null for system/job entries",
    )
    action = db.Column(db.String(60), nullable=False, comment="workflow.approve | template.share | …")
    resource = db.Column(db.String(30), nullable=False, comment="form_assignment | form_template | …")
    resource_id = db.Column(db.String(36), nullable=False)
    diff = db.Column(db.JSON, nullable=False, default=dict)

    # Request metadata (empty for jobs and CLI)
    ip_address = db.Column(db.String(45), nullable=True)
    user_agent = db.Column(db.String(300), nullable=True)
    method = db.Column(db.String(10), nullable=True)
    path = db.Column(db.String(300), nullable=True)

    timestamp = db.Column(
        db.DateTime(timezone=True), nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "actor_user_id": self.actor_user_id,
            "action": self.action,
            "resource": self.resource,
            "resource_id": self.resource_id,
            "diff": self.diff or {},
            "ip_address": self.ip_address,
            "user_agent": self.user_agent,
            "method": self.method,
            "path": self.path,
            "timestamp": iso(self.timestamp),
        }

    def __repr__(self):
        return f"<AuditLog {self.id}: {self.action} on {self.resource}/{self.resource_id}>"


# ── Convenience writer ───────────────────────────────────────────────────────

def write_audit(
    *,
    action: str,
    resource: str,
    resource_id,
    actor_user_id: int | None = None,
    diff: dict | None = None,
) -> AuditLog | None:
    """
    Append a single audit row inside a SAVEPOINT.

    The caller keeps transaction control: the row is committed together with
    the business change. A failing insert only rolls back its savepoint and
    is logged; the surrounding operation carries on. Returns None when audit
    logging is switched off (IS_AUDIT_LOGGING_ENABLED) or the insert failed.
    """
    from formflow.services.system_config_service import load_snapshot

    if not load_snapshot().audit_logging_enabled:
        return None

    log = AuditLog(
        actor_user_id=actor_user_id,
        action=action,
        resource=resource,
        resource_id=str(resource_id),
        diff=diff or {},
    )
    if has_request_context():
        log.ip_address = get_client_ip()
        log.user_agent = (request.headers.get("User-Agent") or "")[:300] or None
        log.method = request.method
        log.path = request.path[:300]

    try:
        with db.session.begin_nested():
            db.session.add(log)
    except SQLAlchemyError:
        logger.exception(
            "Audit write failed action=%s resource=%s/%s", action, resource, resource_id,
        )
        return None
    return log
