"""
Scheduled Jobs.

Concrete maintenance jobs. Each one is idempotent: running it twice in a
row changes nothing the second time, and a missed run only delays cleanup.

Jobs:
    - audit_log_retention: Deletes audit rows past AUDIT_RETENTION_DAYS
    - stale_notification_cleanup: Deletes old read notifications
    - overdue_form_scanner: Notifies holders of forms past their deadline
    - user_snapshot_resync: Repairs denormalised user names on assignments
"""

from __future__ import annotations

import logging
from datetime import date, datetime, timedelta, timezone
from typing import Any

from formflow.models import db
from formflow.models.audit import AuditLog
from formflow.models.form import FormTemplate
from formflow.models.notification import Notification
from formflow.models.workflow import STATUS_SUBMITTED, FormAssignment
from formflow.services.scheduler_service import register_job
from formflow.services.system_config_service import invalidate_snapshot, load_snapshot

logger = logging.getLogger(__name__)


def _fresh_snapshot():
    invalidate_snapshot()
    return load_snapshot()


# ═══════════════════════════════════════════════════════════════════════════
#  Job 1: Audit Log Retention
# ═══════════════════════════════════════════════════════════════════════════

@register_job("audit_log_retention")
def purge_expired_audit_logs(app) -> dict[str, Any]:
    """Delete audit rows older than AUDIT_RETENTION_DAYS (-1 keeps everything)."""
    days = _fresh_snapshot().audit_retention_days
    if days < 0:
        return {"deleted": 0, "skipped": True, "retention_days": days}

    cutoff = datetime.now(timezone.utc) - timedelta(days=days)
    deleted = AuditLog.query.filter(AuditLog.timestamp < cutoff).delete(synchronize_session=False)
    db.session.commit()
    logger.info("Audit retention: deleted %d rows older than %d days", deleted, days)
    return {"deleted": deleted, "skipped": False, "retention_days": days}


# ═══════════════════════════════════════════════════════════════════════════
#  Job 2: Stale Notification Cleanup
# ═══════════════════════════════════════════════════════════════════════════

@register_job("stale_notification_cleanup")
def cleanup_stale_notifications(app) -> dict[str, Any]:
    """Delete read notifications older than NOTIFICATION_RETENTION_DAYS."""
    days = _fresh_snapshot().notification_retention_days
    cutoff = datetime.now(timezone.utc) - timedelta(days=days)
    deleted = Notification.query.filter(
        Notification.is_read.is_(True),
        Notification.created_at < cutoff,
    ).delete(synchronize_session=False)
    db.session.commit()
    logger.info("Stale notification cleanup: deleted %d", deleted)
    return {"deleted": deleted, "retention_days": days}


# ═══════════════════════════════════════════════════════════════════════════
#  Job 3: Overdue Form Scanner
# ═══════════════════════════════════════════════════════════════════════════

@register_job("overdue_form_scanner")
def scan_overdue_forms(app) -> dict[str, Any]:
    """Notify current holders of open assignments whose template deadline passed."""
    from formflow.services.notification import NotificationService

    now = datetime.now(timezone.utc)
    today = date.today()
    results = {"overdue": 0, "notifications_created": 0}

    rows = (
        FormAssignment.query
        .join(FormTemplate, FormTemplate.id == FormAssignment.template_id)
        .filter(
            FormTemplate.deleted_at.is_(None),
            FormTemplate.is_active.is_(True),
            FormTemplate.deadline.isnot(None),
            FormTemplate.deadline < now,
            FormAssignment.is_finalized.is_(False),
            FormAssignment.is_delegated.is_(False),
            FormAssignment.status != STATUS_SUBMITTED,
        )
        .all()
    )
    for assignment in rows:
        results["overdue"] += 1
        if assignment.last_overdue_notice_on == today:
            continue
        notif = NotificationService.notify(
            recipient_id=assignment.assigned_to,
            type="form_overdue",
            title=f"Overdue: {assignment.template.title}",
            message=f"The deadline for this form was {assignment.template.deadline:%Y-%m-%d}.",
            reference_id=assignment.id,
            reference_type="form_assignment",
        )
        if notif is not None:
            FormAssignment.query.filter_by(id=assignment.id).update(
                {FormAssignment.last_overdue_notice_on: today},
                synchronize_session="fetch",
            )
            results["notifications_created"] += 1

    db.session.commit()
    logger.info(
        "Overdue scanner: %d overdue, %d notified",
        results["overdue"], results["notifications_created"],
    )
    return results


# ═══════════════════════════════════════════════════════════════════════════
#  Job 4: User Snapshot Resync
# ═══════════════════════════════════════════════════════════════════════════

@register_job("user_snapshot_resync")
def resync_user_snapshots(app) -> dict[str, Any]:
    """Rewrite denormalised user names/designations on assignments."""
    from formflow.services.user_service import resync_all_snapshots

    stats = resync_all_snapshots()
    db.session.commit()
    logger.info("Snapshot resync: %s", stats)
    return stats
