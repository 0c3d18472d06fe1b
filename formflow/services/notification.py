"""
Notification Service.

Central service for creating and querying in-app notifications. The
workflow engine calls ``notify`` after each transition; a failed insert is
confined to its SAVEPOINT and logged, never propagated to the transition.
"""

import logging
from datetime import datetime, timezone

from sqlalchemy.exc import SQLAlchemyError

from formflow.models import db
from formflow.models.notification import Notification

logger = logging.getLogger(__name__)


class NotificationService:
    """Stateless service class for notification operations."""

    # ── Create ────────────────────────────────────────────────────────────

    @staticmethod
    def notify(*, recipient_id, title, message="", type="system",
               reference_id=None, reference_type=""):
        """
        Queue a notification in the caller's transaction.

        Returns:
            The Notification instance, or None if the insert failed.
        """
        if recipient_id is None:
            return None
        notif = Notification(
            recipient_id=recipient_id,
            type=type,
            title=title[:300],
            message=message,
            reference_id=reference_id,
            reference_type=reference_type,
        )
        try:
            with db.session.begin_nested():
                db.session.add(notif)
        except SQLAlchemyError:
            logger.exception(
                "Notification insert failed recipient=%s type=%s", recipient_id, type,
            )
            return None
        return notif

    @staticmethod
    def broadcast(*, recipient_ids, title, message="", type="system",
                  reference_id=None, reference_type=""):
        """Notify several users; duplicates are collapsed."""
        created = []
        for rid in dict.fromkeys(recipient_ids or []):
            notif = NotificationService.notify(
                recipient_id=rid, title=title, message=message, type=type,
                reference_id=reference_id, reference_type=reference_type,
            )
            if notif is not None:
                created.append(notif)
        return created

    # ── Query ─────────────────────────────────────────────────────────────

    @staticmethod
    def list_for_recipient(recipient_id, unread_only=False, limit=50, offset=0):
        """
        Retrieve notifications for a recipient, newest first.
        """
        q = Notification.query.filter_by(recipient_id=recipient_id)
        if unread_only:
            q = q.filter_by(is_read=False)
        total = q.count()
        items = (
            q.order_by(Notification.created_at.desc(), Notification.id.desc())
            .offset(offset).limit(limit).all()
        )
        return items, total

    @staticmethod
    def unread_count(recipient_id):
        return Notification.query.filter_by(recipient_id=recipient_id, is_read=False).count()

    # ── Actions ───────────────────────────────────────────────────────────

    @staticmethod
    def mark_read(notification_id, recipient_id):
        """Mark a single notification as read. Returns None if not the recipient's."""
        notif = db.session.get(Notification, notification_id)
        if notif is None or notif.recipient_id != recipient_id:
            return None
        notif.mark_read()
        db.session.commit()
        return notif

    @staticmethod
    def mark_all_read(recipient_id):
        q = Notification.query.filter_by(recipient_id=recipient_id, is_read=False)
        now = datetime.now(timezone.utc)
        count = q.update({"is_read": True, "read_at": now}, synchronize_session="fetch")
        db.session.commit()
        return count
