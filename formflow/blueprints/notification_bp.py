"""
Notification Blueprint.

Routes:
  GET    /notifications                              – my notifications (+ unread count)
  POST   /notifications/<nid>/read                   – mark one read
  POST   /notifications/read-all                     – mark all read
"""

from flask import Blueprint, request

from formflow.auth import current_user, require_auth
from formflow.core.exceptions import NotFoundError
from formflow.services.notification import NotificationService
from formflow.utils.errors import api_ok

notification_bp = Blueprint("notifications", __name__, url_prefix="/api/v1/notifications")


@notification_bp.route("", methods=["GET"])
@require_auth
def list_notifications():
    """Query: unread_only=true, limit (default 50, max 200), offset"""
    user = current_user()
    unread_only = request.args.get("unread_only", "").lower() == "true"
    limit = min(200, max(1, request.args.get("limit", 50, type=int)))
    offset = max(0, request.args.get("offset", 0, type=int))

    items, total = NotificationService.list_for_recipient(
        user.id, unread_only=unread_only, limit=limit, offset=offset,
    )
    return api_ok("Notifications fetched", {
        "items": [n.to_dict() for n in items],
        "total": total,
        "total_unread": NotificationService.unread_count(user.id),
    })


@notification_bp.route("/<int:nid>/read", methods=["POST"])
@require_auth
def mark_read(nid):
    notif = NotificationService.mark_read(nid, current_user().id)
    if notif is None:
        raise NotFoundError(resource="Notification", resource_id=nid)
    return api_ok("Notification marked as read", notif.to_dict())


@notification_bp.route("/read-all", methods=["POST"])
@require_auth
def mark_all_read():
    count = NotificationService.mark_all_read(current_user().id)
    return api_ok(f"{count} notification(s) marked as read", {"updated": count})
