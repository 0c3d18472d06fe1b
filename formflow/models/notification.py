"""
Form Workflow Service
Notification domain model.

Models:
    - Notification: in-app notification record with read tracking
"""

from datetime import datetime, timezone

from formflow.models import db
from formflow.utils.helpers import iso

# ── Constants ────────────────────────────────────────────────────────────────

NOTIFICATION_TYPES = {
    "form_shared", "form_delegated", "form_marked_back", "form_approved",
    "form_finalized", "form_submitted", "form_reminder", "form_overdue",
    "system",
}


class Notification(db.Model):
    """
    In-app notification entity.

    One record per recipient per event. ``reference_type``/``reference_id``
    point at the workflow object the UI should open.
    """

    __tablename__ = "notifications"

    id = db.Column(db.Integer, primary_key=True)
    recipient_id = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    type = db.Column(db.String(30), nullable=False, default="system")
    title = db.Column(db.String(300), nullable=False)
    message = db.Column(db.Text, default="")

    reference_type = db.Column(db.String(30), default="", comment="form_assignment | form_template")
    reference_id = db.Column(db.Integer, nullable=True)

    is_read = db.Column(db.Boolean, nullable=False, default=False)
    read_at = db.Column(db.DateTime(timezone=True), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))

    def mark_read(self):
        self.is_read = True
        self.read_at = datetime.now(timezone.utc)

    def to_dict(self):
        return {
            "id": self.id,
            "recipient_id": self.recipient_id,
            "type": self.type,
            "title": self.title,
            "message": self.message,
            "reference_type": self.reference_type,
            "reference_id": self.reference_id,
            "is_read": self.is_read,
            "read_at": iso(self.read_at),
            "created_at": iso(self.created_at),
        }

    def __repr__(self):
        return f"<Notification {self.id}: {self.title[:40]}>"
