"""
Form Workflow Service
Template domain model.

Models:
    - FormTemplate: a distributor's form definition (field schema + sharing).
    - template_shares: association table (template ↔ recipient user).

Field schema (``fields`` JSON list), one dict per field:
    {
        "id": "email",                   # unique within the template
        "type": "text",                  # FIELD_TYPES
        "label": "Email",
        "required": true,
        "options": [{"label": "A", "value": "a"}],   # select / radio
        "validation": {
            "isEmail": true, "isNumeric": false,     # legacy flags
            "rules": [{"type": "maxLength", "value": 50, "message": "..."}]
        }
    }

Once the template has been shared, ``schema_frozen_at`` is set and the field
list can no longer be edited; clone the template to change it.
"""

from datetime import datetime, timezone

from formflow.models import db
from formflow.models.soft_delete import SoftDeleteMixin
from formflow.utils.helpers import as_utc, iso

# ── Constants ────────────────────────────────────────────────────────────────

FIELD_TYPES = {
    "text", "textarea", "number", "email", "select",
    "date", "checkbox", "radio", "file", "header",
}

# Fields of these types never carry a value.
DISPLAY_ONLY_FIELD_TYPES = {"header"}

TEMPLATE_LIST_FILTERS = {"all", "owned", "shared_with_me", "public"}


template_shares = db.Table(
    "template_shares",
    db.Column(
        "template_id", db.Integer,
        db.ForeignKey("form_templates.id", ondelete="CASCADE"), primary_key=True,
    ),
    db.Column(
        "user_id", db.Integer,
        db.ForeignKey("users.id", ondelete="CASCADE"), primary_key=True,
    ),
    db.Column("shared_at", db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc)),
)


class FormTemplate(SoftDeleteMixin, db.Model):
    """
    Form definition authored by a distributor.

    Business rules:
    - ``fields`` is immutable once ``schema_frozen_at`` is set (first share).
    - ``allow_delegation=False`` puts the template in restricted mode: a
      saved draft is auto-approved and cannot be delegated.
    - Soft-deleted only, and only while no live assignment references it.
    """

    __tablename__ = "form_templates"

    id = db.Column(db.Integer, primary_key=True)
    title = db.Column(db.String(300), nullable=False)
    description = db.Column(db.Text, default="")
    fields = db.Column(db.JSON, nullable=False, default=list)

    created_by = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )

    is_public = db.Column(db.Boolean, nullable=False, default=False)
    allow_delegation = db.Column(db.Boolean, nullable=False, default=True)
    allow_multiple_submissions = db.Column(db.Boolean, nullable=False, default=False)
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    deadline = db.Column(db.DateTime(timezone=True), nullable=True)

    schema_frozen_at = db.Column(
        db.DateTime(timezone=True), nullable=True,
        comment="Set on first share; fields are read-only afterwards",
    )

    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(
        db.DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    creator = db.relationship("User", foreign_keys=[created_by])
    shared_users = db.relationship("User", secondary=template_shares, lazy="selectin")

    # ── Helpers ──────────────────────────────────────────────────────────

    @property
    def is_schema_frozen(self) -> bool:
        return self.schema_frozen_at is not None

    @property
    def shared_user_ids(self) -> list[int]:
        return sorted(u.id for u in self.shared_users)

    @property
    def is_past_deadline(self) -> bool:
        return self.deadline is not None and as_utc(self.deadline) < datetime.now(timezone.utc)

    def field_ids(self) -> list[str]:
        return [f.get("id") for f in (self.fields or []) if f.get("id")]

    def freeze_schema(self):
        if self.schema_frozen_at is None:
            self.schema_frozen_at = datetime.now(timezone.utc)

    def is_accessible_by(self, user) -> bool:
        """Creator, shared recipient, public template or admin."""
        if user is None:
            return False
        return (
            user.is_admin
            or self.created_by == user.id
            or self.is_public
            or user.id in self.shared_user_ids
        )

    def to_dict(self):
        return {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "fields": self.fields or [],
            "created_by": self.created_by,
            "shared_with_users": self.shared_user_ids,
            "is_public": self.is_public,
            "allow_delegation": self.allow_delegation,
            "allow_multiple_submissions": self.allow_multiple_submissions,
            "is_active": self.is_active,
            "deadline": iso(self.deadline),
            "schema_frozen": self.is_schema_frozen,
            "schema_frozen_at": iso(self.schema_frozen_at),
            "created_at": iso(self.created_at),
            "updated_at": iso(self.updated_at),
        }

    def __repr__(self):
        return f"<FormTemplate {self.id}: {self.title[:40]}>"
