"""
Form Workflow Service
Identity model.

Models:
    - User: the people who distribute, fill, delegate and approve forms.

Password / session mechanics live outside this service; a User row only
carries what the workflow reads (name, designation, lab, role).
"""

from datetime import datetime, timezone

from formflow.models import db

# ── Constants ────────────────────────────────────────────────────────────────

ROLES = {"admin", "user"}


class User(db.Model):
    __tablename__ = "users"

    id = db.Column(db.Integer, primary_key=True)
    username = db.Column(db.String(150), nullable=False, unique=True)
    email = db.Column(db.String(200), nullable=True)
    full_name = db.Column(db.String(200), nullable=False, default="")
    designation = db.Column(
        db.String(150), nullable=True,
        comment="Matched against APPROVAL_AUTHORITY_DESIGNATIONS",
    )
    lab_name = db.Column(db.String(150), nullable=True, index=True)
    role = db.Column(db.String(20), nullable=False, default="user", comment="admin | user")
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(
        db.DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"

    @property
    def display_name(self) -> str:
        return self.full_name or self.username

    def to_dict(self):
        return {
            "id": self.id,
            "username": self.username,
            "email": self.email,
            "full_name": self.full_name,
            "designation": self.designation,
            "lab_name": self.lab_name,
            "role": self.role,
            "is_active": self.is_active,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def to_summary(self) -> dict:
        """Compact projection embedded in chain timelines."""
        return {
            "id": self.id,
            "full_name": self.display_name,
            "designation": self.designation,
            "lab_name": self.lab_name,
        }

    def __repr__(self):
        return f"<User {self.id}: {self.username}>"
