"""
Form Workflow Service
System configuration model.

Models:
    - SystemConfig: key → JSON value store for runtime business settings.

Read through ``formflow.services.system_config_service.load_snapshot``;
never query this table from a permission check directly.
"""

from datetime import datetime, timezone

from formflow.models import db
from formflow.utils.helpers import iso


class SystemConfig(db.Model):
    __tablename__ = "system_config"

    id = db.Column(db.Integer, primary_key=True)
    key = db.Column(db.String(100), nullable=False, unique=True, comment="Upper-case key")
    value = db.Column(db.JSON, nullable=True)
    description = db.Column(db.String(500), default="")

    updated_by = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(
        db.DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    def to_dict(self):
        return {
            "key": self.key,
            "value": self.value,
            "description": self.description,
            "updated_by": self.updated_by,
            "updated_at": iso(self.updated_at),
        }

    def __repr__(self):
        return f"<SystemConfig {self.key}>"
