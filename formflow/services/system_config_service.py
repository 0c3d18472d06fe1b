"""
System configuration service.

Business settings (approval designations, remarks word limit, retention
windows, delegation policy) live in the ``system_config`` table. Permission
checks never read that table directly: they receive a ``ConfigSnapshot``,
an immutable view loaded at most once per request and cached on ``flask.g``.
Writes through ``update_config`` drop the cached snapshot so the rest of the
request sees the new values.

Usage:
    from formflow.services.system_config_service import load_snapshot

    snapshot = load_snapshot()
    if not snapshot.has_approval_authority(user):
        raise ForbiddenError(...)
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Mapping

from flask import g, has_app_context

from formflow.core.exceptions import ValidationError
from formflow.models import db
from formflow.models.system_config import SystemConfig

logger = logging.getLogger(__name__)

_G_KEY = "config_snapshot"

DEFAULTS: dict[str, dict[str, Any]] = {
    "APPROVAL_AUTHORITY_DESIGNATIONS": {
        "value": ["Director General-CSIR", "Director", "Joint Secretary(Admin)"],
        "description": "List of designations authorized for approvals",
    },
    "REMARKS_WORD_LIMIT": {
        "value": 150,
        "description": "Maximum number of words allowed in remarks field",
    },
    "IS_AUDIT_LOGGING_ENABLED": {
        "value": True,
        "description": "Record workflow and admin actions in the audit log",
    },
    "AUDIT_RETENTION_DAYS": {
        "value": 365,
        "description": "Days to keep audit rows; -1 keeps them forever",
    },
    "RESTRICT_DELEGATION_TO_LAB": {
        "value": True,
        "description": "Delegation target must belong to the delegator's lab",
    },
    "ALLOW_REDELEGATION_TO_CHAIN_MEMBER": {
        "value": False,
        "description": "Allow delegating to a user already present in the delegation chain",
    },
    "NOTIFICATION_RETENTION_DAYS": {
        "value": 30,
        "description": "Read notifications older than this many days are purged",
    },
}


def _as_bool(value) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ("1", "true", "yes", "on")
    return bool(value)


def _as_int(value, default: int) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


@dataclass(frozen=True)
class ConfigSnapshot:
    """Read-only view of the configuration at the time it was loaded."""

    values: Mapping[str, Any] = field(default_factory=dict)

    def get(self, key: str, default=None):
        if key in self.values:
            return self.values[key]
        if key in DEFAULTS:
            return DEFAULTS[key]["value"]
        return default

    @property
    def approval_designations(self) -> list[str]:
        raw = self.get("APPROVAL_AUTHORITY_DESIGNATIONS") or []
        if isinstance(raw, str):
            raw = raw.split(",")
        return [str(d).strip() for d in raw if str(d).strip()]

    @property
    def remarks_word_limit(self) -> int:
        return _as_int(self.get("REMARKS_WORD_LIMIT"), DEFAULTS["REMARKS_WORD_LIMIT"]["value"])

    @property
    def audit_logging_enabled(self) -> bool:
        return _as_bool(self.get("IS_AUDIT_LOGGING_ENABLED"))

    @property
    def audit_retention_days(self) -> int:
        return _as_int(self.get("AUDIT_RETENTION_DAYS"), DEFAULTS["AUDIT_RETENTION_DAYS"]["value"])

    @property
    def notification_retention_days(self) -> int:
        return _as_int(
            self.get("NOTIFICATION_RETENTION_DAYS"),
            DEFAULTS["NOTIFICATION_RETENTION_DAYS"]["value"],
        )

    @property
    def restrict_delegation_to_lab(self) -> bool:
        return _as_bool(self.get("RESTRICT_DELEGATION_TO_LAB"))

    @property
    def allow_redelegation_to_chain_member(self) -> bool:
        return _as_bool(self.get("ALLOW_REDELEGATION_TO_CHAIN_MEMBER"))

    def has_approval_authority(self, user) -> bool:
        """True when the user's designation is in the approval list."""
        if user is None or not user.designation:
            return False
        return user.designation.strip() in self.approval_designations

    def to_dict(self) -> dict:
        merged = {key: entry["value"] for key, entry in DEFAULTS.items()}
        merged.update(self.values)
        return merged


# ── Loading ─────────────────────────────────────────────────────────────


def _read_snapshot() -> ConfigSnapshot:
    rows = db.session.execute(db.select(SystemConfig)).scalars().all()
    return ConfigSnapshot(values=MappingProxyType({row.key: row.value for row in rows}))


def load_snapshot() -> ConfigSnapshot:
    """Return the snapshot for the current app context, loading it once."""
    if not has_app_context():
        raise RuntimeError("load_snapshot() requires an application context")
    snapshot = g.get(_G_KEY)
    if snapshot is None:
        snapshot = _read_snapshot()
        setattr(g, _G_KEY, snapshot)
    return snapshot


def invalidate_snapshot() -> None:
    if has_app_context():
        g.pop(_G_KEY, None)


def has_approval_authority(user, snapshot: ConfigSnapshot | None = None) -> bool:
    return (snapshot or load_snapshot()).has_approval_authority(user)


# ── Writes ──────────────────────────────────────────────────────────────


def list_config() -> list[dict]:
    rows = {row.key: row for row in SystemConfig.query.order_by(SystemConfig.key).all()}
    items = []
    for key in sorted(set(rows) | set(DEFAULTS)):
        if key in rows:
            items.append(rows[key].to_dict())
        else:
            items.append({
                "key": key,
                "value": DEFAULTS[key]["value"],
                "description": DEFAULTS[key]["description"],
                "updated_by": None,
                "updated_at": None,
            })
    return items


def update_config(updates: dict, *, actor=None) -> list[SystemConfig]:
    """
    Upsert configuration keys. Keys are upper-cased.

    ``updates`` maps key → value, or key → {"value": ..., "description": ...}.
    Raises ValidationError for empty keys. Commits and drops the cached
    snapshot.
    """
    from formflow.models.audit import write_audit

    if not isinstance(updates, dict) or not updates:
        raise ValidationError("No configuration values supplied")

    changed = []
    for raw_key, payload in updates.items():
        key = str(raw_key or "").strip().upper()
        if not key:
            raise ValidationError("Configuration key must not be empty", details={"key": "required"})
        if isinstance(payload, dict) and "value" in payload:
            value = payload["value"]
            description = payload.get("description")
        else:
            value, description = payload, None

        row = SystemConfig.query.filter_by(key=key).first()
        old_value = row.value if row else None
        if row is None:
            row = SystemConfig(key=key, description=DEFAULTS.get(key, {}).get("description", ""))
            db.session.add(row)
        row.value = value
        if description is not None:
            row.description = description
        row.updated_by = actor.id if actor else None
        changed.append(row)

        write_audit(
            action="update",
            resource="system_config",
            resource_id=key,
            actor_user_id=actor.id if actor else None,
            diff={key: {"old": old_value, "new": value}},
        )

    db.session.commit()
    invalidate_snapshot()
    logger.info(
        "System configuration updated",
        extra={"keys": [row.key for row in changed], "user_id": actor.id if actor else None},
    )
    return changed


def initialize_defaults() -> int:
    """Seed any missing default keys. Returns the number of rows created."""
    existing = {key for (key,) in db.session.execute(db.select(SystemConfig.key)).all()}
    created = 0
    for key, entry in DEFAULTS.items():
        if key in existing:
            continue
        db.session.add(SystemConfig(key=key, value=entry["value"], description=entry["description"]))
        created += 1
    if created:
        db.session.commit()
        invalidate_snapshot()
        logger.info("Seeded %d default configuration keys", created)
    return created
