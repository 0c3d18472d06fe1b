"""
User directory service.

Assignments carry denormalised copies of the people involved
(``assigned_to_name``, ``assigned_to_designation``, ``assigned_by_name``).
They are kept in step in two ways:

* refresh-on-write: ``update_user`` rewrites the copies in the same
  transaction that changes the user;
* bounded staleness: the weekly ``user_snapshot_resync`` job repairs any
  row that drifted anyway (imports, direct SQL).

Snapshot columns are written with bulk UPDATEs that leave the workflow
``version`` untouched, so a resync never collides with a transition.
"""

import logging

from sqlalchemy import or_

from formflow.core.exceptions import ConflictError, NotFoundError, ValidationError
from formflow.models import db
from formflow.models.audit import write_audit
from formflow.models.auth import ROLES, User
from formflow.models.workflow import FormAssignment
from formflow.utils.helpers import as_int

logger = logging.getLogger(__name__)

_EDITABLE = ("full_name", "email", "designation", "lab_name", "role", "is_active")
_SNAPSHOT_SOURCES = ("full_name", "designation", "username")


def get_user_or_404(user_id) -> User:
    user = db.session.get(User, as_int(user_id)) if as_int(user_id) else None
    if user is None:
        raise NotFoundError(resource="User", resource_id=user_id)
    return user


def list_users(lab_name=None, active_only=False, search=None) -> list[User]:
    q = User.query
    if lab_name:
        q = q.filter(User.lab_name == lab_name)
    if active_only:
        q = q.filter(User.is_active.is_(True))
    if search:
        like = f"%{search.strip()}%"
        q = q.filter(or_(User.username.ilike(like), User.full_name.ilike(like)))
    return q.order_by(User.full_name, User.id).all()


def _clean(payload: dict) -> dict:
    values = {k: payload[k] for k in _EDITABLE if k in payload}
    if "role" in values and values["role"] not in ROLES:
        raise ValidationError(f"Role must be one of {sorted(ROLES)}", details={"role": "invalid"})
    if "is_active" in values:
        values["is_active"] = bool(values["is_active"])
    for key in ("full_name", "email", "designation", "lab_name"):
        if key in values and values[key] is not None:
            values[key] = str(values[key]).strip()
    return values


def create_user(payload: dict, actor=None) -> User:
    username = str(payload.get("username") or "").strip()
    if not username:
        raise ValidationError("Username is required", details={"username": "required"})
    if User.query.filter_by(username=username).first():
        raise ConflictError(f"Username '{username}' is already taken", reason="DuplicateUsername")

    user = User(username=username, **_clean(payload))
    db.session.add(user)
    db.session.flush()
    write_audit(
        action="create", resource="user", resource_id=user.id,
        actor_user_id=actor.id if actor else None,
        diff={"username": username, "role": user.role},
    )
    db.session.commit()
    logger.info("User created", extra={"user_id": user.id, "username": username})
    return user


def update_user(user_id, payload: dict, actor=None) -> User:
    user = get_user_or_404(user_id)
    values = _clean(payload)

    changes = {}
    for key, value in values.items():
        if getattr(user, key) != value:
            changes[key] = {"old": getattr(user, key), "new": value}
            setattr(user, key, value)

    if not changes:
        return user

    db.session.flush()
    refreshed = 0
    if any(key in changes for key in _SNAPSHOT_SOURCES):
        refreshed = refresh_assignment_snapshots(user)
    write_audit(
        action="update", resource="user", resource_id=user.id,
        actor_user_id=actor.id if actor else None, diff=changes,
    )
    db.session.commit()
    logger.info(
        "User updated",
        extra={"user_id": user.id, "fields": sorted(changes), "snapshots_refreshed": refreshed},
    )
    return user


def refresh_assignment_snapshots(user: User) -> int:
    """Rewrite every snapshot copy of ``user``. Caller commits."""
    as_assignee = FormAssignment.query.filter(FormAssignment.assigned_to == user.id).update(
        {
            FormAssignment.assigned_to_name: user.display_name,
            FormAssignment.assigned_to_designation: user.designation,
        },
        synchronize_session="fetch",
    )
    as_assigner = FormAssignment.query.filter(FormAssignment.assigned_by == user.id).update(
        {FormAssignment.assigned_by_name: user.display_name},
        synchronize_session="fetch",
    )
    return as_assignee + as_assigner


def resync_all_snapshots() -> dict:
    """Repair drifted snapshot rows for every user. Caller commits."""
    stats = {"users_checked": 0, "rows_repaired": 0}
    for user in User.query.order_by(User.id).all():
        stats["users_checked"] += 1
        drifted_assignee = FormAssignment.query.filter(
            FormAssignment.assigned_to == user.id,
            or_(
                FormAssignment.assigned_to_name.is_distinct_from(user.display_name),
                FormAssignment.assigned_to_designation.is_distinct_from(user.designation),
            ),
        ).count()
        drifted_assigner = FormAssignment.query.filter(
            FormAssignment.assigned_by == user.id,
            FormAssignment.assigned_by_name.is_distinct_from(user.display_name),
        ).count()
        if drifted_assignee or drifted_assigner:
            refresh_assignment_snapshots(user)
            stats["rows_repaired"] += drifted_assignee + drifted_assigner
    return stats
