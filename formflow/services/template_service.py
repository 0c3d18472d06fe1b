"""
Template Store service.

Business rules enforced here (never in the blueprint):
    - Only the creator (or an admin) may update, delete, share or unshare.
    - Field schema is frozen on first share; later field edits → Conflict.
    - Delete is refused while any non-Submitted assignment references the
      template; otherwise the template is soft-deleted.
    - Clone yields an unshared, unfrozen copy owned by the caller.
"""

import logging

from sqlalchemy import or_

from formflow.core.exceptions import ConflictError, ForbiddenError, NotFoundError, ValidationError
from formflow.models import db
from formflow.models.audit import write_audit
from formflow.models.auth import User
from formflow.models.form import TEMPLATE_LIST_FILTERS, FormTemplate, template_shares
from formflow.models.workflow import STATUS_SUBMITTED, FormAssignment, Submission
from formflow.services.notification import NotificationService
from formflow.services.validation import validate_field_definitions
from formflow.services.workflow_service import create_root_assignment, lineage_of
from formflow.utils.helpers import as_int, iso, parse_datetime

logger = logging.getLogger(__name__)

_BOOL_FIELDS = ("is_public", "allow_delegation", "allow_multiple_submissions", "is_active")
_UPDATABLE = ("title", "description", "fields", "deadline") + _BOOL_FIELDS


# ── Access helpers ──────────────────────────────────────────────────────


def _get_or_404(template_id) -> FormTemplate:
    template = db.session.get(FormTemplate, as_int(template_id)) if as_int(template_id) else None
    if template is None or template.is_deleted:
        raise NotFoundError(resource="FormTemplate", resource_id=template_id)
    return template


def _ensure_owner(template: FormTemplate, user) -> None:
    if not (user.is_admin or template.created_by == user.id):
        raise ForbiddenError("Only the creator of this form can change it")


def _parse_deadline(value):
    try:
        return parse_datetime(value)
    except ValueError as exc:
        raise ValidationError(str(exc), details={"deadline": "invalid date"}) from exc


def _root_shares(template_id, user_id=None):
    q = FormAssignment.query.filter(
        FormAssignment.template_id == template_id,
        FormAssignment.parent_assignment_id.is_(None),
    )
    if user_id is not None:
        q = q.filter(FormAssignment.assigned_to == user_id)
    return q.order_by(FormAssignment.id).all()


# ── CRUD ────────────────────────────────────────────────────────────────


def create_template(user, payload: dict) -> FormTemplate:
    title = str(payload.get("title") or "").strip()
    if not title:
        raise ValidationError("Title is required", details={"title": "required"})
    fields = validate_field_definitions(payload.get("fields"))

    template = FormTemplate(
        title=title[:300],
        description=payload.get("description") or "",
        fields=fields,
        created_by=user.id,
        deadline=_parse_deadline(payload.get("deadline")),
    )
    for key in _BOOL_FIELDS:
        if key in payload:
            setattr(template, key, bool(payload[key]))
    db.session.add(template)
    db.session.flush()

    write_audit(
        action="template.create", resource="form_template",
        resource_id=template.id, actor_user_id=user.id,
        diff={"title": template.title, "fields": len(fields)},
    )

    share_ids = payload.get("shared_with_users") or []
    if share_ids:
        share_template(user, template.id, share_ids, instructions=payload.get("instructions"), commit=False)

    db.session.commit()
    logger.info("Template created", extra={"template_id": template.id, "user_id": user.id})
    return template


def get_template(user, template_id) -> FormTemplate:
    template = _get_or_404(template_id)
    if not template.is_accessible_by(user):
        raise ForbiddenError("You do not have access to this form")
    return template


def list_templates(user, filter_="all", include_inactive=True) -> list[FormTemplate]:
    """Templates visible to ``user``; ``filter_`` is owned|shared_with_me|public|all."""
    if filter_ not in TEMPLATE_LIST_FILTERS:
        raise ValidationError(
            f"Unknown filter '{filter_}'",
            details={"filter": f"one of {sorted(TEMPLATE_LIST_FILTERS)}"},
        )

    shared_ids = db.select(template_shares.c.template_id).where(template_shares.c.user_id == user.id)
    q = FormTemplate.query_active()
    if filter_ == "owned":
        q = q.filter(FormTemplate.created_by == user.id)
    elif filter_ == "shared_with_me":
        q = q.filter(FormTemplate.id.in_(shared_ids))
    elif filter_ == "public":
        q = q.filter(FormTemplate.is_public.is_(True))
    elif not user.is_admin:
        q = q.filter(or_(
            FormTemplate.created_by == user.id,
            FormTemplate.is_public.is_(True),
            FormTemplate.id.in_(shared_ids),
        ))
    if not include_inactive:
        q = q.filter(FormTemplate.is_active.is_(True))
    return q.order_by(FormTemplate.created_at.desc(), FormTemplate.id.desc()).all()


def update_template(user, template_id, patch: dict) -> FormTemplate:
    template = _get_or_404(template_id)
    _ensure_owner(template, user)

    changes = {}
    if "fields" in patch and patch["fields"] != (template.fields or []):
        if template.is_schema_frozen:
            raise ConflictError(
                "The field schema is frozen because the form has been shared; clone it to make changes",
                reason="SchemaFrozen",
            )
        fields = validate_field_definitions(patch["fields"])
        changes["fields"] = {"old": len(template.fields or []), "new": len(fields)}
        template.fields = fields

    if "title" in patch:
        title = str(patch.get("title") or "").strip()
        if not title:
            raise ValidationError("Title is required", details={"title": "required"})
        if title != template.title:
            changes["title"] = {"old": template.title, "new": title}
            template.title = title[:300]

    if "description" in patch and patch["description"] != template.description:
        changes["description"] = {"old": template.description, "new": patch["description"]}
        template.description = patch["description"] or ""

    if "deadline" in patch:
        deadline = _parse_deadline(patch["deadline"])
        changes["deadline"] = {"old": iso(template.deadline), "new": iso(deadline)}
        template.deadline = deadline

    for key in _BOOL_FIELDS:
        if key in patch and bool(patch[key]) != getattr(template, key):
            changes[key] = {"old": getattr(template, key), "new": bool(patch[key])}
            setattr(template, key, bool(patch[key]))

    unknown = sorted(set(patch) - set(_UPDATABLE))
    if unknown:
        logger.debug("Ignoring non-updatable template keys: %s", unknown)

    if changes:
        db.session.flush()
        write_audit(
            action="template.update", resource="form_template",
            resource_id=template.id, actor_user_id=user.id, diff=changes,
        )
    db.session.commit()
    return template


def delete_template(user, template_id) -> None:
    template = _get_or_404(template_id)
    _ensure_owner(template, user)

    live = FormAssignment.query.filter(
        FormAssignment.template_id == template.id,
        FormAssignment.status != STATUS_SUBMITTED,
    ).count()
    if live:
        raise ConflictError(
            f"Form is still in use by {live} active assignment(s)",
            reason="TemplateInUse",
        )

    template.soft_delete()
    template.is_active = False
    write_audit(
        action="template.delete", resource="form_template",
        resource_id=template.id, actor_user_id=user.id,
    )
    db.session.commit()
    logger.info("Template deleted", extra={"template_id": template.id, "user_id": user.id})


def clone_template(user, template_id) -> FormTemplate:
    source = get_template(user, template_id)
    clone = FormTemplate(
        title=f"Copy of {source.title}"[:300],
        description=source.description,
        fields=[dict(f) for f in (source.fields or [])],
        created_by=user.id,
        is_public=False,
        allow_delegation=source.allow_delegation,
        allow_multiple_submissions=source.allow_multiple_submissions,
        is_active=True,
        deadline=source.deadline,
    )
    db.session.add(clone)
    db.session.flush()
    write_audit(
        action="template.clone", resource="form_template",
        resource_id=clone.id, actor_user_id=user.id,
        diff={"source_template_id": source.id},
    )
    db.session.commit()
    return clone


# ── Sharing ─────────────────────────────────────────────────────────────


def share_template(user, template_id, user_ids, instructions=None, commit=True) -> list[FormAssignment]:
    """
    Share with each user in ``user_ids``: one root assignment per new
    recipient. Recipients already holding a root share are skipped.
    """
    template = _get_or_404(template_id)
    _ensure_owner(template, user)
    if not template.is_active:
        raise ConflictError("Inactive forms cannot be shared", reason="TemplateInactive")

    if not isinstance(user_ids, (list, tuple)) or not user_ids:
        raise ValidationError("At least one user is required", details={"userIds": "required"})
    ids = []
    for raw in user_ids:
        uid = as_int(raw)
        if uid is None:
            raise ValidationError("User ids must be integers", details={"userIds": f"invalid id {raw!r}"})
        if uid not in ids:
            ids.append(uid)

    recipients = {u.id: u for u in User.query.filter(User.id.in_(ids)).all()}
    for uid in ids:
        recipient = recipients.get(uid)
        if recipient is None or not recipient.is_active:
            raise NotFoundError(resource="User", resource_id=uid)

    already = {a.assigned_to for a in _root_shares(template.id)}
    created = []
    for uid in ids:
        recipient = recipients[uid]
        if recipient not in template.shared_users:
            template.shared_users.append(recipient)
        if uid in already:
            continue
        created.append(create_root_assignment(template, recipient, instructions=instructions))

    template.freeze_schema()
    db.session.flush()

    for assignment in created:
        NotificationService.notify(
            recipient_id=assignment.assigned_to,
            type="form_shared",
            title=f"New form: {template.title}",
            message=instructions or f"{user.display_name} shared a form with you.",
            reference_id=assignment.id,
            reference_type="form_assignment",
        )
    write_audit(
        action="template.share", resource="form_template",
        resource_id=template.id, actor_user_id=user.id,
        diff={"user_ids": ids, "new_assignments": [a.id for a in created]},
    )
    if commit:
        db.session.commit()
    logger.info(
        "Template shared",
        extra={"template_id": template.id, "user_id": user.id, "recipients": len(created)},
    )
    return created


def unshare_template(user, template_id, recipient_id) -> dict:
    """Hard-delete the recipient's root share lineage and its private data."""
    template = _get_or_404(template_id)
    _ensure_owner(template, user)
    recipient_id = as_int(recipient_id)

    roots = _root_shares(template.id, recipient_id)
    shared_user = next((u for u in template.shared_users if u.id == recipient_id), None)
    if not roots and shared_user is None:
        raise NotFoundError(resource="Share", resource_id=f"template={template.id} user={recipient_id}")

    doomed = []
    for root in roots:
        doomed.extend(lineage_of(root))
    doomed_ids = {a.id for a in doomed}
    data_ids = {a.data_id for a in doomed if a.data_id}

    # Deepest first so parent FKs stay valid during the delete.
    for assignment in sorted(doomed, key=lambda a: len(a.chain), reverse=True):
        db.session.delete(assignment)
    db.session.flush()

    removed_submissions = 0
    for data_id in data_ids:
        still_used = FormAssignment.query.filter(
            FormAssignment.data_id == data_id,
            FormAssignment.id.notin_(doomed_ids),
        ).count()
        if not still_used:
            submission = db.session.get(Submission, data_id)
            if submission is not None:
                db.session.delete(submission)
                removed_submissions += 1

    if shared_user is not None:
        template.shared_users.remove(shared_user)

    write_audit(
        action="template.unshare", resource="form_template",
        resource_id=template.id, actor_user_id=user.id,
        diff={"user_id": recipient_id, "assignments": sorted(doomed_ids), "submissions": removed_submissions},
    )
    db.session.commit()
    logger.info(
        "Template unshared",
        extra={"template_id": template.id, "recipient_id": recipient_id, "assignments": len(doomed_ids)},
    )
    return {"deleted_assignments": len(doomed_ids), "deleted_submissions": removed_submissions}


def send_reminders(user, template_id, user_ids=None) -> list[int]:
    """Notify the current holders of every share that is not yet submitted."""
    template = _get_or_404(template_id)
    _ensure_owner(template, user)
    wanted = {as_int(u) for u in user_ids} if user_ids else None

    notified = []
    for root in _root_shares(template.id):
        if wanted is not None and root.assigned_to not in wanted:
            continue
        lineage = lineage_of(root)
        if any(a.status == STATUS_SUBMITTED for a in lineage):
            continue
        for holder in lineage:
            if holder.is_finalized or holder.is_delegated or holder.assigned_to in notified:
                continue
            NotificationService.notify(
                recipient_id=holder.assigned_to,
                type="form_reminder",
                title=f"Reminder: {template.title}",
                message="This form is still waiting for your response.",
                reference_id=holder.id,
                reference_type="form_assignment",
            )
            notified.append(holder.assigned_to)
    db.session.commit()
    return notified


def list_responses(user, template_id) -> list[dict]:
    template = _get_or_404(template_id)
    _ensure_owner(template, user)

    rows = (
        FormAssignment.query
        .filter_by(template_id=template.id, status=STATUS_SUBMITTED)
        .order_by(FormAssignment.updated_at.desc(), FormAssignment.id.desc())
        .all()
    )
    responses = []
    for assignment in rows:
        submission = assignment.submission
        responses.append({
            "assignment_id": assignment.id,
            "submitted_by": assignment.assignee.to_summary() if assignment.assignee else None,
            "submitted_at": iso(assignment.updated_at),
            "remarks": assignment.remarks,
            "submission": submission.to_dict() if submission else None,
        })
    return responses
