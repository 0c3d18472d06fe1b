"""
Form Workflow Engine.

Moves a shared template through its delegation chain. Every mutating
operation runs the same guard sequence before touching any row:

    1. NotFound   assignment (or template) does not exist
    2. Forbidden  caller is not the assignee, or the form was delegated on
    3. Forbidden  approve / mark_final only: caller lacks approval authority
    4. Conflict   WORKFLOW_TRANSITIONS rejects (status, is_finalized)

All writes of one operation are committed together at the end. Rows are
version-checked on flush; a concurrent writer surfaces as
``ConflictError(reason="StaleWorkflowState")``. Notifications and audit
rows are written in SAVEPOINTs and never abort the transition.

Usage:
    from formflow.services import workflow_service

    child = workflow_service.delegate(user, template_id=3, assigned_to_id=9)
    workflow_service.approve(boss, child.id, remarks="OK")
"""

from __future__ import annotations

import logging
from contextlib import contextmanager

from sqlalchemy.orm.exc import StaleDataError

from formflow.core.exceptions import (
    STALE_WORKFLOW_STATE,
    ConflictError,
    ForbiddenError,
    NotFoundError,
    ValidationError,
)
from formflow.models import db
from formflow.models.audit import write_audit
from formflow.models.auth import User
from formflow.models.form import FormTemplate
from formflow.models.workflow import (
    AUTHORITY_ACTIONS,
    STATUS_APPROVED,
    STATUS_EDITED,
    STATUS_PENDING,
    STATUS_SUBMITTED,
    WORKFLOW_TRANSITIONS,
    FormAssignment,
    Submission,
    validate_workflow_transition,
)
from formflow.services.notification import NotificationService
from formflow.services.system_config_service import ConfigSnapshot, load_snapshot
from formflow.services import submission_service
from formflow.services.validation import validate_submission_data
from formflow.utils.helpers import as_int, iso, word_count

logger = logging.getLogger(__name__)


# ═════════════════════════════════════════════════════════════════════════════
# Guards
# ═════════════════════════════════════════════════════════════════════════════


def get_assignment_or_404(assignment_id) -> FormAssignment:
    assignment = db.session.get(FormAssignment, as_int(assignment_id)) if as_int(assignment_id) else None
    if assignment is None:
        raise NotFoundError(resource="FormAssignment", resource_id=assignment_id)
    return assignment


def get_live_template_or_404(template_id) -> FormTemplate:
    template = db.session.get(FormTemplate, as_int(template_id)) if as_int(template_id) else None
    if template is None or template.is_deleted:
        raise NotFoundError(resource="FormTemplate", resource_id=template_id)
    return template


def _ensure_holder(assignment: FormAssignment, user) -> None:
    if assignment.assigned_to != user.id:
        raise ForbiddenError("You are not the current holder of this assignment")
    if assignment.is_delegated:
        raise ForbiddenError("This form has been delegated; it is now held further down the chain")


def _ensure_authority(action: str, user, snapshot: ConfigSnapshot) -> None:
    if action in AUTHORITY_ACTIONS and not snapshot.has_approval_authority(user):
        raise ForbiddenError(
            f"Your designation ({user.designation or 'N/A'}) is not authorized to provide approvals"
        )


def _ensure_transition(assignment: FormAssignment, action: str) -> None:
    if validate_workflow_transition(action, assignment.status, assignment.is_finalized):
        return
    rule = WORKFLOW_TRANSITIONS[action]
    if assignment.is_finalized and not rule["finalized"]:
        raise ConflictError(
            f"Assignment {assignment.id} is finalized; '{action}' is no longer allowed",
            reason=STALE_WORKFLOW_STATE,
        )
    if rule["finalized"] and not assignment.is_finalized:
        raise ConflictError(
            f"Assignment {assignment.id} must be approved and finalized before '{action}'",
            reason="IllegalTransition",
        )
    raise ConflictError(
        f"Cannot '{action}' assignment {assignment.id} (status={assignment.status})",
        reason="IllegalTransition",
    )


def _guard(assignment_id, user, action: str, snapshot: ConfigSnapshot) -> FormAssignment:
    assignment = get_assignment_or_404(assignment_id)
    _ensure_holder(assignment, user)
    _ensure_authority(action, user, snapshot)
    _ensure_transition(assignment, action)
    return assignment


def _check_remarks(remarks, snapshot: ConfigSnapshot) -> str | None:
    if remarks is None:
        return None
    remarks = str(remarks).strip()
    limit = snapshot.remarks_word_limit
    if limit > 0 and word_count(remarks) > limit:
        raise ValidationError(
            f"Remarks cannot exceed {limit} words",
            details={"remarks": f"Maximum {limit} words allowed"},
        )
    return remarks or None


def _validate_for_finalize(assignment: FormAssignment) -> None:
    data = assignment.submission.data if assignment.submission else {}
    validate_submission_data(assignment.template, data or {}, enforce_required=True)


# ═════════════════════════════════════════════════════════════════════════════
# Persistence helpers
# ═════════════════════════════════════════════════════════════════════════════


@contextmanager
def _stale_guard(action: str, assignment_id):
    try:
        yield
    except StaleDataError as exc:
        db.session.rollback()
        logger.warning(
            "Concurrent workflow update rejected",
            extra={"action": action, "assignment_id": assignment_id},
        )
        raise ConflictError(
            "The assignment was changed by another request; reload and try again",
            reason=STALE_WORKFLOW_STATE,
        ) from exc


def _flush(action: str, assignment_id) -> None:
    with _stale_guard(action, assignment_id):
        db.session.flush()


def _commit(action: str, assignment_id) -> None:
    with _stale_guard(action, assignment_id):
        db.session.commit()


def _audit(action: str, assignment: FormAssignment, actor, before: dict | None) -> None:
    write_audit(
        action=f"workflow.{action}",
        resource="form_assignment",
        resource_id=assignment.id,
        actor_user_id=actor.id if actor else None,
        diff={"before": before, "after": assignment.state()},
    )


def _notify(recipient_id, type_, title, message, assignment: FormAssignment) -> None:
    NotificationService.notify(
        recipient_id=recipient_id,
        type=type_,
        title=title,
        message=message,
        reference_id=assignment.id,
        reference_type="form_assignment",
    )


# ═════════════════════════════════════════════════════════════════════════════
# Lineage
# ═════════════════════════════════════════════════════════════════════════════


def lineage_root(assignment: FormAssignment) -> FormAssignment:
    node = assignment
    while node.parent is not None:
        node = node.parent
    return node


def lineage_of(root: FormAssignment) -> list[FormAssignment]:
    """All assignments under ``root`` (root included), in creation order."""
    found = [root]
    frontier = [root.id]
    while frontier:
        children = FormAssignment.query.filter(
            FormAssignment.parent_assignment_id.in_(frontier)
        ).all()
        found.extend(children)
        frontier = [c.id for c in children]
    return sorted(found, key=lambda a: a.id)


def create_root_assignment(template: FormTemplate, recipient: User, *, instructions=None) -> FormAssignment:
    """Start a new chain for ``recipient``. Caller commits."""
    creator = template.creator
    assignment = FormAssignment(
        template_id=template.id,
        assigned_to=recipient.id,
        assigned_by=template.created_by,
        status=STATUS_PENDING,
        delegation_chain=[],
        instructions=instructions,
        is_read=False,
        is_finalized=False,
    )
    assignment.snapshot_users(recipient, creator)
    db.session.add(assignment)
    return assignment


def _resolve_caller_assignment(template_id, user, assignment_id=None) -> FormAssignment:
    """
    Find the assignment the caller is acting on.

    An explicit id wins. Otherwise the caller's newest open assignment for
    the template is used; a caller that can see the template but holds no
    chain yet gets a fresh root assignment.
    """
    if assignment_id not in (None, ""):
        assignment = get_assignment_or_404(assignment_id)
        if template_id not in (None, "") and assignment.template_id != as_int(template_id):
            raise ValidationError(
                "Assignment does not belong to this template",
                details={"assignmentId": "template mismatch"},
            )
        return assignment

    template = get_live_template_or_404(template_id)
    mine = (
        FormAssignment.query
        .filter_by(template_id=template.id, assigned_to=user.id)
        .order_by(FormAssignment.id.desc())
        .all()
    )
    for assignment in mine:
        if assignment.is_delegated or assignment.is_finalized:
            continue
        if assignment.status in (STATUS_PENDING, STATUS_EDITED):
            return assignment

    can_start = template.is_public or user.id in template.shared_user_ids
    if can_start and (not mine or (template.allow_multiple_submissions and mine[0].status == STATUS_SUBMITTED)):
        assignment = create_root_assignment(template, user)
        db.session.flush()
        return assignment
    if mine:
        return mine[0]
    raise ForbiddenError("This form has not been shared with you")


# ═════════════════════════════════════════════════════════════════════════════
# Operations
# ═════════════════════════════════════════════════════════════════════════════


def save_draft(user, template_id, data, assignment_id=None) -> tuple[Submission, FormAssignment]:
    """
    Create or update the caller's Submission for the assignment.

    Re-saving updates the same Submission row. Templates that disallow
    delegation are auto-approved and finalised on save, so the full
    required-field check applies there.
    """
    assignment = _resolve_caller_assignment(template_id, user, assignment_id)
    _ensure_holder(assignment, user)
    _ensure_transition(assignment, "save_draft")

    template = assignment.template
    if not template.is_active or template.is_deleted:
        raise ConflictError("This form is no longer accepting responses", reason="TemplateInactive")

    auto_approve = not template.allow_delegation
    before = assignment.state()
    with _stale_guard("save_draft", assignment.id):
        submission, created = submission_service.upsert(
            template, user, data, assignment.submission, enforce_required=auto_approve,
        )
    assignment.submission = submission
    assignment.last_action = "Draft Saved" if created else "Draft Updated"

    if auto_approve:
        assignment.status = STATUS_APPROVED
        assignment.is_finalized = True
        assignment.last_action = "Auto-Approved"
    else:
        assignment.status = STATUS_EDITED
    assignment.is_read = True

    _flush("save_draft", assignment.id)
    _audit("save_draft", assignment, user, before)
    if auto_approve:
        _notify(
            assignment.assigned_by, "form_approved",
            f"Form '{template.title}' was completed",
            f"{user.display_name} filled the form; it was approved automatically.",
            assignment,
        )
    _commit("save_draft", assignment.id)

    logger.info(
        "Draft saved",
        extra={
            "assignment_id": assignment.id,
            "submission_id": submission.id,
            "user_id": user.id,
            "last_action": assignment.last_action,
        },
    )
    return submission, assignment


def delegate(user, template_id, assigned_to_id, remarks=None, parent_assignment_id=None) -> FormAssignment:
    """Hand the form on to another user through a new child assignment."""
    snapshot = load_snapshot()
    parent = _resolve_caller_assignment(template_id, user, parent_assignment_id)
    _ensure_holder(parent, user)
    _ensure_transition(parent, "delegate")

    template = parent.template
    if not template.allow_delegation:
        raise ForbiddenError("Delegation is disabled for this form")
    remarks = _check_remarks(remarks, snapshot)

    target_id = as_int(assigned_to_id)
    if target_id is None:
        raise ValidationError("A delegation target is required", details={"assignedToId": "required"})
    if target_id == user.id:
        raise ValidationError(
            "You cannot delegate a form to yourself",
            details={"assignedToId": "cannot be yourself"},
        )
    target = db.session.get(User, target_id)
    if target is None or not target.is_active:
        raise NotFoundError(resource="User", resource_id=target_id)
    if snapshot.restrict_delegation_to_lab and target.lab_name != user.lab_name:
        raise ForbiddenError("Forms can only be delegated within your own lab")

    chain = parent.chain + [user.id]
    if target.id in chain and not snapshot.allow_redelegation_to_chain_member:
        raise ValidationError(
            "This user has already handled the form in this chain",
            details={"assignedToId": "already in the delegation chain"},
        )

    before = parent.state()
    child = FormAssignment(
        template_id=parent.template_id,
        assigned_to=target.id,
        assigned_by=user.id,
        data_id=parent.data_id,
        status=STATUS_PENDING,
        parent_assignment_id=parent.id,
        delegation_chain=chain,
        instructions=remarks,
        is_read=False,
        is_finalized=False,
    )
    child.snapshot_users(target, user)
    db.session.add(child)

    parent.status = STATUS_EDITED
    parent.last_action = "Delegated"
    parent.is_delegated = True
    if remarks is not None:
        parent.remarks = remarks

    _flush("delegate", parent.id)
    _audit("delegate", parent, user, before)
    _audit("delegate", child, user, None)
    _notify(
        target.id, "form_delegated",
        f"Form '{template.title}' delegated to you",
        f"{user.display_name} delegated a form to you." + (f" Remarks: {remarks}" if remarks else ""),
        child,
    )
    _commit("delegate", parent.id)

    logger.info(
        "Form delegated",
        extra={
            "assignment_id": child.id,
            "parent_assignment_id": parent.id,
            "from_user_id": user.id,
            "to_user_id": target.id,
            "chain_length": len(chain),
        },
    )
    return child


def mark_back(user, assignment_id, remarks=None, data_id=None, return_to_id=None) -> tuple[FormAssignment, FormAssignment]:
    """
    Return the form to an earlier chain member.

    Returns ``(current, restored)``: the caller's assignment, now finalised,
    and the ancestor assignment that is actionable again.
    """
    snapshot = load_snapshot()
    assignment = _guard(assignment_id, user, "mark_back", snapshot)
    remarks = _check_remarks(remarks, snapshot)

    chain = assignment.chain
    if not chain:
        raise ConflictError(
            "This assignment was not delegated to you; there is no one to mark it back to",
            reason="NoDelegator",
        )

    if return_to_id not in (None, ""):
        target_user_id = as_int(return_to_id)
        if target_user_id not in chain:
            raise ValidationError(
                "The form can only be marked back to a previous holder",
                details={"returnToId": "not in the delegation chain"},
            )
    else:
        target_user_id = chain[-1]

    ancestor = assignment.parent
    while ancestor is not None and ancestor.assigned_to != target_user_id:
        ancestor = ancestor.parent
    if ancestor is None:
        raise NotFoundError(resource="FormAssignment", resource_id=f"holder={target_user_id}")
    if ancestor.is_finalized:
        raise ConflictError(
            f"Assignment {ancestor.id} of the previous holder is already finalized",
            reason=STALE_WORKFLOW_STATE,
        )

    new_data_id = assignment.data_id
    if data_id not in (None, ""):
        submission = db.session.get(Submission, as_int(data_id)) if as_int(data_id) else None
        if submission is None:
            raise NotFoundError(resource="Submission", resource_id=data_id)
        if submission.template_id != assignment.template_id:
            raise ValidationError("Submission belongs to another form", details={"dataId": "template mismatch"})
        new_data_id = submission.id

    before_current = assignment.state()
    before_ancestor = ancestor.state()

    ancestor.status = STATUS_EDITED
    ancestor.is_finalized = False
    ancestor.is_delegated = False
    ancestor.last_action = "Marked Back"
    ancestor.is_read = False
    if remarks is not None:
        ancestor.remarks = remarks
    if new_data_id is not None:
        ancestor.data_id = new_data_id

    assignment.is_finalized = True
    assignment.last_action = "Marked Back"
    if assignment.status == STATUS_PENDING:
        assignment.status = STATUS_EDITED
    if remarks is not None:
        assignment.remarks = remarks

    _flush("mark_back", assignment.id)
    _audit("mark_back", assignment, user, before_current)
    _audit("mark_back", ancestor, user, before_ancestor)
    _notify(
        ancestor.assigned_to, "form_marked_back",
        f"Form '{assignment.template.title}' marked back to you",
        f"{user.display_name} returned the form." + (f" Remarks: {remarks}" if remarks else ""),
        ancestor,
    )
    _commit("mark_back", assignment.id)

    logger.info(
        "Form marked back",
        extra={
            "assignment_id": assignment.id,
            "restored_assignment_id": ancestor.id,
            "user_id": user.id,
            "return_to_user_id": target_user_id,
        },
    )
    return assignment, ancestor


def approve(user, assignment_id, remarks=None, finalize=True) -> FormAssignment:
    snapshot = load_snapshot()
    assignment = _guard(assignment_id, user, "approve", snapshot)
    remarks = _check_remarks(remarks, snapshot)
    if finalize:
        _validate_for_finalize(assignment)

    before = assignment.state()
    assignment.status = STATUS_APPROVED
    assignment.last_action = "Approved"
    assignment.is_finalized = bool(finalize)
    if remarks is not None:
        assignment.remarks = remarks

    _flush("approve", assignment.id)
    _audit("approve", assignment, user, before)
    _notify(
        assignment.assigned_by, "form_approved",
        f"Form '{assignment.template.title}' approved",
        f"{user.display_name} approved the form." + (f" Remarks: {remarks}" if remarks else ""),
        assignment,
    )
    _commit("approve", assignment.id)

    logger.info(
        "Form approved",
        extra={"assignment_id": assignment.id, "user_id": user.id, "finalized": assignment.is_finalized},
    )
    return assignment


def mark_final(user, assignment_id, remarks=None) -> FormAssignment:
    """Lock the assignment without changing its data or status."""
    snapshot = load_snapshot()
    assignment = _guard(assignment_id, user, "mark_final", snapshot)
    remarks = _check_remarks(remarks, snapshot)
    _validate_for_finalize(assignment)

    before = assignment.state()
    assignment.is_finalized = True
    assignment.last_action = "Marked Final"
    if remarks is not None:
        assignment.remarks = remarks

    _flush("mark_final", assignment.id)
    _audit("mark_final", assignment, user, before)
    _notify(
        assignment.assigned_by, "form_finalized",
        f"Form '{assignment.template.title}' marked final",
        f"{user.display_name} marked the form as final.",
        assignment,
    )
    _commit("mark_final", assignment.id)

    logger.info("Form marked final", extra={"assignment_id": assignment.id, "user_id": user.id})
    return assignment


def submit_to_distributor(user, assignment_id, remarks=None) -> FormAssignment:
    snapshot = load_snapshot()
    assignment = _guard(assignment_id, user, "submit_to_distributor", snapshot)
    remarks = _check_remarks(remarks, snapshot)

    before = assignment.state()
    assignment.status = STATUS_SUBMITTED
    assignment.last_action = "Submitted"
    if remarks is not None:
        assignment.remarks = remarks

    template = assignment.template
    _flush("submit_to_distributor", assignment.id)
    _audit("submit_to_distributor", assignment, user, before)
    _notify(
        template.created_by, "form_submitted",
        f"Response received for '{template.title}'",
        f"{user.display_name} submitted the approved form.",
        assignment,
    )
    _commit("submit_to_distributor", assignment.id)

    logger.info(
        "Form submitted to distributor",
        extra={"assignment_id": assignment.id, "user_id": user.id, "template_id": template.id},
    )
    return assignment


def mark_read(user, assignment_id) -> FormAssignment:
    assignment = get_assignment_or_404(assignment_id)
    if assignment.assigned_to != user.id:
        raise ForbiddenError("You are not the assignee of this assignment")
    if not assignment.is_read:
        assignment.is_read = True
        _commit("mark_read", assignment.id)
    return assignment


# ═════════════════════════════════════════════════════════════════════════════
# Queries
# ═════════════════════════════════════════════════════════════════════════════


def get_chain(user, assignment_id) -> dict:
    """
    Ordered view of the whole lineage the assignment belongs to.

    Visible to anyone holding an assignment in the lineage, the template
    creator and admins.
    """
    assignment = get_assignment_or_404(assignment_id)
    root = lineage_root(assignment)
    members = lineage_of(root)
    template = assignment.template

    allowed = (
        user.is_admin
        or template.created_by == user.id
        or any(m.assigned_to == user.id for m in members)
    )
    if not allowed:
        raise ForbiddenError("You are not part of this workflow")

    snapshot = load_snapshot()
    users = {
        u.id: u for u in User.query.filter(User.id.in_({m.assigned_to for m in members})).all()
    }
    items = []
    for member in members:
        item = member.to_dict()
        assignee = users.get(member.assigned_to)
        item["assignee"] = assignee.to_summary() if assignee else None
        item["has_approval_authority"] = snapshot.has_approval_authority(assignee)
        item["is_current"] = (
            not member.is_finalized
            and not member.is_delegated
            and member.status != STATUS_SUBMITTED
        )
        items.append(item)

    return {
        "template": {"id": template.id, "title": template.title},
        "root_assignment_id": root.id,
        "requested_assignment_id": assignment.id,
        "items": items,
    }


def get_chain_by_submission(user, submission_id) -> dict:
    submission = db.session.get(Submission, as_int(submission_id)) if as_int(submission_id) else None
    if submission is None:
        raise NotFoundError(resource="Submission", resource_id=submission_id)
    latest = (
        FormAssignment.query.filter_by(data_id=submission.id)
        .order_by(FormAssignment.id.desc())
        .first()
    )
    if latest is None:
        raise NotFoundError(resource="FormAssignment", resource_id=f"submission={submission.id}")
    return get_chain(user, latest.id)


def list_my_assignments(user, status=None, unread_only=False, template_id=None) -> list[dict]:
    q = FormAssignment.query.filter_by(assigned_to=user.id)
    if status:
        q = q.filter(FormAssignment.status == status)
    if unread_only:
        q = q.filter(FormAssignment.is_read.is_(False))
    if template_id:
        q = q.filter(FormAssignment.template_id == template_id)

    items = []
    for assignment in q.order_by(FormAssignment.id.desc()).all():
        template = assignment.template
        if template is None or template.is_deleted:
            continue
        item = assignment.to_dict()
        item["template_title"] = template.title
        item["deadline"] = iso(template.deadline)
        items.append(item)
    return items
