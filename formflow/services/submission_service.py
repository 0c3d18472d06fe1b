"""
Submission Store service.

A Submission is shared by every assignment of a chain through ``data_id``,
but only the holder of an open assignment referencing it may write to it.
Data is validated in full before anything is persisted.
"""

import logging

from sqlalchemy.orm.exc import StaleDataError

from formflow.core.exceptions import (
    STALE_WORKFLOW_STATE,
    ConflictError,
    ForbiddenError,
    NotFoundError,
)
from formflow.models import db
from formflow.models.audit import write_audit
from formflow.models.workflow import (
    STATUS_EDITED,
    STATUS_PENDING,
    FormAssignment,
    Submission,
    validate_workflow_transition,
)
from formflow.services.validation import validate_submission_data
from formflow.utils.helpers import as_int, get_client_ip

logger = logging.getLogger(__name__)


def get_submission_or_404(submission_id) -> Submission:
    submission = db.session.get(Submission, as_int(submission_id)) if as_int(submission_id) else None
    if submission is None:
        raise NotFoundError(resource="Submission", resource_id=submission_id)
    return submission


def _referencing_assignments(submission: Submission) -> list[FormAssignment]:
    return (
        FormAssignment.query.filter_by(data_id=submission.id)
        .order_by(FormAssignment.id)
        .all()
    )


def upsert(template, user, data, submission: Submission | None = None, *,
           enforce_required: bool = False) -> tuple[Submission, bool]:
    """
    Validate ``data`` and write it to ``submission`` (or a new row).

    Returns ``(submission, created)``. The caller owns the transaction.
    """
    validate_submission_data(template, data, enforce_required=enforce_required)
    created = submission is None
    if created:
        submission = Submission(template_id=template.id)
        db.session.add(submission)
    submission.data = dict(data)
    submission.submitted_by = user.id
    submission.ip_address = get_client_ip()
    db.session.flush()
    return submission, created


def get_submission(user, submission_id) -> Submission:
    submission = get_submission_or_404(submission_id)
    if user.is_admin or submission.submitted_by == user.id:
        return submission
    if submission.template is not None and submission.template.created_by == user.id:
        return submission
    if any(a.assigned_to == user.id for a in _referencing_assignments(submission)):
        return submission
    raise ForbiddenError("You do not have access to this submission")


def update_submission(user, submission_id, data) -> Submission:
    """Replace the data of a submission held by the caller."""
    submission = get_submission_or_404(submission_id)
    mine = [
        a for a in _referencing_assignments(submission)
        if a.assigned_to == user.id and not a.is_delegated
    ]
    if not mine:
        raise ForbiddenError("Only the current holder of this form can edit its data")
    holder = next(
        (a for a in reversed(mine)
         if validate_workflow_transition("save_draft", a.status, a.is_finalized)),
        None,
    )
    if holder is None:
        raise ConflictError(
            "Your assignment for this form is finalized; the data can no longer change",
            reason=STALE_WORKFLOW_STATE,
        )

    before = holder.state()
    try:
        upsert(submission.template, user, data, submission, enforce_required=False)
        if holder.status == STATUS_PENDING:
            holder.status = STATUS_EDITED
        holder.last_action = "Edited"
        db.session.flush()
        write_audit(
            action="update", resource="submission", resource_id=submission.id,
            actor_user_id=user.id,
            diff={"assignment_id": holder.id, "before": before, "after": holder.state()},
        )
        db.session.commit()
    except StaleDataError as exc:
        db.session.rollback()
        raise ConflictError(
            "The submission was changed by another request; reload and try again",
            reason=STALE_WORKFLOW_STATE,
        ) from exc

    logger.info(
        "Submission updated",
        extra={"submission_id": submission.id, "assignment_id": holder.id, "user_id": user.id},
    )
    return submission
