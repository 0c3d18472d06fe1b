"""
Workflow domain models.

Models:
    - Submission: field-id → value data filled in against a template.
    - FormAssignment: one hop of a template through a delegation chain.

Both tables carry a ``version`` column wired into SQLAlchemy's optimistic
concurrency (``version_id_col``): every UPDATE matches on the version that
was read, so a concurrent writer turns the second flush into a
``StaleDataError``.

Lineage:
    root assignment (created by share)   chain=[]        assigned_to=A
      └─ child (A delegates to B)        chain=[A]       assigned_to=B
           └─ child (B delegates to C)   chain=[A, B]    assigned_to=C
"""

from datetime import datetime, timezone

from formflow.models import db
from formflow.utils.helpers import iso

# ── Constants ────────────────────────────────────────────────────────────────

STATUS_PENDING = "Pending"
STATUS_EDITED = "Edited"
STATUS_APPROVED = "Approved"
STATUS_SUBMITTED = "Submitted"

ASSIGNMENT_STATUSES = {STATUS_PENDING, STATUS_EDITED, STATUS_APPROVED, STATUS_SUBMITTED}

LAST_ACTIONS = {
    "Edited", "Approved", "Submitted", "Marked Back", "Delegated",
    "Draft Saved", "Draft Updated", "Auto-Approved", "Marked Final",
}

# Workflow transition rules.
#   from       statuses the operation may start in
#   finalized  required value of is_finalized before the operation
#   to         resulting status (None = unchanged)
WORKFLOW_TRANSITIONS = {
    "save_draft": {"from": [STATUS_PENDING, STATUS_EDITED], "finalized": False, "to": STATUS_EDITED},
    "delegate": {"from": [STATUS_PENDING, STATUS_EDITED], "finalized": False, "to": STATUS_EDITED},
    "mark_back": {"from": [STATUS_PENDING, STATUS_EDITED], "finalized": False, "to": STATUS_EDITED},
    "approve": {"from": [STATUS_PENDING, STATUS_EDITED], "finalized": False, "to": STATUS_APPROVED},
    "mark_final": {
        "from": [STATUS_PENDING, STATUS_EDITED, STATUS_APPROVED],
        "finalized": False,
        "to": None,
    },
    "submit_to_distributor": {"from": [STATUS_APPROVED], "finalized": True, "to": STATUS_SUBMITTED},
}

# Operations gated by the approval-authority designation list.
AUTHORITY_ACTIONS = {"approve", "mark_final"}


def validate_workflow_transition(action, status, is_finalized):
    """Return True if ``action`` is legal for an assignment in this state."""
    rule = WORKFLOW_TRANSITIONS.get(action)
    if rule is None:
        return False
    return status in rule["from"] and bool(is_finalized) == rule["finalized"]


class Submission(db.Model):
    """
    Filled-in form data.

    Shared forward along a delegation chain through ``FormAssignment.data_id``;
    only the holder of a non-finalised assignment referencing it may write.
    """

    __tablename__ = "submissions"

    id = db.Column(db.Integer, primary_key=True)
    template_id = db.Column(
        db.Integer, db.ForeignKey("form_templates.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    submitted_by = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True, index=True,
    )
    data = db.Column(db.JSON, nullable=False, default=dict)
    ip_address = db.Column(db.String(45), nullable=True)
    version = db.Column(db.Integer, nullable=False, default=1)

    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(
        db.DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    __mapper_args__ = {"version_id_col": version}

    template = db.relationship("FormTemplate")
    submitter = db.relationship("User", foreign_keys=[submitted_by])

    def to_dict(self):
        return {
            "id": self.id,
            "template_id": self.template_id,
            "submitted_by": self.submitted_by,
            "data": self.data or {},
            "ip_address": self.ip_address,
            "version": self.version,
            "created_at": iso(self.created_at),
            "updated_at": iso(self.updated_at),
        }

    def __repr__(self):
        return f"<Submission {self.id}: template={self.template_id}>"


class FormAssignment(db.Model):
    """
    One (template, assignee) hop in a delegation chain.

    ``delegation_chain`` lists the user ids that held the form before the
    current assignee, oldest first. A child's chain is always
    ``parent.delegation_chain + [parent.assigned_to]``.

    ``instructions`` is written once at creation. Once ``is_finalized`` is
    set only ``submit_to_distributor`` may still change the row.

    ``is_delegated`` marks an assignment whose form was handed to a child;
    its assignee is no longer the current holder until a mark-back restores
    it.
    """

    __tablename__ = "form_assignments"
    __table_args__ = (
        db.Index("idx_assignment_template_assignee", "template_id", "assigned_to"),
        db.Index("idx_assignment_assignee_status", "assigned_to", "status"),
    )

    id = db.Column(db.Integer, primary_key=True)
    template_id = db.Column(
        db.Integer, db.ForeignKey("form_templates.id", ondelete="CASCADE"),
        nullable=False,
    )
    assigned_to = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="CASCADE"), nullable=False,
    )
    assigned_by = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True,
    )
    data_id = db.Column(
        db.Integer, db.ForeignKey("submissions.id", ondelete="SET NULL"),
        nullable=True, index=True,
    )
    parent_assignment_id = db.Column(
        db.Integer, db.ForeignKey("form_assignments.id", ondelete="CASCADE"),
        nullable=True, index=True,
    )

    status = db.Column(
        db.String(20), nullable=False, default=STATUS_PENDING,
        comment="Pending | Edited | Approved | Submitted",
    )
    delegation_chain = db.Column(db.JSON, nullable=False, default=list)
    last_action = db.Column(db.String(30), nullable=True)
    is_read = db.Column(db.Boolean, nullable=False, default=False)
    remarks = db.Column(db.Text, nullable=True)
    instructions = db.Column(db.Text, nullable=True)
    is_finalized = db.Column(db.Boolean, nullable=False, default=False)
    is_delegated = db.Column(
        db.Boolean, nullable=False, default=False,
        comment="Set while a child assignment holds the form",
    )
    version = db.Column(db.Integer, nullable=False, default=1)

    # Denormalised projections of the users involved; kept in step by
    # user_service.refresh_assignment_snapshots and the resync job.
    assigned_to_name = db.Column(db.String(200), nullable=True)
    assigned_to_designation = db.Column(db.String(150), nullable=True)
    assigned_by_name = db.Column(db.String(200), nullable=True)

    last_overdue_notice_on = db.Column(
        db.Date, nullable=True,
        comment="Day the overdue scanner last notified the assignee",
    )

    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(
        db.DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    __mapper_args__ = {"version_id_col": version}

    template = db.relationship("FormTemplate")
    assignee = db.relationship("User", foreign_keys=[assigned_to])
    assigner = db.relationship("User", foreign_keys=[assigned_by])
    submission = db.relationship("Submission", foreign_keys=[data_id])
    parent = db.relationship("FormAssignment", remote_side=[id], foreign_keys=[parent_assignment_id])

    # ── Helpers ──────────────────────────────────────────────────────────

    @property
    def is_root(self) -> bool:
        return self.parent_assignment_id is None

    @property
    def chain(self) -> list[int]:
        return list(self.delegation_chain or [])

    def snapshot_users(self, assignee, assigner):
        self.assigned_to_name = assignee.display_name if assignee else None
        self.assigned_to_designation = assignee.designation if assignee else None
        self.assigned_by_name = assigner.display_name if assigner else None

    def state(self) -> dict:
        """Fields recorded as before/after in the audit trail."""
        return {
            "status": self.status,
            "last_action": self.last_action,
            "is_finalized": self.is_finalized,
            "is_delegated": self.is_delegated,
            "data_id": self.data_id,
            "remarks": self.remarks,
        }

    def to_dict(self):
        return {
            "id": self.id,
            "template_id": self.template_id,
            "assigned_to": self.assigned_to,
            "assigned_by": self.assigned_by,
            "assigned_to_name": self.assigned_to_name,
            "assigned_to_designation": self.assigned_to_designation,
            "assigned_by_name": self.assigned_by_name,
            "data_id": self.data_id,
            "status": self.status,
            "parent_assignment_id": self.parent_assignment_id,
            "delegation_chain": self.chain,
            "last_action": self.last_action,
            "is_read": self.is_read,
            "remarks": self.remarks,
            "instructions": self.instructions,
            "is_finalized": self.is_finalized,
            "is_delegated": self.is_delegated,
            "version": self.version,
            "created_at": iso(self.created_at),
            "updated_at": iso(self.updated_at),
        }

    def __repr__(self):
        return f"<FormAssignment {self.id}: template={self.template_id} to={self.assigned_to} [{self.status}]>"
