"""
Form Workflow Blueprint.

Routes:
  POST   /workflow/delegate                          – delegate to another user
  POST   /workflow/mark-back                         – return to an earlier holder
  POST   /workflow/approve                           – approve (and finalize)
  POST   /workflow/mark-final                        – finalize without approving
  POST   /workflow/submit-distributor                – submit back to the distributor
  POST   /workflow/draft                             – save draft data
  GET    /workflow/chain/<aid>                       – ordered delegation chain
  GET    /workflow/submissions/<sid>/chain           – chain for a submission
  GET    /workflow/assignments                       – my assignments (inbox)
  POST   /workflow/assignments/<aid>/read            – mark an assignment read

Request bodies use the camelCase keys of the public API. Business rules live
in ``formflow.services.workflow_service``; this module only parses input.
"""

from flask import Blueprint, request

from formflow.auth import current_user, require_auth
from formflow.models.workflow import ASSIGNMENT_STATUSES
from formflow.services import workflow_service
from formflow.utils.errors import E, api_error, api_ok

workflow_bp = Blueprint("workflow", __name__, url_prefix="/api/v1/workflow")


# ── helpers ──────────────────────────────────────────────────────────────

def _body() -> dict:
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else {}


def _as_flag(value, default=True) -> bool:
    if value is None:
        return default
    if isinstance(value, str):
        return value.strip().lower() in ("1", "true", "yes", "on")
    return bool(value)


def _require(body: dict, key: str):
    value = body.get(key)
    if value in (None, ""):
        return None, api_error(E.VALIDATION_REQUIRED, f"{key} is required")
    return value, None


# ═════════════════════════════════════════════════════════════════════════════
# TRANSITIONS
# ═════════════════════════════════════════════════════════════════════════════

@workflow_bp.route("/delegate", methods=["POST"])
@require_auth
def delegate():
    """Body: { templateId, assignedToId, remarks?, parentAssignmentId? }"""
    body = _body()
    if body.get("templateId") in (None, "") and body.get("parentAssignmentId") in (None, ""):
        return api_error(E.VALIDATION_REQUIRED, "templateId is required")
    assigned_to_id, err = _require(body, "assignedToId")
    if err:
        return err

    child = workflow_service.delegate(
        current_user(),
        template_id=body.get("templateId"),
        assigned_to_id=assigned_to_id,
        remarks=body.get("remarks"),
        parent_assignment_id=body.get("parentAssignmentId"),
    )
    return api_ok("Form delegated successfully", child.to_dict(), status=201)


@workflow_bp.route("/mark-back", methods=["POST"])
@require_auth
def mark_back():
    """Body: { assignmentId, remarks?, dataId?, returnToId? }"""
    body = _body()
    assignment_id, err = _require(body, "assignmentId")
    if err:
        return err

    current, restored = workflow_service.mark_back(
        current_user(),
        assignment_id,
        remarks=body.get("remarks"),
        data_id=body.get("dataId"),
        return_to_id=body.get("returnToId"),
    )
    data = current.to_dict()
    data["returned_to"] = restored.to_dict()
    return api_ok("Form marked back successfully", data)


@workflow_bp.route("/approve", methods=["POST"])
@require_auth
def approve():
    """Body: { assignmentId, remarks?, finalize? (default true) }"""
    body = _body()
    assignment_id, err = _require(body, "assignmentId")
    if err:
        return err

    assignment = workflow_service.approve(
        current_user(),
        assignment_id,
        remarks=body.get("remarks"),
        finalize=_as_flag(body.get("finalize"), default=True),
    )
    return api_ok("Form approved successfully", assignment.to_dict())


@workflow_bp.route("/mark-final", methods=["POST"])
@require_auth
def mark_final():
    """Body: { assignmentId, remarks? }"""
    body = _body()
    assignment_id, err = _require(body, "assignmentId")
    if err:
        return err

    assignment = workflow_service.mark_final(current_user(), assignment_id, remarks=body.get("remarks"))
    return api_ok("Form marked as final", assignment.to_dict())


@workflow_bp.route("/submit-distributor", methods=["POST"])
@require_auth
def submit_to_distributor():
    """Body: { assignmentId, remarks? }"""
    body = _body()
    assignment_id, err = _require(body, "assignmentId")
    if err:
        return err

    assignment = workflow_service.submit_to_distributor(
        current_user(), assignment_id, remarks=body.get("remarks"),
    )
    return api_ok("Form submitted to distributor", assignment.to_dict())


@workflow_bp.route("/draft", methods=["POST"])
@require_auth
def save_draft():
    """Body: { templateId, data: {fieldId: value}, assignmentId? }"""
    body = _body()
    if body.get("templateId") in (None, "") and body.get("assignmentId") in (None, ""):
        return api_error(E.VALIDATION_REQUIRED, "templateId is required")
    data = body.get("data")
    if not isinstance(data, dict):
        return api_error(E.VALIDATION_INVALID, "data must be an object of field values")

    submission, assignment = workflow_service.save_draft(
        current_user(),
        template_id=body.get("templateId"),
        data=data,
        assignment_id=body.get("assignmentId"),
    )
    payload = submission.to_dict()
    payload["assignment"] = assignment.to_dict()
    return api_ok("Draft saved successfully", payload)


# ═════════════════════════════════════════════════════════════════════════════
# QUERIES
# ═════════════════════════════════════════════════════════════════════════════

@workflow_bp.route("/chain/<int:aid>", methods=["GET"])
@require_auth
def get_chain(aid):
    return api_ok("Chain details fetched", workflow_service.get_chain(current_user(), aid))


@workflow_bp.route("/submissions/<int:sid>/chain", methods=["GET"])
@require_auth
def get_chain_by_submission(sid):
    return api_ok("Chain details fetched", workflow_service.get_chain_by_submission(current_user(), sid))


@workflow_bp.route("/assignments", methods=["GET"])
@require_auth
def list_assignments():
    """Query: status?, unread=true|false, template_id?"""
    status = request.args.get("status")
    if status and status not in ASSIGNMENT_STATUSES:
        return api_error(
            E.VALIDATION_INVALID,
            f"status must be one of {sorted(ASSIGNMENT_STATUSES)}",
        )
    items = workflow_service.list_my_assignments(
        current_user(),
        status=status,
        unread_only=_as_flag(request.args.get("unread"), default=False),
        template_id=request.args.get("template_id", type=int),
    )
    return api_ok("Assignments fetched", {"items": items, "total": len(items)})


@workflow_bp.route("/assignments/<int:aid>/read", methods=["POST"])
@require_auth
def mark_assignment_read(aid):
    assignment = workflow_service.mark_read(current_user(), aid)
    return api_ok("Assignment marked as read", assignment.to_dict())
