"""
Submission Blueprint.

Routes:
  GET    /submissions/<sid>                          – read submitted data
  PUT    /submissions/<sid>                          – replace data (current holder only)
"""

from flask import Blueprint, request

from formflow.auth import current_user, require_auth
from formflow.services import submission_service
from formflow.utils.errors import E, api_error, api_ok

submission_bp = Blueprint("submissions", __name__, url_prefix="/api/v1/submissions")


@submission_bp.route("/<int:sid>", methods=["GET"])
@require_auth
def get_submission(sid):
    submission = submission_service.get_submission(current_user(), sid)
    return api_ok("Submission fetched", submission.to_dict())


@submission_bp.route("/<int:sid>", methods=["PUT"])
@require_auth
def update_submission(sid):
    """Body: { data: {fieldId: value} }"""
    body = request.get_json(silent=True) or {}
    data = body.get("data") if isinstance(body, dict) else None
    if not isinstance(data, dict):
        return api_error(E.VALIDATION_INVALID, "data must be an object of field values")
    submission = submission_service.update_submission(current_user(), sid, data)
    return api_ok("Submission updated", submission.to_dict())
