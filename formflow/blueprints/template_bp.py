"""
Form Template Blueprint.

Routes:
  GET    /templates                                  – list (filter=all|owned|shared_with_me|public)
  POST   /templates                                  – create
  GET    /templates/<tid>                            – detail
  PUT    /templates/<tid>                            – update
  DELETE /templates/<tid>                            – soft delete
  POST   /templates/<tid>/clone                      – clone
  POST   /templates/<tid>/share                      – share with users
  DELETE /templates/<tid>/share/<uid>                – revoke a user's share
  POST   /templates/<tid>/reminders                  – remind pending holders
  GET    /templates/<tid>/responses                  – submitted responses
"""

from flask import Blueprint, request

from formflow.auth import current_user, require_auth
from formflow.services import template_service
from formflow.utils.errors import E, api_error, api_ok

template_bp = Blueprint("templates", __name__, url_prefix="/api/v1/templates")

# camelCase API keys → model attributes
_KEY_MAP = {
    "sharedWithUsers": "shared_with_users",
    "isPublic": "is_public",
    "allowDelegation": "allow_delegation",
    "allowMultipleSubmissions": "allow_multiple_submissions",
    "isActive": "is_active",
}


def _body() -> dict:
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        return {}
    return {_KEY_MAP.get(k, k): v for k, v in data.items()}


@template_bp.route("", methods=["GET"])
@require_auth
def list_templates():
    filter_ = request.args.get("filter", "all")
    include_inactive = request.args.get("active") != "true"
    templates = template_service.list_templates(current_user(), filter_, include_inactive=include_inactive)
    return api_ok("Templates fetched", {
        "items": [t.to_dict() for t in templates],
        "total": len(templates),
    })


@template_bp.route("", methods=["POST"])
@require_auth
def create_template():
    """Body: { title, description?, fields[], sharedWithUsers?, isPublic?, allowDelegation?, deadline? }"""
    body = _body()
    if not body:
        return api_error(E.VALIDATION_REQUIRED, "Request body is required")
    template = template_service.create_template(current_user(), body)
    return api_ok("Template created successfully", template.to_dict(), status=201)


@template_bp.route("/<int:tid>", methods=["GET"])
@require_auth
def get_template(tid):
    return api_ok("Template fetched", template_service.get_template(current_user(), tid).to_dict())


@template_bp.route("/<int:tid>", methods=["PUT"])
@require_auth
def update_template(tid):
    body = _body()
    if not body:
        return api_error(E.VALIDATION_REQUIRED, "Nothing to update")
    template = template_service.update_template(current_user(), tid, body)
    return api_ok("Template updated successfully", template.to_dict())


@template_bp.route("/<int:tid>", methods=["DELETE"])
@require_auth
def delete_template(tid):
    template_service.delete_template(current_user(), tid)
    return api_ok("Template deleted successfully")


@template_bp.route("/<int:tid>/clone", methods=["POST"])
@require_auth
def clone_template(tid):
    clone = template_service.clone_template(current_user(), tid)
    return api_ok("Template cloned successfully", clone.to_dict(), status=201)


@template_bp.route("/<int:tid>/share", methods=["POST"])
@require_auth
def share_template(tid):
    """Body: { userIds: [int], instructions? }"""
    body = request.get_json(silent=True) or {}
    user_ids = body.get("userIds")
    if not isinstance(user_ids, list) or not user_ids:
        return api_error(E.VALIDATION_REQUIRED, "userIds must be a non-empty list")
    created = template_service.share_template(
        current_user(), tid, user_ids, instructions=body.get("instructions"),
    )
    return api_ok(
        f"Template shared with {len(created)} new user(s)",
        {"assignments": [a.to_dict() for a in created]},
        status=201 if created else 200,
    )


@template_bp.route("/<int:tid>/share/<int:uid>", methods=["DELETE"])
@require_auth
def unshare_template(tid, uid):
    result = template_service.unshare_template(current_user(), tid, uid)
    return api_ok("Share removed", result)


@template_bp.route("/<int:tid>/reminders", methods=["POST"])
@require_auth
def send_reminders(tid):
    """Body: { userIds? }; defaults to every pending recipient."""
    body = request.get_json(silent=True) or {}
    notified = template_service.send_reminders(current_user(), tid, body.get("userIds"))
    return api_ok(f"Reminder sent to {len(notified)} user(s)", {"user_ids": notified})


@template_bp.route("/<int:tid>/responses", methods=["GET"])
@require_auth
def list_responses(tid):
    responses = template_service.list_responses(current_user(), tid)
    return api_ok("Responses fetched", {"items": responses, "total": len(responses)})
