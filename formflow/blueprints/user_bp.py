"""
User directory blueprint.

Routes:
  GET    /users/me                                   – current user (+ approval authority)
  GET    /users                                      – list (filter: lab, active, q)
  POST   /users                                      – create (admin)
  PUT    /users/<uid>                                – update (admin)
"""

from flask import Blueprint, request

from formflow.auth import current_user, require_admin, require_auth
from formflow.services import user_service
from formflow.services.system_config_service import has_approval_authority
from formflow.utils.errors import E, api_error, api_ok

user_bp = Blueprint("users", __name__, url_prefix="/api/v1/users")


@user_bp.route("/me", methods=["GET"])
@require_auth
def me():
    user = current_user()
    data = user.to_dict()
    data["has_approval_authority"] = has_approval_authority(user)
    return api_ok("User fetched", data)


@user_bp.route("", methods=["GET"])
@require_auth
def list_users():
    """Delegation pickers call this with ?lab=<lab_name>&active=true."""
    users = user_service.list_users(
        lab_name=request.args.get("lab"),
        active_only=request.args.get("active") == "true",
        search=request.args.get("q"),
    )
    return api_ok("Users fetched", {"items": [u.to_dict() for u in users], "total": len(users)})


@user_bp.route("", methods=["POST"])
@require_admin
def create_user():
    body = request.get_json(silent=True)
    if not isinstance(body, dict) or not body:
        return api_error(E.VALIDATION_REQUIRED, "Request body is required")
    user = user_service.create_user(body, actor=current_user())
    return api_ok("User created", user.to_dict(), status=201)


@user_bp.route("/<int:uid>", methods=["PUT"])
@require_admin
def update_user(uid):
    body = request.get_json(silent=True)
    if not isinstance(body, dict) or not body:
        return api_error(E.VALIDATION_REQUIRED, "Nothing to update")
    user = user_service.update_user(uid, body, actor=current_user())
    return api_ok("User updated", user.to_dict())
