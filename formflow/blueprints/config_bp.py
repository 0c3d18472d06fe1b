"""
System configuration blueprint.

Routes:
  GET    /config                                     – key → value map (authenticated)
  GET    /config/entries                             – keys with descriptions (admin)
  PUT    /config                                     – upsert keys (admin)
"""

from flask import Blueprint, request

from formflow.auth import current_user, require_admin, require_auth
from formflow.services import system_config_service
from formflow.utils.errors import E, api_error, api_ok

config_bp = Blueprint("config", __name__, url_prefix="/api/v1/config")


@config_bp.route("", methods=["GET"])
@require_auth
def get_config():
    return api_ok("Configuration fetched", system_config_service.load_snapshot().to_dict())


@config_bp.route("/entries", methods=["GET"])
@require_admin
def list_entries():
    return api_ok("Configuration fetched", {"items": system_config_service.list_config()})


@config_bp.route("", methods=["PUT"])
@require_admin
def update_config():
    """Body: { KEY: value, ... } or { KEY: {value, description}, ... }"""
    body = request.get_json(silent=True)
    if not isinstance(body, dict) or not body:
        return api_error(E.VALIDATION_REQUIRED, "Body must be a non-empty object of key → value")
    rows = system_config_service.update_config(body, actor=current_user())
    return api_ok("System configuration updated successfully", {
        "updated": [row.to_dict() for row in rows],
        "config": system_config_service.load_snapshot().to_dict(),
    })
