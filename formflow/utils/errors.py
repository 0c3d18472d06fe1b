"""Standardised API responses.

Every endpoint answers with the same envelope::

    {"success": bool, "message": str, "data"?: ..., "errors"?: {...}, "code"?: str}

Usage
-----
    from formflow.utils.errors import api_error, api_ok, E

    return api_ok("Form delegated", assignment.to_dict(), status=201)
    return api_error(E.VALIDATION_REQUIRED, "assignmentId is required")
"""

from __future__ import annotations

import logging

from flask import jsonify, request
from werkzeug.exceptions import HTTPException

from formflow.core.exceptions import (
    ConflictError,
    ForbiddenError,
    NotFoundError,
    UnauthorizedError,
    ValidationError,
)

logger = logging.getLogger(__name__)


# ── Error code constants ──────────────────────────────────────────────
class E:
    """Machine-readable error code constants."""

    # Malformed input – HTTP 400
    VALIDATION_REQUIRED = "ERR_VALIDATION_REQUIRED"
    VALIDATION_INVALID = "ERR_VALIDATION_INVALID"

    # Business / field validation – HTTP 422
    VALIDATION_FIELDS = "ERR_VALIDATION_FIELDS"

    # Auth – HTTP 401 / 403
    UNAUTHORIZED = "ERR_UNAUTHORIZED"
    FORBIDDEN = "ERR_FORBIDDEN"

    # Not-found – HTTP 404
    NOT_FOUND = "ERR_NOT_FOUND"

    # Conflict – HTTP 409
    CONFLICT_STATE = "ERR_CONFLICT_STATE"

    # Server – HTTP 500
    INTERNAL = "ERR_INTERNAL"


# ── Default HTTP status mapping ───────────────────────────────────────
_DEFAULT_STATUS: dict[str, int] = {
    E.VALIDATION_REQUIRED: 400,
    E.VALIDATION_INVALID: 400,
    E.VALIDATION_FIELDS: 422,
    E.UNAUTHORIZED: 401,
    E.FORBIDDEN: 403,
    E.NOT_FOUND: 404,
    E.CONFLICT_STATE: 409,
    E.INTERNAL: 500,
}


def api_ok(message: str, data=None, *, status: int = 200):
    """Return a success envelope."""
    body: dict = {"success": True, "message": message}
    if data is not None:
        body["data"] = data
    return jsonify(body), status


def api_error(
    code: str,
    message: str,
    *,
    status: int | None = None,
    errors: dict | None = None,
):
    """Return a standard JSON error response.

    Parameters
    ----------
    code : str
        Machine-readable error code (use ``E.*`` constants).
    message : str
        Human-readable explanation for developers / UI.
    status : int, optional
        HTTP status override.  Falls back to ``_DEFAULT_STATUS[code]``,
        then to ``400``.
    errors : dict, optional
        Field-level or structured detail.

    Returns
    -------
    tuple[Response, int]
        ``(jsonify(body), http_status)`` – drop-in for Flask views.
    """
    http_status = status or _DEFAULT_STATUS.get(code, 400)

    body: dict = {
        "success": False,
        "message": message,
        "code": code,
    }
    if errors:
        body["errors"] = errors

    return jsonify(body), http_status


def _discard_unit_of_work():
    from formflow.models import db

    db.session.rollback()


def register_error_handlers(app):
    """Map the platform exceptions onto the response envelope.

    Every handler rolls back the session first so a failed operation never
    leaves half-applied changes behind for the next commit.
    """

    @app.errorhandler(UnauthorizedError)
    def _handle_unauthorized(error: UnauthorizedError):
        _discard_unit_of_work()
        return api_error(E.UNAUTHORIZED, str(error))

    @app.errorhandler(ForbiddenError)
    def _handle_forbidden(error: ForbiddenError):
        _discard_unit_of_work()
        return api_error(E.FORBIDDEN, str(error))

    @app.errorhandler(NotFoundError)
    def _handle_not_found(error: NotFoundError):
        _discard_unit_of_work()
        return api_error(E.NOT_FOUND, str(error))

    @app.errorhandler(ConflictError)
    def _handle_conflict(error: ConflictError):
        _discard_unit_of_work()
        errors = {"reason": error.reason} if error.reason else None
        return api_error(E.CONFLICT_STATE, str(error), errors=errors)

    @app.errorhandler(ValidationError)
    def _handle_validation(error: ValidationError):
        _discard_unit_of_work()
        return api_error(E.VALIDATION_FIELDS, str(error), errors=error.details)

    @app.errorhandler(HTTPException)
    def _handle_http(error: HTTPException):
        _discard_unit_of_work()
        return api_error(
            f"ERR_HTTP_{error.code}",
            error.description or error.name,
            status=error.code,
        )

    @app.errorhandler(Exception)
    def _handle_unexpected(error: Exception):
        _discard_unit_of_work()
        logger.exception("Unexpected error endpoint=%s", request.endpoint)
        return api_error(E.INTERNAL, "Internal server error")
