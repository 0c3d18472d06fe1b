"""
JWT Auth Middleware: parses the bearer token and sets g.jwt_*.

The hook only decodes; it never rejects a request. Route decorators in
``formflow.auth`` decide whether an identity is required and load the user.

    Authorization: Bearer <token>  →  g.jwt_user_id, g.jwt_role, g.jwt_error
"""

import logging

import jwt as pyjwt
from flask import g, request

from formflow.services.jwt_service import decode_access_token

logger = logging.getLogger(__name__)

# Paths that skip JWT parsing entirely
JWT_SKIP_PREFIXES = (
    "/api/v1/health",
)


def init_jwt_middleware(app):
    """Register JWT middleware as a before_request hook."""

    @app.before_request
    def _jwt_auth():
        g.jwt_user_id = None
        g.jwt_role = None
        g.jwt_error = None
        g.pop("current_user", None)

        path = request.path
        if not path.startswith("/api/v1/"):
            return
        if path.startswith(JWT_SKIP_PREFIXES):
            return

        auth_header = request.headers.get("Authorization", "")
        if not auth_header.startswith("Bearer "):
            return

        token = auth_header[7:].strip()
        try:
            payload = decode_access_token(token)
        except pyjwt.ExpiredSignatureError:
            g.jwt_error = "Token has expired"
            return
        except pyjwt.InvalidTokenError as exc:
            logger.debug("Rejected bearer token: %s", exc)
            g.jwt_error = "Invalid token"
            return

        try:
            g.jwt_user_id = int(payload.get("sub"))
        except (TypeError, ValueError):
            g.jwt_error = "Invalid token subject"
            return
        g.jwt_role = payload.get("role")
