"""
Form Workflow Service
Authentication & authorization decorators.

Provides:
    - require_auth: a valid bearer token for an active user is mandatory
    - require_admin: as above, and the user must have the 'admin' role

Identity comes from the JWT middleware (g.jwt_user_id); the decorators load
the User row once per request into g.current_user. Failures raise the
platform exceptions so the app-level handlers render the envelope.

Usage:
    @bp.route("/approve", methods=["POST"])
    @require_auth
    def approve():
        user = current_user()
"""

import functools
import logging

from flask import g

from formflow.core.exceptions import ForbiddenError, UnauthorizedError
from formflow.models import db
from formflow.models.auth import User

logger = logging.getLogger(__name__)


def current_user() -> User:
    """Return the authenticated user for this request, loading it if needed."""
    user = g.get("current_user")
    if user is not None:
        return user

    user_id = g.get("jwt_user_id")
    if user_id is None:
        raise UnauthorizedError(g.get("jwt_error") or "Authentication required")

    user = db.session.get(User, user_id)
    if user is None or not user.is_active:
        logger.warning("Token for unknown or inactive user_id=%s", user_id)
        raise UnauthorizedError("User account is not active")
    g.current_user = user
    return user


def require_auth(f):
    """Decorator: require an authenticated, active user."""
    @functools.wraps(f)
    def decorated(*args, **kwargs):
        current_user()
        return f(*args, **kwargs)
    return decorated


def require_admin(f):
    """Decorator: require an authenticated admin."""
    @functools.wraps(f)
    def decorated(*args, **kwargs):
        user = current_user()
        if not user.is_admin:
            logger.warning("Access denied: user %d tried admin endpoint %s", user.id, f.__name__)
            raise ForbiddenError("Administrator role required")
        return f(*args, **kwargs)
    return decorated
