"""
Rate limiting configuration.

Applies per-blueprint rate limits using Flask-Limiter. The Limiter instance
is created in formflow/__init__.py with no default limits; this module
applies limits per route category.

Usage:
    from formflow.middleware.rate_limiter import init_rate_limits
    init_rate_limits(app, limiter)
"""

import logging

logger = logging.getLogger(__name__)

DEFAULT_WORKFLOW_LIMIT = "60/minute"
DEFAULT_READ_LIMIT = "200/minute"

WRITE_BLUEPRINTS = ("workflow", "templates", "submissions", "config", "users", "admin")
READ_BLUEPRINTS = ("notifications", "audit")


def init_rate_limits(app, limiter):
    """
    Apply rate limits to API blueprints.

    Limits (per remote IP):
        - Workflow / mutation areas:  WORKFLOW_RATE_LIMIT (default 60/minute)
        - Notifications / audit:      200/minute
        - Health check:               exempt

    Rate limiting is disabled in testing mode.
    """
    if app.config.get("TESTING"):
        app.logger.info("Rate limiter disabled (TESTING=True)")
        return

    write_limit = app.config.get("WORKFLOW_RATE_LIMIT") or DEFAULT_WORKFLOW_LIMIT
    for bp_name in WRITE_BLUEPRINTS:
        bp = app.blueprints.get(bp_name)
        if bp:
            limiter.limit(write_limit)(bp)

    for bp_name in READ_BLUEPRINTS:
        bp = app.blueprints.get(bp_name)
        if bp:
            limiter.limit(DEFAULT_READ_LIMIT)(bp)

    bp = app.blueprints.get("health")
    if bp:
        limiter.exempt(bp)

    app.logger.info(
        "Rate limiter configured (write: %s, read: %s)", write_limit, DEFAULT_READ_LIMIT,
    )
