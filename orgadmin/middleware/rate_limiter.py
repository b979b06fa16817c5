"""
Rate limiting for the administrator API.

The Limiter instance is created in orgadmin/__init__.py with no default
limits; this module applies limits per blueprint, keyed by tenant when the
bearer token carried one.

Usage:
    from orgadmin.middleware.rate_limiter import init_rate_limits
    init_rate_limits(app, limiter)
"""

import logging

from flask import g, request as flask_request

logger = logging.getLogger(__name__)

# Blueprint name → limit string
BLUEPRINT_LIMITS = {
    "admins": "60/minute",
    "admin_audit": "200/minute",
}


def company_rate_limit_key():
    """company_id from the token if present, else remote IP."""
    company_id = getattr(g, "company_id", None)
    if company_id:
        return f"company:{company_id}"
    return flask_request.remote_addr or "unknown"


def init_rate_limits(app, limiter):
    """
    Apply rate limits to the registered API blueprints.

    Limits:
        - administrator management (mostly writes): 60/minute
        - audit trail reads:                        200/minute

    Rate limiting is disabled in testing mode.
    """
    if app.config.get("TESTING"):
        app.logger.info("Rate limiter disabled (TESTING=True)")
        return

    for bp_name, limit in BLUEPRINT_LIMITS.items():
        bp = app.blueprints.get(bp_name)
        if bp:
            limiter.limit(limit, key_func=company_rate_limit_key)(bp)

    app.logger.info(
        "Rate limiter configured: %s",
        ", ".join(f"{name}: {limit}" for name, limit in BLUEPRINT_LIMITS.items()),
    )
