"""
Rate limiting configuration.

Applies per-blueprint rate limits using Flask-Limiter.
The Limiter instance is created in contractflow/__init__.py with no default
limits; this module applies granular limits per route category.

Usage:
    from contractflow.middleware.rate_limiter import init_rate_limits
    init_rate_limits(app, limiter)
"""

import logging

logger = logging.getLogger(__name__)

IMPORT_LIMIT = "30/minute"
WRITE_LIMIT = "60/minute"


def init_rate_limits(app, limiter):
    """
    Apply rate limits to API blueprints.

    Limits (per remote IP):
        - Programme endpoints:  30/minute  (imports parse whole files)
        - Approval endpoints:   60/minute
        - Health probes:        exempt

    Rate limiting is disabled in testing mode.
    """

    if app.config.get("TESTING"):
        app.logger.info("Rate limiter disabled (TESTING=True)")
        return

    bp = app.blueprints.get("programme_bp")
    if bp:
        limiter.limit(IMPORT_LIMIT)(bp)

    bp = app.blueprints.get("approval_bp")
    if bp:
        limiter.limit(WRITE_LIMIT)(bp)

    bp = app.blueprints.get("health_bp")
    if bp:
        limiter.exempt(bp)

    app.logger.info(
        "Rate limiter configured: programme %s, approval %s, health exempt",
        IMPORT_LIMIT, WRITE_LIMIT,
    )
