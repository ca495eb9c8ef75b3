"""
Rate limiting configuration.

Applies per-blueprint rate limits using Flask-Limiter.
The Limiter instance is created in migconf/__init__.py with no default
limits; this module applies granular limits per route category.

Usage:
    from migconf.middleware.rate_limiter import init_rate_limits
    init_rate_limits(app, limiter)
"""

import logging

logger = logging.getLogger(__name__)

PUBLIC_LIMIT = "30/minute"
WRITE_LIMIT = "60/minute"
READ_LIMIT = "200/minute"


def init_rate_limits(app, limiter):
    """
    Apply rate limits to API blueprints.

    Limits (per remote IP):
        - Public conference link: 30/minute (token holders, unauthenticated)
        - Admin endpoints:        60/minute (templates, connections, conferences)
        - Notifications:          200/minute (polled by the SPA)
        - Health check:           exempt

    Rate limiting is disabled in testing mode.
    """
    if app.config.get("TESTING"):
        app.logger.info("Rate limiter disabled (TESTING=True)")
        return

    bp = app.blueprints.get("public_bp")
    if bp:
        limiter.limit(PUBLIC_LIMIT)(bp)

    for bp_name in ("template_bp", "connection_bp", "conference_bp"):
        bp = app.blueprints.get(bp_name)
        if bp:
            limiter.limit(WRITE_LIMIT)(bp)

    bp = app.blueprints.get("notification_bp")
    if bp:
        limiter.limit(READ_LIMIT)(bp)

    bp = app.blueprints.get("health_bp")
    if bp:
        limiter.exempt(bp)

    app.logger.info(
        "Rate limiter configured: public: %s, admin: %s, notifications: %s",
        PUBLIC_LIMIT, WRITE_LIMIT, READ_LIMIT,
    )
