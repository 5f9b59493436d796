"""
Rate limiting configuration.

Applies per-blueprint rate limits using Flask-Limiter.  The Limiter
instance is created in retail_audit/__init__.py with no default limits;
this module applies limits per route category.

Usage:
    from retail_audit.middleware.rate_limiter import init_rate_limits
    init_rate_limits(app, limiter)
"""

import logging

logger = logging.getLogger(__name__)

WRITE_LIMIT = "60/minute"
READ_LIMIT = "200/minute"

WRITE_BLUEPRINTS = ("audit", "action", "visit", "store")
READ_BLUEPRINTS = ("checklist", "me")


def init_rate_limits(app, limiter):
    """
    Apply rate limits to API blueprints.

    Limits (per remote IP):
        - Mutation blueprints: 60/minute
        - Read-only blueprints: 200/minute
        - Health check:        exempt

    Rate limiting is disabled in testing mode.
    """
    if app.config.get("TESTING"):
        app.logger.info("Rate limiter disabled (TESTING=True)")
        return

    for bp_name in WRITE_BLUEPRINTS:
        bp = app.blueprints.get(bp_name)
        if bp:
            limiter.limit(WRITE_LIMIT)(bp)

    for bp_name in READ_BLUEPRINTS:
        bp = app.blueprints.get(bp_name)
        if bp:
            limiter.limit(READ_LIMIT)(bp)

    bp = app.blueprints.get("health")
    if bp:
        limiter.exempt(bp)

    app.logger.info("Rate limiter configured: write=%s read=%s", WRITE_LIMIT, READ_LIMIT)
