"""
Rate limiting configuration.

The Limiter instance is created in testmanager/__init__.py with no default
limits; this module applies limits per blueprint.

Usage:
    from testmanager.middleware.rate_limiter import init_rate_limits
    init_rate_limits(app, limiter)
"""

import logging

logger = logging.getLogger(__name__)

AI_LIMIT = "10/minute"
AUTH_LIMIT = "20/minute"
RUN_LIMIT = "30/minute"
WRITE_LIMIT = "120/minute"


def init_rate_limits(app, limiter):
    """
    Apply rate limits to API blueprints (per remote IP).

        - AI endpoints:      10/minute  (provider calls are paid)
        - Auth endpoints:    20/minute  (login brute force)
        - Run endpoints:     30/minute  (each run spawns a browser)
        - Catalogue CRUD:   120/minute

    Rate limiting is disabled in testing mode.
    """
    if app.config.get("TESTING"):
        app.logger.info("Rate limiter disabled (TESTING=True)")
        return

    limits = {
        "ai": AI_LIMIT,
        "auth_bp": AUTH_LIMIT,
        "run": RUN_LIMIT,
        "project": WRITE_LIMIT,
        "test_case": WRITE_LIMIT,
        "fixture": WRITE_LIMIT,
        "step": WRITE_LIMIT,
        "version": WRITE_LIMIT,
        "release": WRITE_LIMIT,
        "admin": WRITE_LIMIT,
    }
    for bp_name, limit in limits.items():
        bp = app.blueprints.get(bp_name)
        if bp:
            limiter.limit(limit)(bp)

    app.logger.info(
        "Rate limiter configured — AI: %s, auth: %s, runs: %s, CRUD: %s",
        AI_LIMIT, AUTH_LIMIT, RUN_LIMIT, WRITE_LIMIT,
    )
