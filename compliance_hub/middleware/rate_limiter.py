"""
Rate limiting configuration.

Applies per-blueprint rate limits using Flask-Limiter.
The Limiter instance is created in compliance_hub/__init__.py with no
default limits; this module applies granular limits per blueprint.

Usage:
    from compliance_hub.middleware.rate_limiter import init_rate_limits
    init_rate_limits(app, limiter)
"""

import logging

logger = logging.getLogger(__name__)

# Draft autosave fires on every form change in the stepper UI
COMPLIANCE_LIMIT = "120/minute"
DELIVERABLE_LIMIT = "60/minute"


def init_rate_limits(app, limiter):
    """
    Apply rate limits to API blueprints.

    Limits (per remote IP):
        - Compliance endpoints:   120/minute (autosave-heavy)
        - Deliverable endpoints:  60/minute
        - Health check:           exempt

    Rate limiting is disabled in testing mode.
    """

    if app.config.get("TESTING"):
        app.logger.info("Rate limiter disabled (TESTING=True)")
        return

    bp = app.blueprints.get("compliance")
    if bp:
        limiter.limit(COMPLIANCE_LIMIT)(bp)

    bp = app.blueprints.get("deliverables")
    if bp:
        limiter.limit(DELIVERABLE_LIMIT)(bp)

    bp = app.blueprints.get("health_bp")
    if bp:
        limiter.exempt(bp)

    app.logger.info(
        "Rate limiter configured — compliance: %s, deliverables: %s",
        COMPLIANCE_LIMIT, DELIVERABLE_LIMIT,
    )
