"""
Per-blueprint request limits (Flask-Limiter).

The shared ``limiter`` in portal/__init__.py has no default limit; this
module attaches one limit string per blueprint group, keyed by client IP.
Each group's limit can be overridden in config:

    RATELIMIT_AUTH    login / register / password       (default 20/minute)
    RATELIMIT_WRITE   reports and integration uploads   (default 120/minute)
    RATELIMIT_READ    analytics and user directory      (default 300/minute)
"""

import logging

logger = logging.getLogger(__name__)

LIMIT_GROUPS = {
    "RATELIMIT_AUTH": ("20/minute", ("auth_bp",)),
    "RATELIMIT_WRITE": ("120/minute", ("reports_bp", "integration_bp")),
    "RATELIMIT_READ": ("300/minute", ("analytics_bp", "users_bp")),
}


def init_rate_limits(app, limiter):
    """Attach group limits to registered blueprints. No-op under TESTING."""
    if app.config.get("TESTING"):
        return

    applied = {}
    for key, (default, blueprints) in LIMIT_GROUPS.items():
        limit = app.config.get(key) or default
        for name in blueprints:
            bp = app.blueprints.get(name)
            if bp is not None:
                limiter.limit(limit)(bp)
                applied[name] = limit

    logger.info("Rate limits applied: %s", ", ".join(f"{k}={v}" for k, v in applied.items()))
