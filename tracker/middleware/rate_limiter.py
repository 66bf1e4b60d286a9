"""
Per-blueprint rate limits.

The Limiter in tracker/__init__.py starts with no default limits; the
factory calls ``init_rate_limits(app, limiter)`` once every blueprint is
registered.
"""

import logging

logger = logging.getLogger(__name__)

_WRITE_METHODS = ["POST", "PUT", "DELETE"]
_WRITE_LIMITED = ("project_bp", "user_bp", "workflow_bp")


def init_rate_limits(app, limiter):
    """
    Limits, per remote address:
        auth_bp                          LOGIN_RATE_LIMIT on POST
        project_bp, user_bp, workflow_bp WRITE_RATE_LIMIT on writes
        health_bp                        exempt

    Nothing is applied when RATELIMIT_ENABLED is false.
    """
    if not app.config.get("RATELIMIT_ENABLED", True):
        logger.info("Rate limiting disabled")
        return

    login_limit = app.config["LOGIN_RATE_LIMIT"]
    write_limit = app.config["WRITE_RATE_LIMIT"]

    if "auth_bp" in app.blueprints:
        limiter.limit(login_limit, methods=["POST"])(app.blueprints["auth_bp"])
    for name in _WRITE_LIMITED:
        if name in app.blueprints:
            limiter.limit(write_limit, methods=_WRITE_METHODS)(app.blueprints[name])
    if "health_bp" in app.blueprints:
        limiter.exempt(app.blueprints["health_bp"])

    logger.info("Rate limits: login %s, writes %s", login_limit, write_limit)
