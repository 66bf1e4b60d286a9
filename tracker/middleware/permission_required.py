"""
Permission Decorators — route protection based on ``g.current_user``.

Usage:
    @bp.route("/projects", methods=["GET"])
    @login_required
    def list_projects():
        ...

    @bp.route("/users", methods=["POST"])
    @roles_required(Role.OWNER, Role.GENERAL_ADMIN, Role.ADMIN_DEVELOPER)
    def create_user():
        ...

Workflow actions are not guarded here; their capability check depends on
the project's current status and lives in the workflow engine.
"""

import functools
import logging

from flask import g

from tracker.utils.errors import E, api_error

logger = logging.getLogger(__name__)


def current_user() -> dict | None:
    """Return the authenticated caller (``{"id", "username", "role"}``) or None."""
    return getattr(g, "current_user", None)


def login_required(f):
    """Decorator: reject anonymous callers with 401."""
    @functools.wraps(f)
    def decorated(*args, **kwargs):
        if current_user() is None:
            return api_error(E.UNAUTHORIZED, "Authentication required")
        return f(*args, **kwargs)
    return decorated


def roles_required(*roles: str):
    """
    Decorator: require the caller to hold one of ``roles``.

    Args:
        roles: Role names, e.g. ``Role.OWNER`` or "General Admin".
    """
    allowed = {getattr(r, "value", r) for r in roles}

    def decorator(f):
        @functools.wraps(f)
        def decorated(*args, **kwargs):
            user = current_user()
            if user is None:
                return api_error(E.UNAUTHORIZED, "Authentication required")
            if user["role"] not in allowed:
                logger.warning(
                    "User %s (%s) denied on %s",
                    user["username"], user["role"], f.__name__,
                )
                return api_error(
                    E.FORBIDDEN, "Permission denied",
                    details={"required_roles": sorted(allowed)},
                )
            return f(*args, **kwargs)
        return decorated
    return decorator
