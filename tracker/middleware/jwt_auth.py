"""
JWT Auth Middleware — parses the bearer token and sets ``g.current_user``.

``g.current_user`` is ``{"id", "username", "role"}`` for a valid token and
None otherwise. Routes decide what to do with an anonymous caller through
the decorators in ``tracker.middleware.permission_required``.
"""

import logging

import jwt as pyjwt
from flask import g, request

from tracker.models import db
from tracker.models.user import User
from tracker.services.jwt_service import decode_access_token

logger = logging.getLogger(__name__)

# Paths that skip JWT parsing entirely
JWT_SKIP_PREFIXES = (
    "/api/v1/auth/login",
    "/api/v1/health",
)


def init_jwt_middleware(app):
    """Register JWT middleware as a before_request hook."""

    @app.before_request
    def _jwt_auth():
        g.current_user = None

        path = request.path
        if not path.startswith("/api/v1/"):
            return
        for prefix in JWT_SKIP_PREFIXES:
            if path.startswith(prefix):
                return

        auth_header = request.headers.get("Authorization", "")
        if not auth_header.startswith("Bearer "):
            return

        token = auth_header[7:]
        try:
            payload = decode_access_token(token)
        except pyjwt.ExpiredSignatureError:
            logger.debug("Expired token on %s", path)
            return
        except pyjwt.InvalidTokenError:
            logger.debug("Invalid token on %s", path)
            return

        # Role is read from the user row, not from the token
        user = db.session.get(User, payload.get("sub"))
        if user is None:
            logger.debug("Token for unknown user %s on %s", payload.get("sub"), path)
            return

        g.current_user = {
            "id": user.id,
            "username": user.username,
            "role": user.role,
        }
