"""
Access tokens for tracker users (HS256).

Claims: ``sub`` (user id), ``username``, ``role``, ``type="access"``,
``iat``, ``exp``, ``jti``. The role claim is informational; the JWT
middleware reloads the user row and trusts its role instead.
"""

import uuid
from datetime import datetime, timedelta, timezone

import jwt
from flask import current_app

ALGORITHM = "HS256"
TOKEN_TYPE = "access"


def _secret():
    return current_app.config.get("JWT_SECRET_KEY") or current_app.config["SECRET_KEY"]


def _lifetime():
    return int(current_app.config.get("JWT_ACCESS_EXPIRES", 8 * 3600))


def generate_access_token(user_id: str, username: str, role: str) -> str:
    issued = datetime.now(timezone.utc)
    claims = {
        "sub": user_id,
        "username": username,
        "role": role,
        "type": TOKEN_TYPE,
        "iat": issued,
        "exp": issued + timedelta(seconds=_lifetime()),
        "jti": uuid.uuid4().hex,
    }
    return jwt.encode(claims, _secret(), algorithm=ALGORITHM)


def token_response(user) -> dict:
    """Login response body for ``user``."""
    return {
        "access_token": generate_access_token(user.id, user.username, user.role),
        "token_type": "Bearer",
        "expires_in": _lifetime(),
        "user": user.to_dict(),
    }


def decode_access_token(token: str) -> dict:
    """
    Verify ``token`` and return its claims.

    Raises ``jwt.ExpiredSignatureError`` / ``jwt.InvalidTokenError``.
    """
    claims = jwt.decode(token, _secret(), algorithms=[ALGORITHM])
    if claims.get("type") != TOKEN_TYPE:
        raise jwt.InvalidTokenError(f"not an access token: {claims.get('type')!r}")
    return claims
