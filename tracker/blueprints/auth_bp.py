"""
Auth Blueprint — JWT authentication endpoints.

  POST /api/v1/auth/login   — username + password → access token
  GET  /api/v1/auth/me      — current user profile
"""

import logging

from flask import Blueprint, jsonify, request

from tracker.middleware.permission_required import current_user, login_required
from tracker.services import user_service
from tracker.services.jwt_service import token_response
from tracker.utils.errors import E, api_error

logger = logging.getLogger(__name__)

auth_bp = Blueprint("auth_bp", __name__, url_prefix="/api/v1/auth")


# ═══════════════════════════════════════════════════════════════
# POST /api/v1/auth/login
# ═══════════════════════════════════════════════════════════════
@auth_bp.route("/login", methods=["POST"])
def login():
    """
    Authenticate with username + password, return an access token.

    Body: { "username": "...", "password": "..." }
    """
    data = request.get_json(silent=True) or {}
    username = (data.get("username") or "").strip()
    password = data.get("password") or ""

    if not username or not password:
        return api_error(E.VALIDATION_REQUIRED, "Username and password are required")

    user = user_service.verify_credentials(username, password)
    if user is None:
        logger.warning("Failed login for %r from %s", username, request.remote_addr)
        return api_error(E.INVALID_CREDENTIALS, "Invalid username or password")

    logger.info("User %s logged in", user.username, extra={"user": user.username})
    return jsonify(token_response(user)), 200


# ═══════════════════════════════════════════════════════════════
# GET /api/v1/auth/me
# ═══════════════════════════════════════════════════════════════
@auth_bp.route("/me", methods=["GET"])
@login_required
def me():
    """Profile of the authenticated caller."""
    user = user_service.get_user(current_user()["id"])
    return jsonify(user.to_dict()), 200
