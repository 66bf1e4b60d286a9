"""
User Blueprint — account management.

Endpoints (under /api/v1):
    GET    /users                 — list (Admin Developer accounts hidden)
    POST   /users                 — create (Owner, General Admin, Admin Developer)
    GET    /users/<id>            — detail
    PUT    /users/<id>            — update profile (self, or a user manager)
    DELETE /users/<id>            — delete (user managers)
    PUT    /users/<id>/password   — change password (self with current password,
                                    or a user manager resetting it)
"""

import logging

from flask import Blueprint, jsonify, request

from tracker.middleware.permission_required import current_user, login_required, roles_required
from tracker.models.user import Role
from tracker.services import user_service
from tracker.utils.errors import E, api_error
from tracker.utils.helpers import db_commit_or_error

logger = logging.getLogger(__name__)

user_bp = Blueprint("user_bp", __name__, url_prefix="/api/v1")

USER_MANAGERS = (Role.OWNER.value, Role.GENERAL_ADMIN.value, Role.ADMIN_DEVELOPER.value)


def _is_manager(user):
    return user["role"] in USER_MANAGERS


@user_bp.route("/users", methods=["GET"])
@login_required
def list_users():
    return jsonify([u.to_dict() for u in user_service.list_users_for_display()]), 200


@user_bp.route("/users", methods=["POST"])
@roles_required(*USER_MANAGERS)
def create_user():
    """Body: { "username", "password", "role", "email"?, "displayName"?, "whatsappNumber"? }"""
    data = request.get_json(silent=True) or {}
    user = user_service.create_user(
        data.get("username"),
        data.get("password"),
        data.get("role"),
        email=data.get("email"),
        display_name=data.get("displayName"),
        whatsapp_number=data.get("whatsappNumber"),
    )
    err = db_commit_or_error()
    if err:
        return err
    return jsonify(user.to_dict()), 201


@user_bp.route("/users/<user_id>", methods=["GET"])
@login_required
def get_user(user_id):
    return jsonify(user_service.get_user(user_id).to_dict()), 200


@user_bp.route("/users/<user_id>", methods=["PUT"])
@login_required
def update_user(user_id):
    actor = current_user()
    if actor["id"] != user_id and not _is_manager(actor):
        return api_error(E.FORBIDDEN, "You may only edit your own profile")
    data = request.get_json(silent=True) or {}
    if "role" in data and not _is_manager(actor):
        return api_error(E.FORBIDDEN, "Only user managers may change roles")
    fields = {k: v for k, v in data.items() if k in user_service.PROFILE_FIELDS}
    user = user_service.update_profile(user_id, actor, **fields)
    err = db_commit_or_error()
    if err:
        return err
    return jsonify(user.to_dict()), 200


@user_bp.route("/users/<user_id>", methods=["DELETE"])
@roles_required(*USER_MANAGERS)
def delete_user(user_id):
    if current_user()["id"] == user_id:
        return api_error(E.VALIDATION_INVALID, "You cannot delete your own account")
    user_service.delete_user(user_id)
    err = db_commit_or_error()
    if err:
        return err
    return jsonify({"deleted": user_id}), 200


@user_bp.route("/users/<user_id>/password", methods=["PUT"])
@login_required
def change_password(user_id):
    """Body: { "currentPassword"?, "newPassword" }"""
    actor = current_user()
    own = actor["id"] == user_id
    if not own and not _is_manager(actor):
        return api_error(E.FORBIDDEN, "You may only change your own password")
    data = request.get_json(silent=True) or {}
    user_service.change_password(
        user_id, data.get("currentPassword"), data.get("newPassword"),
        skip_current_check=not own,
    )
    err = db_commit_or_error()
    if err:
        return err
    logger.info("Password of %s changed by %s", user_id, actor["username"])
    return jsonify({"message": "Password updated"}), 200
