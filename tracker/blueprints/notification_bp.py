"""
Notification Blueprint — the caller's notification mailbox.

Endpoints (under /api/v1, login required):
    GET  /notifications                 — newest first (?unread=1, ?limit=, ?offset=)
    GET  /notifications/unread-count
    POST /notifications/<id>/read
    POST /notifications/read-all
    POST /notifications/clear-all       — Owner / Admin Developer: delete every notification
"""

from __future__ import annotations

import logging

from flask import Blueprint, jsonify, request

from tracker.blueprints import paginate_query
from tracker.middleware.permission_required import current_user, login_required, roles_required
from tracker.models.user import Role
from tracker.services.notification import NotificationService
from tracker.utils.helpers import db_commit_or_error

logger = logging.getLogger(__name__)

notification_bp = Blueprint("notification_bp", __name__, url_prefix="/api/v1")


@notification_bp.route("/notifications", methods=["GET"])
@login_required
def list_notifications():
    unread_only = request.args.get("unread", "").lower() in ("1", "true", "yes")
    query = NotificationService.query_for_user(current_user()["id"], unread_only=unread_only)
    items, total = paginate_query(query)
    return jsonify({"items": [n.to_dict() for n in items], "total": total}), 200


@notification_bp.route("/notifications/unread-count", methods=["GET"])
@login_required
def unread_count():
    return jsonify({"unread_count": NotificationService.unread_count(current_user()["id"])}), 200


@notification_bp.route("/notifications/<notification_id>/read", methods=["POST"])
@login_required
def mark_read(notification_id):
    notif = NotificationService.mark_read(notification_id, current_user()["id"])
    err = db_commit_or_error()
    if err:
        return err
    return jsonify(notif.to_dict()), 200


@notification_bp.route("/notifications/read-all", methods=["POST"])
@login_required
def mark_all_read():
    count = NotificationService.mark_all_read(current_user()["id"])
    err = db_commit_or_error()
    if err:
        return err
    return jsonify({"marked_read": count}), 200


@notification_bp.route("/notifications/clear-all", methods=["POST"])
@login_required
@roles_required(Role.OWNER, Role.ADMIN_DEVELOPER)
def clear_all():
    count = NotificationService.clear_all()
    err = db_commit_or_error()
    if err:
        return err
    logger.warning("All notifications cleared by %s (%d removed)", current_user()["username"], count)
    return jsonify({"cleared": count}), 200
