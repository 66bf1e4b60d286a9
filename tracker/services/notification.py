"""
Project Tracker
Notification Service.

Creates and queries per-user notifications. Fan-out by role is best effort:
a failure is logged and swallowed so the workflow change that triggered it
still goes through.
"""

import logging

from flask import current_app

from tracker.core.exceptions import NotFoundError
from tracker.models import db
from tracker.models.notification import Notification
from tracker.models.user import User
from tracker.utils.helpers import utcnow

logger = logging.getLogger(__name__)

DEFAULT_NOTIFICATION_LIMIT = 300


class NotificationService:
    """Stateless service class for notification operations."""

    # ── Create ────────────────────────────────────────────────────────────

    @staticmethod
    def notify_users_by_role(roles, message, project_id=None):
        """
        Create one notification for every user holding any of ``roles``.

        Args:
            roles: a role name or an iterable of role names.

        Returns:
            Number of notifications created (0 on failure).
        """
        if isinstance(roles, str):
            roles = [roles]
        roles = [r for r in roles if r]
        if not roles or not message:
            return 0

        try:
            with db.session.begin_nested():
                users = User.query.filter(User.role.in_(roles)).all()
                for user in users:
                    db.session.add(Notification(
                        user_id=user.id, project_id=project_id, message=message,
                    ))
            NotificationService.trim()
        except Exception:
            logger.exception("Failed to notify roles %s for project %s", roles, project_id)
            return 0

        if not users:
            logger.info("No users with roles %s to notify", roles)
        return len(users)

    @staticmethod
    def notify_user(user_id, message, project_id=None):
        """Notify a single user by id. Best effort, like ``notify_users_by_role``."""
        try:
            with db.session.begin_nested():
                if db.session.get(User, user_id) is None:
                    logger.warning("Cannot notify unknown user %s", user_id)
                    return None
                notif = Notification(user_id=user_id, project_id=project_id, message=message)
                db.session.add(notif)
            return notif
        except Exception:
            logger.exception("Failed to notify user %s", user_id)
            return None

    @staticmethod
    def trim(limit=None):
        """Keep only the newest ``NOTIFICATION_LIMIT`` notifications."""
        if limit is None:
            limit = current_app.config.get("NOTIFICATION_LIMIT", DEFAULT_NOTIFICATION_LIMIT)
        db.session.flush()
        keep = (
            db.session.query(Notification.id)
            .order_by(Notification.created_at.desc(), Notification.id.desc())
            .limit(limit)
            .subquery()
        )
        removed = (
            Notification.query
            .filter(Notification.id.not_in(db.select(keep.c.id)))
            .delete(synchronize_session="fetch")
        )
        if removed:
            logger.debug("Trimmed %d old notifications", removed)
        return removed

    # ── Query ─────────────────────────────────────────────────────────────

    @staticmethod
    def query_for_user(user_id, unread_only=False):
        """Query of a user's notifications, newest first (for pagination)."""
        q = Notification.query.filter_by(user_id=user_id)
        if unread_only:
            q = q.filter_by(is_read=False)
        return q.order_by(Notification.created_at.desc(), Notification.id.desc())

    @staticmethod
    def list_for_user(user_id, unread_only=False):
        return NotificationService.query_for_user(user_id, unread_only).all()

    @staticmethod
    def unread_count(user_id):
        return Notification.query.filter_by(user_id=user_id, is_read=False).count()

    # ── Actions ───────────────────────────────────────────────────────────

    @staticmethod
    def mark_read(notification_id, user_id):
        """Mark one of the user's notifications as read."""
        notif = db.session.get(Notification, notification_id)
        if notif is None or notif.user_id != user_id:
            raise NotFoundError("Notification", notification_id)
        notif.mark_read()
        return notif

    @staticmethod
    def mark_all_read(user_id):
        """Mark all of a user's notifications as read; returns the count."""
        return (
            Notification.query
            .filter_by(user_id=user_id, is_read=False)
            .update({"is_read": True, "read_at": utcnow()}, synchronize_session="fetch")
        )

    @staticmethod
    def delete_for_project(project_id):
        return (
            Notification.query
            .filter_by(project_id=project_id)
            .delete(synchronize_session="fetch")
        )

    @staticmethod
    def clear_all():
        count = Notification.query.delete(synchronize_session="fetch")
        logger.info("Cleared %d notifications", count)
        return count
