"""
Project Tracker
Notification model.

One record per recipient user per event. Rows are trimmed to the newest
``NOTIFICATION_LIMIT`` by the notification service.
"""

from tracker.models import db
from tracker.utils.helpers import new_id, to_iso, utcnow


class Notification(db.Model):
    """In-app notification mailbox entry."""

    __tablename__ = "notifications"

    id = db.Column(db.String(64), primary_key=True, default=lambda: new_id("notif"))
    user_id = db.Column(
        db.String(64), db.ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    # No FK: a project's notifications are removed explicitly on project delete
    project_id = db.Column(db.String(64), nullable=True, index=True)
    message = db.Column(db.Text, nullable=False)
    is_read = db.Column(db.Boolean, default=False, nullable=False)
    read_at = db.Column(db.DateTime(timezone=True), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), default=utcnow, index=True)

    def mark_read(self):
        self.is_read = True
        self.read_at = utcnow()

    def to_dict(self):
        return {
            "id": self.id,
            "userId": self.user_id,
            "projectId": self.project_id,
            "message": self.message,
            "timestamp": to_iso(self.created_at),
            "isRead": self.is_read,
        }

    def __repr__(self):
        return f"<Notification {self.id}: {self.message[:40]}>"
