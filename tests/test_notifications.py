"""
Notification service tests.

Tests cover:
  - fan-out by role (one row per recipient)
  - trimming to the configured limit
  - read state is per user
  - project deletion clean-up and clearing the store
"""

import pytest

from tracker.core.exceptions import NotFoundError
from tracker.models import db
from tracker.models.notification import Notification
from tracker.services.notification import NotificationService


class TestNotifyByRole:
    def test_one_row_per_user_of_role(self, users):
        created = NotificationService.notify_users_by_role("Owner", "Halo", project_id="project_1")
        db.session.commit()
        assert created == 1
        notif = Notification.query.one()
        assert notif.user_id == users["Owner"].id
        assert notif.project_id == "project_1"
        assert notif.is_read is False

    def test_multiple_roles(self, users):
        created = NotificationService.notify_users_by_role(["Arsitek", "Struktur", "MEP"], "Mulai desain")
        assert created == 3

    def test_no_recipients(self, users):
        assert NotificationService.notify_users_by_role([], "x") == 0
        assert NotificationService.notify_users_by_role("Owner", "") == 0
        assert NotificationService.notify_users_by_role("Nobody", "x") == 0
        assert Notification.query.count() == 0

    def test_notify_unknown_user(self, users):
        assert NotificationService.notify_user("usr_missing", "x") is None
        assert NotificationService.notify_user(users["MEP"].id, "x") is not None

    def test_trim_keeps_newest(self, users):
        for i in range(5):
            NotificationService.notify_user(users["Owner"].id, f"msg {i}")
        removed = NotificationService.trim(limit=3)
        db.session.commit()
        assert removed == 2
        assert Notification.query.count() == 3

    def test_trim_uses_configured_limit(self, app, users):
        app.config["NOTIFICATION_LIMIT"] = 2
        try:
            for _ in range(3):
                NotificationService.notify_users_by_role("Owner", "x")
            db.session.commit()
            assert Notification.query.count() == 2
        finally:
            app.config["NOTIFICATION_LIMIT"] = 300


class TestReadState:
    def test_unread_count_and_mark_read(self, users):
        owner = users["Owner"].id
        first = NotificationService.notify_user(owner, "a")
        NotificationService.notify_user(owner, "b")
        db.session.commit()
        assert NotificationService.unread_count(owner) == 2

        NotificationService.mark_read(first.id, owner)
        db.session.commit()
        assert NotificationService.unread_count(owner) == 1
        assert first.read_at is not None
        assert len(NotificationService.list_for_user(owner, unread_only=True)) == 1

    def test_cannot_mark_other_users_notification(self, users):
        notif = NotificationService.notify_user(users["Owner"].id, "a")
        with pytest.raises(NotFoundError) as exc:
            NotificationService.mark_read(notif.id, users["MEP"].id)
        assert exc.value.code == "NOTIFICATION_NOT_FOUND"

    def test_mark_all_read(self, users):
        owner = users["Owner"].id
        for msg in ("a", "b", "c"):
            NotificationService.notify_user(owner, msg)
        NotificationService.notify_user(users["MEP"].id, "d")
        assert NotificationService.mark_all_read(owner) == 3
        db.session.commit()
        assert NotificationService.unread_count(owner) == 0
        assert NotificationService.unread_count(users["MEP"].id) == 1

    def test_list_newest_first(self, users):
        owner = users["Owner"].id
        NotificationService.notify_user(owner, "old")
        NotificationService.notify_user(owner, "new")
        messages = [n.message for n in NotificationService.list_for_user(owner)]
        assert set(messages) == {"old", "new"}
        assert len(messages) == 2


def test_delete_for_project(users):
    NotificationService.notify_users_by_role("Owner", "a", project_id="project_1")
    NotificationService.notify_users_by_role("Owner", "b", project_id="project_2")
    assert NotificationService.delete_for_project("project_1") == 1
    db.session.commit()
    assert [n.project_id for n in Notification.query.all()] == ["project_2"]


def test_clear_all(users):
    NotificationService.notify_users_by_role(["Owner", "MEP"], "a")
    assert NotificationService.clear_all() == 2
    assert Notification.query.count() == 0
