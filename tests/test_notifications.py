from datetime import datetime, timezone

import psycopg2
import pytest
import requests
from fastapi import HTTPException
from pywebpush import WebPushException

import api.main as main_mod
from api import notifications
from api.models import NotificationGenerateRequest


# 2026-05-06 is a Wednesday
def _at(hour, day=6):
    return datetime(2026, 5, day, hour, 0, tzinfo=timezone.utc)


class FakeConn:
    def __init__(self):
        self.commits = 0
        self.rollbacks = 0

    def commit(self):
        self.commits += 1

    def rollback(self):
        self.rollbacks += 1


class FakeRequest:
    def __init__(self, headers=None):
        self.headers = headers or {}


def test_render_template_fills_name():
    rendered = notifications.render_template("prayer_answered", "Healing for Mom")
    assert rendered["title"] == "Prayer Answered"
    assert rendered["body"] == '"Healing for Mom" has been marked as answered!'
    assert rendered["url"] == "/prayer"
    with pytest.raises(ValueError):
        notifications.render_template("nope")


def test_quiet_hours_wrap_midnight():
    assert notifications.is_within_quiet_hours(23, 22, 8)
    assert notifications.is_within_quiet_hours(3, 22, 8)
    assert not notifications.is_within_quiet_hours(8, 22, 8)
    assert notifications.is_within_quiet_hours(13, 12, 14)
    assert not notifications.is_within_quiet_hours(14, 12, 14)


def test_plan_morning_reminders():
    prefs = {"prayer_reminders": True, "bible_reading": True, "journal_prompts": True}
    due, reason = notifications.plan_user_notifications(prefs, _at(8))
    assert due == ["prayer_reminder", "bible_reading"]
    assert reason is None


def test_plan_skips_disabled_users():
    prefs = {"prayer_reminders": False, "bible_reading": False, "habit_reminders": False}
    assert notifications.plan_user_notifications(prefs, _at(8)) == ([], "disabled")
    assert notifications.plan_user_notifications({}, _at(8)) == ([], "disabled")


def test_plan_respects_quiet_hours():
    prefs = {"prayer_reminders": True, "quiet_hours": {"enabled": True, "start": "22:00", "end": "08:00"}}
    assert notifications.plan_user_notifications(prefs, _at(23)) == ([], "quiet_hours")
    assert notifications.plan_user_notifications(prefs, _at(7)) == ([], "quiet_hours")
    assert notifications.plan_user_notifications(prefs, _at(9))[0] == ["prayer_reminder"]


def test_plan_frequency_and_force():
    prefs = {"prayer_reminders": True, "journal_prompts": True, "frequency": "weekly"}
    assert notifications.plan_user_notifications(prefs, _at(8)) == ([], "frequency")
    # Sunday
    assert notifications.plan_user_notifications(prefs, _at(8, day=10))[0] == ["prayer_reminder"]

    due, reason = notifications.plan_user_notifications(prefs, _at(3), force=True)
    assert reason is None
    assert due == ["prayer_reminder", "habit_reminder", "devotional"]


def test_plan_custom_days_and_window():
    prefs = {"bible_reading": True, "frequency": "custom", "custom_days": ["Wednesday"]}
    assert notifications.plan_user_notifications(prefs, _at(9))[0] == ["bible_reading"]
    assert notifications.plan_user_notifications(prefs, _at(9, day=7)) == ([], "frequency")
    assert notifications.plan_user_notifications(prefs, _at(3)) == ([], "outside_window")


def test_run_batch_counts_and_isolates_failures(monkeypatch):
    users = [
        {"user_id": "u-1", "notification_preferences": None},
        {"user_id": "u-2", "notification_preferences": {"prayer_reminders": False}},
        {"user_id": "u-3", "notification_preferences": {"bible_reading": True}},
    ]
    sent = []

    def fake_notify(_conn, user_id, notification_type):
        if user_id == "u-3":
            raise psycopg2.OperationalError("connection lost")
        sent.append((user_id, notification_type))
        return {"id": len(sent)}

    monkeypatch.setattr(notifications, "_list_users_with_preferences", lambda _c: users)
    monkeypatch.setattr(notifications, "notify_user", fake_notify)
    monkeypatch.setattr(notifications, "log_notification_event", lambda *_args: None)
    conn = FakeConn()

    result = notifications.run_batch(conn, now=_at(8))
    assert sent == [("u-1", "prayer_reminder"), ("u-1", "bible_reading")]
    assert result == {"users": 3, "notified": 1, "sent": 2, "skipped": {"disabled": 1, "error": 1}}
    assert conn.commits == 1
    assert conn.rollbacks == 1


class _GoneResponse:
    status_code = 410


def test_send_push_drops_expired_subscriptions(monkeypatch):
    subs = [
        {"endpoint": "https://push.example/a", "subscription_json": {"endpoint": "https://push.example/a"}},
        {"endpoint": "https://push.example/b", "subscription_json": {"endpoint": "https://push.example/b"}},
    ]
    removed = []

    def fake_webpush(subscription_info, data, vapid_private_key, vapid_claims):
        if subscription_info["endpoint"].endswith("/b"):
            raise WebPushException("gone", response=_GoneResponse())

    monkeypatch.setattr(notifications, "VAPID_PRIVATE_KEY", "private-key")
    monkeypatch.setattr(notifications, "_list_push_subscriptions", lambda _c, _u: subs)
    monkeypatch.setattr(notifications, "webpush", fake_webpush)
    monkeypatch.setattr(notifications, "delete_push_subscription", lambda _c, _u, endpoint: removed.append(endpoint))
    monkeypatch.setattr(notifications, "log_notification_event", lambda *_args: None)

    delivered = notifications.send_push(FakeConn(), "u-1", {"title": "Hi", "message": "Body", "type": "test"})
    assert delivered == 1
    assert removed == ["https://push.example/b"]


def test_notify_user_survives_unreachable_push_service(monkeypatch):
    subs = [
        {"endpoint": "http://127.0.0.1:9/push/a", "subscription_json": {"endpoint": "http://127.0.0.1:9/push/a"}},
        {"endpoint": "https://push.example/bad", "subscription_json": "not json"},
        {"endpoint": "https://push.example/ok", "subscription_json": {"endpoint": "https://push.example/ok"}},
    ]
    failures = []

    def fake_webpush(subscription_info, data, vapid_private_key, vapid_claims):
        if isinstance(subscription_info, str):
            raise ValueError("malformed subscription")
        if "127.0.0.1" in subscription_info["endpoint"]:
            raise requests.ConnectionError("Connection refused")

    def fake_log(event, payload):
        if event == "push_failed":
            failures.append(payload["error"])

    monkeypatch.setattr(notifications, "VAPID_PRIVATE_KEY", "private-key")
    monkeypatch.setattr(notifications, "_list_push_subscriptions", lambda _c, _u: subs)
    monkeypatch.setattr(notifications, "webpush", fake_webpush)
    monkeypatch.setattr(
        notifications, "create_notification",
        lambda _c, user_id, kind, title, message, link: {"id": "n-1", "type": kind, "title": title, "message": message},
    )
    monkeypatch.setattr(notifications, "log_notification_event", fake_log)

    notification = notifications.notify_user(FakeConn(), "u-1", "prayer_answered")
    assert notification["id"] == "n-1"
    assert failures == ["ConnectionError", "ValueError"]


def test_send_push_without_vapid_key_is_noop(monkeypatch):
    monkeypatch.setattr(notifications, "VAPID_PRIVATE_KEY", "")
    assert notifications.send_push(FakeConn(), "u-1", {"title": "Hi"}) == 0


def test_generate_batch_requires_admin(monkeypatch):
    monkeypatch.setattr(main_mod, "CRON_SECRET", "")
    monkeypatch.setattr(main_mod, "require_user", lambda _r, _c: {"user_id": "u-1", "is_admin": False})
    with pytest.raises(HTTPException) as exc:
        main_mod.generate_notifications(NotificationGenerateRequest(type="batch"), FakeRequest(), conn=FakeConn())
    assert exc.value.status_code == 403


def test_generate_no_execution_for_cron(monkeypatch):
    monkeypatch.setattr(main_mod, "CRON_SECRET", "s3cret")
    payload = NotificationGenerateRequest(type="batch", no_execution=True)
    result = main_mod.generate_notifications(payload, FakeRequest({"X-Cron-Secret": "s3cret"}), conn=FakeConn())
    assert result == {"success": True, "executed": False, "type": "batch"}


def test_generate_test_requires_user_for_cron(monkeypatch):
    monkeypatch.setattr(main_mod, "CRON_SECRET", "s3cret")
    with pytest.raises(HTTPException) as exc:
        main_mod.generate_notifications(
            NotificationGenerateRequest(type="test"), FakeRequest({"X-Cron-Secret": "s3cret"}), conn=FakeConn()
        )
    assert exc.value.status_code == 400
