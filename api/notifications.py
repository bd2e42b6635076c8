import json
import os
import time
from datetime import datetime, timezone
from typing import List, Optional

import psycopg2
import requests
from psycopg2.extras import Json, RealDictCursor
from pywebpush import WebPushException, webpush

from api.config import VAPID_PRIVATE_KEY, VAPID_SUBJECT
from api.events import log_notification_event
from api.profiles import DEFAULT_NOTIFICATION_PREFERENCES

NOTIFICATION_ICON = os.getenv("NOTIFICATION_ICON", "/icons/truenorth-192.png")

TEMPLATES = {
    "prayer_reminder": {
        "title": "Prayer Time",
        "body": "Take a moment to pray for your active prayer requests.",
        "url": "/prayer",
        "tag": "prayer-reminder",
    },
    "bible_reading": {
        "title": "Daily Bible Reading",
        "body": "Your daily scripture reading is ready for you.",
        "url": "/bible",
        "tag": "bible-reading",
    },
    "devotional": {
        "title": "Daily Devotional",
        "body": "Your personalized devotional is ready for reflection.",
        "url": "/devotionals",
        "tag": "devotional",
    },
    "habit_reminder": {
        "title": "Spiritual Habits",
        "body": "Don't forget to log your spiritual habits for today.",
        "url": "/habits",
        "tag": "habit-reminder",
    },
    "achievement": {
        "title": "Achievement Unlocked!",
        "body": 'You\'ve earned the "{name}" achievement.',
        "url": "/scripture",
        "tag": "achievement",
    },
    "prayer_answered": {
        "title": "Prayer Answered",
        "body": '"{name}" has been marked as answered!',
        "url": "/prayer",
        "tag": "prayer-update",
    },
    "billing": {
        "title": "Billing",
        "body": "{name}",
        "url": "/pricing",
        "tag": "billing",
    },
    "test": {
        "title": "Test Notification",
        "body": "Notifications are working. You're all set!",
        "url": "/notifications",
        "tag": "test",
    },
}

WEEKDAYS = ["monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday"]
DEFAULT_QUIET_START = "22:00"
DEFAULT_QUIET_END = "08:00"

# (first hour, last hour, notification type, preference key)
SCHEDULE_WINDOWS = [
    (7, 10, "prayer_reminder", "prayer_reminders"),
    (7, 10, "bible_reading", "bible_reading"),
    (12, 16, "habit_reminder", "habit_reminders"),
    (18, 21, "devotional", "journal_prompts"),
]
PREFERENCE_DEFAULTS = {"habit_reminders": True}


def render_template(notification_type: str, name: str | None = None) -> dict:
    template = TEMPLATES.get(notification_type)
    if not template:
        raise ValueError("unknown notification type")
    return {
        "title": template["title"],
        "body": template["body"].format(name=name or ""),
        "url": template["url"],
        "tag": template["tag"],
    }


def create_notification(
    conn,
    user_id: str,
    notification_type: str,
    title: str,
    message: str,
    action_link: str | None = None,
    scheduled_for: datetime | None = None,
) -> dict:
    with conn.cursor(cursor_factory=RealDictCursor) as cur:
        cur.execute(
            """
            INSERT INTO notifications (user_id, title, message, type, action_link, scheduled_for)
            VALUES (%s, %s, %s, %s, %s, %s)
            RETURNING id, user_id, title, message, type, is_read, action_link, scheduled_for, created_at
            """,
            (user_id, title, message, notification_type, action_link, scheduled_for),
        )
        return cur.fetchone()


def list_notifications(conn, user_id: str, unread_only: bool = False, limit: int = 50, offset: int = 0) -> List[dict]:
    with conn.cursor(cursor_factory=RealDictCursor) as cur:
        cur.execute(
            """
            SELECT id, title, message, type, is_read, action_link, scheduled_for, created_at
            FROM notifications
            WHERE user_id = %s AND (%s = false OR is_read = false)
            ORDER BY created_at DESC
            LIMIT %s OFFSET %s
            """,
            (user_id, unread_only, limit, offset),
        )
        return cur.fetchall()


def mark_read(conn, user_id: str, notification_id: str) -> bool:
    with conn.cursor() as cur:
        cur.execute(
            """
            UPDATE notifications
            SET is_read = true
            WHERE id = %s AND user_id = %s
            """,
            (notification_id, user_id),
        )
        return cur.rowcount > 0


def mark_all_read(conn, user_id: str) -> int:
    with conn.cursor() as cur:
        cur.execute(
            """
            UPDATE notifications
            SET is_read = true
            WHERE user_id = %s AND is_read = false
            """,
            (user_id,),
        )
        return cur.rowcount


def delete_notification(conn, user_id: str, notification_id: str) -> bool:
    with conn.cursor() as cur:
        cur.execute(
            """
            DELETE FROM notifications
            WHERE id = %s AND user_id = %s
            """,
            (notification_id, user_id),
        )
        return cur.rowcount > 0


def save_push_subscription(conn, user_id: str, subscription: dict) -> dict:
    endpoint = (subscription or {}).get("endpoint")
    if not endpoint:
        raise ValueError("subscription endpoint required")
    with conn.cursor(cursor_factory=RealDictCursor) as cur:
        cur.execute(
            """
            INSERT INTO push_subscriptions (user_id, endpoint, subscription_json)
            VALUES (%s, %s, %s)
            ON CONFLICT (user_id, endpoint)
            DO UPDATE SET
              subscription_json = EXCLUDED.subscription_json,
              updated_at = now()
            RETURNING id, endpoint, created_at, updated_at
            """,
            (user_id, endpoint, Json(subscription)),
        )
        return cur.fetchone()


def delete_push_subscription(conn, user_id: str, endpoint: str) -> bool:
    with conn.cursor() as cur:
        cur.execute(
            """
            DELETE FROM push_subscriptions
            WHERE user_id = %s AND endpoint = %s
            """,
            (user_id, endpoint),
        )
        return cur.rowcount > 0


def _list_push_subscriptions(conn, user_id: str) -> List[dict]:
    with conn.cursor(cursor_factory=RealDictCursor) as cur:
        cur.execute(
            """
            SELECT endpoint, subscription_json
            FROM push_subscriptions
            WHERE user_id = %s
            """,
            (user_id,),
        )
        return cur.fetchall()


def build_push_payload(notification: dict) -> dict:
    return {
        "title": notification.get("title"),
        "body": notification.get("message"),
        "icon": NOTIFICATION_ICON,
        "badge": NOTIFICATION_ICON,
        "tag": notification.get("type"),
        "url": notification.get("action_link"),
        "timestamp": int(time.time() * 1000),
    }


def send_push(conn, user_id: str, notification: dict) -> int:
    """Deliver to every subscription of the user; returns the number delivered."""
    if not VAPID_PRIVATE_KEY:
        return 0
    payload = json.dumps(build_push_payload(notification))
    delivered = 0
    for sub in _list_push_subscriptions(conn, user_id):
        try:
            webpush(
                subscription_info=sub["subscription_json"],
                data=payload,
                vapid_private_key=VAPID_PRIVATE_KEY,
                vapid_claims={"sub": VAPID_SUBJECT},
            )
            delivered += 1
        except WebPushException as exc:
            status = getattr(exc.response, "status_code", None)
            log_notification_event("push_failed", {"user_id": user_id, "status": status})
            if status in (404, 410):
                delete_push_subscription(conn, user_id, sub["endpoint"])
        except (requests.RequestException, ValueError) as exc:
            log_notification_event("push_failed", {"user_id": user_id, "error": exc.__class__.__name__})
    return delivered


def notify_user(
    conn,
    user_id: str,
    notification_type: str,
    name: str | None = None,
    title: str | None = None,
    message: str | None = None,
) -> dict:
    rendered = render_template(notification_type, name)
    notification = create_notification(
        conn,
        user_id,
        notification_type,
        title or rendered["title"],
        message or rendered["body"],
        rendered["url"],
    )
    delivered = send_push(conn, user_id, notification)
    log_notification_event(
        "notification_sent",
        {"user_id": user_id, "type": notification_type, "push_delivered": delivered},
    )
    return notification


def _hour_of(value: str | None, default: str) -> int:
    try:
        return int(str(value or default).split(":")[0]) % 24
    except ValueError:
        return int(default.split(":")[0])


def is_within_quiet_hours(hour: int, start_hour: int, end_hour: int) -> bool:
    if start_hour < end_hour:
        return start_hour <= hour < end_hour
    return hour >= start_hour or hour < end_hour


def _frequency_allows(preferences: dict, now: datetime) -> bool:
    frequency = preferences.get("frequency") or "daily"
    if frequency == "custom":
        custom_days = [str(d).lower() for d in preferences.get("custom_days") or []]
        return WEEKDAYS[now.weekday()] in custom_days
    if frequency == "weekly":
        return now.weekday() == 6
    if frequency == "monthly":
        return now.day == 1
    return True


def plan_user_notifications(preferences: dict | None, now: datetime, force: bool = False) -> tuple[List[str], Optional[str]]:
    """Return the notification types due for one user and the skip reason when none are."""
    prefs = dict(PREFERENCE_DEFAULTS)
    prefs.update(preferences or {})
    if not any(value is True for value in (preferences or {}).values()):
        return [], "disabled"

    quiet = prefs.get("quiet_hours") or {}
    if quiet.get("enabled"):
        start_hour = _hour_of(quiet.get("start"), DEFAULT_QUIET_START)
        end_hour = _hour_of(quiet.get("end"), DEFAULT_QUIET_END)
        if is_within_quiet_hours(now.hour, start_hour, end_hour):
            return [], "quiet_hours"

    if not force and not _frequency_allows(prefs, now):
        return [], "frequency"

    due = []
    for first, last, notification_type, pref_key in SCHEDULE_WINDOWS:
        if not prefs.get(pref_key):
            continue
        if force or first <= now.hour <= last:
            due.append(notification_type)
    if not due:
        return [], "outside_window"
    return due, None


def _list_users_with_preferences(conn) -> List[dict]:
    with conn.cursor(cursor_factory=RealDictCursor) as cur:
        cur.execute(
            """
            SELECT u.user_id, p.notification_preferences
            FROM app_user u
            LEFT JOIN user_preferences p ON p.user_id = u.user_id
            ORDER BY u.created_at
            """
        )
        return cur.fetchall()


def run_batch(conn, now: datetime | None = None, force: bool = False) -> dict:
    now = now or datetime.now(timezone.utc)
    users = _list_users_with_preferences(conn)
    notified = 0
    sent = 0
    skipped = {}
    for row in users:
        preferences = row.get("notification_preferences")
        if preferences is None:
            preferences = dict(DEFAULT_NOTIFICATION_PREFERENCES)
        due, reason = plan_user_notifications(preferences, now, force)
        if reason:
            skipped[reason] = skipped.get(reason, 0) + 1
            continue
        try:
            for notification_type in due:
                notify_user(conn, row["user_id"], notification_type)
                sent += 1
            conn.commit()
            notified += 1
        except psycopg2.Error:
            conn.rollback()
            log_notification_event("notification_batch_user_failed", {"user_id": row["user_id"]})
            skipped["error"] = skipped.get("error", 0) + 1
    log_notification_event(
        "notification_batch",
        {"users": len(users), "notified": notified, "sent": sent, "force": force},
    )
    return {"users": len(users), "notified": notified, "sent": sent, "skipped": skipped}
