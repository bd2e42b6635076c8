from psycopg2.extras import Json, RealDictCursor


DEFAULT_NOTIFICATION_PREFERENCES = {
    "prayer_reminders": True,
    "bible_reading": True,
    "journal_prompts": True,
}
DEFAULT_THEME = "system"
DEFAULT_TRANSLATION = "NIV"

PROFILE_FIELDS = ("first_name", "last_name", "display_name", "bio", "profile_image_url")


def display_name_for(profile: dict | None, email: str | None = None) -> str:
    profile = profile or {}
    for key in ("display_name", "first_name"):
        value = (profile.get(key) or "").strip()
        if value:
            return value
    if email and "@" in email:
        return email.split("@", 1)[0]
    return "Friend"


def get_profile(conn, user_id: str) -> dict:
    with conn.cursor(cursor_factory=RealDictCursor) as cur:
        cur.execute(
            """
            INSERT INTO profiles (user_id)
            VALUES (%s)
            ON CONFLICT (user_id) DO NOTHING
            """,
            (user_id,),
        )
        cur.execute(
            """
            SELECT user_id, first_name, last_name, display_name, bio,
                   profile_image_url, is_admin, created_at, updated_at
            FROM profiles
            WHERE user_id = %s
            """,
            (user_id,),
        )
        return cur.fetchone()


def update_profile(conn, user_id: str, changes: dict) -> dict:
    fields = {k: v for k, v in (changes or {}).items() if k in PROFILE_FIELDS}
    current = get_profile(conn, user_id)
    if not fields:
        return current
    merged = {k: fields.get(k, current.get(k)) for k in PROFILE_FIELDS}
    with conn.cursor(cursor_factory=RealDictCursor) as cur:
        cur.execute(
            """
            UPDATE profiles
            SET first_name = %s,
                last_name = %s,
                display_name = %s,
                bio = %s,
                profile_image_url = %s,
                updated_at = now()
            WHERE user_id = %s
            RETURNING user_id, first_name, last_name, display_name, bio,
                      profile_image_url, is_admin, created_at, updated_at
            """,
            (*[merged[k] for k in PROFILE_FIELDS], user_id),
        )
        return cur.fetchone()


def _merge_notification_preferences(stored: dict | None, changes: dict | None) -> dict:
    merged = dict(DEFAULT_NOTIFICATION_PREFERENCES)
    merged.update(stored or {})
    for key, value in (changes or {}).items():
        if value is not None:
            merged[key] = value
    return merged


def ensure_preferences(conn, user_id: str) -> dict:
    with conn.cursor(cursor_factory=RealDictCursor) as cur:
        cur.execute(
            """
            INSERT INTO user_preferences (user_id, notification_preferences, theme, verse_translation)
            VALUES (%s, %s, %s, %s)
            ON CONFLICT (user_id) DO NOTHING
            """,
            (user_id, Json(DEFAULT_NOTIFICATION_PREFERENCES), DEFAULT_THEME, DEFAULT_TRANSLATION),
        )
        cur.execute(
            """
            SELECT user_id, notification_preferences, theme, verse_translation, updated_at
            FROM user_preferences
            WHERE user_id = %s
            """,
            (user_id,),
        )
        return cur.fetchone()


def get_preferences(conn, user_id: str) -> dict:
    row = ensure_preferences(conn, user_id)
    row["notification_preferences"] = _merge_notification_preferences(row.get("notification_preferences"), None)
    return row


def update_preferences(
    conn,
    user_id: str,
    notification_preferences: dict | None = None,
    theme: str | None = None,
    verse_translation: str | None = None,
) -> dict:
    current = get_preferences(conn, user_id)
    next_prefs = _merge_notification_preferences(current.get("notification_preferences"), notification_preferences)
    with conn.cursor(cursor_factory=RealDictCursor) as cur:
        cur.execute(
            """
            UPDATE user_preferences
            SET notification_preferences = %s,
                theme = %s,
                verse_translation = %s,
                updated_at = now()
            WHERE user_id = %s
            RETURNING user_id, notification_preferences, theme, verse_translation, updated_at
            """,
            (
                Json(next_prefs),
                theme or current.get("theme") or DEFAULT_THEME,
                verse_translation or current.get("verse_translation") or DEFAULT_TRANSLATION,
                user_id,
            ),
        )
        return cur.fetchone()
