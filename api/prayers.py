from datetime import date
from typing import List, Optional

from psycopg2.extras import RealDictCursor

PRAYER_COLUMNS = """
    id, user_id, title, description, is_answered, answered_date, answered_notes,
    shared, tags, prayer_count, created_at, updated_at
"""
EDITABLE_FIELDS = ("title", "description", "shared", "tags")


def list_prayers(conn, user_id: str, answered: bool | None = None, limit: int = 100, offset: int = 0) -> List[dict]:
    with conn.cursor(cursor_factory=RealDictCursor) as cur:
        cur.execute(
            f"""
            SELECT {PRAYER_COLUMNS}
            FROM prayer_requests
            WHERE user_id = %s AND (%s::boolean IS NULL OR is_answered = %s)
            ORDER BY created_at DESC
            LIMIT %s OFFSET %s
            """,
            (user_id, answered, answered, limit, offset),
        )
        return cur.fetchall()


def get_prayer(conn, user_id: str, prayer_id: str) -> Optional[dict]:
    with conn.cursor(cursor_factory=RealDictCursor) as cur:
        cur.execute(
            f"""
            SELECT {PRAYER_COLUMNS}
            FROM prayer_requests
            WHERE id = %s AND user_id = %s
            """,
            (prayer_id, user_id),
        )
        return cur.fetchone()


def create_prayer(conn, user_id: str, title: str, description: str | None, shared: bool, tags: list | None) -> dict:
    with conn.cursor(cursor_factory=RealDictCursor) as cur:
        cur.execute(
            f"""
            INSERT INTO prayer_requests (user_id, title, description, shared, tags)
            VALUES (%s, %s, %s, %s, %s)
            RETURNING {PRAYER_COLUMNS}
            """,
            (user_id, title, description, shared, tags or []),
        )
        return cur.fetchone()


def update_prayer(conn, user_id: str, prayer_id: str, changes: dict) -> Optional[dict]:
    current = get_prayer(conn, user_id, prayer_id)
    if not current:
        return None
    merged = {k: current.get(k) if changes.get(k) is None else changes[k] for k in EDITABLE_FIELDS}
    with conn.cursor(cursor_factory=RealDictCursor) as cur:
        cur.execute(
            f"""
            UPDATE prayer_requests
            SET title = %s, description = %s, shared = %s, tags = %s, updated_at = now()
            WHERE id = %s AND user_id = %s
            RETURNING {PRAYER_COLUMNS}
            """,
            (*[merged[k] for k in EDITABLE_FIELDS], prayer_id, user_id),
        )
        return cur.fetchone()


def mark_answered(conn, user_id: str, prayer_id: str, notes: str | None, today: date | None = None) -> Optional[dict]:
    with conn.cursor(cursor_factory=RealDictCursor) as cur:
        cur.execute(
            f"""
            UPDATE prayer_requests
            SET is_answered = true,
                answered_date = %s,
                answered_notes = COALESCE(%s, answered_notes),
                updated_at = now()
            WHERE id = %s AND user_id = %s
            RETURNING {PRAYER_COLUMNS}
            """,
            (today or date.today(), notes, prayer_id, user_id),
        )
        return cur.fetchone()


def delete_prayer(conn, user_id: str, prayer_id: str) -> bool:
    with conn.cursor() as cur:
        cur.execute(
            """
            DELETE FROM prayer_requests
            WHERE id = %s AND user_id = %s
            """,
            (prayer_id, user_id),
        )
        return cur.rowcount > 0


def list_community_prayers(conn, viewer_id: str, limit: int = 50, offset: int = 0) -> List[dict]:
    with conn.cursor(cursor_factory=RealDictCursor) as cur:
        cur.execute(
            """
            SELECT r.id, r.title, r.description, r.is_answered, r.answered_date, r.tags,
                   r.prayer_count, r.created_at,
                   COALESCE(NULLIF(p.display_name, ''), NULLIF(p.first_name, ''), 'Anonymous') AS requester_name,
                   EXISTS (
                     SELECT 1 FROM prayer_interactions i
                     WHERE i.prayer_request_id = r.id AND i.user_id = %s
                   ) AS prayed_by_me
            FROM prayer_requests r
            LEFT JOIN profiles p ON p.user_id = r.user_id
            WHERE r.shared = true
            ORDER BY r.created_at DESC
            LIMIT %s OFFSET %s
            """,
            (viewer_id, limit, offset),
        )
        return cur.fetchall()


def pray_for_request(conn, user_id: str, prayer_id: str) -> Optional[dict]:
    """Record that a user prayed; None when the request is not visible to them."""
    with conn.cursor(cursor_factory=RealDictCursor) as cur:
        cur.execute(
            """
            SELECT id, prayer_count
            FROM prayer_requests
            WHERE id = %s AND (shared = true OR user_id = %s)
            """,
            (prayer_id, user_id),
        )
        row = cur.fetchone()
        if not row:
            return None
        cur.execute(
            """
            INSERT INTO prayer_interactions (prayer_request_id, user_id)
            VALUES (%s, %s)
            ON CONFLICT (prayer_request_id, user_id) DO NOTHING
            """,
            (prayer_id, user_id),
        )
        if cur.rowcount == 0:
            return {"already_prayed": True, "prayer_count": row["prayer_count"]}
        cur.execute(
            """
            UPDATE prayer_requests
            SET prayer_count = prayer_count + 1
            WHERE id = %s
            RETURNING prayer_count
            """,
            (prayer_id,),
        )
        updated = cur.fetchone()
    return {"already_prayed": False, "prayer_count": updated["prayer_count"]}
