from typing import List, Optional

from psycopg2.extras import RealDictCursor

JOURNAL_COLUMNS = """
    id, title, content, summary, tags, mood_score, spiritual_score,
    related_scripture, source_thread_id, created_at, updated_at
"""
EDITABLE_FIELDS = (
    "title",
    "content",
    "summary",
    "tags",
    "mood_score",
    "spiritual_score",
    "related_scripture",
)


def list_entries(conn, user_id: str, limit: int = 50, offset: int = 0, tag: str | None = None) -> List[dict]:
    with conn.cursor(cursor_factory=RealDictCursor) as cur:
        cur.execute(
            f"""
            SELECT {JOURNAL_COLUMNS}
            FROM journal_entries
            WHERE user_id = %s AND (%s::text IS NULL OR %s = ANY(tags))
            ORDER BY created_at DESC
            LIMIT %s OFFSET %s
            """,
            (user_id, tag, tag, limit, offset),
        )
        return cur.fetchall()


def get_entry(conn, user_id: str, entry_id: str) -> Optional[dict]:
    with conn.cursor(cursor_factory=RealDictCursor) as cur:
        cur.execute(
            f"""
            SELECT {JOURNAL_COLUMNS}
            FROM journal_entries
            WHERE id = %s AND user_id = %s
            """,
            (entry_id, user_id),
        )
        return cur.fetchone()


def create_entry(conn, user_id: str, fields: dict, source_thread_id: str | None = None) -> dict:
    values = {k: fields.get(k) for k in EDITABLE_FIELDS}
    with conn.cursor(cursor_factory=RealDictCursor) as cur:
        cur.execute(
            f"""
            INSERT INTO journal_entries
              (user_id, title, content, summary, tags, mood_score, spiritual_score,
               related_scripture, source_thread_id)
            VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s)
            RETURNING {JOURNAL_COLUMNS}
            """,
            (
                user_id,
                values["title"],
                values["content"],
                values["summary"],
                values["tags"] or [],
                values["mood_score"],
                values["spiritual_score"],
                values["related_scripture"],
                source_thread_id,
            ),
        )
        return cur.fetchone()


def update_entry(conn, user_id: str, entry_id: str, changes: dict) -> Optional[dict]:
    current = get_entry(conn, user_id, entry_id)
    if not current:
        return None
    merged = {k: current.get(k) if changes.get(k) is None else changes[k] for k in EDITABLE_FIELDS}
    with conn.cursor(cursor_factory=RealDictCursor) as cur:
        cur.execute(
            f"""
            UPDATE journal_entries
            SET title = %s,
                content = %s,
                summary = %s,
                tags = %s,
                mood_score = %s,
                spiritual_score = %s,
                related_scripture = %s,
                updated_at = now()
            WHERE id = %s AND user_id = %s
            RETURNING {JOURNAL_COLUMNS}
            """,
            (*[merged[k] for k in EDITABLE_FIELDS], entry_id, user_id),
        )
        return cur.fetchone()


def delete_entry(conn, user_id: str, entry_id: str) -> bool:
    with conn.cursor() as cur:
        cur.execute(
            """
            DELETE FROM journal_entries
            WHERE id = %s AND user_id = %s
            """,
            (entry_id, user_id),
        )
        return cur.rowcount > 0
