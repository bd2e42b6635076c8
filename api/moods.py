from datetime import date, timedelta
from typing import List

from psycopg2.extras import RealDictCursor

MOOD_COLUMNS = """
    id, entry_date, mood_score, spiritual_score, prayer_time, bible_reading,
    church_attendance, notes, created_at
"""


def list_moods(conn, user_id: str, days: int = 30, today: date | None = None) -> List[dict]:
    since = (today or date.today()) - timedelta(days=days - 1)
    with conn.cursor(cursor_factory=RealDictCursor) as cur:
        cur.execute(
            f"""
            SELECT {MOOD_COLUMNS}
            FROM mood_entries
            WHERE user_id = %s AND entry_date >= %s
            ORDER BY entry_date DESC
            """,
            (user_id, since),
        )
        return cur.fetchall()


def upsert_mood(conn, user_id: str, entry: dict) -> dict:
    with conn.cursor(cursor_factory=RealDictCursor) as cur:
        cur.execute(
            f"""
            INSERT INTO mood_entries
              (user_id, entry_date, mood_score, spiritual_score, prayer_time,
               bible_reading, church_attendance, notes)
            VALUES (%s, %s, %s, %s, %s, %s, %s, %s)
            ON CONFLICT (user_id, entry_date)
            DO UPDATE SET
              mood_score = EXCLUDED.mood_score,
              spiritual_score = EXCLUDED.spiritual_score,
              prayer_time = EXCLUDED.prayer_time,
              bible_reading = EXCLUDED.bible_reading,
              church_attendance = EXCLUDED.church_attendance,
              notes = EXCLUDED.notes
            RETURNING {MOOD_COLUMNS}
            """,
            (
                user_id,
                entry.get("entry_date") or date.today(),
                entry["mood_score"],
                entry["spiritual_score"],
                bool(entry.get("prayer_time")),
                bool(entry.get("bible_reading")),
                bool(entry.get("church_attendance")),
                entry.get("notes"),
            ),
        )
        return cur.fetchone()


def delete_mood(conn, user_id: str, mood_id: str) -> bool:
    with conn.cursor() as cur:
        cur.execute(
            """
            DELETE FROM mood_entries
            WHERE id = %s AND user_id = %s
            """,
            (mood_id, user_id),
        )
        return cur.rowcount > 0


def summarize_moods(entries: List[dict]) -> dict:
    count = len(entries)
    if not count:
        return {
            "entries": 0,
            "avg_mood": None,
            "avg_spiritual": None,
            "prayer_rate": 0.0,
            "bible_reading_rate": 0.0,
            "church_attendance_rate": 0.0,
        }

    def _rate(key: str) -> float:
        return round(sum(1 for e in entries if e.get(key)) / count, 2)

    return {
        "entries": count,
        "avg_mood": round(sum(e["mood_score"] for e in entries) / count, 1),
        "avg_spiritual": round(sum(e["spiritual_score"] for e in entries) / count, 1),
        "prayer_rate": _rate("prayer_time"),
        "bible_reading_rate": _rate("bible_reading"),
        "church_attendance_rate": _rate("church_attendance"),
    }
