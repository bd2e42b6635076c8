from datetime import date, timedelta
from typing import List, Optional

from psycopg2.extras import RealDictCursor

from api.llm import complete_json
from api.moods import summarize_moods

CONTENT_TYPES = ("devotional", "scripture", "prayer", "reading_plan", "habit", "sermon")
RECOMMENDATION_RANGES = {"week": 7, "month": 30, "quarter": 90}
MAX_RECOMMENDATIONS = 5

RECOMMENDATION_COLUMNS = """
    id, title, description, content_type, content_id, is_viewed, is_saved, relevance_score, created_at
"""

RECOMMENDATION_SYSTEM_PROMPT = (
    "You recommend Christian growth content based on a person's recent mood and journal patterns. "
    'Respond only with JSON: {"recommendations": [{"title": string, "description": string, '
    '"content_type": "devotional" | "scripture" | "prayer" | "reading_plan" | "habit" | "sermon", '
    '"relevance_score": number between 0 and 1}]}. Give at most five, most relevant first.'
)


def list_recommendations(conn, user_id: str, include_viewed: bool = False) -> List[dict]:
    with conn.cursor(cursor_factory=RealDictCursor) as cur:
        cur.execute(
            f"""
            SELECT {RECOMMENDATION_COLUMNS}
            FROM content_recommendations
            WHERE user_id = %s AND (%s OR is_viewed = false)
            ORDER BY relevance_score DESC, created_at DESC
            LIMIT %s
            """,
            (user_id, include_viewed, MAX_RECOMMENDATIONS),
        )
        return cur.fetchall()


def list_saved(conn, user_id: str) -> List[dict]:
    with conn.cursor(cursor_factory=RealDictCursor) as cur:
        cur.execute(
            f"""
            SELECT {RECOMMENDATION_COLUMNS}
            FROM content_recommendations
            WHERE user_id = %s AND is_saved = true
            ORDER BY created_at DESC
            """,
            (user_id,),
        )
        return cur.fetchall()


def update_flags(
    conn, user_id: str, recommendation_id: str, viewed: Optional[bool] = None, saved: Optional[bool] = None
) -> Optional[dict]:
    with conn.cursor(cursor_factory=RealDictCursor) as cur:
        cur.execute(
            f"""
            UPDATE content_recommendations
            SET is_viewed = COALESCE(%s, is_viewed),
                is_saved = COALESCE(%s, is_saved)
            WHERE id = %s AND user_id = %s
            RETURNING {RECOMMENDATION_COLUMNS}
            """,
            (viewed, saved, recommendation_id, user_id),
        )
        return cur.fetchone()


def _recent_journal(conn, user_id: str, start: date) -> List[dict]:
    with conn.cursor(cursor_factory=RealDictCursor) as cur:
        cur.execute(
            """
            SELECT title, tags, mood_score, spiritual_score
            FROM journal_entries
            WHERE user_id = %s AND created_at::date >= %s
            ORDER BY created_at DESC
            LIMIT 20
            """,
            (user_id, start),
        )
        return cur.fetchall()


def _recent_moods(conn, user_id: str, start: date) -> List[dict]:
    with conn.cursor(cursor_factory=RealDictCursor) as cur:
        cur.execute(
            """
            SELECT entry_date, mood_score, spiritual_score, prayer_time, bible_reading, church_attendance
            FROM mood_entries
            WHERE user_id = %s AND entry_date >= %s
            """,
            (user_id, start),
        )
        return cur.fetchall()


def build_recommendation_prompt(mood_summary: dict, journal: List[dict], time_range: str) -> str:
    lines = [f"Period: last {time_range}"]
    if mood_summary["entries"]:
        lines.append(
            f"Mood check-ins: {mood_summary['entries']}, average mood {mood_summary['avg_mood']}/10, "
            f"average spiritual {mood_summary['avg_spiritual']}/10, prayed on "
            f"{round(mood_summary['prayer_rate'] * 100)}% of days, read the Bible on "
            f"{round(mood_summary['bible_reading_rate'] * 100)}% of days"
        )
    else:
        lines.append("No mood check-ins recorded.")
    tags = sorted({t for entry in journal for t in (entry.get("tags") or [])})
    titles = [entry["title"] for entry in journal if entry.get("title")][:10]
    if titles:
        lines.append("Recent journal titles: " + "; ".join(titles))
    if tags:
        lines.append("Journal tags: " + ", ".join(tags))
    return "\n".join(lines)


def validate_recommendations(data: Optional[dict]) -> List[dict]:
    raw = (data or {}).get("recommendations")
    if not isinstance(raw, list):
        raise ValueError("invalid recommendations")
    items = []
    for item in raw:
        if not isinstance(item, dict) or item.get("content_type") not in CONTENT_TYPES:
            continue
        title = str(item.get("title") or "").strip()
        description = str(item.get("description") or "").strip()
        if not title or not description:
            continue
        try:
            score = float(item.get("relevance_score") or 0)
        except (TypeError, ValueError):
            score = 0.0
        items.append(
            {
                "title": title,
                "description": description,
                "content_type": item["content_type"],
                "relevance_score": min(max(score, 0.0), 1.0),
            }
        )
    if not items:
        raise ValueError("invalid recommendations")
    return items[:MAX_RECOMMENDATIONS]


def generate_recommendations(conn, user_id: str, time_range: str = "month", today: Optional[date] = None) -> List[dict]:
    """Replace the user's pending recommendations with fresh ones.

    Raises LLMError on provider failure and ValueError on unusable output; the caller commits.
    """
    today = today or date.today()
    start = today - timedelta(days=RECOMMENDATION_RANGES.get(time_range, RECOMMENDATION_RANGES["month"]))
    prompt = build_recommendation_prompt(
        summarize_moods(_recent_moods(conn, user_id, start)), _recent_journal(conn, user_id, start), time_range
    )
    items = validate_recommendations(complete_json(RECOMMENDATION_SYSTEM_PROMPT, prompt, temperature=0.7))

    stored = []
    with conn.cursor(cursor_factory=RealDictCursor) as cur:
        cur.execute(
            """
            DELETE FROM content_recommendations
            WHERE user_id = %s AND is_viewed = false AND is_saved = false
            """,
            (user_id,),
        )
        for item in items:
            cur.execute(
                f"""
                INSERT INTO content_recommendations
                  (user_id, title, description, content_type, relevance_score)
                VALUES (%s, %s, %s, %s, %s)
                RETURNING {RECOMMENDATION_COLUMNS}
                """,
                (user_id, item["title"], item["description"], item["content_type"], item["relevance_score"]),
            )
            stored.append(cur.fetchone())
    return stored
