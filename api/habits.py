from datetime import date, timedelta
from typing import Iterable, List, Optional

from psycopg2.extras import RealDictCursor

HABIT_COLUMNS = """
    id, habit_name, description, goal_frequency, goal_amount, streak_current,
    streak_longest, is_active, created_at, updated_at
"""
LOG_COLUMNS = "id, habit_id, completed_date, amount, notes, created_at"
EDITABLE_FIELDS = ("habit_name", "description", "goal_frequency", "goal_amount", "is_active")
FREQUENCIES = ("daily", "weekly")

RECOMMENDED_HABITS = {
    "prayer": {
        "habit_name": "Morning Prayer",
        "description": "Spend ten quiet minutes in prayer before the day begins.",
        "goal_frequency": "daily",
        "goal_amount": 10,
    },
    "scripture": {
        "habit_name": "Daily Scripture Reading",
        "description": "Read one chapter of the Bible each day.",
        "goal_frequency": "daily",
        "goal_amount": 1,
    },
    "worship": {
        "habit_name": "Weekly Worship",
        "description": "Gather with a church community for worship.",
        "goal_frequency": "weekly",
        "goal_amount": 1,
    },
    "gratitude": {
        "habit_name": "Gratitude Journal",
        "description": "Write down three things you are thankful for.",
        "goal_frequency": "daily",
        "goal_amount": 3,
    },
}


def _week_start(day: date) -> date:
    return day - timedelta(days=day.weekday())


def compute_streak(dates: Iterable[date], today: date, frequency: str = "daily") -> int:
    """Length of the run of consecutive periods ending in the current or previous period."""
    if frequency == "weekly":
        periods = {_week_start(d) for d in dates}
        step = timedelta(days=7)
        current = _week_start(today)
    else:
        periods = set(dates)
        step = timedelta(days=1)
        current = today
    if current not in periods:
        current -= step
        if current not in periods:
            return 0
    streak = 0
    while current in periods:
        streak += 1
        current -= step
    return streak


def list_habits(conn, user_id: str, include_inactive: bool = False) -> List[dict]:
    with conn.cursor(cursor_factory=RealDictCursor) as cur:
        cur.execute(
            f"""
            SELECT {HABIT_COLUMNS}
            FROM spiritual_habits
            WHERE user_id = %s AND (%s OR is_active = true)
            ORDER BY created_at ASC
            """,
            (user_id, include_inactive),
        )
        return cur.fetchall()


def get_habit(conn, user_id: str, habit_id: str) -> Optional[dict]:
    with conn.cursor(cursor_factory=RealDictCursor) as cur:
        cur.execute(
            f"""
            SELECT {HABIT_COLUMNS}
            FROM spiritual_habits
            WHERE id = %s AND user_id = %s
            """,
            (habit_id, user_id),
        )
        return cur.fetchone()


def create_habit(conn, user_id: str, fields: dict) -> dict:
    with conn.cursor(cursor_factory=RealDictCursor) as cur:
        cur.execute(
            f"""
            INSERT INTO spiritual_habits
              (user_id, habit_name, description, goal_frequency, goal_amount)
            VALUES (%s, %s, %s, %s, %s)
            RETURNING {HABIT_COLUMNS}
            """,
            (
                user_id,
                fields["habit_name"],
                fields.get("description"),
                fields.get("goal_frequency") or "daily",
                fields.get("goal_amount") or 1,
            ),
        )
        return cur.fetchone()


def update_habit(conn, user_id: str, habit_id: str, changes: dict) -> Optional[dict]:
    current = get_habit(conn, user_id, habit_id)
    if not current:
        return None
    merged = {k: current.get(k) if changes.get(k) is None else changes[k] for k in EDITABLE_FIELDS}
    with conn.cursor(cursor_factory=RealDictCursor) as cur:
        cur.execute(
            f"""
            UPDATE spiritual_habits
            SET habit_name = %s,
                description = %s,
                goal_frequency = %s,
                goal_amount = %s,
                is_active = %s,
                updated_at = now()
            WHERE id = %s AND user_id = %s
            RETURNING {HABIT_COLUMNS}
            """,
            (*[merged[k] for k in EDITABLE_FIELDS], habit_id, user_id),
        )
        return cur.fetchone()


def delete_habit(conn, user_id: str, habit_id: str) -> bool:
    with conn.cursor() as cur:
        cur.execute(
            """
            DELETE FROM spiritual_habits
            WHERE id = %s AND user_id = %s
            """,
            (habit_id, user_id),
        )
        return cur.rowcount > 0


def log_habit(conn, user_id: str, habit: dict, completed_date: date, amount: int, notes: Optional[str], today: date) -> dict:
    """Upsert the day's log and refresh the habit's streak counters."""
    with conn.cursor(cursor_factory=RealDictCursor) as cur:
        cur.execute(
            f"""
            INSERT INTO habit_logs (habit_id, user_id, completed_date, amount, notes)
            VALUES (%s, %s, %s, %s, %s)
            ON CONFLICT (habit_id, completed_date)
            DO UPDATE SET amount = EXCLUDED.amount, notes = EXCLUDED.notes
            RETURNING {LOG_COLUMNS}
            """,
            (habit["id"], user_id, completed_date, amount, notes),
        )
        log = cur.fetchone()
        cur.execute(
            """
            SELECT completed_date
            FROM habit_logs
            WHERE habit_id = %s
            """,
            (habit["id"],),
        )
        dates = [r["completed_date"] for r in cur.fetchall()]
        streak = compute_streak(dates, today, habit.get("goal_frequency") or "daily")
        longest = max(int(habit.get("streak_longest") or 0), streak)
        cur.execute(
            f"""
            UPDATE spiritual_habits
            SET streak_current = %s, streak_longest = %s, updated_at = now()
            WHERE id = %s
            RETURNING {HABIT_COLUMNS}
            """,
            (streak, longest, habit["id"]),
        )
        updated = cur.fetchone()
    return {"log": log, "habit": updated}


def list_logs(conn, user_id: str, habit_id: str, start: Optional[date], end: Optional[date]) -> List[dict]:
    with conn.cursor(cursor_factory=RealDictCursor) as cur:
        cur.execute(
            f"""
            SELECT {LOG_COLUMNS}
            FROM habit_logs
            WHERE habit_id = %s AND user_id = %s
              AND (%s::date IS NULL OR completed_date >= %s)
              AND (%s::date IS NULL OR completed_date <= %s)
            ORDER BY completed_date DESC
            """,
            (habit_id, user_id, start, start, end, end),
        )
        return cur.fetchall()


def recommend_habits(moods: List[dict], habits: List[dict]) -> List[dict]:
    tracked = {str(h.get("habit_name") or "").strip().lower() for h in habits}
    keys = []
    if moods:
        avg_spiritual = sum(m["spiritual_score"] for m in moods) / len(moods)
        if avg_spiritual < 6:
            keys.extend(["prayer", "scripture"])
        if not any(m.get("church_attendance") for m in moods):
            keys.append("worship")
        if not any(m.get("prayer_time") for m in moods) and "prayer" not in keys:
            keys.append("prayer")
        avg_mood = sum(m["mood_score"] for m in moods) / len(moods)
        if avg_mood < 5:
            keys.append("gratitude")
    else:
        keys.extend(["prayer", "scripture"])

    out = []
    for key in keys:
        suggestion = RECOMMENDED_HABITS[key]
        if suggestion["habit_name"].lower() in tracked:
            continue
        out.append({**suggestion, "reason": key})
    return out
