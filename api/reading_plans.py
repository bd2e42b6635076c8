from datetime import date
from typing import List, Optional

from psycopg2.extras import RealDictCursor

from api.llm import complete_json

MIN_PLAN_DAYS = 3
MAX_PLAN_DAYS = 60

PLAN_COLUMNS = """
    id, title, description, duration_days, theme, is_premium, is_active, created_by, created_at
"""
READING_COLUMNS = """
    id, plan_id, day_number, title, description, scripture_reference,
    reflection_questions, prayer_prompt
"""
PROGRESS_COLUMNS = """
    id, plan_id, current_day, started_at, last_completed_date, completed_days,
    is_completed, completion_date
"""


class PlanProgressError(ValueError):
    pass


def list_plans(conn, include_premium: bool, user_id: Optional[str] = None) -> List[dict]:
    with conn.cursor(cursor_factory=RealDictCursor) as cur:
        cur.execute(
            f"""
            SELECT {PLAN_COLUMNS}
            FROM bible_reading_plans
            WHERE is_active = true
              AND (%s OR is_premium = false)
              AND (created_by IS NULL OR created_by = %s)
            ORDER BY is_premium ASC, duration_days ASC, title ASC
            """,
            (include_premium, user_id),
        )
        return cur.fetchall()


def get_plan(conn, plan_id: str, user_id: Optional[str] = None) -> Optional[dict]:
    with conn.cursor(cursor_factory=RealDictCursor) as cur:
        cur.execute(
            f"""
            SELECT {PLAN_COLUMNS}
            FROM bible_reading_plans
            WHERE id = %s AND is_active = true
              AND (created_by IS NULL OR created_by = %s)
            """,
            (plan_id, user_id),
        )
        return cur.fetchone()


def list_readings(conn, plan_id: str) -> List[dict]:
    with conn.cursor(cursor_factory=RealDictCursor) as cur:
        cur.execute(
            f"""
            SELECT {READING_COLUMNS}
            FROM plan_daily_readings
            WHERE plan_id = %s
            ORDER BY day_number ASC
            """,
            (plan_id,),
        )
        return cur.fetchall()


def get_reading(conn, plan_id: str, day_number: int) -> Optional[dict]:
    with conn.cursor(cursor_factory=RealDictCursor) as cur:
        cur.execute(
            f"""
            SELECT {READING_COLUMNS}
            FROM plan_daily_readings
            WHERE plan_id = %s AND day_number = %s
            """,
            (plan_id, day_number),
        )
        return cur.fetchone()


def get_progress(conn, user_id: str, plan_id: str) -> Optional[dict]:
    with conn.cursor(cursor_factory=RealDictCursor) as cur:
        cur.execute(
            f"""
            SELECT {PROGRESS_COLUMNS}
            FROM user_reading_progress
            WHERE user_id = %s AND plan_id = %s
            """,
            (user_id, plan_id),
        )
        return cur.fetchone()


def list_user_progress(conn, user_id: str) -> List[dict]:
    with conn.cursor(cursor_factory=RealDictCursor) as cur:
        cur.execute(
            """
            SELECT pr.id, pr.plan_id, pr.current_day, pr.started_at, pr.last_completed_date,
                   pr.completed_days, pr.is_completed, pr.completion_date,
                   p.title AS plan_title, p.duration_days, p.theme
            FROM user_reading_progress pr
            JOIN bible_reading_plans p ON p.id = pr.plan_id
            WHERE pr.user_id = %s
            ORDER BY pr.is_completed ASC, pr.started_at DESC
            """,
            (user_id,),
        )
        return cur.fetchall()


def start_plan(conn, user_id: str, plan_id: str) -> dict:
    with conn.cursor(cursor_factory=RealDictCursor) as cur:
        cur.execute(
            """
            INSERT INTO user_reading_progress (user_id, plan_id, current_day, completed_days, started_at)
            VALUES (%s, %s, 1, '{}', now())
            ON CONFLICT (user_id, plan_id) DO NOTHING
            """,
            (user_id, plan_id),
        )
    return get_progress(conn, user_id, plan_id)


def complete_day(progress: dict, day: int, duration_days: int, today: date) -> dict:
    """Apply a completed day to a progress row; raises PlanProgressError when the day is locked."""
    current_day = int(progress.get("current_day") or 1)
    if day < 1 or day > duration_days:
        raise PlanProgressError("day out of range")
    if day > current_day:
        raise PlanProgressError("day not unlocked")
    completed_days = sorted(set(progress.get("completed_days") or []) | {day})
    is_completed = day >= duration_days
    updated = dict(progress)
    updated.update(
        {
            "completed_days": completed_days,
            "is_completed": is_completed,
            "current_day": day if is_completed else max(current_day, day + 1),
            "last_completed_date": today,
        }
    )
    if is_completed and not progress.get("completion_date"):
        updated["completion_date"] = today
    return updated


def save_progress(conn, user_id: str, plan_id: str, progress: dict) -> dict:
    with conn.cursor(cursor_factory=RealDictCursor) as cur:
        cur.execute(
            f"""
            UPDATE user_reading_progress
            SET current_day = %s,
                completed_days = %s,
                is_completed = %s,
                last_completed_date = %s,
                completion_date = %s
            WHERE user_id = %s AND plan_id = %s
            RETURNING {PROGRESS_COLUMNS}
            """,
            (
                progress["current_day"],
                progress["completed_days"],
                progress["is_completed"],
                progress["last_completed_date"],
                progress.get("completion_date"),
                user_id,
                plan_id,
            ),
        )
        return cur.fetchone()


def upsert_reflection(conn, user_id: str, plan_id: str, day_number: int, content: str) -> dict:
    with conn.cursor(cursor_factory=RealDictCursor) as cur:
        cur.execute(
            """
            INSERT INTO reading_reflections (user_id, plan_id, day_number, content)
            VALUES (%s, %s, %s, %s)
            ON CONFLICT (user_id, plan_id, day_number)
            DO UPDATE SET content = EXCLUDED.content, updated_at = now()
            RETURNING id, plan_id, day_number, content, created_at, updated_at
            """,
            (user_id, plan_id, day_number, content),
        )
        return cur.fetchone()


def get_reflection(conn, user_id: str, plan_id: str, day_number: int) -> Optional[dict]:
    with conn.cursor(cursor_factory=RealDictCursor) as cur:
        cur.execute(
            """
            SELECT id, plan_id, day_number, content, created_at, updated_at
            FROM reading_reflections
            WHERE user_id = %s AND plan_id = %s AND day_number = %s
            """,
            (user_id, plan_id, day_number),
        )
        return cur.fetchone()


PLAN_SYSTEM_PROMPT = (
    "You are a pastor designing a Bible reading plan. Respond only with JSON of the form "
    '{"title": string, "description": string, "days": [{"day_number": int, "title": string, '
    '"description": string, "scripture_reference": string, "reflection_questions": [string], '
    '"prayer_prompt": string}]}. Use real Bible references such as "John 3:16-21".'
)


def _plan_prompt(topic: str, duration_days: int, focus: Optional[str], difficulty: Optional[str]) -> str:
    lines = [f"Create a {duration_days}-day Bible reading plan about: {topic}."]
    if focus:
        lines.append(f"Focus: {focus}.")
    if difficulty:
        lines.append(f"Reader level: {difficulty}.")
    lines.append("Include two or three reflection questions per day.")
    return "\n".join(lines)


def validate_generated_plan(data: Optional[dict], duration_days: int) -> dict:
    if not data or not isinstance(data.get("days"), list) or not data.get("title"):
        raise ValueError("invalid plan")
    days = []
    for idx, raw in enumerate(data["days"][:duration_days], start=1):
        if not isinstance(raw, dict) or not raw.get("scripture_reference"):
            raise ValueError("invalid plan day")
        questions = raw.get("reflection_questions")
        days.append(
            {
                "day_number": idx,
                "title": str(raw.get("title") or f"Day {idx}"),
                "description": raw.get("description"),
                "scripture_reference": str(raw["scripture_reference"]),
                "reflection_questions": [str(q) for q in questions] if isinstance(questions, list) else [],
                "prayer_prompt": raw.get("prayer_prompt"),
            }
        )
    if len(days) < MIN_PLAN_DAYS:
        raise ValueError("too few days")
    return {"title": str(data["title"]), "description": data.get("description"), "days": days}


def generate_plan(topic: str, duration_days: int, focus: Optional[str] = None, difficulty: Optional[str] = None) -> dict:
    """Ask the LLM for a plan; raises LLMError on provider failure and ValueError on unusable output."""
    data = complete_json(PLAN_SYSTEM_PROMPT, _plan_prompt(topic, duration_days, focus, difficulty), temperature=0.7)
    return validate_generated_plan(data, duration_days)


def store_generated_plan(conn, user_id: str, plan: dict, theme: Optional[str]) -> dict:
    with conn.cursor(cursor_factory=RealDictCursor) as cur:
        cur.execute(
            f"""
            INSERT INTO bible_reading_plans
              (title, description, duration_days, theme, is_premium, is_active, created_by)
            VALUES (%s, %s, %s, %s, false, true, %s)
            RETURNING {PLAN_COLUMNS}
            """,
            (plan["title"], plan.get("description"), len(plan["days"]), theme, user_id),
        )
        stored = cur.fetchone()
        for day in plan["days"]:
            cur.execute(
                """
                INSERT INTO plan_daily_readings
                  (plan_id, day_number, title, description, scripture_reference,
                   reflection_questions, prayer_prompt)
                VALUES (%s, %s, %s, %s, %s, %s, %s)
                """,
                (
                    stored["id"],
                    day["day_number"],
                    day["title"],
                    day["description"],
                    day["scripture_reference"],
                    day["reflection_questions"],
                    day["prayer_prompt"],
                ),
            )
    stored = dict(stored)
    stored["days"] = plan["days"]
    return stored

