from datetime import datetime, timezone
from typing import List, Optional

from psycopg2.extras import Json, RealDictCursor

from api.events import log_api_event
from api.llm import LLMError, chat_completion, complete_json

GOAL_STATUSES = ("not_started", "in_progress", "completed", "abandoned")
GOAL_COLUMNS = """
    id, title, description, category, target_date, status, progress,
    ai_generated, ai_context, created_at, updated_at
"""
MILESTONE_COLUMNS = "id, goal_id, title, target_date, is_completed, completed_at, sort_order, created_at"
EDITABLE_FIELDS = ("title", "description", "category", "target_date", "status", "progress")


def progress_from_milestones(milestones: List[dict]) -> int:
    if not milestones:
        return 0
    done = sum(1 for m in milestones if m.get("is_completed"))
    return round(done * 100 / len(milestones))


def status_for_progress(status: str, progress: int) -> str:
    if status == "abandoned":
        return status
    if progress >= 100:
        return "completed"
    if progress > 0 and status == "not_started":
        return "in_progress"
    return status


def list_goals(conn, user_id: str, status: Optional[str] = None) -> List[dict]:
    with conn.cursor(cursor_factory=RealDictCursor) as cur:
        cur.execute(
            f"""
            SELECT {GOAL_COLUMNS}
            FROM spiritual_goals
            WHERE user_id = %s AND (%s::text IS NULL OR status = %s)
            ORDER BY created_at DESC
            """,
            (user_id, status, status),
        )
        return cur.fetchall()


def get_goal(conn, user_id: str, goal_id: str) -> Optional[dict]:
    with conn.cursor(cursor_factory=RealDictCursor) as cur:
        cur.execute(
            f"""
            SELECT {GOAL_COLUMNS}
            FROM spiritual_goals
            WHERE id = %s AND user_id = %s
            """,
            (goal_id, user_id),
        )
        return cur.fetchone()


def create_goal(conn, user_id: str, fields: dict, ai_generated: bool = False, ai_context: Optional[dict] = None) -> dict:
    with conn.cursor(cursor_factory=RealDictCursor) as cur:
        cur.execute(
            f"""
            INSERT INTO spiritual_goals
              (user_id, title, description, category, target_date, status, progress, ai_generated, ai_context)
            VALUES (%s, %s, %s, %s, %s, 'not_started', 0, %s, %s)
            RETURNING {GOAL_COLUMNS}
            """,
            (
                user_id,
                fields["title"],
                fields.get("description"),
                fields.get("category"),
                fields.get("target_date"),
                ai_generated,
                Json(ai_context) if ai_context else None,
            ),
        )
        goal = cur.fetchone()
        for idx, title in enumerate(fields.get("milestones") or []):
            cur.execute(
                """
                INSERT INTO goal_milestones (goal_id, title, sort_order)
                VALUES (%s, %s, %s)
                """,
                (goal["id"], title, idx),
            )
        return goal


def update_goal(conn, user_id: str, goal_id: str, changes: dict) -> Optional[dict]:
    current = get_goal(conn, user_id, goal_id)
    if not current:
        return None
    merged = {k: current.get(k) if changes.get(k) is None else changes[k] for k in EDITABLE_FIELDS}
    with conn.cursor(cursor_factory=RealDictCursor) as cur:
        cur.execute(
            f"""
            UPDATE spiritual_goals
            SET title = %s,
                description = %s,
                category = %s,
                target_date = %s,
                status = %s,
                progress = %s,
                updated_at = now()
            WHERE id = %s AND user_id = %s
            RETURNING {GOAL_COLUMNS}
            """,
            (*[merged[k] for k in EDITABLE_FIELDS], goal_id, user_id),
        )
        return cur.fetchone()


def delete_goal(conn, user_id: str, goal_id: str) -> bool:
    with conn.cursor() as cur:
        cur.execute(
            """
            DELETE FROM spiritual_goals
            WHERE id = %s AND user_id = %s
            """,
            (goal_id, user_id),
        )
        return cur.rowcount > 0


def list_milestones(conn, goal_id: str) -> List[dict]:
    with conn.cursor(cursor_factory=RealDictCursor) as cur:
        cur.execute(
            f"""
            SELECT {MILESTONE_COLUMNS}
            FROM goal_milestones
            WHERE goal_id = %s
            ORDER BY sort_order ASC, created_at ASC
            """,
            (goal_id,),
        )
        return cur.fetchall()


def add_milestone(conn, goal_id: str, title: str, target_date=None) -> dict:
    with conn.cursor(cursor_factory=RealDictCursor) as cur:
        cur.execute(
            f"""
            INSERT INTO goal_milestones (goal_id, title, target_date, sort_order)
            VALUES (
              %s, %s, %s,
              (SELECT COALESCE(MAX(sort_order) + 1, 0) FROM goal_milestones WHERE goal_id = %s)
            )
            RETURNING {MILESTONE_COLUMNS}
            """,
            (goal_id, title, target_date, goal_id),
        )
        return cur.fetchone()


def delete_milestone(conn, goal_id: str, milestone_id: str) -> bool:
    with conn.cursor() as cur:
        cur.execute(
            """
            DELETE FROM goal_milestones
            WHERE id = %s AND goal_id = %s
            """,
            (milestone_id, goal_id),
        )
        return cur.rowcount > 0


def set_milestone_completed(conn, goal: dict, milestone_id: str, completed: bool, now: Optional[datetime] = None) -> Optional[dict]:
    """Toggle a milestone and roll the goal's progress and status forward."""
    now = now or datetime.now(timezone.utc)
    with conn.cursor(cursor_factory=RealDictCursor) as cur:
        cur.execute(
            f"""
            UPDATE goal_milestones
            SET is_completed = %s, completed_at = %s
            WHERE id = %s AND goal_id = %s
            RETURNING {MILESTONE_COLUMNS}
            """,
            (completed, now if completed else None, milestone_id, goal["id"]),
        )
        milestone = cur.fetchone()
    if not milestone:
        return None
    milestones = list_milestones(conn, goal["id"])
    progress = progress_from_milestones(milestones)
    status = status_for_progress(goal.get("status") or "not_started", progress)
    with conn.cursor(cursor_factory=RealDictCursor) as cur:
        cur.execute(
            f"""
            UPDATE spiritual_goals
            SET progress = %s, status = %s, updated_at = now()
            WHERE id = %s
            RETURNING {GOAL_COLUMNS}
            """,
            (progress, status, goal["id"]),
        )
        updated_goal = cur.fetchone()
    return {"milestone": milestone, "goal": updated_goal}


REFLECTION_FEEDBACK_PROMPT = (
    "You are TrueNorth, a gentle faith-centered coach. Read the person's reflection on their "
    "spiritual goal and reply in under 120 words with encouragement, one relevant Bible verse "
    "with its reference, and one practical next step."
)


def reflection_feedback(goal: dict, content: str) -> Optional[str]:
    prompt = f"Goal: {goal.get('title')}\nDescription: {goal.get('description') or ''}\n\nReflection:\n{content}"
    try:
        return chat_completion(
            [
                {"role": "system", "content": REFLECTION_FEEDBACK_PROMPT},
                {"role": "user", "content": prompt},
            ],
            temperature=0.7,
        ).strip() or None
    except LLMError as exc:
        log_api_event("goal_feedback_failed", {"reason": str(exc)})
        return None


def add_reflection(conn, user_id: str, goal_id: str, content: str, ai_feedback: Optional[str]) -> dict:
    with conn.cursor(cursor_factory=RealDictCursor) as cur:
        cur.execute(
            """
            INSERT INTO goal_reflections (goal_id, user_id, content, ai_feedback)
            VALUES (%s, %s, %s, %s)
            RETURNING id, goal_id, content, ai_feedback, created_at
            """,
            (goal_id, user_id, content, ai_feedback),
        )
        return cur.fetchone()


def list_reflections(conn, goal_id: str) -> List[dict]:
    with conn.cursor(cursor_factory=RealDictCursor) as cur:
        cur.execute(
            """
            SELECT id, goal_id, content, ai_feedback, created_at
            FROM goal_reflections
            WHERE goal_id = %s
            ORDER BY created_at DESC
            """,
            (goal_id,),
        )
        return cur.fetchall()


GOAL_SUGGESTION_PROMPT = (
    "You help Christians set meaningful, measurable spiritual goals. Respond only with JSON: "
    '{"goals": [{"title": string, "description": string, "category": string, '
    '"milestones": [string]}]}. Suggest three goals with three to five milestones each.'
)


def suggest_goals(focus_area: str, timeframe: Optional[str] = None) -> List[dict]:
    """Raises LLMError on provider failure and ValueError when the reply has no goals."""
    prompt = f"Focus area: {focus_area}"
    if timeframe:
        prompt += f"\nTimeframe: {timeframe}"
    data = complete_json(GOAL_SUGGESTION_PROMPT, prompt, temperature=0.8)
    raw_goals = (data or {}).get("goals")
    if not isinstance(raw_goals, list):
        raise ValueError("invalid goal suggestions")
    goals = []
    for raw in raw_goals:
        if not isinstance(raw, dict) or not raw.get("title"):
            continue
        milestones = raw.get("milestones") if isinstance(raw.get("milestones"), list) else []
        goals.append(
            {
                "title": str(raw["title"]),
                "description": raw.get("description"),
                "category": raw.get("category") or focus_area,
                "milestones": [str(m.get("title") if isinstance(m, dict) else m) for m in milestones],
            }
        )
    if not goals:
        raise ValueError("invalid goal suggestions")
    return goals
