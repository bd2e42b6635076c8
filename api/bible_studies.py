from typing import List, Optional

from psycopg2.extras import Json, RealDictCursor

from api.devotionals import attach_passage_text, validate_generated_content
from api.llm import complete_json

STUDY_DIFFICULTIES = ("beginner", "intermediate", "advanced")
STUDY_FOCUSES = ("interpretation", "application", "theology", "historical", "character")

STUDY_COLUMNS = """
    id, title, scripture_reference, scripture_text, content, reflection_questions,
    personalization_context, user_notes, created_at
"""

STUDY_SYSTEM_PROMPT = (
    "You are a Bible teacher preparing a one-session inductive study. Respond only with JSON of the form "
    '{"title": string, "scripture_reference": string, "scripture_text": string, "content": string, '
    '"reflection_questions": [string]}. The content covers context, observation, interpretation '
    "and application in plain paragraphs. Use one real passage."
)


def _study_prompt(context: str, preferences: dict) -> str:
    lines = [f"Topic: {preferences.get('topic') or 'a passage that fits the reader'}."]
    lines.append(f"Level: {preferences.get('difficulty') or 'intermediate'}.")
    if preferences.get("focus"):
        lines.append(f"Emphasis: {preferences['focus']}.")
    if context:
        lines.append(f"Reader:\n{context}")
    lines.append("Include four or five discussion questions.")
    return "\n".join(lines)


def generate_study(context: str, preferences: dict) -> dict:
    """Raises LLMError on provider failure and ValueError on unusable output."""
    data = complete_json(STUDY_SYSTEM_PROMPT, _study_prompt(context, preferences), temperature=0.7)
    return attach_passage_text(validate_generated_content(data))


def store_study(conn, user_id: str, study: dict, preferences: dict) -> dict:
    with conn.cursor(cursor_factory=RealDictCursor) as cur:
        cur.execute(
            f"""
            INSERT INTO ai_bible_studies
              (user_id, title, scripture_reference, scripture_text, content,
               reflection_questions, personalization_context)
            VALUES (%s, %s, %s, %s, %s, %s, %s)
            RETURNING {STUDY_COLUMNS}
            """,
            (
                user_id,
                study["title"],
                study["scripture_reference"],
                study["scripture_text"],
                study["content"],
                study["reflection_questions"],
                Json({"preferences": preferences}),
            ),
        )
        return cur.fetchone()


def list_studies(conn, user_id: str, limit: int = 20, offset: int = 0) -> List[dict]:
    with conn.cursor(cursor_factory=RealDictCursor) as cur:
        cur.execute(
            f"""
            SELECT {STUDY_COLUMNS}
            FROM ai_bible_studies
            WHERE user_id = %s
            ORDER BY created_at DESC
            LIMIT %s OFFSET %s
            """,
            (user_id, limit, offset),
        )
        return cur.fetchall()


def get_study(conn, user_id: str, study_id: str) -> Optional[dict]:
    with conn.cursor(cursor_factory=RealDictCursor) as cur:
        cur.execute(
            f"""
            SELECT {STUDY_COLUMNS}
            FROM ai_bible_studies
            WHERE id = %s AND user_id = %s
            """,
            (study_id, user_id),
        )
        return cur.fetchone()


def update_notes(conn, user_id: str, study_id: str, notes: Optional[str]) -> Optional[dict]:
    with conn.cursor(cursor_factory=RealDictCursor) as cur:
        cur.execute(
            f"""
            UPDATE ai_bible_studies
            SET user_notes = %s
            WHERE id = %s AND user_id = %s
            RETURNING {STUDY_COLUMNS}
            """,
            (notes, study_id, user_id),
        )
        return cur.fetchone()


def delete_study(conn, user_id: str, study_id: str) -> bool:
    with conn.cursor() as cur:
        cur.execute(
            """
            DELETE FROM ai_bible_studies
            WHERE id = %s AND user_id = %s
            """,
            (study_id, user_id),
        )
        return cur.rowcount > 0
