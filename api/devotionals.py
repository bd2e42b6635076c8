from typing import List, Optional

from psycopg2.extras import Json, RealDictCursor

from api.bible_text import fetch_passage
from api.events import log_api_event
from api.llm import LLMError, chat_completion, complete_json

DEVOTIONAL_TONES = ("encouraging", "challenging", "comforting", "inspiring")
DEVOTIONAL_LENGTHS = {"short": "about 150 words", "medium": "about 300 words", "long": "about 500 words"}
DEVOTIONAL_FOCUSES = ("prayer", "scripture", "application", "reflection")
INTERACTION_TYPES = ("reflection", "question", "prayer")

DEVOTIONAL_COLUMNS = """
    id, title, scripture_reference, scripture_text, content, reflection_questions,
    personalization_context, created_at
"""
INTERACTION_COLUMNS = "id, devotional_id, interaction_type, prompt, user_response, ai_feedback, created_at"

DEVOTIONAL_SYSTEM_PROMPT = (
    "You are TrueNorth, a pastor writing a short personal devotional. Respond only with JSON of the form "
    '{"title": string, "scripture_reference": string, "scripture_text": string, "content": string, '
    '"reflection_questions": [string]}. Use one real Bible passage such as "Psalm 46:1-3" and '
    "write the content in the second person."
)


def _devotional_prompt(context: str, preferences: dict) -> str:
    tone = preferences.get("tone") or "encouraging"
    length = DEVOTIONAL_LENGTHS.get(preferences.get("length") or "medium", DEVOTIONAL_LENGTHS["medium"])
    lines = [f"Write an {tone} devotional of {length}."]
    if preferences.get("focus"):
        lines.append(f"Focus on {preferences['focus']}.")
    if context:
        lines.append(f"What you know about the reader:\n{context}")
    lines.append("Include three reflection questions.")
    return "\n".join(lines)


def validate_generated_content(data: Optional[dict]) -> dict:
    """Shared shape check for generated devotionals and Bible studies; raises ValueError."""
    if not data:
        raise ValueError("invalid content")
    fields = {}
    for key in ("title", "scripture_reference", "content"):
        value = str(data.get(key) or "").strip()
        if not value:
            raise ValueError(f"missing {key}")
        fields[key] = value
    fields["scripture_text"] = str(data.get("scripture_text") or "").strip()
    questions = data.get("reflection_questions")
    fields["reflection_questions"] = (
        [str(q).strip() for q in questions if str(q).strip()] if isinstance(questions, list) else []
    )
    return fields


def attach_passage_text(fields: dict, translation: Optional[str] = None) -> dict:
    """Prefer the published text of the reference over what the model quoted."""
    try:
        passage = fetch_passage(fields["scripture_reference"], translation)
    except ValueError:
        passage = None
    if passage and passage.get("text"):
        fields["scripture_text"] = passage["text"]
    if not fields["scripture_text"]:
        raise ValueError("missing scripture_text")
    return fields


def generate_devotional(context: str, preferences: dict) -> dict:
    """Raises LLMError on provider failure and ValueError on unusable output."""
    data = complete_json(DEVOTIONAL_SYSTEM_PROMPT, _devotional_prompt(context, preferences), temperature=0.8)
    return attach_passage_text(validate_generated_content(data))


def store_devotional(conn, user_id: str, devotional: dict, preferences: dict) -> dict:
    with conn.cursor(cursor_factory=RealDictCursor) as cur:
        cur.execute(
            f"""
            INSERT INTO ai_devotionals
              (user_id, title, scripture_reference, scripture_text, content,
               reflection_questions, personalization_context)
            VALUES (%s, %s, %s, %s, %s, %s, %s)
            RETURNING {DEVOTIONAL_COLUMNS}
            """,
            (
                user_id,
                devotional["title"],
                devotional["scripture_reference"],
                devotional["scripture_text"],
                devotional["content"],
                devotional["reflection_questions"],
                Json({"preferences": preferences}),
            ),
        )
        return cur.fetchone()


def list_devotionals(conn, user_id: str, limit: int = 20, offset: int = 0) -> List[dict]:
    with conn.cursor(cursor_factory=RealDictCursor) as cur:
        cur.execute(
            f"""
            SELECT {DEVOTIONAL_COLUMNS}
            FROM ai_devotionals
            WHERE user_id = %s
            ORDER BY created_at DESC
            LIMIT %s OFFSET %s
            """,
            (user_id, limit, offset),
        )
        return cur.fetchall()


def get_devotional(conn, user_id: str, devotional_id: str) -> Optional[dict]:
    with conn.cursor(cursor_factory=RealDictCursor) as cur:
        cur.execute(
            f"""
            SELECT {DEVOTIONAL_COLUMNS}
            FROM ai_devotionals
            WHERE id = %s AND user_id = %s
            """,
            (devotional_id, user_id),
        )
        return cur.fetchone()


def delete_devotional(conn, user_id: str, devotional_id: str) -> bool:
    with conn.cursor() as cur:
        cur.execute(
            """
            DELETE FROM ai_devotionals
            WHERE id = %s AND user_id = %s
            """,
            (devotional_id, user_id),
        )
        return cur.rowcount > 0


def list_interactions(conn, devotional_id: str) -> List[dict]:
    with conn.cursor(cursor_factory=RealDictCursor) as cur:
        cur.execute(
            f"""
            SELECT {INTERACTION_COLUMNS}
            FROM ai_devotional_interactions
            WHERE devotional_id = %s
            ORDER BY created_at ASC
            """,
            (devotional_id,),
        )
        return cur.fetchall()


INTERACTION_FEEDBACK_PROMPT = (
    "You are TrueNorth, a gentle faith-centered guide. The reader is responding to a devotional. "
    "Reply in under 120 words. For a reflection, affirm and deepen it. For a question, answer it "
    "from Scripture with references. For a prayer, pray briefly with them."
)


def interaction_feedback(devotional: dict, interaction_type: str, prompt: str, response: Optional[str]) -> Optional[str]:
    message = (
        f"Devotional: {devotional.get('title')} ({devotional.get('scripture_reference')})\n"
        f"Type: {interaction_type}\nPrompt: {prompt}\n\nReader:\n{response or prompt}"
    )
    try:
        return chat_completion(
            [
                {"role": "system", "content": INTERACTION_FEEDBACK_PROMPT},
                {"role": "user", "content": message},
            ],
            temperature=0.7,
        ).strip() or None
    except LLMError as exc:
        log_api_event("devotional_feedback_failed", {"reason": str(exc)})
        return None


def add_interaction(
    conn,
    user_id: str,
    devotional_id: str,
    interaction_type: str,
    prompt: str,
    user_response: Optional[str],
    ai_feedback: Optional[str],
) -> dict:
    with conn.cursor(cursor_factory=RealDictCursor) as cur:
        cur.execute(
            f"""
            INSERT INTO ai_devotional_interactions
              (devotional_id, user_id, interaction_type, prompt, user_response, ai_feedback)
            VALUES (%s, %s, %s, %s, %s, %s)
            RETURNING {INTERACTION_COLUMNS}
            """,
            (devotional_id, user_id, interaction_type, prompt, user_response, ai_feedback),
        )
        return cur.fetchone()
