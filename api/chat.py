import json
import os
import re
import uuid
from datetime import date
from typing import Iterator, List, Optional

from psycopg2.extras import RealDictCursor

from api.events import log_chat_event
from api.llm import LLMError, complete_json, stream_chat_completion
from api.profiles import display_name_for

CHAT_HISTORY_LIMIT = int(os.getenv("CHAT_HISTORY_LIMIT", "20"))
CHAT_MESSAGE_MAX_CHARS = 4000
THREAD_TITLE_CHARS = 50
STREAM_TEMPERATURE = 0.9

RISK_PATTERNS = [
    r"\bkill(ing)? myself\b",
    r"\bsuicid",
    r"\bend (it all|my life)\b",
    r"\bwant to die\b",
    r"\bself[- ]harm",
    r"\bhurt(ing)? myself\b",
]

CRISIS_RESPONSE = (
    "I'm really sorry you're carrying this right now, and I'm glad you told me. "
    "You don't have to face it alone.\n"
    "If you are in the United States you can call or text 988 to reach the "
    "988 Suicide & Crisis Lifeline any time, day or night.\n"
    "If you are in immediate danger, please call 911 or your local emergency number.\n"
    "If you can, reach out to someone you trust or a pastor today. "
    "\"The Lord is close to the brokenhearted and saves those who are crushed in spirit.\" (Psalm 34:18)"
)

SYSTEM_TEMPLATE = """You are TrueNorth, a faith-centered AI life coach who helps people grow spiritually \
and navigate life's challenges through a biblical lens.

Guidelines:
- Respond with warmth, empathy and grace, never with judgment.
- Ground your encouragement in Scripture and cite references (book chapter:verse) when you quote them.
- Ask thoughtful follow-up questions that help the person reflect and take a next step.
- Suggest practical spiritual practices such as prayer, journaling, reading and community.
- Keep answers focused and conversational; avoid long lectures.
- You are not a licensed counselor. For medical, legal or mental health emergencies, \
encourage the person to seek professional help.
- Respect every denomination and stay away from divisive theological debates.

USER INFORMATION:
{context}

Today's date is {today}."""

THREAD_COLUMNS = "id, title, created_at, updated_at"
MESSAGE_COLUMNS = "id, role, content, created_at"


def thread_title(message: str) -> str:
    title = " ".join((message or "").split())
    return title[:THREAD_TITLE_CHARS] or "New conversation"


def risk_flags(text: str) -> List[str]:
    lowered = (text or "").lower()
    for pat in RISK_PATTERNS:
        if re.search(pat, lowered):
            return ["self_harm"]
    return []


def create_thread(conn, user_id: str, title: str) -> dict:
    thread_id = str(uuid.uuid4())
    with conn.cursor(cursor_factory=RealDictCursor) as cur:
        cur.execute(
            f"""
            INSERT INTO chat_threads (id, user_id, title, created_at, updated_at)
            VALUES (%s, %s, %s, now(), now())
            RETURNING {THREAD_COLUMNS}
            """,
            (thread_id, user_id, title),
        )
        return cur.fetchone()


def get_thread(conn, user_id: str, thread_id: str) -> Optional[dict]:
    with conn.cursor(cursor_factory=RealDictCursor) as cur:
        cur.execute(
            f"""
            SELECT {THREAD_COLUMNS}
            FROM chat_threads
            WHERE id = %s AND user_id = %s
            """,
            (thread_id, user_id),
        )
        return cur.fetchone()


def list_threads(conn, user_id: str, limit: int = 50, offset: int = 0) -> List[dict]:
    with conn.cursor(cursor_factory=RealDictCursor) as cur:
        cur.execute(
            f"""
            SELECT {THREAD_COLUMNS}
            FROM chat_threads
            WHERE user_id = %s
            ORDER BY updated_at DESC
            LIMIT %s OFFSET %s
            """,
            (user_id, limit, offset),
        )
        return cur.fetchall()


def rename_thread(conn, user_id: str, thread_id: str, title: str) -> Optional[dict]:
    with conn.cursor(cursor_factory=RealDictCursor) as cur:
        cur.execute(
            f"""
            UPDATE chat_threads
            SET title = %s, updated_at = now()
            WHERE id = %s AND user_id = %s
            RETURNING {THREAD_COLUMNS}
            """,
            (title, thread_id, user_id),
        )
        return cur.fetchone()


def delete_thread(conn, user_id: str, thread_id: str) -> bool:
    with conn.cursor() as cur:
        cur.execute(
            """
            DELETE FROM chat_threads
            WHERE id = %s AND user_id = %s
            """,
            (thread_id, user_id),
        )
        return cur.rowcount > 0


def list_messages(conn, thread_id: str) -> List[dict]:
    with conn.cursor(cursor_factory=RealDictCursor) as cur:
        cur.execute(
            f"""
            SELECT {MESSAGE_COLUMNS}
            FROM chat_messages
            WHERE thread_id = %s
            ORDER BY created_at ASC
            """,
            (thread_id,),
        )
        return cur.fetchall()


def load_history(conn, thread_id: str, limit: int = CHAT_HISTORY_LIMIT) -> List[dict]:
    """Last `limit` messages of a thread in chronological order, shaped for the LLM."""
    with conn.cursor(cursor_factory=RealDictCursor) as cur:
        cur.execute(
            """
            SELECT role, content
            FROM (
              SELECT role, content, created_at
              FROM chat_messages
              WHERE thread_id = %s
              ORDER BY created_at DESC
              LIMIT %s
            ) recent
            ORDER BY created_at ASC
            """,
            (thread_id, limit),
        )
        rows = cur.fetchall()
    return [{"role": r["role"], "content": r["content"]} for r in rows]


def save_message(conn, thread_id: str, user_id: str, role: str, content: str) -> None:
    with conn.cursor() as cur:
        cur.execute(
            """
            INSERT INTO chat_messages (thread_id, user_id, role, content, created_at)
            VALUES (%s, %s, %s, %s, now())
            """,
            (thread_id, user_id, role, content),
        )


def touch_thread(conn, thread_id: str) -> None:
    with conn.cursor() as cur:
        cur.execute(
            """
            UPDATE chat_threads
            SET updated_at = now()
            WHERE id = %s
            """,
            (thread_id,),
        )


def build_user_context(conn, user_id: str, email: Optional[str] = None) -> str:
    with conn.cursor(cursor_factory=RealDictCursor) as cur:
        cur.execute(
            """
            SELECT display_name, first_name
            FROM profiles
            WHERE user_id = %s
            """,
            (user_id,),
        )
        profile = cur.fetchone()
        cur.execute(
            """
            SELECT title, is_answered
            FROM prayer_requests
            WHERE user_id = %s
            ORDER BY created_at DESC
            LIMIT 3
            """,
            (user_id,),
        )
        prayers = cur.fetchall()
        cur.execute(
            """
            SELECT entry_date, mood_score, spiritual_score
            FROM mood_entries
            WHERE user_id = %s
            ORDER BY entry_date DESC
            LIMIT 3
            """,
            (user_id,),
        )
        moods = cur.fetchall()

    lines = [f"Name: {display_name_for(profile, email)}"]
    if prayers:
        items = ", ".join(f"{p['title']} ({'Answered' if p['is_answered'] else 'Active'})" for p in prayers)
        lines.append(f"Recent prayer requests: {items}")
    if moods:
        items = "; ".join(
            f"{m['entry_date']}: Mood {m['mood_score']}/10, Spiritual {m['spiritual_score']}/10" for m in moods
        )
        lines.append(f"Recent mood entries: {items}")
    return "\n".join(lines)


def build_system_prompt(context: str, today: Optional[date] = None) -> str:
    today = today or date.today()
    return SYSTEM_TEMPLATE.format(context=context, today=today.strftime("%A, %B %d, %Y"))


def sse_event(payload: dict) -> str:
    return f"data: {json.dumps(payload, ensure_ascii=False)}\n\n"


def _finish_reply(conn, thread_id: str, user_id: str, reply: str) -> None:
    save_message(conn, thread_id, user_id, "assistant", reply)
    touch_thread(conn, thread_id)
    conn.commit()


def stream_reply(
    conn,
    user_id: str,
    thread_id: str,
    message: str,
    system_prompt: str,
    history: List[dict],
    new_thread: bool = False,
) -> Iterator[str]:
    """Relay an assistant reply as SSE events while persisting both sides of the turn."""
    if new_thread:
        yield sse_event({"threadId": thread_id})

    save_message(conn, thread_id, user_id, "user", message)
    conn.commit()

    if risk_flags(message):
        log_chat_event("chat_risk_detected", {"thread_id": thread_id, "flags": ["self_harm"]})
        yield sse_event({"content": CRISIS_RESPONSE})
        _finish_reply(conn, thread_id, user_id, CRISIS_RESPONSE)
        yield sse_event({"done": True})
        return

    messages = [{"role": "system", "content": system_prompt}, *history, {"role": "user", "content": message}]
    parts: List[str] = []
    try:
        for token in stream_chat_completion(messages, temperature=STREAM_TEMPERATURE):
            parts.append(token)
            yield sse_event({"content": token})
    except LLMError as exc:
        partial = "".join(parts)
        if partial.strip():
            _finish_reply(conn, thread_id, user_id, partial)
        log_chat_event(
            "chat_stream_failed",
            {"thread_id": thread_id, "reason": str(exc), "partial_chars": len(partial)},
        )
        yield sse_event({"error": "Failed to generate response", "details": str(exc)})
        return

    reply = "".join(parts)
    _finish_reply(conn, thread_id, user_id, reply)
    log_chat_event(
        "chat_completed",
        {"thread_id": thread_id, "history_turns": len(history), "reply_chars": len(reply)},
    )
    yield sse_event({"done": True})


JOURNAL_SYSTEM_PROMPT = (
    "You turn a conversation between a person and their faith-centered life coach into a "
    "first-person journal entry written as the person. Respond with JSON: "
    '{"title": string, "content": string, "summary": string, "tags": [string], '
    '"related_scripture": string or null}.'
)


def _fallback_journal(title: str, messages: List[dict]) -> dict:
    user_lines = [m["content"] for m in messages if m["role"] == "user"][-5:]
    return {
        "title": title,
        "content": "\n\n".join(user_lines),
        "summary": None,
        "tags": ["chat"],
        "related_scripture": None,
    }


def summarize_thread_for_journal(thread: dict, messages: List[dict]) -> dict:
    title = thread.get("title") or "Conversation"
    transcript = "\n".join(f"{m['role']}: {m['content']}" for m in messages[-CHAT_HISTORY_LIMIT:])
    try:
        data = complete_json(JOURNAL_SYSTEM_PROMPT, transcript, temperature=0.5)
    except LLMError as exc:
        log_chat_event("chat_journal_fallback", {"thread_id": thread.get("id"), "reason": str(exc)})
        return _fallback_journal(title, messages)
    if not data or not str(data.get("content") or "").strip():
        log_chat_event("chat_journal_fallback", {"thread_id": thread.get("id"), "reason": "invalid_json"})
        return _fallback_journal(title, messages)
    tags = data.get("tags") if isinstance(data.get("tags"), list) else []
    return {
        "title": str(data.get("title") or title)[:200],
        "content": str(data["content"]),
        "summary": data.get("summary"),
        "tags": [str(t) for t in tags][:10],
        "related_scripture": data.get("related_scripture"),
    }
