import os
import time
import uuid
from datetime import datetime, timezone
from typing import BinaryIO, List, Optional

import psycopg2
from psycopg2.extras import Json, RealDictCursor

from api.config import DB, SERMON_STORAGE_DIR
from api.events import log_sermon_event
from api.llm import LLMError, complete_json, transcribe_audio

ALLOWED_EXTENSIONS = ("mp3", "m4a", "wav", "webm", "mp4")
MAX_UPLOAD_BYTES = int(os.getenv("SERMON_MAX_UPLOAD_BYTES", str(25 * 1024 * 1024)))
COPY_CHUNK_BYTES = 1024 * 1024

SERMON_COLUMNS = """
    id, user_id, title, description, sermon_date, audio_url, video_url,
    transcription_text, summary_text, follow_up_questions, key_points,
    ai_context, created_at, updated_at
"""
LIST_COLUMNS = "id, title, description, sermon_date, video_url, ai_context, created_at, updated_at"

ANALYSIS_PROMPT = (
    "You are a theological assistant analyzing sermon transcripts. Create a well-structured "
    "response with three components: 1) A concise summary of the sermon (300-500 words), "
    "2) Five key theological points or takeaways, and 3) Eight thought-provoking follow-up "
    "questions that would facilitate deeper discussion of the sermon's content. Format your "
    'response as JSON with keys "summary", "keyPoints", and "followUpQuestions".'
)


class SermonProcessingError(Exception):
    def __init__(self, step: str, message: str):
        super().__init__(f"{step}: {message}")
        self.step = step
        self.message = message


def file_extension(filename: Optional[str]) -> Optional[str]:
    if not filename or "." not in filename:
        return None
    ext = filename.rsplit(".", 1)[1].lower()
    return ext if ext in ALLOWED_EXTENSIONS else None


def relative_audio_path(user_id: str, sermon_id: str, ext: str) -> str:
    return f"{user_id}/{sermon_id}.{ext}"


def resolve_storage_path(file_path: str) -> str:
    """Absolute path of a storage-relative file; raises ValueError for paths escaping the storage root."""
    root = os.path.realpath(SERMON_STORAGE_DIR)
    full = os.path.realpath(os.path.join(root, file_path))
    if os.path.commonpath([root, full]) != root:
        raise ValueError("path outside storage")
    return full


def save_upload(source: BinaryIO, relative_path: str, max_bytes: int = MAX_UPLOAD_BYTES) -> int:
    """Copy an upload into storage; raises ValueError("file_too_large") past the limit."""
    target = resolve_storage_path(relative_path)
    os.makedirs(os.path.dirname(target), exist_ok=True)
    written = 0
    try:
        with open(target, "wb") as out:
            while True:
                chunk = source.read(COPY_CHUNK_BYTES)
                if not chunk:
                    break
                written += len(chunk)
                if written > max_bytes:
                    raise ValueError("file_too_large")
                out.write(chunk)
    except ValueError:
        os.remove(target)
        raise
    return written


def remove_audio(relative_path: Optional[str]) -> None:
    if not relative_path:
        return
    try:
        os.remove(resolve_storage_path(relative_path))
    except (OSError, ValueError):
        pass


def create_sermon(
    conn,
    user_id: str,
    title: str,
    description: Optional[str] = None,
    sermon_date=None,
    audio_url: Optional[str] = None,
    video_url: Optional[str] = None,
    ai_context: Optional[dict] = None,
    sermon_id: Optional[str] = None,
) -> dict:
    with conn.cursor(cursor_factory=RealDictCursor) as cur:
        cur.execute(
            f"""
            INSERT INTO sermon_summaries
              (id, user_id, title, description, sermon_date, audio_url, video_url, ai_context)
            VALUES (%s, %s, %s, %s, %s, %s, %s, %s)
            RETURNING {SERMON_COLUMNS}
            """,
            (
                sermon_id or str(uuid.uuid4()),
                user_id,
                title,
                description,
                sermon_date,
                audio_url,
                video_url,
                Json(ai_context or {"status": "uploaded"}),
            ),
        )
        return cur.fetchone()


def list_sermons(conn, user_id: str, limit: int = 50, offset: int = 0) -> List[dict]:
    with conn.cursor(cursor_factory=RealDictCursor) as cur:
        cur.execute(
            f"""
            SELECT {LIST_COLUMNS}
            FROM sermon_summaries
            WHERE user_id = %s
            ORDER BY COALESCE(sermon_date, created_at::date) DESC, created_at DESC
            LIMIT %s OFFSET %s
            """,
            (user_id, limit, offset),
        )
        return cur.fetchall()


def get_sermon(conn, user_id: str, sermon_id: str) -> Optional[dict]:
    with conn.cursor(cursor_factory=RealDictCursor) as cur:
        cur.execute(
            f"""
            SELECT {SERMON_COLUMNS}
            FROM sermon_summaries
            WHERE id = %s AND user_id = %s
            """,
            (sermon_id, user_id),
        )
        return cur.fetchone()


def delete_sermon(conn, user_id: str, sermon_id: str) -> Optional[dict]:
    with conn.cursor(cursor_factory=RealDictCursor) as cur:
        cur.execute(
            """
            DELETE FROM sermon_summaries
            WHERE id = %s AND user_id = %s
            RETURNING id, audio_url
            """,
            (sermon_id, user_id),
        )
        return cur.fetchone()


def find_by_video_url(conn, video_url: str) -> Optional[dict]:
    with conn.cursor(cursor_factory=RealDictCursor) as cur:
        cur.execute(
            """
            SELECT id, user_id, audio_url, ai_context
            FROM sermon_summaries
            WHERE video_url = %s
            ORDER BY created_at DESC
            LIMIT 1
            """,
            (video_url,),
        )
        return cur.fetchone()


def set_ai_context(conn, sermon_id: str, ai_context: dict, **fields) -> None:
    assignments = ["ai_context = %s", "updated_at = now()"]
    params: list = [Json(ai_context)]
    for column, value in fields.items():
        assignments.append(f"{column} = %s")
        params.append(value)
    params.append(sermon_id)
    with conn.cursor() as cur:
        cur.execute(
            f"""
            UPDATE sermon_summaries
            SET {", ".join(assignments)}
            WHERE id = %s
            """,
            tuple(params),
        )
    conn.commit()


def _sermon_for_processing(conn, sermon_id: str) -> Optional[dict]:
    with conn.cursor(cursor_factory=RealDictCursor) as cur:
        cur.execute(
            """
            SELECT id, user_id, audio_url
            FROM sermon_summaries
            WHERE id = %s
            """,
            (sermon_id,),
        )
        return cur.fetchone()


def _as_str_list(value) -> List[str]:
    if not isinstance(value, list):
        return []
    return [str(v).strip() for v in value if str(v).strip()]


def analyze_transcript(transcript: str) -> dict:
    try:
        data = complete_json(ANALYSIS_PROMPT, f"Here is the transcript of a sermon to analyze: {transcript}", 0.7)
    except LLMError as exc:
        raise SermonProcessingError("analysis", str(exc)) from exc
    if not data or not str(data.get("summary") or "").strip():
        raise SermonProcessingError("analysis", "invalid response")
    return {
        "summary": str(data["summary"]).strip(),
        "key_points": _as_str_list(data.get("keyPoints")),
        "follow_up_questions": _as_str_list(data.get("followUpQuestions")),
    }


def process_sermon(conn, sermon_id: str, file_path: Optional[str] = None) -> dict:
    """Transcribe and summarize one sermon, recording each step in ai_context.

    Returns the final ai_context. Failures are recorded as
    {"status": "error", "error": "<step>: <message>"} rather than raised;
    anything unexpected is recorded the same way and then re-raised.
    """
    start = time.perf_counter()
    step = "started"
    try:
        set_ai_context(conn, sermon_id, {"status": "processing", "step": "started"})
        sermon = _sermon_for_processing(conn, sermon_id)
        if not sermon:
            raise SermonProcessingError(step, "sermon not found")

        step = "file_download"
        relative = file_path or sermon.get("audio_url")
        if not relative:
            raise SermonProcessingError(step, "no audio file")
        try:
            full_path = resolve_storage_path(relative)
        except ValueError as exc:
            raise SermonProcessingError(step, str(exc)) from exc
        if not os.path.isfile(full_path):
            raise SermonProcessingError(step, "file not found")
        set_ai_context(conn, sermon_id, {"status": "processing", "step": "file_downloaded"})

        step = "transcription"
        try:
            transcript = transcribe_audio(full_path)
        except (LLMError, OSError) as exc:
            raise SermonProcessingError(step, str(exc)) from exc
        if not transcript:
            raise SermonProcessingError(step, "empty transcript")
        set_ai_context(
            conn,
            sermon_id,
            {"status": "processing", "step": "transcription_completed"},
            transcription_text=transcript,
        )

        step = "analysis"
        analysis = analyze_transcript(transcript)
        final = {
            "status": "completed",
            "key_points": analysis["key_points"],
            "completed_at": datetime.now(timezone.utc).isoformat(),
        }
        set_ai_context(
            conn,
            sermon_id,
            final,
            summary_text=analysis["summary"],
            key_points=analysis["key_points"],
            follow_up_questions=analysis["follow_up_questions"],
        )
    except SermonProcessingError as exc:
        return _record_failure(conn, sermon_id, str(exc))
    except psycopg2.Error as exc:
        conn.rollback()
        return _record_failure(conn, sermon_id, f"{step}: database error ({exc.__class__.__name__})")
    except Exception as exc:
        _record_failure(conn, sermon_id, f"{step}: unexpected error ({exc.__class__.__name__})")
        raise

    elapsed_ms = int((time.perf_counter() - start) * 1000)
    log_sermon_event("sermon_processed", {"sermon_id": sermon_id, "elapsed_ms": elapsed_ms})
    return final


def _record_failure(conn, sermon_id: str, error: str) -> dict:
    context = {"status": "error", "error": error}
    log_sermon_event("sermon_failed", {"sermon_id": sermon_id, "error": error})
    try:
        set_ai_context(conn, sermon_id, context)
    except psycopg2.Error:
        conn.rollback()
    return context


def run_processing(sermon_id: str, file_path: Optional[str] = None) -> dict:
    """Background-task entry point with its own connection."""
    conn = psycopg2.connect(**DB)
    try:
        return process_sermon(conn, sermon_id, file_path)
    finally:
        conn.close()
