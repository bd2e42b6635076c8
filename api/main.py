import os
import secrets
import tempfile
import time
import uuid
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Optional

import psycopg2
import stripe
from fastapi import (
    BackgroundTasks,
    Depends,
    FastAPI,
    File,
    Form,
    HTTPException,
    Query,
    Request,
    Response,
    UploadFile,
)
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, StreamingResponse

from api import analytics, bible_studies, billing, chat, devotionals, goals, habits, journal, livestream, moods
from api import notifications, prayers, profiles, reading_plans, recommendations, scripture_memory, sermons
from api.auth import (
    clear_login_attempt,
    create_user,
    get_first_admin_id,
    get_login_attempt,
    get_user_by_email,
    get_user_by_id,
    hash_password,
    is_login_blocked,
    login_retry_after,
    needs_password_upgrade,
    normalize_email,
    password_problem,
    record_login_failure,
    requires_captcha,
    update_last_login,
    update_password_hash,
    validate_email,
    verify_captcha_token,
    verify_password,
)
from api.bible_text import fetch_passage
from api.chat_quota import enforce_daily_chat_limit, get_daily_chat_usage
from api.config import API_TITLE, API_VERSION, CRON_SECRET, DB
from api.events import log_api_event, reset_event_log
from api.gamification import (
    COMMON_REFERENCES,
    GAME_IDS,
    POINTS,
    PRACTICE_GAMES,
    build_multiple_choice,
    calculate_accuracy,
    first_letter_hint,
    generate_fill_in_blanks,
    generate_word_order,
)
from api.jwt_utils import (
    create_access_token,
    create_refresh_token,
    seconds_until,
    verify_access_token,
    verify_refresh_token,
)
from api.llm import TTS_VOICES, LLMError, llm_enabled, synthesize_speech, transcribe_audio
from api.livestream import YouTubeError
from api.models import (
    AuthLoginRequest,
    AuthLogoutAllResponse,
    AuthLogoutResponse,
    AuthMeResponse,
    AuthRegisterRequest,
    ChallengeProgressRequest,
    ChannelRequest,
    ChatStreamRequest,
    CheckoutRequest,
    DevotionalGenerateRequest,
    DevotionalInteractionRequest,
    GoalCreateRequest,
    GoalGenerateRequest,
    GoalReflectionRequest,
    GoalUpdateRequest,
    HabitCreateRequest,
    HabitLogRequest,
    HabitUpdateRequest,
    IngestRequest,
    JournalCreateRequest,
    JournalUpdateRequest,
    LivestreamProcessRequest,
    MilestoneCreateRequest,
    MilestoneUpdateRequest,
    MonitorRequest,
    MoodRequest,
    NotificationGenerateRequest,
    PlanGenerateRequest,
    PortalRequest,
    PracticeRequest,
    PrayerAnsweredRequest,
    PrayerCreateRequest,
    PrayerUpdateRequest,
    PreferencesUpdateRequest,
    ProfileUpdateRequest,
    PushSubscriptionRequest,
    PushUnsubscribeRequest,
    RecommendationGenerateRequest,
    RecommendationUpdateRequest,
    ReflectionRequest,
    RefreshRequest,
    SermonProcessRequest,
    SpeechRequest,
    StudyGenerateRequest,
    StudyNotesRequest,
    ThreadRenameRequest,
    TokenResponse,
    VerseCreateRequest,
    VerseUpdateRequest,
)
from api.ref_parser import normalize_reference
from api.refresh_tokens import (
    get_refresh_token,
    is_refresh_token_active,
    revoke_refresh_token,
    revoke_user_refresh_tokens,
    store_refresh_token,
)

app = FastAPI(title=API_TITLE, version=API_VERSION)

CORS_ALLOW_ALL = os.getenv("CORS_ALLOW_ALL", "1") == "1"
if CORS_ALLOW_ALL:
    allow_origins = ["*"]
else:
    raw_origins = os.getenv(
        "CORS_ALLOW_ORIGINS",
        "http://localhost:5173,http://127.0.0.1:5173",
    )
    allow_origins = [origin.strip() for origin in raw_origins.split(",") if origin.strip()]

app.add_middleware(
    CORSMiddleware,
    allow_origins=allow_origins,
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["Retry-After"],
)

EVENT_LOG_RESET_ON_STARTUP = os.getenv("EVENT_LOG_RESET_ON_STARTUP", "1") == "1"
ALLOW_LOG_RESET = os.getenv("ALLOW_LOG_RESET", "1") == "1"
TTS_MAX_CHARS = 4096


@app.on_event("startup")
def _reset_event_log_on_startup() -> None:
    if EVENT_LOG_RESET_ON_STARTUP:
        reset_event_log("startup")


@app.exception_handler(HTTPException)
def handle_http_exception(_request: Request, exc: HTTPException):
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": {"code": "http_error", "message": str(exc.detail)}},
        headers=exc.headers,
    )


@app.exception_handler(RequestValidationError)
def handle_validation_exception(_request: Request, exc: RequestValidationError):
    return JSONResponse(
        status_code=422,
        content={
            "error": {
                "code": "validation_error",
                "message": "invalid request",
                "details": exc.errors(),
            }
        },
    )


@app.post("/v1/logs/reset")
def reset_logs(request: Request):
    if not ALLOW_LOG_RESET:
        raise HTTPException(status_code=403, detail="log reset disabled")
    reset_event_log("client")
    log_api_event("api_log_reset", {"client": "app"})
    return {"reset": True}


def get_conn():
    conn = psycopg2.connect(**DB)
    try:
        yield conn
    finally:
        conn.close()


def _get_bearer_token(request: Request) -> str | None:
    auth_header = request.headers.get("Authorization", "")
    if not auth_header:
        return None
    scheme, _, token = auth_header.partition(" ")
    if scheme.lower() != "bearer" or not token:
        return None
    return token


def _get_client_ip(request: Request) -> str:
    xff = request.headers.get("X-Forwarded-For", "")
    if xff:
        return xff.split(",")[0].strip()
    if request.client:
        return request.client.host
    return "unknown"


def _json_value(value):
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, uuid.UUID):
        return str(value)
    if isinstance(value, Decimal):
        return float(value)
    return value


def _row(row: dict | None) -> dict | None:
    if row is None:
        return None
    return {key: _json_value(value) for key, value in row.items()}


def _rows(rows) -> list:
    return [_row(r) for r in rows]


def require_user(request: Request, conn=Depends(get_conn)) -> dict:
    token = _get_bearer_token(request)
    if not token:
        raise HTTPException(status_code=401, detail="auth required")
    payload = verify_access_token(token)
    if not payload or not payload.get("sub"):
        raise HTTPException(status_code=401, detail="invalid token")
    user = get_user_by_id(conn, payload["sub"])
    if not user:
        raise HTTPException(status_code=401, detail="user not found")
    return user


def require_admin(current_user=Depends(require_user)) -> dict:
    if not current_user.get("is_admin"):
        log_api_event("admin_required", {"user_id": current_user["user_id"]})
        raise HTTPException(status_code=403, detail="admin required")
    return current_user


def require_pro(current_user=Depends(require_user), conn=Depends(get_conn)) -> dict:
    if not billing.is_pro(conn, current_user["user_id"]):
        log_api_event("subscription_required", {"user_id": current_user["user_id"]})
        raise HTTPException(status_code=402, detail="subscription required")
    return current_user


def _is_cron_request(request: Request) -> bool:
    provided = request.headers.get("X-Cron-Secret", "")
    return bool(CRON_SECRET) and bool(provided) and secrets.compare_digest(provided, CRON_SECRET)


def require_admin_or_cron(request: Request, conn=Depends(get_conn)) -> dict | None:
    """None for cron callers, the admin user otherwise."""
    if _is_cron_request(request):
        return None
    return require_admin(require_user(request, conn))


def user_or_cron(request: Request, conn=Depends(get_conn)) -> dict | None:
    if _is_cron_request(request):
        return None
    return require_user(request, conn)


def _llm_http_error(op: str, exc: LLMError) -> HTTPException:
    if str(exc) == "not_configured":
        log_api_event(f"{op}_failed", {"reason": "llm_not_configured"})
        return HTTPException(status_code=503, detail="llm not configured")
    log_api_event(f"{op}_failed", {"reason": "llm_error"})
    return HTTPException(status_code=502, detail="llm request failed")


def _token_response(conn, user_id: str, email: str | None, device_id: str | None) -> dict:
    access_token, access_exp = create_access_token(user_id, email)
    refresh_token, refresh_id, refresh_exp = create_refresh_token(user_id, email)
    store_refresh_token(conn, user_id, refresh_id, refresh_exp, device_id)
    return {
        "user_id": user_id,
        "access_token": access_token,
        "refresh_token": refresh_token,
        "expires_in": seconds_until(access_exp),
        "token_type": "Bearer",
        "email": email,
    }


@app.post("/v1/auth/register", response_model=TokenResponse)
def register(payload: AuthRegisterRequest, conn=Depends(get_conn)):
    email = normalize_email(payload.email)
    if not validate_email(email):
        log_api_event("auth_register_failed", {"reason": "invalid_email"})
        raise HTTPException(status_code=400, detail="invalid email")
    problem = password_problem(payload.password or "")
    if problem:
        log_api_event("auth_register_failed", {"reason": problem})
        raise HTTPException(status_code=400, detail=problem.replace("_", " "))
    if get_user_by_email(conn, email):
        log_api_event("auth_register_failed", {"reason": "email_exists"})
        raise HTTPException(status_code=409, detail="email already registered")
    user = create_user(conn, email, payload.password, payload.display_name)
    profiles.ensure_preferences(conn, user["user_id"])
    update_last_login(conn, user["user_id"])
    response = _token_response(conn, user["user_id"], email, payload.device_id)
    conn.commit()
    log_api_event("auth_register_success", {"provider": "password"})
    return response


@app.post("/v1/auth/login", response_model=TokenResponse)
def login(payload: AuthLoginRequest, request: Request, conn=Depends(get_conn)):
    email = normalize_email(payload.email)
    ip_address = _get_client_ip(request)
    now = datetime.now(timezone.utc)

    account_attempt = get_login_attempt(conn, "account", email) if email else None
    ip_attempt = get_login_attempt(conn, "ip", ip_address) if ip_address else None
    if is_login_blocked(account_attempt, now) or is_login_blocked(ip_attempt, now):
        retry_after = max(
            login_retry_after(account_attempt, now),
            login_retry_after(ip_attempt, now),
        )
        log_api_event("auth_login_blocked", {"retry_after": retry_after})
        raise HTTPException(
            status_code=429,
            detail="login temporarily blocked",
            headers={"Retry-After": str(retry_after)},
        )

    if requires_captcha(account_attempt) or requires_captcha(ip_attempt):
        if not verify_captcha_token(payload.captcha_token, ip_address):
            log_api_event("auth_login_failed", {"reason": "captcha_required"})
            raise HTTPException(status_code=403, detail="captcha required")

    user = get_user_by_email(conn, email)
    if not user or not verify_password(payload.password or "", user["password_hash"]):
        if email:
            record_login_failure(conn, "account", email, now)
        if ip_address:
            record_login_failure(conn, "ip", ip_address, now)
        conn.commit()
        log_api_event("auth_login_failed", {"reason": "invalid_credentials"})
        raise HTTPException(status_code=401, detail="invalid credentials")

    if needs_password_upgrade(user["password_hash"]):
        update_password_hash(conn, user["user_id"], hash_password(payload.password or ""))
    if email:
        clear_login_attempt(conn, "account", email)
    if ip_address:
        clear_login_attempt(conn, "ip", ip_address)

    update_last_login(conn, user["user_id"])
    response = _token_response(conn, user["user_id"], user["email"], payload.device_id)
    conn.commit()
    log_api_event("auth_login_success", {"provider": "password"})
    return response


@app.post("/v1/auth/refresh", response_model=TokenResponse)
def refresh_token(payload: RefreshRequest, conn=Depends(get_conn)):
    refresh_payload = verify_refresh_token(payload.refresh_token)
    if not refresh_payload or not refresh_payload.get("sub"):
        log_api_event("auth_refresh_failed", {"reason": "invalid_token"})
        raise HTTPException(status_code=401, detail="invalid refresh token")
    refresh_id = refresh_payload["jti"]
    record = get_refresh_token(conn, refresh_id)
    if not is_refresh_token_active(record):
        log_api_event("auth_refresh_failed", {"reason": "revoked"})
        raise HTTPException(status_code=401, detail="refresh token revoked")
    user = get_user_by_id(conn, refresh_payload["sub"])
    if not user:
        log_api_event("auth_refresh_failed", {"reason": "user_not_found"})
        raise HTTPException(status_code=401, detail="user not found")

    revoke_refresh_token(conn, refresh_id)
    response = _token_response(conn, user["user_id"], user.get("email"), record.get("device_id"))
    conn.commit()
    log_api_event("auth_refresh_success", {})
    return response


@app.get("/v1/auth/me", response_model=AuthMeResponse)
def me(current_user=Depends(require_user), conn=Depends(get_conn)):
    profile = profiles.get_profile(conn, current_user["user_id"])
    subscription = billing.get_subscription(conn, current_user["user_id"])
    conn.commit()
    log_api_event("auth_me", {})
    return {
        "user_id": current_user["user_id"],
        "email": current_user["email"],
        "display_name": profiles.display_name_for(profile, current_user["email"]),
        "is_admin": bool(current_user.get("is_admin")),
        "subscription_status": subscription.get("status") or "not_started",
        "is_pro": bool(subscription.get("is_pro")),
        "created_at": current_user["created_at"].isoformat(),
        "last_login": current_user["last_login"].isoformat() if current_user.get("last_login") else None,
    }


@app.post("/v1/auth/logout", response_model=AuthLogoutResponse)
def logout(request: Request, conn=Depends(get_conn)):
    token = _get_bearer_token(request)
    if not token:
        log_api_event("auth_logout_failed", {"reason": "missing_token"})
        raise HTTPException(status_code=401, detail="auth required")
    payload = verify_refresh_token(token)
    if not payload:
        log_api_event("auth_logout_failed", {"reason": "invalid_token"})
        raise HTTPException(status_code=401, detail="invalid refresh token")
    revoked = revoke_refresh_token(conn, payload["jti"])
    conn.commit()
    log_api_event("auth_logout_success", {"revoked": revoked})
    return {"revoked": revoked}


@app.post("/v1/auth/logout-all", response_model=AuthLogoutAllResponse)
def logout_all(current_user=Depends(require_user), conn=Depends(get_conn)):
    revoked = revoke_user_refresh_tokens(conn, current_user["user_id"])
    conn.commit()
    log_api_event("auth_logout_all", {"revoked": revoked})
    return {"revoked": revoked}


@app.get("/v1/users/me/profile")
def get_my_profile(current_user=Depends(require_user), conn=Depends(get_conn)):
    profile = profiles.get_profile(conn, current_user["user_id"])
    conn.commit()
    return _row(profile)


@app.patch("/v1/users/me/profile")
def update_my_profile(payload: ProfileUpdateRequest, current_user=Depends(require_user), conn=Depends(get_conn)):
    changes = payload.model_dump(exclude_unset=True)
    profile = profiles.update_profile(conn, current_user["user_id"], changes)
    conn.commit()
    log_api_event("profile_update", {"fields": sorted(changes)})
    return _row(profile)


@app.get("/v1/users/me/preferences")
def get_my_preferences(current_user=Depends(require_user), conn=Depends(get_conn)):
    prefs = profiles.get_preferences(conn, current_user["user_id"])
    conn.commit()
    return _row(prefs)


@app.patch("/v1/users/me/preferences")
def update_my_preferences(
    payload: PreferencesUpdateRequest,
    current_user=Depends(require_user),
    conn=Depends(get_conn),
):
    notification_prefs = (
        payload.notification_preferences.model_dump(exclude_none=True)
        if payload.notification_preferences
        else None
    )
    prefs = profiles.update_preferences(
        conn,
        current_user["user_id"],
        notification_preferences=notification_prefs,
        theme=payload.theme,
        verse_translation=payload.verse_translation,
    )
    conn.commit()
    log_api_event("preferences_update", {"notification_keys": sorted(notification_prefs or {})})
    return _row(prefs)


@app.get("/v1/chat/threads")
def list_chat_threads(
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    current_user=Depends(require_user),
    conn=Depends(get_conn),
):
    rows = chat.list_threads(conn, current_user["user_id"], limit, offset)
    return {"items": _rows(rows)}


def _owned_thread(conn, user_id: str, thread_id: str) -> dict:
    thread = chat.get_thread(conn, user_id, thread_id)
    if not thread:
        log_api_event("chat_thread_not_found", {"thread_id": thread_id})
        raise HTTPException(status_code=404, detail="thread not found")
    return thread


@app.get("/v1/chat/threads/{thread_id}/messages")
def list_chat_messages(thread_id: str, current_user=Depends(require_user), conn=Depends(get_conn)):
    _owned_thread(conn, current_user["user_id"], thread_id)
    return {"items": _rows(chat.list_messages(conn, thread_id))}


@app.patch("/v1/chat/threads/{thread_id}")
def rename_chat_thread(
    thread_id: str,
    payload: ThreadRenameRequest,
    current_user=Depends(require_user),
    conn=Depends(get_conn),
):
    thread = chat.rename_thread(conn, current_user["user_id"], thread_id, payload.title.strip())
    if not thread:
        raise HTTPException(status_code=404, detail="thread not found")
    conn.commit()
    return _row(thread)


@app.delete("/v1/chat/threads/{thread_id}")
def delete_chat_thread(thread_id: str, current_user=Depends(require_user), conn=Depends(get_conn)):
    if not chat.delete_thread(conn, current_user["user_id"], thread_id):
        raise HTTPException(status_code=404, detail="thread not found")
    conn.commit()
    log_api_event("chat_thread_deleted", {"thread_id": thread_id})
    return {"deleted": True}


@app.get("/v1/chat/usage")
def chat_usage(current_user=Depends(require_user), conn=Depends(get_conn)):
    usage = get_daily_chat_usage(current_user["user_id"])
    if billing.is_pro(conn, current_user["user_id"]):
        usage["remaining"] = None
        usage["limit"] = None
    return usage


def _chat_event_stream(user_id: str, thread_id: str, message: str, system_prompt: str, history: list, new_thread: bool):
    stream_conn = psycopg2.connect(**DB)
    try:
        yield from chat.stream_reply(stream_conn, user_id, thread_id, message, system_prompt, history, new_thread)
    finally:
        stream_conn.close()


@app.post("/v1/chat/stream")
def chat_stream(payload: ChatStreamRequest, current_user=Depends(require_user), conn=Depends(get_conn)):
    user_id = current_user["user_id"]
    message = (payload.message or "").strip()
    if not message:
        log_api_event("chat_stream_failed", {"reason": "empty_message"})
        raise HTTPException(status_code=400, detail="message required")
    if len(message) > chat.CHAT_MESSAGE_MAX_CHARS:
        log_api_event("chat_stream_failed", {"reason": "message_too_long"})
        raise HTTPException(status_code=400, detail="message too long")
    if not chat.risk_flags(message) and not llm_enabled():
        log_api_event("chat_stream_failed", {"reason": "llm_not_configured"})
        raise HTTPException(status_code=503, detail="llm not configured")

    thread = _owned_thread(conn, user_id, payload.thread_id) if payload.thread_id else None

    if not billing.is_pro(conn, user_id):
        quota = enforce_daily_chat_limit(user_id)
        if quota["status"] == "limit":
            log_api_event("chat_stream_failed", {"reason": "daily_limit", "limit": quota["limit"]})
            raise HTTPException(status_code=402, detail="subscription required")

    if thread is not None:
        new_thread = False
    else:
        thread = chat.create_thread(conn, user_id, chat.thread_title(message))
        conn.commit()
        new_thread = True
    thread_id = str(thread["id"])

    history = chat.load_history(conn, thread_id)
    context = chat.build_user_context(conn, user_id, current_user.get("email"))
    system_prompt = chat.build_system_prompt(context)
    log_api_event("chat_stream_started", {"thread_id": thread_id, "new_thread": new_thread})
    return StreamingResponse(
        _chat_event_stream(user_id, thread_id, message, system_prompt, history, new_thread),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )


@app.post("/v1/chat/threads/{thread_id}/journal")
def chat_thread_to_journal(thread_id: str, current_user=Depends(require_user), conn=Depends(get_conn)):
    user_id = current_user["user_id"]
    thread = _owned_thread(conn, user_id, thread_id)
    messages = chat.list_messages(conn, thread_id)
    if not messages:
        raise HTTPException(status_code=400, detail="thread is empty")
    fields = chat.summarize_thread_for_journal(thread, messages)
    entry = journal.create_entry(conn, user_id, fields, source_thread_id=thread_id)
    conn.commit()
    log_api_event("chat_journal_created", {"thread_id": thread_id})
    return _row(entry)


@app.post("/v1/speech/tts")
def text_to_speech(payload: SpeechRequest, current_user=Depends(require_pro)):
    text = (payload.text or "").strip()
    if not text:
        raise HTTPException(status_code=400, detail="text required")
    if len(text) > TTS_MAX_CHARS:
        raise HTTPException(status_code=400, detail="text too long")
    voice = payload.voice or "nova"
    if voice not in TTS_VOICES:
        raise HTTPException(status_code=400, detail="invalid voice")
    try:
        audio = synthesize_speech(text, voice)
    except LLMError as exc:
        raise _llm_http_error("speech_tts", exc)
    log_api_event("speech_tts", {"chars": len(text), "voice": voice})
    return Response(content=audio, media_type="audio/mpeg")


def _record_whisper_usage(conn, user_id: str, size_bytes: int, duration_seconds: Optional[float]) -> None:
    try:
        with conn.cursor() as cur:
            cur.execute(
                """
                INSERT INTO whisper_usage_logs (user_id, file_size_bytes, duration_seconds)
                VALUES (%s, %s, %s)
                """,
                (user_id, size_bytes, duration_seconds),
            )
        conn.commit()
    except psycopg2.Error as exc:
        conn.rollback()
        log_api_event("whisper_usage_log_failed", {"error": exc.__class__.__name__})


@app.post("/v1/speech/transcribe")
def speech_transcribe(
    file: UploadFile = File(...),
    current_user=Depends(require_user),
    conn=Depends(get_conn),
):
    ext = os.path.splitext(file.filename or "")[1] or ".webm"
    tmp = tempfile.NamedTemporaryFile(delete=False, suffix=ext)
    try:
        with tmp:
            size_bytes = 0
            while True:
                chunk = file.file.read(1024 * 1024)
                if not chunk:
                    break
                size_bytes += len(chunk)
                tmp.write(chunk)
        if not size_bytes:
            raise HTTPException(status_code=400, detail="empty audio")
        start = time.perf_counter()
        try:
            text = transcribe_audio(tmp.name, file.filename)
        except LLMError as exc:
            raise _llm_http_error("speech_transcribe", exc)
        elapsed_ms = int((time.perf_counter() - start) * 1000)
    finally:
        os.remove(tmp.name)
    _record_whisper_usage(conn, current_user["user_id"], size_bytes, None)
    log_api_event("speech_transcribe", {"bytes": size_bytes, "elapsed_ms": elapsed_ms})
    return {"text": text}


@app.get("/v1/journal")
def list_journal(
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    tag: Optional[str] = Query(None),
    current_user=Depends(require_user),
    conn=Depends(get_conn),
):
    rows = journal.list_entries(conn, current_user["user_id"], limit, offset, tag)
    return {"items": _rows(rows)}


@app.post("/v1/journal")
def create_journal(payload: JournalCreateRequest, current_user=Depends(require_user), conn=Depends(get_conn)):
    if not payload.content.strip():
        log_api_event("journal_create_failed", {"reason": "empty_content"})
        raise HTTPException(status_code=400, detail="content required")
    entry = journal.create_entry(conn, current_user["user_id"], payload.model_dump())
    conn.commit()
    log_api_event("journal_create", {"tags": len(payload.tags or [])})
    return _row(entry)


@app.get("/v1/journal/{entry_id}")
def get_journal(entry_id: str, current_user=Depends(require_user), conn=Depends(get_conn)):
    entry = journal.get_entry(conn, current_user["user_id"], entry_id)
    if not entry:
        raise HTTPException(status_code=404, detail="journal entry not found")
    return _row(entry)


@app.patch("/v1/journal/{entry_id}")
def update_journal(
    entry_id: str,
    payload: JournalUpdateRequest,
    current_user=Depends(require_user),
    conn=Depends(get_conn),
):
    if payload.content is not None and not payload.content.strip():
        raise HTTPException(status_code=400, detail="content required")
    entry = journal.update_entry(conn, current_user["user_id"], entry_id, payload.model_dump())
    if not entry:
        raise HTTPException(status_code=404, detail="journal entry not found")
    conn.commit()
    return _row(entry)


@app.delete("/v1/journal/{entry_id}")
def delete_journal(entry_id: str, current_user=Depends(require_user), conn=Depends(get_conn)):
    if not journal.delete_entry(conn, current_user["user_id"], entry_id):
        raise HTTPException(status_code=404, detail="journal entry not found")
    conn.commit()
    return {"deleted": True}


@app.get("/v1/prayers")
def list_prayer_requests(
    answered: Optional[bool] = Query(None),
    limit: int = Query(100, ge=1, le=200),
    offset: int = Query(0, ge=0),
    current_user=Depends(require_user),
    conn=Depends(get_conn),
):
    rows = prayers.list_prayers(conn, current_user["user_id"], answered, limit, offset)
    return {"items": _rows(rows)}


@app.get("/v1/prayers/community")
def list_community_prayers(
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    current_user=Depends(require_user),
    conn=Depends(get_conn),
):
    rows = prayers.list_community_prayers(conn, current_user["user_id"], limit, offset)
    return {"items": _rows(rows)}


@app.post("/v1/prayers")
def create_prayer_request(payload: PrayerCreateRequest, current_user=Depends(require_user), conn=Depends(get_conn)):
    prayer = prayers.create_prayer(
        conn, current_user["user_id"], payload.title.strip(), payload.description, payload.shared, payload.tags
    )
    conn.commit()
    log_api_event("prayer_create", {"shared": payload.shared})
    return _row(prayer)


@app.get("/v1/prayers/{prayer_id}")
def get_prayer_request(prayer_id: str, current_user=Depends(require_user), conn=Depends(get_conn)):
    prayer = prayers.get_prayer(conn, current_user["user_id"], prayer_id)
    if not prayer:
        raise HTTPException(status_code=404, detail="prayer request not found")
    return _row(prayer)


@app.patch("/v1/prayers/{prayer_id}")
def update_prayer_request(
    prayer_id: str,
    payload: PrayerUpdateRequest,
    current_user=Depends(require_user),
    conn=Depends(get_conn),
):
    prayer = prayers.update_prayer(conn, current_user["user_id"], prayer_id, payload.model_dump())
    if not prayer:
        raise HTTPException(status_code=404, detail="prayer request not found")
    conn.commit()
    return _row(prayer)


@app.delete("/v1/prayers/{prayer_id}")
def delete_prayer_request(prayer_id: str, current_user=Depends(require_user), conn=Depends(get_conn)):
    if not prayers.delete_prayer(conn, current_user["user_id"], prayer_id):
        raise HTTPException(status_code=404, detail="prayer request not found")
    conn.commit()
    return {"deleted": True}


@app.post("/v1/prayers/{prayer_id}/answered")
def mark_prayer_answered(
    prayer_id: str,
    payload: PrayerAnsweredRequest,
    current_user=Depends(require_user),
    conn=Depends(get_conn),
):
    prayer = prayers.mark_answered(conn, current_user["user_id"], prayer_id, payload.answered_notes)
    if not prayer:
        raise HTTPException(status_code=404, detail="prayer request not found")
    notifications.notify_user(conn, current_user["user_id"], "prayer_answered", name=prayer["title"])
    conn.commit()
    log_api_event("prayer_answered", {})
    return _row(prayer)


@app.post("/v1/prayers/{prayer_id}/pray")
def pray_for_request(prayer_id: str, current_user=Depends(require_user), conn=Depends(get_conn)):
    result = prayers.pray_for_request(conn, current_user["user_id"], prayer_id)
    if result is None:
        raise HTTPException(status_code=404, detail="prayer request not found")
    conn.commit()
    log_api_event("prayer_prayed", {"already_prayed": result["already_prayed"]})
    return result


@app.get("/v1/moods")
def list_mood_entries(
    days: int = Query(30, ge=1, le=366),
    current_user=Depends(require_user),
    conn=Depends(get_conn),
):
    return {"items": _rows(moods.list_moods(conn, current_user["user_id"], days))}


@app.get("/v1/moods/summary")
def mood_summary(
    days: int = Query(30, ge=1, le=366),
    current_user=Depends(require_user),
    conn=Depends(get_conn),
):
    summary = moods.summarize_moods(moods.list_moods(conn, current_user["user_id"], days))
    summary["days"] = days
    return summary


@app.post("/v1/moods")
def save_mood_entry(payload: MoodRequest, current_user=Depends(require_user), conn=Depends(get_conn)):
    entry = moods.upsert_mood(conn, current_user["user_id"], payload.model_dump())
    conn.commit()
    log_api_event("mood_saved", {"mood": payload.mood_score, "spiritual": payload.spiritual_score})
    return _row(entry)


@app.delete("/v1/moods/{mood_id}")
def delete_mood_entry(mood_id: str, current_user=Depends(require_user), conn=Depends(get_conn)):
    if not moods.delete_mood(conn, current_user["user_id"], mood_id):
        raise HTTPException(status_code=404, detail="mood entry not found")
    conn.commit()
    return {"deleted": True}


@app.get("/v1/reading-plans")
def list_reading_plans(current_user=Depends(require_user), conn=Depends(get_conn)):
    include_premium = billing.is_pro(conn, current_user["user_id"])
    return {"items": _rows(reading_plans.list_plans(conn, include_premium, current_user["user_id"]))}


def _active_plan(conn, plan_id: str, user_id: str) -> dict:
    plan = reading_plans.get_plan(conn, plan_id, user_id)
    if not plan:
        raise HTTPException(status_code=404, detail="reading plan not found")
    return plan


@app.post("/v1/reading-plans/generate")
def generate_reading_plan(payload: PlanGenerateRequest, current_user=Depends(require_pro), conn=Depends(get_conn)):
    topic = payload.topic.strip()
    if not topic:
        raise HTTPException(status_code=400, detail="topic required")
    try:
        plan = reading_plans.generate_plan(topic, payload.duration_days, payload.focus, payload.difficulty)
    except LLMError as exc:
        raise _llm_http_error("reading_plan_generate", exc)
    except ValueError:
        log_api_event("reading_plan_generate_failed", {"reason": "invalid_plan"})
        raise HTTPException(status_code=502, detail="invalid plan generated")
    stored = reading_plans.store_generated_plan(conn, current_user["user_id"], plan, topic)
    conn.commit()
    log_api_event("reading_plan_generated", {"days": len(plan["days"])})
    stored = _row(stored)
    stored["days"] = plan["days"]
    return stored


@app.get("/v1/reading-plans/{plan_id}")
def get_reading_plan(plan_id: str, current_user=Depends(require_user), conn=Depends(get_conn)):
    plan = _row(_active_plan(conn, plan_id, current_user["user_id"]))
    plan["readings"] = _rows(reading_plans.list_readings(conn, plan_id))
    plan["progress"] = _row(reading_plans.get_progress(conn, current_user["user_id"], plan_id))
    return plan


@app.get("/v1/reading-plans/{plan_id}/days/{day}")
def get_reading_plan_day(
    plan_id: str,
    day: int,
    translation: Optional[str] = Query(None),
    current_user=Depends(require_user),
    conn=Depends(get_conn),
):
    _active_plan(conn, plan_id, current_user["user_id"])
    reading = reading_plans.get_reading(conn, plan_id, day)
    if not reading:
        raise HTTPException(status_code=404, detail="reading not found")
    try:
        passage = fetch_passage(reading["scripture_reference"], translation)
    except ValueError:
        passage = None
    reflection = reading_plans.get_reflection(conn, current_user["user_id"], plan_id, day)
    return {"reading": _row(reading), "passage": passage, "reflection": _row(reflection)}


@app.post("/v1/reading-plans/{plan_id}/start")
def start_reading_plan(plan_id: str, current_user=Depends(require_user), conn=Depends(get_conn)):
    plan = _active_plan(conn, plan_id, current_user["user_id"])
    if plan.get("is_premium") and not billing.is_pro(conn, current_user["user_id"]):
        log_api_event("reading_plan_start_failed", {"reason": "premium"})
        raise HTTPException(status_code=402, detail="subscription required")
    progress = reading_plans.start_plan(conn, current_user["user_id"], plan_id)
    conn.commit()
    return _row(progress)


@app.post("/v1/reading-plans/{plan_id}/days/{day}/complete")
def complete_reading_day(plan_id: str, day: int, current_user=Depends(require_user), conn=Depends(get_conn)):
    user_id = current_user["user_id"]
    plan = _active_plan(conn, plan_id, current_user["user_id"])
    progress = reading_plans.get_progress(conn, user_id, plan_id)
    if not progress:
        raise HTTPException(status_code=404, detail="plan not started")
    try:
        updated = reading_plans.complete_day(progress, day, int(plan["duration_days"]), date.today())
    except reading_plans.PlanProgressError as exc:
        log_api_event("reading_day_complete_failed", {"reason": str(exc)})
        raise HTTPException(status_code=400, detail=str(exc))
    saved = reading_plans.save_progress(conn, user_id, plan_id, updated)
    conn.commit()
    log_api_event("reading_day_completed", {"day": day, "plan_completed": updated["is_completed"]})
    return _row(saved)


@app.put("/v1/reading-plans/{plan_id}/days/{day}/reflection")
def save_reading_reflection(
    plan_id: str,
    day: int,
    payload: ReflectionRequest,
    current_user=Depends(require_user),
    conn=Depends(get_conn),
):
    if not payload.content.strip():
        raise HTTPException(status_code=400, detail="content required")
    plan = _active_plan(conn, plan_id, current_user["user_id"])
    if day < 1 or day > int(plan["duration_days"]):
        raise HTTPException(status_code=400, detail="day out of range")
    reflection = reading_plans.upsert_reflection(conn, current_user["user_id"], plan_id, day, payload.content)
    conn.commit()
    return _row(reflection)


@app.get("/v1/users/me/reading-progress")
def my_reading_progress(current_user=Depends(require_user), conn=Depends(get_conn)):
    return {"items": _rows(reading_plans.list_user_progress(conn, current_user["user_id"]))}


@app.get("/v1/habits")
def list_spiritual_habits(
    include_inactive: bool = Query(False),
    current_user=Depends(require_user),
    conn=Depends(get_conn),
):
    return {"items": _rows(habits.list_habits(conn, current_user["user_id"], include_inactive))}


@app.get("/v1/habits/recommendations")
def habit_recommendations(current_user=Depends(require_user), conn=Depends(get_conn)):
    user_id = current_user["user_id"]
    recent = moods.list_moods(conn, user_id, days=14)
    existing = habits.list_habits(conn, user_id, include_inactive=True)
    return {"items": habits.recommend_habits(recent, existing)}


def _check_frequency(value: Optional[str]) -> None:
    if value is not None and value not in habits.FREQUENCIES:
        raise HTTPException(status_code=400, detail="invalid goal_frequency")


@app.post("/v1/habits")
def create_spiritual_habit(payload: HabitCreateRequest, current_user=Depends(require_user), conn=Depends(get_conn)):
    _check_frequency(payload.goal_frequency)
    habit = habits.create_habit(conn, current_user["user_id"], payload.model_dump())
    conn.commit()
    return _row(habit)


def _owned_habit(conn, user_id: str, habit_id: str) -> dict:
    habit = habits.get_habit(conn, user_id, habit_id)
    if not habit:
        raise HTTPException(status_code=404, detail="habit not found")
    return habit


@app.get("/v1/habits/{habit_id}")
def get_spiritual_habit(habit_id: str, current_user=Depends(require_user), conn=Depends(get_conn)):
    return _row(_owned_habit(conn, current_user["user_id"], habit_id))


@app.patch("/v1/habits/{habit_id}")
def update_spiritual_habit(
    habit_id: str,
    payload: HabitUpdateRequest,
    current_user=Depends(require_user),
    conn=Depends(get_conn),
):
    _check_frequency(payload.goal_frequency)
    habit = habits.update_habit(conn, current_user["user_id"], habit_id, payload.model_dump())
    if not habit:
        raise HTTPException(status_code=404, detail="habit not found")
    conn.commit()
    return _row(habit)


@app.delete("/v1/habits/{habit_id}")
def delete_spiritual_habit(habit_id: str, current_user=Depends(require_user), conn=Depends(get_conn)):
    if not habits.delete_habit(conn, current_user["user_id"], habit_id):
        raise HTTPException(status_code=404, detail="habit not found")
    conn.commit()
    return {"deleted": True}


@app.post("/v1/habits/{habit_id}/log")
def log_spiritual_habit(
    habit_id: str,
    payload: HabitLogRequest,
    current_user=Depends(require_user),
    conn=Depends(get_conn),
):
    user_id = current_user["user_id"]
    habit = _owned_habit(conn, user_id, habit_id)
    today = date.today()
    completed_date = payload.completed_date or today
    if completed_date > today:
        raise HTTPException(status_code=400, detail="completed_date in the future")
    result = habits.log_habit(conn, user_id, habit, completed_date, payload.amount, payload.notes, today)
    conn.commit()
    log_api_event("habit_logged", {"streak": result["habit"]["streak_current"]})
    return {"log": _row(result["log"]), "habit": _row(result["habit"])}


@app.get("/v1/habits/{habit_id}/logs")
def list_spiritual_habit_logs(
    habit_id: str,
    start: Optional[date] = Query(None),
    end: Optional[date] = Query(None),
    current_user=Depends(require_user),
    conn=Depends(get_conn),
):
    _owned_habit(conn, current_user["user_id"], habit_id)
    return {"items": _rows(habits.list_logs(conn, current_user["user_id"], habit_id, start, end))}


@app.get("/v1/goals")
def list_spiritual_goals(
    status: Optional[str] = Query(None),
    current_user=Depends(require_user),
    conn=Depends(get_conn),
):
    return {"items": _rows(goals.list_goals(conn, current_user["user_id"], status))}


@app.post("/v1/goals/generate")
def generate_goal_suggestions(payload: GoalGenerateRequest, current_user=Depends(require_pro)):
    try:
        suggestions = goals.suggest_goals(payload.focus_area, payload.timeframe)
    except LLMError as exc:
        raise _llm_http_error("goal_generate", exc)
    except ValueError:
        log_api_event("goal_generate_failed", {"reason": "invalid_json"})
        raise HTTPException(status_code=502, detail="invalid goals generated")
    return {"items": suggestions}


@app.post("/v1/goals")
def create_spiritual_goal(payload: GoalCreateRequest, current_user=Depends(require_user), conn=Depends(get_conn)):
    goal = goals.create_goal(conn, current_user["user_id"], payload.model_dump())
    conn.commit()
    return _row(goal)


def _owned_goal(conn, user_id: str, goal_id: str) -> dict:
    goal = goals.get_goal(conn, user_id, goal_id)
    if not goal:
        raise HTTPException(status_code=404, detail="goal not found")
    return goal


@app.get("/v1/goals/{goal_id}")
def get_spiritual_goal(goal_id: str, current_user=Depends(require_user), conn=Depends(get_conn)):
    goal = _row(_owned_goal(conn, current_user["user_id"], goal_id))
    goal["milestones"] = _rows(goals.list_milestones(conn, goal_id))
    goal["reflections"] = _rows(goals.list_reflections(conn, goal_id))
    return goal


@app.patch("/v1/goals/{goal_id}")
def update_spiritual_goal(
    goal_id: str,
    payload: GoalUpdateRequest,
    current_user=Depends(require_user),
    conn=Depends(get_conn),
):
    if payload.status is not None and payload.status not in goals.GOAL_STATUSES:
        raise HTTPException(status_code=400, detail="invalid status")
    goal = goals.update_goal(conn, current_user["user_id"], goal_id, payload.model_dump())
    if not goal:
        raise HTTPException(status_code=404, detail="goal not found")
    conn.commit()
    return _row(goal)


@app.delete("/v1/goals/{goal_id}")
def delete_spiritual_goal(goal_id: str, current_user=Depends(require_user), conn=Depends(get_conn)):
    if not goals.delete_goal(conn, current_user["user_id"], goal_id):
        raise HTTPException(status_code=404, detail="goal not found")
    conn.commit()
    return {"deleted": True}


@app.post("/v1/goals/{goal_id}/milestones")
def add_goal_milestone(
    goal_id: str,
    payload: MilestoneCreateRequest,
    current_user=Depends(require_user),
    conn=Depends(get_conn),
):
    _owned_goal(conn, current_user["user_id"], goal_id)
    milestone = goals.add_milestone(conn, goal_id, payload.title.strip(), payload.target_date)
    conn.commit()
    return _row(milestone)


@app.patch("/v1/goals/{goal_id}/milestones/{milestone_id}")
def update_goal_milestone(
    goal_id: str,
    milestone_id: str,
    payload: MilestoneUpdateRequest,
    current_user=Depends(require_user),
    conn=Depends(get_conn),
):
    goal = _owned_goal(conn, current_user["user_id"], goal_id)
    result = goals.set_milestone_completed(conn, goal, milestone_id, payload.is_completed)
    if not result:
        raise HTTPException(status_code=404, detail="milestone not found")
    conn.commit()
    log_api_event("goal_milestone_update", {"progress": result["goal"]["progress"]})
    return {"milestone": _row(result["milestone"]), "goal": _row(result["goal"])}


@app.delete("/v1/goals/{goal_id}/milestones/{milestone_id}")
def delete_goal_milestone(
    goal_id: str,
    milestone_id: str,
    current_user=Depends(require_user),
    conn=Depends(get_conn),
):
    _owned_goal(conn, current_user["user_id"], goal_id)
    if not goals.delete_milestone(conn, goal_id, milestone_id):
        raise HTTPException(status_code=404, detail="milestone not found")
    conn.commit()
    return {"deleted": True}


@app.post("/v1/goals/{goal_id}/reflections")
def add_goal_reflection(
    goal_id: str,
    payload: GoalReflectionRequest,
    current_user=Depends(require_user),
    conn=Depends(get_conn),
):
    goal = _owned_goal(conn, current_user["user_id"], goal_id)
    content = payload.content.strip()
    if not content:
        raise HTTPException(status_code=400, detail="content required")
    feedback = goals.reflection_feedback(goal, content) if payload.request_feedback else None
    reflection = goals.add_reflection(conn, current_user["user_id"], goal_id, content, feedback)
    conn.commit()
    return _row(reflection)


def _check_choice(value: Optional[str], allowed, field: str) -> None:
    if value is not None and value not in allowed:
        raise HTTPException(status_code=400, detail=f"invalid {field}")


@app.get("/v1/devotionals")
def list_ai_devotionals(
    limit: int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0),
    current_user=Depends(require_user),
    conn=Depends(get_conn),
):
    return {"items": _rows(devotionals.list_devotionals(conn, current_user["user_id"], limit, offset))}


@app.post("/v1/devotionals/generate")
def generate_ai_devotional(payload: DevotionalGenerateRequest, current_user=Depends(require_pro), conn=Depends(get_conn)):
    _check_choice(payload.tone, devotionals.DEVOTIONAL_TONES, "tone")
    _check_choice(payload.length, devotionals.DEVOTIONAL_LENGTHS, "length")
    _check_choice(payload.focus, devotionals.DEVOTIONAL_FOCUSES, "focus")
    preferences = payload.model_dump(exclude_none=True)
    context = chat.build_user_context(conn, current_user["user_id"], current_user.get("email"))
    try:
        devotional = devotionals.generate_devotional(context, preferences)
    except LLMError as exc:
        raise _llm_http_error("devotional_generate", exc)
    except ValueError as exc:
        log_api_event("devotional_generate_failed", {"reason": str(exc)})
        raise HTTPException(status_code=502, detail="invalid devotional generated")
    stored = devotionals.store_devotional(conn, current_user["user_id"], devotional, preferences)
    conn.commit()
    log_api_event("devotional_generated", {"tone": preferences.get("tone")})
    return _row(stored)


def _owned_devotional(conn, user_id: str, devotional_id: str) -> dict:
    devotional = devotionals.get_devotional(conn, user_id, devotional_id)
    if not devotional:
        raise HTTPException(status_code=404, detail="devotional not found")
    return devotional


@app.get("/v1/devotionals/{devotional_id}")
def get_ai_devotional(devotional_id: str, current_user=Depends(require_user), conn=Depends(get_conn)):
    devotional = _row(_owned_devotional(conn, current_user["user_id"], devotional_id))
    devotional["interactions"] = _rows(devotionals.list_interactions(conn, devotional_id))
    return devotional


@app.delete("/v1/devotionals/{devotional_id}")
def delete_ai_devotional(devotional_id: str, current_user=Depends(require_user), conn=Depends(get_conn)):
    if not devotionals.delete_devotional(conn, current_user["user_id"], devotional_id):
        raise HTTPException(status_code=404, detail="devotional not found")
    conn.commit()
    return {"deleted": True}


@app.post("/v1/devotionals/{devotional_id}/interactions")
def add_devotional_interaction(
    devotional_id: str,
    payload: DevotionalInteractionRequest,
    current_user=Depends(require_user),
    conn=Depends(get_conn),
):
    _check_choice(payload.interaction_type, devotionals.INTERACTION_TYPES, "interaction_type")
    prompt = payload.prompt.strip()
    if not prompt:
        raise HTTPException(status_code=400, detail="prompt required")
    user_id = current_user["user_id"]
    devotional = _owned_devotional(conn, user_id, devotional_id)
    response = (payload.user_response or "").strip() or None
    feedback = None
    if payload.request_feedback and billing.is_pro(conn, user_id):
        feedback = devotionals.interaction_feedback(devotional, payload.interaction_type, prompt, response)
    interaction = devotionals.add_interaction(
        conn, user_id, devotional_id, payload.interaction_type, prompt, response, feedback
    )
    conn.commit()
    log_api_event("devotional_interaction", {"type": payload.interaction_type, "feedback": feedback is not None})
    return _row(interaction)


@app.get("/v1/bible-studies")
def list_ai_bible_studies(
    limit: int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0),
    current_user=Depends(require_user),
    conn=Depends(get_conn),
):
    return {"items": _rows(bible_studies.list_studies(conn, current_user["user_id"], limit, offset))}


@app.post("/v1/bible-studies/generate")
def generate_ai_bible_study(payload: StudyGenerateRequest, current_user=Depends(require_pro), conn=Depends(get_conn)):
    _check_choice(payload.difficulty, bible_studies.STUDY_DIFFICULTIES, "difficulty")
    _check_choice(payload.focus, bible_studies.STUDY_FOCUSES, "focus")
    preferences = payload.model_dump(exclude_none=True)
    context = chat.build_user_context(conn, current_user["user_id"], current_user.get("email"))
    try:
        study = bible_studies.generate_study(context, preferences)
    except LLMError as exc:
        raise _llm_http_error("bible_study_generate", exc)
    except ValueError as exc:
        log_api_event("bible_study_generate_failed", {"reason": str(exc)})
        raise HTTPException(status_code=502, detail="invalid study generated")
    stored = bible_studies.store_study(conn, current_user["user_id"], study, preferences)
    conn.commit()
    log_api_event("bible_study_generated", {"focus": preferences.get("focus")})
    return _row(stored)


@app.get("/v1/bible-studies/{study_id}")
def get_ai_bible_study(study_id: str, current_user=Depends(require_user), conn=Depends(get_conn)):
    study = bible_studies.get_study(conn, current_user["user_id"], study_id)
    if not study:
        raise HTTPException(status_code=404, detail="bible study not found")
    return _row(study)


@app.put("/v1/bible-studies/{study_id}/notes")
def save_bible_study_notes(
    study_id: str,
    payload: StudyNotesRequest,
    current_user=Depends(require_user),
    conn=Depends(get_conn),
):
    study = bible_studies.update_notes(conn, current_user["user_id"], study_id, payload.user_notes)
    if not study:
        raise HTTPException(status_code=404, detail="bible study not found")
    conn.commit()
    return _row(study)


@app.delete("/v1/bible-studies/{study_id}")
def delete_ai_bible_study(study_id: str, current_user=Depends(require_user), conn=Depends(get_conn)):
    if not bible_studies.delete_study(conn, current_user["user_id"], study_id):
        raise HTTPException(status_code=404, detail="bible study not found")
    conn.commit()
    return {"deleted": True}


@app.get("/v1/analytics")
def get_spiritual_analytics(
    time_range: str = Query("month"),
    current_user=Depends(require_user),
    conn=Depends(get_conn),
):
    _check_choice(time_range, analytics.TIME_RANGE_DAYS, "time_range")
    user_id = current_user["user_id"]
    use_ai = llm_enabled() and billing.is_pro(conn, user_id)
    result = analytics.get_spiritual_analytics(conn, user_id, time_range, use_ai=use_ai)
    conn.commit()
    log_api_event("analytics_viewed", {"time_range": time_range, "insights": result["insights_source"]})
    return result


@app.get("/v1/recommendations")
def list_content_recommendations(
    include_viewed: bool = Query(False),
    current_user=Depends(require_user),
    conn=Depends(get_conn),
):
    return {"items": _rows(recommendations.list_recommendations(conn, current_user["user_id"], include_viewed))}


@app.get("/v1/recommendations/saved")
def list_saved_recommendations(current_user=Depends(require_user), conn=Depends(get_conn)):
    return {"items": _rows(recommendations.list_saved(conn, current_user["user_id"]))}


@app.post("/v1/recommendations/generate")
def generate_content_recommendations(
    payload: RecommendationGenerateRequest,
    current_user=Depends(require_pro),
    conn=Depends(get_conn),
):
    _check_choice(payload.time_range, recommendations.RECOMMENDATION_RANGES, "time_range")
    try:
        items = recommendations.generate_recommendations(conn, current_user["user_id"], payload.time_range)
    except LLMError as exc:
        conn.rollback()
        raise _llm_http_error("recommendations_generate", exc)
    except ValueError:
        conn.rollback()
        log_api_event("recommendations_generate_failed", {"reason": "invalid_json"})
        raise HTTPException(status_code=502, detail="invalid recommendations generated")
    conn.commit()
    log_api_event("recommendations_generated", {"count": len(items)})
    return {"items": _rows(items)}


@app.patch("/v1/recommendations/{recommendation_id}")
def update_content_recommendation(
    recommendation_id: str,
    payload: RecommendationUpdateRequest,
    current_user=Depends(require_user),
    conn=Depends(get_conn),
):
    if payload.is_viewed is None and payload.is_saved is None:
        raise HTTPException(status_code=400, detail="nothing to update")
    item = recommendations.update_flags(
        conn, current_user["user_id"], recommendation_id, payload.is_viewed, payload.is_saved
    )
    if not item:
        raise HTTPException(status_code=404, detail="recommendation not found")
    conn.commit()
    return _row(item)


@app.get("/v1/scripture/verses")
def list_memory_verses(
    favorites_only: bool = Query(False),
    current_user=Depends(require_user),
    conn=Depends(get_conn),
):
    return {"items": _rows(scripture_memory.list_verses(conn, current_user["user_id"], favorites_only))}


@app.post("/v1/scripture/verses")
def add_memory_verse(payload: VerseCreateRequest, current_user=Depends(require_user), conn=Depends(get_conn)):
    try:
        reference = normalize_reference(payload.verse_reference)
    except ValueError as exc:
        log_api_event("scripture_add_failed", {"reason": str(exc)})
        raise HTTPException(status_code=400, detail=str(exc))
    text = (payload.verse_text or "").strip()
    translation = payload.translation
    if not text:
        passage = fetch_passage(reference, translation)
        if not passage:
            log_api_event("scripture_add_failed", {"reason": "text_not_found"})
            raise HTTPException(status_code=400, detail="verse text not found")
        text = passage["text"]
        translation = passage["translation_id"].upper()
    verse = scripture_memory.add_verse(conn, current_user["user_id"], reference, text, translation or "KJV")
    conn.commit()
    log_api_event("scripture_verse_added", {})
    return _row(verse)


@app.patch("/v1/scripture/verses/{verse_id}")
def update_memory_verse(
    verse_id: str,
    payload: VerseUpdateRequest,
    current_user=Depends(require_user),
    conn=Depends(get_conn),
):
    verse = scripture_memory.update_verse(conn, current_user["user_id"], verse_id, payload.model_dump())
    if not verse:
        raise HTTPException(status_code=404, detail="verse not found")
    conn.commit()
    return _row(verse)


@app.delete("/v1/scripture/verses/{verse_id}")
def delete_memory_verse(verse_id: str, current_user=Depends(require_user), conn=Depends(get_conn)):
    if not scripture_memory.delete_verse(conn, current_user["user_id"], verse_id):
        raise HTTPException(status_code=404, detail="verse not found")
    conn.commit()
    return {"deleted": True}


def _owned_verse(conn, user_id: str, verse_id: str) -> dict:
    verse = scripture_memory.get_verse(conn, user_id, verse_id)
    if not verse:
        raise HTTPException(status_code=404, detail="verse not found")
    return verse


@app.get("/v1/scripture/games")
def list_practice_games():
    return {"items": PRACTICE_GAMES}


@app.get("/v1/scripture/games/{verse_id}")
def build_practice_game(
    verse_id: str,
    game_type: str = Query("fill-blanks"),
    difficulty: str = Query("medium"),
    current_user=Depends(require_user),
    conn=Depends(get_conn),
):
    if game_type not in GAME_IDS:
        raise HTTPException(status_code=400, detail="unknown game type")
    verse = _owned_verse(conn, current_user["user_id"], verse_id)
    text = verse["verse_text"]
    reference = verse["verse_reference"]
    game = {"game_type": game_type, "verse_id": str(verse["id"]), "verse_reference": reference}
    if game_type == "fill-blanks":
        game.update(generate_fill_in_blanks(text, difficulty))
    elif game_type == "word-order":
        game.update(generate_word_order(text))
    elif game_type == "first-letter":
        game["hint"] = first_letter_hint(text)
    elif game_type == "typing-test":
        game["text"] = text
    else:
        others = [v["verse_reference"] for v in scripture_memory.list_verses(conn, current_user["user_id"])]
        game["verse_text"] = text
        game.update(build_multiple_choice(reference, others + COMMON_REFERENCES))
    return game


@app.post("/v1/scripture/verses/{verse_id}/practice")
def practice_memory_verse(
    verse_id: str,
    payload: PracticeRequest,
    current_user=Depends(require_user),
    conn=Depends(get_conn),
):
    user_id = current_user["user_id"]
    if payload.game_type not in GAME_IDS:
        raise HTTPException(status_code=400, detail="unknown game type")
    verse = _owned_verse(conn, user_id, verse_id)
    if payload.user_input is not None:
        accuracy = calculate_accuracy(payload.user_input, verse["verse_text"])
    elif payload.accuracy is not None:
        accuracy = payload.accuracy
    else:
        raise HTTPException(status_code=400, detail="user_input or accuracy required")
    result = scripture_memory.record_practice(conn, user_id, verse, payload.game_type, accuracy, payload.time_spent)
    for achievement in result["new_achievements"]:
        notifications.notify_user(conn, user_id, "achievement", name=achievement["name"])
    conn.commit()
    log_api_event(
        "scripture_practice",
        {"game_type": payload.game_type, "accuracy": round(accuracy, 2), "points": result["points_earned"]},
    )
    result["verse"] = _row(result["verse"])
    result["new_achievements"] = _rows(result["new_achievements"])
    return result


@app.get("/v1/scripture/stats")
def scripture_stats(current_user=Depends(require_user), conn=Depends(get_conn)):
    stats = scripture_memory.get_stats(conn, current_user["user_id"])
    conn.commit()
    return scripture_memory.stats_payload(stats)


@app.get("/v1/scripture/achievements")
def scripture_achievements(current_user=Depends(require_user), conn=Depends(get_conn)):
    earned = {row["code"]: row for row in scripture_memory.list_earned_achievements(conn, current_user["user_id"])}
    items = []
    for achievement in scripture_memory.list_achievement_catalog(conn):
        item = _row(achievement)
        item["earned"] = achievement["code"] in earned
        item["earned_at"] = _json_value(earned[achievement["code"]].get("earned_at")) if item["earned"] else None
        items.append(item)
    return {"items": items}


@app.get("/v1/scripture/leaderboard")
def scripture_leaderboard(
    limit: int = Query(100, ge=1, le=100),
    current_user=Depends(require_user),
    conn=Depends(get_conn),
):
    return {"items": _rows(scripture_memory.get_leaderboard(conn, limit))}


@app.get("/v1/scripture/challenges")
def scripture_challenges(current_user=Depends(require_user), conn=Depends(get_conn)):
    return {"items": _rows(scripture_memory.list_active_challenges(conn, current_user["user_id"]))}


@app.post("/v1/scripture/challenges/{challenge_id}/progress")
def scripture_challenge_progress(
    challenge_id: str,
    payload: ChallengeProgressRequest,
    current_user=Depends(require_user),
    conn=Depends(get_conn),
):
    user_id = current_user["user_id"]
    result = scripture_memory.update_challenge_progress(conn, user_id, challenge_id, payload.progress)
    if result is None:
        raise HTTPException(status_code=404, detail="challenge not found")
    if result["completed_now"]:
        scripture_memory.award_points(conn, user_id, POINTS["CHALLENGE_COMPLETED"])
    conn.commit()
    log_api_event("scripture_challenge_progress", {"completed_now": result["completed_now"]})
    return {
        "challenge_id": challenge_id,
        "progress": result["progress"],
        "completed_now": result["completed_now"],
        "challenge": _row(result["challenge"]),
    }


@app.get("/v1/bible/passage")
def bible_passage(
    ref: str = Query(..., min_length=1),
    translation: Optional[str] = Query(None),
    current_user=Depends(require_user),
):
    try:
        passage = fetch_passage(ref, translation)
    except ValueError as exc:
        log_api_event("bible_passage_failed", {"reason": str(exc)})
        raise HTTPException(status_code=400, detail=str(exc))
    if not passage:
        raise HTTPException(status_code=404, detail="passage not found")
    return passage


@app.get("/v1/sermons")
def list_user_sermons(
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    current_user=Depends(require_user),
    conn=Depends(get_conn),
):
    return {"items": _rows(sermons.list_sermons(conn, current_user["user_id"], limit, offset))}


@app.post("/v1/sermons")
def upload_sermon(
    background_tasks: BackgroundTasks,
    title: str = Form(...),
    description: Optional[str] = Form(None),
    sermon_date: Optional[str] = Form(None),
    file: UploadFile = File(...),
    current_user=Depends(require_user),
    conn=Depends(get_conn),
):
    user_id = current_user["user_id"]
    if not title.strip():
        raise HTTPException(status_code=400, detail="title required")
    ext = sermons.file_extension(file.filename)
    if not ext:
        log_api_event("sermon_upload_failed", {"reason": "unsupported_type"})
        raise HTTPException(status_code=400, detail="unsupported file type")
    parsed_date = None
    if sermon_date:
        try:
            parsed_date = date.fromisoformat(sermon_date)
        except ValueError:
            raise HTTPException(status_code=400, detail="invalid sermon_date")

    sermon_id = str(uuid.uuid4())
    relative = sermons.relative_audio_path(user_id, sermon_id, ext)
    try:
        size_bytes = sermons.save_upload(file.file, relative)
    except ValueError:
        log_api_event("sermon_upload_failed", {"reason": "file_too_large"})
        raise HTTPException(status_code=413, detail="file too large")
    sermon = sermons.create_sermon(
        conn,
        user_id,
        title.strip(),
        description=description,
        sermon_date=parsed_date,
        audio_url=relative,
        sermon_id=sermon_id,
    )
    conn.commit()
    background_tasks.add_task(sermons.run_processing, sermon_id, relative)
    log_api_event("sermon_uploaded", {"sermon_id": sermon_id, "bytes": size_bytes, "ext": ext})
    return _row(sermon)


def _owned_sermon(conn, user_id: str, sermon_id: str) -> dict:
    sermon = sermons.get_sermon(conn, user_id, sermon_id)
    if not sermon:
        raise HTTPException(status_code=404, detail="sermon not found")
    return sermon


@app.get("/v1/sermons/{sermon_id}")
def get_user_sermon(sermon_id: str, current_user=Depends(require_user), conn=Depends(get_conn)):
    return _row(_owned_sermon(conn, current_user["user_id"], sermon_id))


@app.get("/v1/sermons/{sermon_id}/status")
def sermon_status(sermon_id: str, current_user=Depends(require_user), conn=Depends(get_conn)):
    sermon = _owned_sermon(conn, current_user["user_id"], sermon_id)
    return {"sermon_id": sermon_id, "ai_context": sermon.get("ai_context") or {}}


@app.post("/v1/sermons/{sermon_id}/process", status_code=202)
def reprocess_sermon(
    sermon_id: str,
    payload: SermonProcessRequest,
    background_tasks: BackgroundTasks,
    current_user=Depends(require_user),
    conn=Depends(get_conn),
):
    sermon = _owned_sermon(conn, current_user["user_id"], sermon_id)
    file_path = payload.file_path or sermon.get("audio_url")
    if not file_path:
        raise HTTPException(status_code=400, detail="no audio file")
    try:
        sermons.resolve_storage_path(file_path)
    except ValueError:
        raise HTTPException(status_code=400, detail="invalid file_path")
    background_tasks.add_task(sermons.run_processing, sermon_id, file_path)
    log_api_event("sermon_process_requested", {"sermon_id": sermon_id})
    return {"status": "processing_started", "sermon_id": sermon_id}


@app.delete("/v1/sermons/{sermon_id}")
def delete_user_sermon(sermon_id: str, current_user=Depends(require_user), conn=Depends(get_conn)):
    deleted = sermons.delete_sermon(conn, current_user["user_id"], sermon_id)
    if not deleted:
        raise HTTPException(status_code=404, detail="sermon not found")
    conn.commit()
    sermons.remove_audio(deleted.get("audio_url"))
    return {"deleted": True}


def _youtube_http_error(op: str, exc: YouTubeError) -> HTTPException:
    if str(exc) == "not_configured":
        log_api_event(f"{op}_failed", {"reason": "youtube_not_configured"})
        return HTTPException(status_code=503, detail="youtube not configured")
    log_api_event(f"{op}_failed", {"reason": "youtube_error"})
    return HTTPException(status_code=502, detail="youtube request failed")


@app.get("/v1/livestream/past-videos")
def livestream_past_videos(
    channel_id: Optional[str] = Query(None),
    current_user=Depends(require_user),
):
    try:
        videos = livestream.list_past_videos(channel_id or livestream.DEFAULT_YOUTUBE_CHANNEL_ID)
    except YouTubeError as exc:
        raise _youtube_http_error("livestream_past_videos", exc)
    return {"items": videos}


@app.get("/v1/livestream/live")
def livestream_live(channel_id: Optional[str] = Query(None), current_user=Depends(require_user)):
    try:
        live = livestream.get_live_broadcast(channel_id or livestream.DEFAULT_YOUTUBE_CHANNEL_ID)
    except YouTubeError as exc:
        raise _youtube_http_error("livestream_live", exc)
    return {"live": live}


@app.get("/v1/livestream/channels")
def list_monitored_channels(current_user=Depends(require_admin), conn=Depends(get_conn)):
    return {"items": _rows(livestream.list_channels(conn))}


@app.post("/v1/livestream/channels")
def add_monitored_channel(payload: ChannelRequest, current_user=Depends(require_admin), conn=Depends(get_conn)):
    channel_id = payload.channel_id.strip()
    if not channel_id:
        raise HTTPException(status_code=400, detail="channel_id required")
    channel = livestream.upsert_channel(conn, channel_id, payload.channel_name, payload.platform, payload.is_active)
    conn.commit()
    return _row(channel)


@app.delete("/v1/livestream/channels/{channel_id}")
def delete_monitored_channel(channel_id: str, current_user=Depends(require_admin), conn=Depends(get_conn)):
    if not livestream.delete_channel(conn, channel_id):
        raise HTTPException(status_code=404, detail="channel not found")
    conn.commit()
    return {"deleted": True}


def _processing_owner(conn, caller: dict | None) -> str:
    if caller:
        return caller["user_id"]
    owner_id = get_first_admin_id(conn)
    if not owner_id:
        log_api_event("livestream_process_failed", {"reason": "no_owner"})
        raise HTTPException(status_code=409, detail="no account to own sermon")
    return owner_id


def _background_runner(background_tasks: BackgroundTasks):
    def run(sermon_id: str, file_path: Optional[str]):
        background_tasks.add_task(sermons.run_processing, sermon_id, file_path)

    return run


@app.post("/v1/livestream/monitor")
def livestream_monitor(
    payload: MonitorRequest,
    background_tasks: BackgroundTasks,
    caller=Depends(require_admin_or_cron),
    conn=Depends(get_conn),
):
    if not livestream.youtube_enabled():
        raise HTTPException(status_code=503, detail="youtube not configured")
    owner_id = _processing_owner(conn, caller)
    return livestream.monitor_channels(
        conn,
        owner_id,
        payload.channel_ids,
        payload.force,
        run=_background_runner(background_tasks),
    )


def _process_livestream_video(conn, caller, video_id: str, manual: bool, background_tasks: BackgroundTasks) -> dict:
    owner_id = _processing_owner(conn, caller)
    source = "manual_trigger" if manual else "automated_monitoring"
    try:
        result = livestream.process_video(conn, owner_id, video_id, source, run=_background_runner(background_tasks))
    except YouTubeError as exc:
        if str(exc) == "video not found":
            raise HTTPException(status_code=404, detail="video not found")
        raise _youtube_http_error("livestream_process", exc)
    return {"success": True, **result}


@app.post("/v1/livestream/process")
def livestream_process(
    payload: LivestreamProcessRequest,
    background_tasks: BackgroundTasks,
    caller=Depends(user_or_cron),
    conn=Depends(get_conn),
):
    video_id = payload.video_id
    if not video_id and not payload.channel_id:
        raise HTTPException(status_code=400, detail="channel_id or video_id required")
    if not video_id:
        try:
            latest = livestream.latest_completed_video(payload.channel_id)
        except YouTubeError as exc:
            raise _youtube_http_error("livestream_process", exc)
        if not latest:
            raise HTTPException(status_code=404, detail="no completed livestreams found")
        video_id = latest["video_id"]
    return _process_livestream_video(conn, caller, video_id, payload.manual, background_tasks)


@app.post("/v1/livestream/ingest")
def livestream_ingest(
    payload: IngestRequest,
    background_tasks: BackgroundTasks,
    caller=Depends(user_or_cron),
    conn=Depends(get_conn),
):
    video_id = livestream.extract_video_id(payload.youtube_url)
    if not video_id:
        log_api_event("livestream_ingest_failed", {"reason": "invalid_url"})
        raise HTTPException(status_code=400, detail="invalid youtube url")
    return _process_livestream_video(conn, caller, video_id, True, background_tasks)


@app.get("/v1/billing/products")
def billing_products():
    return {"items": billing.PRODUCTS}


@app.post("/v1/billing/checkout")
def billing_checkout(payload: CheckoutRequest, current_user=Depends(require_user), conn=Depends(get_conn)):
    if not billing.get_product(payload.price_id):
        log_api_event("billing_checkout_failed", {"reason": "unknown_price"})
        raise HTTPException(status_code=400, detail="unknown price")
    if payload.mode not in ("subscription", "payment"):
        log_api_event("billing_checkout_failed", {"reason": "invalid_mode"})
        raise HTTPException(status_code=400, detail="invalid mode")
    if not billing.stripe_enabled():
        raise HTTPException(status_code=503, detail="billing not configured")
    try:
        session = billing.create_checkout_session(
            conn, current_user, payload.price_id, payload.success_url, payload.cancel_url, payload.mode
        )
    except stripe.StripeError as exc:
        conn.rollback()
        log_api_event("billing_checkout_failed", {"reason": exc.__class__.__name__})
        raise HTTPException(status_code=502, detail="payment provider error")
    conn.commit()
    return session


@app.post("/v1/billing/portal")
def billing_portal(payload: PortalRequest, current_user=Depends(require_user), conn=Depends(get_conn)):
    if not billing.stripe_enabled():
        raise HTTPException(status_code=503, detail="billing not configured")
    try:
        url = billing.create_portal_session(conn, current_user["user_id"], payload.return_url)
    except stripe.StripeError as exc:
        log_api_event("billing_portal_failed", {"reason": exc.__class__.__name__})
        raise HTTPException(status_code=502, detail="payment provider error")
    if not url:
        raise HTTPException(status_code=404, detail="no billing account")
    return {"url": url}


@app.get("/v1/billing/subscription")
def billing_subscription(current_user=Depends(require_user), conn=Depends(get_conn)):
    subscription = billing.get_subscription(conn, current_user["user_id"])
    return {
        "status": subscription.get("status"),
        "price_id": subscription.get("price_id"),
        "current_period_end": _json_value(subscription.get("current_period_end")),
        "cancel_at_period_end": bool(subscription.get("cancel_at_period_end")),
        "payment_method_brand": subscription.get("payment_method_brand"),
        "payment_method_last4": subscription.get("payment_method_last4"),
        "is_pro": bool(subscription.get("is_pro")),
    }


async def _raw_body(request: Request) -> bytes:
    return await request.body()


@app.post("/v1/billing/webhook")
def billing_webhook(request: Request, payload: bytes = Depends(_raw_body), conn=Depends(get_conn)):
    signature = request.headers.get("Stripe-Signature")
    try:
        event = billing.verify_webhook(payload, signature)
    except stripe.SignatureVerificationError:
        log_api_event("billing_webhook_failed", {"reason": "invalid_signature"})
        raise HTTPException(status_code=400, detail="invalid signature")
    except billing.BillingError:
        raise HTTPException(status_code=503, detail="billing not configured")
    try:
        action = billing.handle_webhook_event(conn, event)
    except stripe.StripeError as exc:
        conn.rollback()
        log_api_event("billing_webhook_failed", {"reason": exc.__class__.__name__, "type": event.get("type")})
        raise HTTPException(status_code=502, detail="payment provider error")
    conn.commit()
    log_api_event("billing_webhook", {"type": event.get("type"), "action": action})
    return {"received": True}


@app.get("/v1/notifications")
def list_user_notifications(
    unread_only: bool = Query(False),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    current_user=Depends(require_user),
    conn=Depends(get_conn),
):
    rows = notifications.list_notifications(conn, current_user["user_id"], unread_only, limit, offset)
    return {"items": _rows(rows)}


@app.post("/v1/notifications/read-all")
def read_all_notifications(current_user=Depends(require_user), conn=Depends(get_conn)):
    updated = notifications.mark_all_read(conn, current_user["user_id"])
    conn.commit()
    return {"updated": updated}


@app.post("/v1/notifications/generate")
def generate_notifications(payload: NotificationGenerateRequest, request: Request, conn=Depends(get_conn)):
    cron = _is_cron_request(request)
    caller = None if cron else require_user(request, conn)
    if payload.type not in ("single", "test", "batch"):
        raise HTTPException(status_code=400, detail="invalid type")
    if payload.type == "batch" and caller is not None and not caller.get("is_admin"):
        raise HTTPException(status_code=403, detail="admin required")
    if payload.type == "test" and caller is None:
        raise HTTPException(status_code=400, detail="test requires a user")
    if payload.no_execution:
        return {"success": True, "executed": False, "type": payload.type}

    if payload.type == "batch":
        result = notifications.run_batch(conn, force=payload.force)
        return {"success": True, "executed": True, "type": "batch", **result}

    if payload.type == "test":
        target_id, notification_type = caller["user_id"], "test"
    else:
        target_id = payload.user_id if (cron or caller.get("is_admin")) and payload.user_id else None
        target_id = target_id or (caller["user_id"] if caller else None)
        notification_type = payload.notification_type
        if not target_id or not notification_type:
            raise HTTPException(status_code=400, detail="user and notification_type required")
        if notification_type not in notifications.TEMPLATES:
            raise HTTPException(status_code=400, detail="unknown notification_type")
    profile = profiles.get_profile(conn, target_id)
    notification = notifications.notify_user(
        conn, target_id, notification_type, name=profiles.display_name_for(profile)
    )
    conn.commit()
    return {"success": True, "executed": True, "type": payload.type, "notification": _row(notification)}


@app.post("/v1/notifications/{notification_id}/read")
def read_notification(notification_id: str, current_user=Depends(require_user), conn=Depends(get_conn)):
    if not notifications.mark_read(conn, current_user["user_id"], notification_id):
        raise HTTPException(status_code=404, detail="notification not found")
    conn.commit()
    return {"updated": True}


@app.delete("/v1/notifications/{notification_id}")
def delete_user_notification(notification_id: str, current_user=Depends(require_user), conn=Depends(get_conn)):
    if not notifications.delete_notification(conn, current_user["user_id"], notification_id):
        raise HTTPException(status_code=404, detail="notification not found")
    conn.commit()
    return {"deleted": True}


@app.post("/v1/push/subscriptions")
def save_push_subscription(
    payload: PushSubscriptionRequest,
    current_user=Depends(require_user),
    conn=Depends(get_conn),
):
    try:
        saved = notifications.save_push_subscription(conn, current_user["user_id"], payload.subscription)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    conn.commit()
    return _row(saved)


@app.delete("/v1/push/subscriptions")
def delete_push_subscription(
    payload: PushUnsubscribeRequest,
    current_user=Depends(require_user),
    conn=Depends(get_conn),
):
    deleted = notifications.delete_push_subscription(conn, current_user["user_id"], payload.endpoint)
    conn.commit()
    return {"deleted": deleted}


if __name__ == "__main__":
    import uvicorn

    port = int(os.getenv("PORT", "9000"))
    uvicorn.run("api.main:app", host="0.0.0.0", port=port, reload=True)
