import hmac
import os
import re
import uuid
from datetime import datetime, timedelta

from argon2 import PasswordHasher
from argon2.exceptions import InvalidHashError, VerificationError, VerifyMismatchError
from psycopg2.extras import RealDictCursor


EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
PASSWORD_MIN_LEN = int(os.getenv("AUTH_PASSWORD_MIN_LEN", "8"))
PASSWORD_MAX_LEN = 128
AUTH_PEPPER = os.getenv("AUTH_PEPPER", "")
AUTH_CAPTCHA_BYPASS = os.getenv("AUTH_CAPTCHA_BYPASS", "")
ARGON2_TIME_COST = int(os.getenv("ARGON2_TIME_COST", "2"))
ARGON2_MEMORY_COST = int(os.getenv("ARGON2_MEMORY_COST", "102400"))
ARGON2_PARALLELISM = int(os.getenv("ARGON2_PARALLELISM", "8"))

LOGIN_FAIL_DELAY_THRESHOLD = int(os.getenv("AUTH_FAIL_DELAY_THRESHOLD", "5"))
LOGIN_FAIL_DELAY_SECONDS = int(os.getenv("AUTH_FAIL_DELAY_SECONDS", "30"))
LOGIN_CAPTCHA_THRESHOLD = int(os.getenv("AUTH_CAPTCHA_THRESHOLD", "10"))

PASSWORD_HASHER = PasswordHasher(
    time_cost=ARGON2_TIME_COST,
    memory_cost=ARGON2_MEMORY_COST,
    parallelism=ARGON2_PARALLELISM,
)


def normalize_email(email: str) -> str:
    return (email or "").strip().lower()


def validate_email(email: str) -> bool:
    if not email:
        return False
    return bool(EMAIL_PATTERN.match(email))


def password_problem(password: str) -> str | None:
    if len(password or "") < PASSWORD_MIN_LEN:
        return "password_too_short"
    if len(password) > PASSWORD_MAX_LEN:
        return "password_too_long"
    return None


def _pepper_password(password: str) -> str:
    if not AUTH_PEPPER:
        return password
    return f"{password}{AUTH_PEPPER}"


def hash_password(password: str) -> str:
    return PASSWORD_HASHER.hash(_pepper_password(password))


def verify_password(password: str, stored: str) -> bool:
    if not stored:
        return False
    try:
        return PASSWORD_HASHER.verify(stored, _pepper_password(password))
    except (VerifyMismatchError, VerificationError, InvalidHashError):
        return False


def needs_password_upgrade(stored: str) -> bool:
    try:
        return PASSWORD_HASHER.check_needs_rehash(stored)
    except InvalidHashError:
        return True


def update_password_hash(conn, user_id: str, new_hash: str) -> None:
    with conn.cursor() as cur:
        cur.execute(
            """
            UPDATE app_user
            SET password_hash = %s
            WHERE user_id = %s
            """,
            (new_hash, user_id),
        )


def verify_captcha_token(token: str | None, _ip_address: str | None = None) -> bool:
    if not token:
        return False
    if AUTH_CAPTCHA_BYPASS:
        return hmac.compare_digest(token, AUTH_CAPTCHA_BYPASS)
    return False


def get_login_attempt(conn, scope: str, scope_key: str) -> dict | None:
    with conn.cursor(cursor_factory=RealDictCursor) as cur:
        cur.execute(
            """
            SELECT scope, scope_key, fail_count, blocked_until, last_failed_at
            FROM auth_login_attempt
            WHERE scope = %s AND scope_key = %s
            """,
            (scope, scope_key),
        )
        return cur.fetchone()


def is_login_blocked(attempt: dict | None, now: datetime) -> bool:
    if not attempt:
        return False
    blocked_until = attempt.get("blocked_until")
    return bool(blocked_until and blocked_until > now)


def login_retry_after(attempt: dict | None, now: datetime) -> int:
    if not is_login_blocked(attempt, now):
        return 0
    return int((attempt["blocked_until"] - now).total_seconds())


def requires_captcha(attempt: dict | None) -> bool:
    if not attempt:
        return False
    return int(attempt.get("fail_count") or 0) >= LOGIN_CAPTCHA_THRESHOLD


def next_block_until(fail_count: int, now: datetime) -> datetime | None:
    if fail_count >= LOGIN_FAIL_DELAY_THRESHOLD:
        return now + timedelta(seconds=LOGIN_FAIL_DELAY_SECONDS)
    return None


def record_login_failure(conn, scope: str, scope_key: str, now: datetime) -> None:
    with conn.cursor(cursor_factory=RealDictCursor) as cur:
        cur.execute(
            """
            INSERT INTO auth_login_attempt
              (scope, scope_key, fail_count, blocked_until, last_failed_at)
            VALUES (%s, %s, 1, %s, %s)
            ON CONFLICT (scope, scope_key)
            DO UPDATE SET
              fail_count = auth_login_attempt.fail_count + 1,
              last_failed_at = EXCLUDED.last_failed_at,
              updated_at = now()
            RETURNING fail_count
            """,
            (scope, scope_key, next_block_until(1, now), now),
        )
        row = cur.fetchone()
        blocked_until = next_block_until(int(row["fail_count"]) if row else 1, now)
        if blocked_until:
            cur.execute(
                """
                UPDATE auth_login_attempt
                SET blocked_until = %s
                WHERE scope = %s AND scope_key = %s
                """,
                (blocked_until, scope, scope_key),
            )


def clear_login_attempt(conn, scope: str, scope_key: str) -> None:
    with conn.cursor() as cur:
        cur.execute(
            """
            DELETE FROM auth_login_attempt
            WHERE scope = %s AND scope_key = %s
            """,
            (scope, scope_key),
        )


def create_user(conn, email: str, password: str, display_name: str | None = None) -> dict:
    user_id = str(uuid.uuid4())
    password_hash = hash_password(password)
    with conn.cursor() as cur:
        cur.execute(
            """
            INSERT INTO app_user (user_id, email, password_hash)
            VALUES (%s, %s, %s)
            """,
            (user_id, email, password_hash),
        )
        cur.execute(
            """
            INSERT INTO profiles (user_id, display_name)
            VALUES (%s, %s)
            ON CONFLICT (user_id) DO NOTHING
            """,
            (user_id, display_name),
        )
    return {"user_id": user_id, "email": email}


def get_user_by_email(conn, email: str) -> dict | None:
    with conn.cursor(cursor_factory=RealDictCursor) as cur:
        cur.execute(
            """
            SELECT user_id, email, password_hash, created_at, last_login
            FROM app_user
            WHERE email = %s
            """,
            (email,),
        )
        return cur.fetchone()


def get_user_by_id(conn, user_id: str) -> dict | None:
    with conn.cursor(cursor_factory=RealDictCursor) as cur:
        cur.execute(
            """
            SELECT u.user_id, u.email, u.created_at, u.last_login,
                   COALESCE(p.is_admin, false) AS is_admin
            FROM app_user u
            LEFT JOIN profiles p ON p.user_id = u.user_id
            WHERE u.user_id = %s
            """,
            (user_id,),
        )
        return cur.fetchone()


def get_first_admin_id(conn) -> str | None:
    with conn.cursor(cursor_factory=RealDictCursor) as cur:
        cur.execute(
            """
            SELECT user_id
            FROM profiles
            ORDER BY is_admin DESC, created_at ASC
            LIMIT 1
            """
        )
        row = cur.fetchone()
    return row["user_id"] if row else None


def update_last_login(conn, user_id: str) -> None:
    with conn.cursor() as cur:
        cur.execute(
            """
            UPDATE app_user
            SET last_login = now()
            WHERE user_id = %s
            """,
            (user_id,),
        )
