from datetime import datetime, timezone
from psycopg2.extras import RealDictCursor

from api.jwt_utils import exp_to_datetime, hash_refresh_id


def store_refresh_token(conn, user_id: str, refresh_id: str, exp_ts: int, device_id: str | None) -> None:
    with conn.cursor() as cur:
        cur.execute(
            """
            INSERT INTO auth_refresh_token (refresh_id, user_id, token_hash, device_id, expires_at)
            VALUES (%s, %s, %s, %s, %s)
            """,
            (refresh_id, user_id, hash_refresh_id(refresh_id), device_id, exp_to_datetime(exp_ts)),
        )


def get_refresh_token(conn, refresh_id: str) -> dict | None:
    with conn.cursor(cursor_factory=RealDictCursor) as cur:
        cur.execute(
            """
            SELECT refresh_id, user_id, device_id, expires_at, revoked_at
            FROM auth_refresh_token
            WHERE refresh_id = %s AND token_hash = %s
            """,
            (refresh_id, hash_refresh_id(refresh_id)),
        )
        return cur.fetchone()


def revoke_refresh_token(conn, refresh_id: str) -> bool:
    with conn.cursor() as cur:
        cur.execute(
            """
            UPDATE auth_refresh_token
            SET revoked_at = now()
            WHERE refresh_id = %s AND revoked_at IS NULL
            """,
            (refresh_id,),
        )
        return cur.rowcount > 0


def revoke_user_refresh_tokens(conn, user_id: str) -> int:
    with conn.cursor() as cur:
        cur.execute(
            """
            UPDATE auth_refresh_token
            SET revoked_at = now()
            WHERE user_id = %s AND revoked_at IS NULL
            """,
            (user_id,),
        )
        return cur.rowcount


def is_refresh_token_active(row: dict | None, now: datetime | None = None) -> bool:
    if not row or row.get("revoked_at"):
        return False
    expires_at = row.get("expires_at")
    if not isinstance(expires_at, datetime):
        return False
    return expires_at > (now or datetime.now(timezone.utc))
