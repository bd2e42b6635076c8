import hashlib
import hmac
import os
import time
import uuid
from datetime import datetime, timezone

import jwt


JWT_SECRET = os.getenv("JWT_SECRET", "change-me")
JWT_ISSUER = os.getenv("JWT_ISSUER", "truenorth")
JWT_AUDIENCE = os.getenv("JWT_AUDIENCE", "truenorth-app")
JWT_ALGORITHM = os.getenv("JWT_ALGORITHM", "HS256")
JWT_ACCESS_TTL_SEC = int(os.getenv("JWT_ACCESS_TTL_SEC", "3600"))
JWT_REFRESH_TTL_SEC = int(os.getenv("JWT_REFRESH_TTL_SEC", "2592000"))


def _now_ts() -> int:
    return int(time.time())


def _encode(user_id: str, email: str | None, token_type: str, ttl: int, extra: dict | None = None) -> tuple[str, int]:
    now = _now_ts()
    exp = now + ttl
    payload = {
        "sub": user_id,
        "email": email,
        "typ": token_type,
        "iat": now,
        "exp": exp,
        "iss": JWT_ISSUER,
        "aud": JWT_AUDIENCE,
        **(extra or {}),
    }
    return jwt.encode(payload, JWT_SECRET, algorithm=JWT_ALGORITHM), exp


def create_access_token(user_id: str, email: str | None = None) -> tuple[str, int]:
    return _encode(user_id, email, "access", JWT_ACCESS_TTL_SEC)


def create_refresh_token(user_id: str, email: str | None = None) -> tuple[str, str, int]:
    refresh_id = uuid.uuid4().hex
    token, exp = _encode(user_id, email, "refresh", JWT_REFRESH_TTL_SEC, {"jti": refresh_id})
    return token, refresh_id, exp


def _decode_token(token: str) -> dict | None:
    try:
        return jwt.decode(
            token,
            JWT_SECRET,
            algorithms=[JWT_ALGORITHM],
            issuer=JWT_ISSUER,
            audience=JWT_AUDIENCE,
        )
    except jwt.PyJWTError:
        return None


def verify_access_token(token: str) -> dict | None:
    payload = _decode_token(token)
    if not payload or payload.get("typ") != "access":
        return None
    return payload


def verify_refresh_token(token: str) -> dict | None:
    payload = _decode_token(token)
    if not payload or payload.get("typ") != "refresh" or not payload.get("jti"):
        return None
    return payload


def hash_refresh_id(refresh_id: str) -> str:
    return hmac.new(JWT_SECRET.encode("utf-8"), refresh_id.encode("utf-8"), hashlib.sha256).hexdigest()


def exp_to_datetime(exp_ts: int) -> datetime:
    return datetime.fromtimestamp(exp_ts, tz=timezone.utc)


def seconds_until(exp_ts: int) -> int:
    return max(exp_ts - _now_ts(), 0)
