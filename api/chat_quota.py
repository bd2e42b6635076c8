import os
import time
from datetime import datetime, timezone, timedelta
from typing import Optional

import redis


REDIS_URL = os.getenv("REDIS_URL", "redis://localhost:6379/0")
FREE_CHAT_DAILY_LIMIT = int(os.getenv("FREE_CHAT_DAILY_LIMIT", "10"))

_REDIS_CLIENT = None
_REDIS_AVAILABLE = True
_MEM_DAILY = {}


def _get_redis():
    global _REDIS_CLIENT, _REDIS_AVAILABLE
    if not _REDIS_AVAILABLE:
        return None
    if _REDIS_CLIENT is None:
        client = redis.Redis.from_url(REDIS_URL, decode_responses=True)
        try:
            client.ping()
        except redis.RedisError:
            _REDIS_AVAILABLE = False
            return None
        _REDIS_CLIENT = client
    return _REDIS_CLIENT


def _daily_key(user_id: str, date_key: str) -> str:
    return f"chat:quota:daily:{user_id}:{date_key}"


def _utc_date_key(now: Optional[datetime] = None) -> str:
    now = now or datetime.now(timezone.utc)
    return now.strftime("%Y%m%d")


def _seconds_until_utc_day_end(now: Optional[datetime] = None) -> int:
    now = now or datetime.now(timezone.utc)
    next_midnight = datetime.combine(
        now.date() + timedelta(days=1),
        datetime.min.time(),
        tzinfo=timezone.utc,
    )
    return max(int((next_midnight - now).total_seconds()), 60)


def _mem_daily_get(key: str) -> Optional[dict]:
    data = _MEM_DAILY.get(key)
    if not data:
        return None
    expires_ts = int(data.get("expires_at_ts") or 0)
    if expires_ts and time.time() >= expires_ts:
        _MEM_DAILY.pop(key, None)
        return None
    return data


_DAILY_LIMIT_LUA = """
local key = KEYS[1]
local limit = tonumber(ARGV[1])
local ttl = tonumber(ARGV[2])
local current = tonumber(redis.call("GET", key) or "0")
if current >= limit then
  return {current, "limit"}
end
local new_count = redis.call("INCR", key)
if new_count == 1 then
  redis.call("EXPIRE", key, ttl)
end
return {new_count, "ok"}
"""


def enforce_daily_chat_limit(user_id: str, limit: int | None = None, now: Optional[datetime] = None) -> dict:
    """Count one message against today's quota; refused messages are not counted."""
    limit = int(limit or FREE_CHAT_DAILY_LIMIT)
    if not user_id:
        return {"status": "ok", "count": 0, "limit": limit}
    now = now or datetime.now(timezone.utc)
    ttl = _seconds_until_utc_day_end(now)
    key = _daily_key(user_id, _utc_date_key(now))
    client = _get_redis()
    if client is None:
        data = _mem_daily_get(key)
        if not data:
            data = {"count": 0, "expires_at_ts": int(time.time()) + ttl}
            _MEM_DAILY[key] = data
        count = int(data.get("count") or 0)
        if count >= limit:
            return {"status": "limit", "count": count, "limit": limit}
        data["count"] = count + 1
        return {"status": "ok", "count": data["count"], "limit": limit}
    result = client.eval(_DAILY_LIMIT_LUA, 1, key, limit, ttl)
    if not result:
        return {"status": "ok", "count": 0, "limit": limit}
    if result[1] == "limit":
        return {"status": "limit", "count": int(result[0]), "limit": limit}
    return {"status": "ok", "count": int(result[0]), "limit": limit}


def get_daily_chat_usage(user_id: str, limit: int | None = None, now: Optional[datetime] = None) -> dict:
    limit = int(limit or FREE_CHAT_DAILY_LIMIT)
    if not user_id:
        return {"count": 0, "limit": limit, "remaining": limit}
    key = _daily_key(user_id, _utc_date_key(now))
    client = _get_redis()
    if client is None:
        data = _mem_daily_get(key)
        count = int(data.get("count") or 0) if data else 0
    else:
        count = int(client.get(key) or 0)
    return {"count": count, "limit": limit, "remaining": max(limit - count, 0)}
