import os
import re
import time
from datetime import datetime, timezone
from typing import Callable, Iterable, List, Optional
from urllib.parse import parse_qs, urlparse

import requests
from psycopg2.extras import RealDictCursor

from api import sermons
from api.config import DEFAULT_YOUTUBE_CHANNEL_ID, SERMON_STORAGE_DIR, YOUTUBE_API_BASE, YOUTUBE_API_KEY
from api.events import log_api_event, log_sermon_event

YOUTUBE_TIMEOUT_SEC = float(os.getenv("YOUTUBE_TIMEOUT_SEC", "10"))
YOUTUBE_SLOW_MS = int(os.getenv("YOUTUBE_SLOW_MS", "1500"))
PAST_VIDEOS_LIMIT = 50
VIDEO_ID_RE = re.compile(r"^[A-Za-z0-9_-]{11}$")
CHANNEL_COLUMNS = """
    id, channel_id, platform, channel_name, is_active, last_checked_at,
    last_processed_at, last_video_id, created_at
"""


class YouTubeError(Exception):
    pass


def youtube_enabled() -> bool:
    return bool(YOUTUBE_API_KEY)


def _youtube_get(resource: str, params: dict) -> dict:
    if not YOUTUBE_API_KEY:
        raise YouTubeError("not_configured")
    start = time.perf_counter()
    try:
        res = requests.get(
            f"{YOUTUBE_API_BASE}/{resource}",
            params={**params, "key": YOUTUBE_API_KEY},
            timeout=YOUTUBE_TIMEOUT_SEC,
        )
        res.raise_for_status()
        data = res.json()
    except requests.RequestException as exc:
        log_api_event("youtube_error", {"resource": resource, "error": exc.__class__.__name__})
        raise YouTubeError(f"YouTube API error: {exc}") from exc
    except ValueError as exc:
        log_api_event("youtube_error", {"resource": resource, "error": "bad_json"})
        raise YouTubeError("YouTube API returned invalid JSON") from exc
    elapsed_ms = int((time.perf_counter() - start) * 1000)
    log_api_event("youtube_latency", {"resource": resource, "elapsed_ms": elapsed_ms})
    if elapsed_ms > YOUTUBE_SLOW_MS:
        log_api_event("youtube_slow", {"resource": resource, "elapsed_ms": elapsed_ms})
    return data


def video_url(video_id: str) -> str:
    return f"https://www.youtube.com/watch?v={video_id}"


def _item_video_id(item: dict) -> Optional[str]:
    raw = item.get("id")
    if isinstance(raw, dict):
        return raw.get("videoId")
    return raw


def map_video(item: dict) -> Optional[dict]:
    video_id = _item_video_id(item)
    if not video_id:
        return None
    snippet = item.get("snippet") or {}
    thumbs = snippet.get("thumbnails") or {}
    thumb = thumbs.get("high") or thumbs.get("medium") or thumbs.get("default") or {}
    return {
        "video_id": video_id,
        "title": snippet.get("title") or "",
        "description": snippet.get("description") or "",
        "published_at": snippet.get("publishedAt"),
        "thumbnail_url": thumb.get("url"),
        "video_url": video_url(video_id),
    }


def _search(channel_id: str, max_results: int, event_type: Optional[str] = None) -> List[dict]:
    params = {
        "part": "snippet",
        "channelId": channel_id,
        "type": "video",
        "order": "date",
        "maxResults": max_results,
    }
    if event_type:
        params["eventType"] = event_type
    data = _youtube_get("search", params)
    return [v for v in (map_video(item) for item in data.get("items") or []) if v]


def list_past_videos(channel_id: str, max_results: int = PAST_VIDEOS_LIMIT) -> List[dict]:
    return _search(channel_id, max_results)


def get_live_broadcast(channel_id: str) -> Optional[dict]:
    items = _search(channel_id, 1, event_type="live")
    return items[0] if items else None


def latest_completed_video(channel_id: str) -> Optional[dict]:
    items = _search(channel_id, 1, event_type="completed")
    return items[0] if items else None


def get_video_details(video_id: str) -> Optional[dict]:
    data = _youtube_get("videos", {"part": "snippet,contentDetails", "id": video_id})
    items = data.get("items") or []
    if not items:
        return None
    details = map_video(items[0])
    details["duration"] = (items[0].get("contentDetails") or {}).get("duration")
    return details


def extract_video_id(url: str) -> Optional[str]:
    """Video id from watch, shorts, live and youtu.be links."""
    try:
        parsed = urlparse((url or "").strip())
    except ValueError:
        return None
    host = (parsed.hostname or "").lower()
    if host.startswith("www."):
        host = host[4:]
    if host.startswith("m."):
        host = host[2:]
    candidate = None
    if host == "youtu.be":
        candidate = parsed.path.lstrip("/").split("/")[0]
    elif host in ("youtube.com", "music.youtube.com"):
        parts = [p for p in parsed.path.split("/") if p]
        if parts[:1] == ["watch"]:
            candidate = (parse_qs(parsed.query).get("v") or [None])[0]
        elif len(parts) >= 2 and parts[0] in ("shorts", "live", "embed"):
            candidate = parts[1]
    if candidate and VIDEO_ID_RE.match(candidate):
        return candidate
    return None


def list_channels(conn, active_only: bool = False) -> List[dict]:
    with conn.cursor(cursor_factory=RealDictCursor) as cur:
        cur.execute(
            f"""
            SELECT {CHANNEL_COLUMNS}
            FROM monitored_channels
            WHERE (%s = false OR is_active = true)
            ORDER BY created_at ASC
            """,
            (active_only,),
        )
        return cur.fetchall()


def upsert_channel(conn, channel_id: str, channel_name: Optional[str], platform: str = "youtube", is_active: bool = True) -> dict:
    with conn.cursor(cursor_factory=RealDictCursor) as cur:
        cur.execute(
            f"""
            INSERT INTO monitored_channels (channel_id, platform, channel_name, is_active)
            VALUES (%s, %s, %s, %s)
            ON CONFLICT (channel_id, platform)
            DO UPDATE SET
              channel_name = COALESCE(EXCLUDED.channel_name, monitored_channels.channel_name),
              is_active = EXCLUDED.is_active
            RETURNING {CHANNEL_COLUMNS}
            """,
            (channel_id, platform, channel_name, is_active),
        )
        return cur.fetchone()


def delete_channel(conn, channel_id: str, platform: str = "youtube") -> bool:
    with conn.cursor() as cur:
        cur.execute(
            """
            DELETE FROM monitored_channels
            WHERE channel_id = %s AND platform = %s
            """,
            (channel_id, platform),
        )
        return cur.rowcount > 0


def _touch_channel(conn, channel_id: str, processed_video_id: Optional[str] = None) -> None:
    with conn.cursor() as cur:
        if processed_video_id:
            cur.execute(
                """
                UPDATE monitored_channels
                SET last_checked_at = now(), last_processed_at = now(), last_video_id = %s
                WHERE channel_id = %s AND platform = 'youtube'
                """,
                (processed_video_id, channel_id),
            )
        else:
            cur.execute(
                """
                UPDATE monitored_channels
                SET last_checked_at = now()
                WHERE channel_id = %s AND platform = 'youtube'
                """,
                (channel_id,),
            )
    conn.commit()


def livestream_audio_path(video_id: str) -> str:
    return f"livestream/{video_id}.mp3"


def _audio_available(relative_path: str) -> bool:
    return os.path.isfile(os.path.join(SERMON_STORAGE_DIR, relative_path))


def process_video(
    conn,
    owner_id: str,
    video_id: str,
    source: str,
    run: Optional[Callable[[str, Optional[str]], object]] = None,
) -> dict:
    """Create or re-queue the sermon for a video and start the pipeline when its audio is on disk.

    `run(sermon_id, file_path)` starts processing; by default the pipeline runs inline.
    Raises YouTubeError when the video cannot be looked up.
    """
    url = video_url(video_id)
    context = {"status": "queued", "source": source, "video_id": video_id}
    existing = sermons.find_by_video_url(conn, url)
    if existing:
        sermon_id = str(existing["id"])
        sermons.set_ai_context(conn, sermon_id, context)
        requeued = True
    else:
        details = get_video_details(video_id)
        if not details:
            raise YouTubeError("video not found")
        published = details.get("published_at")
        sermon_date = published[:10] if published else None
        created = sermons.create_sermon(
            conn,
            owner_id,
            title=details["title"] or f"Livestream {video_id}",
            description=details["description"],
            sermon_date=sermon_date,
            video_url=url,
            ai_context=context,
        )
        conn.commit()
        sermon_id = str(created["id"])
        requeued = False

    audio_path = livestream_audio_path(video_id)
    if not _audio_available(audio_path):
        sermons.set_ai_context(conn, sermon_id, {**context, "status": "awaiting_audio"})
        log_sermon_event("livestream_awaiting_audio", {"sermon_id": sermon_id, "video_id": video_id})
        return {"sermon_id": sermon_id, "video_id": video_id, "status": "awaiting_audio", "requeued": requeued}

    if run is None:
        sermons.process_sermon(conn, sermon_id, audio_path)
    else:
        run(sermon_id, audio_path)
    log_sermon_event("livestream_processing_started", {"sermon_id": sermon_id, "video_id": video_id, "source": source})
    return {"sermon_id": sermon_id, "video_id": video_id, "status": "processing_started", "requeued": requeued}


def resolve_monitor_channels(conn, channel_ids: Optional[Iterable[str]]) -> List[str]:
    ids = [c for c in (channel_ids or []) if c]
    if ids:
        return ids
    ids = [row["channel_id"] for row in list_channels(conn, active_only=True) if row["platform"] == "youtube"]
    return ids or [DEFAULT_YOUTUBE_CHANNEL_ID]


def _check_channel(conn, channel_id: str, owner_id: str, force: bool, run) -> dict:
    try:
        if get_live_broadcast(channel_id):
            return {"channel_id": channel_id, "status": "live", "message": "Channel is currently live"}
        latest = latest_completed_video(channel_id)
    except YouTubeError as exc:
        return {"channel_id": channel_id, "status": "error", "message": str(exc)}
    if not latest:
        return {"channel_id": channel_id, "status": "no_streams", "message": "No completed livestreams found"}

    video_id = latest["video_id"]
    existing = sermons.find_by_video_url(conn, video_url(video_id))
    if existing and not force:
        return {
            "channel_id": channel_id,
            "status": "already_processed",
            "message": "This video has already been processed",
            "video_id": video_id,
            "sermon_id": str(existing["id"]),
        }
    try:
        outcome = process_video(conn, owner_id, video_id, "automated_monitoring", run=run)
    except YouTubeError as exc:
        return {"channel_id": channel_id, "status": "processing_error", "message": str(exc), "video_id": video_id}
    _touch_channel(conn, channel_id, processed_video_id=video_id)
    return {
        "channel_id": channel_id,
        "status": "processing_started",
        "message": f"Sermon {outcome['status'].replace('_', ' ')}",
        "video_id": video_id,
        "sermon_id": outcome["sermon_id"],
    }


def monitor_channels(
    conn,
    owner_id: str,
    channel_ids: Optional[Iterable[str]] = None,
    force: bool = False,
    run=None,
    now: Optional[datetime] = None,
) -> dict:
    results = []
    for channel_id in resolve_monitor_channels(conn, channel_ids):
        result = _check_channel(conn, channel_id, owner_id, force, run)
        if result["status"] != "processing_started":
            _touch_channel(conn, channel_id)
        results.append(result)
    processed = sum(1 for r in results if r["status"] == "processing_started")
    log_api_event("livestream_monitor_run", {"channels": len(results), "processed": processed})
    return {
        "success": True,
        "results": results,
        "processed": processed,
        "timestamp": (now or datetime.now(timezone.utc)).isoformat(),
    }
