import os
import time
from typing import Optional
from urllib.parse import quote

import requests

from api.events import log_api_event
from api.ref_parser import normalize_reference

BIBLE_API_BASE = os.getenv("BIBLE_API_BASE", "https://bible-api.com").rstrip("/")
BIBLE_API_TIMEOUT_SEC = float(os.getenv("BIBLE_API_TIMEOUT_SEC", "10"))
BIBLE_CACHE_TTL_SEC = int(os.getenv("BIBLE_CACHE_TTL_SEC", "1800"))
DEFAULT_TRANSLATION = os.getenv("BIBLE_DEFAULT_TRANSLATION", "kjv")

# bible-api.com only serves public-domain texts
SUPPORTED_TRANSLATIONS = {"kjv", "web", "asv", "bbe", "darby", "ylt", "webbe", "oeb-us"}

_CACHE = {}


def _resolve_translation(translation: Optional[str]) -> str:
    value = (translation or DEFAULT_TRANSLATION).lower()
    return value if value in SUPPORTED_TRANSLATIONS else DEFAULT_TRANSLATION


def clear_cache() -> None:
    _CACHE.clear()


def fetch_passage(reference: str, translation: Optional[str] = None) -> Optional[dict]:
    """Look up a passage; raises ValueError for unparseable references, None when not found."""
    normalized = normalize_reference(reference)
    translation = _resolve_translation(translation)
    cache_key = (normalized, translation)
    cached = _CACHE.get(cache_key)
    if cached and time.time() - cached[0] < BIBLE_CACHE_TTL_SEC:
        return cached[1]

    url = f"{BIBLE_API_BASE}/{quote(normalized)}"
    start = time.perf_counter()
    try:
        res = requests.get(
            url,
            params={"translation": translation},
            timeout=BIBLE_API_TIMEOUT_SEC,
        )
        if res.status_code == 404:
            log_api_event("bible_passage_not_found", {"translation": translation})
            return None
        res.raise_for_status()
        data = res.json()
    except (requests.RequestException, ValueError):
        log_api_event("bible_api_error", {"translation": translation})
        return None
    elapsed_ms = int((time.perf_counter() - start) * 1000)
    log_api_event("bible_api_latency", {"translation": translation, "elapsed_ms": elapsed_ms})

    verses = data.get("verses") or []
    if not verses:
        return None
    passage = {
        "reference": data.get("reference") or normalized,
        "text": (data.get("text") or "").strip(),
        "translation_id": data.get("translation_id") or translation.upper(),
        "translation_name": data.get("translation_name") or translation.upper(),
        "verses": [
            {
                "book": v.get("book_name"),
                "chapter": v.get("chapter"),
                "verse": v.get("verse"),
                "text": (v.get("text") or "").strip(),
            }
            for v in verses
        ],
    }
    _CACHE[cache_key] = (time.time(), passage)
    return passage
