import json
import os
import time
from typing import Iterator, List, Optional

import requests

from api.config import OPENAI_API_KEY, OPENAI_BASE_URL, OPENAI_CHAT_MODEL, OPENAI_TIMEOUT_SEC
from api.events import log_llm_event

LLM_SLOW_MS = int(os.getenv("LLM_SLOW_MS", "4000"))
WHISPER_MODEL = os.getenv("OPENAI_WHISPER_MODEL", "whisper-1")
TTS_MODEL = os.getenv("OPENAI_TTS_MODEL", "tts-1")
TTS_VOICES = ("alloy", "echo", "fable", "onyx", "nova", "shimmer")


class LLMError(Exception):
    """Raised when the completion provider fails or is not configured."""


def llm_enabled() -> bool:
    return bool(OPENAI_API_KEY)


def _headers() -> dict:
    if not OPENAI_API_KEY:
        raise LLMError("not_configured")
    return {"Authorization": f"Bearer {OPENAI_API_KEY}"}


def _log_latency(kind: str, model: str, start: float) -> None:
    elapsed_ms = int((time.perf_counter() - start) * 1000)
    log_llm_event("llm_latency", {"kind": kind, "model": model, "elapsed_ms": elapsed_ms})
    if elapsed_ms > LLM_SLOW_MS:
        log_llm_event("llm_slow", {"kind": kind, "model": model, "elapsed_ms": elapsed_ms})


def chat_completion(
    messages: List[dict],
    temperature: float = 0.7,
    response_format: Optional[dict] = None,
    model: Optional[str] = None,
) -> str:
    model = model or OPENAI_CHAT_MODEL
    payload = {"model": model, "messages": messages, "temperature": temperature}
    if response_format:
        payload["response_format"] = response_format
    start = time.perf_counter()
    try:
        res = requests.post(
            f"{OPENAI_BASE_URL}/chat/completions",
            headers=_headers(),
            json=payload,
            timeout=OPENAI_TIMEOUT_SEC,
        )
        res.raise_for_status()
        data = res.json()
    except requests.RequestException as exc:
        log_llm_event("llm_error", {"kind": "chat", "model": model, "error": "request_failed"})
        raise LLMError(str(exc)) from exc
    _log_latency("chat", model, start)
    try:
        return data["choices"][0]["message"]["content"] or ""
    except (KeyError, IndexError, TypeError) as exc:
        log_llm_event("llm_error", {"kind": "chat", "model": model, "error": "bad_response"})
        raise LLMError("unexpected completion response") from exc


def _parse_stream_line(line: str) -> Optional[str]:
    """Return the content delta of one SSE line, "" for keep-alives, None at [DONE]."""
    if not line or not line.startswith("data:"):
        return ""
    data = line[len("data:"):].strip()
    if data == "[DONE]":
        return None
    try:
        chunk = json.loads(data)
    except json.JSONDecodeError:
        return ""
    choices = chunk.get("choices") or []
    if not choices:
        return ""
    delta = choices[0].get("delta") or {}
    return delta.get("content") or ""


def stream_chat_completion(
    messages: List[dict],
    temperature: float = 0.9,
    model: Optional[str] = None,
) -> Iterator[str]:
    model = model or OPENAI_CHAT_MODEL
    payload = {
        "model": model,
        "messages": messages,
        "temperature": temperature,
        "stream": True,
    }
    start = time.perf_counter()
    try:
        with requests.post(
            f"{OPENAI_BASE_URL}/chat/completions",
            headers=_headers(),
            json=payload,
            timeout=OPENAI_TIMEOUT_SEC,
            stream=True,
        ) as res:
            res.raise_for_status()
            for line in res.iter_lines(decode_unicode=True):
                token = _parse_stream_line(line)
                if token is None:
                    break
                if token:
                    yield token
    except requests.RequestException as exc:
        log_llm_event("llm_error", {"kind": "stream", "model": model, "error": "request_failed"})
        raise LLMError(str(exc)) from exc
    _log_latency("stream", model, start)


def transcribe_audio(path: str, filename: Optional[str] = None) -> str:
    start = time.perf_counter()
    try:
        with open(path, "rb") as f:
            res = requests.post(
                f"{OPENAI_BASE_URL}/audio/transcriptions",
                headers=_headers(),
                data={"model": WHISPER_MODEL},
                files={"file": (filename or os.path.basename(path), f)},
                timeout=max(OPENAI_TIMEOUT_SEC, 300),
            )
        res.raise_for_status()
        data = res.json()
    except requests.RequestException as exc:
        log_llm_event("llm_error", {"kind": "transcription", "model": WHISPER_MODEL, "error": "request_failed"})
        raise LLMError(str(exc)) from exc
    _log_latency("transcription", WHISPER_MODEL, start)
    return (data.get("text") or "").strip()


def synthesize_speech(text: str, voice: str = "nova") -> bytes:
    start = time.perf_counter()
    try:
        res = requests.post(
            f"{OPENAI_BASE_URL}/audio/speech",
            headers=_headers(),
            json={"model": TTS_MODEL, "input": text, "voice": voice, "response_format": "mp3"},
            timeout=OPENAI_TIMEOUT_SEC,
        )
        res.raise_for_status()
    except requests.RequestException as exc:
        log_llm_event("llm_error", {"kind": "tts", "model": TTS_MODEL, "error": "request_failed"})
        raise LLMError(str(exc)) from exc
    _log_latency("tts", TTS_MODEL, start)
    return res.content


def extract_json(text: str) -> Optional[dict]:
    try:
        data = json.loads(text)
        return data if isinstance(data, dict) else None
    except json.JSONDecodeError:
        pass
    if "{" in text and "}" in text:
        start = text.find("{")
        end = text.rfind("}")
        try:
            data = json.loads(text[start : end + 1])
        except json.JSONDecodeError:
            return None
        return data if isinstance(data, dict) else None
    return None


def complete_json(system_prompt: str, user_prompt: str, temperature: float = 0.7) -> Optional[dict]:
    content = chat_completion(
        [
            {"role": "system", "content": system_prompt},
            {"role": "user", "content": user_prompt},
        ],
        temperature=temperature,
        response_format={"type": "json_object"},
    )
    return extract_json(content or "")
