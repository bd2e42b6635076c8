import io
import os
import tempfile

import pytest
from fastapi import HTTPException

import api.main as main_mod
from api.llm import LLMError
from api.models import SpeechRequest


USER = {"user_id": "u-1", "email": "a@example.com", "is_admin": False}


class FakeCursor:
    def __init__(self, executed):
        self.executed = executed

    def execute(self, query, params=None):
        self.executed.append((query, params))

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        return False


class FakeConn:
    def __init__(self):
        self.executed = []
        self.commits = 0

    def cursor(self, cursor_factory=None):
        return FakeCursor(self.executed)

    def commit(self):
        self.commits += 1

    def rollback(self):
        return None


class FakeUpload:
    def __init__(self, filename, data):
        self.filename = filename
        self.file = io.BytesIO(data)


@pytest.fixture(autouse=True)
def quiet_events(monkeypatch):
    monkeypatch.setattr(main_mod, "log_api_event", lambda *_args: None)


@pytest.fixture
def temp_files(monkeypatch, tmp_path):
    created = []
    original = tempfile.NamedTemporaryFile

    def tracking(*args, **kwargs):
        handle = original(*args, dir=str(tmp_path), **kwargs)
        created.append(handle.name)
        return handle

    monkeypatch.setattr(main_mod.tempfile, "NamedTemporaryFile", tracking)
    return created


def test_tts_validates_text_and_voice(monkeypatch):
    monkeypatch.setattr(main_mod, "synthesize_speech", lambda text, voice: b"mp3")
    for payload in (
        SpeechRequest(text="  "),
        SpeechRequest(text="x" * (main_mod.TTS_MAX_CHARS + 1)),
        SpeechRequest(text="Be still", voice="robot"),
    ):
        with pytest.raises(HTTPException) as exc:
            main_mod.text_to_speech(payload, current_user=USER)
        assert exc.value.status_code == 400


def test_tts_returns_audio(monkeypatch):
    calls = []
    monkeypatch.setattr(main_mod, "synthesize_speech", lambda text, voice: calls.append(voice) or b"mp3-bytes")
    response = main_mod.text_to_speech(SpeechRequest(text="Be still and know"), current_user=USER)
    assert response.body == b"mp3-bytes"
    assert response.media_type == "audio/mpeg"
    assert calls == ["nova"]


def test_transcribe_logs_usage_and_removes_temp_file(monkeypatch, temp_files):
    seen = {}

    def fake_transcribe(path, filename):
        seen["existed"] = os.path.exists(path)
        seen["filename"] = filename
        return "The Lord is my shepherd"

    monkeypatch.setattr(main_mod, "transcribe_audio", fake_transcribe)
    conn = FakeConn()

    result = main_mod.speech_transcribe(FakeUpload("note.webm", b"12345"), current_user=USER, conn=conn)
    assert result == {"text": "The Lord is my shepherd"}
    assert seen == {"existed": True, "filename": "note.webm"}
    assert temp_files[0].endswith(".webm")
    assert not os.path.exists(temp_files[0])
    query, params = conn.executed[0]
    assert "whisper_usage_logs" in query
    assert params == ("u-1", 5, None)
    assert conn.commits == 1


def test_transcribe_empty_audio_is_400(temp_files):
    conn = FakeConn()
    with pytest.raises(HTTPException) as exc:
        main_mod.speech_transcribe(FakeUpload("note.webm", b""), current_user=USER, conn=conn)
    assert exc.value.status_code == 400
    assert not os.path.exists(temp_files[0])
    assert conn.executed == []


def test_transcribe_failure_removes_temp_file(monkeypatch, temp_files):
    def broken(_path, _filename):
        raise LLMError("upstream 500")

    monkeypatch.setattr(main_mod, "transcribe_audio", broken)
    with pytest.raises(HTTPException) as exc:
        main_mod.speech_transcribe(FakeUpload("clip.m4a", b"abc"), current_user=USER, conn=FakeConn())
    assert exc.value.status_code == 502
    assert not os.path.exists(temp_files[0])
