import io
import os

import pytest
from fastapi import BackgroundTasks, HTTPException

import api.main as main_mod
from api import sermons
from api.llm import LLMError


USER = {"user_id": "u-1", "email": "a@example.com", "is_admin": False}


class FakeConn:
    def __init__(self):
        self.commits = 0
        self.rollbacks = 0

    def commit(self):
        self.commits += 1

    def rollback(self):
        self.rollbacks += 1


class FakeUpload:
    def __init__(self, filename, data=b"audio-bytes"):
        self.filename = filename
        self.file = io.BytesIO(data)


@pytest.fixture
def storage(monkeypatch, tmp_path):
    monkeypatch.setattr(sermons, "SERMON_STORAGE_DIR", str(tmp_path))
    monkeypatch.setattr(sermons, "log_sermon_event", lambda *_args: None)
    return tmp_path


@pytest.fixture
def contexts(monkeypatch):
    recorded = []
    monkeypatch.setattr(
        sermons, "set_ai_context", lambda _c, _sid, ctx, **fields: recorded.append((dict(ctx), fields))
    )
    monkeypatch.setattr(
        sermons, "_sermon_for_processing", lambda _c, sid: {"id": sid, "user_id": "u-1", "audio_url": "u-1/s-1.mp3"}
    )
    return recorded


def test_file_extension():
    assert sermons.file_extension("Sunday.MP3") == "mp3"
    assert sermons.file_extension("clip.m4a") == "m4a"
    assert sermons.file_extension("notes.pdf") is None
    assert sermons.file_extension("noext") is None


def test_resolve_storage_path_blocks_escape(storage):
    assert sermons.resolve_storage_path("u-1/s-1.mp3") == os.path.join(os.path.realpath(storage), "u-1", "s-1.mp3")
    with pytest.raises(ValueError):
        sermons.resolve_storage_path("../outside.mp3")


def test_save_upload_enforces_limit(storage):
    written = sermons.save_upload(io.BytesIO(b"abc"), "u-1/ok.mp3", max_bytes=10)
    assert written == 3
    assert (storage / "u-1" / "ok.mp3").read_bytes() == b"abc"

    with pytest.raises(ValueError):
        sermons.save_upload(io.BytesIO(b"x" * 20), "u-1/big.mp3", max_bytes=10)
    assert not (storage / "u-1" / "big.mp3").exists()


def test_process_sermon_completes(monkeypatch, storage, contexts):
    (storage / "u-1").mkdir()
    (storage / "u-1" / "s-1.mp3").write_bytes(b"audio")
    monkeypatch.setattr(sermons, "transcribe_audio", lambda path: "Grace upon grace.")
    monkeypatch.setattr(
        sermons,
        "complete_json",
        lambda _system, _user, _temp: {
            "summary": "A sermon on grace.",
            "keyPoints": ["Grace is a gift", " "],
            "followUpQuestions": ["Where have you seen grace?"],
        },
    )

    final = sermons.process_sermon(FakeConn(), "s-1")
    assert final["status"] == "completed"
    assert final["key_points"] == ["Grace is a gift"]
    steps = [ctx.get("step") for ctx, _ in contexts]
    assert steps == ["started", "file_downloaded", "transcription_completed", None]
    assert contexts[2][1] == {"transcription_text": "Grace upon grace."}
    assert contexts[-1][1]["summary_text"] == "A sermon on grace."
    assert contexts[-1][1]["follow_up_questions"] == ["Where have you seen grace?"]


def test_process_sermon_missing_file_is_recorded(storage, contexts):
    final = sermons.process_sermon(FakeConn(), "s-1")
    assert final == {"status": "error", "error": "file_download: file not found"}
    assert contexts[-1][0] == final


def test_process_sermon_transcription_failure(monkeypatch, storage, contexts):
    (storage / "u-1").mkdir()
    (storage / "u-1" / "s-1.mp3").write_bytes(b"audio")

    def broken(_path):
        raise LLMError("not_configured")

    monkeypatch.setattr(sermons, "transcribe_audio", broken)
    final = sermons.process_sermon(FakeConn(), "s-1")
    assert final == {"status": "error", "error": "transcription: not_configured"}


def test_process_sermon_invalid_analysis(monkeypatch, storage, contexts):
    (storage / "u-1").mkdir()
    (storage / "u-1" / "s-1.mp3").write_bytes(b"audio")
    monkeypatch.setattr(sermons, "transcribe_audio", lambda path: "Words.")
    monkeypatch.setattr(sermons, "complete_json", lambda _system, _user, _temp: {"keyPoints": []})

    final = sermons.process_sermon(FakeConn(), "s-1")
    assert final == {"status": "error", "error": "analysis: invalid response"}


def test_upload_route_stores_file_and_queues_processing(monkeypatch, storage):
    created = {}

    def fake_create(_conn, user_id, title, **fields):
        created.update(fields, title=title)
        return {"id": fields["sermon_id"], "title": title, "audio_url": fields["audio_url"]}

    monkeypatch.setattr(sermons, "create_sermon", fake_create)
    tasks = BackgroundTasks()
    conn = FakeConn()

    result = main_mod.upload_sermon(
        tasks,
        title=" Sunday Service ",
        description=None,
        sermon_date="2026-05-03",
        file=FakeUpload("service.mp3"),
        current_user=USER,
        conn=conn,
    )
    assert result["title"] == "Sunday Service"
    assert created["sermon_date"].isoformat() == "2026-05-03"
    assert (storage / created["audio_url"]).read_bytes() == b"audio-bytes"
    assert len(tasks.tasks) == 1
    assert conn.commits == 1


def test_upload_route_rejects_unknown_type(storage):
    with pytest.raises(HTTPException) as exc:
        main_mod.upload_sermon(
            BackgroundTasks(),
            title="Notes",
            description=None,
            sermon_date=None,
            file=FakeUpload("notes.pdf"),
            current_user=USER,
            conn=FakeConn(),
        )
    assert exc.value.status_code == 400


def test_process_sermon_audio_removed_mid_run(monkeypatch, storage, contexts):
    (storage / "u-1").mkdir()
    audio = storage / "u-1" / "s-1.mp3"
    audio.write_bytes(b"audio")

    def removed_then_read(path):
        os.remove(path)
        with open(path, "rb") as f:
            return f.read().decode()

    monkeypatch.setattr(sermons, "transcribe_audio", removed_then_read)
    final = sermons.process_sermon(FakeConn(), "s-1")
    assert final["status"] == "error"
    assert final["error"].startswith("transcription: ")
    assert contexts[-1][0] == final


def test_process_sermon_unexpected_error_is_recorded_then_raised(monkeypatch, storage, contexts):
    (storage / "u-1").mkdir()
    (storage / "u-1" / "s-1.mp3").write_bytes(b"audio")
    monkeypatch.setattr(sermons, "transcribe_audio", lambda path: "Words.")

    def broken(_system, _user, _temp):
        raise KeyError("choices")

    monkeypatch.setattr(sermons, "complete_json", broken)
    with pytest.raises(KeyError):
        sermons.process_sermon(FakeConn(), "s-1")
    assert contexts[-1][0] == {"status": "error", "error": "analysis: unexpected error (KeyError)"}
