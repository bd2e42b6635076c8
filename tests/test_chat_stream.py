import json
from datetime import datetime, timezone

import pytest
from fastapi import HTTPException
from fastapi.responses import StreamingResponse

import api.main as main_mod
from api import billing, chat, chat_quota
from api.llm import LLMError
from api.models import ChatStreamRequest


USER = {"user_id": "u-1", "email": "a@example.com", "is_admin": False}


class FakeConn:
    def __init__(self):
        self.commits = 0

    def commit(self):
        self.commits += 1

    def rollback(self):
        return None


def _events(chunks):
    out = []
    for chunk in chunks:
        assert chunk.startswith("data: ")
        out.append(json.loads(chunk[len("data: "):].strip()))
    return out


@pytest.fixture
def saved(monkeypatch):
    messages = []
    monkeypatch.setattr(chat, "save_message", lambda _c, _t, _u, role, content: messages.append((role, content)))
    monkeypatch.setattr(chat, "touch_thread", lambda _c, _t: None)
    monkeypatch.setattr(chat, "log_chat_event", lambda *_args: None)
    return messages


def test_stream_reply_relays_tokens_and_persists(monkeypatch, saved):
    seen = {}

    def fake_stream(messages, temperature=0.9):
        seen["messages"] = messages
        yield "Grace "
        yield "and peace."

    monkeypatch.setattr(chat, "stream_chat_completion", fake_stream)
    history = [{"role": "assistant", "content": "Welcome back."}]
    events = _events(chat.stream_reply(FakeConn(), "u-1", "t-1", "Hello", "SYSTEM", history, new_thread=True))

    assert events[0] == {"threadId": "t-1"}
    assert [e["content"] for e in events if "content" in e] == ["Grace ", "and peace."]
    assert events[-1] == {"done": True}
    assert saved == [("user", "Hello"), ("assistant", "Grace and peace.")]
    assert seen["messages"][0] == {"role": "system", "content": "SYSTEM"}
    assert seen["messages"][-1] == {"role": "user", "content": "Hello"}


def test_stream_reply_crisis_message_skips_model(monkeypatch, saved):
    def never_called(*_args, **_kwargs):
        raise AssertionError("model should not be called")

    monkeypatch.setattr(chat, "stream_chat_completion", never_called)
    events = _events(chat.stream_reply(FakeConn(), "u-1", "t-1", "I want to end my life", "SYSTEM", []))

    assert "988" in events[0]["content"]
    assert events[-1] == {"done": True}
    assert saved[-1] == ("assistant", chat.CRISIS_RESPONSE)


def test_stream_reply_error_keeps_partial_reply(monkeypatch, saved):
    def failing_stream(messages, temperature=0.9):
        yield "Partial"
        raise LLMError("upstream closed")

    monkeypatch.setattr(chat, "stream_chat_completion", failing_stream)
    events = _events(chat.stream_reply(FakeConn(), "u-1", "t-1", "Hi", "SYSTEM", []))

    assert events[-1]["error"] == "Failed to generate response"
    assert events[-1]["details"] == "upstream closed"
    assert {"done": True} not in events
    assert saved == [("user", "Hi"), ("assistant", "Partial")]


def test_risk_flags():
    assert chat.risk_flags("sometimes I want to die") == ["self_harm"]
    assert chat.risk_flags("I am dying to see the sunrise") == []


def test_thread_title_truncates():
    assert chat.thread_title("  How   do I pray?  ") == "How do I pray?"
    assert len(chat.thread_title("x" * 120)) == chat.THREAD_TITLE_CHARS
    assert chat.thread_title("") == "New conversation"


def test_chat_route_rejects_empty_message():
    with pytest.raises(HTTPException) as exc:
        main_mod.chat_stream(ChatStreamRequest(message="   "), current_user=USER, conn=FakeConn())
    assert exc.value.status_code == 400


def test_chat_route_without_llm_is_503(monkeypatch):
    monkeypatch.setattr(main_mod, "llm_enabled", lambda: False)
    with pytest.raises(HTTPException) as exc:
        main_mod.chat_stream(ChatStreamRequest(message="Hello"), current_user=USER, conn=FakeConn())
    assert exc.value.status_code == 503


def test_chat_route_daily_limit_is_402(monkeypatch):
    monkeypatch.setattr(main_mod, "llm_enabled", lambda: True)
    monkeypatch.setattr(billing, "is_pro", lambda _c, _u: False)
    monkeypatch.setattr(main_mod, "enforce_daily_chat_limit", lambda _u: {"status": "limit", "count": 10, "limit": 10})
    with pytest.raises(HTTPException) as exc:
        main_mod.chat_stream(ChatStreamRequest(message="Hello"), current_user=USER, conn=FakeConn())
    assert exc.value.status_code == 402


def test_chat_route_pro_user_skips_quota_and_creates_thread(monkeypatch):
    def quota_not_expected(_user_id):
        raise AssertionError("pro users have no quota")

    monkeypatch.setattr(main_mod, "llm_enabled", lambda: True)
    monkeypatch.setattr(billing, "is_pro", lambda _c, _u: True)
    monkeypatch.setattr(main_mod, "enforce_daily_chat_limit", quota_not_expected)
    monkeypatch.setattr(chat, "create_thread", lambda _c, _u, title: {"id": "t-9", "title": title})
    monkeypatch.setattr(chat, "load_history", lambda _c, _t: [])
    monkeypatch.setattr(chat, "build_user_context", lambda _c, _u, _e: "Name: Ruth")

    conn = FakeConn()
    response = main_mod.chat_stream(ChatStreamRequest(message="Hello"), current_user=USER, conn=conn)
    assert isinstance(response, StreamingResponse)
    assert response.media_type == "text/event-stream"
    assert conn.commits == 1


def test_chat_route_unknown_thread_does_not_use_quota(monkeypatch):
    charged = []
    monkeypatch.setattr(main_mod, "llm_enabled", lambda: True)
    monkeypatch.setattr(billing, "is_pro", lambda _c, _u: False)
    monkeypatch.setattr(main_mod, "enforce_daily_chat_limit", lambda user_id: charged.append(user_id))
    monkeypatch.setattr(chat, "get_thread", lambda _c, _u, _t: None)
    monkeypatch.setattr(main_mod, "log_api_event", lambda *_args: None)

    with pytest.raises(HTTPException) as exc:
        main_mod.chat_stream(ChatStreamRequest(message="Hello", thread_id="t-other"), current_user=USER, conn=FakeConn())
    assert exc.value.status_code == 404
    assert charged == []


def test_memory_quota_refuses_after_limit(monkeypatch):
    monkeypatch.setattr(chat_quota, "_REDIS_AVAILABLE", False)
    monkeypatch.setattr(chat_quota, "_MEM_DAILY", {})
    now = datetime.now(timezone.utc)

    assert chat_quota.enforce_daily_chat_limit("u-1", limit=2, now=now)["status"] == "ok"
    assert chat_quota.enforce_daily_chat_limit("u-1", limit=2, now=now)["count"] == 2
    refused = chat_quota.enforce_daily_chat_limit("u-1", limit=2, now=now)
    assert refused == {"status": "limit", "count": 2, "limit": 2}

    usage = chat_quota.get_daily_chat_usage("u-1", limit=2, now=now)
    assert usage == {"count": 2, "limit": 2, "remaining": 0}
    assert chat_quota.get_daily_chat_usage("u-2", limit=2, now=now)["remaining"] == 2
