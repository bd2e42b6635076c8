import pytest

from api import llm
from api.llm import LLMError, extract_json


def test_extract_json_plain_and_wrapped():
    assert extract_json('{"title": "Hope"}') == {"title": "Hope"}
    assert extract_json('Here you go:\n```json\n{"title": "Hope"}\n```') == {"title": "Hope"}


def test_extract_json_rejects_non_objects():
    assert extract_json("[1, 2, 3]") is None
    assert extract_json("no json at all") is None
    assert extract_json("{broken") is None


def test_parse_stream_line():
    assert llm._parse_stream_line('data: {"choices": [{"delta": {"content": "Hi"}}]}') == "Hi"
    assert llm._parse_stream_line('data: {"choices": [{"delta": {"role": "assistant"}}]}') == ""
    assert llm._parse_stream_line(": keep-alive") == ""
    assert llm._parse_stream_line("data: [DONE]") is None


class FakeStream:
    def __init__(self, lines):
        self.lines = lines

    def raise_for_status(self):
        return None

    def iter_lines(self, decode_unicode=False):
        return iter(self.lines)

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        return False


def test_stream_chat_completion_yields_tokens(monkeypatch):
    lines = [
        'data: {"choices": [{"delta": {"content": "Peace "}}]}',
        "",
        'data: {"choices": [{"delta": {"content": "be with you."}}]}',
        "data: [DONE]",
        'data: {"choices": [{"delta": {"content": "ignored"}}]}',
    ]
    monkeypatch.setattr(llm.requests, "post", lambda *_a, **_k: FakeStream(lines))
    monkeypatch.setattr(llm, "_headers", lambda: {})
    monkeypatch.setattr(llm, "log_llm_event", lambda *_args: None)

    tokens = list(llm.stream_chat_completion([{"role": "user", "content": "Hi"}]))
    assert tokens == ["Peace ", "be with you."]


def test_chat_completion_requires_key(monkeypatch):
    monkeypatch.setattr(llm, "OPENAI_API_KEY", "")
    with pytest.raises(LLMError) as exc:
        llm.chat_completion([{"role": "user", "content": "Hi"}])
    assert str(exc.value) == "not_configured"
