import pytest
from fastapi import HTTPException

import api.main as main_mod
from api import billing, bible_studies, chat, devotionals
from api.llm import LLMError
from api.models import DevotionalGenerateRequest, DevotionalInteractionRequest, StudyGenerateRequest


USER = {"user_id": "u-1", "email": "a@example.com", "is_admin": False}

GENERATED = {
    "title": "Refuge in the Storm",
    "scripture_reference": "Psalm 46:1-3",
    "scripture_text": "God is our refuge and strength...",
    "content": "When the ground shakes, you are not alone.",
    "reflection_questions": ["Where do you run first?", " ", "What would stillness look like?"],
}


class FakeConn:
    def __init__(self):
        self.commits = 0

    def commit(self):
        self.commits += 1

    def rollback(self):
        return None


@pytest.fixture(autouse=True)
def quiet_events(monkeypatch):
    monkeypatch.setattr(main_mod, "log_api_event", lambda *_args: None)
    monkeypatch.setattr(devotionals, "log_api_event", lambda *_args: None)


def test_validate_generated_content_cleans_questions():
    fields = devotionals.validate_generated_content(GENERATED)
    assert fields["title"] == "Refuge in the Storm"
    assert fields["reflection_questions"] == ["Where do you run first?", "What would stillness look like?"]
    with pytest.raises(ValueError):
        devotionals.validate_generated_content({"title": "No passage", "content": "text"})
    with pytest.raises(ValueError):
        devotionals.validate_generated_content(None)


def test_attach_passage_text_prefers_published_text(monkeypatch):
    monkeypatch.setattr(devotionals, "fetch_passage", lambda ref, translation=None: {"text": "God is our refuge."})
    fields = devotionals.attach_passage_text(devotionals.validate_generated_content(GENERATED))
    assert fields["scripture_text"] == "God is our refuge."


def test_attach_passage_text_keeps_model_text_when_lookup_fails(monkeypatch):
    monkeypatch.setattr(devotionals, "fetch_passage", lambda ref, translation=None: None)
    fields = devotionals.attach_passage_text(devotionals.validate_generated_content(GENERATED))
    assert fields["scripture_text"] == "God is our refuge and strength..."

    def unparseable(ref, translation=None):
        raise ValueError("bad reference")

    monkeypatch.setattr(devotionals, "fetch_passage", unparseable)
    bare = dict(devotionals.validate_generated_content(GENERATED), scripture_text="")
    with pytest.raises(ValueError):
        devotionals.attach_passage_text(bare)


def test_generate_route_validates_preferences():
    with pytest.raises(HTTPException) as exc:
        main_mod.generate_ai_devotional(DevotionalGenerateRequest(tone="angry"), current_user=USER, conn=FakeConn())
    assert exc.value.status_code == 400


def test_generate_route_stores_devotional(monkeypatch):
    stored = {}
    monkeypatch.setattr(chat, "build_user_context", lambda _c, _u, _e: "Name: Ruth")
    monkeypatch.setattr(devotionals, "fetch_passage", lambda ref, translation=None: None)
    monkeypatch.setattr(devotionals, "complete_json", lambda _system, prompt, temperature: GENERATED)

    def fake_store(_conn, user_id, devotional, preferences):
        stored.update(user_id=user_id, preferences=preferences)
        return {"id": "d-1", **devotional}

    monkeypatch.setattr(devotionals, "store_devotional", fake_store)
    conn = FakeConn()
    result = main_mod.generate_ai_devotional(
        DevotionalGenerateRequest(tone="comforting", length="short"), current_user=USER, conn=conn
    )
    assert result["id"] == "d-1"
    assert stored == {"user_id": "u-1", "preferences": {"tone": "comforting", "length": "short"}}
    assert conn.commits == 1


def test_generate_route_maps_bad_output_to_502(monkeypatch):
    monkeypatch.setattr(chat, "build_user_context", lambda _c, _u, _e: "")
    monkeypatch.setattr(devotionals, "complete_json", lambda _system, _prompt, temperature: {"title": "only"})
    with pytest.raises(HTTPException) as exc:
        main_mod.generate_ai_devotional(DevotionalGenerateRequest(), current_user=USER, conn=FakeConn())
    assert exc.value.status_code == 502


def test_interaction_requires_owned_devotional(monkeypatch):
    monkeypatch.setattr(devotionals, "get_devotional", lambda _c, _u, _d: None)
    payload = DevotionalInteractionRequest(interaction_type="question", prompt="What is a refuge?")
    with pytest.raises(HTTPException) as exc:
        main_mod.add_devotional_interaction("d-9", payload, current_user=USER, conn=FakeConn())
    assert exc.value.status_code == 404

    bad = DevotionalInteractionRequest(interaction_type="rant", prompt="x")
    with pytest.raises(HTTPException) as exc:
        main_mod.add_devotional_interaction("d-9", bad, current_user=USER, conn=FakeConn())
    assert exc.value.status_code == 400


@pytest.mark.parametrize("is_pro,expected", [(True, "Stay close to Him."), (False, None)])
def test_interaction_feedback_for_subscribers_only(monkeypatch, is_pro, expected):
    saved = {}
    monkeypatch.setattr(devotionals, "get_devotional", lambda _c, _u, _d: {"id": "d-1", "title": "Refuge"})
    monkeypatch.setattr(billing, "is_pro", lambda _c, _u: is_pro)
    monkeypatch.setattr(devotionals, "chat_completion", lambda messages, temperature: " Stay close to Him. ")

    def fake_add(_conn, user_id, devotional_id, kind, prompt, response, feedback):
        saved.update(kind=kind, response=response, feedback=feedback)
        return {"id": "i-1", "ai_feedback": feedback}

    monkeypatch.setattr(devotionals, "add_interaction", fake_add)
    payload = DevotionalInteractionRequest(interaction_type="reflection", prompt="Where do you run first?", user_response=" To work ")
    result = main_mod.add_devotional_interaction("d-1", payload, current_user=USER, conn=FakeConn())
    assert result["ai_feedback"] == expected
    assert saved == {"kind": "reflection", "response": "To work", "feedback": expected}


def test_interaction_feedback_swallows_provider_errors(monkeypatch):
    def broken(messages, temperature):
        raise LLMError("upstream 500")

    monkeypatch.setattr(devotionals, "chat_completion", broken)
    assert devotionals.interaction_feedback({"title": "Refuge"}, "prayer", "Pray with me", None) is None


def test_study_generation_shares_validation(monkeypatch):
    monkeypatch.setattr(bible_studies, "complete_json", lambda _system, prompt, temperature: GENERATED)
    monkeypatch.setattr(devotionals, "fetch_passage", lambda ref, translation=None: None)
    study = bible_studies.generate_study("", {"topic": "fear"})
    assert study["scripture_reference"] == "Psalm 46:1-3"

    with pytest.raises(HTTPException) as exc:
        main_mod.generate_ai_bible_study(StudyGenerateRequest(difficulty="expert"), current_user=USER, conn=FakeConn())
    assert exc.value.status_code == 400


def test_study_notes_are_owner_scoped(monkeypatch):
    monkeypatch.setattr(bible_studies, "update_notes", lambda _c, user_id, _s, notes: None)
    with pytest.raises(HTTPException) as exc:
        main_mod.save_bible_study_notes("s-1", main_mod.StudyNotesRequest(user_notes="mine"), current_user=USER, conn=FakeConn())
    assert exc.value.status_code == 404
