from datetime import date

import pytest
from fastapi import HTTPException

import api.main as main_mod
from api import billing, reading_plans
from api.llm import LLMError
from api.models import PlanGenerateRequest
from api.reading_plans import PlanProgressError, complete_day, validate_generated_plan


TODAY = date(2026, 5, 4)
USER = {"user_id": "u-1", "email": "a@example.com", "is_admin": False}


class FakeConn:
    def __init__(self):
        self.commits = 0

    def commit(self):
        self.commits += 1

    def rollback(self):
        return None


def _progress(current_day=1, completed_days=None, completion_date=None):
    return {
        "current_day": current_day,
        "completed_days": completed_days or [],
        "is_completed": False,
        "completion_date": completion_date,
    }


def test_complete_day_advances_current_day():
    updated = complete_day(_progress(current_day=1), 1, 7, TODAY)
    assert updated["current_day"] == 2
    assert updated["completed_days"] == [1]
    assert updated["is_completed"] is False
    assert updated["last_completed_date"] == TODAY


def test_complete_day_again_does_not_duplicate():
    updated = complete_day(_progress(current_day=3, completed_days=[1, 2]), 2, 7, TODAY)
    assert updated["completed_days"] == [1, 2]
    assert updated["current_day"] == 3


def test_complete_last_day_finishes_plan():
    updated = complete_day(_progress(current_day=7, completed_days=[1, 2, 3, 4, 5, 6]), 7, 7, TODAY)
    assert updated["is_completed"] is True
    assert updated["current_day"] == 7
    assert updated["completion_date"] == TODAY


def test_completion_date_is_kept():
    first = date(2026, 4, 1)
    updated = complete_day(_progress(current_day=3, completion_date=first), 3, 3, TODAY)
    assert updated["completion_date"] == first


def test_complete_locked_day_raises():
    with pytest.raises(PlanProgressError):
        complete_day(_progress(current_day=2), 3, 7, TODAY)
    with pytest.raises(PlanProgressError):
        complete_day(_progress(current_day=2), 0, 7, TODAY)
    with pytest.raises(PlanProgressError):
        complete_day(_progress(current_day=9), 9, 7, TODAY)


def test_validate_generated_plan_renumbers_and_truncates():
    data = {
        "title": "Hope",
        "description": "A plan about hope",
        "days": [
            {"day_number": 5, "title": "One", "scripture_reference": "Romans 15:13", "reflection_questions": ["Q?"]},
            {"title": "Two", "scripture_reference": "Hebrews 6:19"},
            {"title": "Three", "scripture_reference": "Lamentations 3:22-24"},
            {"title": "Four", "scripture_reference": "Psalm 42:11"},
        ],
    }
    plan = validate_generated_plan(data, 3)
    assert [d["day_number"] for d in plan["days"]] == [1, 2, 3]
    assert plan["days"][0]["reflection_questions"] == ["Q?"]
    assert plan["days"][1]["reflection_questions"] == []


def test_validate_generated_plan_rejects_bad_output():
    with pytest.raises(ValueError):
        validate_generated_plan(None, 7)
    with pytest.raises(ValueError):
        validate_generated_plan({"title": "x", "days": [{"title": "no ref"}]}, 7)
    with pytest.raises(ValueError):
        validate_generated_plan({"title": "x", "days": [{"scripture_reference": "John 1:1"}]}, 7)


def test_complete_route_maps_locked_day_to_400(monkeypatch):
    monkeypatch.setattr(reading_plans, "get_plan", lambda _c, _id, _u: {"id": "p-1", "duration_days": 7})
    monkeypatch.setattr(reading_plans, "get_progress", lambda _c, _u, _p: _progress(current_day=1))

    with pytest.raises(HTTPException) as exc:
        main_mod.complete_reading_day("p-1", 4, current_user=USER, conn=FakeConn())
    assert exc.value.status_code == 400


def test_complete_route_requires_started_plan(monkeypatch):
    monkeypatch.setattr(reading_plans, "get_plan", lambda _c, _id, _u: {"id": "p-1", "duration_days": 7})
    monkeypatch.setattr(reading_plans, "get_progress", lambda _c, _u, _p: None)

    with pytest.raises(HTTPException) as exc:
        main_mod.complete_reading_day("p-1", 1, current_user=USER, conn=FakeConn())
    assert exc.value.status_code == 404


def test_complete_route_saves_progress(monkeypatch):
    saved = {}
    monkeypatch.setattr(reading_plans, "get_plan", lambda _c, _id, _u: {"id": "p-1", "duration_days": 7})
    monkeypatch.setattr(reading_plans, "get_progress", lambda _c, _u, _p: _progress(current_day=1))

    def fake_save(_conn, user_id, plan_id, progress):
        saved.update(progress)
        return progress

    monkeypatch.setattr(reading_plans, "save_progress", fake_save)
    conn = FakeConn()
    result = main_mod.complete_reading_day("p-1", 1, current_user=USER, conn=conn)

    assert saved["current_day"] == 2
    assert result["completed_days"] == [1]
    assert conn.commits == 1


def test_start_premium_plan_requires_subscription(monkeypatch):
    monkeypatch.setattr(reading_plans, "get_plan", lambda _c, _id, _u: {"id": "p-2", "is_premium": True})
    monkeypatch.setattr(billing, "is_pro", lambda _c, _u: False)

    with pytest.raises(HTTPException) as exc:
        main_mod.start_reading_plan("p-2", current_user=USER, conn=FakeConn())
    assert exc.value.status_code == 402


def test_generate_plan_invalid_output_is_502(monkeypatch):
    def bad_plan(*_args, **_kwargs):
        raise ValueError("invalid plan")

    monkeypatch.setattr(reading_plans, "generate_plan", bad_plan)
    payload = PlanGenerateRequest(topic="patience", duration_days=5)
    with pytest.raises(HTTPException) as exc:
        main_mod.generate_reading_plan(payload, current_user=USER, conn=FakeConn())
    assert exc.value.status_code == 502


def test_generate_plan_without_llm_is_503(monkeypatch):
    def no_llm(*_args, **_kwargs):
        raise LLMError("not_configured")

    monkeypatch.setattr(reading_plans, "generate_plan", no_llm)
    payload = PlanGenerateRequest(topic="patience")
    with pytest.raises(HTTPException) as exc:
        main_mod.generate_reading_plan(payload, current_user=USER, conn=FakeConn())
    assert exc.value.status_code == 503


class RecordingCursor:
    def __init__(self, row):
        self.row = row
        self.executed = []

    def execute(self, query, params=None):
        self.executed.append((query, params))

    def fetchone(self):
        return self.row

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        return False


class CursorConn(FakeConn):
    def __init__(self, row=None):
        super().__init__()
        self.cur = RecordingCursor(row)

    def cursor(self, cursor_factory=None):
        return self.cur


def test_get_plan_filters_by_creator():
    conn = CursorConn({"id": "p-9"})
    reading_plans.get_plan(conn, "p-9", "u-1")
    query, params = conn.cur.executed[0]
    assert "created_by IS NULL OR created_by = %s" in query
    assert params == ("p-9", "u-1")


def test_generated_plan_of_another_user_is_hidden(monkeypatch):
    owners = {"p-own": "u-1", "p-foreign": "u-2"}
    lookups = []

    def fake_get_plan(_conn, plan_id, user_id):
        lookups.append(user_id)
        if owners.get(plan_id) != user_id:
            return None
        return {"id": plan_id, "duration_days": 5, "is_premium": False}

    monkeypatch.setattr(reading_plans, "get_plan", fake_get_plan)
    monkeypatch.setattr(reading_plans, "list_readings", lambda _c, _p: [])
    monkeypatch.setattr(reading_plans, "get_progress", lambda _c, _u, _p: None)

    assert main_mod.get_reading_plan("p-own", current_user=USER, conn=FakeConn())["id"] == "p-own"
    for call in (
        lambda: main_mod.get_reading_plan("p-foreign", current_user=USER, conn=FakeConn()),
        lambda: main_mod.get_reading_plan_day("p-foreign", 1, translation=None, current_user=USER, conn=FakeConn()),
        lambda: main_mod.start_reading_plan("p-foreign", current_user=USER, conn=FakeConn()),
        lambda: main_mod.complete_reading_day("p-foreign", 1, current_user=USER, conn=FakeConn()),
    ):
        with pytest.raises(HTTPException) as exc:
            call()
        assert exc.value.status_code == 404
    assert set(lookups) == {"u-1"}
