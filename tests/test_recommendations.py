from datetime import date

import pytest
from fastapi import HTTPException

import api.main as main_mod
from api import recommendations
from api.llm import LLMError
from api.models import RecommendationGenerateRequest, RecommendationUpdateRequest


USER = {"user_id": "u-1", "email": "a@example.com", "is_admin": False}


class RecordingCursor:
    def __init__(self, conn):
        self.conn = conn
        self._next = None

    def __enter__(self):
        return self

    def __exit__(self, *_args):
        return False

    def execute(self, sql, params=None):
        self.conn.statements.append((" ".join(sql.split()), params))
        if sql.strip().startswith("INSERT"):
            self._next = {"id": f"r-{len(self.conn.statements)}", "title": params[1], "relevance_score": params[4]}

    def fetchone(self):
        return self._next

    def fetchall(self):
        return []


class FakeConn:
    def __init__(self):
        self.statements = []
        self.commits = 0
        self.rollbacks = 0

    def cursor(self, cursor_factory=None):
        return RecordingCursor(self)

    def commit(self):
        self.commits += 1

    def rollback(self):
        self.rollbacks += 1


@pytest.fixture(autouse=True)
def quiet_events(monkeypatch):
    monkeypatch.setattr(main_mod, "log_api_event", lambda *_args: None)


def test_validate_recommendations_filters_and_clamps():
    items = recommendations.validate_recommendations(
        {
            "recommendations": [
                {"title": "Psalm 23", "description": "Rest in His care", "content_type": "scripture", "relevance_score": 1.4},
                {"title": "Podcast", "description": "Listen", "content_type": "podcast", "relevance_score": 0.9},
                {"title": "Pray daily", "description": " ", "content_type": "prayer"},
                {"title": "Gratitude", "description": "Three thanks a day", "content_type": "habit", "relevance_score": "n/a"},
            ]
        }
    )
    assert items == [
        {"title": "Psalm 23", "description": "Rest in His care", "content_type": "scripture", "relevance_score": 1.0},
        {"title": "Gratitude", "description": "Three thanks a day", "content_type": "habit", "relevance_score": 0.0},
    ]
    with pytest.raises(ValueError):
        recommendations.validate_recommendations({"recommendations": [{"title": "x", "content_type": "podcast"}]})
    with pytest.raises(ValueError):
        recommendations.validate_recommendations(None)


def test_prompt_summarizes_moods_and_journal():
    summary = {"entries": 2, "avg_mood": 6.5, "avg_spiritual": 7.0, "prayer_rate": 0.5, "bible_reading_rate": 1.0}
    journal = [{"title": "Hard week", "tags": ["work", "anxiety"]}, {"title": None, "tags": ["work"]}]
    prompt = recommendations.build_recommendation_prompt(summary, journal, "week")
    assert "prayed on 50% of days" in prompt
    assert "Recent journal titles: Hard week" in prompt
    assert "Journal tags: anxiety, work" in prompt

    empty = dict(summary, entries=0)
    assert "No mood check-ins recorded." in recommendations.build_recommendation_prompt(empty, [], "month")


def test_generate_replaces_only_pending_rows(monkeypatch):
    monkeypatch.setattr(
        recommendations,
        "complete_json",
        lambda _system, _prompt, temperature: {
            "recommendations": [
                {"title": "Psalm 46", "description": "Be still", "content_type": "scripture", "relevance_score": 0.9}
            ]
        },
    )
    conn = FakeConn()
    stored = recommendations.generate_recommendations(conn, "u-1", "week", today=date(2026, 5, 10))

    assert stored == [{"id": "r-4", "title": "Psalm 46", "relevance_score": 0.9}]
    sql = [s for s, _p in conn.statements]
    assert sql[0].startswith("SELECT entry_date")
    assert conn.statements[0][1] == ("u-1", date(2026, 5, 3))
    assert "is_viewed = false AND is_saved = false" in sql[2]
    assert sql[3].startswith("INSERT INTO content_recommendations")


def test_generate_route_rolls_back_on_failure(monkeypatch):
    def broken(_conn, _user_id, _time_range):
        raise LLMError("upstream 500")

    monkeypatch.setattr(recommendations, "generate_recommendations", broken)
    conn = FakeConn()
    with pytest.raises(HTTPException) as exc:
        main_mod.generate_content_recommendations(RecommendationGenerateRequest(), current_user=USER, conn=conn)
    assert exc.value.status_code == 502
    assert conn.rollbacks == 1
    assert conn.commits == 0


def test_generate_route_rejects_unknown_range():
    with pytest.raises(HTTPException) as exc:
        main_mod.generate_content_recommendations(
            RecommendationGenerateRequest(time_range="year"), current_user=USER, conn=FakeConn()
        )
    assert exc.value.status_code == 400


def test_update_route_requires_a_flag_and_ownership(monkeypatch):
    with pytest.raises(HTTPException) as exc:
        main_mod.update_content_recommendation("r-1", RecommendationUpdateRequest(), current_user=USER, conn=FakeConn())
    assert exc.value.status_code == 400

    monkeypatch.setattr(recommendations, "update_flags", lambda _c, _u, _r, _v, _s: None)
    with pytest.raises(HTTPException) as exc:
        main_mod.update_content_recommendation(
            "r-1", RecommendationUpdateRequest(is_saved=True), current_user=USER, conn=FakeConn()
        )
    assert exc.value.status_code == 404
