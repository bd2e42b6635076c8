import random
from datetime import date, datetime, timezone

import pytest
from fastapi import HTTPException

import api.main as main_mod
from api import notifications, scripture_memory
from api.gamification import (
    build_multiple_choice,
    calculate_accuracy,
    calculate_level,
    check_achievements,
    first_letter_hint,
    generate_fill_in_blanks,
    generate_word_order,
    level_progress,
    next_review_date,
    next_streak,
    practice_points,
    streak_bonus,
)
from api.models import ChallengeProgressRequest, PracticeRequest

VERSE = "For God so loved the world"


def test_calculate_level():
    assert calculate_level(0) == 1
    assert calculate_level(99) == 1
    assert calculate_level(100) == 2
    assert calculate_level(400) == 3
    assert calculate_level(-50) == 1


def test_level_progress():
    progress = level_progress(150)
    assert progress["level"] == 2
    assert progress["current_level_xp"] == 100
    assert progress["next_level_xp"] == 400
    assert progress["progress_pct"] == 16.7


def test_streak_bonus_thresholds():
    assert streak_bonus(2) == 0
    assert streak_bonus(3) == 25
    assert streak_bonus(7) == 50
    assert streak_bonus(30) == 100


def test_next_streak():
    today = date(2026, 5, 6)
    assert next_streak(None, today, 0) == 1
    assert next_streak(date(2026, 5, 5), today, 4) == 5
    assert next_streak(today, today, 4) == 4
    assert next_streak(date(2026, 5, 1), today, 4) == 1


def test_calculate_accuracy_is_positional_and_case_insensitive():
    assert calculate_accuracy("for god, so LOVED the world", VERSE) == 1.0
    assert abs(calculate_accuracy("For God so loved", VERSE) - 4 / 6) < 1e-9
    assert calculate_accuracy("God for so loved the world", VERSE) == 4 / 6
    assert calculate_accuracy("anything", "") == 0.0


def test_fill_in_blanks_counts_by_difficulty():
    medium = generate_fill_in_blanks(VERSE, "medium", random.Random(1))
    hard = generate_fill_in_blanks(VERSE, "hard", random.Random(1))
    assert len(medium["answers"]) == 2
    assert medium["display"].count("____") == 2
    assert len(hard["answers"]) == 3
    assert "so" not in medium["answers"] + hard["answers"]


def test_fill_in_blanks_rounds_up():
    seven = "Trust in the Lord with all thine"
    assert len(generate_fill_in_blanks(seven, "medium", random.Random(2))["answers"]) == 3
    assert len(generate_fill_in_blanks(seven, "easy", random.Random(2))["answers"]) == 2


def test_word_order_is_a_shuffle():
    words = generate_word_order(VERSE, random.Random(3))["words"]
    assert words != VERSE.split()
    assert sorted(words) == sorted(VERSE.split())


def test_first_letter_hint_keeps_punctuation():
    assert first_letter_hint("For God so loved.") == "F G s l."


def test_multiple_choice_includes_answer_once():
    pool = ["John 3:16", "Romans 8:28", "Psalm 23:1", "Romans 8:28", "Isaiah 40:31", "Matthew 11:28"]
    game = build_multiple_choice("John 3:16", pool, random.Random(7))
    assert len(game["options"]) == 4
    assert len(set(game["options"])) == 4
    assert game["options"][game["answer_index"]] == "John 3:16"


def _achievement(code, kind, target):
    return {"id": code, "code": code, "name": code, "points_reward": 100, "unlock_criteria": {"type": kind, "target": target}}


def test_check_achievements():
    catalog = [
        _achievement("first_verse", "verses_memorized", 1),
        _achievement("weekly_warrior", "streak", 7),
        _achievement("perfect_practice", "accuracy", 1.0),
        _achievement("speed_reader", "speed", 60),
        _achievement("early_bird", "time_of_day", "morning"),
        _achievement("weekend_warrior", "day_type", "weekend"),
    ]
    stats = {"verses_memorized": 1, "current_streak": 3}
    session = {"accuracy": 1.0, "time_spent": 45}
    saturday_morning = datetime(2026, 5, 9, 7, 30, tzinfo=timezone.utc)

    unlocked = check_achievements(stats, session, catalog, ["first_verse"], saturday_morning)
    assert [a["code"] for a in unlocked] == ["perfect_practice", "speed_reader", "early_bird", "weekend_warrior"]


def test_next_review_date_spacing():
    today = date(2026, 5, 6)
    assert next_review_date(0, today) == date(2026, 5, 7)
    assert next_review_date(3, today) == date(2026, 5, 13)
    assert next_review_date(9, today) == date(2026, 6, 5)


def test_practice_points_breakdown():
    assert practice_points(0.5, 1, False) == {"practice": 25}
    assert practice_points(1.0, 7, True) == {"practice": 25, "perfect": 100, "streak": 50, "memorized": 200}


class FakeCursor:
    def __init__(self):
        self.queries = []
        self.rowcount = 1

    def execute(self, query, params=None):
        self.queries.append((str(query), params))

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        return False


class FakeConn:
    def __init__(self):
        self._cursor = FakeCursor()

    def cursor(self, cursor_factory=None):
        return self._cursor


def test_record_practice_awards_points_and_achievements(monkeypatch):
    stats = {
        "user_id": "u-1",
        "total_points": 0,
        "xp": 0,
        "level": 1,
        "verses_memorized": 0,
        "current_streak": 2,
        "longest_streak": 2,
        "last_practice_date": date(2026, 5, 5),
        "achievements_count": 0,
    }
    saved = {}
    catalog = [
        {"id": "a-1", "code": "first_verse", "name": "First Steps", "points_reward": 100,
         "unlock_criteria": {"type": "verses_memorized", "target": 1}},
        {"id": "a-2", "code": "perfect_practice", "name": "Perfect Practice", "points_reward": 300,
         "unlock_criteria": {"type": "accuracy", "target": 1.0}},
        {"id": "a-3", "code": "night_owl", "name": "Night Owl", "points_reward": 100,
         "unlock_criteria": {"type": "time_of_day", "target": "night"}},
    ]
    monkeypatch.setattr(scripture_memory, "get_stats", lambda _c, _u: stats)
    monkeypatch.setattr(scripture_memory, "save_stats", lambda _c, s: saved.update(s))
    monkeypatch.setattr(scripture_memory, "list_earned_achievements", lambda _c, _u: [])
    monkeypatch.setattr(scripture_memory, "list_achievement_catalog", lambda _c: catalog)

    verse = {"id": "v-1", "memorized_level": 4, "practice_count": 3, "mastery_score": 0.8}
    now = datetime(2026, 5, 6, 10, 0, tzinfo=timezone.utc)
    result = scripture_memory.record_practice(FakeConn(), "u-1", verse, "typing-test", 1.0, 120, now=now)

    assert result["points_breakdown"] == {"practice": 25, "perfect": 100, "streak": 25, "memorized": 200}
    assert result["points_earned"] == 350
    assert result["verse"]["memorized_level"] == 5
    assert result["verse"]["mastery_score"] == 0.85
    assert result["verse"]["next_review"] == date(2026, 6, 5)
    assert [a["code"] for a in result["new_achievements"]] == ["first_verse", "perfect_practice"]
    assert saved["current_streak"] == 3
    assert saved["verses_memorized"] == 1
    assert saved["achievements_count"] == 2
    assert saved["total_points"] == 950
    assert result["stats"]["level"] == 4


class CommitConn:
    def __init__(self):
        self.commits = 0

    def commit(self):
        self.commits += 1


USER = {"user_id": "u-1", "email": "a@example.com", "is_admin": False}


def test_practice_route_scores_typed_input_and_notifies(monkeypatch):
    seen = {}
    notified = []

    def fake_record(_conn, user_id, verse, game_type, accuracy, time_spent):
        seen.update(accuracy=accuracy, game_type=game_type)
        return {
            "accuracy": accuracy,
            "points_earned": 25,
            "points_breakdown": {"practice": 25},
            "verse": {"memorized_level": 1, "next_review": date(2026, 5, 8)},
            "new_achievements": [{"id": "a-1", "code": "speed_reader", "name": "Speed Reader"}],
            "stats": {},
        }

    monkeypatch.setattr(scripture_memory, "get_verse", lambda _c, _u, _v: {"id": "v-1", "verse_text": VERSE})
    monkeypatch.setattr(scripture_memory, "record_practice", fake_record)
    monkeypatch.setattr(notifications, "notify_user", lambda _c, _u, kind, name=None: notified.append((kind, name)))
    conn = CommitConn()

    payload = PracticeRequest(game_type="typing-test", user_input="For God so loved", time_spent=30)
    result = main_mod.practice_memory_verse("v-1", payload, current_user=USER, conn=conn)

    assert abs(seen["accuracy"] - 4 / 6) < 1e-9
    assert notified == [("achievement", "Speed Reader")]
    assert result["verse"]["next_review"] == "2026-05-08"
    assert conn.commits == 1


def test_practice_route_rejects_unknown_game():
    with pytest.raises(HTTPException) as exc:
        main_mod.practice_memory_verse("v-1", PracticeRequest(game_type="trivia", accuracy=1.0), current_user=USER, conn=CommitConn())
    assert exc.value.status_code == 400


def test_challenge_completion_awards_points_once(monkeypatch):
    awarded = []
    monkeypatch.setattr(
        scripture_memory,
        "update_challenge_progress",
        lambda _c, _u, _cid, progress: {"challenge": {"id": "c-1"}, "progress": {"progress": progress}, "completed_now": True},
    )
    monkeypatch.setattr(scripture_memory, "award_points", lambda _c, _u, points: awarded.append(points))

    result = main_mod.scripture_challenge_progress("c-1", ChallengeProgressRequest(progress=3), current_user=USER, conn=CommitConn())
    assert result["completed_now"] is True
    assert awarded == [500]
