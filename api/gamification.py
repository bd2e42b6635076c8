"""Scoring rules for scripture memorization: points, levels, streaks and achievements."""
import math
import random
import re
from datetime import date, datetime, timedelta
from typing import Dict, Iterable, List, Optional

POINTS = {
    "VERSE_ADDED": 50,
    "VERSE_MEMORIZED": 200,
    "PRACTICE_COMPLETED": 25,
    "PERFECT_ACCURACY": 100,
    "STREAK_BONUS": 10,
    "CHALLENGE_COMPLETED": 500,
    "ACHIEVEMENT_EARNED": 100,
}

MAX_MEMORIZED_LEVEL = 5
MASTERY_ACCURACY = 0.9
REVIEW_INTERVAL_DAYS = [1, 2, 4, 7, 14, 30]
BLANK_RATIOS = {"easy": 0.2, "medium": 0.3, "hard": 0.4}
BLANK = "____"

PRACTICE_GAMES = [
    {
        "id": "fill-blanks",
        "name": "Fill in the Blanks",
        "description": "Complete the verse by filling in missing words",
        "difficulty": "easy",
        "points": 25,
    },
    {
        "id": "word-order",
        "name": "Word Order",
        "description": "Arrange the words in the correct order",
        "difficulty": "medium",
        "points": 35,
    },
    {
        "id": "typing-test",
        "name": "Type It Out",
        "description": "Type the entire verse from memory",
        "difficulty": "hard",
        "points": 50,
    },
    {
        "id": "multiple-choice",
        "name": "Multiple Choice",
        "description": "Choose the correct reference for the verse",
        "difficulty": "easy",
        "points": 20,
    },
    {
        "id": "first-letter",
        "name": "First Letter",
        "description": "Recall the verse using only the first letter of each word",
        "difficulty": "medium",
        "points": 40,
    },
]
GAME_IDS = {g["id"] for g in PRACTICE_GAMES}

# multiple-choice distractors when the user has few verses of their own
COMMON_REFERENCES = [
    "John 3:16",
    "Romans 8:28",
    "Philippians 4:13",
    "Jeremiah 29:11",
    "Proverbs 3:5-6",
    "Psalm 23:1",
    "Isaiah 40:31",
    "Matthew 11:28",
]


def calculate_level(xp: int) -> int:
    return int(math.floor(math.sqrt(max(xp, 0) / 100))) + 1


def xp_for_level(level: int) -> int:
    return ((max(level, 1) - 1) ** 2) * 100


def level_progress(xp: int) -> dict:
    level = calculate_level(xp)
    current_level_xp = xp_for_level(level)
    next_level_xp = xp_for_level(level + 1)
    span = next_level_xp - current_level_xp
    pct = ((xp - current_level_xp) / span) * 100 if span else 0
    return {
        "level": level,
        "current_level_xp": current_level_xp,
        "next_level_xp": next_level_xp,
        "progress_pct": round(min(pct, 100.0), 1),
    }


def streak_bonus(streak: int) -> int:
    if streak >= 30:
        return 100
    if streak >= 7:
        return 50
    if streak >= 3:
        return 25
    return 0


def next_streak(last_practice: Optional[date], today: date, current: int) -> int:
    if last_practice is None:
        return 1
    if last_practice == today:
        return max(current, 1)
    if last_practice == today - timedelta(days=1):
        return current + 1
    return 1


def _words(text: str) -> List[str]:
    return [w for w in re.split(r"\s+", (text or "").strip().lower()) if w]


def _bare(word: str) -> str:
    return re.sub(r"[^\w']", "", word)


def calculate_accuracy(user_input: str, correct: str) -> float:
    correct_words = [_bare(w) for w in _words(correct)]
    if not correct_words:
        return 0.0
    user_words = [_bare(w) for w in _words(user_input)]
    matches = sum(1 for i, word in enumerate(correct_words) if i < len(user_words) and user_words[i] == word)
    return matches / len(correct_words)


def generate_fill_in_blanks(text: str, difficulty: str = "medium", rng: Optional[random.Random] = None) -> dict:
    rng = rng or random.Random()
    words = (text or "").split()
    ratio = BLANK_RATIOS.get(difficulty, BLANK_RATIOS["medium"])
    candidates = [i for i, w in enumerate(words) if len(_bare(w)) > 2]
    count = min(len(candidates), max(1, math.ceil(len(words) * ratio))) if candidates else 0
    chosen = sorted(rng.sample(candidates, count)) if count else []
    display = list(words)
    answers = []
    for i in chosen:
        answers.append(_bare(words[i]))
        display[i] = words[i].replace(_bare(words[i]), BLANK, 1)
    return {"display": " ".join(display), "answers": answers, "blank_indexes": chosen}


def generate_word_order(text: str, rng: Optional[random.Random] = None) -> dict:
    rng = rng or random.Random()
    words = (text or "").split()
    shuffled = list(words)
    if len(set(words)) > 1:
        while shuffled == words:
            rng.shuffle(shuffled)
    return {"words": shuffled}


def first_letter_hint(text: str) -> str:
    hints = []
    for word in (text or "").split():
        bare = _bare(word)
        if not bare:
            hints.append(word)
            continue
        hints.append(word.replace(bare, bare[0], 1))
    return " ".join(hints)


def build_multiple_choice(reference: str, distractors: Iterable[str], rng: Optional[random.Random] = None) -> dict:
    rng = rng or random.Random()
    pool = [d for d in dict.fromkeys(distractors) if d and d != reference]
    options = rng.sample(pool, min(3, len(pool))) + [reference]
    rng.shuffle(options)
    return {"options": options, "answer_index": options.index(reference)}


def _criteria_met(criteria: dict, stats: dict, session: dict, now: datetime) -> bool:
    kind = criteria.get("type")
    target = criteria.get("target")
    if kind == "verses_memorized":
        return int(stats.get("verses_memorized") or 0) >= int(target)
    if kind == "streak":
        return int(stats.get("current_streak") or 0) >= int(target)
    if kind == "accuracy":
        return float(session.get("accuracy") or 0) >= float(target)
    if kind == "speed":
        spent = session.get("time_spent")
        return spent is not None and int(spent) <= int(target)
    if kind == "time_of_day":
        if target == "morning":
            return now.hour < 8
        if target == "night":
            return now.hour >= 22
        return False
    if kind == "day_type":
        return target == "weekend" and now.weekday() >= 5
    return False


def check_achievements(
    stats: dict,
    session: dict,
    achievements: List[dict],
    earned_codes: Iterable[str],
    now: datetime,
) -> List[dict]:
    """Return the achievements newly unlocked by this practice session."""
    earned = set(earned_codes)
    unlocked = []
    for achievement in achievements:
        if achievement["code"] in earned:
            continue
        if _criteria_met(achievement.get("unlock_criteria") or {}, stats, session, now):
            unlocked.append(achievement)
    return unlocked


def next_review_date(level: int, today: date) -> date:
    idx = min(max(level, 0), len(REVIEW_INTERVAL_DAYS) - 1)
    return today + timedelta(days=REVIEW_INTERVAL_DAYS[idx])


def practice_points(accuracy: float, streak: int, reached_mastery: bool) -> Dict[str, int]:
    breakdown = {"practice": POINTS["PRACTICE_COMPLETED"]}
    if accuracy >= 1.0:
        breakdown["perfect"] = POINTS["PERFECT_ACCURACY"]
    bonus = streak_bonus(streak)
    if bonus:
        breakdown["streak"] = bonus
    if reached_mastery:
        breakdown["memorized"] = POINTS["VERSE_MEMORIZED"]
    return breakdown
