# etl/utils.py
import json
import re
from datetime import date, timedelta

def load_catalog(path: str) -> dict:
    with open(path, encoding="utf-8") as f:
        return json.load(f)

def clean_text(s: str) -> str:
    s = (s or "").replace("\xa0", " ")
    return re.sub(r"\s+", " ", s).strip()

def week_bounds(day: date):
    """Monday..Sunday of the week containing day."""
    start = day - timedelta(days=day.weekday())
    return start, start + timedelta(days=6)

def validate_plan(plan: dict):
    """
    Day numbers must run 1..N without gaps so every unlocked day has a reading.
    """
    numbers = sorted(d["day_number"] for d in plan.get("days") or [])
    if not numbers:
        raise ValueError(f"plan has no days: {plan.get('title')}")
    if numbers != list(range(1, len(numbers) + 1)):
        raise ValueError(f"plan days are not contiguous: {plan.get('title')}")

def challenge_rows(templates, today: date, weeks_ahead: int = 0):
    rows = []
    start, _ = week_bounds(today)
    for week in range(weeks_ahead + 1):
        week_start = start + timedelta(weeks=week)
        week_end = week_start + timedelta(days=6)
        for t in templates:
            rows.append((
                clean_text(t["title"]),
                clean_text(t.get("description")),
                t["challenge_type"],
                int(t["target_value"]),
                int(t.get("points_reward", 0)),
                week_start,
                week_end,
            ))
    return rows
