"""Spiritual analytics: consistency, trends, streaks and insights over a user's recent activity.

The computation functions take plain row dicts (as returned by RealDictCursor) so they can be
exercised without a database; ``get_spiritual_analytics`` ties them to storage and to the
per-day insights cache.
"""
import math
from datetime import date, datetime, timedelta, timezone
from typing import Dict, Iterable, List, Optional

from psycopg2.extras import Json, RealDictCursor

from api.events import log_api_event
from api.llm import LLMError, complete_json

TIME_RANGE_DAYS = {"week": 7, "month": 30, "quarter": 90, "year": 365}
TREND_THRESHOLD = 0.5
PRAYER_TREND_THRESHOLD = 0.15
CORRELATION_THRESHOLD = 0.3
STRONG_CORRELATION = 0.5
INSIGHT_TYPES = ("strength", "growth", "opportunity")

GROWTH_LABELS = {
    "week": ["Sun", "Mon", "Tue", "Wed", "Thu", "Fri", "Sat"],
    "month": ["Week 1", "Week 2", "Week 3", "Week 4"],
    "quarter": [f"Period {i}" for i in range(1, 7)],
    "year": ["Jan", "Feb", "Mar", "Apr", "May", "Jun", "Jul", "Aug", "Sep", "Oct", "Nov", "Dec"],
}

ACTIVITY_QUERIES = {
    "moods": """
        SELECT entry_date, mood_score, spiritual_score, prayer_time, bible_reading, church_attendance
        FROM mood_entries
        WHERE user_id = %s AND entry_date BETWEEN %s AND %s
        ORDER BY entry_date ASC
    """,
    "prayers": """
        SELECT created_at, is_answered
        FROM prayer_requests
        WHERE user_id = %s AND created_at::date BETWEEN %s AND %s
    """,
    "journal": """
        SELECT created_at, mood_score, spiritual_score
        FROM journal_entries
        WHERE user_id = %s AND created_at::date BETWEEN %s AND %s
        ORDER BY created_at ASC
    """,
    "scripture": """
        SELECT created_at
        FROM scripture_practice_sessions
        WHERE user_id = %s AND created_at::date BETWEEN %s AND %s
    """,
    "studies": """
        SELECT created_at
        FROM ai_bible_studies
        WHERE user_id = %s AND created_at::date BETWEEN %s AND %s
    """,
    "devotionals": """
        SELECT created_at
        FROM ai_devotionals
        WHERE user_id = %s AND created_at::date BETWEEN %s AND %s
    """,
    "habits": """
        SELECT completed_date, habit_id
        FROM habit_logs
        WHERE user_id = %s AND completed_date BETWEEN %s AND %s
    """,
    "reading": """
        SELECT created_at
        FROM reading_reflections
        WHERE user_id = %s AND created_at::date BETWEEN %s AND %s
    """,
}


def _as_date(value) -> Optional[date]:
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return date.fromisoformat(str(value)[:10])


def entry_day(entry: dict) -> Optional[date]:
    for key in ("entry_date", "completed_date", "created_at"):
        if entry.get(key) is not None:
            return _as_date(entry[key])
    return None


def _by_day(entries: Iterable[dict]) -> List[dict]:
    return sorted((e for e in entries if entry_day(e)), key=entry_day)


def average(entries: List[dict], key: str) -> float:
    values = [e[key] for e in entries if e.get(key) is not None]
    if not values:
        return 0.0
    return sum(values) / len(values)


def _halves(entries: List[dict]):
    mid = len(entries) // 2
    return entries[:mid], entries[mid:]


def determine_trend(entries: List[dict], key: str) -> str:
    if len(entries) < 3:
        return "stable"
    first, second = _halves(_by_day(entries))
    diff = sum(e.get(key) or 0 for e in second) / len(second) - sum(e.get(key) or 0 for e in first) / len(first)
    if diff > TREND_THRESHOLD:
        return "improving"
    if diff < -TREND_THRESHOLD:
        return "declining"
    return "stable"


def consistency_trend(entries: List[dict]) -> str:
    """Compares active-day density between the first and second half of the entries."""
    if len(entries) < 3:
        return "stable"

    def _density(half: List[dict]) -> float:
        days = [entry_day(e) for e in half]
        span = (days[-1] - days[0]).days + 1
        return len(set(days)) / span

    first, second = _halves(_by_day(entries))
    diff = _density(second) - _density(first)
    if diff > TREND_THRESHOLD:
        return "improving"
    if diff < -TREND_THRESHOLD:
        return "declining"
    return "stable"


def overall_trend(moods: List[dict]) -> str:
    if len(moods) < 3:
        return "stable"
    mood = determine_trend(moods, "mood_score")
    spiritual = determine_trend(moods, "spiritual_score")
    if mood == spiritual:
        return mood
    if mood == "stable":
        return spiritual
    if spiritual == "stable":
        return mood
    return "stable"


def prayer_trend(moods: List[dict]) -> str:
    if len(moods) < 3:
        return "stable"
    first, second = _halves(_by_day(moods))
    diff = sum(1 for e in second if e.get("prayer_time")) / len(second) - sum(
        1 for e in first if e.get("prayer_time")
    ) / len(first)
    if diff > PRAYER_TREND_THRESHOLD:
        return "improving"
    if diff < -PRAYER_TREND_THRESHOLD:
        return "declining"
    return "stable"


def activity_streaks(days: Iterable[date], today: date) -> Dict[str, int]:
    """Longest run of consecutive active days, and the run ending today or yesterday."""
    ordered = sorted(set(days))
    if not ordered:
        return {"current": 0, "longest": 0}
    longest = run = 1
    for prev, curr in zip(ordered, ordered[1:]):
        run = run + 1 if (curr - prev).days == 1 else 1
        longest = max(longest, run)

    active = set(ordered)
    cursor = today if today in active else today - timedelta(days=1)
    current = 0
    while cursor in active:
        current += 1
        cursor -= timedelta(days=1)
    return {"current": current, "longest": longest}


def church_consistency(moods: List[dict]) -> float:
    if not moods:
        return 0.0
    weeks = math.ceil(len(moods) / 7)
    attended = sum(1 for e in moods if e.get("church_attendance"))
    return min(1.0, attended / weeks)


def wellbeing_series(moods: List[dict], journal: List[dict], time_range: str) -> List[dict]:
    points = {}
    for entry in moods:
        day = entry_day(entry)
        points[day] = {"mood": entry.get("mood_score"), "spiritual": entry.get("spiritual_score")}
    for entry in journal:
        if not entry.get("mood_score") and not entry.get("spiritual_score"):
            continue
        day = entry_day(entry)
        if day not in points:
            points[day] = {"mood": entry.get("mood_score"), "spiritual": entry.get("spiritual_score")}
    series = []
    for day in sorted(points):
        label = day.strftime("%a") if time_range == "week" else f"{day:%b} {day.day}"
        series.append({"date": day.isoformat(), "label": label, **points[day]})
    return series


def disciplines(moods: List[dict], habit_logs: List[dict]) -> List[dict]:
    if not moods:
        return []
    count = len(moods)

    def _pct(key: str) -> int:
        return round(sum(1 for e in moods if e.get(key)) / count * 100)

    habit_days = {entry_day(log) for log in habit_logs}
    return [
        {"name": "Prayer", "percentage": _pct("prayer_time")},
        {"name": "Bible", "percentage": _pct("bible_reading")},
        {"name": "Church", "percentage": _pct("church_attendance")},
        {"name": "Habits", "percentage": round(len(habit_days) / count * 100)},
    ]


def correlation(xs: List[float], ys: List[float]) -> float:
    """Pearson coefficient; 0 when either side has no variance."""
    if len(xs) != len(ys) or not xs:
        return 0.0
    x_mean = sum(xs) / len(xs)
    y_mean = sum(ys) / len(ys)
    cov = sum((x - x_mean) * (y - y_mean) for x, y in zip(xs, ys))
    x_var = sum((x - x_mean) ** 2 for x in xs)
    y_var = sum((y - y_mean) ** 2 for y in ys)
    if not x_var or not y_var:
        return 0.0
    return cov / math.sqrt(x_var * y_var)


def correlations(moods: List[dict]) -> dict:
    if len(moods) < 3:
        return {"activities": [], "insights": ["Not enough data to analyze correlations yet."]}

    def _flag(key: str) -> List[int]:
        return [1 if e.get(key) else 0 for e in moods]

    spiritual = [e["spiritual_score"] for e in moods]
    mood = [e["mood_score"] for e in moods]
    prayer = correlation(_flag("prayer_time"), spiritual)
    bible = correlation(_flag("bible_reading"), spiritual)
    church = correlation(_flag("church_attendance"), spiritual)
    prayer_mood = correlation(_flag("prayer_time"), mood)
    bible_mood = correlation(_flag("bible_reading"), mood)

    insights = []
    if prayer > CORRELATION_THRESHOLD:
        insights.append("Prayer appears to significantly strengthen your spiritual wellbeing.")
    if bible > CORRELATION_THRESHOLD:
        insights.append("Bible reading has a strong positive impact on your spiritual state.")
    if church > CORRELATION_THRESHOLD:
        insights.append("Church attendance correlates well with your spiritual growth.")
    if prayer_mood > CORRELATION_THRESHOLD:
        insights.append("Prayer seems to positively impact your emotional wellbeing as well.")
    if bible_mood > CORRELATION_THRESHOLD:
        insights.append("Bible reading appears to boost both your spiritual and emotional health.")
    if prayer > STRONG_CORRELATION and bible > STRONG_CORRELATION:
        insights.append(
            "The combination of prayer and Bible reading shows an especially strong impact on your spiritual life."
        )
    if not insights:
        insights.append(
            "Your spiritual practices show potential connections to your wellbeing, "
            "but more data will help clarify these patterns."
        )
    return {
        "activities": [
            {"name": "Prayer", "value": round(prayer, 2)},
            {"name": "Bible Reading", "value": round(bible, 2)},
            {"name": "Church Attendance", "value": round(church, 2)},
        ],
        "insights": insights,
    }


def day_of_week_pattern(entries: Iterable[dict]) -> List[float]:
    """Activity per weekday, Sunday first, scaled so the busiest day is 1.0."""
    counts = [0] * 7
    for entry in entries:
        day = entry_day(entry)
        if day:
            counts[(day.weekday() + 1) % 7] += 1
    peak = max(counts)
    if not peak:
        return [0.0] * 7
    return [round(c / peak, 2) for c in counts]


def growth_pattern(moods: List[dict], time_range: str) -> List[dict]:
    if len(moods) < 2:
        return [{"label": "Start", "value": 5.0}, {"label": "Now", "value": 5.0}]
    labels = GROWTH_LABELS.get(time_range, GROWTH_LABELS["year"])
    ordered = _by_day(moods)
    size = len(ordered) / len(labels)
    buckets = [[] for _ in labels]
    for idx, entry in enumerate(ordered):
        buckets[min(len(labels) - 1, int(idx / size))].append(entry)

    values = [round(average(b, "spiritual_score"), 2) if b else None for b in buckets]
    out = []
    for idx, label in enumerate(labels):
        value = values[idx]
        if value is None:
            earlier = [v for v in values[:idx] if v is not None]
            later = [v for v in values[idx + 1:] if v is not None]
            value = earlier[-1] if earlier else (later[0] if later else 5.0)
        out.append({"label": label, "value": value})
    return out


def positive_trends(trends: dict, activity: dict, averages: dict, streaks: dict, total_entries: int) -> List[str]:
    positives = []
    if trends["spiritual"] == "improving":
        positives.append("Your spiritual wellbeing is on an upward trajectory")
    if trends["mood"] == "improving":
        positives.append("Your emotional wellbeing is improving")
    if trends["consistency"] == "improving":
        positives.append("Your consistency in spiritual practices is growing")
    if trends["prayer"] == "improving":
        positives.append("Your prayer life is becoming more consistent")
    if streaks["current"] > 3:
        positives.append(f"You have a {streaks['current']}-day streak of spiritual activity")
    if averages["spiritual"] >= 7:
        positives.append("Your spiritual wellbeing score is strong")
    if activity["prayer_requests"] and activity["answered_prayers"] / activity["prayer_requests"] > 0.5:
        positives.append(f"You've seen {activity['answered_prayers']} answered prayers recently")
    if activity["journal_entries"] > 5:
        positives.append("You're actively journaling your spiritual journey")
    if activity["bible_reading_days"] > activity["prayer_days"] and activity["bible_reading_days"] > 5:
        positives.append("Bible reading is a consistent strength for you")
    elif activity["prayer_days"] > activity["bible_reading_days"] and activity["prayer_days"] > 5:
        positives.append("Prayer is a strong foundation in your spiritual life")
    if len(positives) < 2:
        if total_entries:
            positives.append("You're actively tracking your spiritual journey")
        if activity["scripture_practice"]:
            positives.append("You're growing in scripture knowledge")
        if activity["church_days"]:
            positives.append("You're maintaining connection with your faith community")
    return positives[:3]


def growth_opportunities(trends: dict, activity: dict, averages: dict, consistency: dict) -> List[str]:
    items = []
    if trends["spiritual"] == "declining":
        items.append("Your spiritual wellbeing could use some focused attention")
    if trends["prayer"] == "declining" or consistency["prayer"] < 0.3:
        items.append("Increasing prayer consistency could strengthen your spiritual life")
    if consistency["bible_reading"] < 0.3:
        items.append("More regular Bible reading would deepen your faith foundation")
    if consistency["church"] < 0.5:
        items.append("Connecting more consistently with your faith community")
    if not activity["journal_entries"]:
        items.append("Starting a spiritual journal could help track your growth")
    if averages["spiritual"] < 5:
        items.append("Your spiritual wellbeing score indicates room for renewal")
    if consistency["overall"] < 0.4:
        items.append("Developing more consistent spiritual habits")
    if not activity["bible_studies"]:
        items.append("Adding Bible study to your practices could deepen understanding")
    if not activity["scripture_practice"]:
        items.append("Scripture memorization would strengthen your spiritual foundation")
    if len(items) < 2:
        items.append("Setting specific spiritual growth goals for the coming month")
        items.append("Exploring new spiritual disciplines to enrich your practice")
    return items[:3]


def compute_analytics(data: Dict[str, List[dict]], time_range: str, today: date) -> dict:
    """Build the analytics document from activity rows grouped as in ACTIVITY_QUERIES."""
    days_back = TIME_RANGE_DAYS.get(time_range, TIME_RANGE_DAYS["month"])
    total_days = days_back + 1
    moods = data.get("moods") or []
    journal = data.get("journal") or []
    habit_logs = data.get("habits") or []
    prayer_rows = data.get("prayers") or []
    tracked = ("moods", "journal", "scripture", "studies", "devotionals", "habits", "reading")

    total_entries = sum(len(data.get(key) or []) for key in tracked)
    active_days = {entry_day(e) for key in tracked for e in (data.get(key) or [])}
    active_days.discard(None)

    def _days_with(key: str) -> int:
        return sum(1 for e in moods if e.get(key))

    consistency = {
        "overall": round(len(active_days) / total_days, 2),
        "prayer": round(_days_with("prayer_time") / total_days, 2),
        "bible_reading": round(_days_with("bible_reading") / total_days, 2),
        "church": round(church_consistency(moods), 2),
        "scripture_memory": round(len(data.get("scripture") or []) / total_days, 2),
        "journaling": round(len(journal) / total_days, 2),
    }
    averages = {
        "mood": round(average(moods, "mood_score"), 2),
        "spiritual": round(average(moods, "spiritual_score"), 2),
    }
    trends = {
        "overall": overall_trend(moods),
        "mood": determine_trend(moods, "mood_score"),
        "spiritual": determine_trend(moods, "spiritual_score"),
        "consistency": consistency_trend(moods + journal + habit_logs),
        "prayer": prayer_trend(moods),
    }
    streaks = activity_streaks(active_days, today)
    activity = {
        "journal_entries": len(journal),
        "bible_studies": len(data.get("studies") or []),
        "devotionals": len(data.get("devotionals") or []),
        "scripture_practice": len(data.get("scripture") or []),
        "prayer_requests": len(prayer_rows),
        "answered_prayers": sum(1 for p in prayer_rows if p.get("is_answered")),
        "habit_logs": len(habit_logs),
        "reading_reflections": len(data.get("reading") or []),
        "prayer_days": _days_with("prayer_time"),
        "bible_reading_days": _days_with("bible_reading"),
        "church_days": _days_with("church_attendance"),
    }
    return {
        "time_range": time_range,
        "start_date": (today - timedelta(days=days_back)).isoformat(),
        "end_date": today.isoformat(),
        "total_entry_count": total_entries,
        "activity_days_count": len(active_days),
        "total_days": total_days,
        "consistency": consistency,
        "wellbeing_data": wellbeing_series(moods, journal, time_range),
        "averages": averages,
        "trends": trends,
        "streaks": streaks,
        "disciplines": disciplines(moods, habit_logs),
        "activity": activity,
        "correlations": correlations(moods),
        "patterns": {
            "day_of_week": day_of_week_pattern(moods + journal + habit_logs),
            "growth": growth_pattern(moods, time_range),
            "positives": positive_trends(trends, activity, averages, streaks, total_entries),
            "opportunities": growth_opportunities(trends, activity, averages, consistency),
        },
    }


def static_insights(analytics: dict) -> List[dict]:
    insights = []
    if analytics["trends"]["spiritual"] == "improving":
        insights.append(
            {
                "type": "strength",
                "title": "Growing Spiritual Health",
                "content": "Your spiritual wellbeing scores have been trending upward, showing that your "
                "practices are bearing fruit in your life.",
                "scripture": {
                    "reference": "Galatians 6:9",
                    "text": "Let us not become weary in doing good, for at the proper time we will reap "
                    "a harvest if we do not give up.",
                },
            }
        )
    elif analytics["consistency"]["overall"] > 0.6:
        pct = round(analytics["consistency"]["overall"] * 100)
        insights.append(
            {
                "type": "strength",
                "title": "Consistent Spiritual Practices",
                "content": f"You've been remarkably consistent in your spiritual activities, logging activity "
                f"on {pct}% of days in this period.",
                "scripture": {
                    "reference": "1 Corinthians 15:58",
                    "text": "Therefore, my dear brothers and sisters, stand firm. Let nothing move you.",
                },
            }
        )

    patterns = analytics["patterns"]
    if patterns["positives"]:
        insights.append(
            {
                "type": "growth",
                "title": "Positive Growth Trajectory",
                "content": patterns["positives"][0],
                "scripture": {
                    "reference": "Philippians 1:6",
                    "text": "He who began a good work in you will carry it on to completion until the day "
                    "of Christ Jesus.",
                },
            }
        )
    elif analytics["streaks"]["current"] > 3:
        insights.append(
            {
                "type": "growth",
                "title": "Building Momentum",
                "content": f"You're currently on a {analytics['streaks']['current']}-day streak of spiritual "
                "activity. Consistency is key to long-term spiritual growth.",
                "scripture": {
                    "reference": "Hebrews 12:1",
                    "text": "Let us run with perseverance the race marked out for us.",
                },
            }
        )

    if patterns["opportunities"]:
        insights.append(
            {
                "type": "opportunity",
                "title": "Growth Opportunity",
                "content": patterns["opportunities"][0],
                "scripture": {
                    "reference": "2 Peter 3:18",
                    "text": "But grow in the grace and knowledge of our Lord and Savior Jesus Christ.",
                },
            }
        )
    else:
        insights.append(
            {
                "type": "opportunity",
                "title": "Next Steps in Your Journey",
                "content": "Consider setting specific spiritual goals for the coming weeks to build on your "
                "current foundation.",
                "scripture": {
                    "reference": "Proverbs 16:9",
                    "text": "In their hearts humans plan their course, but the LORD establishes their steps.",
                },
            }
        )
    return insights


INSIGHTS_SYSTEM_PROMPT = (
    "You are TrueNorth, a pastoral coach reviewing a person's spiritual activity statistics. Respond only "
    'with JSON: {"insights": [{"type": "strength" | "growth" | "opportunity", "title": string, '
    '"content": string, "scripture": {"reference": string, "text": string}}]}. Give three insights, one '
    "of each type, warm and specific to the numbers."
)


def _insights_prompt(analytics: dict) -> str:
    return "\n".join(
        [
            f"Period: {analytics['time_range']} ({analytics['total_days']} days)",
            f"Active days: {analytics['activity_days_count']}",
            f"Averages: {analytics['averages']}",
            f"Trends: {analytics['trends']}",
            f"Streaks: {analytics['streaks']}",
            f"Consistency: {analytics['consistency']}",
            f"Activity: {analytics['activity']}",
        ]
    )


def validate_insights(data: Optional[dict]) -> List[dict]:
    raw = (data or {}).get("insights")
    if not isinstance(raw, list):
        raise ValueError("invalid insights")
    insights = []
    for item in raw:
        if not isinstance(item, dict) or item.get("type") not in INSIGHT_TYPES:
            continue
        if not item.get("title") or not item.get("content"):
            continue
        scripture = item.get("scripture") if isinstance(item.get("scripture"), dict) else None
        insights.append(
            {
                "type": item["type"],
                "title": str(item["title"]),
                "content": str(item["content"]),
                "scripture": {
                    "reference": str(scripture.get("reference") or ""),
                    "text": str(scripture.get("text") or ""),
                }
                if scripture
                else None,
            }
        )
    if not insights:
        raise ValueError("invalid insights")
    return insights


def generate_insights(analytics: dict) -> List[dict]:
    """Raises LLMError on provider failure and ValueError on unusable output."""
    return validate_insights(complete_json(INSIGHTS_SYSTEM_PROMPT, _insights_prompt(analytics), temperature=0.6))


def fetch_activity(conn, user_id: str, start: date, end: date) -> Dict[str, List[dict]]:
    data = {}
    with conn.cursor(cursor_factory=RealDictCursor) as cur:
        for key, query in ACTIVITY_QUERIES.items():
            cur.execute(query, (user_id, start, end))
            data[key] = cur.fetchall()
    return data


def get_cached_insights(conn, user_id: str, time_range: str) -> Optional[dict]:
    with conn.cursor(cursor_factory=RealDictCursor) as cur:
        cur.execute(
            """
            SELECT insights, analytics_data, generated_at
            FROM user_insights_cache
            WHERE user_id = %s AND time_range = %s
            """,
            (user_id, time_range),
        )
        return cur.fetchone()


def save_insights_cache(conn, user_id: str, time_range: str, insights: List[dict], analytics: dict) -> None:
    with conn.cursor() as cur:
        cur.execute(
            """
            INSERT INTO user_insights_cache (user_id, time_range, insights, analytics_data, generated_at)
            VALUES (%s, %s, %s, %s, now())
            ON CONFLICT (user_id, time_range)
            DO UPDATE SET insights = EXCLUDED.insights,
                          analytics_data = EXCLUDED.analytics_data,
                          generated_at = EXCLUDED.generated_at
            """,
            (user_id, time_range, Json(insights), Json(analytics)),
        )


def get_spiritual_analytics(
    conn,
    user_id: str,
    time_range: str = "month",
    use_ai: bool = False,
    now: Optional[datetime] = None,
) -> dict:
    """Analytics plus insights; AI insights are cached per user, range and UTC day.

    Without AI, or when generation fails, the last cached insights are reused and
    otherwise rule-based insights are returned. The caller commits.
    """
    now = now or datetime.now(timezone.utc)
    today = now.date()
    cached = get_cached_insights(conn, user_id, time_range) if use_ai else None
    if cached and cached.get("generated_at") and cached["generated_at"].astimezone(timezone.utc).date() == today:
        analytics = dict(cached["analytics_data"])
        analytics["insights"] = cached["insights"]
        analytics["insights_source"] = "cache"
        return analytics

    start = today - timedelta(days=TIME_RANGE_DAYS.get(time_range, TIME_RANGE_DAYS["month"]))
    analytics = compute_analytics(fetch_activity(conn, user_id, start, today), time_range, today)

    if use_ai:
        try:
            insights = generate_insights(analytics)
        except (LLMError, ValueError) as exc:
            log_api_event("analytics_insights_failed", {"reason": str(exc)})
        else:
            save_insights_cache(conn, user_id, time_range, insights, analytics)
            return {**analytics, "insights": insights, "insights_source": "ai"}
        if cached and cached.get("insights"):
            return {**analytics, "insights": cached["insights"], "insights_source": "cache"}
    return {**analytics, "insights": static_insights(analytics), "insights_source": "static"}
