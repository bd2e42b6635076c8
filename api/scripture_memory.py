from datetime import date, datetime, timezone
from typing import List, Optional

from psycopg2.extras import RealDictCursor

from api.gamification import (
    MASTERY_ACCURACY,
    MAX_MEMORIZED_LEVEL,
    POINTS,
    calculate_level,
    check_achievements,
    level_progress,
    next_review_date,
    next_streak,
    practice_points,
)

VERSE_COLUMNS = """
    id, verse_reference, verse_text, translation, memorized_level, mastery_score,
    practice_count, favorite, last_practiced, next_review, created_at
"""

STATS_COLUMNS = """
    user_id, total_points, xp, level, verses_memorized, current_streak,
    longest_streak, last_practice_date, achievements_count, updated_at
"""


def list_verses(conn, user_id: str, favorites_only: bool = False) -> List[dict]:
    with conn.cursor(cursor_factory=RealDictCursor) as cur:
        cur.execute(
            f"""
            SELECT {VERSE_COLUMNS}
            FROM scripture_memory
            WHERE user_id = %s AND (%s = false OR favorite = true)
            ORDER BY next_review NULLS FIRST, created_at DESC
            """,
            (user_id, favorites_only),
        )
        return cur.fetchall()


def get_verse(conn, user_id: str, verse_id: str) -> Optional[dict]:
    with conn.cursor(cursor_factory=RealDictCursor) as cur:
        cur.execute(
            f"""
            SELECT {VERSE_COLUMNS}
            FROM scripture_memory
            WHERE id = %s AND user_id = %s
            """,
            (verse_id, user_id),
        )
        return cur.fetchone()


def add_verse(conn, user_id: str, reference: str, text: str, translation: str) -> dict:
    with conn.cursor(cursor_factory=RealDictCursor) as cur:
        cur.execute(
            f"""
            INSERT INTO scripture_memory (user_id, verse_reference, verse_text, translation, next_review)
            VALUES (%s, %s, %s, %s, CURRENT_DATE)
            RETURNING {VERSE_COLUMNS}
            """,
            (user_id, reference, text, translation),
        )
        verse = cur.fetchone()
    award_points(conn, user_id, POINTS["VERSE_ADDED"])
    return verse


def update_verse(conn, user_id: str, verse_id: str, changes: dict) -> Optional[dict]:
    current = get_verse(conn, user_id, verse_id)
    if not current:
        return None
    favorite = current["favorite"] if changes.get("favorite") is None else changes["favorite"]
    verse_text = changes.get("verse_text") or current["verse_text"]
    translation = changes.get("translation") or current["translation"]
    with conn.cursor(cursor_factory=RealDictCursor) as cur:
        cur.execute(
            f"""
            UPDATE scripture_memory
            SET favorite = %s, verse_text = %s, translation = %s, updated_at = now()
            WHERE id = %s AND user_id = %s
            RETURNING {VERSE_COLUMNS}
            """,
            (favorite, verse_text, translation, verse_id, user_id),
        )
        return cur.fetchone()


def delete_verse(conn, user_id: str, verse_id: str) -> bool:
    with conn.cursor() as cur:
        cur.execute(
            """
            DELETE FROM scripture_memory
            WHERE id = %s AND user_id = %s
            """,
            (verse_id, user_id),
        )
        return cur.rowcount > 0


def get_stats(conn, user_id: str) -> dict:
    with conn.cursor(cursor_factory=RealDictCursor) as cur:
        cur.execute(
            """
            INSERT INTO user_scripture_stats (user_id)
            VALUES (%s)
            ON CONFLICT (user_id) DO NOTHING
            """,
            (user_id,),
        )
        cur.execute(
            f"""
            SELECT {STATS_COLUMNS}
            FROM user_scripture_stats
            WHERE user_id = %s
            """,
            (user_id,),
        )
        return cur.fetchone()


def save_stats(conn, stats: dict) -> None:
    with conn.cursor() as cur:
        cur.execute(
            """
            UPDATE user_scripture_stats
            SET total_points = %s,
                xp = %s,
                level = %s,
                verses_memorized = %s,
                current_streak = %s,
                longest_streak = %s,
                last_practice_date = %s,
                achievements_count = %s,
                updated_at = now()
            WHERE user_id = %s
            """,
            (
                stats["total_points"],
                stats["xp"],
                stats["level"],
                stats["verses_memorized"],
                stats["current_streak"],
                stats["longest_streak"],
                stats["last_practice_date"],
                stats["achievements_count"],
                stats["user_id"],
            ),
        )


def add_points(stats: dict, points: int) -> dict:
    stats["total_points"] = int(stats.get("total_points") or 0) + points
    stats["xp"] = int(stats.get("xp") or 0) + points
    stats["level"] = calculate_level(stats["xp"])
    return stats


def award_points(conn, user_id: str, points: int) -> dict:
    stats = add_points(get_stats(conn, user_id), points)
    save_stats(conn, stats)
    return stats


def stats_payload(stats: dict) -> dict:
    progress = level_progress(int(stats.get("xp") or 0))
    last = stats.get("last_practice_date")
    return {
        "total_points": int(stats.get("total_points") or 0),
        "xp": int(stats.get("xp") or 0),
        "level": progress["level"],
        "current_level_xp": progress["current_level_xp"],
        "next_level_xp": progress["next_level_xp"],
        "progress_pct": progress["progress_pct"],
        "verses_memorized": int(stats.get("verses_memorized") or 0),
        "current_streak": int(stats.get("current_streak") or 0),
        "longest_streak": int(stats.get("longest_streak") or 0),
        "last_practice_date": last.isoformat() if last else None,
        "achievements_count": int(stats.get("achievements_count") or 0),
    }


def list_achievement_catalog(conn) -> List[dict]:
    with conn.cursor(cursor_factory=RealDictCursor) as cur:
        cur.execute(
            """
            SELECT id, code, name, description, icon, category, points_reward, unlock_criteria, rarity
            FROM scripture_achievements
            ORDER BY category, points_reward
            """
        )
        return cur.fetchall()


def list_earned_achievements(conn, user_id: str) -> List[dict]:
    with conn.cursor(cursor_factory=RealDictCursor) as cur:
        cur.execute(
            """
            SELECT a.code, ua.earned_at
            FROM user_achievements ua
            JOIN scripture_achievements a ON a.id = ua.achievement_id
            WHERE ua.user_id = %s
            """,
            (user_id,),
        )
        return cur.fetchall()


def award_achievement(conn, user_id: str, achievement: dict) -> bool:
    with conn.cursor() as cur:
        cur.execute(
            """
            INSERT INTO user_achievements (user_id, achievement_id)
            VALUES (%s, %s)
            ON CONFLICT (user_id, achievement_id) DO NOTHING
            """,
            (user_id, achievement["id"]),
        )
        return cur.rowcount > 0


def _insert_session(conn, user_id: str, verse_id: str, game_type: str, accuracy: float, time_spent, points: int) -> None:
    with conn.cursor() as cur:
        cur.execute(
            """
            INSERT INTO scripture_practice_sessions
              (user_id, verse_id, game_type, accuracy, time_spent, points_earned)
            VALUES (%s, %s, %s, %s, %s, %s)
            """,
            (user_id, verse_id, game_type, accuracy, time_spent, points),
        )


def _save_verse_progress(conn, verse: dict, accuracy: float, today: date) -> dict:
    count = int(verse.get("practice_count") or 0) + 1
    previous = float(verse.get("mastery_score") or 0)
    mastery = round(((previous * (count - 1)) + accuracy) / count, 4)
    level = int(verse.get("memorized_level") or 0)
    if accuracy >= MASTERY_ACCURACY and level < MAX_MEMORIZED_LEVEL:
        level += 1
    next_review = next_review_date(level, today)
    with conn.cursor() as cur:
        cur.execute(
            """
            UPDATE scripture_memory
            SET practice_count = %s,
                mastery_score = %s,
                memorized_level = %s,
                last_practiced = now(),
                next_review = %s,
                updated_at = now()
            WHERE id = %s
            """,
            (count, mastery, level, next_review, verse["id"]),
        )
    return {
        "practice_count": count,
        "mastery_score": mastery,
        "memorized_level": level,
        "next_review": next_review,
    }


def record_practice(
    conn,
    user_id: str,
    verse: dict,
    game_type: str,
    accuracy: float,
    time_spent: Optional[int],
    now: Optional[datetime] = None,
) -> dict:
    """Persist a practice session and apply its points, streak and achievements."""
    now = now or datetime.now(timezone.utc)
    today = now.date()
    accuracy = max(0.0, min(float(accuracy), 1.0))
    previous_level = int(verse.get("memorized_level") or 0)
    progress = _save_verse_progress(conn, verse, accuracy, today)
    reached_mastery = previous_level < MAX_MEMORIZED_LEVEL <= progress["memorized_level"]

    stats = get_stats(conn, user_id)
    stats["current_streak"] = next_streak(
        stats.get("last_practice_date"), today, int(stats.get("current_streak") or 0)
    )
    stats["longest_streak"] = max(int(stats.get("longest_streak") or 0), stats["current_streak"])
    stats["last_practice_date"] = today
    if reached_mastery:
        stats["verses_memorized"] = int(stats.get("verses_memorized") or 0) + 1

    breakdown = practice_points(accuracy, stats["current_streak"], reached_mastery)
    session_points = sum(breakdown.values())
    add_points(stats, session_points)
    _insert_session(conn, user_id, verse["id"], game_type, accuracy, time_spent, session_points)

    earned_codes = [row["code"] for row in list_earned_achievements(conn, user_id)]
    unlocked = check_achievements(
        stats,
        {"accuracy": accuracy, "time_spent": time_spent},
        list_achievement_catalog(conn),
        earned_codes,
        now,
    )
    new_achievements = []
    for achievement in unlocked:
        if not award_achievement(conn, user_id, achievement):
            continue
        add_points(stats, POINTS["ACHIEVEMENT_EARNED"] + int(achievement.get("points_reward") or 0))
        stats["achievements_count"] = int(stats.get("achievements_count") or 0) + 1
        new_achievements.append(achievement)
    save_stats(conn, stats)

    return {
        "accuracy": accuracy,
        "points_earned": session_points,
        "points_breakdown": breakdown,
        "verse": progress,
        "new_achievements": new_achievements,
        "stats": stats_payload(stats),
    }


def get_leaderboard(conn, limit: int = 100) -> List[dict]:
    with conn.cursor(cursor_factory=RealDictCursor) as cur:
        cur.execute(
            """
            SELECT s.user_id,
                   COALESCE(NULLIF(p.display_name, ''), NULLIF(p.first_name, ''), 'Anonymous') AS display_name,
                   s.total_points, s.level, s.verses_memorized, s.current_streak,
                   RANK() OVER (ORDER BY s.total_points DESC) AS rank
            FROM user_scripture_stats s
            LEFT JOIN profiles p ON p.user_id = s.user_id
            ORDER BY s.total_points DESC
            LIMIT %s
            """,
            (limit,),
        )
        return cur.fetchall()


def list_active_challenges(conn, user_id: str) -> List[dict]:
    with conn.cursor(cursor_factory=RealDictCursor) as cur:
        cur.execute(
            """
            SELECT c.id, c.title, c.description, c.challenge_type, c.target_value,
                   c.points_reward, c.start_date, c.end_date,
                   COALESCE(p.progress, 0) AS progress,
                   COALESCE(p.is_completed, false) AS is_completed
            FROM scripture_challenges c
            LEFT JOIN user_challenge_progress p
              ON p.challenge_id = c.id AND p.user_id = %s
            WHERE c.is_active = true AND c.end_date >= CURRENT_DATE
            ORDER BY c.end_date
            """,
            (user_id,),
        )
        return cur.fetchall()


def update_challenge_progress(conn, user_id: str, challenge_id: str, progress: int) -> Optional[dict]:
    with conn.cursor(cursor_factory=RealDictCursor) as cur:
        cur.execute(
            """
            SELECT id, target_value, points_reward
            FROM scripture_challenges
            WHERE id = %s AND is_active = true AND end_date >= CURRENT_DATE
            """,
            (challenge_id,),
        )
        challenge = cur.fetchone()
        if not challenge:
            return None
        cur.execute(
            """
            SELECT is_completed
            FROM user_challenge_progress
            WHERE user_id = %s AND challenge_id = %s
            FOR UPDATE
            """,
            (user_id, challenge_id),
        )
        existing = cur.fetchone()
        was_completed = bool(existing and existing["is_completed"])
        completed = progress >= int(challenge["target_value"])
        cur.execute(
            """
            INSERT INTO user_challenge_progress (user_id, challenge_id, progress, is_completed, completed_at)
            VALUES (%s, %s, %s, %s, CASE WHEN %s THEN now() END)
            ON CONFLICT (user_id, challenge_id)
            DO UPDATE SET
              progress = GREATEST(user_challenge_progress.progress, EXCLUDED.progress),
              is_completed = user_challenge_progress.is_completed OR EXCLUDED.is_completed,
              completed_at = COALESCE(user_challenge_progress.completed_at, EXCLUDED.completed_at),
              updated_at = now()
            RETURNING progress, is_completed, completed_at
            """,
            (user_id, challenge_id, progress, completed, completed),
        )
        row = cur.fetchone()
    return {"challenge": challenge, "progress": row, "completed_now": completed and not was_completed}
