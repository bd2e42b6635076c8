# etl/db.py
import psycopg2
from psycopg2.extras import Json, execute_values

UPSERT_ACHIEVEMENT_SQL = """
INSERT INTO scripture_achievements
(code, name, description, icon, category, points_reward, unlock_criteria, rarity)
VALUES %s
ON CONFLICT (code)
DO UPDATE SET
  name = EXCLUDED.name,
  description = EXCLUDED.description,
  icon = EXCLUDED.icon,
  category = EXCLUDED.category,
  points_reward = EXCLUDED.points_reward,
  unlock_criteria = EXCLUDED.unlock_criteria,
  rarity = EXCLUDED.rarity;
"""

UPSERT_PLAN_SQL = """
INSERT INTO bible_reading_plans
(title, description, duration_days, theme, is_premium, is_active)
VALUES (%s, %s, %s, %s, %s, true)
ON CONFLICT (title) WHERE created_by IS NULL
DO UPDATE SET
  description = EXCLUDED.description,
  duration_days = EXCLUDED.duration_days,
  theme = EXCLUDED.theme,
  is_premium = EXCLUDED.is_premium
RETURNING id;
"""

UPSERT_READING_SQL = """
INSERT INTO plan_daily_readings
(plan_id, day_number, title, description, scripture_reference, reflection_questions, prayer_prompt)
VALUES %s
ON CONFLICT (plan_id, day_number)
DO UPDATE SET
  title = EXCLUDED.title,
  description = EXCLUDED.description,
  scripture_reference = EXCLUDED.scripture_reference,
  reflection_questions = EXCLUDED.reflection_questions,
  prayer_prompt = EXCLUDED.prayer_prompt;
"""

UPSERT_CHALLENGE_SQL = """
INSERT INTO scripture_challenges
(title, description, challenge_type, target_value, points_reward, start_date, end_date)
VALUES %s
ON CONFLICT (title, start_date)
DO UPDATE SET
  description = EXCLUDED.description,
  target_value = EXCLUDED.target_value,
  points_reward = EXCLUDED.points_reward,
  end_date = EXCLUDED.end_date;
"""

def get_conn(cfg):
    return psycopg2.connect(**cfg)

def upsert_achievements(conn, achievements):
    rows = [
        (
            a["code"],
            a["name"],
            a["description"],
            a.get("icon"),
            a["category"],
            a["points_reward"],
            Json(a["unlock_criteria"]),
            a.get("rarity", "common"),
        )
        for a in achievements
    ]
    with conn.cursor() as cur:
        execute_values(cur, UPSERT_ACHIEVEMENT_SQL, rows)
    return len(rows)

def upsert_plan(conn, plan):
    with conn.cursor() as cur:
        cur.execute(
            UPSERT_PLAN_SQL,
            (
                plan["title"],
                plan.get("description"),
                len(plan["days"]),
                plan.get("theme"),
                bool(plan.get("is_premium")),
            )
        )
        return cur.fetchone()[0]

def upsert_readings(conn, plan_id, days):
    rows = [
        (
            plan_id,
            d["day_number"],
            d["title"],
            d.get("description"),
            d["scripture_reference"],
            d.get("reflection_questions") or [],
            d.get("prayer_prompt"),
        )
        for d in days
    ]
    with conn.cursor() as cur:
        execute_values(cur, UPSERT_READING_SQL, rows)
    return len(rows)

def upsert_challenges(conn, rows):
    with conn.cursor() as cur:
        execute_values(cur, UPSERT_CHALLENGE_SQL, rows)
    return len(rows)
