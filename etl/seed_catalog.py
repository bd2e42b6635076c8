# etl/seed_catalog.py
from datetime import date

from etl.config import DB, CATALOG_PATH, CHALLENGE_WEEKS_AHEAD
from etl.utils import load_catalog, clean_text, validate_plan, challenge_rows
from etl.db import (
    get_conn, upsert_achievements, upsert_plan,
    upsert_readings, upsert_challenges
)

def main():
    catalog = load_catalog(CATALOG_PATH)
    conn = get_conn(DB)
    conn.autocommit = False

    try:
        count = upsert_achievements(conn, catalog.get("achievements") or [])
        conn.commit()
        print(f"OK achievements={count}")

        for plan in catalog.get("reading_plans") or []:
            try:
                validate_plan(plan)
            except ValueError as e:
                print(f"WARN skip plan err={e}", flush=True)
                continue
            plan = {**plan, "title": clean_text(plan["title"])}
            plan_id = upsert_plan(conn, plan)
            days = upsert_readings(conn, plan_id, plan["days"])
            conn.commit()
            print(f"OK plan={plan['title']} days={days}")

        rows = challenge_rows(
            catalog.get("weekly_challenges") or [],
            date.today(),
            CHALLENGE_WEEKS_AHEAD
        )
        if rows:
            upsert_challenges(conn, rows)
            conn.commit()
        print(f"OK challenges={len(rows)}")

    except Exception:
        conn.rollback()
        raise
    finally:
        conn.close()

if __name__ == "__main__":
    main()
