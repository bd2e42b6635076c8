# etl/config.py
import os

DB = {
    "host": os.getenv("TRUENORTH_DB_HOST", "localhost"),
    "port": int(os.getenv("TRUENORTH_DB_PORT", "5432")),
    "dbname": os.getenv("TRUENORTH_DB_NAME", "truenorth"),
    "user": os.getenv("TRUENORTH_DB_USER", "truenorth"),
    "password": os.getenv("TRUENORTH_DB_PASSWORD", "truenorthpassword"),
}

# bundled catalog: reading plans, achievements, weekly challenges
CATALOG_PATH = os.getenv("TRUENORTH_CATALOG_PATH", "etl/catalog.json")

# how many weeks of challenges to create ahead of the current one
CHALLENGE_WEEKS_AHEAD = int(os.getenv("CHALLENGE_WEEKS_AHEAD", "1"))
