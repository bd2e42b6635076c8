import os

DB = {
    "host": os.getenv("TRUENORTH_DB_HOST", "localhost"),
    "port": int(os.getenv("TRUENORTH_DB_PORT", "5432")),
    "dbname": os.getenv("TRUENORTH_DB_NAME", "truenorth"),
    "user": os.getenv("TRUENORTH_DB_USER", "truenorth"),
    "password": os.getenv("TRUENORTH_DB_PASSWORD", "truenorthpassword"),
}

API_TITLE = "TrueNorth API"
API_VERSION = "0.1.0"

OPENAI_API_KEY = os.getenv("OPENAI_API_KEY", "")
OPENAI_BASE_URL = os.getenv("OPENAI_BASE_URL", "https://api.openai.com/v1").rstrip("/")
OPENAI_CHAT_MODEL = os.getenv("OPENAI_CHAT_MODEL", "gpt-4o")
OPENAI_TIMEOUT_SEC = float(os.getenv("OPENAI_TIMEOUT_SEC", "60"))

YOUTUBE_API_KEY = os.getenv("YOUTUBE_API_KEY", "")
YOUTUBE_API_BASE = os.getenv("YOUTUBE_API_BASE", "https://www.googleapis.com/youtube/v3")
DEFAULT_YOUTUBE_CHANNEL_ID = os.getenv("DEFAULT_YOUTUBE_CHANNEL_ID", "UCQ4xUi5qHyazmMhOk2WpJkQ")

STRIPE_SECRET_KEY = os.getenv("STRIPE_SECRET_KEY", "")
STRIPE_WEBHOOK_SECRET = os.getenv("STRIPE_WEBHOOK_SECRET", "")
STRIPE_PRO_PRICE_ID = os.getenv("STRIPE_PRO_PRICE_ID", "price_1RWniVGWK1AYSv44HACsdk5J")

VAPID_PRIVATE_KEY = os.getenv("VAPID_PRIVATE_KEY", "")
VAPID_SUBJECT = os.getenv("VAPID_SUBJECT", "mailto:support@truenorth.app")

SERMON_STORAGE_DIR = os.getenv("SERMON_STORAGE_DIR", "storage/sermons")
CRON_SECRET = os.getenv("CRON_SECRET", "")
