import os
from pathlib import Path

from dotenv import load_dotenv

# Load .env from project root
env_path = Path(__file__).resolve().parent.parent / ".env"
load_dotenv(dotenv_path=env_path)


def _positive_int_env(name: str, default: int) -> int:
    raw = os.getenv(name, "")
    try:
        value = int(raw)
    except ValueError:
        return default
    return value if value > 0 else default


def parse_csv_env(name: str, default: str) -> list[str]:
    raw = os.getenv(name, default)
    return [item.strip() for item in raw.split(",") if item.strip()]


default_db = str(Path(__file__).resolve().parent.parent / "data" / "acheiumpro.sqlite3")
DB_PATH = os.getenv("ACHEIUMPRO_DB_PATH", default_db)
DB_TIMEOUT_SECONDS = float(_positive_int_env("ACHEIUMPRO_DB_TIMEOUT_SECONDS", 5))

AUTH_SECRET = os.getenv("AUTH_SECRET", "dev-insecure-secret-change-me")
AUTH_TOKEN_TTL_HOURS = _positive_int_env("AUTH_TOKEN_TTL_HOURS", 168)

# Seeded at startup only when both are set
ADMIN_EMAIL = os.getenv("ADMIN_EMAIL", "").strip().lower()
ADMIN_PASSWORD = os.getenv("ADMIN_PASSWORD", "")

NOTIFICATION_CHANNELS = parse_csv_env("NOTIFICATION_CHANNELS", "in_app")
NOTIFICATION_MAX_ATTEMPTS = _positive_int_env("NOTIFICATION_MAX_ATTEMPTS", 5)

# Web push (Firebase Cloud Messaging)
FIREBASE_CREDENTIALS_PATH = os.getenv("FIREBASE_CREDENTIALS_PATH", "").strip()

# E-mail
SMTP_HOST = os.getenv("SMTP_HOST", "").strip()
SMTP_PORT = _positive_int_env("SMTP_PORT", 587)
SMTP_USER = os.getenv("SMTP_USER", "").strip()
SMTP_PASS = os.getenv("SMTP_PASS", "")
SMTP_SECURE = os.getenv("SMTP_SECURE", "false").lower() in {"1", "true", "yes"}
EMAIL_FROM_ADDRESS = os.getenv("EMAIL_FROM_ADDRESS", "AcheiUmPro <suporte@acheiumpro.com>")

# SMS (Twilio REST API)
TWILIO_ACCOUNT_SID = os.getenv("TWILIO_ACCOUNT_SID", "").strip()
TWILIO_AUTH_TOKEN = os.getenv("TWILIO_AUTH_TOKEN", "").strip()
TWILIO_FROM_NUMBER = os.getenv("TWILIO_FROM_NUMBER", "").strip()
