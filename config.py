# config.py
import os

BOT_TOKEN = os.getenv("BOT_TOKEN", "")
ADMIN_CHAT_ID = int(os.getenv("ADMIN_CHAT_ID")) if os.getenv("ADMIN_CHAT_ID") else None

DB_URL = os.getenv("DB_URL", "sqlite:///contracts.db")

# "today" for the operator is always computed in this timezone
TIMEZONE = os.getenv("TIMEZONE", "Asia/Tehran")

# daily late-payment rate (percent) applied when a contract is created without one
DEFAULT_PENALTY_RATE = float(os.getenv("DEFAULT_PENALTY_RATE", "0.5"))

SWEEP_INTERVAL_HOURS = int(os.getenv("SWEEP_INTERVAL_HOURS", "24"))
UPCOMING_DAYS = int(os.getenv("UPCOMING_DAYS", "7"))

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
