import os
from dotenv import load_dotenv

load_dotenv()

# --- JWT Configuration ---
JWT_SECRET = os.getenv("JWT_SECRET", "change-this-secret-key")
JWT_ALGORITHM = "HS256"
JWT_EXPIRY_HOURS = int(os.getenv("JWT_EXPIRY_HOURS", "720"))  # 30 days

# --- Database ---
# Default to local SQLite, but prefer environment variable (for hosted Postgres)
DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./data/learnhub.db")

# Fix for common SQLAlchemy issues with postgres:// vs postgresql://
if DATABASE_URL.startswith("postgres://"):
    DATABASE_URL = DATABASE_URL.replace("postgres://", "postgresql://", 1)

# --- Logging ---
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

# --- Learning Hub ---
STREAK_MAX_DAYS = 30
VELOCITY_WINDOW_DAYS = 7
CONSISTENCY_WINDOW_DAYS = 30
RECOMMENDATION_LIMIT = 6
QUIZ_PASS_PCT = int(os.getenv("QUIZ_PASS_PCT", "70"))

# --- Referrals / Affiliates ---
REFERRALS_ENABLED = os.getenv("REFERRALS_ENABLED", "true").lower() in ("1", "true", "yes")
REFERRAL_HOLD_DAYS = int(os.getenv("REFERRAL_HOLD_DAYS", "30"))
REFERRAL_INITIAL_COMMISSION_RATE = float(os.getenv("REFERRAL_INITIAL_COMMISSION_RATE", "0.3"))
REFERRAL_RECURRING_COMMISSION_RATE = float(os.getenv("REFERRAL_RECURRING_COMMISSION_RATE", "0.1"))
APP_URL = os.getenv("APP_URL", "http://localhost:8000").rstrip("/")
