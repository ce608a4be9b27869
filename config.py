"""Application configuration read from the environment"""
import os
import logging
from dotenv import load_dotenv

logger = logging.getLogger(__name__)

# Searches for .env in current dir and parents
load_dotenv()

MONGODB_URI = os.getenv("MONGODB_URI")
DB_NAME = os.getenv("DB_NAME", "expense_tracker")
QUERY_TIMEOUT_MS = int(os.getenv("QUERY_TIMEOUT_MS", "10000"))

# --- Auth ---
JWT_SECRET_KEY = os.getenv("JWT_SECRET_KEY", "change-me-in-production")
JWT_ALGORITHM = os.getenv("JWT_ALGORITHM", "HS256")
ACCESS_TOKEN_EXPIRE_MINUTES = int(os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", str(30 * 24 * 60)))  # 30 days
RESET_OTP_EXPIRE_SECONDS = 3600

# --- Query / cache ---
LIST_DEFAULT_LIMIT = 50
DASHBOARD_DEFAULT_LIMIT = 10
MAX_PAGE_LIMIT = int(os.getenv("MAX_PAGE_LIMIT", "200"))
LIST_CACHE_TTL = float(os.getenv("LIST_CACHE_TTL", "30"))  # seconds
CACHE_SWEEP_INTERVAL = float(os.getenv("CACHE_SWEEP_INTERVAL", "60"))  # seconds

# --- Rate limits ---
DEFAULT_RATE_LIMIT = os.getenv("DEFAULT_RATE_LIMIT", "60/minute")
AUTH_RATE_LIMIT = os.getenv("AUTH_RATE_LIMIT", "10/minute")
RATE_LIMIT_ENABLED = os.getenv("RATE_LIMIT_ENABLED", "true").lower() == "true"

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

if JWT_SECRET_KEY == "change-me-in-production":
    logger.warning("JWT_SECRET_KEY not set. Using an insecure default secret.")
