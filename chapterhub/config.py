# chapterhub/config.py
# Central place for settings and constants
import os

from dotenv import load_dotenv

load_dotenv()

# --- Database ---
MONGO_URI = os.getenv("MONGO_URI", "mongodb://localhost:27017")
MONGO_DB = os.getenv("MONGO_DB", "chapterhub")

# --- Security & JWT ---
# Tokens are minted by the identity provider; in production set SECRET_KEY.
SECRET_KEY = os.getenv("SECRET_KEY", "a_very_secret_key_for_dev_only")
ALGORITHM = "HS256"
ACCESS_TOKEN_EXPIRE_MINUTES = int(os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", "60"))

# --- Check-in codes ---
CHECKIN_CODE_SECRET = os.getenv("CHECKIN_CODE_SECRET", "default-checkin-secret")
CHECKIN_WINDOW_SECONDS = 10

# --- Chapter ---
# Arizona does not observe DST, recurrence math happens in this zone
CHAPTER_TIMEZONE = os.getenv("CHAPTER_TIMEZONE", "America/Phoenix")

CORS_ORIGINS = [
    origin.strip()
    for origin in os.getenv(
        "CORS_ORIGINS", "http://localhost:3000,http://localhost:5173"
    ).split(",")
    if origin.strip()
]

LOCKDOWN_KEY = "global"
