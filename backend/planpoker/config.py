import os


class Config:
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev")

    # CORS
    CORS_ORIGINS = os.environ.get("CORS_ORIGINS", "*")

    # Reverse proxy headers
    TRUST_PROXY_HEADERS = os.environ.get("TRUST_PROXY_HEADERS", "1") == "1"

    # Logging
    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")
    LOG_FILE = os.environ.get("LOG_FILE", "")

    # Auth
    AUTH_COOKIE_NAME = os.environ.get("AUTH_COOKIE_NAME", "token")
    AUTH_TOKEN_MAX_AGE_SEC = int(os.environ.get("AUTH_TOKEN_MAX_AGE_SEC", "604800"))
    ALLOW_DEV_LOGIN = os.environ.get("ALLOW_DEV_LOGIN", "0") == "1"

    # Storage (defaults to in-memory when REDIS_URL is empty)
    REDIS_URL = os.environ.get("REDIS_URL", "")
    STORE_TIMEOUT_SEC = float(os.environ.get("STORE_TIMEOUT_SEC", "2"))
    ROOM_TTL_SECONDS = int(os.environ.get("ROOM_TTL_SECONDS", "86400"))
    ROOM_LOCK_TIMEOUT_SEC = float(os.environ.get("ROOM_LOCK_TIMEOUT_SEC", "5"))

    # Rooms
    MAX_ROOMS_PER_USER = int(os.environ.get("MAX_ROOMS_PER_USER", "3"))
    TIMER_MAX_SEC = int(os.environ.get("TIMER_MAX_SEC", "3600"))
    DEFAULT_PARTICIPANT_ROLE = os.environ.get("DEFAULT_PARTICIPANT_ROLE", "player")
