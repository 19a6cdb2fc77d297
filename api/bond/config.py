import os

APP_NAME = os.getenv("APP_NAME", "Promise.Bond")
APP_URL = os.getenv("APP_URL", "http://localhost:3000").rstrip("/")
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

CRUSH_CAP = int(os.getenv("CRUSH_CAP", "4"))
ALLOW_CROSS_ORGANIZATION_CRUSH = os.getenv("ALLOW_CROSS_ORGANIZATION_CRUSH", "false").lower() == "true"
NOTIFICATION_MAX_ATTEMPTS = int(os.getenv("NOTIFICATION_MAX_ATTEMPTS", "5"))

JWT_SECRET = os.getenv("JWT_SECRET", "")
ACCESS_TOKEN_TTL_MINUTES = int(os.getenv("ACCESS_TOKEN_TTL_MINUTES", str(7 * 24 * 60)))
VERIFICATION_TOKEN_TTL_HOURS = int(os.getenv("VERIFICATION_TOKEN_TTL_HOURS", "24"))
DEV_MODE = os.getenv("DEV_MODE", "false").lower() == "true"
COOKIE_SECURE = os.getenv("COOKIE_SECURE", "false").lower() == "true"

CORS_ORIGINS = [
    o.strip()
    for o in os.getenv(
        "CORS_ORIGINS",
        "http://localhost:3000,http://127.0.0.1:3000,http://localhost:3001,http://127.0.0.1:3001",
    ).split(",")
    if o.strip()
]


RL_AUTH_REGISTER_LIMIT = int(os.getenv("RL_AUTH_REGISTER_LIMIT", "100"))
RL_AUTH_LOGIN_LIMIT = int(os.getenv("RL_AUTH_LOGIN_LIMIT", "100"))
RL_AUTH_VERIFY_EMAIL_LIMIT = int(os.getenv("RL_AUTH_VERIFY_EMAIL_LIMIT", "100"))
RL_CRUSH_ADD_LIMIT = int(os.getenv("RL_CRUSH_ADD_LIMIT", "100"))
RL_CRUSH_REMOVE_LIMIT = int(os.getenv("RL_CRUSH_REMOVE_LIMIT", "100"))
RL_WINDOW_SECONDS = int(os.getenv("RL_WINDOW_SECONDS", "60"))
