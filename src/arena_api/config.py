import os

SECRET_KEY = os.getenv("ARENA_SECRET_KEY", "tictactoe-secret")  # Override in production.
ALGORITHM = "HS256"
ACCESS_TOKEN_EXPIRE_MINUTES = int(os.getenv("ARENA_TOKEN_EXPIRE_MINUTES", "10080"))

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

HOST = os.getenv("ARENA_HOST", "127.0.0.1")
PORT = int(os.getenv("ARENA_PORT", "8000"))

TELEGRAM_API_URL = os.getenv("TELEGRAM_API_URL", "https://api.telegram.org/bot")
TELEGRAM_TIMEOUT_SECONDS = float(os.getenv("TELEGRAM_TIMEOUT_SECONDS", "10"))

# Relay limit per client IP
RATE_LIMIT_MAX_REQUESTS = 5
RATE_LIMIT_WINDOW_SECONDS = 60
RATE_LIMIT_CLEANUP_SECONDS = 300

MAX_HISTORY_SIZE = 50
STORAGE_VERSION = 1

HUMAN_MARK = "X"
AI_MARK = "O"
