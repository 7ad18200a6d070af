"""Centralized configuration: all env vars in one place."""
import os
import string
import logging
from dotenv import load_dotenv

load_dotenv()

# --- Server ---
HOST = os.getenv("HOST", "0.0.0.0")
PORT = int(os.getenv("PORT", "3001"))
ALLOWED_ORIGINS = os.getenv("ALLOWED_ORIGINS", "")

# --- WebSocket Security ---
WS_RATE_LIMIT_PER_SEC = int(os.getenv("WS_RATE_LIMIT_PER_SEC", "10"))  # max messages per second per client
MAX_WS_MESSAGE_SIZE = 8192  # bytes
OUTBOX_MAX_MESSAGES = int(os.getenv("OUTBOX_MAX_MESSAGES", "256"))  # queued events per connection before it is dropped

# --- Rooms ---
ROOM_CODE_LENGTH = 4
ROOM_CODE_ALPHABET = string.ascii_uppercase + string.digits
MAX_ROOM_CODE_ATTEMPTS = 20
MAX_ROOMS = int(os.getenv("MAX_ROOMS", "200"))
MAX_PLAYERS_PER_ROOM = int(os.getenv("MAX_PLAYERS_PER_ROOM", "100"))
ROOM_TTL_SECONDS = int(os.getenv("ROOM_TTL_SECONDS", "1800"))
ROOM_CLEANUP_INTERVAL = 60  # seconds

# --- Questions ---
MAX_NICKNAME_LENGTH = 20
MAX_QUESTION_TEXT_LENGTH = 2000
MAX_OPTION_LENGTH = 500
MIN_OPTIONS = 2
MAX_OPTIONS = 6
MIN_TIME_LIMIT = 1
MAX_TIME_LIMIT = 300
DEFAULT_TIME_LIMIT = 30
MAX_POINTS = 10000
DEFAULT_POINTS = 100
MAX_QUESTIONS_PER_ROOM = 100
BOOLEAN_OPTIONS = ("True", "False")

# --- Game ---
TIMER_TICKS = os.getenv("TIMER_TICKS", "true").lower() in ("1", "true", "yes")

# --- Logging ---
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
LOG_FILE = os.getenv("LOG_FILE", "")  # empty = stdout only


def setup_logging():
    handlers: list[logging.Handler] = [logging.StreamHandler()]
    if LOG_FILE:
        handlers.append(logging.FileHandler(LOG_FILE))
    logging.basicConfig(
        level=getattr(logging, LOG_LEVEL, logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        handlers=handlers,
    )
