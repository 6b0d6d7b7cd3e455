# config.py - Centralized configuration for the chat API
"""
All limits and configuration values in one place.

Rate limiting applies to anonymous visitors only; authenticated users are
identified upstream and are not throttled here.
"""

import os

# === INPUT LIMITS ===
MAX_MESSAGE_LENGTH = 2000           # Max characters for a chat message
MAX_SESSION_ID_LENGTH = 64          # Max characters for session / user ids

# === ANONYMOUS SESSIONS ===
ANONYMOUS_SESSION_COOKIE = "anonymous_session"
ANONYMOUS_SESSION_PREFIX = "anon_"
ANONYMOUS_SESSION_MAX_AGE_SECONDS = 30 * 24 * 60 * 60   # 30 days

# === RATE LIMITING (anonymous sessions) ===
RATE_LIMIT_REQUESTS = 1                     # 1 message...
RATE_LIMIT_WINDOW_SECONDS = 3               # ...every 3 seconds
RATE_LIMIT_SWEEP_INTERVAL_SECONDS = 60      # Evict idle sessions at most once a minute
RATE_LIMIT_IDLE_EXPIRY_SECONDS = 300        # Session is idle after 5 minutes without messages

# === CHAT SETTINGS ===
DEFAULT_CHAT_MODEL = "gpt-4o-mini"
MAX_CHAT_HISTORY_MESSAGES = 10      # Sliding window for conversation memory

# === LOGGING ===
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
