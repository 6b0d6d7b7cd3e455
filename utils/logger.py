# utils/logger.py - Logging for the chat API
"""
Every component logs to stdout through a "chat.<component>" logger. Lines
about one visitor are prefixed with "[<session or user id>]".
The level comes from LOG_LEVEL (default INFO).
"""

import logging
import sys

from config import LOG_LEVEL

LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)-16s | %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def _resolve_level(level) -> int:
    if isinstance(level, int):
        return level
    resolved = logging.getLevelName(str(level).upper())
    return resolved if isinstance(resolved, int) else logging.INFO


def setup_logger(name: str, level=LOG_LEVEL) -> logging.Logger:
    """Return the named logger, attaching the stdout handler on first use."""
    logger = logging.getLogger(name)

    # Loggers are module globals; configure each one once
    if not logger.handlers:
        level = _resolve_level(level)
        logger.setLevel(level)

        handler = logging.StreamHandler(sys.stdout)
        handler.setLevel(level)
        handler.setFormatter(logging.Formatter(LOG_FORMAT, DATE_FORMAT))
        logger.addHandler(handler)
        logger.propagate = False

    return logger


def get_server_logger():
    """Routes: requests, denials, upgrades."""
    return setup_logger("chat.server")


def get_rate_limit_logger():
    """Admission decisions and idle-session sweeps."""
    return setup_logger("chat.ratelimit")


def get_session_logger():
    """Anonymous session cookies."""
    return setup_logger("chat.session")


def get_llm_logger():
    """Model calls and conversation memory."""
    return setup_logger("chat.llm")
