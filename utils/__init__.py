# utils/__init__.py
from .logger import (
    setup_logger,
    get_server_logger,
    get_rate_limit_logger,
    get_session_logger,
    get_llm_logger,
)
from .validators import validate_session_id, validate_user_id, validate_message
from .rate_limiter import RateLimiter, RateLimitResult, RateLimitStatus

__all__ = [
    "setup_logger",
    "get_server_logger",
    "get_rate_limit_logger",
    "get_session_logger",
    "get_llm_logger",
    "validate_session_id",
    "validate_user_id",
    "validate_message",
    "RateLimiter",
    "RateLimitResult",
    "RateLimitStatus",
]
