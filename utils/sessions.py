# utils/sessions.py - Anonymous visitor sessions
"""
Anonymous sessions are carried in an HTTP-only cookie. The session id is the
identifier the rate limiter throttles on.
"""

import os
import uuid
from typing import Optional

from fastapi import Request, Response

from config import (
    ANONYMOUS_SESSION_COOKIE,
    ANONYMOUS_SESSION_PREFIX,
    ANONYMOUS_SESSION_MAX_AGE_SECONDS,
)
from utils.logger import get_session_logger
from utils.validators import validate_session_id

logger = get_session_logger()


def generate_anonymous_session_id() -> str:
    return f"{ANONYMOUS_SESSION_PREFIX}{uuid.uuid4()}"


def get_anonymous_session(request: Request) -> Optional[str]:
    """Return the caller's anonymous session id, or None. Never creates one."""
    value = request.cookies.get(ANONYMOUS_SESSION_COOKIE)
    if not value:
        return None
    try:
        return validate_session_id(value)
    except ValueError:
        logger.warning(f"Ignoring malformed {ANONYMOUS_SESSION_COOKIE} cookie")
        return None


def get_or_create_anonymous_session(request: Request, response: Response) -> str:
    """Get the existing anonymous session or issue a new cookie."""
    existing = get_anonymous_session(request)
    if existing:
        return existing

    session_id = generate_anonymous_session_id()
    response.set_cookie(
        key=ANONYMOUS_SESSION_COOKIE,
        value=session_id,
        max_age=ANONYMOUS_SESSION_MAX_AGE_SECONDS,
        path="/",
        httponly=True,
        samesite="lax",
        secure=os.getenv("APP_ENV") == "production",
    )
    logger.info(f"[{session_id}] Issued new anonymous session")
    return session_id


def delete_anonymous_session(response: Response) -> None:
    response.delete_cookie(ANONYMOUS_SESSION_COOKIE, path="/")
