# server.py - FastAPI chat server
from contextlib import asynccontextmanager
from typing import Optional

from dotenv import load_dotenv
from fastapi import APIRouter, FastAPI, Header, HTTPException, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, field_validator

from chat.responder import ChatResponder
from config import (
    MAX_MESSAGE_LENGTH,
    MAX_SESSION_ID_LENGTH,
    RATE_LIMIT_REQUESTS,
    RATE_LIMIT_WINDOW_SECONDS,
    RATE_LIMIT_SWEEP_INTERVAL_SECONDS,
    RATE_LIMIT_IDLE_EXPIRY_SECONDS,
)
from utils.logger import get_server_logger
from utils.rate_limiter import RateLimiter
from utils.sessions import (
    delete_anonymous_session,
    get_anonymous_session,
    get_or_create_anonymous_session,
)
from utils.validators import validate_message, validate_user_id

load_dotenv()

logger = get_server_logger()

router = APIRouter()


# Request/Response Models
class ChatRequest(BaseModel):
    message: str

    @field_validator('message')
    @classmethod
    def validate_chat_message(cls, v):
        return validate_message(v)


class ChatResponse(BaseModel):
    answer: str
    session_id: str
    anonymous: bool


class RateLimitStatusResponse(BaseModel):
    session_id: Optional[str] = None
    count: int
    limit: int
    window_seconds: float
    next_allowed_at: Optional[float] = None


class UpgradeRequest(BaseModel):
    user_id: str

    @field_validator('user_id')
    @classmethod
    def validate_user(cls, v):
        return validate_user_id(v)


class UpgradeResponse(BaseModel):
    message: str
    session_id: str
    user_id: str
    messages_migrated: int


class ResetResponse(BaseModel):
    message: str
    session_id: str


def authenticated_user(x_user_id: Optional[str]) -> Optional[str]:
    """User id set by the upstream auth layer, if any."""
    if x_user_id is None:
        return None
    try:
        return validate_user_id(x_user_id)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


def enforce_rate_limit(limiter: RateLimiter, session_id: str) -> None:
    """
    Admit one message for session_id.

    Raises:
        HTTPException: 429 Too Many Requests with a Retry-After header when denied
    """
    result = limiter.check_rate_limit(session_id)
    if result.allowed:
        return

    logger.info(f"[{session_id}] Rate limited, retry in {result.retry_after}s")
    raise HTTPException(
        status_code=429,
        detail=f"Please wait {result.retry_after} seconds before sending another message.",
        headers={"Retry-After": str(result.retry_after)}
    )


# Routes
@router.get("/health")
async def health(request: Request):
    """Health check endpoint."""
    return {
        "status": "running",
        "message": "Chat API is running",
        "tracked_identifiers": len(request.app.state.rate_limiter)
    }


@router.get("/limits")
async def get_limits(request: Request):
    """Get current API limits and configuration."""
    limiter = request.app.state.rate_limiter
    return {
        "input_limits": {
            "max_message_length": MAX_MESSAGE_LENGTH,
            "max_session_id_length": MAX_SESSION_ID_LENGTH,
        },
        "rate_limits": {
            "requests_per_window": limiter.max_requests,
            "window_seconds": limiter.window_seconds,
            "sweep_interval_seconds": limiter.sweep_interval_seconds,
            "idle_expiry_seconds": limiter.idle_expiry_seconds,
        },
    }


@router.post("/chat", response_model=ChatResponse)
async def chat(
    body: ChatRequest,
    request: Request,
    response: Response,
    x_user_id: Optional[str] = Header(default=None),
):
    """Answer a chat message. Anonymous visitors are rate limited per session."""
    user_id = authenticated_user(x_user_id)

    if user_id:
        identity = user_id
    else:
        identity = get_or_create_anonymous_session(request, response)
        # Throttle before any expensive work
        enforce_rate_limit(request.app.state.rate_limiter, identity)

    logger.info(f"[{identity}] POST /chat - Message: {body.message[:50]}...")

    try:
        answer = request.app.state.responder.respond(identity, body.message)
    except Exception:
        logger.exception(f"[{identity}] Error generating answer")
        raise HTTPException(status_code=500, detail="Failed to get answer")

    return ChatResponse(answer=answer, session_id=identity, anonymous=user_id is None)


@router.get("/chat/rate-limit", response_model=RateLimitStatusResponse)
async def rate_limit_status(request: Request):
    """Report the caller's current usage without consuming quota."""
    limiter = request.app.state.rate_limiter
    session_id = get_anonymous_session(request)

    count, next_allowed_at = 0, None
    if session_id:
        status = limiter.get_rate_limit_status(session_id)
        count, next_allowed_at = status.count, status.next_allowed_at

    return RateLimitStatusResponse(
        session_id=session_id,
        count=count,
        limit=limiter.max_requests,
        window_seconds=limiter.window_seconds,
        next_allowed_at=next_allowed_at,
    )


@router.post("/session/upgrade", response_model=UpgradeResponse)
async def upgrade_session(body: UpgradeRequest, request: Request, response: Response):
    """Retire an anonymous session once its visitor has signed in."""
    session_id = get_anonymous_session(request)
    if not session_id:
        raise HTTPException(status_code=400, detail="No anonymous session to upgrade")

    logger.info(f"[{session_id}] POST /session/upgrade - user: {body.user_id}")

    try:
        moved = request.app.state.responder.migrate(session_id, body.user_id)
    except Exception:
        logger.exception(f"[{session_id}] Error migrating conversation")
        raise HTTPException(status_code=500, detail="Failed to upgrade session")

    # Only forget the throttle once the conversation has moved
    request.app.state.rate_limiter.reset_rate_limit(session_id)
    delete_anonymous_session(response)

    return UpgradeResponse(
        message="Anonymous session upgraded successfully",
        session_id=session_id,
        user_id=body.user_id,
        messages_migrated=moved
    )


@router.post("/reset/conversation", response_model=ResetResponse)
async def reset_conversation(request: Request, x_user_id: Optional[str] = Header(default=None)):
    """Reset conversation memory for the caller."""
    identity = authenticated_user(x_user_id) or get_anonymous_session(request)
    if not identity:
        raise HTTPException(status_code=400, detail="No session to reset")

    logger.info(f"[{identity}] POST /reset/conversation")

    try:
        request.app.state.responder.reset(identity)
    except Exception as e:
        logger.exception(f"[{identity}] Error resetting conversation")
        raise HTTPException(status_code=500, detail=f"Failed to reset conversation: {str(e)}")

    return ResetResponse(message="Conversation memory cleared successfully", session_id=identity)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup lifecycle handler."""
    logger.info("Chat API starting...")
    yield
    logger.info(f"Chat API shutting down, dropping {len(app.state.rate_limiter)} rate limit records")


def create_app(rate_limiter: Optional[RateLimiter] = None, responder=None) -> FastAPI:
    """Build the API with its own rate limiter and chat responder."""
    app = FastAPI(
        title="Chat API",
        description="Theological chat assistant with per-session rate limiting",
        version="1.0.0",
        lifespan=lifespan
    )

    if rate_limiter is None:
        rate_limiter = RateLimiter(
            max_requests=RATE_LIMIT_REQUESTS,
            window_seconds=RATE_LIMIT_WINDOW_SECONDS,
            sweep_interval_seconds=RATE_LIMIT_SWEEP_INTERVAL_SECONDS,
            idle_expiry_seconds=RATE_LIMIT_IDLE_EXPIRY_SECONDS,
        )
    if responder is None:
        responder = ChatResponder()

    app.state.rate_limiter = rate_limiter
    app.state.responder = responder

    app.add_middleware(
        CORSMiddleware,
        allow_origins=[
            "http://localhost",
            "http://localhost:3000",
            "http://127.0.0.1",
            "http://127.0.0.1:3000",
        ],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.include_router(router)
    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=3000)
