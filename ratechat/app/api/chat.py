"""Chat API endpoints."""

import math
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request, Response
from pydantic import BaseModel, Field, field_validator

from ratechat.app.core.config import SEND_MESSAGE, Settings
from ratechat.app.core.logging import get_log_context, get_logger
from ratechat.app.ratelimit.limiter import RateLimiter
from ratechat.app.services.message_store import MessageStore

router = APIRouter()
logger = get_logger(__name__)

MAX_AUTHOR_LENGTH = 64


class SendMessageRequest(BaseModel):
    """Request model for posting a chat message."""
    author: str = Field(..., min_length=1, max_length=MAX_AUTHOR_LENGTH)
    body: str = Field(..., min_length=1)

    @field_validator("author", "body")
    @classmethod
    def strip_not_blank(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("must not be blank")
        return v


class MessageResponse(BaseModel):
    id: int
    author: str
    body: str
    inserted_at: str


class RateLimitStatusResponse(BaseModel):
    operation: str
    key: str
    admitted: bool
    retryAfter: Optional[float] = None
    remaining: float
    capacity: float


def get_rate_limiter(request: Request) -> RateLimiter:
    return request.app.state.rate_limiter


def get_message_store(request: Request) -> MessageStore:
    return request.app.state.message_store


def get_app_settings(request: Request) -> Settings:
    return request.app.state.settings


def _set_rate_limit_headers(response: Response, capacity: float, remaining: float) -> None:
    response.headers["X-RateLimit-Limit"] = str(int(capacity))
    response.headers["X-RateLimit-Remaining"] = str(max(0, math.floor(remaining)))


@router.post("/v1/chat/messages", status_code=201, response_model=MessageResponse)
async def send_message(
    payload: SendMessageRequest,
    response: Response,
    limiter: RateLimiter = Depends(get_rate_limiter),
    message_store: MessageStore = Depends(get_message_store),
    app_settings: Settings = Depends(get_app_settings),
) -> Dict[str, Any]:
    """Post a message, throttled per author.

    Rejected senders get HTTP 429 with
    ``{"kind": "RateLimited", "retryAfter": <seconds>}``; nothing is stored.
    """
    if len(payload.body) > app_settings.max_message_length:
        raise HTTPException(
            status_code=422,
            detail=f"Message body exceeds {app_settings.max_message_length} characters",
        )

    decision = await limiter.limit(SEND_MESSAGE, payload.author, throw_on_reject=True)
    message = await message_store.append(payload.author, payload.body)

    _set_rate_limit_headers(
        response, limiter.config_for(SEND_MESSAGE).capacity, decision.remaining
    )
    logger.info(
        f"Message {message.id} accepted",
        extra=get_log_context(operation=SEND_MESSAGE, key=payload.author),
    )
    return message.to_dict()


@router.get("/v1/chat/messages", response_model=List[MessageResponse])
async def list_messages(
    limit: Optional[int] = Query(default=None, ge=1),
    message_store: MessageStore = Depends(get_message_store),
    app_settings: Settings = Depends(get_app_settings),
) -> List[Dict[str, Any]]:
    """Return the most recent messages in chronological order."""
    max_limit = app_settings.recent_messages_limit
    limit = min(limit or max_limit, max_limit)
    messages = await message_store.recent_messages(limit)
    return [message.to_dict() for message in reversed(messages)]


@router.get("/v1/rate-limits/{operation}", response_model=RateLimitStatusResponse)
async def rate_limit_status(
    operation: str,
    key: str = Query(..., min_length=1, max_length=MAX_AUTHOR_LENGTH),
    limiter: RateLimiter = Depends(get_rate_limiter),
) -> Dict[str, Any]:
    """Report whether ``key`` could perform ``operation`` now, without consuming.

    Unknown operations surface as ``UnknownLimit``.
    """
    config = limiter.config_for(operation)
    decision = await limiter.check(operation, key)
    return {
        "operation": operation,
        "key": key,
        "admitted": decision.admitted,
        "retryAfter": decision.retry_after,
        "remaining": decision.remaining,
        "capacity": config.capacity,
    }
