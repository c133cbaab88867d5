"""Streaming chat endpoint."""

import asyncio
import json
from collections.abc import AsyncIterator
from contextlib import aclosing
from typing import Any

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse, StreamingResponse
from pydantic import BaseModel, Field
from slowapi import Limiter
from slowapi.util import get_remote_address

from adchat.auth.dependencies import UserContext, require_user
from adchat.chat.cancellation import CancellationToken, watch_disconnect
from adchat.chat.service import ChatService, build_chat_service
from adchat.config import get_settings
from adchat.errors import BindingRequiredError, ConversationNotFoundError, MessageValidationError
from adchat.logging import clear_context

router = APIRouter(tags=["api-chat"])
_limiter = Limiter(key_func=get_remote_address)


class ChatRequest(BaseModel):
    id: str | None = None
    message: dict[str, Any] = Field(default_factory=dict)
    model: str | None = None


def get_chat_service() -> ChatService:
    return build_chat_service()


def _chat_rate_limit() -> str:
    return get_settings().chat_rate_limit


@router.post("/chat", response_model=None)
@_limiter.limit(_chat_rate_limit)
async def chat(
    request: Request,
    body: ChatRequest,
    ctx: UserContext = Depends(require_user),  # noqa: B008
    service: ChatService = Depends(get_chat_service),  # noqa: B008
) -> StreamingResponse | JSONResponse:
    clear_context()
    try:
        prepared = await service.prepare(
            owner_id=ctx.user_id,
            message=body.message,
            conversation_id=body.id,
            model=body.model,
        )
    except BindingRequiredError as exc:
        return JSONResponse(status_code=400, content={"error": str(exc)})
    except ConversationNotFoundError:
        return JSONResponse(status_code=404, content={"error": "conversation not found"})
    except MessageValidationError as exc:
        return JSONResponse(status_code=400, content={"error": str(exc)})

    token = CancellationToken()

    async def ndjson() -> AsyncIterator[str]:
        watcher = asyncio.create_task(watch_disconnect(request.is_disconnected, token))
        try:
            async with aclosing(service.stream(prepared, token)) as parts:  # type: ignore[type-var]
                async for part in parts:
                    yield json.dumps(part) + "\n"
        finally:
            watcher.cancel()

    return StreamingResponse(ndjson(), media_type="application/x-ndjson")
