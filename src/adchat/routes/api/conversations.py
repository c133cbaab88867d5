"""Conversation CRUD and message history routes."""

from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field

from adchat.auth.dependencies import UserContext, require_user
from adchat.chat.identity import IdentityResolver
from adchat.db.connection import get_conn
from adchat.db.queries import (
    create_conversation,
    delete_conversation,
    get_conversation,
    list_conversations,
    load_window,
    update_conversation,
)
from adchat.errors import ConversationNotFoundError
from adchat.ids import is_durable_id
from adchat.models import Conversation

router = APIRouter(tags=["api-conversations"])


class CreateConversationRequest(BaseModel):
    campaign_id: str | None = Field(default=None, alias="campaignId")
    title: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)


class UpdateConversationRequest(BaseModel):
    title: str | None = Field(default=None, min_length=1, max_length=200)
    metadata: dict[str, Any] | None = None


def _owned(conversation_id: str, owner_id: str) -> Conversation:
    with get_conn() as conn:
        conversation = get_conversation(conn, conversation_id)
    if conversation is None or conversation.owner_id != owner_id:
        raise HTTPException(status_code=404, detail="conversation not found")
    return conversation


@router.get("/conversations")
def list_owned_conversations(
    ctx: UserContext = Depends(require_user),  # noqa: B008
    campaign_id: str | None = Query(default=None, alias="campaignId"),
    limit: int = Query(default=20, ge=1, le=100),
    offset: int = Query(default=0, ge=0),
) -> dict[str, object]:
    with get_conn() as conn:
        items = list_conversations(
            conn, ctx.user_id, campaign_id=campaign_id, limit=limit, offset=offset
        )
    return {"items": [item.to_dict() for item in items], "limit": limit, "offset": offset}


@router.post("/conversations", status_code=201)
def create_owned_conversation(
    body: CreateConversationRequest,
    ctx: UserContext = Depends(require_user),  # noqa: B008
) -> dict[str, object]:
    if body.campaign_id:
        if not is_durable_id(body.campaign_id):
            raise HTTPException(status_code=400, detail="invalid campaign id")
        try:
            conversation = IdentityResolver().for_campaign(body.campaign_id, ctx.user_id)
        except ConversationNotFoundError as exc:
            raise HTTPException(status_code=404, detail="conversation not found") from exc
        if body.title or body.metadata:
            with get_conn() as conn:
                updated = update_conversation(
                    conn, conversation.id, title=body.title, metadata=body.metadata
                )
            conversation = updated or conversation
    else:
        with get_conn() as conn:
            conversation = create_conversation(
                conn, ctx.user_id, title=body.title, metadata=body.metadata
            )
    return conversation.to_dict()


@router.get("/conversations/{conversation_id}")
def get_owned_conversation(
    conversation_id: str,
    ctx: UserContext = Depends(require_user),  # noqa: B008
) -> dict[str, object]:
    return _owned(conversation_id, ctx.user_id).to_dict()


@router.patch("/conversations/{conversation_id}")
def patch_conversation(
    conversation_id: str,
    body: UpdateConversationRequest,
    ctx: UserContext = Depends(require_user),  # noqa: B008
) -> dict[str, object]:
    _owned(conversation_id, ctx.user_id)
    with get_conn() as conn:
        updated = update_conversation(
            conn, conversation_id, title=body.title, metadata=body.metadata
        )
    if updated is None:
        raise HTTPException(status_code=404, detail="conversation not found")
    return updated.to_dict()


@router.delete("/conversations/{conversation_id}")
def remove_conversation(
    conversation_id: str,
    ctx: UserContext = Depends(require_user),  # noqa: B008
) -> dict[str, bool]:
    _owned(conversation_id, ctx.user_id)
    with get_conn() as conn:
        deleted = delete_conversation(conn, conversation_id)
    return {"ok": deleted}


@router.get("/conversations/{conversation_id}/messages")
def list_messages(
    conversation_id: str,
    ctx: UserContext = Depends(require_user),  # noqa: B008
    before: int | None = Query(default=None, ge=1),
    limit: int = Query(default=50, ge=1, le=200),
) -> dict[str, object]:
    _owned(conversation_id, ctx.user_id)
    with get_conn() as conn:
        turns = load_window(conn, conversation_id, limit=limit, before_seq=before)
    return {
        "items": [turn.to_dict() for turn in turns],
        "nextBefore": turns[0].seq if len(turns) == limit and turns else None,
    }
