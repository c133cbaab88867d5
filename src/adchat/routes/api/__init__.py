"""API v1 router aggregation."""

from fastapi import APIRouter

from adchat.routes.api import campaigns, chat, conversations

router = APIRouter(prefix="/api/v1", tags=["api"])
router.include_router(chat.router)
router.include_router(conversations.router)
router.include_router(campaigns.router)
