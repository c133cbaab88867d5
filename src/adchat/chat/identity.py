"""Maps an inbound conversation id plus metadata onto a durable Conversation."""

from __future__ import annotations

import asyncio
import logging
from typing import Any

from adchat.db.connection import get_conn
from adchat.db.queries import get_campaign, get_conversation, get_or_create_campaign_conversation
from adchat.errors import BindingRequiredError, ConversationNotFoundError
from adchat.ids import is_durable_id
from adchat.models import Conversation

logger = logging.getLogger(__name__)

BINDING_REQUIRED_MESSAGE = "Campaign ID required for new conversations"


class IdentityResolver:
    """Resolves ``(id, metadata)`` to the conversation a turn belongs to.

    Durable-shaped ids are tried as conversation ids first and then as
    campaign ids. Client draft ids fall back to ``metadata.campaignId``.
    A missing id means an unbound, ephemeral turn.
    """

    async def resolve(
        self,
        raw_id: str | None,
        metadata: dict[str, Any] | None,
        owner_id: str,
    ) -> Conversation | None:
        if not raw_id:
            return None
        return await asyncio.to_thread(self._resolve, raw_id, metadata or {}, owner_id)

    def _resolve(self, raw_id: str, metadata: dict[str, Any], owner_id: str) -> Conversation:
        if is_durable_id(raw_id):
            with get_conn() as conn:
                conversation = get_conversation(conn, raw_id)
            if conversation is not None:
                self._check_owner(conversation, owner_id)
                return conversation
            campaign_id = raw_id
        else:
            candidate = metadata.get("campaignId")
            if not isinstance(candidate, str) or not is_durable_id(candidate):
                logger.info("Rejected draft conversation id %s without campaign binding", raw_id)
                raise BindingRequiredError(BINDING_REQUIRED_MESSAGE)
            campaign_id = candidate
        return self.for_campaign(campaign_id, owner_id)

    def for_campaign(self, campaign_id: str, owner_id: str) -> Conversation:
        with get_conn() as conn:
            initial: dict[str, Any] = {"campaign_id": campaign_id}
            campaign = get_campaign(conn, campaign_id)
            if campaign is not None and campaign.owner_id != owner_id:
                raise ConversationNotFoundError(f"campaign not found: {campaign_id}")
            if campaign is not None:
                initial["campaign_name"] = campaign.name
                if campaign.initial_goal:
                    initial["current_goal"] = campaign.initial_goal
            conversation, created = get_or_create_campaign_conversation(
                conn, owner_id, campaign_id, metadata=initial
            )
        if created:
            logger.info("Created conversation %s for campaign %s", conversation.id, campaign_id)
        self._check_owner(conversation, owner_id)
        return conversation

    @staticmethod
    def _check_owner(conversation: Conversation, owner_id: str) -> None:
        if conversation.owner_id != owner_id:
            raise ConversationNotFoundError(f"conversation not found: {conversation.id}")
