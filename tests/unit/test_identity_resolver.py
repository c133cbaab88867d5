import asyncio

import pytest

from adchat.chat.identity import BINDING_REQUIRED_MESSAGE, IdentityResolver
from adchat.db.connection import get_conn
from adchat.db.queries import create_conversation, insert_campaign
from adchat.errors import BindingRequiredError, ConversationNotFoundError


@pytest.mark.asyncio
async def test_missing_id_is_ephemeral() -> None:
    assert await IdentityResolver().resolve(None, {}, "user_1") is None


@pytest.mark.asyncio
async def test_campaign_id_resolves_to_one_conversation() -> None:
    resolver = IdentityResolver()
    first = await resolver.resolve("camp_1", {}, "user_1")
    second = await resolver.resolve("camp_1", {}, "user_1")
    assert first is not None and second is not None
    assert first.id == second.id
    assert first.campaign_id == "camp_1"


@pytest.mark.asyncio
async def test_concurrent_resolution_creates_one_conversation() -> None:
    resolver = IdentityResolver()
    results = await asyncio.gather(
        *(resolver.resolve("camp_7", {}, "user_1") for _ in range(8))
    )
    assert len({conversation.id for conversation in results}) == 1


@pytest.mark.asyncio
async def test_existing_conversation_id_is_reused() -> None:
    with get_conn() as conn:
        conversation = create_conversation(conn, "user_1")
    resolved = await IdentityResolver().resolve(conversation.id, {}, "user_1")
    assert resolved is not None
    assert resolved.id == conversation.id


@pytest.mark.asyncio
async def test_draft_id_uses_metadata_campaign() -> None:
    resolved = await IdentityResolver().resolve(
        "conv_1762821485606_h0uawxrjf", {"campaignId": "camp_9"}, "user_1"
    )
    assert resolved is not None
    assert resolved.campaign_id == "camp_9"


@pytest.mark.asyncio
async def test_draft_id_without_campaign_requires_binding() -> None:
    with pytest.raises(BindingRequiredError, match=BINDING_REQUIRED_MESSAGE):
        await IdentityResolver().resolve("conv_1762821485606_h0uawxrjf", {}, "user_1")


@pytest.mark.asyncio
async def test_other_owner_is_not_found() -> None:
    with get_conn() as conn:
        conversation = create_conversation(conn, "user_1")
    with pytest.raises(ConversationNotFoundError):
        await IdentityResolver().resolve(conversation.id, {}, "user_2")


def test_campaign_metadata_seeds_conversation() -> None:
    with get_conn() as conn:
        campaign = insert_campaign(conn, "user_1", "Maple Ridge", initial_goal="calls")
    conversation = IdentityResolver().for_campaign(campaign.id, "user_1")
    assert conversation.metadata["campaign_name"] == "Maple Ridge"
    assert conversation.metadata["current_goal"] == "calls"


@pytest.mark.asyncio
async def test_campaign_of_another_owner_is_not_bound() -> None:
    with get_conn() as conn:
        campaign = insert_campaign(conn, "user_1", "Maple Ridge")
    with pytest.raises(ConversationNotFoundError):
        await IdentityResolver().resolve(campaign.id, {}, "user_2")

    with get_conn() as conn:
        bound = conn.execute(
            "SELECT COUNT(*) AS cnt FROM conversations WHERE campaign_id=?", (campaign.id,)
        ).fetchone()
    assert bound["cnt"] == 0
    owned = await IdentityResolver().resolve(campaign.id, {}, "user_1")
    assert owned is not None and owned.owner_id == "user_1"
