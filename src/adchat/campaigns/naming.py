"""Unique campaign name allocation with a growing avoid list."""

from __future__ import annotations

import asyncio
import hashlib
import logging
import sqlite3
from dataclasses import dataclass, field
from typing import Protocol

from adchat.config import get_settings
from adchat.db.connection import get_conn, is_unique_violation, transaction
from adchat.db.queries import bind_campaign_conversation, insert_ad, insert_campaign
from adchat.errors import CampaignCreationError, GatewayError, NameConflictError
from adchat.gateway.base import ModelGateway
from adchat.models import Campaign, Conversation

logger = logging.getLogger(__name__)

EXHAUSTED_MESSAGE = "Could not generate a unique campaign name. Please try again."
MAX_NAME_CHARS = 40

ADJECTIVES = (
    "Sunset", "Maple", "Golden", "Bright", "Harbor", "Summit", "Coastal", "Urban",
    "Silver", "Evergreen", "Northern", "Crimson", "Velvet", "Cedar", "Amber", "Lunar",
)
NOUNS = (
    "Drive", "Ridge", "Launch", "Wave", "Spark", "Path", "Bloom", "Harvest",
    "Signal", "Peak", "Current", "Horizon", "Trail", "Beacon", "Grove", "Pulse",
)


class CampaignNamer(Protocol):
    async def propose(self, source: str, avoid: list[str]) -> str: ...


class WordlistNamer:
    """Deterministic adjective + noun names seeded by the source text."""

    async def propose(self, source: str, avoid: list[str]) -> str:
        taken = {name.casefold() for name in avoid}
        seed = int(hashlib.sha256(source.encode("utf-8")).hexdigest(), 16)
        total = len(ADJECTIVES) * len(NOUNS)
        for offset in range(total):
            slot = (seed + offset * 7) % total
            name = f"{ADJECTIVES[slot // len(NOUNS)]} {NOUNS[slot % len(NOUNS)]}"
            if name.casefold() not in taken:
                return name
        return f"{ADJECTIVES[seed % len(ADJECTIVES)]} Campaign {len(avoid) + 1}"


class GatewayNamer:
    """Asks the model for a short name; falls back to the word list."""

    def __init__(self, gateway: ModelGateway, model: str | None = None) -> None:
        self.gateway = gateway
        self.model = model or get_settings().default_model
        self.fallback = WordlistNamer()

    async def propose(self, source: str, avoid: list[str]) -> str:
        instructions = (
            "Name this ad campaign in 2-3 words, title case, no quotes or punctuation."
        )
        if avoid:
            instructions += " Do not use any of: " + ", ".join(avoid) + "."
        try:
            raw = await self.gateway.complete(
                self.model,
                [
                    {"role": "system", "content": instructions},
                    {"role": "user", "content": source or "New ad campaign"},
                ],
            )
        except GatewayError as exc:
            logger.warning("Campaign naming via gateway failed: %s", exc)
            return await self.fallback.propose(source, avoid)
        name = raw.strip().strip("\"'").splitlines()[0].strip() if raw.strip() else ""
        name = name[:MAX_NAME_CHARS].strip()
        if not name or name.casefold() in {item.casefold() for item in avoid}:
            return await self.fallback.propose(source, avoid)
        return name


@dataclass(slots=True)
class Allocation:
    campaign: Campaign
    conversation: Conversation
    ad_id: str
    attempts: int
    avoided: list[str] = field(default_factory=list)


class CampaignNameAllocator:
    def __init__(self, namer: CampaignNamer, attempts: int | None = None) -> None:
        self.namer = namer
        self.attempts = max(1, attempts or int(get_settings().name_allocation_attempts))

    async def allocate(
        self,
        owner_id: str,
        source: str,
        avoid: list[str] | None = None,
        goal: str | None = None,
    ) -> Allocation:
        """Create a campaign under a freshly generated unique name.

        A name collision adds the candidate to ``avoid`` and retries; any
        other storage failure aborts with CampaignCreationError.
        """
        avoided = list(avoid or [])
        for attempt in range(1, self.attempts + 1):
            candidate = (await self.namer.propose(source, avoided)).strip()[:MAX_NAME_CHARS]
            if not candidate:
                continue
            try:
                allocation = await asyncio.to_thread(
                    self._create, owner_id, candidate, source, goal
                )
            except sqlite3.Error as exc:
                if is_unique_violation(exc, "campaigns.name"):
                    logger.info("Campaign name %r taken (attempt %d)", candidate, attempt)
                    avoided.append(candidate)
                    continue
                raise CampaignCreationError(f"campaign insert failed: {exc}") from exc
            allocation.attempts = attempt
            allocation.avoided = avoided
            return allocation
        raise NameConflictError(EXHAUSTED_MESSAGE, avoided=avoided)

    async def create_named(
        self,
        owner_id: str,
        name: str,
        source: str = "",
        goal: str | None = None,
    ) -> Allocation:
        """Create a campaign under a user-chosen name; no retries."""
        try:
            return await asyncio.to_thread(self._create, owner_id, name.strip(), source, goal)
        except sqlite3.Error as exc:
            if is_unique_violation(exc, "campaigns.name"):
                raise NameConflictError(
                    f'A campaign named "{name.strip()}" already exists.', avoided=[name.strip()]
                ) from exc
            raise CampaignCreationError(f"campaign insert failed: {exc}") from exc

    @staticmethod
    def _create(owner_id: str, name: str, source: str, goal: str | None) -> Allocation:
        with get_conn() as conn, transaction(conn):
            campaign = insert_campaign(
                conn, owner_id, name, initial_goal=goal, metadata={"initial_prompt": source}
            )
            metadata: dict[str, object] = {
                "campaign_id": campaign.id,
                "campaign_name": name,
                "initial_prompt": source,
            }
            if goal:
                metadata["current_goal"] = goal
            conversation, _ = bind_campaign_conversation(
                conn, owner_id, campaign.id, title=f"Chat: {name}", metadata=metadata
            )
            ad_id = insert_ad(conn, campaign.id, f"{name} - Draft")
        return Allocation(campaign=campaign, conversation=conversation, ad_id=ad_id, attempts=1)


def build_namer(gateway: ModelGateway | None = None) -> CampaignNamer:
    settings = get_settings()
    if settings.campaign_namer == "gateway" and gateway is not None:
        return GatewayNamer(gateway, settings.default_model)
    return WordlistNamer()
