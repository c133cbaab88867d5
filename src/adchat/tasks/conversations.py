"""Conversation maintenance tasks: titles, summaries, late persistence."""

from __future__ import annotations

import asyncio
import logging
import re

from adchat.config import get_settings
from adchat.db.connection import get_conn
from adchat.db.queries import (
    count_messages,
    first_user_text,
    get_summary,
    load_window,
    set_title_if_missing,
    upsert_summary,
)
from adchat.errors import GatewayError
from adchat.gateway.factory import build_gateway
from adchat.models import Conversation, Turn

logger = logging.getLogger(__name__)

TITLE_MAX_CHARS = 60
SUMMARY_SOURCE_MESSAGES = 50
DEFAULT_TITLE = "New conversation"


def make_title(text: str) -> str:
    collapsed = re.sub(r"\s+", " ", text).strip()
    if not collapsed:
        return DEFAULT_TITLE
    if len(collapsed) <= TITLE_MAX_CHARS:
        return collapsed
    cut = collapsed[: TITLE_MAX_CHARS - 3].rsplit(" ", 1)[0] or collapsed[: TITLE_MAX_CHARS - 3]
    return f"{cut}..."


def derive_title(conversation_id: str) -> str | None:
    with get_conn() as conn:
        title = make_title(first_user_text(conn, conversation_id))
        updated = set_title_if_missing(conn, conversation_id, title)
    if updated:
        logger.info("Titled conversation %s", conversation_id)
        return title
    return None


def _messages_since_summary(conversation_id: str) -> int:
    with get_conn() as conn:
        summary = get_summary(conn, conversation_id)
        return count_messages(conn, conversation_id, after_seq=summary["last_seq"] if summary else 0)


async def evaluate_summary(conversation_id: str) -> bool:
    threshold = max(1, int(get_settings().summary_threshold_messages))
    pending = await asyncio.to_thread(_messages_since_summary, conversation_id)
    if pending < threshold:
        return False
    from adchat.tasks import get_task_runner

    logger.info("Conversation %s has %d unsummarized messages", conversation_id, pending)
    return get_task_runner().send_task(
        "adchat.tasks.conversations.summarize_conversation",
        {"conversation_id": conversation_id},
        key=conversation_id,
    )


def _transcript(turns: list[Turn]) -> list[str]:
    lines: list[str] = []
    for turn in turns:
        text = turn.text.strip()
        if not text:
            names = [part.tool_name for part in turn.parts if part.type == "tool-call"]
            text = f"[tools: {', '.join(names)}]" if names else ""
        if text:
            lines.append(f"{turn.role}: {text}")
    return lines


async def summarize_conversation(conversation_id: str) -> str:
    def _load() -> tuple[list[Turn], int]:
        with get_conn() as conn:
            turns = load_window(conn, conversation_id, limit=SUMMARY_SOURCE_MESSAGES)
            return turns, count_messages(conn, conversation_id)

    turns, total = await asyncio.to_thread(_load)
    if not turns:
        return ""
    lines = _transcript(turns)
    settings = get_settings()
    try:
        summary = await build_gateway(settings).complete(
            settings.default_model,
            [
                {
                    "role": "system",
                    "content": (
                        "Summarize this ad-campaign planning conversation in at most 8 sentences. "
                        "Keep decisions, chosen variations, targeting and open questions."
                    ),
                },
                {"role": "user", "content": "\n".join(lines)},
            ],
        )
    except GatewayError as exc:
        logger.warning("Summary via gateway failed for %s, using extract: %s", conversation_id, exc)
        summary = ""
    if not summary:
        summary = "\n".join(lines[-8:])

    last_seq = turns[-1].seq or 0

    def _store() -> None:
        with get_conn() as conn:
            upsert_summary(conn, conversation_id, summary, message_count=total, last_seq=last_seq)

    await asyncio.to_thread(_store)
    logger.info("Summarized conversation %s (%d messages)", conversation_id, total)
    return summary


async def persist_turns(conversation: Conversation, turns: list[Turn], trace_id: str) -> int:
    from adchat.chat.persistence import PersistenceWriter
    from adchat.events.sink import build_event_sink

    return await PersistenceWriter(build_event_sink()).commit(
        conversation, turns, trace_id=trace_id
    )
