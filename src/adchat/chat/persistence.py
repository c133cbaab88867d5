"""Append-only persistence of finished turns."""

from __future__ import annotations

import asyncio
import logging
from typing import Any

from adchat.db.connection import get_conn
from adchat.db.queries import append_turns
from adchat.events.models import PersistenceFailure, TurnDropped
from adchat.events.sink import EventSink
from adchat.models import Conversation, Turn

logger = logging.getLogger(__name__)


def is_persistable(turn: Turn) -> bool:
    """User and system turns always persist; assistant turns need some content."""
    if turn.role != "assistant":
        return True
    return bool(turn.text.strip()) or bool(turn.metadata) or bool(turn.tool_parts)


def _send_task(name: str, kwargs: dict[str, Any]) -> bool:
    from adchat.tasks import get_task_runner

    try:
        return get_task_runner().send_task(name, kwargs=kwargs)
    except Exception:
        logger.exception("Failed to enqueue %s", name)
        return False


class PersistenceWriter:
    def __init__(self, sink: EventSink) -> None:
        self._sink = sink

    def filter(self, conversation_id: str | None, turns: list[Turn], trace_id: str) -> list[Turn]:
        kept: list[Turn] = []
        for turn in turns:
            if is_persistable(turn):
                kept.append(turn)
                continue
            logger.info("Dropping empty assistant turn %s", turn.id)
            self._sink.emit(
                TurnDropped(
                    conversation_id=conversation_id,
                    trace_id=trace_id,
                    turn_id=turn.id,
                    role=turn.role,
                )
            )
        return kept

    async def commit(
        self,
        conversation: Conversation,
        turns: list[Turn],
        *,
        trace_id: str,
    ) -> int:
        """Persist well-formed turns and schedule maintenance. Never raises."""
        kept = self.filter(conversation.id, turns, trace_id)
        if not kept:
            return 0
        try:
            persisted = await asyncio.to_thread(self._append, conversation.id, kept)
        except Exception as exc:
            logger.exception("Failed to persist %d turns for %s", len(kept), conversation.id)
            self._sink.emit(
                PersistenceFailure(
                    conversation_id=conversation.id,
                    trace_id=trace_id,
                    error=str(exc),
                    turn_ids=[turn.id for turn in kept],
                )
            )
            return 0

        if persisted and not conversation.title:
            _send_task(
                "adchat.tasks.conversations.derive_title",
                {"conversation_id": conversation.id},
            )
        _send_task(
            "adchat.tasks.conversations.evaluate_summary",
            {"conversation_id": conversation.id},
        )
        return len(persisted)

    def commit_in_background(
        self,
        conversation: Conversation,
        turns: list[Turn],
        *,
        trace_id: str,
    ) -> bool:
        """Schedule :meth:`commit` on the task runner without awaiting it."""
        return _send_task(
            "adchat.tasks.conversations.persist_turns",
            {"conversation": conversation, "turns": list(turns), "trace_id": trace_id},
        )

    @staticmethod
    def _append(conversation_id: str, turns: list[Turn]) -> list[Turn]:
        with get_conn() as conn:
            return append_turns(conn, conversation_id, turns)
