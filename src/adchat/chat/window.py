"""Loads the bounded, ordered slice of history a turn is generated against."""

import asyncio
import logging

from adchat.config import get_settings
from adchat.db.connection import get_conn
from adchat.db.queries import load_window
from adchat.models import PART_TOOL_CALL, PART_TOOL_RESULT, Turn

logger = logging.getLogger(__name__)


class WindowLoader:
    def __init__(self, limit: int | None = None) -> None:
        self.limit = limit or int(get_settings().history_window_limit)

    async def load(
        self,
        conversation_id: str,
        limit: int | None = None,
        before_seq: int | None = None,
    ) -> list[Turn]:
        turns = await asyncio.to_thread(
            self._load, conversation_id, max(1, limit or self.limit), before_seq
        )
        return self._drop_orphan_results([self._drop_incomplete_tool_parts(t) for t in turns])

    @staticmethod
    def _load(conversation_id: str, limit: int, before_seq: int | None) -> list[Turn]:
        with get_conn() as conn:
            return load_window(conn, conversation_id, limit=limit, before_seq=before_seq)

    @staticmethod
    def _drop_incomplete_tool_parts(turn: Turn) -> Turn:
        kept = [
            part
            for part in turn.parts
            if part.type not in (PART_TOOL_CALL, PART_TOOL_RESULT)
            or (part.tool_call_id and part.tool_name)
        ]
        if len(kept) != len(turn.parts):
            turn.parts = kept
        return turn

    @staticmethod
    def _drop_orphan_results(turns: list[Turn]) -> list[Turn]:
        """Remove results whose call fell outside the window.

        Stored history is validated on write, so a result without an earlier
        call only appears when the window starts between the two. Turns left
        with no parts are dropped with it.
        """
        seen_calls: set[str] = set()
        window: list[Turn] = []
        for turn in turns:
            kept = []
            for part in turn.parts:
                if part.type == PART_TOOL_CALL:
                    seen_calls.add(part.tool_call_id)
                elif part.type == PART_TOOL_RESULT and part.tool_call_id not in seen_calls:
                    logger.debug(
                        "Window cut tool call %s from turn %s", part.tool_call_id, turn.id
                    )
                    continue
                kept.append(part)
            if len(kept) != len(turn.parts):
                if not kept:
                    continue
                turn.parts = kept
            window.append(turn)
        return window
