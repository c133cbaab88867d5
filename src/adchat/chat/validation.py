"""Message sanitizing and tool-contract validation of the turn context."""

from __future__ import annotations

import logging
from typing import Any

from pydantic import ValidationError

from adchat.errors import MessageValidationError
from adchat.events.models import ValidationFallback
from adchat.events.sink import EventSink
from adchat.ids import new_id
from adchat.models import (
    PART_TEXT,
    PART_TOOL_CALL,
    PART_TOOL_RESULT,
    PART_TYPES,
    ROLES,
    Part,
    Turn,
)
from adchat.tools.registry import ToolRegistry

logger = logging.getLogger(__name__)

_LEGACY_TOOL_PREFIX = "tool-"


def _call_id(raw: dict[str, Any]) -> str:
    value = raw.get("toolCallId") or raw.get("tool_call_id")
    return str(value) if isinstance(value, str) and value else ""


def _repair_legacy_tool_part(raw: dict[str, Any], kind: str) -> list[dict[str, Any]]:
    """Split a combined ``tool-<name>`` part into a call plus (optional) result."""
    call_id = _call_id(raw)
    name = kind[len(_LEGACY_TOOL_PREFIX) :]
    if not call_id or not name:
        return []
    arguments = raw.get("input")
    repaired: list[dict[str, Any]] = [
        {
            "type": PART_TOOL_CALL,
            "toolCallId": call_id,
            "toolName": name,
            "input": arguments if isinstance(arguments, dict) else {},
        }
    ]
    state = raw.get("state")
    if state == "output-error":
        repaired.append(
            {
                "type": PART_TOOL_RESULT,
                "toolCallId": call_id,
                "toolName": name,
                "output": {"error": str(raw.get("errorText") or "tool failed")},
                "isError": True,
            }
        )
    elif "output" in raw and raw["output"] is not None:
        output = raw["output"]
        repaired.append(
            {
                "type": PART_TOOL_RESULT,
                "toolCallId": call_id,
                "toolName": name,
                "output": output if isinstance(output, dict) else {"value": output},
            }
        )
    return repaired


def sanitize_parts(raw_parts: Any) -> list[dict[str, Any]]:
    """Drop or repair parts that do not belong to the text/tool-call/tool-result union."""
    if not isinstance(raw_parts, list):
        return []
    cleaned: list[dict[str, Any]] = []
    for raw in raw_parts:
        if not isinstance(raw, dict):
            continue
        kind = raw.get("type")
        if not isinstance(kind, str):
            continue
        if kind == PART_TEXT:
            text = raw.get("text")
            if isinstance(text, (int, float)) and not isinstance(text, bool):
                text = str(text)
            if isinstance(text, str) and text.strip():
                cleaned.append({"type": PART_TEXT, "text": text})
        elif kind in (PART_TOOL_CALL, PART_TOOL_RESULT):
            name = raw.get("toolName") or raw.get("tool_name")
            if _call_id(raw) and isinstance(name, str) and name:
                cleaned.append(dict(raw))
        elif kind.startswith(_LEGACY_TOOL_PREFIX):
            cleaned.extend(_repair_legacy_tool_part(raw, kind))
    return cleaned


def turn_from_payload(payload: dict[str, Any], *, sanitize: bool = True) -> Turn:
    raw_parts = payload.get("parts")
    if sanitize:
        raw_parts = sanitize_parts(raw_parts)
    elif not isinstance(raw_parts, list):
        raw_parts = []
    metadata = payload.get("metadata")
    return Turn(
        id=str(payload.get("id") or new_id("msg")),
        role=str(payload.get("role") or "user"),
        parts=[Part.from_dict(item) for item in raw_parts if isinstance(item, dict)],
        metadata=dict(metadata) if isinstance(metadata, dict) else {},
    )


class MessageValidator:
    def __init__(self, registry: ToolRegistry) -> None:
        self.registry = registry

    def validate(self, turns: list[Turn]) -> list[Turn]:
        """Raise MessageValidationError on the first structural or contract violation."""
        seen_calls: set[str] = set()
        for turn in turns:
            if turn.role not in ROLES:
                raise MessageValidationError(f"turn {turn.id}: unknown role {turn.role!r}")
            for part in turn.parts:
                if part.type not in PART_TYPES:
                    raise MessageValidationError(f"turn {turn.id}: unknown part {part.type!r}")
                if part.type == PART_TOOL_CALL:
                    self._validate_call(turn, part)
                    seen_calls.add(part.tool_call_id)
                elif part.type == PART_TOOL_RESULT and part.tool_call_id not in seen_calls:
                    raise MessageValidationError(
                        f"turn {turn.id}: result {part.tool_call_id} has no matching call"
                    )
        return turns

    def _validate_call(self, turn: Turn, part: Part) -> None:
        contract = self.registry.get(part.tool_name)
        if contract is None:
            raise MessageValidationError(f"turn {turn.id}: unknown tool {part.tool_name!r}")
        try:
            contract.validate_input(part.input)
        except ValidationError as exc:
            raise MessageValidationError(
                f"turn {turn.id}: invalid input for {part.tool_name}: {exc.error_count()} errors"
            ) from exc

    def prepare_context(
        self,
        history: list[Turn],
        new_turn: Turn,
        *,
        sink: EventSink,
        conversation_id: str | None,
        trace_id: str,
    ) -> tuple[list[Turn], bool]:
        """Validate history plus the new turn; degrade to ``[new_turn]`` on failure.

        Returns the context and whether the fallback was taken.
        """
        candidate = [*history, new_turn]
        try:
            return self.validate(candidate), False
        except MessageValidationError as exc:
            logger.warning("Context validation failed, using the new turn only: %s", exc)
            sink.emit(
                ValidationFallback(
                    conversation_id=conversation_id,
                    trace_id=trace_id,
                    reason=str(exc),
                    dropped_turns=len(history),
                )
            )
            return [new_turn], True
