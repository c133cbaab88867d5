"""Conversation domain types shared by storage, pipeline and routes."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

PART_TEXT = "text"
PART_TOOL_CALL = "tool-call"
PART_TOOL_RESULT = "tool-result"
PART_TYPES = (PART_TEXT, PART_TOOL_CALL, PART_TOOL_RESULT)

ROLES = ("user", "assistant", "system")


@dataclass(slots=True)
class Part:
    type: str
    text: str = ""
    tool_call_id: str = ""
    tool_name: str = ""
    input: dict[str, Any] = field(default_factory=dict)
    output: dict[str, Any] = field(default_factory=dict)
    is_error: bool = False

    @property
    def is_tool(self) -> bool:
        return self.type in (PART_TOOL_CALL, PART_TOOL_RESULT)

    def to_dict(self) -> dict[str, Any]:
        if self.type == PART_TEXT:
            return {"type": PART_TEXT, "text": self.text}
        if self.type == PART_TOOL_CALL:
            return {
                "type": PART_TOOL_CALL,
                "toolCallId": self.tool_call_id,
                "toolName": self.tool_name,
                "input": self.input,
            }
        return {
            "type": PART_TOOL_RESULT,
            "toolCallId": self.tool_call_id,
            "toolName": self.tool_name,
            "output": self.output,
            "isError": self.is_error,
        }

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> Part:
        kind = str(raw.get("type", ""))
        text = raw.get("text")
        return cls(
            type=kind,
            text=text if kind == PART_TEXT and isinstance(text, str) else "",
            tool_call_id=str(raw.get("toolCallId") or raw.get("tool_call_id") or ""),
            tool_name=str(raw.get("toolName") or raw.get("tool_name") or ""),
            input=raw.get("input") if isinstance(raw.get("input"), dict) else {},
            output=raw.get("output") if isinstance(raw.get("output"), dict) else {},
            is_error=bool(raw.get("isError") or raw.get("is_error") or False),
        )


def text_part(text: str) -> Part:
    return Part(type=PART_TEXT, text=text)


def tool_call_part(tool_call_id: str, tool_name: str, arguments: dict[str, Any]) -> Part:
    return Part(
        type=PART_TOOL_CALL,
        tool_call_id=tool_call_id,
        tool_name=tool_name,
        input=dict(arguments),
    )


def tool_result_part(
    tool_call_id: str,
    tool_name: str,
    output: dict[str, Any],
    *,
    is_error: bool = False,
) -> Part:
    return Part(
        type=PART_TOOL_RESULT,
        tool_call_id=tool_call_id,
        tool_name=tool_name,
        output=dict(output),
        is_error=is_error,
    )


@dataclass(slots=True)
class Turn:
    id: str
    role: str
    parts: list[Part] = field(default_factory=list)
    metadata: dict[str, Any] = field(default_factory=dict)
    conversation_id: str | None = None
    seq: int | None = None
    created_at: str | None = None

    @property
    def text(self) -> str:
        return "".join(part.text for part in self.parts if part.type == PART_TEXT)

    @property
    def tool_parts(self) -> list[Part]:
        return [part for part in self.parts if part.is_tool]

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "id": self.id,
            "role": self.role,
            "parts": [part.to_dict() for part in self.parts],
            "metadata": self.metadata,
        }
        if self.seq is not None:
            payload["seq"] = self.seq
        if self.created_at is not None:
            payload["createdAt"] = self.created_at
        return payload


@dataclass(slots=True)
class Conversation:
    id: str
    owner_id: str
    campaign_id: str | None = None
    title: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)
    created_at: str = ""
    updated_at: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "ownerId": self.owner_id,
            "campaignId": self.campaign_id,
            "title": self.title,
            "metadata": self.metadata,
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
        }


@dataclass(slots=True)
class Campaign:
    id: str
    owner_id: str
    name: str
    status: str = "draft"
    initial_goal: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)
    created_at: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "ownerId": self.owner_id,
            "name": self.name,
            "status": self.status,
            "initialGoal": self.initial_goal,
            "metadata": self.metadata,
            "createdAt": self.created_at,
        }
