"""Model-serving gateway contracts."""

from collections.abc import AsyncIterator
from dataclasses import dataclass, field
from typing import Any, Protocol


@dataclass(slots=True)
class TextDelta:
    text: str


@dataclass(slots=True)
class ToolCallRequest:
    id: str
    name: str
    arguments: dict[str, Any] = field(default_factory=dict)
    # Set when the model emitted arguments that are not a JSON object.
    raw_arguments: str | None = None


@dataclass(slots=True)
class RoundFinished:
    finish_reason: str = "stop"


GatewayEvent = TextDelta | ToolCallRequest | RoundFinished


class ModelGateway(Protocol):
    def stream_round(
        self,
        model: str,
        messages: list[dict[str, Any]],
        tools: list[dict[str, Any]] | None = None,
    ) -> AsyncIterator[GatewayEvent]:
        """Stream one model round: text deltas, then tool calls, then RoundFinished."""
        ...

    async def complete(self, model: str, messages: list[dict[str, Any]]) -> str:
        """Single non-streaming completion without tools."""
        ...

    async def health_check(self) -> bool: ...
