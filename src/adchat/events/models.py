"""Typed observability events emitted by the chat pipeline."""

from dataclasses import asdict, dataclass, field
from typing import Any, ClassVar


@dataclass(slots=True)
class ChatEvent:
    event_type: ClassVar[str] = "chat.event"

    conversation_id: str | None
    trace_id: str

    def payload(self) -> dict[str, Any]:
        data = asdict(self)
        data.pop("conversation_id", None)
        data.pop("trace_id", None)
        return data


@dataclass(slots=True)
class PolicyViolation(ChatEvent):
    event_type: ClassVar[str] = "policy.violation"

    step: str | None = None
    round_index: int = 0
    categories: list[str] = field(default_factory=list)
    tools: list[str] = field(default_factory=list)


@dataclass(slots=True)
class ToolRejected(ChatEvent):
    event_type: ClassVar[str] = "policy.tool_rejected"

    tool: str = ""
    step: str | None = None
    reason: str = ""


@dataclass(slots=True)
class ValidationFallback(ChatEvent):
    event_type: ClassVar[str] = "validation.fallback"

    reason: str = ""
    dropped_turns: int = 0


@dataclass(slots=True)
class LockApplied(ChatEvent):
    event_type: ClassVar[str] = "lock.applied"

    tool: str = ""
    variation_index: int = 0
    proposed_index: Any = None
    session_id: str | None = None


@dataclass(slots=True)
class LockRejected(ChatEvent):
    event_type: ClassVar[str] = "lock.rejected"

    raw_index: Any = None
    reason: str = ""


@dataclass(slots=True)
class LocationTruncated(ChatEvent):
    event_type: ClassVar[str] = "policy.location_truncated"

    location: str = ""
    proposed: list[str] = field(default_factory=list)


@dataclass(slots=True)
class GenerationFailure(ChatEvent):
    event_type: ClassVar[str] = "generation.failure"

    kind: str = "unclassified"
    detail: str = ""


@dataclass(slots=True)
class BudgetExhausted(ChatEvent):
    event_type: ClassVar[str] = "generation.budget_exhausted"

    rounds: int = 0
    pending_tools: list[str] = field(default_factory=list)


@dataclass(slots=True)
class PersistenceFailure(ChatEvent):
    event_type: ClassVar[str] = "persistence.failure"

    error: str = ""
    turn_ids: list[str] = field(default_factory=list)


@dataclass(slots=True)
class TurnDropped(ChatEvent):
    event_type: ClassVar[str] = "persistence.turn_dropped"

    turn_id: str = ""
    role: str = ""
