"""Event sinks: structured log lines, optionally mirrored into the events table."""

from __future__ import annotations

import logging
from typing import Any, Protocol, cast

from adchat.config import get_settings
from adchat.db.connection import get_conn
from adchat.db.queries import insert_event
from adchat.events.models import ChatEvent
from adchat.logging import get_logger

logger = logging.getLogger(__name__)

SENSITIVE_KEYS = {"api_key", "authorization", "access_token", "password", "image_data"}

# Events that describe anomalies rather than normal flow.
_WARNING_EVENTS = {
    "policy.violation",
    "policy.tool_rejected",
    "validation.fallback",
    "lock.rejected",
    "generation.failure",
    "generation.budget_exhausted",
    "persistence.failure",
}


def _redact_value(value: Any) -> Any:
    if isinstance(value, dict):
        return {
            key: "[REDACTED]" if str(key).lower() in SENSITIVE_KEYS else _redact_value(nested)
            for key, nested in value.items()
        }
    if isinstance(value, list):
        return [_redact_value(item) for item in value]
    return value


def redact_payload(payload: dict[str, Any]) -> dict[str, Any]:
    return cast(dict[str, Any], _redact_value(payload))


class EventSink(Protocol):
    def emit(self, event: ChatEvent) -> None: ...


class LogEventSink:
    """Writes each event as one structured log line."""

    def __init__(self) -> None:
        self._log = get_logger("adchat.events")

    def emit(self, event: ChatEvent) -> None:
        level = logging.WARNING if event.event_type in _WARNING_EVENTS else logging.INFO
        self._log.log(
            level,
            event.event_type,
            conversation_id=event.conversation_id,
            trace_id=event.trace_id,
            **redact_payload(event.payload()),
        )


class StoreEventSink(LogEventSink):
    """Log sink that also records events in the ``events`` table."""

    def emit(self, event: ChatEvent) -> None:
        super().emit(event)
        try:
            with get_conn() as conn:
                insert_event(
                    conn,
                    event.event_type,
                    redact_payload(event.payload()),
                    conversation_id=event.conversation_id,
                    trace_id=event.trace_id,
                )
        except Exception:
            logger.exception("Failed to store event %s", event.event_type)


class RecordingEventSink:
    """Keeps events in memory; used by the CLI transcript and tests."""

    def __init__(self) -> None:
        self.events: list[ChatEvent] = []

    def emit(self, event: ChatEvent) -> None:
        self.events.append(event)

    def of_type(self, event_type: str) -> list[ChatEvent]:
        return [event for event in self.events if event.event_type == event_type]


def build_event_sink() -> EventSink:
    if int(get_settings().event_store_enabled) == 1:
        return StoreEventSink()
    return LogEventSink()
