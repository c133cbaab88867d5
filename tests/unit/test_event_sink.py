from adchat.config import get_settings
from adchat.db.connection import get_conn
from adchat.events.models import LockApplied, PolicyViolation
from adchat.events.sink import (
    LogEventSink,
    StoreEventSink,
    build_event_sink,
    redact_payload,
)


def test_redact_payload_nested() -> None:
    payload = {"api_key": "x", "nested": [{"Authorization": "Bearer y", "ok": 1}]}
    assert redact_payload(payload) == {
        "api_key": "[REDACTED]",
        "nested": [{"Authorization": "[REDACTED]", "ok": 1}],
    }


def test_event_payload_excludes_envelope() -> None:
    event = LockApplied(conversation_id="cnv_1", trace_id="trc_1", tool="editVariation")
    payload = event.payload()
    assert "trace_id" not in payload
    assert payload["tool"] == "editVariation"


def test_build_event_sink_follows_settings(monkeypatch) -> None:
    assert isinstance(build_event_sink(), LogEventSink)
    monkeypatch.setenv("EVENT_STORE_ENABLED", "1")
    get_settings.cache_clear()
    assert isinstance(build_event_sink(), StoreEventSink)


def test_store_sink_writes_events_table() -> None:
    StoreEventSink().emit(
        PolicyViolation(
            conversation_id="cnv_1",
            trace_id="trc_1",
            step="ads",
            categories=["creative", "targeting"],
            tools=["generateVariations", "addLocations"],
        )
    )
    with get_conn() as conn:
        row = conn.execute("SELECT event_type, conversation_id FROM events").fetchone()
    assert row["event_type"] == "policy.violation"
    assert row["conversation_id"] == "cnv_1"
