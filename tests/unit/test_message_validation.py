from adchat.chat.validation import MessageValidator, sanitize_parts, turn_from_payload
from adchat.events.sink import RecordingEventSink
from adchat.models import Turn, text_part, tool_call_part, tool_result_part
from adchat.tools.registry import build_default_registry


def test_sanitize_repairs_legacy_tool_parts() -> None:
    parts = sanitize_parts(
        [
            {"type": "text", "text": "hi"},
            {
                "type": "tool-generateVariations",
                "toolCallId": "call_1",
                "input": {"prompt": "coffee shop"},
                "output": {"success": True},
            },
            {
                "type": "tool-editVariation",
                "toolCallId": "call_2",
                "state": "output-error",
                "errorText": "timeout",
            },
            {"type": "tool-selectVariation"},
        ]
    )
    kinds = [(part["type"], part.get("toolCallId")) for part in parts]
    assert kinds == [
        ("text", None),
        ("tool-call", "call_1"),
        ("tool-result", "call_1"),
        ("tool-call", "call_2"),
        ("tool-result", "call_2"),
    ]
    assert parts[4]["isError"] is True


def test_turn_from_payload_defaults() -> None:
    turn = turn_from_payload({"parts": [{"type": "text", "text": "hello"}]})
    assert turn.role == "user"
    assert turn.id.startswith("msg_")
    assert turn.text == "hello"
    assert turn.metadata == {}


def test_validate_accepts_well_formed_history() -> None:
    validator = MessageValidator(build_default_registry())
    turns = [
        Turn(id="u1", role="user", parts=[text_part("make ads")]),
        Turn(
            id="a1",
            role="assistant",
            parts=[
                tool_call_part("call_1", "generateVariations", {"prompt": "coffee shop"}),
                tool_result_part("call_1", "generateVariations", {"success": True}),
            ],
        ),
    ]
    assert validator.validate(turns) == turns


def test_prepare_context_falls_back_to_new_turn() -> None:
    validator = MessageValidator(build_default_registry())
    sink = RecordingEventSink()
    history = [
        Turn(id="u1", role="user", parts=[text_part("hi")]),
        Turn(
            id="a1",
            role="assistant",
            parts=[tool_call_part("call_1", "launchRocket", {})],
        ),
    ]
    new_turn = Turn(id="u2", role="user", parts=[text_part("again")])

    turns, degraded = validator.prepare_context(
        history, new_turn, sink=sink, conversation_id="cnv_1", trace_id="trc_1"
    )

    assert degraded is True
    assert turns == [new_turn]
    [event] = sink.of_type("validation.fallback")
    assert event.dropped_turns == 2


def test_orphan_result_is_invalid() -> None:
    validator = MessageValidator(build_default_registry())
    sink = RecordingEventSink()
    history = [
        Turn(
            id="a1",
            role="assistant",
            parts=[tool_result_part("call_9", "selectVariation", {"success": True})],
        )
    ]
    new_turn = Turn(id="u2", role="user", parts=[text_part("next")])
    _, degraded = validator.prepare_context(
        history, new_turn, sink=sink, conversation_id=None, trace_id="trc_1"
    )
    assert degraded is True
